"""Orchestration: graph building, scheduling, step execution and deployment.

Import from the submodules directly, e.g.
``from hexci.kernel.orchestration.scheduler import Scheduler``.
"""
