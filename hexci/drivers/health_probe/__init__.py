"""Health probe drivers."""

from hexci.drivers.health_probe.http import HttpHealthProbe

__all__ = ["HttpHealthProbe"]
