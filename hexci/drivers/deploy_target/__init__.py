"""Deploy target drivers."""

from hexci.drivers.deploy_target.shell import ShellDeployTarget

__all__ = ["ShellDeployTarget"]
