"""Exceptions raised by deployment steps.

Steps raise; only :class:`hook_deployer.workflow.DeploymentTrigger` catches
them and turns them into a terminal deployment state.
"""

from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base class for every failure that aborts a deployment run."""


class CommandError(DeploymentError):
    """Raised when an external command exits non-zero."""

    def __init__(self, command: list[str], exit_code: int, output: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Command {' '.join(command)} failed with code {exit_code}")


class ReconcileError(DeploymentError):
    """Raised when a source path cannot be synchronized to its destination."""


class CertificateError(CommandError):
    """Raised when the certificate script exits non-zero."""


class ValidationError(CommandError):
    """Raised when the proxy rejects the reconciled configuration."""


class ReloadError(CommandError):
    """Raised when the proxy service refuses to reload."""


class LockBusyError(DeploymentError):
    """Raised when another deployment holds the lock."""
