"""Validation and activation of the reconciled nginx configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import CommandError, ReloadError, ValidationError
from .local import LocalCommandResult, LocalSession
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class NginxController:
    """Runs the proxy's syntax checker and service control commands."""

    test_command: Sequence[str]
    reload_command: Sequence[str]
    enable_command: Sequence[str] = ("systemctl", "enable", "nginx")
    start_command: Sequence[str] = ("systemctl", "start", "nginx")
    session: LocalSession = field(default_factory=LocalSession)
    timeout: Optional[float] = 60

    def validate(self) -> LocalCommandResult:
        """Check the on-disk configuration; raises ValidationError when nginx rejects it."""
        logger.info("[post-receive] Checking nginx configuration...")
        result = self._run(self.test_command)
        if not result.ok:
            raise ValidationError(result.command, result.exit_status, result.output)
        return result

    def reload(self) -> LocalCommandResult:
        """Gracefully reload nginx so it picks up the validated configuration."""
        logger.info("[post-receive] Reloading nginx...")
        result = self._run(self.reload_command)
        if not result.ok:
            raise ReloadError(result.command, result.exit_status, result.output)
        return result

    def ensure_running(self) -> None:
        """Enable nginx at boot and start it now."""
        for command in (self.enable_command, self.start_command):
            result = self._run(command)
            if not result.ok:
                raise CommandError(result.command, result.exit_status, result.output)

    def _run(self, command: Sequence[str]) -> LocalCommandResult:
        return self.session.run(list(command), timeout=self.timeout)
