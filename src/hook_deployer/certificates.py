"""Optional certificate issuance/renewal step.

The deployment only knows the :class:`CertificateAction` interface. The
default implementation runs a script shipped inside the pushed repository
and trusts its exit status verbatim.
"""

from __future__ import annotations

import os
import stat
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import CertificateError
from .local import LocalSession
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CertificateOutcome:
    """What the certificate step did."""

    ran: bool
    output: str = ""
    exit_status: int = 0


class CertificateAction(ABC):
    """Executes with environment ``env`` and either returns or raises CertificateError."""

    @abstractmethod
    def run(self, work_tree: Path, env: Mapping[str, str]) -> CertificateOutcome:
        raise NotImplementedError


class NullCertificateAction(CertificateAction):
    """Used when certificate management is switched off."""

    def run(self, work_tree: Path, env: Mapping[str, str]) -> CertificateOutcome:
        logger.info("[post-receive] Certificate step disabled")
        return CertificateOutcome(ran=False)


class ScriptCertificateAction(CertificateAction):
    """Runs ``execute_sh/deploy_certificates.sh`` from the work tree when it exists."""

    def __init__(
        self,
        script: str,
        credentials: Optional[str] = None,
        *,
        session: Optional[LocalSession] = None,
        shell: str = "bash",
        timeout: Optional[float] = None,
    ) -> None:
        self.script = script
        self.credentials = credentials
        self.session = session or LocalSession()
        self.shell = shell
        self.timeout = timeout

    def run(self, work_tree: Path, env: Mapping[str, str]) -> CertificateOutcome:
        script_path = work_tree / self.script
        if not script_path.is_file():
            logger.warning("[post-receive] %s not found, skipping certificate step", self.script)
            return CertificateOutcome(ran=False)

        script_env = dict(env)
        credentials_path = self._prepare_credentials(work_tree)
        if credentials_path is not None:
            script_env["CLOUDFLARE_CREDENTIALS"] = str(credentials_path)

        logger.info("[post-receive] Running certificate script %s", self.script)
        # 通过 shell 调用，脚本缺少可执行权限也能运行；工作目录继承自钩子进程
        result = self.session.run(
            [self.shell, str(script_path)],
            env=script_env,
            timeout=self.timeout,
        )
        if not result.ok:
            raise CertificateError(result.command, result.exit_status, result.output)
        return CertificateOutcome(ran=True, output=result.output, exit_status=result.exit_status)

    def _prepare_credentials(self, work_tree: Path) -> Optional[Path]:
        if not self.credentials:
            return None
        credentials_path = work_tree / self.credentials
        if not credentials_path.is_file():
            return None
        # certbot 拒绝使用其他用户可读的 DNS 凭据文件
        mode = stat.S_IMODE(credentials_path.stat().st_mode)
        if mode & 0o077:
            os.chmod(credentials_path, 0o600)
        return credentials_path
