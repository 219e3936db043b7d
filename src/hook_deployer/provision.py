"""Provisioning of the bare repository, work tree and post-receive hook."""

from __future__ import annotations

import shlex
import shutil
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig
from .gitops import GitRepositoryManager
from .nginx import NginxController
from .utils.logging import get_logger

logger = get_logger(__name__)

HOOK_MARKER = "# managed by hook-deployer"
REQUIRED_BINARIES = ("git", "nginx")


class HookConflictError(RuntimeError):
    """Raised when a post-receive hook not written by us is already installed."""


@dataclass
class ProvisionReport:
    """What :meth:`Provisioner.install` changed."""

    git_dir: Path
    work_tree: Path
    hook_path: Path
    repository_created: bool = False
    hook_written: bool = False
    nginx_started: bool = False
    missing_binaries: list[str] = field(default_factory=list)


class Provisioner:
    """Idempotently prepares a host to deploy on push."""

    def __init__(
        self,
        config: AppConfig,
        *,
        git_manager: Optional[GitRepositoryManager] = None,
        nginx: Optional[NginxController] = None,
        python_executable: Optional[str] = None,
        config_path: Optional[str] = None,
    ) -> None:
        self.config = config
        self.git_manager = git_manager or GitRepositoryManager(config.repository.git_binary)
        self.nginx = nginx or NginxController(
            test_command=config.nginx.test_command,
            reload_command=config.nginx.reload_command,
            enable_command=config.nginx.enable_command,
            start_command=config.nginx.start_command,
            timeout=config.nginx.timeout,
        )
        self.python_executable = python_executable or sys.executable
        self.config_path = config_path

    @property
    def hook_path(self) -> Path:
        return self.config.repository.git_dir_path / "hooks" / "post-receive"

    def install(
        self,
        *,
        force: bool = False,
        start_nginx: bool = True,
        confirm_overwrite: Optional[Callable[[Path], bool]] = None,
    ) -> ProvisionReport:
        repo = self.config.repository
        report = ProvisionReport(
            git_dir=repo.git_dir_path,
            work_tree=repo.work_tree_path,
            hook_path=self.hook_path,
        )

        report.missing_binaries = [name for name in REQUIRED_BINARIES if shutil.which(name) is None]
        for name in report.missing_binaries:
            logger.warning("==> %s not found on PATH; install it before pushing", name)

        logger.info("==> Creating bare repository: %s", repo.git_dir_path)
        report.repository_created = self.git_manager.init_bare(
            repo.git_dir_path, initial_branch=repo.deploy_branch
        )
        if not report.repository_created:
            logger.info("A git repository already exists there, reusing it.")

        logger.info("==> Creating work tree: %s", repo.work_tree_path)
        repo.work_tree_path.mkdir(parents=True, exist_ok=True)
        repo.state_dir_path.mkdir(parents=True, exist_ok=True)

        report.hook_written = self._write_hook(force=force, confirm_overwrite=confirm_overwrite)

        if start_nginx:
            logger.info("==> Enabling and starting nginx...")
            self.nginx.ensure_running()
            report.nginx_started = True
        return report

    def render_hook(self) -> str:
        repo = self.config.repository
        exports = {
            "HOOK_DEPLOYER_PROJECT": repo.project,
            "HOOK_DEPLOYER_GIT_DIR": str(repo.git_dir_path),
            "HOOK_DEPLOYER_WORK_TREE": str(repo.work_tree_path),
        }
        command = [self.python_executable, "-m", "hook_deployer"]
        if self.config_path:
            command += ["--config", str(Path(self.config_path).resolve())]
        command.append("hook")

        lines = [
            "#!/usr/bin/env bash",
            HOOK_MARKER,
            "#",
            f"# post-receive hook: check out the pushed revision to {repo.work_tree_path},",
            "# sync nginx configuration and certificates, then reload nginx.",
            "",
            "set -e",
            "",
        ]
        lines += [f"export {name}={shlex.quote(value)}" for name, value in exports.items()]
        lines += ["", "exec " + " ".join(shlex.quote(part) for part in command), ""]
        return "\n".join(lines)

    def _write_hook(
        self,
        *,
        force: bool,
        confirm_overwrite: Optional[Callable[[Path], bool]],
    ) -> bool:
        hook_path = self.hook_path
        content = self.render_hook()
        if hook_path.exists():
            existing = hook_path.read_text(encoding="utf-8", errors="replace")
            if existing == content:
                logger.info("==> post-receive hook already up to date")
                return False
            if HOOK_MARKER not in existing and not force:
                if confirm_overwrite is None or not confirm_overwrite(hook_path):
                    raise HookConflictError(
                        f"{hook_path} exists and was not written by hook-deployer (use --force)"
                    )

        logger.info("==> Writing post-receive hook to %s", hook_path)
        hook_path.parent.mkdir(parents=True, exist_ok=True)
        hook_path.write_text(content, encoding="utf-8")
        mode = hook_path.stat().st_mode
        hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return True
