"""Shared fixtures for the hook-deployer tests."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional

from hook_deployer.certificates import CertificateAction, CertificateOutcome
from hook_deployer.config import AppConfig
from hook_deployer.local import LocalCommandResult, LocalSession

ZERO_SHA = "0" * 40


def git_available() -> bool:
    return shutil.which("git") is not None


def run_git(args: list[str], cwd: Path) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
    )
    return process.stdout.strip()


def make_config(root: Path) -> AppConfig:
    """Config whose every path lives under ``root``."""
    config = AppConfig()
    config.repository.git_dir = str(root / "repo.git")
    config.repository.work_tree = str(root / "deploy")
    config.repository.state_dir = str(root / "state")
    config.repository.deploy_branch = "main"
    config.reconcile.destination_root = str(root / "dest")
    config.lock.timeout = 0.5
    return config


def nginx_root(config: AppConfig) -> Path:
    return Path(config.reconcile.destination_root) / "etc" / "nginx"


class RecordingSession(LocalSession):
    """LocalSession that records commands instead of running them.

    ``handler`` maps an argv list to ``(exit_status, output)``; by default
    every command succeeds silently.
    """

    def __init__(self, handler: Optional[Callable[[list[str]], tuple[int, str]]] = None) -> None:
        super().__init__()
        self.handler = handler
        self.calls: list[list[str]] = []
        self.envs: list[dict] = []

    def run(self, command, *, timeout=None, env: Optional[Mapping[str, str]] = None,
            cwd=None, stream_output=True) -> LocalCommandResult:
        argv = [str(part) for part in command]
        self.calls.append(argv)
        self.envs.append(dict(env or {}))
        status, output = self.handler(argv) if self.handler else (0, "")
        return LocalCommandResult(command=argv, output=output, exit_status=status)

    def called(self, *argv: str) -> bool:
        return list(argv) in self.calls


class RecordingCertificateAction(CertificateAction):
    def __init__(self) -> None:
        self.calls: list[Path] = []

    def run(self, work_tree, env) -> CertificateOutcome:
        self.calls.append(work_tree)
        return CertificateOutcome(ran=True)


class PushFixture:
    """A bare repository plus a local clone used to commit and push."""

    def __init__(self, root: Path, git_dir: Path) -> None:
        self.git_dir = git_dir
        self.source = root / "source"
        self.git_dir.mkdir(parents=True)
        run_git(["init", "--bare", "--initial-branch=main"], self.git_dir)
        self.source.mkdir()
        run_git(["init", "--initial-branch=main"], self.source)
        run_git(["config", "user.email", "bot@example.com"], self.source)
        run_git(["config", "user.name", "Hook Deployer"], self.source)
        run_git(["remote", "add", "origin", str(self.git_dir)], self.source)

    def commit(self, files: Mapping[str, Optional[str]], message: str = "update") -> str:
        """Write (or delete, for None) files and commit them. Returns the new sha."""
        for relative, content in files.items():
            path = self.source / relative
            if content is None:
                if path.exists():
                    path.unlink()
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        run_git(["add", "-A"], self.source)
        run_git(["commit", "--allow-empty", "-m", message], self.source)
        return run_git(["rev-parse", "HEAD"], self.source)

    def push(self, branch: str = "main") -> None:
        run_git(["push", "origin", f"HEAD:refs/heads/{branch}"], self.source)

    def checkout_branch(self, branch: str) -> None:
        run_git(["checkout", "-B", branch], self.source)


VALID_NGINX_CONF = "events {}\nhttp {\n    include conf.d/*.conf;\n}\n"
