"""Git-based repository management."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import DeploymentError


class GitCommandError(DeploymentError):
    """Raised when a git command fails."""

    def __init__(self, command: list[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}")


@dataclass
class GitCheckoutResult:
    """Details about a completed checkout."""

    commit_sha: str
    branch: Optional[str] = None


class GitRepositoryManager:
    """Wraps `git` CLI commands for the bare repository and its work tree."""

    def __init__(self, git_binary: str = "git") -> None:
        self.git_binary = git_binary

    def init_bare(self, git_dir: Path, initial_branch: Optional[str] = None) -> bool:
        """Create a bare repository unless one already exists. Returns True if created."""
        git_dir.mkdir(parents=True, exist_ok=True)
        if (git_dir / "objects").is_dir():
            return False
        args = ["init", "--bare"]
        if initial_branch:
            args.append(f"--initial-branch={initial_branch}")
        self._run(args, cwd=git_dir)
        return True

    def checkout(
        self,
        git_dir: Path,
        work_tree: Path,
        ref: Optional[str] = None,
        *,
        clean: bool = True,
    ) -> GitCheckoutResult:
        """Force the work tree to match ``ref`` (or the current tip) exactly.

        Local modifications are discarded; with ``clean`` untracked and
        ignored files are removed as well.
        """
        work_tree.mkdir(parents=True, exist_ok=True)
        scope = self._scope(git_dir, work_tree)

        args = scope + ["checkout", "-f"]
        if ref:
            args.append(ref)
        self._run(args, cwd=work_tree)
        if clean:
            self._run(scope + ["clean", "-f", "-d", "-x"], cwd=work_tree)

        commit_sha = self._run(scope + ["rev-parse", "HEAD"], cwd=work_tree).strip()
        return GitCheckoutResult(commit_sha=commit_sha, branch=ref or self.current_branch(git_dir))

    def current_branch(self, git_dir: Path) -> Optional[str]:
        """Branch HEAD points to, or None when HEAD is detached."""
        try:
            output = self._run([f"--git-dir={git_dir}", "symbolic-ref", "--short", "HEAD"])
        except GitCommandError:
            return None
        return output.strip() or None

    def rev_parse(self, git_dir: Path, ref: str = "HEAD") -> str:
        return self._run([f"--git-dir={git_dir}", "rev-parse", ref]).strip()

    def _scope(self, git_dir: Path, work_tree: Path) -> list[str]:
        return [f"--git-dir={git_dir}", f"--work-tree={work_tree}"]

    def _run(self, args: list[str], cwd: Optional[Path] = None) -> str:
        command = [self.git_binary] + args
        process = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            check=False,
        )
        if process.returncode != 0:
            raise GitCommandError(command, process.returncode, process.stderr.strip())
        return process.stdout
