"""Parsing of the ref updates git hands to a post-receive hook."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

ZERO_SHA = "0" * 40
BRANCH_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class RefUpdate:
    """One ``<old> <new> <refname>`` line from post-receive stdin."""

    old_sha: str
    new_sha: str
    ref: str

    @property
    def branch(self) -> Optional[str]:
        if self.ref.startswith(BRANCH_PREFIX):
            return self.ref[len(BRANCH_PREFIX):]
        return None

    @property
    def is_deletion(self) -> bool:
        return set(self.new_sha) == {"0"}


def parse_updates(lines: Iterable[str]) -> list[RefUpdate]:
    """Parse post-receive input. Blank lines are ignored."""
    updates = []
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 3:
            raise ValueError(f"Malformed ref update on line {number}: {line!r}")
        updates.append(RefUpdate(old_sha=parts[0], new_sha=parts[1], ref=parts[2]))
    return updates


def select_target(updates: Iterable[RefUpdate], deploy_branch: str) -> Optional[RefUpdate]:
    """Return the update to ``deploy_branch``, if the push contains a deployable one."""
    target = None
    for update in updates:
        if update.branch == deploy_branch and not update.is_deletion:
            target = update
    return target
