"""Deployment state machine and the record of the last run."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class DeploymentState(Enum):
    """States of one deployment run."""
    RECEIVED = "received"
    CHECKED_OUT = "checked_out"
    RECONCILED = "reconciled"
    CERT_DONE = "cert_done"
    VALIDATED = "validated"
    RELOADED = "reloaded"                    # 终态：成功
    VALIDATION_FAILED = "validation_failed"  # 终态：配置校验失败
    ABORTED = "aborted"                      # 终态：任意步骤异常
    SKIPPED = "skipped"                      # 终态：本次推送无需部署

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def successful(self) -> bool:
        return self in (DeploymentState.RELOADED, DeploymentState.SKIPPED)


TERMINAL_STATES = frozenset({
    DeploymentState.RELOADED,
    DeploymentState.VALIDATION_FAILED,
    DeploymentState.ABORTED,
    DeploymentState.SKIPPED,
})

_FORWARD = {
    DeploymentState.RECEIVED: {DeploymentState.CHECKED_OUT, DeploymentState.SKIPPED},
    DeploymentState.CHECKED_OUT: {DeploymentState.RECONCILED},
    DeploymentState.RECONCILED: {DeploymentState.CERT_DONE},
    DeploymentState.CERT_DONE: {DeploymentState.VALIDATED, DeploymentState.VALIDATION_FAILED},
    DeploymentState.VALIDATED: {DeploymentState.RELOADED},
}


class InvalidTransition(RuntimeError):
    """Raised on a state change the deployment state machine does not allow."""


def can_transition(current: DeploymentState, target: DeploymentState) -> bool:
    if current.terminal:
        return False
    if target is DeploymentState.ABORTED:
        return True
    return target in _FORWARD.get(current, set())


@dataclass
class Transition:
    state: str
    at: str


@dataclass
class DeploymentResult:
    """Outcome of one trigger invocation."""

    state: DeploymentState = DeploymentState.RECEIVED
    commit: Optional[str] = None
    ref: Optional[str] = None
    pushed_commit: Optional[str] = None
    message: str = ""
    diagnostics: str = ""
    started_at: str = field(default_factory=lambda: _now())
    finished_at: Optional[str] = None
    transitions: List[Transition] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.transitions:
            self.transitions.append(Transition(state=self.state.value, at=self.started_at))

    def advance(self, target: DeploymentState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        now = _now()
        self.transitions.append(Transition(state=target.value, at=now))
        if target.terminal:
            self.finished_at = now

    @property
    def exit_code(self) -> int:
        """Process exit status for git and the CLI.

        ``SKIPPED`` (the push carried no update to the deploy branch) exits 0
        like ``RELOADED``, so pushes of other branches are not reported as
        failed to the pusher.
        """
        return 0 if self.state.successful else 1

    @property
    def history(self) -> List[DeploymentState]:
        return [DeploymentState(item.state) for item in self.transitions]

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        payload["exit_code"] = self.exit_code
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentResult":
        return cls(
            state=DeploymentState(data.get("state", DeploymentState.RECEIVED.value)),
            commit=data.get("commit"),
            ref=data.get("ref"),
            pushed_commit=data.get("pushed_commit"),
            message=data.get("message", ""),
            diagnostics=data.get("diagnostics", ""),
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at"),
            transitions=[Transition(**item) for item in data.get("transitions", [])],
        )


class RunRecordStore:
    """Keeps ``last_run.json`` in the state directory."""

    FILE_NAME = "last_run.json"

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.path = state_dir / self.FILE_NAME

    def save(self, result: DeploymentResult) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    def load(self) -> Optional[DeploymentResult]:
        if not self.path.exists():
            return None
        return DeploymentResult.from_dict(json.loads(self.path.read_text(encoding="utf-8")))


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")
