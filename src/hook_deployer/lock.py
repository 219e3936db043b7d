"""Exclusive lock serializing deployments of one work tree."""

from __future__ import annotations

import fcntl
import os
import time
from pathlib import Path
from typing import IO, Optional

from .errors import DeploymentError, LockBusyError
from .utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentLock:
    """``flock`` on a file next to the run state.

    ``mode="wait"`` queues behind the running deployment for at most
    ``timeout`` seconds; ``mode="reject"`` gives up immediately.
    """

    def __init__(self, path: Path, mode: str = "wait", timeout: float = 300.0,
                 poll_interval: float = 0.2) -> None:
        if mode not in ("wait", "reject"):
            raise ValueError(f"Unsupported lock mode: {mode}")
        self.path = path
        self.mode = mode
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: Optional[IO[str]] = None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.path, "a+")
        except OSError as exc:
            raise DeploymentError(f"Cannot open deployment lock {self.path}: {exc}") from exc
        deadline = time.monotonic() + (self.timeout if self.mode == "wait" else 0)
        announced = False
        while True:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    holder = self._read_holder(handle)
                    handle.close()
                    raise LockBusyError(
                        f"Deployment in progress (lock {self.path} held{holder})"
                    ) from None
                if not announced:
                    logger.info("[post-receive] Another deployment is running, waiting...")
                    announced = True
                time.sleep(self.poll_interval)

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.seek(0)
            self._handle.truncate()
            fcntl.flock(self._handle, fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "DeploymentLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _read_holder(self, handle: IO[str]) -> str:
        handle.seek(0)
        pid = handle.read().strip()
        return f" by pid {pid}" if pid else ""
