"""Local command execution session."""

from __future__ import annotations

import codecs
import os
import selectors
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Optional, Sequence, Union

from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LocalCommandResult:
    """Result of executing a local command."""
    command: list[str]
    output: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class LocalSession:
    """
    Runs external commands synchronously on this host.

    stdout and stderr of the child are merged and echoed as it arrives to
    ``echo`` while the command runs. Inside a git hook that stream is relayed
    to the pusher, so certificate and ``nginx -t`` diagnostics show up on the
    client as ``remote:`` lines.
    """

    def __init__(
        self,
        working_dir: Optional[Union[str, Path]] = None,
        echo: Optional[IO[str]] = None,
    ) -> None:
        """
        Initialize local session.

        Args:
            working_dir: Working directory for commands. Defaults to the
                current directory, which a hook inherits from git.
            echo: Stream receiving live command output. ``None`` means
                ``sys.stdout`` at call time.
        """
        self.working_dir = str(working_dir) if working_dir else None
        self.echo = echo

    def run(
        self,
        command: Sequence[str],
        *,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        stream_output: bool = True,
    ) -> LocalCommandResult:
        """
        Execute ``command`` and wait for it to finish.

        Args:
            command: argv list, no shell involved
            timeout: Total timeout in seconds; ``None`` waits forever
            env: Extra variables layered over the inherited environment
            cwd: Overrides the session working directory for this call
            stream_output: Echo output while the command runs

        Returns:
            LocalCommandResult with merged output and exit status. A command
            that cannot be started reports exit status 127, a timeout -1.
        """
        argv = [str(part) for part in command]
        logger.debug("Running %s", " ".join(argv))
        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(cwd) if cwd else self.working_dir,
                env=self._get_env(env),
            )
        except OSError as exc:
            # 命令不存在或不可执行
            return LocalCommandResult(command=argv, output=str(exc), exit_status=127)

        chunks: list[str] = []
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = process.stdout.fileno()
        pipe_open = True
        start_time = time.monotonic()
        sel = selectors.DefaultSelector()
        sel.register(process.stdout, selectors.EVENT_READ)
        try:
            while True:
                # 按块读取：没有换行的输出也不能阻塞超时检查
                for _key, _ in sel.select(timeout=0.1):
                    data = os.read(fd, 4096)
                    if data:
                        self._emit(decoder.decode(data), chunks, stream_output)
                    else:
                        sel.unregister(process.stdout)
                        pipe_open = False
                if process.poll() is not None:
                    break
                if timeout is not None and time.monotonic() - start_time > timeout:
                    process.kill()
                    process.wait()
                    self._emit(decoder.decode(b"", final=True), chunks, stream_output)
                    chunks.append(f"\nTIMEOUT: command exceeded {timeout} seconds\n")
                    return LocalCommandResult(command=argv, output="".join(chunks).strip(), exit_status=-1)
            # 读取剩余输出；后台子进程可能继续持有管道，只读已就绪的数据
            while pipe_open and sel.select(timeout=0):
                data = os.read(fd, 4096)
                if not data:
                    break
                self._emit(decoder.decode(data), chunks, stream_output)
            self._emit(decoder.decode(b"", final=True), chunks, stream_output)
        finally:
            sel.close()
            process.stdout.close()

        return LocalCommandResult(
            command=argv,
            output="".join(chunks).strip(),
            exit_status=process.returncode,
        )

    def _emit(self, text: str, chunks: list[str], stream_output: bool) -> None:
        if not text:
            return
        chunks.append(text)
        if stream_output:
            stream = self.echo or sys.stdout
            stream.write(text)
            stream.flush()

    def _get_env(self, extra: Optional[Mapping[str, str]]) -> dict:
        env = os.environ.copy()
        if extra:
            env.update(extra)
        return env
