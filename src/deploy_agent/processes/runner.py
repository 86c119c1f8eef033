"""Spawn external tools and stream their output through a CommandOutput."""

from __future__ import annotations

import codecs
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..utils.logging import get_logger
from .command_output import CommandOutput, SplitCommandOutput

logger = get_logger(__name__)

_READ_SIZE = 4096


@dataclass
class CommandLineInvocation:
    """A process to run."""
    executable: str
    arguments: List[str] = field(default_factory=list)
    working_directory: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)

    def argv(self) -> List[str]:
        return [self.executable, *self.arguments]

    def __str__(self) -> str:
        return " ".join(self.argv())


@dataclass
class CommandResult:
    """Result of running a process."""
    command: str
    exit_code: int
    working_directory: Optional[str] = None
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class CommandLineRunner:
    """
    Run a process with stdout and stderr combined into one stream.

    The stream is consumed on a reader thread so the child never blocks on a
    full pipe, while the calling thread waits for exit in short ticks and
    observes the timeout and the cancellation event. Output is handed to
    ``output`` in the order it was produced; a :class:`SplitCommandOutput`
    receives raw chunks, any other sink receives complete lines.
    """

    def __init__(self, output: CommandOutput, poll_interval: float = 0.1) -> None:
        self.output = output
        self.poll_interval = poll_interval

    def execute(
        self,
        invocation: CommandLineInvocation,
        *,
        timeout: Optional[float] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> CommandResult:
        env = os.environ.copy()
        env.update(invocation.environment)
        logger.debug("Running %s", invocation)

        try:
            process = subprocess.Popen(
                invocation.argv(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=invocation.working_directory,
                env=env,
                bufsize=0,
            )
        except OSError as exc:
            self.output.write_error(f"Failed to start {invocation.executable}: {exc}")
            return CommandResult(
                command=str(invocation),
                exit_code=-1,
                working_directory=invocation.working_directory,
            )

        reader = threading.Thread(target=self._pump, args=(process,), daemon=True)
        reader.start()

        start_time = time.monotonic()
        timed_out = cancelled = False
        while process.poll() is None:
            if cancellation is not None and cancellation.is_set():
                cancelled = True
                break
            if timeout is not None and time.monotonic() - start_time > timeout:
                timed_out = True
                break
            time.sleep(self.poll_interval)

        if timed_out or cancelled:
            process.kill()
            process.wait()
            logger.warning(
                "%s %s",
                invocation.executable,
                "was cancelled" if cancelled else f"timed out after {timeout} seconds",
            )

        # 等待读取线程处理完剩余输出
        reader.join(timeout=2 if (timed_out or cancelled) else None)
        return CommandResult(
            command=str(invocation),
            exit_code=process.returncode if not (timed_out or cancelled) else -1,
            working_directory=invocation.working_directory,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _pump(self, process: subprocess.Popen) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stream = process.stdout
        pending = ""
        try:
            while True:
                chunk = stream.read(_READ_SIZE)
                if not chunk:
                    break
                pending = self._dispatch(pending + decoder.decode(chunk))
            pending = self._dispatch(pending + decoder.decode(b"", final=True))
        finally:
            stream.close()
        self._finish(pending)

    def _dispatch(self, text: str) -> str:
        if isinstance(self.output, SplitCommandOutput):
            self.output.feed(text)
            return ""
        *lines, rest = text.split("\n")
        for line in lines:
            self.output.write_info(line.rstrip("\r"))
        return rest

    def _finish(self, pending: str) -> None:
        if isinstance(self.output, SplitCommandOutput):
            self.output.flush()
        elif pending:
            self.output.write_info(pending.rstrip("\r"))
