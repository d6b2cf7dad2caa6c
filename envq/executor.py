"""Command executor boundary and its asyncio shell implementation."""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import re
import signal
from collections import deque
from pathlib import Path
from typing import Protocol

from .events import CommandCompleted, EventBus
from .models import Outcome
from .shell import shell_argv

logger = logging.getLogger(__name__)

# Lines of output kept per instance.
_OUTPUT_LINES = 500
# Finished instances whose output stays readable.
_KEPT_OUTPUTS = 50
# Bytes per stdout read; a longer unterminated line is split at this size.
_READ_CHUNK = 64 * 1024
# Seconds between SIGTERM and SIGKILL.
_KILL_GRACE = 5.0

_LINE_BREAK_RE = re.compile(rb"\r\n|\r|\n")


class CommandExecutor(Protocol):
    """Starts fix commands; completion arrives on the bus as CommandCompleted."""

    def start(self, command: str, logical_id: str) -> str: ...

    def kill(self, instance_id: str) -> None: ...


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


class ShellCommandExecutor:
    """Runs each command in its own login shell and process group."""

    def __init__(
        self,
        bus: EventBus,
        shell: str | None = None,
        login: bool = True,
        cwd: str | Path | None = None,
        kept_outputs: int = _KEPT_OUTPUTS,
    ):
        self.bus = bus
        self.shell = shell
        self.login = login
        self.cwd = cwd
        self.kept_outputs = kept_outputs
        self._ids = itertools.count(1)
        self._tasks: dict[str, asyncio.Task] = {}
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._killed: set[str] = set()
        self._output: dict[str, deque[str]] = {}
        self._finished: deque[str] = deque()

    def start(self, command: str, logical_id: str) -> str:
        instance_id = f"auto-setup-{logical_id}-{next(self._ids)}"
        self._output[instance_id] = deque(maxlen=_OUTPUT_LINES)
        self._tasks[instance_id] = asyncio.get_running_loop().create_task(
            self._run(instance_id, command)
        )
        logger.info("Started %s: %s", instance_id, command)
        return instance_id

    def kill(self, instance_id: str) -> None:
        if instance_id not in self._tasks:
            return
        self._killed.add(instance_id)
        proc = self._procs.get(instance_id)
        if proc is not None:
            self._terminate(instance_id, proc)

    def _terminate(self, instance_id: str, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        logger.info("Killing %s", instance_id)
        _signal_group(proc, signal.SIGTERM)
        asyncio.get_running_loop().call_later(
            _KILL_GRACE,
            lambda: proc.returncode is None and _signal_group(proc, signal.SIGKILL),
        )

    def output(self, instance_id: str) -> str:
        return "\n".join(self._output.get(instance_id, ()))

    @property
    def running(self) -> list[str]:
        return list(self._tasks)

    async def _run(self, instance_id: str, command: str) -> None:
        exit_code = 1
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *shell_argv(command, self.shell, self.login),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=str(self.cwd) if self.cwd else None,
                    start_new_session=True,
                )
            except OSError as exc:
                logger.warning("Could not start %s: %s", instance_id, exc)
                self._output[instance_id].append(str(exc))
                return
            self._procs[instance_id] = proc
            if instance_id in self._killed:
                self._terminate(instance_id, proc)
            try:
                await self._read_lines(instance_id, proc.stdout)
            except Exception:
                logger.exception("Lost output of %s", instance_id)
            exit_code = await proc.wait()
        finally:
            live = self._procs.pop(instance_id, None)
            if live is not None and live.returncode is None:
                _signal_group(live, signal.SIGTERM)
            self._tasks.pop(instance_id, None)
            outcome = Outcome.STOPPED if instance_id in self._killed else Outcome.NORMAL
            self._killed.discard(instance_id)
            self._retire(instance_id)
            logger.info("%s finished: %s (exit %s)", instance_id, outcome.value, exit_code)
            self.bus.publish(CommandCompleted(instance_id, outcome, exit_code))

    async def _read_lines(self, instance_id: str, stream: asyncio.StreamReader) -> None:
        """Record output split on LF, CR and CRLF, without a line length limit."""
        pending = b""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            # A trailing CR may be the first half of a CRLF.
            held = pending.endswith(b"\r")
            lines = _LINE_BREAK_RE.split(pending[:-1] if held else pending)
            pending = lines.pop() + (b"\r" if held else b"")
            for line in lines:
                self._record(instance_id, line)
            if len(pending) >= _READ_CHUNK:
                self._record(instance_id, pending.rstrip(b"\r"))
                pending = b""
        pending = pending.rstrip(b"\r")
        if pending:
            self._record(instance_id, pending)

    def _record(self, instance_id: str, line: bytes) -> None:
        text = line.decode(errors="replace")
        self._output[instance_id].append(text)
        logger.debug("[%s] %s", instance_id, text)

    def _retire(self, instance_id: str) -> None:
        self._finished.append(instance_id)
        while len(self._finished) > self.kept_outputs:
            self._output.pop(self._finished.popleft(), None)
