"""Run verification commands in the user's login shell."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from .models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

_HOMEBREW_NVM = "/opt/homebrew/opt/nvm/nvm.sh"


def default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


def find_nvm_script() -> str:
    """Locate nvm.sh: $NVM_DIR, then ~/.nvm, then Homebrew (macOS)."""
    nvm_dir = os.environ.get("NVM_DIR")
    if nvm_dir and (Path(nvm_dir) / "nvm.sh").exists():
        return str(Path(nvm_dir) / "nvm.sh")
    home_nvm = Path.home() / ".nvm" / "nvm.sh"
    if home_nvm.exists():
        return str(home_nvm)
    if sys.platform == "darwin" and Path(_HOMEBREW_NVM).exists():
        return _HOMEBREW_NVM
    return ""


def prepare_command(command: str) -> str:
    """nvm is a shell function, so source it before nvm commands."""
    if not command.startswith("nvm"):
        return command
    script = find_nvm_script()
    if not script:
        logger.warning("nvm.sh not found; running nvm command without sourcing it")
        return command
    return f'. "{script}" && {command}'


def shell_argv(command: str, shell: str | None = None, login: bool = True) -> list[str]:
    argv = [shell or default_shell()]
    if login:
        argv.append("-l")
    argv += ["-c", prepare_command(command)]
    return argv


async def run_command(
    command: str,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: str | Path | None = None,
    shell: str | None = None,
    login: bool = True,
) -> CommandResult:
    """Run *command* and capture stripped stdout/stderr.

    Timeouts and spawn errors come back as a failed CommandResult.
    """
    logger.debug("Executing command: %s", command)
    try:
        proc = await asyncio.create_subprocess_exec(
            *shell_argv(command, shell, login),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("Could not start command %r: %s", command, exc)
        return CommandResult(success=False, stderr=str(exc))

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Command timed out after %.0f seconds: %s", timeout, command)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        await proc.wait()
        return CommandResult(success=False, stderr="Command timed out", timed_out=True)

    stdout = out.decode(errors="replace").strip()
    stderr = err.decode(errors="replace").strip()
    if proc.returncode != 0:
        logger.warning(
            "Command failed: %s (exit %s). Stderr: %r", command, proc.returncode, stderr
        )
        return CommandResult(
            success=False, stdout=stdout, stderr=stderr, exit_code=proc.returncode
        )

    logger.debug("Command succeeded: %s. Stdout: %r", command, stdout)
    return CommandResult(success=True, stdout=stdout, stderr=stderr, exit_code=0)
