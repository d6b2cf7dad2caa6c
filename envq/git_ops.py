"""Git operations wrapper using subprocess / anyio."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import anyio

logger = logging.getLogger(__name__)


async def _run_git(args: list[str], cwd: Path) -> str:
    """Run a git command and return stdout."""
    result = await anyio.to_thread.run_sync(
        lambda: subprocess.run(
            ["git"] + args,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            check=True,
        )
    )
    return result.stdout.strip()


async def get_current_branch(cwd: Path) -> str:
    """Name of the checked-out branch, or "N/A" if it cannot be read."""
    try:
        return await _run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd) or "N/A"
    except (subprocess.CalledProcessError, OSError) as exc:
        logger.debug("No git branch for %s: %s", cwd, exc)
        return "N/A"
