"""Verification evaluator: run one verification's check, never raise."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from .checks import CHECKS, Check, CheckContext, Runner
from .models import CheckResult, CommandResult, VerificationSpec, VerificationStatus
from .shell import DEFAULT_TIMEOUT, run_command

logger = logging.getLogger(__name__)


class Evaluator:
    """Evaluates VerificationSpecs against the local machine.

    Command-based checks record their output in ``outputs`` (for the health
    report) and ``outputContains`` checks with a ``version_id`` record the
    discovered version in ``discovered_versions``. Neither store is read back
    when evaluating.
    """

    def __init__(
        self,
        project_root: str | Path,
        runner: Runner | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        shell: str | None = None,
        login: bool = True,
        checks: dict[str, Check] | None = None,
    ):
        self.project_root = Path(project_root)
        self.timeout = timeout
        self.shell = shell
        self.login = login
        self.checks = dict(CHECKS if checks is None else checks)
        self.context = CheckContext(
            run=runner or self._run,
            project_root=self.project_root,
            env=os.environ if env is None else env,
        )

    @property
    def outputs(self):
        return self.context.outputs

    @property
    def discovered_versions(self) -> dict[str, str]:
        return self.context.discovered_versions

    def register(self, check: Check) -> None:
        """Add or replace the strategy for ``check.check_type``."""
        self.checks[check.check_type.value] = check

    async def _run(self, command: str) -> CommandResult:
        return await run_command(
            command,
            timeout=self.timeout,
            cwd=self.project_root,
            shell=self.shell,
            login=self.login,
        )

    async def evaluate(self, spec: VerificationSpec, section_id: str = "") -> CheckResult:
        check = self.checks.get(spec.check_type)
        if check is None:
            logger.warning("Unknown checkType %r for verification [%s]", spec.check_type, spec.id)
            return CheckResult(VerificationStatus.INVALID)
        try:
            return await check.evaluate(spec, self.context, section_id)
        except Exception:
            logger.exception("Error evaluating verification %s (id: %s)", spec.title, spec.id)
            return CheckResult(VerificationStatus.INVALID)

    def clear(self) -> None:
        """Forget recorded outputs and discovered versions."""
        self.context.outputs.clear()
        self.context.discovered_versions.clear()
