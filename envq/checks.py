"""Check strategies: one class per verification check type."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .models import (
    CheckResult,
    CheckType,
    CommandResult,
    VerificationOutput,
    VerificationSpec,
    VerificationStatus,
)
from .paths import check_path, resolve_path, resolve_placeholders

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"v\d+\.\d+\.\d+")

Runner = Callable[[str], Awaitable[CommandResult]]


@dataclass
class CheckContext:
    """What a check may touch: a command runner, env, and the side stores."""

    run: Runner
    project_root: Path
    env: Mapping[str, str]
    outputs: dict[str, VerificationOutput] = field(default_factory=dict)
    discovered_versions: dict[str, str] = field(default_factory=dict)

    def resolve(self, value: str | None) -> str:
        return resolve_placeholders(value, self.project_root, self.env)

    def record_output(
        self,
        spec: VerificationSpec,
        result: CommandResult,
        status: VerificationStatus,
        section_id: str = "",
        expected_value: str | list[str] | None = None,
    ) -> None:
        self.outputs[spec.id] = VerificationOutput(
            command=spec.command,
            stdout=result.stdout,
            stderr=result.stderr,
            status=status,
            title=spec.title,
            section_id=section_id,
            expected_value=expected_value,
            output_stream=spec.output_stream if expected_value is not None else "",
        )

    def record_version(self, version_id: str, version: str) -> None:
        # first discovery wins
        self.discovered_versions.setdefault(version_id, version)


class Check(Protocol):
    check_type: CheckType

    async def evaluate(
        self, spec: VerificationSpec, ctx: CheckContext, section_id: str = ""
    ) -> CheckResult: ...


def _status(ok: bool) -> VerificationStatus:
    return VerificationStatus.VALID if ok else VerificationStatus.INVALID


def select_output(result: CommandResult, stream: str) -> str:
    if stream == "stdout":
        return result.stdout
    if stream == "stderr":
        return result.stderr
    return "\n".join(part for part in (result.stdout, result.stderr) if part)


def find_match(output: str, expected: list[str] | str) -> str | None:
    """Return the first expected value found in *output*, else None.

    A list is a set of alternative substrings tried in order; an empty
    alternative matches any output. A single string is matched literally
    (regex-escaped).
    """
    if isinstance(expected, list):
        for value in expected:
            if value in output:
                return value
        return None
    if re.search(re.escape(expected), output):
        return expected
    return None


def extract_version(output: str, needle: str) -> str | None:
    """vMAJOR.MINOR.PATCH from the first line containing *needle* that has one."""
    for line in output.splitlines():
        if needle in line:
            m = _VERSION_RE.search(line)
            if m:
                return m.group(0)
    return None


# -------------------------------------------------------------------
# Strategies
# -------------------------------------------------------------------

class CommandSuccessCheck:
    check_type = CheckType.COMMAND_SUCCESS

    async def evaluate(self, spec, ctx, section_id=""):
        if not spec.command:
            logger.warning("Verification [%s] is commandSuccess but has no command", spec.id)
            return CheckResult(VerificationStatus.INVALID)
        result = await ctx.run(spec.command)
        status = _status(result.success)
        ctx.record_output(spec, result, status, section_id)
        return CheckResult(status, select_output(result, "any"))


class OutputContainsCheck:
    check_type = CheckType.OUTPUT_CONTAINS

    async def evaluate(self, spec, ctx, section_id=""):
        if not spec.command:
            logger.warning("Verification [%s] is outputContains but has no command", spec.id)
            return CheckResult(VerificationStatus.INVALID)
        # Exit code is ignored: some tools print their version and exit non-zero.
        result = await ctx.run(spec.command)
        output = select_output(result, spec.output_stream)

        expected = spec.expected_value
        if isinstance(expected, list):
            expected = [ctx.resolve(v) for v in expected]
        elif expected:
            expected = ctx.resolve(expected)

        if not expected:
            status = _status(output.strip() != "")
        else:
            match = find_match(output, expected)
            status = _status(match is not None)
            if match is not None and spec.version_id:
                version = extract_version(output, match)
                if version:
                    ctx.record_version(spec.version_id, version)

        ctx.record_output(spec, result, status, section_id, expected_value=expected or "")
        return CheckResult(status, output)


class EnvVarExistsCheck:
    check_type = CheckType.ENV_VAR_EXISTS

    async def evaluate(self, spec, ctx, section_id=""):
        value = ctx.env.get(spec.variable_name) if spec.variable_name else None
        return CheckResult(_status(bool(value)), value or "")


class EnvVarEqualsCheck:
    check_type = CheckType.ENV_VAR_EQUALS

    async def evaluate(self, spec, ctx, section_id=""):
        if spec.expected_value is None or isinstance(spec.expected_value, list):
            logger.warning("Verification [%s] is envVarEquals without a single expectedValue", spec.id)
            return CheckResult(VerificationStatus.INVALID)
        value = ctx.env.get(spec.variable_name) if spec.variable_name else None
        expected = ctx.resolve(spec.expected_value)
        return CheckResult(_status(value is not None and value == expected), value or "")


class PathExistsCheck:
    check_type = CheckType.PATH_EXISTS

    async def evaluate(self, spec, ctx, section_id=""):
        try:
            path = resolve_path(spec.path_value, ctx.project_root, ctx.env)
        except ValueError as exc:
            logger.warning("Verification [%s]: cannot resolve path: %s", spec.id, exc)
            return CheckResult(VerificationStatus.INVALID)
        status = check_path(path, spec.path_type)
        logger.debug("Path verification %s: %s -> %s (%s)", spec.id, spec.path_value, path, status.value)
        return CheckResult(status, str(path))


CHECKS: dict[str, Check] = {
    check.check_type.value: check
    for check in (
        CommandSuccessCheck(),
        OutputContainsCheck(),
        EnvVarExistsCheck(),
        EnvVarEqualsCheck(),
        PathExistsCheck(),
    )
}
