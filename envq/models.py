"""Core data models for envq."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Priority given to fix commands that do not declare one.
DEFAULT_FIX_PRIORITY = 999

GENERAL_SECTION = "general"


class VerificationStatus(str, Enum):
    WAITING = "waiting"
    VALID = "valid"
    INVALID = "invalid"


class CheckType(str, Enum):
    COMMAND_SUCCESS = "commandSuccess"
    OUTPUT_CONTAINS = "outputContains"
    ENV_VAR_EXISTS = "envVarExists"
    ENV_VAR_EQUALS = "envVarEquals"
    PATH_EXISTS = "pathExists"


class CommandStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self not in (CommandStatus.PENDING, CommandStatus.RUNNING)


class GroupStatus(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class SessionStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"


class Outcome(str, Enum):
    """How the executor says a process ended."""

    NORMAL = "normal"
    STOPPED = "stopped"


@dataclass(frozen=True)
class VerificationSpec:
    """A single verification as declared in configuration."""

    id: str
    title: str = ""
    check_type: str = CheckType.COMMAND_SUCCESS.value
    command: str = ""
    expected_value: str | list[str] | None = None
    output_stream: str = "any"  # "stdout" | "stderr" | "any"
    variable_name: str = ""
    path_value: str = ""
    path_type: str = ""  # "file" | "directory" | "" (either)
    fix_command: str = ""
    fix_priority: int | None = None
    version_id: str = ""


@dataclass
class Category:
    """A titled group of general verifications."""

    title: str
    verifications: list[VerificationSpec] = field(default_factory=list)
    description: str = ""


@dataclass
class SectionConfig:
    """Verifications tied to one project/component."""

    section_id: str
    key: str  # normalized cache key
    description: str = ""
    directory_path: str = ""
    skip_verification: bool = False
    test_section: bool = False
    verifications: list[VerificationSpec] = field(default_factory=list)


@dataclass
class VerificationSet:
    """Everything loaded from the verification documents."""

    categories: list[Category] = field(default_factory=list)
    sections: list[SectionConfig] = field(default_factory=list)
    header: dict = field(default_factory=dict)

    @property
    def total(self) -> int:
        general = sum(len(c.verifications) for c in self.categories)
        return general + sum(
            len(s.verifications) for s in self.sections if not s.skip_verification
        )


@dataclass
class CommandResult:
    """Result of running a shell command to completion."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False


@dataclass
class CheckResult:
    status: VerificationStatus
    output: str = ""


@dataclass
class VerificationOutput:
    """Diagnostics recorded for a command-based check."""

    command: str
    stdout: str
    stderr: str
    status: VerificationStatus
    title: str = ""
    section_id: str = ""
    expected_value: str | list[str] | None = None
    output_stream: str = ""


@dataclass
class Progress:
    completed: int
    total: int
    percentage: int

    @classmethod
    def of(cls, completed: int, total: int) -> "Progress":
        percentage = round(completed / total * 100) if total else 0
        return cls(completed=completed, total=total, percentage=percentage)


@dataclass
class RerunResult:
    success: bool
    verification_id: str
    result: VerificationStatus | None = None
    source: str = ""
    error: str = ""


@dataclass
class CacheSnapshot:
    """Copy of the cache contents at one point in time."""

    sections: dict[str, dict[str, str]] = field(default_factory=dict)
    discovered_versions: dict[str, str] = field(default_factory=dict)

    @property
    def general(self) -> dict[str, str]:
        return self.sections.get(GENERAL_SECTION, {})

    def status_of(self, section_key: str, verification_id: str) -> str | None:
        return self.sections.get(section_key, {}).get(verification_id)


@dataclass(frozen=True)
class FixCommand:
    """An invalid verification's remediation command."""

    id: str
    title: str
    command: str
    source: str  # "general" | "section"
    category: str
    priority: int = DEFAULT_FIX_PRIORITY
    section_id: str = ""


@dataclass
class PriorityGroup:
    priority: int
    commands: list[FixCommand] = field(default_factory=list)
    status: GroupStatus = GroupStatus.WAITING


@dataclass
class AutoSetupProgress:
    completed: int
    total: int
    percentage: int

    @property
    def is_empty(self) -> bool:
        """Nothing to do (no fix commands at all)."""
        return self.total == 0
