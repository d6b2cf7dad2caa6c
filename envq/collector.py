"""Fix-command collection and priority-group status rules."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .models import (
    DEFAULT_FIX_PRIORITY,
    GENERAL_SECTION,
    Category,
    CommandStatus,
    FixCommand,
    GroupStatus,
    PriorityGroup,
    SectionConfig,
    VerificationStatus,
)

SectionStatuses = Mapping[str, Mapping[str, str]]


def _priority(value: int | None) -> int:
    return DEFAULT_FIX_PRIORITY if value is None else value


def collect_fix_commands(
    statuses: SectionStatuses,
    categories: Sequence[Category],
    sections: Sequence[SectionConfig],
    include_test_sections: bool = False,
) -> list[PriorityGroup]:
    """Group fix commands of invalid verifications by priority (ascending).

    *statuses* maps section key → verification id → status (the cache
    contents). Verifications from test sections are skipped unless
    *include_test_sections* is set.
    """
    by_priority: dict[int, list[FixCommand]] = {}

    general = statuses.get(GENERAL_SECTION) or {}
    for category in categories:
        for spec in category.verifications:
            if general.get(spec.id) != VerificationStatus.INVALID or not spec.fix_command:
                continue
            priority = _priority(spec.fix_priority)
            by_priority.setdefault(priority, []).append(FixCommand(
                id=spec.id,
                title=spec.title,
                command=spec.fix_command,
                source="general",
                category=category.title,
                priority=priority,
            ))

    for section in sections:
        if section.test_section and not include_test_sections:
            continue
        section_statuses = statuses.get(section.key) or {}
        for spec in section.verifications:
            if section_statuses.get(spec.id) != VerificationStatus.INVALID or not spec.fix_command:
                continue
            priority = _priority(spec.fix_priority)
            by_priority.setdefault(priority, []).append(FixCommand(
                id=spec.id,
                title=spec.title,
                command=spec.fix_command,
                source="section",
                category=section.description or section.section_id,
                priority=priority,
                section_id=section.section_id,
            ))

    return [
        PriorityGroup(priority=p, commands=by_priority[p])
        for p in sorted(by_priority)
    ]


def calculate_group_status(
    commands: Sequence[FixCommand],
    command_statuses: Mapping[str, str],
) -> GroupStatus:
    """Aggregate member statuses; the first matching rule wins."""
    if not commands:
        return GroupStatus.WAITING

    statuses = [command_statuses.get(c.id, CommandStatus.PENDING) for c in commands]

    if CommandStatus.RUNNING in statuses:
        return GroupStatus.RUNNING
    if all(s == CommandStatus.SUCCESS for s in statuses):
        return GroupStatus.SUCCESS
    if CommandStatus.FAILED in statuses or CommandStatus.TIMEOUT in statuses:
        return GroupStatus.FAILED
    if CommandStatus.SUCCESS in statuses and all(
        s in (CommandStatus.SUCCESS, CommandStatus.STOPPED) for s in statuses
    ):
        return GroupStatus.PARTIAL
    return GroupStatus.WAITING


def can_group_start(
    groups: Sequence[PriorityGroup],
    index: int,
    command_statuses: Mapping[str, str],
) -> bool:
    """True for the first group, or when every earlier group succeeded."""
    if index == 0:
        return True
    return all(
        calculate_group_status(groups[i].commands, command_statuses) == GroupStatus.SUCCESS
        for i in range(index)
    )
