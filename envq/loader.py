"""Load verification documents → VerificationSet."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml

from .config import Config, ConfigError
from .models import (
    GENERAL_SECTION,
    Category,
    CheckType,
    SectionConfig,
    VerificationSet,
    VerificationSpec,
)

logger = logging.getLogger(__name__)

_SECTION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_KEBAB_RE = re.compile(r"-([a-z0-9])")


# -------------------------------------------------------------------
# Section identifiers
# -------------------------------------------------------------------

def normalize_section_id(section_id: str) -> str:
    """Convert a kebab-case section id to its camelCase cache key.

    >>> normalize_section_id("backend-api")
    'backendApi'
    """
    if not isinstance(section_id, str) or not _SECTION_ID_RE.match(section_id):
        raise ConfigError(f"Invalid section id: {section_id!r}")
    key = _KEBAB_RE.sub(lambda m: m.group(1).upper(), section_id)
    if key == GENERAL_SECTION:
        raise ConfigError(f"Section id {section_id!r} collides with the general section")
    return key


# -------------------------------------------------------------------
# Parsing
# -------------------------------------------------------------------

def parse_verification(data: dict) -> VerificationSpec:
    """Map one camelCase verification mapping to a VerificationSpec."""
    if not isinstance(data, dict):
        raise ConfigError(f"Verification must be a mapping, got {type(data).__name__}")
    vid = data.get("id")
    if not vid:
        raise ConfigError(f"Verification without id: {data.get('title', '?')!r}")

    expected = data.get("expectedValue")
    if isinstance(expected, list):
        expected = [str(v) for v in expected]
    elif expected is not None:
        expected = str(expected)

    priority = data.get("fixPriority")
    if priority is not None:
        try:
            priority = int(priority)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Verification {vid!r}: bad fixPriority {priority!r}") from exc

    return VerificationSpec(
        id=str(vid),
        title=data.get("title", "") or str(vid),
        check_type=data.get("checkType") or CheckType.COMMAND_SUCCESS.value,
        command=data.get("command", "") or "",
        expected_value=expected,
        output_stream=data.get("outputStream", "any") or "any",
        variable_name=data.get("variableName", "") or "",
        path_value=data.get("pathValue", "") or "",
        path_type=data.get("pathType", "") or "",
        fix_command=data.get("fixCommand", "") or "",
        fix_priority=priority,
        version_id=data.get("versionId", "") or "",
    )


def parse_general(data: dict | None) -> tuple[list[Category], dict]:
    """Parse the general verification document.

    Returns (categories, header).
    """
    if data is None:
        return [], {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping, got {type(data).__name__}")

    categories: list[Category] = []
    for item in data.get("categories") or []:
        cat = item.get("category") if isinstance(item, dict) else None
        if not isinstance(cat, dict):
            raise ConfigError("Each categories entry needs a 'category' mapping")
        categories.append(Category(
            title=cat.get("title", ""),
            description=cat.get("description", ""),
            verifications=[parse_verification(v) for v in cat.get("verifications") or []],
        ))
    check_unique_ids(categories, [])
    return categories, data.get("header") or {}


def parse_sections(data: dict | list | None) -> list[SectionConfig]:
    """Parse the sections document. Key collisions are errors."""
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("sections") or []
    if not isinstance(data, list):
        raise ConfigError(f"Expected list of sections, got {type(data).__name__}")

    sections: list[SectionConfig] = []
    seen: dict[str, str] = {}
    for raw in data:
        if not isinstance(raw, dict):
            raise ConfigError("Each section must be a mapping")
        section_id = raw.get("sectionId", "")
        key = normalize_section_id(section_id)
        if key in seen:
            raise ConfigError(
                f"Sections {seen[key]!r} and {section_id!r} share cache key {key!r}"
            )
        seen[key] = section_id
        sections.append(SectionConfig(
            section_id=section_id,
            key=key,
            description=raw.get("description", ""),
            directory_path=raw.get("directoryPath", "") or "",
            skip_verification=bool(raw.get("skipVerification", False)),
            test_section=bool(raw.get("testSection", False)),
            verifications=[parse_verification(v) for v in raw.get("verifications") or []],
        ))
    check_unique_ids([], sections)
    return sections


def check_unique_ids(categories: list[Category], sections: list[SectionConfig]) -> None:
    """Raise ConfigError when two verifications share an id.

    Ids key fix commands and rerun lookups, so they must be unique across
    the general document and every section.
    """
    owners: dict[str, str] = {}
    declared = [(GENERAL_SECTION, v) for cat in categories for v in cat.verifications]
    declared += [(s.section_id, v) for s in sections for v in s.verifications]
    for owner, spec in declared:
        if spec.id in owners:
            raise ConfigError(
                f"Verification id {spec.id!r} declared in both {owners[spec.id]!r} and {owner!r}"
            )
        owners[spec.id] = owner


# -------------------------------------------------------------------
# Loading
# -------------------------------------------------------------------

def _load_document(path: Path):
    if not path.exists():
        logger.warning("Verification document not found: %s", path)
        return None
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def load_general(path: Path) -> tuple[list[Category], dict]:
    try:
        return parse_general(_load_document(path))
    except (OSError, yaml.YAMLError, ConfigError) as exc:
        logger.error("Error reading %s, using empty configuration: %s", path, exc)
        return [], {}


def load_sections(path: Path) -> list[SectionConfig]:
    try:
        return parse_sections(_load_document(path))
    except (OSError, yaml.YAMLError, ConfigError) as exc:
        logger.error("Error reading %s, using empty configuration: %s", path, exc)
        return []


def load_verification_set(config: Config) -> VerificationSet:
    """Read both documents. Never raises; broken documents load as empty."""
    categories, header = load_general(config.general_path)
    sections = load_sections(config.sections_path)
    try:
        check_unique_ids(categories, sections)
    except ConfigError as exc:
        logger.error("Error reading %s, using empty configuration: %s", config.sections_path, exc)
        sections = []
    return VerificationSet(categories=categories, sections=sections, header=header)
