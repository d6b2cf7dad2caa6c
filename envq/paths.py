"""Placeholder substitution and path checks for pathExists verifications."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from .models import VerificationStatus

_VAR_RE = re.compile(r"\$\{(\w+)\}|\$(\w+)")


def resolve_placeholders(
    value: str | None,
    project_root: str | Path,
    env: Mapping[str, str] | None = None,
) -> str:
    """Substitute home/user/workspace placeholders in *value*.

    Supported: ``~`` (leading), ``$HOME``, ``$USER``, ``$WORKSPACE``
    (the project root) and ``$GOPATH`` when it is set. Both ``$NAME`` and
    ``${NAME}`` forms work. Unknown variables are left untouched.
    """
    if not value:
        return ""
    env = os.environ if env is None else env
    home = env.get("HOME") or str(Path.home())
    known = {
        "HOME": home,
        "USER": env.get("USER") or env.get("USERNAME") or "",
        "WORKSPACE": str(project_root),
    }
    if env.get("GOPATH"):
        known["GOPATH"] = env["GOPATH"]

    def _sub(m: re.Match) -> str:
        name = m.group(1) or m.group(2)
        return known.get(name, m.group(0))

    resolved = _VAR_RE.sub(_sub, value)
    if resolved == "~" or resolved.startswith("~/"):
        resolved = home + resolved[1:]
    return resolved


def resolve_path(
    value: str,
    project_root: str | Path,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Resolve a configured path against *project_root*.

    ``./x`` is root-relative, every leading ``../`` climbs one level above
    the root, absolute paths are kept, anything else is root-relative.
    """
    if not value:
        raise ValueError("empty path")
    root = Path(project_root)
    resolved = resolve_placeholders(value, root, env)

    if resolved.startswith("./"):
        return root / resolved[2:]
    if resolved.startswith("../"):
        base = root
        rest = resolved
        while rest.startswith("../"):
            base = base.parent
            rest = rest[3:]
        return base / rest if rest else base
    path = Path(resolved)
    if path.is_absolute():
        return path
    return root / path


def check_path(path: Path, path_type: str = "") -> VerificationStatus:
    """valid iff *path* exists and matches *path_type* (file/directory/either)."""
    try:
        if path_type == "directory":
            ok = path.is_dir()
        elif path_type == "file":
            ok = path.is_file()
        else:
            ok = path.is_file() or path.is_dir()
    except OSError:
        ok = False
    return VerificationStatus.VALID if ok else VerificationStatus.INVALID
