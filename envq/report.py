"""Health report: everything the cache and evaluator know, as plain data."""

from __future__ import annotations

import platform
from dataclasses import asdict
from datetime import datetime, timezone

from .cache import VerificationCache


def _plain(value):
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if hasattr(value, "value") and isinstance(value, str):
        return value.value
    return value


def platform_info() -> dict:
    return {
        "system": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
        "node": platform.node(),
        "python": platform.python_version(),
    }


def build_health_report(cache: VerificationCache) -> dict:
    """JSON-serialisable snapshot for sharing with whoever debugs the setup."""
    snapshot = cache.snapshot()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "platform": platform_info(),
        "header": cache.verification_set.header,
        "sections": _plain(snapshot.sections),
        "outputs": {
            vid: _plain(asdict(record))
            for vid, record in cache.evaluator.outputs.items()
        },
        "discovered_versions": snapshot.discovered_versions,
    }
