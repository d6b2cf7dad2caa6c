"""Three-layer config loading and merging."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = ".envq"


class ConfigError(Exception):
    """Raised when configuration is invalid."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class FilesConfig:
    general: str = f"{CONFIG_DIR}/verifications.yaml"
    sections: str = f"{CONFIG_DIR}/sections.yaml"


@dataclass
class TimeoutsConfig:
    check_sec: float = 15.0
    fix_sec: float = 60.0


@dataclass
class ShellConfig:
    path: str = ""  # empty → $SHELL, then /bin/bash
    login: bool = True


@dataclass
class AutoSetupConfig:
    include_test_sections: bool = False


@dataclass
class NotifyConfig:
    webhook_url: str = ""
    events: list[str] = field(default_factory=lambda: [
        "autosetup.success", "autosetup.failed", "autosetup.stopped",
    ])


@dataclass
class Config:
    files: FilesConfig = field(default_factory=FilesConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    auto_setup: AutoSetupConfig = field(default_factory=AutoSetupConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    log_level: str = "WARNING"
    project_root: str = ""

    @property
    def general_path(self) -> Path:
        return Path(self.project_root) / self.files.general

    @property
    def sections_path(self) -> Path:
        return Path(self.project_root) / self.files.sections

    @property
    def shell_path(self) -> str:
        return self.shell.path or os.environ.get("SHELL") or "/bin/bash"


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Field-level deep merge. Lists are replaced, None values ignored."""
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ---------------------------------------------------------------------------
# Dict → Config mapping
# ---------------------------------------------------------------------------

def _dict_to_config(data: dict, project_root: str) -> Config:
    cfg = Config(project_root=project_root)

    if "log_level" in data:
        cfg.log_level = str(data["log_level"]).upper()

    if "files" in data and isinstance(data["files"], dict):
        f = data["files"]
        cfg.files = FilesConfig(
            general=f.get("general", cfg.files.general),
            sections=f.get("sections", cfg.files.sections),
        )

    if "timeouts" in data and isinstance(data["timeouts"], dict):
        t = data["timeouts"]
        cfg.timeouts = TimeoutsConfig(
            check_sec=float(t.get("check_sec", cfg.timeouts.check_sec)),
            fix_sec=float(t.get("fix_sec", cfg.timeouts.fix_sec)),
        )

    if "shell" in data and isinstance(data["shell"], dict):
        s = data["shell"]
        cfg.shell = ShellConfig(
            path=s.get("path", cfg.shell.path),
            login=bool(s.get("login", cfg.shell.login)),
        )

    if "auto_setup" in data and isinstance(data["auto_setup"], dict):
        a = data["auto_setup"]
        cfg.auto_setup = AutoSetupConfig(
            include_test_sections=bool(
                a.get("include_test_sections", cfg.auto_setup.include_test_sections)
            ),
        )

    if "notify" in data and isinstance(data["notify"], dict):
        n = data["notify"]
        cfg.notify = NotifyConfig(
            webhook_url=n.get("webhook_url", ""),
            events=n.get("events", cfg.notify.events),
        )

    return cfg


def _read_yaml(path: Path) -> dict:
    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError(
            f"Invalid {path.name}: expected mapping, got {type(parsed).__name__}"
        )
    return parsed


# ---------------------------------------------------------------------------
# Load config (3-layer)
# ---------------------------------------------------------------------------

def load_config(project_root: str | Path) -> Config:
    """Load and merge config from up to 3 layers.

    Priority (highest first):
      1. Environment variables (ENVQ_SHELL, ENVQ_WEBHOOK_URL, ENVQ_LOG_LEVEL)
      2. .envq/local.config.yaml
      3. .envq/config.yaml
    """
    project_root = Path(project_root)
    config_dir = project_root / CONFIG_DIR

    # Layer 1: base config
    base_path = config_dir / "config.yaml"
    base_data: dict = {}
    if base_path.exists():
        base_data = _read_yaml(base_path)

    # Layer 2: local override; an unreadable file is skipped
    local_path = config_dir / "local.config.yaml"
    local_data: dict = {}
    if local_path.exists():
        try:
            local_data = _read_yaml(local_path)
        except (ConfigError, yaml.YAMLError) as exc:
            logger.warning("Ignoring %s: %s", local_path, exc)

    merged = deep_merge(base_data, local_data)
    cfg = _dict_to_config(merged, str(project_root))

    # Layer 3: env vars
    env_shell = os.environ.get("ENVQ_SHELL")
    if env_shell:
        cfg.shell.path = env_shell

    env_webhook = os.environ.get("ENVQ_WEBHOOK_URL")
    if env_webhook:
        cfg.notify.webhook_url = env_webhook

    env_level = os.environ.get("ENVQ_LOG_LEVEL")
    if env_level:
        cfg.log_level = env_level.upper()

    return cfg
