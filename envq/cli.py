"""envq CLI: typer-based command interface."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

app = typer.Typer(
    name="envq",
    help="envq — development environment verification and auto-setup",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Templates
# -------------------------------------------------------------------

DEFAULT_CONFIG_TEMPLATE = """\
# .envq/config.yaml: team-shared configuration
files:
  general: .envq/verifications.yaml
  sections: .envq/sections.yaml

timeouts:
  check_sec: 15
  fix_sec: 60

shell:
  # empty → $SHELL, then /bin/bash
  path: ""
  login: true

auto_setup:
  include_test_sections: false

notify:
  webhook_url: ""
  events:
    - autosetup.success
    - autosetup.failed
    - autosetup.stopped

log_level: WARNING
"""

DEFAULT_LOCAL_CONFIG_TEMPLATE = """\
# .envq/local.config.yaml: personal overrides (DO NOT commit)
# shell:
#   path: /bin/zsh
# notify:
#   webhook_url: https://hooks.example.com/envq
"""

EXAMPLE_VERIFICATIONS = """\
header:
  title: Development environment

categories:
  - category:
      title: Tools
      verifications:
        - id: gitInstalled
          title: Git is installed
          checkType: commandSuccess
          command: git --version
          fixCommand: echo "install git from https://git-scm.com"
          fixPriority: 1
        - id: homeSet
          title: HOME is set
          checkType: envVarExists
          variableName: HOME
"""

EXAMPLE_SECTIONS = """\
sections:
  - sectionId: example-service
    description: Example service checkout
    directoryPath: ./example-service
    verifications:
      - id: exampleServiceCloned
        title: Example service is cloned
        checkType: pathExists
        pathValue: ./example-service
        pathType: directory
        fixCommand: mkdir -p example-service
        fixPriority: 2
"""

GITIGNORE_ENTRIES = [
    ".envq/local.config.yaml",
    "envq-report.json",
]

_STATUS_ICONS = {
    "valid": "✅", "invalid": "❌", "waiting": "⏳",
    "success": "✅", "failed": "❌", "running": "🔄", "pending": "⏳",
    "stopped": "⏹️", "timeout": "⌛", "partial": "⚠️",
    "no_specific_checks": "⏭️",
}


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _get_project_root() -> Path:
    return Path.cwd()


def _run_async(coro):
    """Run an async coroutine from sync context."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(root: Path):
    from .config import ConfigError, load_config

    try:
        config = load_config(root)
    except ConfigError as exc:
        typer.echo(f"  Config Error: {exc}", err=True)
        raise typer.Exit(1)
    _configure_logging(config.log_level)
    return config


def _build_cache(config, bus=None):
    from .cache import VerificationCache
    from .evaluator import Evaluator
    from .git_ops import get_current_branch
    from .loader import load_verification_set

    evaluator = Evaluator(
        config.project_root,
        timeout=config.timeouts.check_sec,
        shell=config.shell_path,
        login=config.shell.login,
    )
    return VerificationCache(
        evaluator,
        lambda: load_verification_set(config),
        branch_lookup=get_current_branch,
        bus=bus,
    )


def _print_sections(sections: dict[str, dict[str, str]]) -> None:
    for key, entries in sections.items():
        branch = entries.get("gitBranch")
        suffix = f"  ({branch})" if branch and branch != "N/A" else ""
        typer.echo(f"\n  [{key}]{suffix}")
        for vid, status in entries.items():
            if vid == "gitBranch":
                continue
            value = getattr(status, "value", status)
            icon = _STATUS_ICONS.get(value, "  ")
            typer.echo(f"  {icon} {vid:<35} {value}")


def _print_groups(groups, command_statuses=None) -> None:
    for group in groups:
        typer.echo(f"\n  Priority {group.priority}  [{group.status.value}]")
        for cmd in group.commands:
            line = f"    - {cmd.title or cmd.id} ({cmd.category})"
            if command_statuses is not None:
                status = command_statuses.get(cmd.id)
                if status is not None:
                    line = f"    {_STATUS_ICONS.get(status.value, '  ')} {cmd.title or cmd.id} [{status.value}]"
            typer.echo(line)
            typer.echo(f"        $ {cmd.command}")


# -------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------

@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    if verbose:
        _configure_logging("DEBUG")


@app.command()
def init():
    """Initialize envq in the current project."""
    root = _get_project_root()

    from .config import CONFIG_DIR

    envq_dir = root / CONFIG_DIR
    envq_dir.mkdir(exist_ok=True)

    templates = [
        ("config.yaml", DEFAULT_CONFIG_TEMPLATE),
        ("local.config.yaml", DEFAULT_LOCAL_CONFIG_TEMPLATE),
        ("verifications.yaml", EXAMPLE_VERIFICATIONS),
        ("sections.yaml", EXAMPLE_SECTIONS),
    ]
    for name, content in templates:
        path = envq_dir / name
        if not path.exists():
            path.write_text(content)
            typer.echo(f"  Created {path.relative_to(root)}")
        else:
            typer.echo(f"  Exists  {path.relative_to(root)}")

    # .gitignore
    gitignore_path = root / ".gitignore"
    existing = ""
    if gitignore_path.exists():
        existing = gitignore_path.read_text()
    additions = [e for e in GITIGNORE_ENTRIES if e not in existing]
    if additions:
        with open(gitignore_path, "a") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write("# envq\n")
            for entry in additions:
                f.write(f"{entry}\n")
        typer.echo("  Updated .gitignore")

    typer.echo("\n  envq initialized. Run `envq verify` to check your environment.")


@app.command()
def verify(
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached results"),
):
    """Run every verification and show the results."""
    root = _get_project_root()
    config = _load(root)

    async def _verify():
        cache = _build_cache(config)

        def _progress(p):
            logger.info("Verification progress: %d/%d (%d%%)", p.completed, p.total, p.percentage)

        if refresh:
            return await cache.refresh(_progress), cache.verification_set
        return await cache.evaluate_all(_progress), cache.verification_set

    snapshot, vset = _run_async(_verify())
    if vset.total == 0 and not vset.sections:
        typer.echo("  No verifications configured.")
        return

    typer.echo("\n  envq — Environment Verification")
    typer.echo("  " + "─" * 50)
    _print_sections(snapshot.sections)

    if snapshot.discovered_versions:
        typer.echo("\n  Discovered versions:")
        for vid, version in snapshot.discovered_versions.items():
            typer.echo(f"    {vid}: {version}")
    typer.echo("")


@app.command()
def rerun(verification_id: str = typer.Argument(..., help="Verification ID")):
    """Re-run a single verification."""
    root = _get_project_root()
    config = _load(root)

    async def _rerun():
        return await _build_cache(config).rerun_one(verification_id)

    result = _run_async(_rerun())
    if not result.success:
        typer.echo(f"  Verification '{verification_id}' not found.")
        raise typer.Exit(1)
    icon = _STATUS_ICONS.get(result.result.value, "  ")
    typer.echo(f"  {icon} {verification_id} ({result.source}): {result.result.value}")


@app.command()
def fixes(
    include_test_sections: bool = typer.Option(
        False, "--include-test-sections", help="Also collect fixes from test sections"
    ),
):
    """Show fix commands for failing verifications, grouped by priority."""
    root = _get_project_root()
    config = _load(root)

    from .collector import collect_fix_commands

    async def _collect():
        cache = _build_cache(config)
        snapshot = await cache.evaluate_all()
        vset = cache.verification_set
        return collect_fix_commands(
            snapshot.sections,
            vset.categories,
            vset.sections,
            include_test_sections or config.auto_setup.include_test_sections,
        )

    groups = _run_async(_collect())
    if not groups:
        typer.echo("  No fix commands needed.")
        return

    typer.echo("\n  envq — Fix Commands")
    typer.echo("  " + "─" * 50)
    _print_groups(groups)
    typer.echo("")


@app.command()
def setup(
    include_test_sections: bool = typer.Option(
        False, "--include-test-sections", help="Also run fixes from test sections"
    ),
):
    """Verify, then run fix commands priority group by priority group."""
    root = _get_project_root()
    config = _load(root)

    from .autosetup import AutoSetupOrchestrator
    from .collector import collect_fix_commands
    from .events import AutoSetupNotice, EventBus
    from .executor import ShellCommandExecutor
    from .models import SessionStatus
    from .notifier import Notifier

    async def _setup():
        bus = EventBus()
        bus.subscribe(AutoSetupNotice, lambda e: typer.echo(f"  [{e.level}] {e.message}"))

        cache = _build_cache(config, bus)
        snapshot = await cache.evaluate_all()
        vset = cache.verification_set
        groups = collect_fix_commands(
            snapshot.sections,
            vset.categories,
            vset.sections,
            include_test_sections or config.auto_setup.include_test_sections,
        )
        if not groups:
            typer.echo("  Environment is already set up.")
            return SessionStatus.SUCCESS, None

        executor = ShellCommandExecutor(
            bus, shell=config.shell_path, login=config.shell.login, cwd=root
        )
        orchestrator = AutoSetupOrchestrator(
            executor, bus, rerun=cache.rerun_one, timeout_sec=config.timeouts.fix_sec
        )
        notifier = Notifier(config.notify.webhook_url, config.notify.events)
        notifier.watch(bus, orchestrator)
        try:
            orchestrator.prepare(groups)
            if not orchestrator.start():
                return orchestrator.status, orchestrator
            status = await orchestrator.wait()
        finally:
            await notifier.close()
        return status, orchestrator

    status, orchestrator = _run_async(_setup())
    if orchestrator is not None:
        typer.echo("\n  envq — Auto Setup")
        typer.echo("  " + "─" * 50)
        _print_groups(orchestrator.groups, orchestrator.command_statuses)
        progress = orchestrator.progress
        typer.echo(
            f"\n  {progress.completed}/{progress.total} commands succeeded "
            f"({progress.percentage}%) — {status.value}"
        )
    if status != SessionStatus.SUCCESS:
        raise typer.Exit(1)


@app.command("export")
def export_report(
    output: Path = typer.Option(None, "--output", "-o", help="Write the report to a file"),
):
    """Export a JSON health report of the environment."""
    root = _get_project_root()
    config = _load(root)

    from .report import build_health_report

    async def _export():
        cache = _build_cache(config)
        await cache.evaluate_all()
        return build_health_report(cache)

    report = _run_async(_export())
    text = json.dumps(report, indent=2, ensure_ascii=False)
    if output:
        output.write_text(text + "\n")
        typer.echo(f"  Wrote {output}")
    else:
        typer.echo(text)


@app.command("config")
def config_show():
    """Show merged configuration."""
    root = _get_project_root()

    from dataclasses import asdict

    import yaml

    config = _load(root)
    data = asdict(config)

    typer.echo("\n  envq — Merged Configuration")
    typer.echo("  " + "─" * 40)
    typer.echo(yaml.dump(data, default_flow_style=False, allow_unicode=True))


if __name__ == "__main__":
    app()
