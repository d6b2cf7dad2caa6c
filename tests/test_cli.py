"""Tests for CLI commands."""

import json

import pytest
from typer.testing import CliRunner

from envq.cli import app

runner = CliRunner()


@pytest.fixture
def setup_project(tmp_path):
    """Project whose only verification is fixed by a real shell command."""
    envq_dir = tmp_path / ".envq"
    envq_dir.mkdir()
    (envq_dir / "config.yaml").write_text("""\
timeouts:
  check_sec: 5
  fix_sec: 10
shell:
  path: /bin/sh
  login: false
""")
    (envq_dir / "verifications.yaml").write_text("""\
categories:
  - category:
      title: Files
      verifications:
        - id: markerPresent
          title: Marker file
          checkType: pathExists
          pathValue: ./marker
          pathType: file
          fixCommand: touch marker
          fixPriority: 1
""")
    return tmp_path


def test_init_creates_structure(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    for name in ("config.yaml", "local.config.yaml", "verifications.yaml", "sections.yaml"):
        assert (tmp_path / ".envq" / name).exists()
    gitignore = (tmp_path / ".gitignore").read_text()
    assert ".envq/local.config.yaml" in gitignore


def test_init_idempotent(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    runner.invoke(app, ["init"])
    (tmp_path / ".envq" / "config.yaml").write_text("log_level: INFO\n")
    runner.invoke(app, ["init"])
    assert "log_level: INFO" in (tmp_path / ".envq" / "config.yaml").read_text()
    assert (tmp_path / ".gitignore").read_text().count("# envq") == 1


def test_verify_lists_sections(tmp_project, monkeypatch):
    monkeypatch.chdir(tmp_project)
    result = runner.invoke(app, ["verify"])
    assert result.exit_code == 0
    assert "[general]" in result.output
    assert "[backendApi]" in result.output
    assert "homeSet" in result.output
    assert "no_specific_checks" in result.output


def test_verify_without_documents(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["verify", "--refresh"])
    assert result.exit_code == 0
    assert "No verifications configured" in result.output


def test_rerun(tmp_project, monkeypatch):
    monkeypatch.chdir(tmp_project)
    result = runner.invoke(app, ["rerun", "homeSet"])
    assert result.exit_code == 0
    assert "homeSet (general): valid" in result.output


def test_rerun_unknown(tmp_project, monkeypatch):
    monkeypatch.chdir(tmp_project)
    result = runner.invoke(app, ["rerun", "nope"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_fixes_skip_test_sections(tmp_project, monkeypatch):
    monkeypatch.chdir(tmp_project)
    result = runner.invoke(app, ["fixes"])
    assert result.exit_code == 0
    assert "Priority 2" in result.output
    assert "mkdir backend-api" in result.output
    assert "e2e --install" not in result.output

    result = runner.invoke(app, ["fixes", "--include-test-sections"])
    assert "e2e --install" in result.output


def test_setup_runs_fix_and_reverifies(setup_project, monkeypatch):
    monkeypatch.chdir(setup_project)
    result = runner.invoke(app, ["setup"])
    assert result.exit_code == 0, result.output
    assert (setup_project / "marker").is_file()
    assert "1/1 commands succeeded" in result.output

    result = runner.invoke(app, ["setup"])
    assert result.exit_code == 0
    assert "already set up" in result.output


def test_setup_failure_exits_nonzero(setup_project, monkeypatch):
    path = setup_project / ".envq" / "verifications.yaml"
    path.write_text(path.read_text().replace("touch marker", "exit 3"))
    monkeypatch.chdir(setup_project)
    result = runner.invoke(app, ["setup"])
    assert result.exit_code == 1
    assert "failed" in result.output


def test_export_writes_json(setup_project, monkeypatch):
    monkeypatch.chdir(setup_project)
    result = runner.invoke(app, ["export", "--output", "report.json"])
    assert result.exit_code == 0
    report = json.loads((setup_project / "report.json").read_text())
    assert report["sections"]["general"] == {"markerPresent": "invalid"}
    assert "platform" in report


def test_config_show(tmp_project, monkeypatch):
    monkeypatch.chdir(tmp_project)
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert "fix_sec: 30" in result.output
    assert "/bin/sh" in result.output


def test_invalid_config_exits(tmp_path, monkeypatch):
    (tmp_path / ".envq").mkdir()
    (tmp_path / ".envq" / "config.yaml").write_text("- nope\n")
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["verify"])
    assert result.exit_code == 1
