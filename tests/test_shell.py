"""Tests for shell command execution (real /bin/sh, no login profile)."""

import pytest

from envq.shell import prepare_command, run_command, shell_argv


def test_shell_argv_login_flag():
    assert shell_argv("ls", "/bin/zsh") == ["/bin/zsh", "-l", "-c", "ls"]
    assert shell_argv("ls", "/bin/sh", login=False) == ["/bin/sh", "-c", "ls"]


def test_prepare_command_sources_nvm(tmp_path, monkeypatch):
    (tmp_path / "nvm.sh").write_text("")
    monkeypatch.setenv("NVM_DIR", str(tmp_path))
    assert prepare_command("nvm ls") == f'. "{tmp_path / "nvm.sh"}" && nvm ls'
    assert prepare_command("node -v") == "node -v"


@pytest.mark.asyncio
async def test_run_command_success():
    result = await run_command("echo hello; echo oops >&2", shell="/bin/sh", login=False)
    assert result.success
    assert result.exit_code == 0
    assert result.stdout == "hello"
    assert result.stderr == "oops"


@pytest.mark.asyncio
async def test_run_command_failure_keeps_output():
    result = await run_command("echo partial; exit 3", shell="/bin/sh", login=False)
    assert not result.success
    assert result.exit_code == 3
    assert result.stdout == "partial"


@pytest.mark.asyncio
async def test_run_command_timeout():
    result = await run_command("sleep 5", timeout=0.2, shell="/bin/sh", login=False)
    assert not result.success
    assert result.timed_out
    assert result.stderr == "Command timed out"


@pytest.mark.asyncio
async def test_run_command_cwd(tmp_path):
    result = await run_command("pwd", cwd=tmp_path, shell="/bin/sh", login=False)
    assert result.stdout.endswith(tmp_path.name)


@pytest.mark.asyncio
async def test_run_command_missing_shell():
    result = await run_command("true", shell="/nonexistent/shell", login=False)
    assert not result.success
    assert result.stderr
