"""Tests for git operations."""

import subprocess

import pytest

from envq.git_ops import get_current_branch


@pytest.fixture
def git_repo(tmp_path):
    """Initialize a real git repo with initial branch 'main'."""
    subprocess.run(["git", "init", "-b", "main"], cwd=tmp_path, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.email", "test@test.com"],
                   cwd=tmp_path, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.name", "test"],
                   cwd=tmp_path, check=True, capture_output=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"],
                   cwd=tmp_path, check=True, capture_output=True)
    (tmp_path / "README.md").write_text("# Test")
    subprocess.run(["git", "add", "."], cwd=tmp_path, check=True, capture_output=True)
    subprocess.run(["git", "commit", "--no-gpg-sign", "-m", "init"],
                   cwd=tmp_path, check=True, capture_output=True)
    return tmp_path


@pytest.mark.asyncio
async def test_current_branch(git_repo):
    assert await get_current_branch(git_repo) == "main"


@pytest.mark.asyncio
async def test_switched_branch(git_repo):
    subprocess.run(["git", "checkout", "-b", "feature/login"],
                   cwd=git_repo, check=True, capture_output=True)
    assert await get_current_branch(git_repo) == "feature/login"


@pytest.mark.asyncio
async def test_not_a_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    assert await get_current_branch(tmp_path) == "N/A"


@pytest.mark.asyncio
async def test_missing_directory(tmp_path):
    assert await get_current_branch(tmp_path / "gone") == "N/A"
