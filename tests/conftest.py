"""Shared test fixtures and configuration for crony tests."""

import subprocess
import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))


def run_git(cwd: Path, *args: str) -> str:
    """Run git for test setup and return its output."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    return result.stdout


@pytest.fixture
def git_cmd():
    """Helper running git for test setup."""
    return run_git


@pytest.fixture
def git_env(tmp_path, monkeypatch):
    """Isolate git from the user's configuration and give it an identity."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("GIT_CONFIG_GLOBAL", raising=False)
    monkeypatch.setenv("GIT_AUTHOR_NAME", "crony")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "crony@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "crony")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "crony@example.com")
    return home


@pytest.fixture
def origin(tmp_path, git_env):
    """Bare origin repository holding a one-line crontab."""
    bare = tmp_path / "origin.git"
    run_git(tmp_path, "init", "--bare", str(bare))
    run_git(bare, "symbolic-ref", "HEAD", "refs/heads/master")

    seed = tmp_path / "seed"
    run_git(tmp_path, "clone", str(bare), str(seed))
    run_git(seed, "symbolic-ref", "HEAD", "refs/heads/master")
    (seed / "crontab").write_text("* * * * * echo hello\n")
    run_git(seed, "add", "crontab")
    run_git(seed, "commit", "-m", "Add crontab")
    run_git(seed, "push", "-u", "origin", "HEAD")
    return bare


@pytest.fixture
def seed(origin, tmp_path):
    """Independent clone of origin used to make upstream changes."""
    return tmp_path / "seed"


@pytest.fixture
def workdir_root(tmp_path):
    root = tmp_path / "checkouts"
    root.mkdir()
    return root


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
