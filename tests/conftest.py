"""Shared fixtures for the Nabu test-suite."""

import shutil
import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest


def git(repo: Path, *args: str) -> str:
    """Runs a git command in `repo` and returns its stripped stdout."""
    res = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


@pytest.fixture(autouse=True, scope="session")
def isolated_config(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keeps the user's global config and log file out of every test."""
    home = tmp_path_factory.mktemp("home")
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("nabu.config.CONFIG_FILE", home / "nabu.toml")
        mp.setattr("nabu.cli.CONFIG_FILE", home / "nabu.toml")
        mp.setattr("nabu.cli.LOG_FILE", home / "state" / "nabu.log")
        yield


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Creates a real repository with one commit tracking `README`."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.name", "Nabu Test")
    git(repo, "config", "user.email", "nabu@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README").write_text("original\n")
    git(repo, "add", "README")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def empty_repo(tmp_path: Path) -> Path:
    """Creates a real repository on an unborn branch."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "fresh"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.name", "Nabu Test")
    git(repo, "config", "user.email", "nabu@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    return repo
