"""Shared fixtures: throwaway git repositories with a bare origin."""

import subprocess
from pathlib import Path

import pytest


def run_git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    """Write a file, commit it, and return the new HEAD sha."""
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    run_git(repo, "add", name)
    run_git(repo, "commit", "-q", "-m", message or f"Update {name}")
    return run_git(repo, "rev-parse", "HEAD")


@pytest.fixture(autouse=True)
def git_env(tmp_path_factory, monkeypatch):
    """Isolate git and settings from the developer's own configuration."""
    home = tmp_path_factory.mktemp("home")
    gitconfig = home / ".gitconfig"
    gitconfig.write_text(
        "[init]\n\tdefaultBranch = main\n"
        "[commit]\n\tgpgsign = false\n"
        "[push]\n\tdefault = simple\n"
        "[advice]\n\tdetachedHead = false\n"
    )
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.delenv("REPOBAR_LOCAL_CONFIG", raising=False)
    monkeypatch.delenv("REPOBAR_LOCAL_ROOT", raising=False)
    monkeypatch.delenv("REPOBAR_GIT", raising=False)


@pytest.fixture
def workspace(tmp_path) -> Path:
    return tmp_path.resolve()


@pytest.fixture
def origin(workspace) -> Path:
    """A bare origin with one commit on main."""
    seed = workspace / "seed"
    seed.mkdir()
    run_git(seed, "init", "-q", "-b", "main")
    commit_file(seed, "README.md", "hello\n", "Initial commit")
    bare = workspace / "origin.git"
    run_git(workspace, "clone", "-q", "--bare", str(seed), str(bare))
    return bare


@pytest.fixture
def clone(origin):
    """Factory cloning origin into a destination path."""

    def make(dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        run_git(dest.parent, "clone", "-q", str(origin), str(dest))
        return dest

    return make


@pytest.fixture
def local_repo(workspace) -> Path:
    """A repository with one commit and no remote."""
    repo = workspace / "standalone"
    repo.mkdir()
    run_git(repo, "init", "-q", "-b", "main")
    commit_file(repo, "README.md", "standalone\n", "Initial commit")
    return repo


@pytest.fixture
def hosting(workspace, origin) -> Path:
    """A directory laid out like a git host: hosting/foo/repo.git mirrors origin."""
    host = workspace / "hosting"
    (host / "foo").mkdir(parents=True)
    run_git(workspace, "clone", "-q", "--bare", str(origin), str(host / "foo" / "repo.git"))
    return host
