"""Tests for the command-line interface."""

import json

import pytest
from conftest import commit_file, run_git
from typer.testing import CliRunner

from repobar_local import __version__
from repobar_local.cli import app

runner = CliRunner()


@pytest.fixture
def projects(workspace, clone, monkeypatch):
    """A projects root with repo-a ahead of origin's old tip and repo-b behind."""
    root = workspace / "projects"
    repo_a = clone(root / "repo-a")
    repo_b = clone(root / "group" / "repo-b")
    commit_file(repo_a, "a.txt", "a\n")
    run_git(repo_a, "push", "-q")
    monkeypatch.setenv("REPOBAR_LOCAL_ROOT", str(root))
    return root, repo_a, repo_b


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_schema(self):
        result = runner.invoke(app, ["--schema"])
        assert result.exit_code == 0
        schema = json.loads(result.stdout)
        names = [tool["name"] for tool in schema["tools"]]
        assert "local" in names
        assert "local reset" in names
        assert "local switch" in names
        assert "checkout" in names


class TestLocal:
    """`local` scans the configured root."""

    def test_json_listing(self, projects):
        root, repo_a, repo_b = projects

        result = runner.invoke(app, ["local", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["discoveredRepoCount"] == 2
        assert [s["path"] for s in data["statuses"]] == [str(repo_b), str(repo_a)]
        assert data["syncResults"] == []

    def test_root_and_depth_options(self, projects):
        root, repo_a, _ = projects

        result = runner.invoke(app, ["local", "--root", str(root), "--depth", "1", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [s["path"] for s in data["statuses"]] == [str(repo_a)]

    def test_sync_flag(self, projects):
        _, repo_a, repo_b = projects

        result = runner.invoke(app, ["local", "--sync", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["syncedPaths"] == [str(repo_b)]
        assert run_git(repo_b, "rev-parse", "HEAD") == run_git(repo_a, "rev-parse", "HEAD")

    def test_limit(self, projects):
        result = runner.invoke(app, ["local", "--limit", "1", "--json"])

        data = json.loads(result.stdout)
        assert len(data["statuses"]) == 1
        assert data["discoveredRepoCount"] == 2

    def test_table_output(self, projects):
        result = runner.invoke(app, ["local"])

        assert result.exit_code == 0, result.output
        assert "repo-a" in result.stdout
        assert "Discovered" in result.stdout

    def test_sync_summary_counts_updated_repositories(self, projects):
        result = runner.invoke(app, ["local", "--sync"])

        assert result.exit_code == 0, result.output
        assert "Auto-sync:" in result.stdout
        assert "1 updated" in result.stdout

    def test_missing_root_is_an_error(self, monkeypatch):
        monkeypatch.delenv("REPOBAR_LOCAL_ROOT", raising=False)

        result = runner.invoke(app, ["local"])

        assert result.exit_code == 1
        assert "root path" in result.output


class TestLocalActions:
    def test_sync_by_name(self, projects):
        _, _, repo_b = projects

        result = runner.invoke(app, ["local", "sync", "repo-b", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["action"] == "sync"
        assert data["path"] == str(repo_b)
        assert data["success"] is True
        assert data["didFetch"] is True
        assert data["didPull"] is True
        assert data["didPush"] is False

    def test_sync_by_path(self, projects):
        _, repo_a, _ = projects

        result = runner.invoke(app, ["local", "sync", str(repo_a), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["path"] == str(repo_a)
        assert data["didPull"] is False

    def test_unknown_target(self, projects):
        result = runner.invoke(app, ["local", "sync", "nope"])

        assert result.exit_code == 1
        assert "No local repository matched nope" in result.output

    def test_reset_refuses_without_yes(self, projects):
        _, _, repo_b = projects
        local = commit_file(repo_b, "b.txt", "b\n")

        result = runner.invoke(app, ["local", "reset", str(repo_b)])

        assert result.exit_code == 1
        assert "Refusing to hard reset" in result.output
        assert run_git(repo_b, "rev-parse", "HEAD") == local

    def test_reset_with_yes(self, projects):
        _, repo_a, repo_b = projects
        commit_file(repo_b, "b.txt", "b\n")

        result = runner.invoke(app, ["local", "reset", "repo-b", "--yes", "--json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["action"] == "reset"
        assert run_git(repo_b, "rev-parse", "HEAD") == run_git(repo_a, "rev-parse", "HEAD")

    def test_rebase(self, projects):
        _, _, repo_b = projects
        commit_file(repo_b, "b.txt", "b\n")

        result = runner.invoke(app, ["local", "rebase", str(repo_b)])

        assert result.exit_code == 0, result.output
        assert "Rebased" in result.stdout
        assert run_git(repo_b, "rev-list", "--count", "@{u}..HEAD") == "1"

    def test_sync_dirty_repository_fails(self, projects):
        _, _, repo_b = projects
        (repo_b / "README.md").write_text("local edit\n")

        result = runner.invoke(app, ["local", "sync", str(repo_b)])

        assert result.exit_code == 1
        assert "uncommitted changes" in result.output


class TestBranchesAndWorktrees:
    def test_branches_json(self, projects):
        _, repo_a, _ = projects

        result = runner.invoke(app, ["local", "branches", str(repo_a), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["path"] == str(repo_a)
        assert data["detached"] is False
        assert [b["name"] for b in data["branches"]] == ["main"]
        assert data["branches"][0]["isCurrent"] is True

    def test_worktrees_json(self, projects, workspace):
        _, repo_a, _ = projects
        linked = workspace / "repo-a-feature"
        run_git(repo_a, "worktree", "add", "-q", "-b", "feature", str(linked))

        result = runner.invoke(app, ["worktrees", "repo-a", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["path"] == str(repo_a)
        branches = sorted(w["branch"] for w in data["worktrees"])
        assert branches == ["feature", "main"]

    def test_switch_branch(self, projects):
        _, repo_a, _ = projects
        run_git(repo_a, "branch", "topic")

        result = runner.invoke(app, ["local", "switch", "repo-a", "topic", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["action"] == "switch"
        assert data["branch"] == "topic"
        assert data["path"] == str(repo_a)
        assert run_git(repo_a, "symbolic-ref", "--short", "HEAD") == "topic"

    def test_switch_unknown_branch_fails(self, projects):
        _, repo_a, _ = projects

        result = runner.invoke(app, ["local", "switch", str(repo_a), "no-such-branch"])

        assert result.exit_code == 1
        assert "switch failed" in result.output
        assert run_git(repo_a, "symbolic-ref", "--short", "HEAD") == "main"


class TestCheckout:
    """`checkout` clones owner/name from the configured host."""

    @pytest.fixture
    def settings_file(self, workspace, hosting, monkeypatch):
        path = workspace / "settings.json"
        path.write_text(json.dumps({"githubHost": str(hosting)}))
        monkeypatch.setenv("REPOBAR_LOCAL_CONFIG", str(path))
        return path

    def test_clones_into_configured_root(self, projects, settings_file):
        root, _, _ = projects

        result = runner.invoke(app, ["checkout", "foo/repo", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["action"] == "checkout"
        assert data["path"] == str(root / "repo")
        assert data["repository"] == "foo/repo"
        assert (root / "repo" / "README.md").read_text() == "hello\n"

    def test_dest_option(self, workspace, settings_file):
        dest = workspace / "custom"

        result = runner.invoke(app, ["checkout", "foo/repo", "--dest", str(dest)])

        assert result.exit_code == 0, result.output
        assert "Checked out" in result.stdout
        assert (dest / ".git").is_dir()

    def test_existing_destination(self, workspace, settings_file):
        dest = workspace / "custom"
        dest.mkdir()

        result = runner.invoke(app, ["checkout", "foo/repo", "--destination", str(dest)])

        assert result.exit_code == 1
        assert "Destination already exists" in result.output

    def test_missing_root(self, settings_file):
        result = runner.invoke(app, ["checkout", "foo/repo"])

        assert result.exit_code == 1
        assert "pass --root" in result.output
