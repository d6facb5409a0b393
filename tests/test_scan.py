"""Tests for ScanCoordinator snapshots."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from conftest import commit_file, run_git

from repobar_local.core import (
    AutoSyncEngine,
    LocalRepoStatus,
    PathLocks,
    ScanCoordinator,
    ScanOptions,
    SyncState,
    should_fetch,
)
from repobar_local.errors import DiscoveryError, GitEnvironmentError, ScanSupersededError
from repobar_local.git import GitRunner


@pytest.fixture
def coordinator():
    runner = GitRunner()
    return ScanCoordinator(runner, AutoSyncEngine(runner, PathLocks()))


@pytest.fixture
def root_with_two_clones(workspace, clone):
    """root/repo-a and root/group/repo-b; repo-a has pushed a new commit."""
    root = workspace / "root"
    repo_a = clone(root / "repo-a")
    repo_b = clone(root / "group" / "repo-b")
    commit_file(repo_a, "a.txt", "a\n")
    run_git(repo_a, "push", "-q")
    return root, repo_a, repo_b


class TestSnapshot:
    """End-to-end scans over real repositories."""

    def test_auto_sync_fast_forwards_behind_clone(self, coordinator, root_with_two_clones):
        root, repo_a, repo_b = root_with_two_clones
        options = ScanOptions(
            root_path=str(root), max_depth=2, auto_sync_enabled=True, concurrency_limit=1
        )

        snapshot = coordinator.snapshot(options)

        assert snapshot.discovered_repo_count == 2
        assert [s.path for s in snapshot.statuses] == [repo_b, repo_a]
        assert [s.path for s in snapshot.synced_statuses] == [repo_b]
        assert all(s.sync_state is SyncState.SYNCED for s in snapshot.statuses)
        assert run_git(repo_b, "rev-parse", "HEAD") == run_git(repo_a, "rev-parse", "HEAD")
        assert len(snapshot.sync_results) == 2
        assert snapshot.sync_failures == []

    def test_filter_keeps_discovered_count(self, coordinator, root_with_two_clones):
        root, _, _ = root_with_two_clones
        options = ScanOptions(
            root_path=str(root),
            max_depth=2,
            auto_sync_enabled=True,
            include_only_repo_names=["does-not-exist"],
            concurrency_limit=1,
        )

        snapshot = coordinator.snapshot(options)

        assert snapshot.discovered_repo_count == 2
        assert snapshot.statuses == []
        assert snapshot.synced_statuses == []

    def test_filter_by_name_is_case_insensitive(self, coordinator, root_with_two_clones):
        root, _, repo_b = root_with_two_clones
        options = ScanOptions(
            root_path=str(root), max_depth=2, include_only_repo_names=["REPO-B"]
        )

        snapshot = coordinator.snapshot(options)

        assert [s.path for s in snapshot.statuses] == [repo_b]

    def test_without_auto_sync_nothing_changes(self, coordinator, root_with_two_clones):
        root, _, repo_b = root_with_two_clones
        before = run_git(repo_b, "rev-parse", "HEAD")

        snapshot = coordinator.snapshot(ScanOptions(root_path=str(root), max_depth=2))

        assert len(snapshot.statuses) == 2
        assert snapshot.sync_results == []
        assert snapshot.synced_statuses == []
        assert run_git(repo_b, "rev-parse", "HEAD") == before

    def test_depth_limits_discovery(self, coordinator, root_with_two_clones):
        root, repo_a, _ = root_with_two_clones

        snapshot = coordinator.snapshot(ScanOptions(root_path=str(root), max_depth=1))

        assert [s.path for s in snapshot.statuses] == [repo_a]

    def test_parallel_scan_matches_sequential(self, coordinator, root_with_two_clones):
        root, repo_a, repo_b = root_with_two_clones
        options = ScanOptions(root_path=str(root), max_depth=2, concurrency_limit=4)

        snapshot = coordinator.snapshot(options)

        assert [s.path for s in snapshot.statuses] == [repo_b, repo_a]

    def test_sync_failure_is_isolated(self, coordinator, root_with_two_clones, workspace):
        root, repo_a, repo_b = root_with_two_clones
        run_git(repo_a, "remote", "set-url", "origin", str(workspace / "missing.git"))
        options = ScanOptions(
            root_path=str(root),
            max_depth=2,
            auto_sync_enabled=True,
            force_fetch=True,
            concurrency_limit=2,
        )

        snapshot = coordinator.snapshot(options)

        assert len(snapshot.statuses) == 2
        assert [f.path for f in snapshot.sync_failures] == [repo_a]
        assert "fetch" in snapshot.sync_failures[0].error
        assert [s.path for s in snapshot.synced_statuses] == [repo_b]

    def test_dirty_repository_is_not_synced(self, coordinator, root_with_two_clones):
        root, _, repo_b = root_with_two_clones
        (repo_b / "README.md").write_text("local edit\n")
        before = run_git(repo_b, "rev-parse", "HEAD")
        options = ScanOptions(root_path=str(root), max_depth=2, auto_sync_enabled=True)

        snapshot = coordinator.snapshot(options)

        dirty = next(s for s in snapshot.statuses if s.path == repo_b)
        assert dirty.sync_state is SyncState.DIRTY
        assert snapshot.synced_statuses == []
        assert run_git(repo_b, "rev-parse", "HEAD") == before

    def test_missing_root_path(self, coordinator):
        with pytest.raises(DiscoveryError):
            coordinator.snapshot(ScanOptions())

    def test_root_does_not_exist(self, coordinator, workspace):
        with pytest.raises(DiscoveryError):
            coordinator.snapshot(ScanOptions(root_path=str(workspace / "nope")))

    def test_missing_git_aborts_the_scan(self, root_with_two_clones, workspace):
        root, _, repo_b = root_with_two_clones
        before = run_git(repo_b, "rev-parse", "HEAD")
        coordinator = ScanCoordinator(GitRunner(executable=str(workspace / "nonexistent" / "git")))
        options = ScanOptions(root_path=str(root), auto_sync_enabled=True)

        with pytest.raises(GitEnvironmentError) as excinfo:
            coordinator.snapshot(options)

        assert excinfo.value.kind == GitEnvironmentError.MISSING
        assert "nonexistent" in str(excinfo.value)
        assert run_git(repo_b, "rev-parse", "HEAD") == before

    def test_snapshot_paths(self, coordinator, root_with_two_clones, workspace):
        _, repo_a, _ = root_with_two_clones

        snapshot = coordinator.snapshot_paths([repo_a, workspace / "not-a-repo"])

        assert snapshot.root is None
        assert [s.path for s in snapshot.statuses] == [repo_a]

    def test_to_dict(self, coordinator, root_with_two_clones):
        root, _, repo_b = root_with_two_clones
        options = ScanOptions(root_path=str(root), max_depth=2, auto_sync_enabled=True)

        data = coordinator.snapshot(options).to_dict()

        assert data["discoveredRepoCount"] == 2
        assert data["syncedPaths"] == [str(repo_b)]
        assert {s["syncState"] for s in data["statuses"]} == {"synced"}


class CancellingRunner(GitRunner):
    """Cancels the coordinator's scan on the first classification query."""

    coordinator = None

    def run(self, args, cwd):
        if self.coordinator is not None and args[:1] == ["symbolic-ref"]:
            coordinator, self.coordinator = self.coordinator, None
            coordinator.cancel()
        return super().run(args, cwd)


class TestGenerations:
    def test_superseded_scan_raises(self, root_with_two_clones):
        root, _, _ = root_with_two_clones
        runner = CancellingRunner()
        coordinator = ScanCoordinator(runner)
        runner.coordinator = coordinator

        with pytest.raises(ScanSupersededError):
            coordinator.snapshot(
                ScanOptions(root_path=str(root), max_depth=2, concurrency_limit=1)
            )

    def test_cancel_bumps_generation(self):
        coordinator = ScanCoordinator(GitRunner())
        first = coordinator.cancel()
        assert coordinator.is_current(first)
        coordinator.cancel()
        assert not coordinator.is_current(first)


class TestShouldFetch:
    def test_never_fetched(self):
        assert should_fetch(None, 300)

    def test_recent_fetch_is_throttled(self):
        now = datetime.now().astimezone()
        assert not should_fetch(now - timedelta(seconds=30), 300, now=now)

    def test_stale_fetch(self):
        now = datetime.now().astimezone()
        assert should_fetch(now - timedelta(seconds=600), 300, now=now)

    def test_zero_interval_always_fetches(self):
        now = datetime.now().astimezone()
        assert should_fetch(now, 0, now=now)


class TestScanOptions:
    def test_empty_filter_matches_everything(self):
        status = LocalRepoStatus(path=Path("/x/repo"), name="repo")
        assert ScanOptions().matches(status)
        assert ScanOptions(include_only_repo_names=[]).matches(status)
        assert not ScanOptions(include_only_repo_names=["other"]).matches(status)

    def test_filter_matches_full_name(self):
        status = LocalRepoStatus(
            path=Path("/x/repo"), name="repo", full_name="Foo/Repo"
        )
        assert ScanOptions(include_only_repo_names=["foo/repo"]).matches(status)
