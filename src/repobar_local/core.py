"""
repobar-local: keep every local clone in view.

Discovers git working copies under a root folder, classifies each one against
its upstream, and fast-forwards the ones that are clean and simply behind.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import (
    CheckoutError,
    ConfirmationRequiredError,
    DetachedHeadError,
    DirtyWorkingTreeError,
    DiscoveryError,
    GitCommandError,
    MissingUpstreamError,
    ResetCancelledError,
    ScanSupersededError,
    SyncError,
    SyncPreconditionError,
)
from .git import GitResult, GitRunner
from .matching import format_full_name, parse_remote_full_name

if TYPE_CHECKING:
    from .settings import LocalProjectsSettings

logger = logging.getLogger(__name__)

DETACHED_BRANCH_LABEL = "detached"

# =============================================================================
# Domain Models
# =============================================================================


class SyncState(StrEnum):
    """Relationship of a working copy to its upstream branch."""

    SYNCED = "synced"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    DIRTY = "dirty"
    UNKNOWN = "unknown"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class DirtyCounts:
    """Uncommitted changes bucketed by kind. Untracked files count as added."""

    added: int = 0
    modified: int = 0
    deleted: int = 0

    @property
    def is_empty(self) -> bool:
        return self.added == 0 and self.modified == 0 and self.deleted == 0

    @property
    def total(self) -> int:
        return self.added + self.modified + self.deleted

    @property
    def summary(self) -> str:
        parts = []
        if self.added:
            parts.append(f"+{self.added}")
        if self.modified:
            parts.append(f"~{self.modified}")
        if self.deleted:
            parts.append(f"-{self.deleted}")
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "modified": self.modified,
            "deleted": self.deleted,
            "summary": self.summary,
        }


def compute_sync_state(
    is_clean: bool,
    upstream: str | None,
    ahead: int | None,
    behind: int | None,
) -> SyncState:
    """Derive the sync state. Dirty wins over any ahead/behind relationship."""
    if not is_clean:
        return SyncState.DIRTY
    if upstream is None or ahead is None or behind is None:
        return SyncState.UNKNOWN
    if ahead > 0 and behind > 0:
        return SyncState.DIVERGED
    if ahead > 0:
        return SyncState.AHEAD
    if behind > 0:
        return SyncState.BEHIND
    return SyncState.SYNCED


@dataclass
class LocalRepoStatus:
    """Point-in-time status of one discovered working copy."""

    path: Path
    name: str
    full_name: str | None = None
    branch: str = ""
    is_clean: bool = False
    ahead_count: int | None = None
    behind_count: int | None = None
    sync_state: SyncState = SyncState.UNKNOWN
    dirty_counts: DirtyCounts | None = None
    upstream_branch: str | None = None
    worktree_name: str | None = None
    last_fetch_at: datetime | None = None
    is_detached: bool = False
    remote_url: str | None = None
    error_message: str = ""

    @property
    def can_auto_sync(self) -> bool:
        return self.upstream_branch is not None and self.is_clean

    @property
    def display_name(self) -> str:
        return self.full_name or self.name

    @property
    def sync_detail(self) -> str:
        """Short human label for the sync state."""
        match self.sync_state:
            case SyncState.SYNCED:
                return "Up to date"
            case SyncState.AHEAD:
                return f"Ahead {self.ahead_count}"
            case SyncState.BEHIND:
                return f"Behind {self.behind_count}"
            case SyncState.DIVERGED:
                return f"Diverged +{self.ahead_count} -{self.behind_count}"
            case SyncState.DIRTY:
                return "Dirty"
            case _:
                return "No upstream" if self.upstream_branch is None else "Unknown"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "path": str(self.path),
            "name": self.name,
            "fullName": self.full_name,
            "branch": self.branch,
            "detached": self.is_detached,
            "isClean": self.is_clean,
            "aheadCount": self.ahead_count,
            "behindCount": self.behind_count,
            "syncState": self.sync_state.value,
            "syncDetail": self.sync_detail,
            "canAutoSync": self.can_auto_sync,
            "dirty": self.dirty_counts.to_dict() if self.dirty_counts else None,
            "upstreamBranch": self.upstream_branch,
            "worktreeName": self.worktree_name,
            "lastFetchAt": _iso(self.last_fetch_at),
            "remoteUrl": self.remote_url,
            "error": self.error_message or None,
        }


@dataclass
class LocalGitBranchDetails:
    """One local branch with its tracking metadata."""

    name: str
    is_current: bool = False
    upstream: str | None = None
    ahead_count: int | None = None
    behind_count: int | None = None
    last_commit_date: datetime | None = None
    last_commit_author: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "isCurrent": self.is_current,
            "upstream": self.upstream,
            "aheadCount": self.ahead_count,
            "behindCount": self.behind_count,
            "lastCommitDate": _iso(self.last_commit_date),
            "lastCommitAuthor": self.last_commit_author,
        }


@dataclass
class LocalGitBranchSnapshot:
    """All local branches of a repository plus detached-HEAD details."""

    is_detached_head: bool
    branches: list[LocalGitBranchDetails] = field(default_factory=list)
    detached_commit_date: datetime | None = None
    detached_commit_author: str | None = None

    def to_dict(self) -> dict:
        return {
            "detached": self.is_detached_head,
            "detachedCommitDate": _iso(self.detached_commit_date),
            "detachedCommitAuthor": self.detached_commit_author,
            "branches": [b.to_dict() for b in self.branches],
        }


@dataclass
class LocalGitWorktree:
    """One worktree of a repository."""

    path: Path
    branch: str | None = None
    is_current: bool = False
    upstream: str | None = None
    ahead_count: int | None = None
    behind_count: int | None = None
    last_commit_date: datetime | None = None
    last_commit_author: str | None = None
    dirty_counts: DirtyCounts | None = None

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "branch": self.branch,
            "isCurrent": self.is_current,
            "upstream": self.upstream,
            "aheadCount": self.ahead_count,
            "behindCount": self.behind_count,
            "lastCommitDate": _iso(self.last_commit_date),
            "lastCommitAuthor": self.last_commit_author,
            "dirty": self.dirty_counts.to_dict() if self.dirty_counts else None,
        }


@dataclass
class SyncResult:
    """Which steps of a smart sync actually ran."""

    did_fetch: bool = False
    did_pull: bool = False
    did_push: bool = False

    @property
    def changed(self) -> bool:
        return self.did_pull or self.did_push

    def describe(self) -> str:
        steps = [
            label
            for label, ran in (
                ("fetched", self.did_fetch),
                ("pulled", self.did_pull),
                ("pushed", self.did_push),
            )
            if ran
        ]
        return ", ".join(steps) if steps else "nothing to do"

    def to_dict(self) -> dict:
        return {
            "didFetch": self.did_fetch,
            "didPull": self.did_pull,
            "didPush": self.did_push,
        }


@dataclass
class OperationResult:
    """Result of one per-repository action in a batch."""

    path: Path
    name: str
    success: bool
    operation: str
    message: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "success": self.success,
            "operation": self.operation,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class LocalProjectsSnapshot:
    """Result of one full scan pass."""

    statuses: list[LocalRepoStatus] = field(default_factory=list)
    synced_statuses: list[LocalRepoStatus] = field(default_factory=list)
    discovered_repo_count: int = 0
    sync_results: list[OperationResult] = field(default_factory=list)
    root: Path | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    @property
    def sync_failures(self) -> list[OperationResult]:
        return [r for r in self.sync_results if not r.success]

    def to_dict(self) -> dict:
        return {
            "root": str(self.root) if self.root else None,
            "generatedAt": _iso(self.generated_at),
            "discoveredRepoCount": self.discovered_repo_count,
            "statuses": [s.to_dict() for s in self.statuses],
            "syncedPaths": [str(s.path) for s in self.synced_statuses],
            "syncResults": [r.to_dict() for r in self.sync_results],
        }


# =============================================================================
# Output Parsing
# =============================================================================


def parse_status_porcelain(output: str) -> DirtyCounts:
    """Bucket `git status --porcelain` entries into added/modified/deleted."""
    counts = DirtyCounts()
    for line in output.splitlines():
        if len(line) < 3:
            continue
        xy = line[:2]
        if xy == "!!":
            continue
        if xy == "??" or "A" in xy:
            counts.added += 1
        elif "D" in xy and "U" not in xy:
            counts.deleted += 1
        else:
            counts.modified += 1
    return counts


def parse_ahead_behind(output: str) -> tuple[int | None, int | None]:
    """Parse `rev-list --left-right --count @{u}...HEAD` into (ahead, behind)."""
    parts = output.split()
    if len(parts) < 2:
        return None, None
    try:
        behind, ahead = int(parts[0]), int(parts[1])
    except ValueError:
        return None, None
    return ahead, behind


def parse_track(upstream: str | None, track: str) -> tuple[int | None, int | None]:
    """Parse `%(upstream:track,nobracket)` into (ahead, behind)."""
    if not upstream or track.strip() == "gone":
        return None, None
    ahead = behind = 0
    for part in track.split(","):
        words = part.split()
        if len(words) != 2:
            continue
        try:
            value = int(words[1])
        except ValueError:
            continue
        if words[0] == "ahead":
            ahead = value
        elif words[0] == "behind":
            behind = value
    return ahead, behind


def _parse_date(value: str) -> datetime | None:
    value = value.strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class WorktreeEntry:
    """One block of `git worktree list --porcelain`."""

    path: Path
    head: str = ""
    branch: str | None = None
    detached: bool = False
    bare: bool = False
    prunable: bool = False


def parse_worktree_porcelain(output: str) -> list[WorktreeEntry]:
    entries: list[WorktreeEntry] = []
    current: WorktreeEntry | None = None
    for line in output.splitlines():
        if line.startswith("worktree "):
            current = WorktreeEntry(path=Path(line[len("worktree ") :]))
            entries.append(current)
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[len("HEAD ") :]
        elif line.startswith("branch "):
            current.branch = line[len("branch ") :].removeprefix("refs/heads/")
        elif line == "detached":
            current.detached = True
        elif line == "bare":
            current.bare = True
        elif line == "prunable" or line.startswith("prunable "):
            current.prunable = True
    return entries


BRANCH_FORMAT = "%1f".join(
    [
        "%(HEAD)",
        "%(refname:short)",
        "%(upstream:short)",
        "%(upstream:track,nobracket)",
        "%(committerdate:iso-strict)",
        "%(authorname)",
    ]
)


def parse_branch_refs(output: str) -> list[LocalGitBranchDetails]:
    """Parse `git for-each-ref refs/heads --format=BRANCH_FORMAT`."""
    branches = []
    for line in output.splitlines():
        fields = line.split("\x1f")
        if len(fields) != 6:
            continue
        head, name, upstream, track, date, author = fields
        ahead, behind = parse_track(upstream or None, track)
        branches.append(
            LocalGitBranchDetails(
                name=name,
                is_current=head.strip() == "*",
                upstream=upstream or None,
                ahead_count=ahead,
                behind_count=behind,
                last_commit_date=_parse_date(date),
                last_commit_author=author or None,
            )
        )
    return branches


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level Git operations for a single repository."""

    def __init__(self, repo_path: Path, runner: GitRunner | None = None):
        self.repo_path = repo_path
        self.runner = runner or GitRunner()

    def _run(self, *args: str) -> GitResult:
        return self.runner.run(list(args), self.repo_path)

    def _query(self, *args: str) -> str | None:
        """Run a read-only query; None when it fails or times out."""
        try:
            result = self._run(*args)
        except GitCommandError as e:
            logger.debug("Query failed in %s: %s", self.repo_path, e)
            return None
        if not result.ok:
            return None
        return result.stdout

    def _checked(self, *args: str) -> str:
        return self.runner.run_checked(list(args), self.repo_path)

    def get_head_state(self) -> tuple[str | None, bool]:
        """Return (branch, detached). Raises GitCommandError if not a repository."""
        result = self._run("symbolic-ref", "--quiet", "--short", "HEAD")
        if result.ok:
            return result.stdout.strip(), False
        if result.returncode == 1:
            return None, True
        raise GitCommandError(result.args, result.returncode, result.stdout, result.stderr)

    def get_dirty_counts(self) -> DirtyCounts | None:
        output = self._query("status", "--porcelain", "--untracked-files=normal")
        if output is None:
            return None
        return parse_status_porcelain(output)

    def get_upstream(self) -> str | None:
        output = self._query("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")
        if output is None:
            return None
        return output.strip() or None

    def get_ahead_behind(self) -> tuple[int | None, int | None]:
        output = self._query("rev-list", "--left-right", "--count", "@{u}...HEAD")
        if output is None:
            return None, None
        return parse_ahead_behind(output)

    def get_remote_url(self) -> str | None:
        """URL of `origin`, or of the first remote when there is no origin."""
        output = self._query("remote")
        if not output:
            return None
        names = [n.strip() for n in output.splitlines() if n.strip()]
        if not names:
            return None
        remote = "origin" if "origin" in names else names[0]
        url = self._query("remote", "get-url", remote)
        return url.strip() if url else None

    def get_common_dir(self) -> Path | None:
        output = self._query("rev-parse", "--git-common-dir")
        if not output or not output.strip():
            return None
        common = Path(output.strip())
        if not common.is_absolute():
            common = self.repo_path / common
        return common

    def get_last_fetch_at(self) -> datetime | None:
        common = self.get_common_dir()
        if common is None:
            return None
        try:
            mtime = (common / "FETCH_HEAD").stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime).astimezone()

    def get_toplevel(self) -> Path | None:
        output = self._query("rev-parse", "--show-toplevel")
        if not output or not output.strip():
            return None
        return Path(output.strip())

    def get_last_commit(self, ref: str = "HEAD") -> tuple[datetime | None, str | None]:
        output = self._query("log", "-1", "--format=%cI%x1f%an", ref)
        if not output or "\x1f" not in output:
            return None, None
        date, author = output.strip().split("\x1f", 1)
        return _parse_date(date), author or None

    def list_worktrees(self) -> list[WorktreeEntry]:
        return parse_worktree_porcelain(self._checked("worktree", "list", "--porcelain"))

    def list_branches(self) -> list[LocalGitBranchDetails]:
        output = self._checked("for-each-ref", f"--format={BRANCH_FORMAT}", "refs/heads")
        return parse_branch_refs(output)

    # Mutating commands raise GitCommandError on failure.

    def fetch_prune(self) -> str:
        return self._checked("fetch", "--prune")

    def merge_fast_forward(self) -> str:
        return self._checked("merge", "--ff-only", "@{u}")

    def push(self) -> str:
        return self._checked("push")

    def rebase_onto_upstream(self) -> str:
        return self._checked("rebase", "@{u}")

    def abort_rebase(self) -> bool:
        return self._query("rebase", "--abort") is not None

    def reset_hard_to_upstream(self) -> str:
        return self._checked("reset", "--hard", "@{u}")

    def switch_branch(self, branch: str) -> str:
        return self._checked("switch", branch)


# =============================================================================
# Repository
# =============================================================================


def read_worktree_name(path: Path) -> str | None:
    """Name of a linked worktree, read from its `.git` file."""
    git_file = path / ".git"
    if not git_file.is_file():
        return None
    try:
        content = git_file.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None
    if not content.startswith("gitdir:"):
        return None
    gitdir = Path(content[len("gitdir:") :].strip())
    if gitdir.parent.name != "worktrees":
        return None
    return gitdir.name


def _same_path(a: Path, b: Path) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


class GitRepository:
    """High-level interface for a single Git repository."""

    def __init__(self, path: Path, runner: GitRunner | None = None):
        self.path = path
        self.name = path.name
        self.runner = runner or GitRunner()
        self.ops = GitOperations(path, self.runner)

    def classify(self) -> LocalRepoStatus:
        """Classify the working copy.

        Queries run in order: branch, dirty state, upstream, ahead/behind.
        A failing query degrades its field to None; only a missing or
        blocked git binary propagates.
        """
        status = LocalRepoStatus(
            path=self.path,
            name=self.name,
            worktree_name=read_worktree_name(self.path),
        )
        problems: list[str] = []

        try:
            branch, detached = self.ops.get_head_state()
            status.is_detached = detached
            status.branch = branch if branch else DETACHED_BRANCH_LABEL

            counts = self.ops.get_dirty_counts()
            if counts is None:
                problems.append("status unavailable")
            else:
                status.dirty_counts = counts
                status.is_clean = counts.is_empty

            if not detached:
                status.upstream_branch = self.ops.get_upstream()

            if status.upstream_branch is not None:
                ahead, behind = self.ops.get_ahead_behind()
                status.ahead_count = ahead
                status.behind_count = behind
                if ahead is None:
                    problems.append("ahead/behind unavailable")

            status.remote_url = self.ops.get_remote_url()
            parsed = parse_remote_full_name(status.remote_url) if status.remote_url else None
            status.full_name = format_full_name(parsed) if parsed else None
            status.last_fetch_at = self.ops.get_last_fetch_at()
        except (GitCommandError, OSError) as e:
            logger.warning("Could not classify %s: %s", self.path, e)
            status.sync_state = SyncState.UNKNOWN
            status.is_clean = False
            status.error_message = str(e)
            return status

        if counts is None:
            status.sync_state = SyncState.UNKNOWN
        else:
            status.sync_state = compute_sync_state(
                status.is_clean,
                status.upstream_branch,
                status.ahead_count,
                status.behind_count,
            )
        if problems:
            status.error_message = "; ".join(problems)
            logger.warning("Degraded status for %s: %s", self.path, status.error_message)
        return status

    def worktrees(self) -> list[LocalGitWorktree]:
        """List all worktrees, each classified like a standalone repository."""
        current = self.ops.get_toplevel() or self.path
        results = []
        for entry in self.ops.list_worktrees():
            if entry.bare:
                continue
            worktree = LocalGitWorktree(
                path=entry.path,
                branch=None if entry.detached else entry.branch,
                is_current=_same_path(entry.path, current),
            )
            if entry.path.is_dir():
                status = GitRepository(entry.path, self.runner).classify()
                worktree.upstream = status.upstream_branch
                worktree.ahead_count = status.ahead_count
                worktree.behind_count = status.behind_count
                worktree.dirty_counts = status.dirty_counts
                worktree.last_commit_date, worktree.last_commit_author = GitOperations(
                    entry.path, self.runner
                ).get_last_commit()
            else:
                logger.debug("Worktree %s is missing on disk", entry.path)
            results.append(worktree)
        return results

    def branch_details(self) -> LocalGitBranchSnapshot:
        """List every local branch with its own upstream and last commit."""
        _, detached = self.ops.get_head_state()
        snapshot = LocalGitBranchSnapshot(
            is_detached_head=detached,
            branches=self.ops.list_branches(),
        )
        if detached:
            snapshot.detached_commit_date, snapshot.detached_commit_author = (
                self.ops.get_last_commit()
            )
        return snapshot


# =============================================================================
# Discovery
# =============================================================================

SKIPPED_DIRECTORY_NAMES = frozenset({"node_modules", "__pycache__", "DerivedData", "Pods"})


def is_repository(path: Path) -> bool:
    """A `.git` entry marks a working copy; it is a file for linked worktrees."""
    return os.path.lexists(os.path.join(path, ".git"))


def discover_repositories(root: Path, max_depth: int) -> list[Path]:
    """Find working copies under root, at most max_depth directory hops deep.

    Immediate children of root are depth 1. A directory holding `.git` is
    reported and not descended into. If root itself is a working copy, it is
    the only result.
    """
    if max_depth < 0:
        raise ValueError(f"max_depth must be >= 0, got {max_depth}")

    root = Path(os.path.expanduser(str(root)))
    if not root.exists():
        raise DiscoveryError(root, "does not exist")
    if not root.is_dir():
        raise DiscoveryError(root, "is not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise DiscoveryError(root, "is not readable")
    root = root.resolve()

    if is_repository(root):
        return [root]

    found: list[Path] = []
    _walk(root, 1, max_depth, found)
    found.sort()
    return found


def _walk(directory: Path, depth: int, max_depth: int, found: list[Path]) -> None:
    if depth > max_depth:
        return
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        logger.debug("Skipping unreadable directory %s: %s", directory, e)
        return

    for entry in entries:
        if entry.name.startswith(".") or entry.name in SKIPPED_DIRECTORY_NAMES:
            continue
        try:
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError:
            continue
        child = Path(entry.path)
        if is_repository(child):
            found.append(child)
        elif depth < max_depth:
            _walk(child, depth + 1, max_depth, found)


# =============================================================================
# Auto Sync
# =============================================================================


def common_git_dir(path: Path) -> Path | None:
    """Git directory shared by every worktree of the repository at path.

    Read from disk: `.git` itself for a main checkout, or the `commondir`
    of the gitdir a linked worktree's `.git` file points at.
    """
    dot_git = path / ".git"
    if dot_git.is_dir():
        return dot_git
    if not dot_git.is_file():
        return None
    try:
        content = dot_git.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None
    if not content.startswith("gitdir:"):
        return None
    gitdir = Path(content[len("gitdir:") :].strip())
    if not gitdir.is_absolute():
        gitdir = path / gitdir
    try:
        common = (gitdir / "commondir").read_text(encoding="utf-8").strip()
    except OSError:
        return gitdir
    return gitdir / common if common else gitdir


class PathLocks:
    """One lock per repository, keyed on its shared git directory.

    Every mutating git command for a path runs while holding its lock, so
    overlapping scans and explicit commands never touch one repo at once.
    Linked worktrees share refs and objects with their main checkout and
    map to the same lock.
    """

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def canonical(path: Path | str) -> str:
        real = os.path.realpath(os.path.expanduser(str(path)))
        common = common_git_dir(Path(real))
        return os.path.realpath(common) if common is not None else real

    def lock_for(self, path: Path | str) -> threading.Lock:
        key = self.canonical(path)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, path: Path | str) -> Iterator[None]:
        with self.lock_for(path):
            yield


DEFAULT_PATH_LOCKS = PathLocks()


class AutoSyncEngine:
    """Fetch, fast-forward and push without ever rewriting history on its own.

    ``smart_sync`` is safe for the passive background scan. ``rebase`` and
    ``hard reset`` are explicit user commands and are never called from a
    scan.
    """

    def __init__(self, runner: GitRunner | None = None, locks: PathLocks | None = None):
        self.runner = runner or GitRunner()
        self.locks = locks or DEFAULT_PATH_LOCKS

    def _step(self, action: str, path: Path, command: Callable[[], Any]) -> Any:
        try:
            return command()
        except GitCommandError as e:
            raise SyncError(action, path, e) from e

    def _require_clean(self, ops: GitOperations, path: Path) -> None:
        counts = ops.get_dirty_counts()
        if counts is None or not counts.is_empty:
            raise DirtyWorkingTreeError(path)

    def _require_upstream(self, ops: GitOperations, path: Path) -> str:
        upstream = ops.get_upstream()
        if upstream is None:
            raise MissingUpstreamError(path)
        return upstream

    def smart_sync(self, path: Path, *, fetch: bool = True) -> SyncResult:
        """Fetch, then fast-forward if strictly behind or push if strictly ahead.

        Diverged repositories are fetched and left alone.
        """
        ops = GitOperations(path, self.runner)
        result = SyncResult()
        with self.locks.hold(path):
            self._require_clean(ops, path)
            _, detached = self._step("sync", path, ops.get_head_state)
            if detached:
                raise DetachedHeadError(path)
            self._require_upstream(ops, path)

            if fetch:
                self._step("fetch", path, ops.fetch_prune)
                result.did_fetch = True

            ahead, behind = ops.get_ahead_behind()
            if ahead is None or behind is None:
                logger.warning("Cannot compare %s with its upstream; skipping", path)
                return result

            if behind > 0 and ahead == 0:
                self._require_clean(ops, path)
                self._step("pull", path, ops.merge_fast_forward)
                result.did_pull = True
            elif ahead > 0 and behind == 0:
                self._step("push", path, ops.push)
                result.did_push = True
            elif ahead > 0 and behind > 0:
                logger.info("%s has diverged (+%d -%d); leaving it alone", path, ahead, behind)

        logger.info("Synced %s: %s", path, result.describe())
        return result

    def rebase_onto_upstream(self, path: Path) -> None:
        """Fetch and rebase the current branch onto its upstream.

        A rebase that stops on conflicts is aborted before raising.
        """
        ops = GitOperations(path, self.runner)
        with self.locks.hold(path):
            self._require_clean(ops, path)
            self._require_upstream(ops, path)
            self._step("fetch", path, ops.fetch_prune)
            try:
                ops.rebase_onto_upstream()
            except GitCommandError as e:
                if not ops.abort_rebase():
                    logger.warning("git rebase --abort failed in %s", path)
                raise SyncError("rebase", path, e) from e
        logger.info("Rebased %s onto upstream", path)

    def hard_reset_to_upstream(
        self,
        path: Path,
        *,
        assume_yes: bool = False,
        confirm: Callable[[str], bool] | None = None,
    ) -> None:
        """Discard local commits and changes, matching the upstream exactly.

        Refuses unless assume_yes is set or confirm(path) returns True. The
        check happens before any git command runs.
        """
        if not assume_yes:
            if confirm is None:
                raise ConfirmationRequiredError(
                    "Refusing to hard reset in non-interactive mode without --yes"
                )
            if not confirm(str(path)):
                raise ResetCancelledError("Reset cancelled")

        ops = GitOperations(path, self.runner)
        with self.locks.hold(path):
            self._require_upstream(ops, path)
            self._step("fetch", path, ops.fetch_prune)
            self._step("reset", path, ops.reset_hard_to_upstream)
        logger.info("Hard reset %s to upstream", path)

    def switch_branch(self, path: Path, branch: str) -> None:
        """Check out another branch with `git switch`.

        git refuses when local changes would be overwritten; that refusal
        surfaces as a SyncError.
        """
        ops = GitOperations(path, self.runner)
        with self.locks.hold(path):
            self._step("switch", path, lambda: ops.switch_branch(branch))
        logger.info("Switched %s to %s", path, branch)


# =============================================================================
# Checkout
# =============================================================================


def parse_full_name(full_name: str) -> tuple[str, str]:
    """Split `owner/name` (a trailing `.git` is dropped)."""
    owner, _, name = full_name.strip().strip("/").partition("/")
    name = name.removesuffix(".git")
    if not owner or not name or "/" in name:
        raise CheckoutError(f"Expected owner/name, got {full_name!r}")
    return owner, name


def checkout_repository(
    full_name: str,
    *,
    host: str,
    root: Path | str | None = None,
    destination: Path | str | None = None,
    runner: GitRunner | None = None,
) -> Path:
    """Clone host/owner/name.git into destination, or root/name.

    Returns the path of the new working copy.
    """
    owner, name = parse_full_name(full_name)
    if destination:
        dest = Path(os.path.expanduser(str(destination)))
    elif root:
        dest = Path(os.path.expanduser(str(root))) / name
    else:
        raise CheckoutError("Set a local projects root (rootPath) or pass --root")
    if dest.exists():
        raise CheckoutError(f"Destination already exists: {dest}")

    runner = runner or GitRunner()
    remote_url = f"{host.rstrip('/')}/{owner}/{name}.git"
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        runner.run_checked(["clone", "--quiet", "--", remote_url, str(dest)], dest.parent)
    except GitCommandError as e:
        raise SyncError("clone", dest, e) from e
    logger.info("Cloned %s into %s", remote_url, dest)
    return dest


# =============================================================================
# Scan Coordinator
# =============================================================================

DEFAULT_MAX_DEPTH = 2
MIN_MAX_DEPTH = 1
MAX_MAX_DEPTH = 6
DEFAULT_FETCH_INTERVAL = 300.0


def default_concurrency() -> int:
    return min(32, (os.cpu_count() or 2) * 2)


@dataclass
class ScanOptions:
    """One scan request."""

    root_path: str = ""
    max_depth: int = DEFAULT_MAX_DEPTH
    auto_sync_enabled: bool = False
    fetch_interval_seconds: float = DEFAULT_FETCH_INTERVAL
    include_only_repo_names: list[str] | None = None
    concurrency_limit: int | None = None
    force_fetch: bool = False

    @classmethod
    def from_settings(cls, settings: LocalProjectsSettings, **overrides: Any) -> ScanOptions:
        options = cls(
            root_path=settings.root_path or "",
            max_depth=settings.max_depth,
            auto_sync_enabled=settings.auto_sync_enabled,
            fetch_interval_seconds=settings.fetch_interval_seconds,
            include_only_repo_names=settings.include_only_repo_names,
            concurrency_limit=settings.concurrency_limit,
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(options, **overrides)

    def matches(self, status: LocalRepoStatus) -> bool:
        if not self.include_only_repo_names:
            return True
        wanted = {n.lower() for n in self.include_only_repo_names}
        if status.name.lower() in wanted:
            return True
        return bool(status.full_name and status.full_name.lower() in wanted)


def should_fetch(last_fetch_at: datetime | None, interval: float, now: datetime | None = None) -> bool:
    if last_fetch_at is None or interval <= 0:
        return True
    now = now or datetime.now(last_fetch_at.tzinfo)
    return (now - last_fetch_at).total_seconds() >= interval


class ScanCoordinator:
    """Discover, classify and optionally auto-sync repositories.

    Each call to :meth:`snapshot` starts a new generation; a newer call or
    :meth:`cancel` makes older in-flight scans stop early and raise
    :class:`ScanSupersededError` instead of returning stale results.
    """

    def __init__(
        self,
        runner: GitRunner | None = None,
        sync_engine: AutoSyncEngine | None = None,
    ):
        self.runner = runner or GitRunner()
        self.sync_engine = sync_engine or AutoSyncEngine(self.runner)
        self._generation = 0
        self._generation_lock = threading.Lock()

    def _begin(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def cancel(self) -> int:
        """Invalidate any in-flight scan."""
        return self._begin()

    def is_current(self, generation: int) -> bool:
        with self._generation_lock:
            return generation == self._generation

    def _check_current(self, generation: int) -> None:
        if not self.is_current(generation):
            logger.info("Discarding results of superseded scan %d", generation)
            raise ScanSupersededError(generation)

    def snapshot(self, options: ScanOptions) -> LocalProjectsSnapshot:
        """Scan options.root_path and build a snapshot."""
        generation = self._begin()
        if not options.root_path:
            raise DiscoveryError(None, "no root path configured")
        self.runner.ensure_available()
        root = Path(os.path.expanduser(options.root_path))
        paths = discover_repositories(root, options.max_depth)
        logger.info("Discovered %d repositories under %s", len(paths), root)
        return self._build(paths, root.resolve(), options, generation)

    def snapshot_paths(
        self, repo_paths: list[Path], options: ScanOptions | None = None
    ) -> LocalProjectsSnapshot:
        """Build a snapshot for explicit repository roots."""
        generation = self._begin()
        options = options or ScanOptions()
        self.runner.ensure_available()
        paths = sorted({Path(p).resolve() for p in repo_paths if is_repository(Path(p))})
        return self._build(paths, None, options, generation)

    def _execute_parallel(
        self,
        operation: Callable[[Any], Any],
        items: list,
        max_workers: int,
    ) -> list:
        """Run operation over items on a bounded pool, dropping None results."""
        results = []
        if max_workers <= 1 or len(items) <= 1:
            for item in items:
                results.append(operation(item))
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = [executor.submit(operation, item) for item in items]
                for future in as_completed(futures):
                    results.append(future.result())
        return [r for r in results if r is not None]

    def _classify(self, path: Path, generation: int) -> LocalRepoStatus | None:
        if not self.is_current(generation):
            return None
        return GitRepository(path, self.runner).classify()

    def _auto_sync(
        self, status: LocalRepoStatus, options: ScanOptions, generation: int
    ) -> tuple[LocalRepoStatus, SyncResult | None, OperationResult] | None:
        if not self.is_current(generation):
            return None
        fetch = options.force_fetch or should_fetch(
            status.last_fetch_at, options.fetch_interval_seconds
        )
        try:
            result = self.sync_engine.smart_sync(status.path, fetch=fetch)
        except (GitCommandError, SyncPreconditionError) as e:
            logger.warning("Auto-sync failed for %s: %s", status.path, e)
            return (
                status,
                None,
                OperationResult(
                    path=status.path,
                    name=status.name,
                    success=False,
                    operation="sync",
                    error=str(e),
                ),
            )

        refreshed = status
        if result.did_fetch or result.changed:
            refreshed = GitRepository(status.path, self.runner).classify()
        return (
            refreshed,
            result,
            OperationResult(
                path=status.path,
                name=status.name,
                success=True,
                operation="sync",
                message=result.describe(),
            ),
        )

    def _build(
        self,
        paths: list[Path],
        root: Path | None,
        options: ScanOptions,
        generation: int,
    ) -> LocalProjectsSnapshot:
        workers = options.concurrency_limit or default_concurrency()

        statuses = self._execute_parallel(
            lambda path: self._classify(path, generation), paths, workers
        )
        self._check_current(generation)
        statuses = [s for s in statuses if options.matches(s)]

        snapshot = LocalProjectsSnapshot(root=root, discovered_repo_count=len(paths))

        if options.auto_sync_enabled:
            eligible = [s for s in statuses if s.can_auto_sync]
            outcomes = self._execute_parallel(
                lambda status: self._auto_sync(status, options, generation),
                eligible,
                workers,
            )
            self._check_current(generation)
            refreshed_by_path: dict[Path, LocalRepoStatus] = {}
            for refreshed, result, operation in outcomes:
                snapshot.sync_results.append(operation)
                refreshed_by_path[refreshed.path] = refreshed
                # Nothing to sync against without an upstream.
                if result is not None and result.changed and refreshed.upstream_branch:
                    snapshot.synced_statuses.append(refreshed)
            statuses = [refreshed_by_path.get(s.path, s) for s in statuses]
            snapshot.synced_statuses.sort(key=lambda s: s.path)
            snapshot.sync_results.sort(key=lambda r: r.path)

        statuses.sort(key=lambda s: s.path)
        snapshot.statuses = statuses
        logger.info(
            "Scan complete: %d repositories, %d shown, %d synced",
            snapshot.discovered_repo_count,
            len(snapshot.statuses),
            len(snapshot.synced_statuses),
        )
        return snapshot
