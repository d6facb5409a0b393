"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
import os
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

from .core import SyncState

if TYPE_CHECKING:
    from .core import (
        LocalGitBranchSnapshot,
        LocalGitWorktree,
        LocalProjectsSnapshot,
        LocalRepoStatus,
        SyncResult,
    )


def display_path(path: Path | str) -> str:
    """Abbreviate the home directory to ~."""
    text = str(path)
    home = os.path.expanduser("~")
    for base in sorted({home, os.path.realpath(home)}, key=len, reverse=True):
        if text == base:
            return "~"
        if text.startswith(base + os.sep):
            return "~" + text[len(base) :]
    return text


def compute_unique_display_names(statuses: list[LocalRepoStatus]) -> dict[Path, str]:
    """Compute unique display names for repositories with duplicate names.

    Repositories share a display name when two clones of one `owner/name`
    (or two unrelated folders with one basename) are present. Parent
    directory components are added until each name becomes unique.
    """
    groups: dict[str, list[LocalRepoStatus]] = defaultdict(list)
    for status in statuses:
        groups[status.display_name].append(status)

    result: dict[Path, str] = {}
    for name, group in groups.items():
        if len(group) == 1:
            result[group[0].path] = name
            continue
        suffixes = _make_paths_unique([s.path for s in group])
        for status, suffix in zip(group, suffixes):
            result[status.path] = f"{name} ({suffix})"
    return result


def _make_paths_unique(paths: list[Path]) -> list[str]:
    """Shortest trailing path component sequence that tells each path apart."""
    reversed_parts = [list(reversed(p.parts)) for p in paths]

    def suffix(parts: list[str], depth: int) -> str:
        return "/".join(reversed(parts[: min(depth, len(parts))]))

    result = []
    for i, parts in enumerate(reversed_parts):
        for depth in range(1, len(parts) + 1):
            candidate = suffix(parts, depth)
            clashes = any(
                suffix(other, depth) == candidate
                for j, other in enumerate(reversed_parts)
                if i != j
            )
            if not clashes:
                result.append(candidate)
                break
        else:
            result.append(str(paths[i]))
    return result


def format_relative(dt: datetime | None, now: datetime | None = None) -> str:
    """Format datetime as a short relative age."""
    if dt is None:
        return "-"
    now = now or datetime.now(dt.tzinfo)
    delta = now - dt
    if delta.days < 0:
        return "just now"
    if delta.days == 0:
        hours = delta.seconds // 3600
        if hours == 0:
            return f"{delta.seconds // 60}m ago"
        return f"{hours}h ago"
    if delta.days == 1:
        return "yesterday"
    if delta.days < 7:
        return f"{delta.days}d ago"
    if delta.days < 30:
        return f"{delta.days // 7}w ago"
    return dt.strftime("%Y-%m-%d")


def _count(value: int | None) -> str:
    return "-" if value is None else str(value)


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, payload: Any) -> None:
        # console.out skips markup and wrapping so the JSON stays parseable.
        self.console.out(json.dumps(payload, indent=2, default=str), highlight=False)

    # -------------------------------------------------------------------------
    # Scan snapshot
    # -------------------------------------------------------------------------

    def print_snapshot(self, snapshot: LocalProjectsSnapshot, limit: int | None = None):
        statuses = snapshot.statuses[:limit] if limit else snapshot.statuses
        if self.use_json:
            payload = snapshot.to_dict()
            payload["statuses"] = [s.to_dict() for s in statuses]
            self._print_json(payload)
        else:
            self._print_snapshot_table(snapshot, statuses)

    def _print_snapshot_table(
        self, snapshot: LocalProjectsSnapshot, statuses: list[LocalRepoStatus]
    ):
        root = display_path(snapshot.root) if snapshot.root else "selected paths"
        if not snapshot.statuses:
            if snapshot.discovered_repo_count:
                self.console.print(
                    f"[dim]Found {snapshot.discovered_repo_count} repositories in {root},"
                    " none matched the filter[/]"
                )
            else:
                self.console.print(f"[dim]No git repositories found in {root}[/]")
            return

        display_names = compute_unique_display_names(statuses)
        synced_paths = {s.path for s in snapshot.synced_statuses}

        table = Table(title=f"Local Projects: {root}")
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Branch")
        table.add_column("Sync", justify="center")
        table.add_column("Dirty", justify="center")
        table.add_column("Fetched", justify="right")

        for status in statuses:
            repo_display = display_names.get(status.path, status.display_name)
            if status.path in synced_paths:
                repo_display = f"{repo_display} [green]↻[/]"
            if status.worktree_name:
                repo_display = f"{repo_display} [dim](worktree {status.worktree_name})[/]"
            table.add_row(
                repo_display,
                self._get_branch_display(status),
                self._get_sync_icon(status),
                self._get_dirty_display(status),
                format_relative(status.last_fetch_at),
            )

        self.console.print(table)
        self.console.print()
        self._print_summary(snapshot, shown=len(statuses))

    def _get_branch_display(self, status: LocalRepoStatus) -> str:
        if status.is_detached:
            return f"[dim]{status.branch}[/]"
        if status.upstream_branch:
            return f"[green]{status.branch}[/] [dim]→ {status.upstream_branch}[/]"
        return f"[green]{status.branch}[/]"

    def _get_sync_icon(self, status: LocalRepoStatus) -> str:
        match status.sync_state:
            case SyncState.SYNCED:
                return "[green]✓[/]"
            case SyncState.AHEAD:
                return f"[yellow]⬆ {status.ahead_count}[/]"
            case SyncState.BEHIND:
                return f"[blue]⬇ {status.behind_count}[/]"
            case SyncState.DIVERGED:
                return f"[red]⬆{status.ahead_count} ⬇{status.behind_count}[/]"
            case SyncState.DIRTY:
                return "[yellow]dirty[/]"
            case _:
                if status.error_message:
                    return f"[red]✗ {status.error_message[:20]}[/]"
                return f"[dim]{status.sync_detail.lower()}[/]"

    def _get_dirty_display(self, status: LocalRepoStatus) -> str:
        if status.dirty_counts is None:
            return "[dim]?[/]"
        if status.dirty_counts.is_empty:
            return "[green]clean[/]"
        counts = status.dirty_counts
        parts = []
        if counts.added:
            parts.append(f"[green]+{counts.added}[/]")
        if counts.modified:
            parts.append(f"[yellow]~{counts.modified}[/]")
        if counts.deleted:
            parts.append(f"[red]-{counts.deleted}[/]")
        return " ".join(parts)

    def _print_summary(self, snapshot: LocalProjectsSnapshot, shown: int):
        states: dict[SyncState, int] = defaultdict(int)
        for status in snapshot.statuses:
            states[status.sync_state] += 1

        parts = [f"[bold]Discovered:[/] {snapshot.discovered_repo_count}"]
        if shown != snapshot.discovered_repo_count:
            parts.append(f"[bold]Shown:[/] {shown}")
        if states[SyncState.SYNCED]:
            parts.append(f"[green]✓ Synced:[/] {states[SyncState.SYNCED]}")
        if states[SyncState.AHEAD]:
            parts.append(f"[yellow]⬆ Ahead:[/] {states[SyncState.AHEAD]}")
        if states[SyncState.BEHIND]:
            parts.append(f"[blue]⬇ Behind:[/] {states[SyncState.BEHIND]}")
        if states[SyncState.DIVERGED]:
            parts.append(f"[red]⬆⬇ Diverged:[/] {states[SyncState.DIVERGED]}")
        if states[SyncState.DIRTY]:
            parts.append(f"[yellow]✎ Dirty:[/] {states[SyncState.DIRTY]}")
        if states[SyncState.UNKNOWN]:
            parts.append(f"[dim]? Unknown:[/] {states[SyncState.UNKNOWN]}")
        self.console.print(" | ".join(parts))

        if snapshot.sync_results:
            updated = len(snapshot.synced_statuses)
            failed = len(snapshot.sync_failures)
            line = f"[bold]Auto-sync:[/] {len(snapshot.sync_results)} checked, {updated} updated"
            if failed:
                line += f" [red]({failed} failed)[/]"
            self.console.print(line)
            for failure in snapshot.sync_failures:
                self.console.print(f"  [red]✗ {failure.name}:[/] {failure.error}")

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def print_action_result(
        self,
        action: str,
        status: LocalRepoStatus | None,
        path: Path,
        result: SyncResult | None = None,
        **details: str,
    ):
        name = status.display_name if status else display_path(path)
        if self.use_json:
            payload = {
                "action": action,
                "path": str(path),
                "fullName": status.full_name if status else None,
                "success": True,
                "didFetch": result.did_fetch if result else None,
                "didPull": result.did_pull if result else None,
                "didPush": result.did_push if result else None,
                **details,
            }
            self._print_json(payload)
            return

        past = {
            "sync": "Synced",
            "rebase": "Rebased",
            "reset": "Reset",
            "switch": "Switched",
            "checkout": "Checked out",
        }.get(action, action)
        self.console.print(f"[green]✓[/] {past} [cyan]{name}[/]")
        for label, value in details.items():
            self.console.print(f"  {label}: {value}")
        if result is not None:
            for label, ran in (
                ("Fetch", result.did_fetch),
                ("Pull", result.did_pull),
                ("Push", result.did_push),
            ):
                self.console.print(f"  {label}: {'yes' if ran else 'no'}")

    # -------------------------------------------------------------------------
    # Branches and worktrees
    # -------------------------------------------------------------------------

    def print_branches(
        self,
        snapshot: LocalGitBranchSnapshot,
        path: Path,
        full_name: str | None,
    ):
        if self.use_json:
            payload = {"path": str(path), "fullName": full_name}
            payload.update(snapshot.to_dict())
            self._print_json(payload)
            return

        if snapshot.is_detached_head:
            when = format_relative(snapshot.detached_commit_date)
            author = snapshot.detached_commit_author or "-"
            self.console.print(f"[yellow]Detached HEAD[/] ({when} by {author})")
        if not snapshot.branches:
            self.console.print("[dim]No branches.[/]")
            return

        table = Table(title=f"Branches: {full_name or display_path(path)}")
        table.add_column("Branch", style="cyan", no_wrap=True)
        table.add_column("Current", justify="center")
        table.add_column("Upstream")
        table.add_column("Ahead", justify="right")
        table.add_column("Behind", justify="right")
        table.add_column("Last", justify="right")
        table.add_column("By")
        for branch in snapshot.branches:
            table.add_row(
                branch.name,
                "[green]✓[/]" if branch.is_current else "",
                branch.upstream or "[dim]-[/]",
                _count(branch.ahead_count),
                _count(branch.behind_count),
                format_relative(branch.last_commit_date),
                branch.last_commit_author or "-",
            )
        self.console.print(table)

    def print_worktrees(
        self,
        worktrees: list[LocalGitWorktree],
        path: Path,
        full_name: str | None,
    ):
        if self.use_json:
            payload = {
                "path": str(path),
                "fullName": full_name,
                "worktrees": [w.to_dict() for w in worktrees],
            }
            self._print_json(payload)
            return

        if not worktrees:
            self.console.print("[dim]No worktrees.[/]")
            return

        table = Table(title=f"Worktrees: {full_name or display_path(path)}")
        table.add_column("Path", style="cyan", no_wrap=True)
        table.add_column("Branch")
        table.add_column("Current", justify="center")
        table.add_column("Upstream")
        table.add_column("Ahead", justify="right")
        table.add_column("Behind", justify="right")
        table.add_column("Dirty", justify="center")
        table.add_column("Last", justify="right")
        for worktree in worktrees:
            dirty = worktree.dirty_counts.summary if worktree.dirty_counts else ""
            table.add_row(
                display_path(worktree.path),
                worktree.branch or "[dim](detached)[/]",
                "[green]✓[/]" if worktree.is_current else "",
                worktree.upstream or "[dim]-[/]",
                _count(worktree.ahead_count),
                _count(worktree.behind_count),
                dirty or "-",
                format_relative(worktree.last_commit_date),
            )
        self.console.print(table)
