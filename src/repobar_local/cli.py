"""Command-line interface."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .core import (
    AutoSyncEngine,
    GitOperations,
    GitRepository,
    LocalProjectsSnapshot,
    LocalRepoStatus,
    ScanCoordinator,
    ScanOptions,
    checkout_repository,
)
from .errors import ConfirmationRequiredError, DiscoveryError, LocalProjectsError, NoMatchError
from .formatters import OutputFormatter, display_path
from .git import GitRunner
from .matching import RepoIndex
from .schema import get_tool_schema
from .settings import LocalProjectsSettings, expand_path, load_settings

app = typer.Typer(
    name="repobar-local",
    help="Keep every local git clone in view: scan, classify and safely sync.",
    no_args_is_help=True,
)
local_app = typer.Typer(help="Scan local projects and act on a single repository.")
app.add_typer(local_app, name="local")

err_console = Console(stderr=True)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"repobar-local {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output a machine-readable description of the commands",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Settings file (default: $REPOBAR_LOCAL_CONFIG or ~/.config/repobar-local/settings.json)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every git invocation to stderr",
    ),
):
    """repobar-local: keep every local git clone in view."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
        stream=sys.stderr,
    )
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()
    ctx.obj = {"config": config}


# =============================================================================
# Helpers
# =============================================================================


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print engine errors to stderr and exit with status 1."""
    try:
        yield
    except LocalProjectsError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(1) from e


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=None if not json_output else False)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def get_settings(ctx: typer.Context) -> LocalProjectsSettings:
    config = (ctx.obj or {}).get("config")
    return load_settings(Path(expand_path(str(config))) if config else None)


def make_coordinator(settings: LocalProjectsSettings) -> ScanCoordinator:
    return ScanCoordinator(GitRunner(timeout=settings.git_timeout_seconds))


@dataclass
class LocalRepoResolution:
    """A CLI target resolved to one repository."""

    path: Path
    status: LocalRepoStatus | None = None

    @property
    def display_name(self) -> str:
        return self.status.display_name if self.status else display_path(self.path)

    @property
    def full_name(self) -> str | None:
        return self.status.full_name if self.status else None


def resolve_local_target(
    target: str,
    settings: LocalProjectsSettings,
    coordinator: ScanCoordinator,
) -> LocalRepoResolution:
    """Resolve a path, `owner/name` or bare name to one repository."""
    target = target.strip()
    if not target:
        raise NoMatchError("(empty)")

    candidate = Path(expand_path(target))
    if candidate.exists():
        directory = candidate if candidate.is_dir() else candidate.parent
        toplevel = GitOperations(directory, coordinator.runner).get_toplevel()
        if toplevel is None:
            raise NoMatchError(display_path(candidate))
        snapshot = coordinator.snapshot_paths([toplevel])
        status = snapshot.statuses[0] if snapshot.statuses else None
        return LocalRepoResolution(path=toplevel, status=status)

    if not settings.root_path:
        raise DiscoveryError(
            None, "local projects root not set; pass a path or set rootPath in settings"
        )
    snapshot = coordinator.snapshot(
        ScanOptions.from_settings(
            settings, auto_sync_enabled=False, include_only_repo_names=[]
        )
    )
    index = RepoIndex(snapshot.statuses, settings.preferred_local_paths_by_full_name)
    status = index.resolve(target)
    return LocalRepoResolution(path=status.path, status=status)


def confirm_hard_reset(display: str) -> bool:
    """Ask for the word `reset`; refuse outright without a terminal."""
    if not sys.stdin.isatty():
        raise ConfirmationRequiredError(
            "Refusing to hard reset in non-interactive mode without --yes"
        )
    err_console.print(f"Hard reset [cyan]{escape(display)}[/] to upstream. This is destructive.")
    response = typer.prompt("Type 'reset' to continue", default="", show_default=False)
    return response.strip().lower() == "reset"


# =============================================================================
# local
# =============================================================================


@local_app.callback(invoke_without_command=True)
def local(
    ctx: typer.Context,
    root: str = typer.Option(
        None,
        "--root",
        "-r",
        help="Root folder to scan (defaults to the configured root)",
    ),
    depth: int = typer.Option(
        None,
        "--depth",
        "-d",
        min=1,
        max=6,
        help="Directory hops from the root to a repository",
    ),
    sync: bool = typer.Option(
        False,
        "--sync/--no-sync",
        help="Fetch and fast-forward clean repositories (push when strictly ahead)",
    ),
    limit: int = typer.Option(
        None,
        "--limit",
        "-n",
        min=1,
        help="Show at most N repositories",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """List local repositories with their sync state."""
    if ctx.invoked_subcommand is not None:
        return

    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        options = ScanOptions.from_settings(
            settings,
            root_path=root,
            max_depth=depth,
            auto_sync_enabled=sync,
            force_fetch=sync,
        )
        coordinator = make_coordinator(settings)

        if not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(
                    "Scanning and syncing..." if sync else "Scanning repositories...",
                    total=None,
                )
                snapshot: LocalProjectsSnapshot = coordinator.snapshot(options)
        else:
            snapshot = coordinator.snapshot(options)

    formatter.print_snapshot(snapshot, limit=limit)


@local_app.command("sync")
def local_sync(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Sync a local repository (fetch, fast-forward, push)."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        result = coordinator.sync_engine.smart_sync(resolved.path)
    formatter.print_action_result("sync", resolved.status, resolved.path, result)


@local_app.command("rebase")
def local_rebase(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Rebase a local repository onto its upstream."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        coordinator.sync_engine.rebase_onto_upstream(resolved.path)
    formatter.print_action_result("rebase", resolved.status, resolved.path)


@local_app.command("reset")
def local_reset(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Hard reset a local repository to its upstream (destructive)."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        engine: AutoSyncEngine = coordinator.sync_engine
        engine.hard_reset_to_upstream(
            resolved.path,
            assume_yes=yes,
            confirm=lambda _: confirm_hard_reset(resolved.display_name),
        )
    formatter.print_action_result("reset", resolved.status, resolved.path)


@local_app.command("switch")
def local_switch(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    branch: str = typer.Argument(..., help="Branch to switch to"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Switch a local repository to another branch."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        coordinator.sync_engine.switch_branch(resolved.path, branch)
    formatter.print_action_result("switch", resolved.status, resolved.path, branch=branch)


@local_app.command("branches")
def local_branches(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List local branches."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        snapshot = GitRepository(resolved.path, coordinator.runner).branch_details()
    formatter.print_branches(snapshot, resolved.path, resolved.full_name)


@app.command()
def worktrees(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Repository path, owner/name, or name"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List local worktrees."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        coordinator = make_coordinator(settings)
        resolved = resolve_local_target(target, settings, coordinator)
        entries = GitRepository(resolved.path, coordinator.runner).worktrees()
    formatter.print_worktrees(entries, resolved.path, resolved.full_name)


@app.command()
def checkout(
    ctx: typer.Context,
    full_name: str = typer.Argument(..., help="Repository as owner/name"),
    root: str = typer.Option(
        None,
        "--root",
        "-r",
        help="Folder to clone into (defaults to the configured root)",
    ),
    destination: str = typer.Option(
        None,
        "--destination",
        "--dest",
        help="Explicit destination folder",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Clone a repository into the local projects folder."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        settings = get_settings(ctx)
        dest = checkout_repository(
            full_name,
            host=settings.clone_host,
            root=root or settings.root_path,
            destination=destination,
            runner=GitRunner(timeout=settings.git_timeout_seconds),
        )
    formatter.print_action_result("checkout", None, dest, repository=full_name)


if __name__ == "__main__":
    app()
