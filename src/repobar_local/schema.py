"""Machine-readable description of the CLI for scripts and AI agents."""

from __future__ import annotations

from ._version import __version__

_TARGET = {
    "type": "string",
    "description": "Repository path, owner/name, or bare repository name",
}
_JSON = {
    "type": "boolean",
    "description": "Output as JSON for machine parsing",
    "default": False,
}


def _tool(name: str, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": {**properties, "json": _JSON},
            "required": required,
        },
    }


def get_tool_schema() -> dict:
    """Generate the tool schema."""
    return {
        "name": "repobar-local",
        "version": __version__,
        "description": (
            "Discover local git working copies under a root folder, report each one's "
            "state relative to its upstream (synced, ahead, behind, diverged, dirty), "
            "and fast-forward clean repositories that are only behind."
        ),
        "usage": "repobar-local <command> [target] [options]",
        "exitCodes": {"0": "success", "1": "validation or git error (message on stderr)"},
        "tools": [
            _tool(
                "local",
                "Scan the configured root (or --root) and list every repository with its "
                "branch, upstream, ahead/behind counts and dirty files. With --sync, clean "
                "repositories are fetched, fast-forwarded when behind, and pushed when ahead.",
                {
                    "root": {"type": "string", "description": "Root folder to scan (~ allowed)"},
                    "depth": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": 6,
                        "description": "Directory hops from root to a repository",
                    },
                    "sync": {"type": "boolean", "description": "Auto-sync eligible repositories"},
                    "limit": {"type": "integer", "description": "Show at most N repositories"},
                },
                [],
            ),
            _tool(
                "local sync",
                "Fetch, then fast-forward if strictly behind or push if strictly ahead. "
                "Never merges, rebases or force-pushes.",
                {"target": _TARGET},
                ["target"],
            ),
            _tool(
                "local rebase",
                "Fetch and rebase the current branch onto its upstream. Requires a clean "
                "working tree; a conflicting rebase is aborted.",
                {"target": _TARGET},
                ["target"],
            ),
            _tool(
                "local reset",
                "DESTRUCTIVE: hard reset the current branch to its upstream. Requires --yes "
                "when not run from an interactive terminal.",
                {
                    "target": _TARGET,
                    "yes": {"type": "boolean", "description": "Skip confirmation prompt"},
                },
                ["target"],
            ),
            _tool(
                "local switch",
                "Switch a repository to another branch with git switch. git refuses when "
                "local changes would be overwritten.",
                {
                    "target": _TARGET,
                    "branch": {"type": "string", "description": "Branch to switch to"},
                },
                ["target", "branch"],
            ),
            _tool(
                "local branches",
                "List local branches with upstream, ahead/behind and last commit.",
                {"target": _TARGET},
                ["target"],
            ),
            _tool(
                "worktrees",
                "List worktrees of a repository with branch, upstream and dirty counts.",
                {"target": _TARGET},
                ["target"],
            ),
            _tool(
                "checkout",
                "Clone owner/name from the configured host into the local projects root "
                "(or --root, or an explicit --destination). Fails if the destination exists.",
                {
                    "fullName": {"type": "string", "description": "Repository as owner/name"},
                    "root": {"type": "string", "description": "Folder to clone into"},
                    "destination": {"type": "string", "description": "Explicit destination"},
                },
                ["fullName"],
            ),
        ],
    }
