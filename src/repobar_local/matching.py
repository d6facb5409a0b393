"""Map local working copies to `owner/name` identities."""

from __future__ import annotations

import os
import re
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from .errors import AmbiguousMatchError, NoMatchError

if TYPE_CHECKING:
    from .core import LocalRepoStatus

URL_SCHEMES = frozenset({"ssh", "git", "http", "https", "git+ssh", "ssh+git"})

# user@host:owner/name.git
_SCP_LIKE = re.compile(r"^(?:[^@/\s]+@)?(?P<host>[^:/\s]+):(?P<path>\S+)$")


def parse_remote_full_name(url: str) -> tuple[str, str] | None:
    """Parse a remote URL into (owner, name).

    Supports scp-like SSH (`git@host:owner/name.git`) and URL forms
    (`https://host/owner/name.git`, `ssh://git@host:22/owner/name`). The
    `.git` suffix is optional. Local paths and file:// URLs return None.
    """
    url = url.strip()
    if not url:
        return None

    if "://" in url:
        parts = urlsplit(url)
        if parts.scheme.lower() not in URL_SCHEMES or not parts.hostname:
            return None
        path = parts.path
    else:
        match = _SCP_LIKE.match(url)
        if not match:
            return None
        path = match.group("path")

    segments = [s for s in path.strip("/").split("/") if s]
    if len(segments) != 2:
        return None
    owner, name = segments[0], segments[1].removesuffix(".git")
    if not owner or not name:
        return None
    return owner, name


def format_full_name(parsed: tuple[str, str]) -> str:
    owner, name = parsed
    return f"{owner}/{name}"


def _canonical(path: Path | str) -> str:
    return os.path.realpath(os.path.expanduser(str(path)))


def candidate_labels(statuses: Iterable[LocalRepoStatus]) -> list[str]:
    """Labels for a disambiguation list; paths are added where names collide."""
    statuses = list(statuses)
    counts: dict[str, int] = defaultdict(int)
    for status in statuses:
        counts[status.display_name] += 1
    labels = []
    for status in statuses:
        label = status.display_name
        if counts[label] > 1:
            label = f"{label} ({status.path})"
        labels.append(label)
    return sorted(labels)


class RepoIndex:
    """Lookup tables over one snapshot's statuses.

    Full names are stored as parsed and looked up case-insensitively.
    `preferred_paths_by_full_name` pins one local path to an `owner/name`,
    which is the only way to pick between two clones of the same repository.
    """

    def __init__(
        self,
        statuses: Iterable[LocalRepoStatus],
        preferred_paths_by_full_name: dict[str, str] | None = None,
    ):
        self.statuses = list(statuses)
        self.preferred_paths = {
            full_name.lower(): _canonical(path)
            for full_name, path in (preferred_paths_by_full_name or {}).items()
        }
        self.by_name_lowercased: dict[str, list[LocalRepoStatus]] = defaultdict(list)
        self._by_full_name: dict[str, list[LocalRepoStatus]] = defaultdict(list)
        for status in self.statuses:
            self.by_name_lowercased[status.name.lower()].append(status)
            if status.full_name:
                self._by_full_name[status.full_name.lower()].append(status)
        self.by_name_lowercased = dict(self.by_name_lowercased)
        self._by_full_name = dict(self._by_full_name)

    def _preferred(self, full_name: str) -> LocalRepoStatus | None:
        path = self.preferred_paths.get(full_name.lower())
        if path is None:
            return None
        for status in self.statuses:
            if _canonical(status.path) == path:
                return status
        return None

    def candidates_for_full_name(self, full_name: str) -> list[LocalRepoStatus]:
        return list(self._by_full_name.get(full_name.lower(), []))

    def status_for_full_name(self, full_name: str) -> LocalRepoStatus | None:
        """The pinned clone, else the only clone; None when absent or ambiguous."""
        preferred = self._preferred(full_name)
        if preferred is not None:
            return preferred
        candidates = self.candidates_for_full_name(full_name)
        if len(candidates) == 1:
            return candidates[0]
        return None

    def matches_for_name(self, name: str) -> list[LocalRepoStatus]:
        return list(self.by_name_lowercased.get(name.lower(), []))

    def resolve(self, target: str) -> LocalRepoStatus:
        """Resolve `owner/name` or a bare name to exactly one status.

        Raises AmbiguousMatchError listing every candidate, or NoMatchError.
        """
        target = target.strip()
        name = target
        if "/" in target:
            status = self.status_for_full_name(target)
            if status is not None:
                return status
            same_identity = self.candidates_for_full_name(target)
            if len(same_identity) > 1:
                raise AmbiguousMatchError(target, candidate_labels(same_identity))
            name = target.rstrip("/").rsplit("/", 1)[-1]

        matches = self.matches_for_name(name)
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise AmbiguousMatchError(target, candidate_labels(matches))
        raise NoMatchError(target)
