"""Error types raised by the local projects engine."""

from __future__ import annotations

from pathlib import Path


class LocalProjectsError(Exception):
    """Base class for every error the engine surfaces to callers."""


class SettingsError(LocalProjectsError):
    """Settings file could not be read or parsed."""


class DiscoveryError(LocalProjectsError):
    """Scan root is missing, not a directory, or unreadable."""

    def __init__(self, root: Path | None, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Cannot scan {root}: {reason}" if root else f"Cannot scan: {reason}")


class GitEnvironmentError(LocalProjectsError):
    """The git binary is missing, blocked by a sandbox, or otherwise unusable."""

    MISSING = "missing"
    SANDBOXED = "sandboxed"
    UNUSABLE = "unusable"

    def __init__(self, kind: str, message: str, executable: str = ""):
        self.kind = kind
        self.executable = executable
        super().__init__(message)


class GitCommandError(LocalProjectsError):
    """A git invocation exited with a non-zero status."""

    def __init__(
        self,
        command: list[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._describe())

    @property
    def command_line(self) -> str:
        return " ".join(["git", *self.command])

    def _describe(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or "Git command failed."
        return f"`{self.command_line}` failed: {detail}"


class GitTimeoutError(GitCommandError):
    """A git invocation exceeded its wall-clock timeout."""

    def __init__(self, command: list[str], timeout: float):
        self.timeout = timeout
        super().__init__(command, None, stderr=f"timed out after {timeout:g}s")


class SyncError(GitCommandError):
    """A sync, rebase, reset, switch or clone step failed."""

    def __init__(self, action: str, path: Path, error: GitCommandError):
        self.action = action
        self.path = path
        super().__init__(error.command, error.returncode, error.stdout, error.stderr)

    def _describe(self) -> str:
        return f"{self.action} failed for {self.path}: {super()._describe()}"


class SyncPreconditionError(LocalProjectsError):
    """Repository is not in a state the requested action accepts."""

    message = "Repository cannot be synced."

    def __init__(self, path: Path):
        self.path = path
        super().__init__(self.message)


class DirtyWorkingTreeError(SyncPreconditionError):
    message = "Working tree has uncommitted changes."


class MissingUpstreamError(SyncPreconditionError):
    message = "No upstream branch configured."


class DetachedHeadError(SyncPreconditionError):
    message = "Repository is in detached HEAD state."


class ConfirmationRequiredError(LocalProjectsError):
    """A destructive action was attempted without confirmation."""


class ResetCancelledError(LocalProjectsError):
    """The user declined a destructive action."""


class CheckoutError(LocalProjectsError):
    """A repository could not be cloned into the projects folder."""


class NoMatchError(LocalProjectsError):
    """No local repository matched a name or path."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"No local repository matched {target}")


class AmbiguousMatchError(LocalProjectsError):
    """A name matched several local repositories."""

    def __init__(self, target: str, candidates: list[str]):
        self.target = target
        self.candidates = sorted(candidates)
        options = ", ".join(self.candidates)
        super().__init__(
            f"Multiple local repositories matched {target}: {options}. "
            "Use full owner/name or a path."
        )


class ScanSupersededError(LocalProjectsError):
    """A newer scan request replaced this one before it finished."""

    def __init__(self, generation: int):
        self.generation = generation
        super().__init__(f"Scan {generation} was superseded by a newer scan")
