"""repobar-local: keep every local git clone in view."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cli import app
from .core import (
    AutoSyncEngine,
    DirtyCounts,
    GitOperations,
    GitRepository,
    LocalGitBranchDetails,
    LocalGitBranchSnapshot,
    LocalGitWorktree,
    LocalProjectsSnapshot,
    LocalRepoStatus,
    OperationResult,
    PathLocks,
    ScanCoordinator,
    ScanOptions,
    SyncResult,
    SyncState,
    checkout_repository,
    compute_sync_state,
    discover_repositories,
)
from .errors import (
    AmbiguousMatchError,
    CheckoutError,
    ConfirmationRequiredError,
    DetachedHeadError,
    DirtyWorkingTreeError,
    DiscoveryError,
    GitCommandError,
    GitEnvironmentError,
    GitTimeoutError,
    LocalProjectsError,
    MissingUpstreamError,
    NoMatchError,
    ResetCancelledError,
    ScanSupersededError,
    SettingsError,
    SyncError,
    SyncPreconditionError,
)
from .formatters import OutputFormatter
from .git import GitResult, GitRunner
from .matching import RepoIndex, parse_remote_full_name
from .schema import get_tool_schema
from .settings import LocalProjectsSettings, load_settings

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "DirtyCounts",
    "LocalGitBranchDetails",
    "LocalGitBranchSnapshot",
    "LocalGitWorktree",
    "LocalProjectsSnapshot",
    "LocalRepoStatus",
    "OperationResult",
    "ScanOptions",
    "SyncResult",
    "SyncState",
    # Operations
    "AutoSyncEngine",
    "GitOperations",
    "GitRepository",
    "GitResult",
    "GitRunner",
    "PathLocks",
    "RepoIndex",
    "ScanCoordinator",
    # Functions
    "checkout_repository",
    "compute_sync_state",
    "discover_repositories",
    "get_tool_schema",
    "load_settings",
    "parse_remote_full_name",
    # Settings
    "LocalProjectsSettings",
    # Formatters
    "OutputFormatter",
    # Errors
    "AmbiguousMatchError",
    "CheckoutError",
    "ConfirmationRequiredError",
    "DetachedHeadError",
    "DirtyWorkingTreeError",
    "DiscoveryError",
    "GitCommandError",
    "GitEnvironmentError",
    "GitTimeoutError",
    "LocalProjectsError",
    "MissingUpstreamError",
    "NoMatchError",
    "ResetCancelledError",
    "ScanSupersededError",
    "SettingsError",
    "SyncError",
    "SyncPreconditionError",
]
