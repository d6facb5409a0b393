"""Process plumbing for the git binary.

Everything above this module talks to git through :class:`GitRunner`, whose
only capability is ``run(args, cwd)``. Swapping in another implementation
(for example an embedded git library) does not touch classification or sync.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from .errors import GitCommandError, GitEnvironmentError, GitTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

PREFERRED_EXECUTABLES = ("/opt/homebrew/bin/git", "/usr/local/bin/git")
SYSTEM_EXECUTABLE = "/usr/bin/git"


@dataclass
class GitResult:
    """Captured output of one git invocation."""

    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def is_sandboxed() -> bool:
    """Check if we run inside a macOS app sandbox."""
    return sys.platform == "darwin" and bool(os.environ.get("APP_SANDBOX_CONTAINER_ID"))


def locate_git() -> str:
    """Resolve the git executable to use.

    Priority order:
    1. $REPOBAR_GIT environment variable
    2. Homebrew / /usr/local installs (skipped when sandboxed)
    3. First git on $PATH
    4. /usr/bin/git
    """
    override = os.environ.get("REPOBAR_GIT")
    if override:
        return override

    if is_sandboxed():
        candidates: list[str] = [SYSTEM_EXECUTABLE]
    else:
        candidates = list(PREFERRED_EXECUTABLES)
        on_path = shutil.which("git")
        if on_path:
            candidates.append(on_path)
        candidates.append(SYSTEM_EXECUTABLE)

    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return SYSTEM_EXECUTABLE


class GitRunner:
    """Run git commands with captured output and a bounded timeout."""

    def __init__(self, executable: str | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable or locate_git()
        self.timeout = timeout
        self._version: str | None = None
        self._version_lock = threading.Lock()

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        # Never block on credential prompts; keep output parseable.
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        return env

    def run(self, args: list[str], cwd: Path | str) -> GitResult:
        """Run git with args in cwd. Non-zero exits are returned, not raised."""
        started = time.monotonic()
        try:
            proc = subprocess.run(
                [self.executable, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                errors="replace",
                stdin=subprocess.DEVNULL,
                env=self._env(),
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("git %s timed out after %ss in %s", " ".join(args), self.timeout, cwd)
            raise GitTimeoutError(args, self.timeout) from e
        except FileNotFoundError as e:
            if not Path(cwd).is_dir():
                raise GitCommandError(args, None, stderr=f"No such directory: {cwd}") from e
            raise GitEnvironmentError(
                GitEnvironmentError.MISSING,
                f"git executable not found at {self.executable}",
                self.executable,
            ) from e
        except PermissionError as e:
            raise GitEnvironmentError(
                GitEnvironmentError.SANDBOXED,
                f"Not permitted to run {self.executable}: {e}",
                self.executable,
            ) from e

        logger.debug(
            "git %s (cwd=%s) -> %d in %.3fs",
            " ".join(args),
            cwd,
            proc.returncode,
            time.monotonic() - started,
        )
        return GitResult(
            args=list(args),
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )

    def run_checked(self, args: list[str], cwd: Path | str) -> str:
        """Run git and return stdout, raising GitCommandError on failure."""
        result = self.run(args, cwd)
        if not result.ok:
            raise GitCommandError(args, result.returncode, result.stdout, result.stderr)
        return result.stdout

    def ensure_available(self) -> str:
        """Check once that git can run; return its version string."""
        with self._version_lock:
            if self._version is not None:
                return self._version
            try:
                result = self.run(["--version"], cwd=Path.home())
            except GitTimeoutError as e:
                raise GitEnvironmentError(
                    GitEnvironmentError.UNUSABLE, str(e), self.executable
                ) from e
            if not result.ok:
                stderr = result.stderr.strip()
                if "xcrun" in stderr or "developer tools" in stderr.lower():
                    kind = GitEnvironmentError.SANDBOXED
                else:
                    kind = GitEnvironmentError.UNUSABLE
                raise GitEnvironmentError(
                    kind,
                    f"{self.executable} --version failed: {stderr or result.returncode}",
                    self.executable,
                )
            self._version = result.stdout.strip()
            logger.debug("Using %s (%s)", self.executable, self._version)
            return self._version
