"""Shared exception types for forksync."""


class ForkSyncError(Exception):
    """Base exception for all forksync errors."""


class ConfigError(ForkSyncError):
    """Configuration is invalid or missing."""


class ConnectivityError(ForkSyncError):
    """Upstream remote is unreachable or the requested ref does not exist."""


class GitCommandError(ForkSyncError):
    """A git command failed unexpectedly."""

    def __init__(
        self, operation: str, cwd: str, returncode: int, stderr: str = ""
    ) -> None:
        self.operation = operation
        self.cwd = cwd
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"git {operation} failed in {cwd} (exit {returncode}){detail}"
        )


class SyncInProgressError(ForkSyncError):
    """Another sync run already holds the worktree for this repository."""


class MergeAbortedError(ForkSyncError):
    """Operator aborted manual conflict resolution."""


class UnresolvedConflictsError(ForkSyncError):
    """Conflicts remain after manual escalation gave up."""

    def __init__(self, conflicts: list[str]) -> None:
        self.conflicts = conflicts
        super().__init__(f"{len(conflicts)} conflict(s) remain unresolved")
