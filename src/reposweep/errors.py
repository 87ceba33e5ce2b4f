from __future__ import annotations


class ReposweepError(Exception):
    """Base class for errors raised by reposweep."""


class GraphNotInitializedError(ReposweepError):
    """Raised when a validation query runs before the dependency graph is set."""


class BackupFailedError(ReposweepError):
    """Raised when a file could not be archived before a destructive operation."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Backup failed for {path}: {reason}")
        self.path = path
        self.reason = reason


class OperationCancelled(ReposweepError):
    """Raised when a scan or validation pass is cancelled between files."""
