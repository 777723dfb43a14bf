"""
Run-level errors for backup and restore.

Per-file failures (RemoteError, ContentDecodeError) never reach the caller of
a run; they are recorded in the run's tally. The errors below abort a whole
run, or reject it before it starts.
"""

from __future__ import annotations


class TreeVaultError(Exception):
    """Base exception for errors that abort or reject a run."""

    pass


class BusyError(TreeVaultError):
    """Raised when a run is requested while another run is in progress."""

    pass


class NoCredentialError(TreeVaultError):
    """Raised when no credential is available; no network call was made."""

    pass


class UnknownCategoryError(TreeVaultError):
    """Raised when a backup category is not configured."""

    def __init__(self, category: str, available: list[str]) -> None:
        self.category = category
        self.available = available
        super().__init__(
            f"Unknown category: {category}. Available: {', '.join(available)}"
        )


class NothingToBackupError(TreeVaultError):
    """Raised when a walk finds no files; no archive is produced."""

    pass


class ArchiveReadError(TreeVaultError):
    """Raised when an archive cannot be read; no remote writes were made."""

    pass


class InvalidStateError(TreeVaultError):
    """Raised when a restore is confirmed without a loaded archive."""

    pass
