"""
Backup and restore engine for TreeVault.

This module walks remote root paths, packs the files it finds into a ZIP
archive, and replays archives back into the remote tree.

Usage:
    from treevault.backup import BackupManager, RestoreManager, RunLog

    # Create a backup
    manager = BackupManager(client, settings.path_set, credentials, RunLog())
    result = manager.run("settings")

    # Restore from backup
    restorer = RestoreManager(client, credentials, RunLog())
    preview = restorer.load(archive_bytes, name="backup-settings.zip")
    tally = restorer.confirm()
"""

from treevault.backup.archive import (
    ArchiveBuilder,
    BackupArchive,
    BuildResult,
    archive_name,
    list_entries,
)
from treevault.backup.errors import (
    ArchiveReadError,
    BusyError,
    InvalidStateError,
    NoCredentialError,
    NothingToBackupError,
    TreeVaultError,
    UnknownCategoryError,
)
from treevault.backup.manager import (
    BackupManager,
    BackupResult,
    RestoreManager,
    RestorePreview,
    RunState,
)
from treevault.backup.progress import (
    FileFailure,
    LogEntry,
    NullSink,
    OperationTally,
    ProgressSink,
    RunLog,
)
from treevault.backup.restore import ArchiveRestorer
from treevault.backup.walker import FileDescriptor, TreeWalker, WalkResult

__all__ = [
    # Orchestration
    "BackupManager",
    "BackupResult",
    "RestoreManager",
    "RestorePreview",
    "RunState",
    # Engine
    "TreeWalker",
    "WalkResult",
    "FileDescriptor",
    "ArchiveBuilder",
    "BuildResult",
    "BackupArchive",
    "ArchiveRestorer",
    "archive_name",
    "list_entries",
    # Progress
    "ProgressSink",
    "RunLog",
    "NullSink",
    "LogEntry",
    "OperationTally",
    "FileFailure",
    # Errors
    "TreeVaultError",
    "BusyError",
    "NoCredentialError",
    "UnknownCategoryError",
    "NothingToBackupError",
    "ArchiveReadError",
    "InvalidStateError",
]
