"""
Backup and restore orchestration for TreeVault.

BackupManager turns a configured category into an archive: resolve a token,
walk the category's root paths, add the fixed root files for the full
category, and build the archive. RestoreManager loads a supplied archive,
waits for an explicit confirmation, and replays its entries into the remote
tree.

Each manager is single-flight: it holds one RunState value guarded by a lock,
and a run requested while another is in progress is rejected with BusyError
instead of being queued. Every run returns the manager to IDLE on the way
out, whether it succeeded or failed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from treevault.backup.archive import (
    DEFAULT_COMPRESSION_LEVEL,
    ArchiveBuilder,
    BackupArchive,
    archive_name,
)
from treevault.backup.errors import (
    ArchiveReadError,
    BusyError,
    InvalidStateError,
    NoCredentialError,
    NothingToBackupError,
    UnknownCategoryError,
)
from treevault.backup.progress import NullSink, OperationTally, ProgressSink
from treevault.backup.restore import ArchiveRestorer
from treevault.backup.walker import FileDescriptor, TreeWalker
from treevault.config.credentials import CredentialProvider
from treevault.config.settings import PathSet
from treevault.remote.base import RemoteTreeClient

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Lifecycle state of a manager."""

    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RUNNING = "running"


class _StateGuard:
    """A RunState value with atomic compare-and-set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    def compare_and_set(
        self,
        expected: tuple[RunState, ...],
        new: RunState,
        on_success: Callable[[], None] | None = None,
    ) -> RunState | None:
        """
        Move to `new` if the current state is one of `expected`.

        `on_success` runs while the lock is still held.

        Returns:
            The previous state on success, None if the state did not match.
        """
        with self._lock:
            if self._state not in expected:
                return None
            previous = self._state
            self._state = new
            if on_success is not None:
                on_success()
            return previous

    def set(self, new: RunState) -> None:
        with self._lock:
            self._state = new


@dataclass
class BackupResult:
    """Result of a backup run."""

    category: str
    archive_name: str
    archive_bytes: bytes
    paths: list[str]
    tally: OperationTally
    created_at: datetime
    warnings: list[str] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.paths)

    @property
    def size_bytes(self) -> int:
        return len(self.archive_bytes)


@dataclass(frozen=True)
class RestorePreview:
    """Entries of a loaded archive, shown before a restore is confirmed."""

    archive_name: str
    paths: tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.paths)


class BackupManager:
    """
    Runs category backups, one at a time.

    Attributes:
        client: Remote tree client used for walking and fetching.
        path_set: Configured categories and root files.
        credentials: Supplies the token at the start of each run.
        sink: Receives progress and log lines.

    Example:
        manager = BackupManager(client, settings.path_set, credentials, RunLog())
        result = manager.run("settings")
        Path(result.archive_name).write_bytes(result.archive_bytes)
    """

    def __init__(
        self,
        client: RemoteTreeClient,
        path_set: PathSet,
        credentials: CredentialProvider,
        sink: ProgressSink | None = None,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.path_set = path_set
        self.credentials = credentials
        self.sink = sink or NullSink()
        self.walker = TreeWalker(client)
        self.builder = ArchiveBuilder(client, compression_level=compression_level)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._guard = _StateGuard()

    @property
    def state(self) -> RunState:
        return self._guard.state

    @property
    def is_running(self) -> bool:
        return self.state is RunState.RUNNING

    def run(self, category_key: str) -> BackupResult:
        """
        Back up one category.

        Args:
            category_key: Key of a configured category.

        Returns:
            BackupResult holding the archive bytes and name.

        Raises:
            BusyError: If a backup is already running (nothing else happens).
            NoCredentialError: If no token is available.
            UnknownCategoryError: If the category is not configured.
            NothingToBackupError: If the walk found no files.
        """
        if self._guard.compare_and_set((RunState.IDLE,), RunState.RUNNING) is None:
            raise BusyError("A backup is already running, please wait")

        try:
            return self._run(category_key)
        except Exception as e:
            self.sink.error(f"Backup failed: {e}")
            logger.debug("Backup aborted", exc_info=True)
            raise
        finally:
            self._guard.set(RunState.IDLE)

    def _run(self, category_key: str) -> BackupResult:
        self.sink.info(f"Starting backup of '{category_key}'...")

        token = self.credentials.get_credential()
        if not token:
            raise NoCredentialError("No GitHub token available")
        self.sink.success("Token resolved")

        category = self.path_set.get(category_key)
        if category is None:
            raise UnknownCategoryError(category_key, self.path_set.keys())

        walk = self.walker.walk(category.paths, token, self.sink)
        descriptors = list(walk.descriptors)
        warnings = [f"Cannot read {f.root}: {f.message}" for f in walk.failures]

        root_files = self.path_set.root_files_for(category_key)
        if root_files:
            self.sink.info("Adding root configuration files...")
            known = {d.path for d in descriptors}
            for path in root_files:
                if path not in known:
                    descriptors.append(FileDescriptor(path))
                    known.add(path)
            self.sink.success(f"Added {len(root_files)} root configuration files")

        if not descriptors:
            raise NothingToBackupError(f"No files found to back up for '{category_key}'")

        self.sink.info(f"{len(descriptors)} files to back up")
        build = self.builder.build(descriptors, token, self.sink)
        warnings.extend(f"Failed to fetch {f.path}: {f.message}" for f in build.tally.failures)

        created_at = self._clock()
        name = archive_name(category.label, created_at)
        self.sink.success(f"Backup complete: {name}")

        return BackupResult(
            category=category_key,
            archive_name=name,
            archive_bytes=build.archive_bytes,
            paths=build.paths,
            tally=build.tally,
            created_at=created_at,
            warnings=warnings,
        )


class RestoreManager:
    """
    Restores archives into the remote tree after explicit confirmation.

    States move IDLE -> AWAITING_CONFIRMATION (load) -> RUNNING (confirm)
    -> IDLE. cancel() drops a loaded archive without touching the remote.

    Example:
        manager = RestoreManager(client, credentials, RunLog())
        preview = manager.load(Path(file).read_bytes(), name=file)
        if user_agrees(preview):
            tally = manager.confirm()
        else:
            manager.cancel()
    """

    def __init__(
        self,
        client: RemoteTreeClient,
        credentials: CredentialProvider,
        sink: ProgressSink | None = None,
        commit_prefix: str = "Restore",
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.sink = sink or NullSink()
        self.restorer = ArchiveRestorer(client, commit_prefix=commit_prefix)
        self._guard = _StateGuard()
        self._candidate: BackupArchive | None = None

    @property
    def state(self) -> RunState:
        return self._guard.state

    @property
    def preview(self) -> RestorePreview | None:
        """Preview of the archive awaiting confirmation, if any."""
        candidate = self._candidate
        if candidate is None or self.state is not RunState.AWAITING_CONFIRMATION:
            return None
        return RestorePreview(candidate.name, tuple(candidate.paths))

    def load(self, archive_bytes: bytes, name: str = "archive.zip") -> RestorePreview:
        """
        Read a candidate archive and wait for confirmation.

        Loading while another archive awaits confirmation replaces it.

        Raises:
            BusyError: If a restore is running.
            ArchiveReadError: If the archive is unreadable or holds no files.
                The previous state is kept.
        """
        if self.state is RunState.RUNNING:
            raise BusyError("A restore is already running, please wait")

        self.sink.info(f"Reading {name}...")
        try:
            archive = BackupArchive.from_bytes(archive_bytes, name)
            if not archive.paths:
                raise ArchiveReadError(f"{name} contains no files to restore")
        except ArchiveReadError as e:
            self.sink.error(str(e))
            raise

        previous = self._guard.compare_and_set(
            (RunState.IDLE, RunState.AWAITING_CONFIRMATION),
            RunState.AWAITING_CONFIRMATION,
            on_success=lambda: self._set_candidate(archive),
        )
        if previous is None:
            raise BusyError("A restore is already running, please wait")

        self.sink.success(f"Read {len(archive)} files from {name}")
        return RestorePreview(name, tuple(archive.paths))

    def cancel(self) -> None:
        """
        Drop the loaded archive without restoring it.

        Raises:
            BusyError: If a restore is running.
        """
        if self._guard.compare_and_set(
            (RunState.IDLE, RunState.AWAITING_CONFIRMATION),
            RunState.IDLE,
            on_success=lambda: self._set_candidate(None),
        ) is None:
            raise BusyError("Cannot cancel a restore that is already running")
        self.sink.info("Restore cancelled")

    def _set_candidate(self, archive: BackupArchive | None) -> None:
        self._candidate = archive

    def confirm(self) -> OperationTally:
        """
        Restore the loaded archive, overwriting remote files.

        Returns:
            OperationTally of uploaded and failed files.

        Raises:
            BusyError: If a restore is already running.
            InvalidStateError: If no archive is awaiting confirmation.
            NoCredentialError: If no token is available.
        """
        previous = self._guard.compare_and_set(
            (RunState.AWAITING_CONFIRMATION,), RunState.RUNNING
        )
        if previous is None:
            if self.state is RunState.RUNNING:
                raise BusyError("A restore is already running, please wait")
            raise InvalidStateError("No archive loaded for restore")

        archive = self._candidate
        try:
            if archive is None:
                raise InvalidStateError("No archive loaded for restore")
            return self._run(archive)
        except Exception as e:
            self.sink.error(f"Restore failed: {e}")
            logger.debug("Restore aborted", exc_info=True)
            raise
        finally:
            self._candidate = None
            self._guard.set(RunState.IDLE)

    def restore(
        self,
        archive_bytes: bytes,
        name: str,
        confirm: Callable[[RestorePreview], bool],
    ) -> OperationTally | None:
        """
        Load an archive, ask for confirmation, and restore it.

        Args:
            archive_bytes: Raw archive data.
            name: Archive file name, for log lines.
            confirm: Called with the preview; the restore runs only if it
                returns True.

        Returns:
            The tally, or None if the restore was declined.
        """
        preview = self.load(archive_bytes, name)
        if not confirm(preview):
            self.cancel()
            return None
        return self.confirm()

    def _run(self, archive: BackupArchive) -> OperationTally:
        self.sink.info(f"Starting restore of {len(archive)} files from {archive.name}...")

        token = self.credentials.get_credential()
        if not token:
            raise NoCredentialError("No GitHub token available")
        self.sink.success("Token resolved")

        tally = self.restorer.restore(archive, archive.paths, token, self.sink)
        self.sink.success(
            f"Restore complete: {tally.succeeded} succeeded, {tally.failed} failed"
        )
        return tally
