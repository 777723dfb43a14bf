"""
Backup archive creation and reading.

Archives are ZIP files compressed with deflate. Each entry is keyed by the
file's repository-relative path (forward slashes, no leading slash), so a
restore can use entry names unchanged as write targets.
"""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from datetime import UTC, datetime

from treevault.backup.errors import ArchiveReadError
from treevault.backup.progress import NullSink, OperationTally, ProgressSink
from treevault.backup.walker import FileDescriptor
from treevault.remote.base import ContentDecodeError, RemoteError, RemoteTreeClient

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = "zip"
DEFAULT_COMPRESSION_LEVEL = 6
BUILD_MILESTONE = 10


def archive_name(label: str, timestamp: datetime, ext: str = ARCHIVE_EXTENSION) -> str:
    """
    Build the file name of a backup archive.

    The timestamp is converted to UTC and truncated to whole seconds, with
    ':' and '.' replaced by '-', e.g. backup-settings-2024-01-15T10-30-00.zip.
    Naive timestamps are taken to be UTC already.

    Args:
        label: Category label (e.g. "settings", "source-code").
        timestamp: Time the backup was made.
        ext: File extension without the dot.
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(UTC)
    return f"backup-{label}-{timestamp.strftime('%Y-%m-%dT%H-%M-%S')}.{ext}"


@dataclass
class BuildResult:
    """Archive bytes produced by a build, with the files it holds."""

    archive_bytes: bytes
    paths: list[str] = field(default_factory=list)
    tally: OperationTally = field(default_factory=OperationTally)

    @property
    def size_bytes(self) -> int:
        return len(self.archive_bytes)


class ArchiveBuilder:
    """
    Fetches remote files one at a time and packs them into a ZIP archive.

    A file that cannot be fetched or decoded is reported as a warning,
    recorded in the tally and left out of the archive; it never aborts the
    build.
    """

    def __init__(
        self,
        client: RemoteTreeClient,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    ) -> None:
        self.client = client
        self.compression_level = compression_level

    def build(
        self,
        descriptors: list[FileDescriptor],
        token: str,
        sink: ProgressSink | None = None,
    ) -> BuildResult:
        """
        Fetch every descriptor and serialize the results into one archive.

        Args:
            descriptors: Files to include, in archive order.
            token: Bearer credential passed to the client.
            sink: Receives progress after every file and a milestone line
                every 10 files and on the last one.

        Returns:
            BuildResult with the archive bytes and the paths it contains.
        """
        sink = sink or NullSink()
        total = len(descriptors)
        tally = OperationTally()
        contents: dict[str, str] = {}

        sink.info(f"Downloading {total} files...")

        for processed, descriptor in enumerate(descriptors, start=1):
            try:
                contents[descriptor.path] = self.client.fetch_file_content(
                    descriptor.path, token
                )
                tally.record_success()
            except (RemoteError, ContentDecodeError) as e:
                sink.warning(f"Failed to fetch {descriptor.path}: {e}")
                tally.record_failure(descriptor.path, str(e))

            sink.progress(processed / total)
            if processed % BUILD_MILESTONE == 0 or processed == total:
                sink.info(f"Processed {processed}/{total} files...")

        sink.info("Creating ZIP archive...")
        archive_bytes = self._serialize(contents)
        logger.info(
            f"Archive built: {len(contents)} entries, {len(archive_bytes):,} bytes"
        )
        return BuildResult(archive_bytes=archive_bytes, paths=list(contents), tally=tally)

    def _serialize(self, contents: dict[str, str]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compression_level,
        ) as archive:
            for path, text in contents.items():
                archive.writestr(path, text.encode("utf-8"))
        return buffer.getvalue()


class BackupArchive:
    """
    Read-only view of a backup archive held in memory.

    Attributes:
        name: File name the archive was supplied under.
        paths: File entry names in archive order, directories excluded.
    """

    def __init__(self, archive: zipfile.ZipFile, name: str) -> None:
        self._archive = archive
        self.name = name
        self.paths = [info.filename for info in archive.infolist() if not info.is_dir()]

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "archive.zip") -> BackupArchive:
        """
        Open an archive from its raw bytes.

        Raises:
            ArchiveReadError: If the data is not a readable ZIP archive.
        """
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
            bad_member = archive.testzip()
        except (
            zipfile.BadZipFile,
            zipfile.LargeZipFile,
            OSError,
            EOFError,
            RuntimeError,
            NotImplementedError,
            zlib.error,
        ) as e:
            raise ArchiveReadError(f"Cannot read archive {name}: {e}") from e
        if bad_member is not None:
            raise ArchiveReadError(f"Cannot read archive {name}: corrupt entry {bad_member}")
        return cls(archive, name)

    def __len__(self) -> int:
        return len(self.paths)

    def read_text(self, path: str) -> str:
        """
        Read one entry as UTF-8 text.

        Raises:
            KeyError: If the archive has no such entry.
            ContentDecodeError: If the entry is not valid UTF-8.
        """
        raw = self._archive.read(path)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentDecodeError(path, f"not valid UTF-8: {e}") from e

    def read_all(self) -> dict[str, str]:
        """Read every file entry as text, keyed by path."""
        return {path: self.read_text(path) for path in self.paths}


def list_entries(archive_bytes: bytes) -> list[str]:
    """
    List the repository paths stored in an archive.

    Raises:
        ArchiveReadError: If the data is not a readable ZIP archive.
    """
    return BackupArchive.from_bytes(archive_bytes).paths
