"""
Replay of archive entries into the remote tree.

Each entry is written with a read-before-write: the current revision token
of the remote file is fetched first, so an existing file is updated at the
revision it has right now and a missing one is created. Tokens are looked up
per entry and never cached across runs. A token made stale by a concurrent
external change is rejected by the remote and recorded as a failure; it is
never retried or merged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from treevault.backup.archive import BackupArchive
from treevault.backup.progress import NullSink, OperationTally, ProgressSink
from treevault.remote.base import ContentDecodeError, RemoteError, RemoteTreeClient

logger = logging.getLogger(__name__)

RESTORE_MILESTONE = 5


def is_safe_path(path: str) -> bool:
    """Check that an entry name is a plain repository-relative path."""
    if not path or path.startswith("/") or "\\" in path:
        return False
    return all(part not in ("", ".", "..") for part in path.split("/"))


class ArchiveRestorer:
    """Upserts archive entries through a remote tree client, one at a time."""

    def __init__(self, client: RemoteTreeClient, commit_prefix: str = "Restore") -> None:
        self.client = client
        self.commit_prefix = commit_prefix

    def restore(
        self,
        archive: BackupArchive,
        paths: Iterable[str],
        token: str,
        sink: ProgressSink | None = None,
    ) -> OperationTally:
        """
        Write each listed entry back to the remote tree.

        Every path is attempted regardless of earlier failures.

        Args:
            archive: The archive to read entries from.
            paths: Entry paths to restore, in order.
            token: Bearer credential passed to the client.
            sink: Receives progress after every file and a milestone line
                every 5 files and on the last one.

        Returns:
            OperationTally with per-file failures.
        """
        sink = sink or NullSink()
        paths = list(paths)
        total = len(paths)
        tally = OperationTally()

        for processed, path in enumerate(paths, start=1):
            try:
                self._restore_one(archive, path, token)
                tally.record_success()
            except (RemoteError, ContentDecodeError, ValueError, KeyError) as e:
                message = e.args[0] if isinstance(e, KeyError) and e.args else str(e)
                sink.warning(f"Failed to upload {path}: {message}")
                tally.record_failure(path, str(message))

            sink.progress(processed / total)
            if processed % RESTORE_MILESTONE == 0 or processed == total:
                sink.info(f"Processed {processed}/{total} files...")

        logger.info(f"Restore finished: {tally.summary()}")
        return tally

    def _restore_one(self, archive: BackupArchive, path: str, token: str) -> None:
        if not is_safe_path(path):
            raise ValueError(f"Refusing unsafe archive path: {path!r}")

        content = archive.read_text(path)
        revision_token = self.client.fetch_revision_token(path, token)
        revision = self.client.upsert_file(
            path,
            content,
            token,
            revision_token=revision_token,
            message=f"{self.commit_prefix}: {path}",
        )
        action = "Updated" if revision_token else "Created"
        logger.debug(f"{action} {path} at {revision.commit_sha}")
