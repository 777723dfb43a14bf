"""
Recursive expansion of remote root paths into file descriptors.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from treevault.backup.progress import NullSink, ProgressSink
from treevault.remote.base import RemoteEntry, RemoteError, RemoteTreeClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileDescriptor:
    """
    A remote file selected for backup.

    Attributes:
        path: Repository-relative path, unique within one walk.
        download_url: Direct download locator, None for files added by path.
    """

    path: str
    download_url: str | None = None


@dataclass(frozen=True)
class RootFailure:
    """A root path whose listing failed."""

    root: str
    message: str


@dataclass
class WalkResult:
    """Files found by a walk, plus the roots that could not be read."""

    descriptors: list[FileDescriptor] = field(default_factory=list)
    failures: list[RootFailure] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [d.path for d in self.descriptors]


class TreeWalker:
    """
    Expands root paths into a flat, depth-first list of file descriptors.

    Traversal uses an explicit stack of listing iterators, so the depth of
    the remote tree never bounds the Python call stack. Entries that are
    neither files nor directories (symlinks, submodules) are skipped.

    A listing failure anywhere under a root aborts that root only: whatever
    was found under it is discarded, the failure is reported, and the walk
    moves on to the next root.
    """

    def __init__(self, client: RemoteTreeClient) -> None:
        self.client = client

    def walk(
        self,
        root_paths: list[str],
        token: str,
        sink: ProgressSink | None = None,
    ) -> WalkResult:
        """
        Walk each root path in order.

        Args:
            root_paths: Repository-relative directory (or file) paths.
            token: Bearer credential passed to the client.
            sink: Receives per-root scan and failure lines.

        Returns:
            WalkResult with de-duplicated descriptors in pre-order.
        """
        sink = sink or NullSink()
        result = WalkResult()
        seen: set[str] = set()

        for root in root_paths:
            sink.info(f"Scanning {root}...")
            try:
                found = self._walk_root(root, token)
            except RemoteError as e:
                sink.warning(f"Cannot read {root}: {e}")
                result.failures.append(RootFailure(root, str(e)))
                continue

            added = 0
            for descriptor in found:
                if descriptor.path in seen:
                    continue
                seen.add(descriptor.path)
                result.descriptors.append(descriptor)
                added += 1
            sink.success(f"Found {len(found)} files in {root}")
            if added < len(found):
                logger.debug(f"Skipped {len(found) - added} duplicate paths under {root}")

        return result

    def _walk_root(self, root: str, token: str) -> list[FileDescriptor]:
        found: list[FileDescriptor] = []
        stack: list[Iterator[RemoteEntry]] = [iter(self.client.list_directory(root, token))]

        while stack:
            entry = next(stack[-1], None)
            if entry is None:
                stack.pop()
            elif entry.is_file:
                found.append(FileDescriptor(entry.path, entry.download_url))
            elif entry.is_dir:
                stack.append(iter(self.client.list_directory(entry.path, token)))
            else:
                logger.debug(f"Skipping {entry.type} entry {entry.path}")

        return found
