"""
Remote tree data structures and error classes.

This module holds the types shared by every remote tree client: the entries
returned by a directory listing, the revision committed by a write, and the
error hierarchy raised for failed requests.

Error Policy:
    - RemoteError carries the HTTP status (None for transport failures)
    - RateLimitError marks responses that should be retried with a longer wait
    - ContentDecodeError is raised for payloads that cannot become text and
      is never retried
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------


class RemoteError(Exception):
    """
    Raised when the hosting API rejects a request.

    Attributes:
        message: Human-readable message, taken from the API error body when
            the API provides one.
        status: HTTP status code, or None when no response was received.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        self.message = message
        self.status = status
        super().__init__(f"{message} (HTTP {status})" if status else message)


class RateLimitError(RemoteError):
    """Raised when the API answers with a rate-limit status (403 or 429)."""


class RemoteConnectionError(RemoteError):
    """
    Raised when the API cannot be reached.

    This includes network errors, DNS failures, and timeout errors.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, status=None)


class ContentDecodeError(ValueError):
    """Raised when file content cannot be decoded to UTF-8 text."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot decode {path}: {reason}")


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RepositoryCoordinates:
    """
    Identifies the remote tree to back up and restore.

    Attributes:
        project: Repository in "owner/name" form.
        branch: Branch or ref that reads and writes target.
        api_url: Base URL of the hosting API.
    """

    project: str
    branch: str = "main"
    api_url: str = "https://api.github.com"


@dataclass(frozen=True)
class RemoteEntry:
    """
    One item of a remote directory listing.

    Attributes:
        name: Base name of the item.
        path: Repository-relative path with forward slashes.
        type: "file", "dir", "symlink" or "submodule".
        download_url: Direct download locator, if the API provides one.
        sha: Blob or tree sha of the item.
    """

    name: str
    path: str
    type: str
    download_url: str | None = None
    sha: str | None = None

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteEntry:
        """Create an entry from a contents API item."""
        return cls(
            name=data.get("name", ""),
            path=data.get("path", ""),
            type=data.get("type", "file"),
            download_url=data.get("download_url"),
            sha=data.get("sha"),
        )


@dataclass(frozen=True)
class CommittedRevision:
    """Revision information returned by a successful write."""

    path: str
    content_sha: str | None
    commit_sha: str | None

    @classmethod
    def from_api(cls, path: str, data: dict[str, Any]) -> CommittedRevision:
        content = data.get("content") or {}
        commit = data.get("commit") or {}
        return cls(
            path=content.get("path", path),
            content_sha=content.get("sha"),
            commit_sha=commit.get("sha"),
        )


# -----------------------------------------------------------------------------
# Client Interface
# -----------------------------------------------------------------------------


class RemoteTreeClient(ABC):
    """
    Abstract interface to a remote version-controlled tree.

    Implementations own retry and response decoding. They hold no credential
    state: every operation takes the bearer token from the caller.
    """

    @abstractmethod
    def list_directory(self, path: str, token: str) -> list[RemoteEntry]:
        """List the entries of a directory. Not retried."""

    @abstractmethod
    def fetch_file_content(self, path: str, token: str) -> str:
        """Fetch a file's text content, retrying transient failures."""

    @abstractmethod
    def fetch_revision_token(self, path: str, token: str) -> str | None:
        """Return the revision token of an existing file, None if absent."""

    @abstractmethod
    def upsert_file(
        self,
        path: str,
        content: str,
        token: str,
        revision_token: str | None = None,
        message: str | None = None,
    ) -> CommittedRevision:
        """Create a file, or update it at the given revision."""
