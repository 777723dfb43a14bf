"""
Shared test doubles for the backup engine tests.

FakeTreeClient keeps a remote tree in memory and behaves like the GitHub
contents API closely enough for walker, builder, restorer and manager tests:
listings are derived from file paths, revision tokens are content hashes,
and writes enforce the revision check.
"""

from __future__ import annotations

import base64
import hashlib
import io
import zipfile
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import unquote

import requests

from treevault.backup.progress import RunLog
from treevault.remote.base import (
    CommittedRevision,
    RemoteEntry,
    RemoteError,
    RemoteTreeClient,
)


def content_sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def make_zip(entries: dict[str, str], directories: list[str] | None = None) -> bytes:
    """Build a ZIP archive in memory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for directory in directories or []:
            archive.writestr(directory.rstrip("/") + "/", b"")
        for path, content in entries.items():
            archive.writestr(path, content.encode("utf-8"))
    return buffer.getvalue()


def encrypted_zip() -> bytes:
    """An archive whose only entry is flagged as encrypted."""
    data = bytearray(make_zip({"a.txt": "secret"}))
    data[data.find(b"PK\x03\x04") + 6] |= 0x01
    data[data.find(b"PK\x01\x02") + 8] |= 0x01
    return bytes(data)


def corrupt_deflate_zip() -> bytes:
    """An archive whose deflate stream starts with an invalid block type."""
    data = bytearray(make_zip({"a.txt": "hello world\n" * 20}))
    header = data.find(b"PK\x03\x04")
    name_length = int.from_bytes(data[header + 26 : header + 28], "little")
    extra_length = int.from_bytes(data[header + 28 : header + 30], "little")
    data[header + 30 + name_length + extra_length] = 0xFF
    return bytes(data)


def api_response(status: int, data: Any = None) -> MagicMock:
    """A contents API response; a None body is not JSON."""
    response = MagicMock()
    response.status_code = status
    response.headers = {}
    response.links = {}
    if data is None:
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    else:
        response.json.return_value = data
    return response


def listing_item(path: str, type: str = "file") -> dict[str, Any]:
    return {"name": path.rsplit("/", 1)[-1], "path": path, "type": type}


def file_body(path: str, content: str) -> dict[str, Any]:
    return {
        **listing_item(path),
        "encoding": "base64",
        "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
    }


def contents_session(bodies: dict[str, Any]) -> requests.Session:
    """
    A requests.Session answering contents API GETs from `bodies`.

    Keys are repository paths. A None value answers 200 with a body that is
    not JSON, and a path that is not a key answers 404.
    """

    def respond(method: str, url: str, **kwargs: Any) -> MagicMock:
        path = unquote(url.split("/contents/", 1)[1])
        if path not in bodies:
            return api_response(404, {"message": "Not Found"})
        return api_response(200, bodies[path])

    session = requests.Session()
    session.request = MagicMock(side_effect=respond)  # type: ignore[method-assign]
    return session


class FakeTreeClient(RemoteTreeClient):
    """
    In-memory remote tree.

    Attributes:
        files: Remote file path -> content.
        list_failures: Directory path -> HTTP status to fail listings with.
        fetch_failures: File path -> exception raised by fetch_file_content.
        revision_failures: File path -> exception raised by fetch_revision_token.
        upsert_failures: File path -> exception raised by upsert_file.
        upserts: (path, content, revision_token) for every accepted write.
        calls: (operation, path) for every call made.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.shas: dict[str, str] = {p: content_sha(c) for p, c in self.files.items()}
        self.list_failures: dict[str, int] = {}
        self.fetch_failures: dict[str, Exception] = {}
        self.revision_failures: dict[str, Exception] = {}
        self.upsert_failures: dict[str, Exception] = {}
        self.upserts: list[tuple[str, str, str | None]] = []
        self.calls: list[tuple[str, str]] = []
        self.tokens_seen: set[str] = set()

    def list_directory(self, path: str, token: str) -> list[RemoteEntry]:
        self._record("list", path, token)
        path = path.strip("/")
        if path in self.list_failures:
            raise RemoteError("Not Found", status=self.list_failures[path])

        if path in self.files:
            return [self._file_entry(path)]

        prefix = f"{path}/" if path else ""
        children: list[str] = []
        for file_path in self.files:
            if file_path.startswith(prefix):
                name = file_path[len(prefix):].split("/", 1)[0]
                if name not in children:
                    children.append(name)
        if not children:
            raise RemoteError("Not Found", status=404)

        entries = []
        for name in sorted(children):
            child = prefix + name
            if child in self.files:
                entries.append(self._file_entry(child))
            else:
                entries.append(RemoteEntry(name=name, path=child, type="dir"))
        return entries

    def fetch_file_content(self, path: str, token: str) -> str:
        self._record("fetch", path, token)
        if path in self.fetch_failures:
            raise self.fetch_failures[path]
        if path not in self.files:
            raise RemoteError("Not Found", status=404)
        return self.files[path]

    def fetch_revision_token(self, path: str, token: str) -> str | None:
        self._record("revision", path, token)
        if path in self.revision_failures:
            raise self.revision_failures[path]
        return self.shas.get(path)

    def upsert_file(
        self,
        path: str,
        content: str,
        token: str,
        revision_token: str | None = None,
        message: str | None = None,
    ) -> CommittedRevision:
        self._record("upsert", path, token)
        if path in self.upsert_failures:
            raise self.upsert_failures[path]

        current = self.shas.get(path)
        if current is not None and revision_token != current:
            raise RemoteError(f"{path} does not match {revision_token}", status=409)
        if current is None and revision_token is not None:
            raise RemoteError(f"{path} does not exist", status=422)

        self.upserts.append((path, content, revision_token))
        self.files[path] = content
        self.shas[path] = content_sha(content)
        return CommittedRevision(path, self.shas[path], f"commit-{len(self.upserts)}")

    def calls_of(self, operation: str) -> list[str]:
        return [path for op, path in self.calls if op == operation]

    def _file_entry(self, path: str) -> RemoteEntry:
        return RemoteEntry(
            name=path.rsplit("/", 1)[-1],
            path=path,
            type="file",
            download_url=f"https://raw.example.com/{path}",
            sha=self.shas[path],
        )

    def _record(self, operation: str, path: str, token: str) -> None:
        self.calls.append((operation, path))
        self.tokens_seen.add(token)


class HookedRunLog(RunLog):
    """RunLog that calls a hook on the first progress event."""

    def __init__(self, hook) -> None:
        super().__init__()
        self._hook = hook
        self._fired = False

    def progress(self, fraction: float) -> None:
        super().progress(fraction)
        if not self._fired:
            self._fired = True
            self._hook()
