"""
GitHub contents API client for TreeVault.

Lists directories, reads file payloads and writes files in a GitHub
repository through the REST contents endpoint:

    GET  /repos/{owner}/{name}/contents/{path}?ref={branch}
    PUT  /repos/{owner}/{name}/contents/{path}

Authentication:
    Every call takes the bearer token as an argument. The client keeps no
    credential state, so one client can serve runs made with different tokens.

Rate Limiting:
    GitHub answers 403 (secondary limits) or 429 when a token is throttled.
    fetch_file_content() waits attempt x rate_limit_delay before retrying
    those, and attempt x retry_delay for any other failure. Directory
    listings and writes are never retried here; callers decide.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any
from urllib.parse import quote

import requests

from treevault.remote.base import (
    CommittedRevision,
    ContentDecodeError,
    RateLimitError,
    RemoteConnectionError,
    RemoteEntry,
    RemoteError,
    RemoteTreeClient,
    RepositoryCoordinates,
)

logger = logging.getLogger("treevault.remote.github")

RATE_LIMIT_STATUSES = frozenset({403, 429})


class GitHubTreeClient(RemoteTreeClient):
    """
    Client for one repository branch on the GitHub contents API.

    Attributes:
        coordinates: Repository, branch and API base URL.
        max_attempts: Total attempts made by fetch_file_content().
        rate_limit_delay: Wait unit in seconds after a rate-limit response.
        retry_delay: Wait unit in seconds after any other failure.
        timeout: Per-request timeout in seconds.

    Example:
        client = GitHubTreeClient(RepositoryCoordinates("octo/site"))
        for entry in client.list_directory("src/content", token):
            if entry.is_file:
                print(client.fetch_file_content(entry.path, token))
    """

    default_max_attempts: int = 3
    default_rate_limit_delay: float = 1.0
    default_retry_delay: float = 0.5
    default_timeout: float = 30.0
    page_size: int = 100

    def __init__(
        self,
        coordinates: RepositoryCoordinates,
        max_attempts: int | None = None,
        rate_limit_delay: float | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.coordinates = coordinates
        self.max_attempts = (
            self.default_max_attempts if max_attempts is None else max_attempts
        )
        self.rate_limit_delay = (
            self.default_rate_limit_delay if rate_limit_delay is None else rate_limit_delay
        )
        self.retry_delay = self.default_retry_delay if retry_delay is None else retry_delay
        self.timeout = self.default_timeout if timeout is None else timeout

        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/vnd.github.v3+json"})

    def __enter__(self) -> GitHubTreeClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def list_directory(self, path: str, token: str) -> list[RemoteEntry]:
        """
        List the entries of a remote directory.

        Follows Link-header pagination until every page has been read. When
        the path addresses a single file the API returns an object instead
        of a list, and the result holds just that file.

        Args:
            path: Repository-relative directory path.
            token: Bearer credential.

        Returns:
            Entries in API order.

        Raises:
            RemoteError: If any page request fails.
        """
        entries: list[RemoteEntry] = []
        url: str | None = self._contents_url(path)
        params: dict[str, Any] | None = {
            "ref": self.coordinates.branch,
            "per_page": self.page_size,
        }

        while url:
            response = self._request("GET", url, path, token, params=params)
            self._check_response(response, f"Failed to list {path}")
            data = _read_json(response, f"Failed to list {path}")

            if isinstance(data, dict):
                return [RemoteEntry.from_api(data)]

            entries.extend(RemoteEntry.from_api(item) for item in data)

            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        return entries

    def fetch_file_content(self, path: str, token: str) -> str:
        """
        Fetch and decode the text content of a remote file.

        Args:
            path: Repository-relative file path.
            token: Bearer credential.

        Returns:
            The file content as text.

        Raises:
            RemoteError: The last failure once all attempts are used.
            ContentDecodeError: If the payload is not base64-encoded UTF-8.
        """
        last_error: RemoteError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                data = self._get_contents(path, token)
                return decode_content(path, data)
            except RateLimitError as e:
                last_error = e
                delay = attempt * self.rate_limit_delay
                reason = "Rate limited"
            except RemoteError as e:
                last_error = e
                delay = attempt * self.retry_delay
                reason = f"Request failed ({e})"

            if attempt < self.max_attempts:
                logger.warning(
                    f"{reason} fetching {path}, retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                time.sleep(delay)

        if last_error:
            raise last_error
        raise RemoteError(f"No attempts made to fetch {path}")

    def fetch_revision_token(self, path: str, token: str) -> str | None:
        """
        Look up the current revision token (blob sha) of a remote file.

        Args:
            path: Repository-relative file path.
            token: Bearer credential.

        Returns:
            The sha of the existing file, or None if the file does not exist.

        Raises:
            RemoteError: For failures other than 404.
        """
        response = self._request(
            "GET",
            self._contents_url(path),
            path,
            token,
            params={"ref": self.coordinates.branch},
        )
        if response.status_code == 404:
            return None
        self._check_response(response, f"Failed to read {path}")

        data = _read_json(response, f"Failed to read {path}")
        if not isinstance(data, dict):
            raise RemoteError(f"{path} is a directory on the remote")
        return data.get("sha")

    def upsert_file(
        self,
        path: str,
        content: str,
        token: str,
        revision_token: str | None = None,
        message: str | None = None,
    ) -> CommittedRevision:
        """
        Create or update a remote file.

        With a revision token the remote updates the file at that revision;
        without one it creates a new file. A stale token is rejected by the
        remote and surfaces as a RemoteError carrying the remote's message.

        Args:
            path: Repository-relative file path.
            content: New file content as text.
            token: Bearer credential.
            revision_token: sha of the existing file, if any.
            message: Commit message (default "Restore: <path>").

        Returns:
            CommittedRevision for the new file state.

        Raises:
            RemoteError: If the write is rejected.
        """
        body: dict[str, Any] = {
            "message": message or f"Restore: {path}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.coordinates.branch,
        }
        if revision_token:
            body["sha"] = revision_token

        response = self._request(
            "PUT", self._contents_url(path), path, token, json_body=body
        )
        self._check_response(response, f"Failed to write {path}")
        return CommittedRevision.from_api(
            path, _read_json(response, f"Failed to write {path}")
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _contents_url(self, path: str) -> str:
        base = self.coordinates.api_url.rstrip("/")
        return (
            f"{base}/repos/{self.coordinates.project}/contents/"
            f"{quote(path.strip('/'), safe='/')}"
        )

    def _get_contents(self, path: str, token: str) -> dict[str, Any]:
        response = self._request(
            "GET",
            self._contents_url(path),
            path,
            token,
            params={"ref": self.coordinates.branch},
        )
        self._check_response(response, f"Failed to fetch {path}")
        try:
            data = response.json()
        except ValueError as e:
            raise ContentDecodeError(path, "response body is not JSON") from e
        if not isinstance(data, dict):
            raise ContentDecodeError(path, "path is a directory")
        return data

    def _request(
        self,
        method: str,
        url: str,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Send one authenticated request.

        Raises:
            RemoteConnectionError: If no response is received.
        """
        start_time = time.time()
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise RemoteConnectionError(f"Request for {path} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteConnectionError(f"Failed to connect for {path}: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"API call: {method} {path} -> {response.status_code} ({duration_ms:.0f}ms)"
        )

        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining and remaining.isdigit() and int(remaining) < 10:
            logger.warning(f"Rate limit low: {remaining} requests remaining")

        return response

    def _check_response(self, response: requests.Response, context: str) -> None:
        """Raise the matching RemoteError for a non-success response."""
        status = response.status_code
        if status < 400:
            return

        message = _error_message(response) or context
        if status in RATE_LIMIT_STATUSES:
            raise RateLimitError(message, status=status)
        raise RemoteError(message, status=status)


def _read_json(response: requests.Response, context: str) -> Any:
    """Parse a success body, raising RemoteError when it is not JSON."""
    try:
        return response.json()
    except ValueError as e:
        raise RemoteError(f"{context}: response body is not JSON") from e


def _error_message(response: requests.Response) -> str | None:
    """Extract the message field of a JSON error body, if there is one."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return None


def decode_content(path: str, data: dict[str, Any]) -> str:
    """
    Decode the base64 payload of a contents API response to text.

    GitHub wraps the encoded payload with newlines every 60 characters,
    which are removed before decoding.

    Raises:
        ContentDecodeError: If the payload is missing, not base64, or not UTF-8.
    """
    content = data.get("content")
    if content is None:
        raise ContentDecodeError(path, "no content in response")

    encoding = data.get("encoding", "base64")
    if encoding != "base64":
        raise ContentDecodeError(path, f"unsupported encoding '{encoding}'")

    cleaned = content.replace("\n", "").replace("\r", "")
    try:
        raw = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ContentDecodeError(path, f"invalid base64 payload: {e}") from e

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ContentDecodeError(path, f"not valid UTF-8: {e}") from e
