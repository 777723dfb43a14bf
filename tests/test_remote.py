"""
Tests for the GitHub contents API client.

The HTTP layer is replaced by a MagicMock on a real requests.Session, so the
tests exercise request construction, pagination, retry and decoding without
network access.
"""

from __future__ import annotations

import base64
import unittest
from typing import Any
from unittest.mock import MagicMock, patch

import requests

from treevault.remote import (
    CommittedRevision,
    ContentDecodeError,
    GitHubTreeClient,
    RateLimitError,
    RemoteConnectionError,
    RemoteError,
    RepositoryCoordinates,
    decode_content,
)


def make_response(
    status: int,
    data: Any = None,
    headers: dict[str, str] | None = None,
    links: dict[str, dict[str, str]] | None = None,
) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.links = links or {}
    if data is None:
        response.json.side_effect = ValueError("No JSON body")
    else:
        response.json.return_value = data
    return response


def file_payload(path: str, content: str, sha: str = "abc123") -> dict[str, Any]:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    # GitHub wraps the payload every 60 characters
    wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60)) + "\n"
    return {
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "type": "file",
        "sha": sha,
        "encoding": "base64",
        "content": wrapped,
        "download_url": f"https://raw.githubusercontent.com/octo/site/main/{path}",
    }


class ClientTestCase(unittest.TestCase):
    """Base class providing a client with a mocked session."""

    def setUp(self):
        self.session = requests.Session()
        self.session.request = MagicMock()  # type: ignore[method-assign]
        self.client = GitHubTreeClient(
            RepositoryCoordinates("octo/site", branch="main"),
            session=self.session,
        )


class TestListDirectory(ClientTestCase):
    """Tests for list_directory()."""

    def test_lists_entries_with_bearer_token(self):
        """Test listing returns entries and authenticates per call."""
        self.session.request.return_value = make_response(
            200,
            [
                {"name": "a.md", "path": "src/a.md", "type": "file", "download_url": "u1"},
                {"name": "sub", "path": "src/sub", "type": "dir", "download_url": None},
            ],
        )

        entries = self.client.list_directory("src", "tok-1")

        self.assertEqual([e.path for e in entries], ["src/a.md", "src/sub"])
        self.assertTrue(entries[0].is_file)
        self.assertTrue(entries[1].is_dir)
        self.assertEqual(entries[0].download_url, "u1")

        args, kwargs = self.session.request.call_args
        self.assertEqual(args[0], "GET")
        self.assertEqual(args[1], "https://api.github.com/repos/octo/site/contents/src")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok-1")
        self.assertEqual(kwargs["params"]["ref"], "main")

    def test_client_keeps_no_credential(self):
        """Test the token is never stored on the session."""
        self.session.request.return_value = make_response(200, [])

        self.client.list_directory("src", "secret-token")

        self.assertNotIn("Authorization", self.session.headers)
        self.assertEqual(
            self.session.headers["Accept"], "application/vnd.github.v3+json"
        )

    def test_follows_pagination_links(self):
        """Test that every page is read through Link headers."""
        next_url = "https://api.github.com/repositories/1/contents/src?page=2"
        self.session.request.side_effect = [
            make_response(
                200,
                [{"name": "a.md", "path": "src/a.md", "type": "file"}],
                links={"next": {"url": next_url}},
            ),
            make_response(200, [{"name": "b.md", "path": "src/b.md", "type": "file"}]),
        ]

        entries = self.client.list_directory("src", "tok")

        self.assertEqual([e.path for e in entries], ["src/a.md", "src/b.md"])
        self.assertEqual(self.session.request.call_count, 2)
        second_args, second_kwargs = self.session.request.call_args_list[1]
        self.assertEqual(second_args[1], next_url)
        self.assertIsNone(second_kwargs["params"])

    def test_file_path_returns_single_entry(self):
        """Test listing a file path yields that file alone."""
        self.session.request.return_value = make_response(
            200, file_payload("package.json", "{}")
        )

        entries = self.client.list_directory("package.json", "tok")

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].path, "package.json")
        self.assertEqual(entries[0].sha, "abc123")

    @patch("treevault.remote.github_client.time.sleep")
    def test_not_found_raises_without_retry(self, mock_sleep):
        """Test a failed listing raises RemoteError and is not retried."""
        self.session.request.return_value = make_response(404, {"message": "Not Found"})

        with self.assertRaises(RemoteError) as cm:
            self.client.list_directory("src/missing", "tok")

        self.assertEqual(cm.exception.status, 404)
        self.assertEqual(cm.exception.message, "Not Found")
        self.assertEqual(self.session.request.call_count, 1)
        mock_sleep.assert_not_called()

    def test_path_is_url_quoted(self):
        """Test that special characters in paths are escaped."""
        self.session.request.return_value = make_response(200, [])

        self.client.list_directory("src/content/blog posts", "tok")

        url = self.session.request.call_args[0][1]
        self.assertTrue(url.endswith("/contents/src/content/blog%20posts"))

    def test_body_that_is_not_json(self):
        """Test a 200 listing with a malformed body raises RemoteError."""
        self.session.request.return_value = make_response(200)

        with self.assertRaises(RemoteError) as cm:
            self.client.list_directory("src", "tok")

        self.assertEqual(str(cm.exception), "Failed to list src: response body is not JSON")


class TestFetchFileContent(ClientTestCase):
    """Tests for fetch_file_content() retry and decoding."""

    def test_decodes_wrapped_base64_utf8(self):
        """Test newline-wrapped base64 payloads decode to UTF-8 text."""
        text = "title: Xe tải Hyundai\n" * 10
        self.session.request.return_value = make_response(
            200, file_payload("src/content/settings/site.yaml", text)
        )

        content = self.client.fetch_file_content("src/content/settings/site.yaml", "tok")

        self.assertEqual(content, text)

    @patch("treevault.remote.github_client.time.sleep")
    def test_rate_limit_retries_with_increasing_wait(self, mock_sleep):
        """Test 403 responses use every attempt, wait longer each time, and
        propagate the last failure."""
        self.session.request.side_effect = [
            make_response(403, {"message": "rate limit 1"}),
            make_response(403, {"message": "rate limit 2"}),
            make_response(403, {"message": "rate limit 3"}),
        ]

        with self.assertRaises(RateLimitError) as cm:
            self.client.fetch_file_content("src/a.md", "tok")

        self.assertEqual(self.session.request.call_count, 3)
        waits = [c.args[0] for c in mock_sleep.call_args_list]
        self.assertEqual(waits, [1.0, 2.0])
        self.assertTrue(all(a < b for a, b in zip(waits, waits[1:])))
        self.assertEqual(cm.exception.message, "rate limit 3")
        self.assertEqual(cm.exception.status, 403)

    @patch("treevault.remote.github_client.time.sleep")
    def test_other_failures_use_shorter_backoff(self, mock_sleep):
        """Test server errors retry with the shorter linear wait."""
        self.session.request.side_effect = [
            make_response(500, {"message": "Server Error"}),
            make_response(429, {"message": "Too Many Requests"}),
            make_response(200, file_payload("src/a.md", "hello")),
        ]

        content = self.client.fetch_file_content("src/a.md", "tok")

        self.assertEqual(content, "hello")
        waits = [c.args[0] for c in mock_sleep.call_args_list]
        self.assertEqual(waits, [0.5, 2.0])

    @patch("treevault.remote.github_client.time.sleep")
    def test_connection_errors_are_retried(self, mock_sleep):
        """Test transport failures are retried and then succeed."""
        self.session.request.side_effect = [
            requests.ConnectionError("connection reset"),
            make_response(200, file_payload("src/a.md", "hello")),
        ]

        self.assertEqual(self.client.fetch_file_content("src/a.md", "tok"), "hello")
        mock_sleep.assert_called_once_with(0.5)

    @patch("treevault.remote.github_client.time.sleep")
    def test_connection_errors_exhausted(self, mock_sleep):
        """Test the last transport failure propagates."""
        self.session.request.side_effect = requests.Timeout("timed out")

        with self.assertRaises(RemoteConnectionError) as cm:
            self.client.fetch_file_content("src/a.md", "tok")

        self.assertIsNone(cm.exception.status)
        self.assertEqual(self.session.request.call_count, 3)

    @patch("treevault.remote.github_client.time.sleep")
    def test_decode_errors_are_not_retried(self, mock_sleep):
        """Test an undecodable payload fails immediately."""
        payload = file_payload("img/logo.bin", "")
        payload["content"] = base64.b64encode(b"\xff\xfe\x00binary").decode("ascii")
        self.session.request.return_value = make_response(200, payload)

        with self.assertRaises(ContentDecodeError):
            self.client.fetch_file_content("img/logo.bin", "tok")

        self.assertEqual(self.session.request.call_count, 1)
        mock_sleep.assert_not_called()

    def test_custom_attempts(self):
        """Test max_attempts bounds the number of requests."""
        client = GitHubTreeClient(
            RepositoryCoordinates("octo/site"),
            max_attempts=1,
            session=self.session,
        )
        self.session.request.return_value = make_response(500, {"message": "boom"})

        with self.assertRaises(RemoteError):
            client.fetch_file_content("src/a.md", "tok")

        self.assertEqual(self.session.request.call_count, 1)

    def test_explicit_zero_settings_are_kept(self):
        client = GitHubTreeClient(
            RepositoryCoordinates("octo/site"),
            max_attempts=0,
            timeout=0,
            session=self.session,
        )

        self.assertEqual(client.max_attempts, 0)
        self.assertEqual(client.timeout, 0)
        with self.assertRaises(RemoteError):
            client.fetch_file_content("src/a.md", "tok")
        self.session.request.assert_not_called()

    @patch("treevault.remote.github_client.time.sleep")
    def test_body_that_is_not_json(self, mock_sleep):
        """Test a 200 file response with a malformed body fails without retry."""
        self.session.request.return_value = make_response(200)

        with self.assertRaises(ContentDecodeError) as cm:
            self.client.fetch_file_content("src/a.md", "tok")

        self.assertEqual(cm.exception.path, "src/a.md")
        self.assertEqual(self.session.request.call_count, 1)
        mock_sleep.assert_not_called()


class TestDecodeContent(unittest.TestCase):
    """Tests for decode_content()."""

    def test_empty_file(self):
        self.assertEqual(decode_content("empty.txt", {"content": "", "encoding": "base64"}), "")

    def test_missing_content(self):
        with self.assertRaises(ContentDecodeError):
            decode_content("big.json", {"encoding": "base64"})

    def test_unsupported_encoding(self):
        """Test files too large for inline content are rejected."""
        with self.assertRaises(ContentDecodeError) as cm:
            decode_content("big.json", {"content": "", "encoding": "none"})
        self.assertIn("none", str(cm.exception))

    def test_invalid_base64(self):
        with self.assertRaises(ContentDecodeError):
            decode_content("a.md", {"content": "not base64!!", "encoding": "base64"})


class TestRevisionToken(ClientTestCase):
    """Tests for fetch_revision_token()."""

    def test_existing_file(self):
        self.session.request.return_value = make_response(
            200, file_payload("src/a.md", "x", sha="sha-1")
        )
        self.assertEqual(self.client.fetch_revision_token("src/a.md", "tok"), "sha-1")

    def test_missing_file(self):
        """Test a 404 means the file will be created."""
        self.session.request.return_value = make_response(404, {"message": "Not Found"})
        self.assertIsNone(self.client.fetch_revision_token("src/new.md", "tok"))

    def test_other_errors_raise(self):
        self.session.request.return_value = make_response(500, {"message": "Server Error"})
        with self.assertRaises(RemoteError) as cm:
            self.client.fetch_revision_token("src/a.md", "tok")
        self.assertEqual(cm.exception.status, 500)


class TestUpsertFile(ClientTestCase):
    """Tests for upsert_file()."""

    def test_update_sends_revision_token(self):
        self.session.request.return_value = make_response(
            200,
            {
                "content": {"path": "src/a.md", "sha": "new-sha"},
                "commit": {"sha": "commit-sha"},
            },
        )

        revision = self.client.upsert_file("src/a.md", "héllo", "tok", revision_token="old-sha")

        self.assertEqual(revision, CommittedRevision("src/a.md", "new-sha", "commit-sha"))
        args, kwargs = self.session.request.call_args
        self.assertEqual(args[0], "PUT")
        body = kwargs["json"]
        self.assertEqual(body["sha"], "old-sha")
        self.assertEqual(body["branch"], "main")
        self.assertEqual(body["message"], "Restore: src/a.md")
        self.assertEqual(base64.b64decode(body["content"]).decode("utf-8"), "héllo")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")

    def test_create_omits_revision_token(self):
        self.session.request.return_value = make_response(
            201, {"content": {"path": "src/new.md", "sha": "s"}, "commit": {"sha": "c"}}
        )

        self.client.upsert_file("src/new.md", "new", "tok", message="Add new.md")

        body = self.session.request.call_args.kwargs["json"]
        self.assertNotIn("sha", body)
        self.assertEqual(body["message"], "Add new.md")

    def test_stale_revision_surfaces_remote_message(self):
        """Test the API's error message is used, not a generic status."""
        self.session.request.return_value = make_response(
            409, {"message": "src/a.md does not match 1234"}
        )

        with self.assertRaises(RemoteError) as cm:
            self.client.upsert_file("src/a.md", "x", "tok", revision_token="1234")

        self.assertEqual(cm.exception.status, 409)
        self.assertEqual(cm.exception.message, "src/a.md does not match 1234")
        self.assertEqual(self.session.request.call_count, 1)

    def test_error_without_json_body(self):
        self.session.request.return_value = make_response(502)

        with self.assertRaises(RemoteError) as cm:
            self.client.upsert_file("src/a.md", "x", "tok")

        self.assertEqual(cm.exception.status, 502)
        self.assertEqual(cm.exception.message, "Failed to write src/a.md")


class TestRemoteErrors(unittest.TestCase):
    """Tests for the remote error classes."""

    def test_error_with_status(self):
        error = RemoteError("Not Found", status=404)
        self.assertEqual(str(error), "Not Found (HTTP 404)")

    def test_error_without_status(self):
        error = RemoteConnectionError("connection refused")
        self.assertEqual(str(error), "connection refused")
        self.assertIsNone(error.status)

    def test_rate_limit_is_remote_error(self):
        error = RateLimitError("slow down", status=429)
        self.assertIsInstance(error, RemoteError)
        self.assertEqual(str(error), "slow down (HTTP 429)")


if __name__ == "__main__":
    unittest.main()
