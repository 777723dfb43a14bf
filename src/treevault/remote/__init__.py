"""
Remote tree access for TreeVault.

This module wraps the hosting API used to read and write the backed-up tree.
All network interaction goes through GitHubTreeClient; the rest of the
package only sees RemoteEntry, CommittedRevision and the RemoteError family.
"""

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
from treevault.remote.github_client import GitHubTreeClient, decode_content

__all__ = [
    "RemoteTreeClient",
    "GitHubTreeClient",
    "decode_content",
    # Types
    "RepositoryCoordinates",
    "RemoteEntry",
    "CommittedRevision",
    # Errors
    "RemoteError",
    "RateLimitError",
    "RemoteConnectionError",
    "ContentDecodeError",
]
