"""
TreeVault - snapshot and restore a GitHub-hosted content tree.

TreeVault walks configured root paths of a remote repository through the
GitHub contents API, packs every file it can read into one ZIP archive, and
restores such archives back into the repository, one file at a time.

Key Features:
    - Named backup categories (settings, blog, full source, ...)
    - Retry with backoff on rate-limited and failed reads
    - Partial failures are logged and skipped, never fatal
    - Restores update existing files at their current revision
    - Single-flight runs with an explicit confirmation before restore
"""

__version__ = "0.1.0"

from treevault.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
