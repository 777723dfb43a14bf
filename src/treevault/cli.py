"""
Command-line interface for TreeVault.

Provides commands to configure TreeVault, manage the stored API token, back
up a category of the remote tree to a ZIP archive, inspect an archive, and
restore an archive into the remote tree.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import NoReturn

from treevault import __version__
from treevault.backup import (
    ArchiveReadError,
    BackupArchive,
    BackupManager,
    RestoreManager,
    RestorePreview,
    RunLog,
    TreeVaultError,
)
from treevault.config.credentials import (
    ChainCredentialProvider,
    CredentialProvider,
    EnvironmentCredentialProvider,
    InvalidPassphraseError,
    PromptCredentialProvider,
    StoredCredentialProvider,
    TokenStore,
    TokenStoreError,
)
from treevault.config.settings import (
    DEFAULT_CONFIG_DIR,
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)
from treevault.remote import GitHubTreeClient

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0

PREVIEW_LIMIT = 20


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """Set the output mode for the CLI."""
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode.
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


class ConsoleSink(RunLog):
    """Run log that also draws a percentage line on an interactive terminal."""

    def progress(self, fraction: float) -> None:
        super().progress(fraction)
        if _quiet_mode or not sys.stdout.isatty():
            return
        end = "\n" if fraction >= 1 else ""
        print(f"\r  Progress: {fraction:>4.0%}", end=end, flush=True)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for TreeVault CLI."""
    parser = argparse.ArgumentParser(
        prog="treevault",
        description="Back up and restore a GitHub-hosted content tree",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"treevault {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.treevault/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default configuration file",
        description="Create the config directory and a config file with default categories.",
    )
    init_parser.add_argument(
        "--repository",
        metavar="OWNER/NAME",
        help="Repository to back up",
    )
    init_parser.add_argument(
        "--branch",
        default="main",
        help="Branch to read from and write to (default: main)",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )
    init_parser.set_defaults(func=cmd_init)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show configuration and credential status",
    )
    status_parser.set_defaults(func=cmd_status)

    # categories command
    categories_parser = subparsers.add_parser(
        "categories",
        help="List backup categories",
        description="List configured backup categories and their root paths.",
    )
    categories_parser.set_defaults(func=cmd_categories)

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Back up a category to a ZIP archive",
        description="Download every file under a category's root paths into one archive.",
    )
    backup_parser.add_argument(
        "category",
        metavar="CATEGORY",
        help="Category key (see 'treevault categories')",
    )
    backup_parser.add_argument(
        "--output",
        "-o",
        metavar="DIR",
        help="Output directory for the archive (default: output_dir from config)",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="List the files in a backup archive",
    )
    inspect_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.zip)",
    )
    inspect_parser.add_argument(
        "--limit",
        type=int,
        default=PREVIEW_LIMIT,
        help=f"Maximum number of paths to list (default: {PREVIEW_LIMIT}, 0 for all)",
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a backup archive into the repository",
        description="Upload every file of an archive, overwriting the remote copies.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup archive (.zip)",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # token command
    token_parser = subparsers.add_parser(
        "token",
        help="Manage the encrypted API token",
        description="Store, remove or check the GitHub token for the configured repository.",
    )
    token_parser.add_argument(
        "action",
        choices=["set", "clear", "status"],
        help="Token action",
    )
    token_parser.set_defaults(func=cmd_token)

    return parser


def setup_logging(verbose: int, quiet: bool, level_name: str = "INFO") -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    # One line per API call is only useful when debugging
    if verbose == 0:
        logging.getLogger("treevault.remote.github").setLevel(logging.WARNING)


def _load_settings(args: argparse.Namespace, validate: bool = True) -> Settings:
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path, validate=validate)
    setup_logging(args.verbose, args.quiet, settings.log_level)
    return settings


def _store_passphrase() -> str | None:
    passphrase = os.environ.get("TREEVAULT_PASSPHRASE")
    if passphrase:
        return passphrase
    if sys.stdin.isatty():
        return getpass.getpass("Token store passphrase: ")
    return None


def build_credential_provider(
    settings: Settings,
    store: TokenStore | None = None,
    interactive: bool | None = None,
) -> CredentialProvider:
    """
    Build the credential chain used by backup and restore.

    Order: environment variables, encrypted token store, interactive prompt
    (only when stdin is a terminal).
    """
    store = store or TokenStore()
    repository = settings.repository.project
    if interactive is None:
        interactive = sys.stdin.isatty()

    providers: list[CredentialProvider] = [
        EnvironmentCredentialProvider(),
        StoredCredentialProvider(store, repository, passphrase=_store_passphrase),
    ]
    if interactive:
        providers.append(PromptCredentialProvider(store=store, repository=repository))
    return ChainCredentialProvider(providers)


def build_client(settings: Settings) -> GitHubTreeClient:
    transport = settings.transport
    return GitHubTreeClient(
        settings.coordinates,
        max_attempts=transport.max_attempts,
        rate_limit_delay=transport.rate_limit_delay,
        retry_delay=transport.retry_delay,
        timeout=transport.timeout,
    )


def _print_paths(paths: list[str] | tuple[str, ...], limit: int) -> None:
    shown = paths if limit <= 0 else paths[:limit]
    for path in shown:
        output(f"  - {path}")
    if len(paths) > len(shown):
        output(f"  ... and {len(paths) - len(shown)} more")


def cmd_init(args: argparse.Namespace) -> int:
    """Write a default configuration file."""
    config_path = Path(args.config) if args.config else get_config_path()

    if config_path.exists() and not args.force:
        output_error(f"Config file already exists: {config_path} (use --force to overwrite)")
        return 1

    settings = Settings()
    if args.repository:
        settings.repository.project = args.repository
    settings.repository.branch = args.branch

    save_config(settings, config_path)
    output(f"Config written: {config_path}")
    if not settings.repository.project:
        output("Set repository.project (owner/name) before running a backup.")
    output()
    output("Next steps:")
    output("  treevault token set      Store your GitHub token (repo scope)")
    output("  treevault categories     List backup categories")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show configuration and credential status."""
    settings = _load_settings(args, validate=False)
    store = TokenStore()

    output("TreeVault Status")
    output("=" * 50)
    output(f"Config file:    {args.config or get_config_path()}")
    output(f"Repository:     {settings.repository.project or '(not set)'}")
    output(f"Branch:         {settings.repository.branch}")
    output(f"API URL:        {settings.repository.api_url}")
    output(f"Categories:     {', '.join(settings.path_set.keys())}")
    output(f"Output dir:     {settings.output_dir}")
    output()

    env_token = EnvironmentCredentialProvider().get_credential()
    output(f"Token from environment: {'yes' if env_token else 'no'}")
    output(f"Token store:            {'initialized' if store.is_initialized() else 'not initialized'}")
    return 0


def cmd_categories(args: argparse.Namespace) -> int:
    """List backup categories."""
    settings = _load_settings(args, validate=False)
    path_set = settings.path_set

    for key, category in path_set.categories.items():
        output(f"{key} (archive label: {category.label})", force=True)
        for path in category.paths:
            output(f"  - {path}", force=True)
        root_files = path_set.root_files_for(key)
        if root_files:
            output(f"  + {len(root_files)} root files: {', '.join(root_files)}", force=True)
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up a category to a ZIP archive."""
    settings = _load_settings(args)

    output_dir = Path(args.output or settings.output_dir)
    if output_dir.is_file():
        output_error(f"Output path is a file: {output_dir}")
        return 1

    output("TreeVault Backup")
    output("=" * 50)
    output(f"Repository: {settings.repository.project}@{settings.repository.branch}")
    output(f"Category:   {args.category}")
    output()

    sink = ConsoleSink()
    with build_client(settings) as client:
        manager = BackupManager(
            client,
            settings.path_set,
            build_credential_provider(settings),
            sink=sink,
            compression_level=settings.archive.compression_level,
        )
        try:
            result = manager.run(args.category)
        except TreeVaultError as e:
            output_error(f"Backup failed: {e}")
            return 1

    output_dir.mkdir(parents=True, exist_ok=True)
    archive_path = output_dir / result.archive_name
    archive_path.write_bytes(result.archive_bytes)

    output()
    output("Backup created successfully!")
    output(f"  File:  {archive_path}", force=True)
    output(f"  Size:  {result.size_bytes:,} bytes")
    output(f"  Files: {result.file_count}")
    if result.warnings:
        output(f"  Warnings: {len(result.warnings)}")
        for warning in result.warnings:
            output(f"    - {warning}")
    output()
    output("To restore from this backup, run:")
    output(f"  treevault restore {archive_path}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """List the files in a backup archive."""
    backup_path = Path(args.backup_file)
    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    try:
        archive = BackupArchive.from_bytes(backup_path.read_bytes(), backup_path.name)
    except ArchiveReadError as e:
        output_error(str(e))
        return 1

    output(f"{archive.name}: {len(archive)} files")
    _print_paths(archive.paths, args.limit)
    return 0


def _confirm_restore(preview: RestorePreview) -> bool:
    output()
    output("WARNING: CONFIRM RESTORE")
    output(f"You are about to restore {preview.count} files.")
    output("Existing files in the repository will be overwritten!")
    output()
    response = input("Proceed with restore? [y/N]: ").strip().lower()
    return response in ("y", "yes")


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup archive into the repository."""
    settings = _load_settings(args)
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1
    if backup_path.suffix.lower() != ".zip":
        output_error("Error: Please select a ZIP backup file")
        return 1

    output("TreeVault Restore")
    output("=" * 50)
    output(f"Backup file: {backup_path}")
    output(f"Repository:  {settings.repository.project}@{settings.repository.branch}")
    output()

    sink = ConsoleSink()
    with build_client(settings) as client:
        manager = RestoreManager(client, build_credential_provider(settings), sink=sink)
        try:
            preview = manager.load(backup_path.read_bytes(), backup_path.name)
        except TreeVaultError as e:
            output_error(f"Cannot read backup: {e}")
            return 1

        output(f"Files in backup: {preview.count}")
        _print_paths(preview.paths, PREVIEW_LIMIT)

        if not args.force and not _confirm_restore(preview):
            manager.cancel()
            output("Restore cancelled.")
            return 0

        try:
            tally = manager.confirm()
        except TreeVaultError as e:
            output_error(f"Restore failed: {e}")
            return 1

    output()
    output(f"Restore complete! Succeeded: {tally.succeeded}, Failed: {tally.failed}", force=True)
    for failure in tally.failures:
        output(f"  - {failure.path}: {failure.message}")
    return 0 if tally.failed == 0 else 1


def cmd_token(args: argparse.Namespace) -> int:
    """Store, remove or check the token for the configured repository."""
    settings = _load_settings(args)
    repository = settings.repository.project
    store = TokenStore(DEFAULT_CONFIG_DIR)

    if args.action == "status":
        if not store.is_initialized():
            output("Token store not initialized.")
            return 0
        store.unlock(getpass.getpass("Token store passphrase: "))
        has_token = store.get_token(repository) is not None
        output(f"Token stored for {repository}: {'yes' if has_token else 'no'}")
        return 0

    if args.action == "set":
        if not store.is_initialized():
            output("Creating token store. Choose a passphrase (12+ characters).")
            passphrase = getpass.getpass("New passphrase: ")
            if passphrase != getpass.getpass("Repeat passphrase: "):
                output_error("Passphrases do not match.")
                return 1
            store.initialize(passphrase)
        else:
            store.unlock(getpass.getpass("Token store passphrase: "))

        token = getpass.getpass(f"GitHub token for {repository}: ").strip()
        if not token:
            output_error("No token entered.")
            return 1
        store.set_token(repository, token)
        output(f"Token saved for {repository}.")
        return 0

    # clear
    if not store.is_initialized():
        output("Token store not initialized.")
        return 0
    store.unlock(getpass.getpass("Token store passphrase: "))
    if store.delete_token(repository):
        output(f"Token removed for {repository}.")
    else:
        output(f"No token stored for {repository}.")
    return 0


def main() -> NoReturn:
    """Main entry point for TreeVault CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except InvalidPassphraseError as e:
        output_error(f"Credential error: {e}")
        sys.exit(2)
    except (TokenStoreError, ValueError) as e:
        output_error(f"Error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
