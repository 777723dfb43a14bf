"""
Credential providers and encrypted token storage for TreeVault.

A backup or restore run needs exactly one thing from this module: a bearer
token string, obtained through CredentialProvider.get_credential(). Which
backend supplies it is decided once at startup:

    - StaticCredentialProvider: a token passed in explicitly
    - EnvironmentCredentialProvider: TREEVAULT_TOKEN, then GITHUB_TOKEN
    - StoredCredentialProvider: the encrypted TokenStore
    - PromptCredentialProvider: interactive entry, optionally saved to the store
    - ChainCredentialProvider: first of several that yields a token

Token Store Security:
    - Tokens are never stored in plaintext
    - Encryption key derived from a passphrase using PBKDF2 (600,000 iterations)
    - Random 256-bit salt generated per installation and stored separately
    - Files written atomically with owner-only (0600) permissions
"""

from __future__ import annotations

import base64
import getpass
import json
import logging
import os
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from treevault.config.settings import DEFAULT_CONFIG_DIR

logger = logging.getLogger(__name__)

# OWASP 2023 recommends 600,000 iterations for PBKDF2-SHA256
PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32  # 256 bits
MIN_PASSPHRASE_LENGTH = 12

TOKEN_ENV_VARS = ("TREEVAULT_TOKEN", "GITHUB_TOKEN")


class TokenStoreError(Exception):
    """Base exception for token store errors."""

    pass


class TokenStoreNotInitializedError(TokenStoreError):
    """Raised when the token store has not been initialized."""

    pass


class TokenStoreLockedError(TokenStoreError):
    """Raised when the token store is locked and a passphrase is required."""

    pass


class InvalidPassphraseError(TokenStoreError):
    """Raised when the provided passphrase is incorrect."""

    pass


class TokenStore:
    """
    Encrypted storage of API tokens, one per repository.

    Usage:
        store = TokenStore()
        if not store.is_initialized():
            store.initialize("my-secure-passphrase")
        store.unlock("my-secure-passphrase")
        store.set_token("octo/site", "ghp_...")
        token = store.get_token("octo/site")
        store.lock()

    File Structure:
        ~/.treevault/salt        - Random salt for key derivation (32 bytes)
        ~/.treevault/tokens.enc  - Encrypted JSON object of repository -> token
    """

    def __init__(self, config_dir: Path | None = None, iterations: int = PBKDF2_ITERATIONS) -> None:
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.salt_path = self.config_dir / "salt"
        self.tokens_path = self.config_dir / "tokens.enc"
        self._iterations = iterations
        self._fernet: Fernet | None = None

    def is_initialized(self) -> bool:
        return self.salt_path.exists() and self.tokens_path.exists()

    def initialize(self, passphrase: str) -> None:
        """
        Create an empty store protected by the given passphrase.

        The store is left unlocked.

        Raises:
            TokenStoreError: If the store already exists.
            ValueError: If the passphrase is shorter than 12 characters.
        """
        if self.is_initialized():
            raise TokenStoreError(
                f"Token store already initialized in {self.config_dir}. "
                "Delete salt and tokens.enc to reset."
            )
        if len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters."
            )

        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.config_dir, 0o700)
        except OSError:
            # Windows or foreign-owned directory
            pass

        salt = secrets.token_bytes(SALT_LENGTH)
        self._write_secure_file(self.salt_path, salt)

        self._fernet = self._derive_key(passphrase, salt)
        self._save_tokens({})

    def unlock(self, passphrase: str) -> None:
        """
        Unlock the store for reading and writing.

        Raises:
            TokenStoreNotInitializedError: If the store does not exist.
            InvalidPassphraseError: If the passphrase cannot decrypt the store.
        """
        if not self.is_initialized():
            raise TokenStoreNotInitializedError(
                "Token store not initialized. Run 'treevault token set' first."
            )

        fernet = self._derive_key(passphrase, self.salt_path.read_bytes())
        try:
            fernet.decrypt(self.tokens_path.read_bytes())
        except InvalidToken as e:
            raise InvalidPassphraseError("Invalid passphrase. Cannot decrypt tokens.") from e
        self._fernet = fernet

    def lock(self) -> None:
        self._fernet = None

    def is_unlocked(self) -> bool:
        return self._fernet is not None

    def get_token(self, repository: str) -> str | None:
        """Return the token stored for a repository, or None."""
        return self._load_tokens().get(repository)

    def set_token(self, repository: str, token: str) -> None:
        tokens = self._load_tokens()
        tokens[repository] = token
        self._save_tokens(tokens)

    def delete_token(self, repository: str) -> bool:
        """Remove a repository's token. Returns False if there was none."""
        tokens = self._load_tokens()
        if tokens.pop(repository, None) is None:
            return False
        self._save_tokens(tokens)
        return True

    def list_repositories(self) -> list[str]:
        return sorted(self._load_tokens())

    def _derive_key(self, passphrase: str, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,  # Fernet requires 32-byte keys
            salt=salt,
            iterations=self._iterations,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode())))

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise TokenStoreLockedError("Token store is locked. Unlock it with the passphrase first.")
        return self._fernet

    def _load_tokens(self) -> dict[str, str]:
        fernet = self._require_fernet()
        decrypted = fernet.decrypt(self.tokens_path.read_bytes())
        data: dict[str, str] = json.loads(decrypted.decode())
        return data

    def _save_tokens(self, tokens: dict[str, str]) -> None:
        fernet = self._require_fernet()
        self._write_secure_file(self.tokens_path, fernet.encrypt(json.dumps(tokens).encode()))

    def _write_secure_file(self, path: Path, data: bytes) -> None:
        """Write via a temporary file and rename, with owner-only permissions."""
        temp_path = path.with_suffix(".tmp")
        try:
            temp_path.write_bytes(data)
            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                pass
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise


# -----------------------------------------------------------------------------
# Credential Providers
# -----------------------------------------------------------------------------


class CredentialProvider(ABC):
    """Supplies the bearer token for a run."""

    @abstractmethod
    def get_credential(self) -> str | None:
        """Return a token, or None if this provider has none."""


class StaticCredentialProvider(CredentialProvider):
    """Provider for a token given explicitly."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_credential(self) -> str | None:
        return self._token.strip() if self._token and self._token.strip() else None


class EnvironmentCredentialProvider(CredentialProvider):
    """Reads the token from the first set environment variable."""

    def __init__(self, variables: Iterable[str] = TOKEN_ENV_VARS) -> None:
        self.variables = tuple(variables)

    def get_credential(self) -> str | None:
        for name in self.variables:
            value = os.environ.get(name, "").strip()
            if value:
                logger.debug(f"Using token from ${name}")
                return value
        return None


class StoredCredentialProvider(CredentialProvider):
    """
    Reads a repository's token from the encrypted store.

    A locked store is unlocked with the passphrase callback, if one is given.
    A missing store, a wrong passphrase or a missing entry all yield None.
    """

    def __init__(
        self,
        store: TokenStore,
        repository: str,
        passphrase: Callable[[], str | None] | None = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self._passphrase = passphrase

    def get_credential(self) -> str | None:
        if not self.store.is_initialized():
            return None
        if not self.store.is_unlocked():
            secret = self._passphrase() if self._passphrase else None
            if not secret:
                return None
            try:
                self.store.unlock(secret)
            except InvalidPassphraseError:
                logger.warning("Token store passphrase rejected")
                return None
        return self.store.get_token(self.repository)


class PromptCredentialProvider(CredentialProvider):
    """
    Asks the user for a token.

    When a store is given and unlocked, the entered token is saved for the
    repository so later runs find it without prompting.
    """

    def __init__(
        self,
        prompt: Callable[[str], str] = getpass.getpass,
        store: TokenStore | None = None,
        repository: str | None = None,
    ) -> None:
        self._prompt = prompt
        self.store = store
        self.repository = repository

    def get_credential(self) -> str | None:
        try:
            token = self._prompt("GitHub token (repo scope): ").strip()
        except EOFError:
            return None
        if not token:
            return None

        if self.store is not None and self.repository and self.store.is_unlocked():
            self.store.set_token(self.repository, token)
            logger.info(f"Saved token for {self.repository}")
        return token


class ChainCredentialProvider(CredentialProvider):
    """Tries providers in order and returns the first token found."""

    def __init__(self, providers: Iterable[CredentialProvider]) -> None:
        self.providers = list(providers)

    def get_credential(self) -> str | None:
        for provider in self.providers:
            token = provider.get_credential()
            if token:
                return token
        return None
