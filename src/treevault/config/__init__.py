"""
Configuration management for TreeVault.

This module handles loading, validating, and saving configuration settings,
and supplies the bearer token for runs from explicit values, the environment,
an encrypted token store, or an interactive prompt.
"""

from treevault.config.credentials import (
    ChainCredentialProvider,
    CredentialProvider,
    EnvironmentCredentialProvider,
    InvalidPassphraseError,
    PromptCredentialProvider,
    StaticCredentialProvider,
    StoredCredentialProvider,
    TokenStore,
    TokenStoreError,
    TokenStoreLockedError,
    TokenStoreNotInitializedError,
)
from treevault.config.settings import (
    Category,
    ConfigurationError,
    PathSet,
    Settings,
    load_config,
    save_config,
    validate_config,
)

__all__ = [
    # Settings
    "Settings",
    "Category",
    "PathSet",
    "load_config",
    "save_config",
    "validate_config",
    "ConfigurationError",
    # Credentials
    "CredentialProvider",
    "StaticCredentialProvider",
    "EnvironmentCredentialProvider",
    "StoredCredentialProvider",
    "PromptCredentialProvider",
    "ChainCredentialProvider",
    "TokenStore",
    "TokenStoreError",
    "TokenStoreNotInitializedError",
    "TokenStoreLockedError",
    "InvalidPassphraseError",
]
