"""
Configuration settings management for TreeVault.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.treevault/config.yaml by default, with the
path overridable via the TREEVAULT_CONFIG environment variable.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from treevault.remote.base import RepositoryCoordinates

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".treevault"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

PROJECT_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


@dataclass
class Category:
    """
    A named group of root paths backed up together.

    Attributes:
        key: Identifier used on the command line (e.g. "settings").
        label: Name used in archive file names (e.g. "cms-content").
        paths: Root paths walked for this category, in order.
    """

    key: str
    label: str
    paths: list[str] = field(default_factory=list)


def _default_categories() -> dict[str, Category]:
    return {
        "settings": Category("settings", "settings", ["src/content/settings"]),
        "products": Category(
            "products", "products", ["src/content/products", "src/content/categories"]
        ),
        "blog": Category("blog", "blog", ["src/content/blog", "src/content/blog-categories"]),
        "banners": Category("banners", "banners", ["src/content/banners"]),
        "content": Category("content", "cms-content", ["src/content"]),
        "full": Category("full", "source-code", ["src", "public", "scripts", ".github"]),
    }


def _default_root_files() -> list[str]:
    return [
        "astro.config.mjs",
        "package.json",
        "package-lock.json",
        "tailwind.config.ts",
        "tsconfig.json",
        "tsconfig.astro.json",
        "postcss.config.js",
        "eslint.config.js",
        "netlify.toml",
        "components.json",
    ]


@dataclass
class PathSet:
    """
    Backup categories and the fixed root files of the full category.

    Attributes:
        categories: Category key to Category.
        root_files: Repository-root files added by path (not walked) to the
            full category.
        full_category: Key of the category that receives root_files.
    """

    categories: dict[str, Category] = field(default_factory=_default_categories)
    root_files: list[str] = field(default_factory=_default_root_files)
    full_category: str = "full"

    def keys(self) -> list[str]:
        return list(self.categories)

    def get(self, key: str) -> Category | None:
        return self.categories.get(key)

    def root_files_for(self, key: str) -> list[str]:
        """Root files appended for a category (empty unless it is the full one)."""
        return list(self.root_files) if key == self.full_category else []


@dataclass
class RepositoryConfig:
    """Remote repository settings."""

    project: str = ""
    branch: str = "main"
    api_url: str = "https://api.github.com"


@dataclass
class TransportConfig:
    """Retry and timeout settings for API calls."""

    max_attempts: int = 3
    rate_limit_delay: float = 1.0
    retry_delay: float = 0.5
    timeout: float = 30.0


@dataclass
class ArchiveConfig:
    """Archive serialization settings."""

    compression_level: int = 6


@dataclass
class Settings:
    """
    Complete TreeVault configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with TREEVAULT_.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        output_dir: Default directory for new archives.
        repository: Remote repository settings.
        transport: Retry and timeout settings.
        archive: Archive serialization settings.
        path_set: Backup categories and root files.
    """

    log_level: str = "INFO"
    output_dir: str = "."

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    path_set: PathSet = field(default_factory=PathSet)

    @property
    def coordinates(self) -> RepositoryCoordinates:
        return RepositoryCoordinates(
            project=self.repository.project,
            branch=self.repository.branch,
            api_url=self.repository.api_url,
        )


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from TREEVAULT_CONFIG environment variable if set,
    otherwise returns the default path (~/.treevault/config.yaml).
    """
    env_path = os.environ.get("TREEVAULT_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None, validate: bool = True) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses TREEVAULT_CONFIG environment variable or default path.
        validate: Whether to validate the result. Commands that only inspect
                  local archives load without validation.

    Returns:
        Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")
        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    if validate:
        validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("treevault") or {}
    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()
    if "output_dir" in general:
        settings.output_dir = str(general["output_dir"])

    repository = data.get("repository") or {}
    if "project" in repository:
        settings.repository.project = str(repository["project"])
    if "branch" in repository:
        settings.repository.branch = str(repository["branch"])
    if "api_url" in repository:
        settings.repository.api_url = str(repository["api_url"])

    transport = data.get("transport") or {}
    try:
        if "max_attempts" in transport:
            settings.transport.max_attempts = int(transport["max_attempts"])
        if "rate_limit_delay" in transport:
            settings.transport.rate_limit_delay = float(transport["rate_limit_delay"])
        if "retry_delay" in transport:
            settings.transport.retry_delay = float(transport["retry_delay"])
        if "timeout" in transport:
            settings.transport.timeout = float(transport["timeout"])

        archive = data.get("archive") or {}
        if "compression_level" in archive:
            settings.archive.compression_level = int(archive["compression_level"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    if "categories" in data:
        settings.path_set.categories = _parse_categories(data["categories"])
    if "root_files" in data:
        settings.path_set.root_files = [str(p) for p in data["root_files"] or []]
    if "full_category" in data:
        settings.path_set.full_category = str(data["full_category"])

    return settings


def _parse_categories(data: Any) -> dict[str, Category]:
    """
    Parse the categories mapping.

    Each value is either a list of root paths or a mapping with "paths" and
    an optional "label" (which defaults to the key).
    """
    if not isinstance(data, dict):
        raise ConfigurationError("categories must be a mapping of key to paths")

    categories: dict[str, Category] = {}
    for key, value in data.items():
        key = str(key)
        if isinstance(value, list):
            label, paths = key, value
        elif isinstance(value, dict):
            label = str(value.get("label") or key)
            paths = value.get("paths") or []
        else:
            raise ConfigurationError(f"Invalid definition for category '{key}'")
        categories[key] = Category(key, label, [str(p) for p in paths])
    return categories


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "TREEVAULT_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "TREEVAULT_OUTPUT_DIR": ("output_dir", str),
        "TREEVAULT_REPOSITORY": ("repository.project", str),
        "TREEVAULT_BRANCH": ("repository.branch", str),
        "TREEVAULT_API_URL": ("repository.api_url", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if not PROJECT_PATTERN.match(settings.repository.project):
        raise ConfigurationError(
            f"Invalid repository project: '{settings.repository.project}'. "
            "Expected the form owner/name"
        )
    if not settings.repository.branch:
        raise ConfigurationError("repository branch must not be empty")

    transport = settings.transport
    if transport.max_attempts < 1:
        raise ConfigurationError("max_attempts must be at least 1")
    if transport.rate_limit_delay < 0 or transport.retry_delay < 0:
        raise ConfigurationError("retry delays must not be negative")
    if transport.timeout <= 0:
        raise ConfigurationError("timeout must be positive")

    if not 0 <= settings.archive.compression_level <= 9:
        raise ConfigurationError("compression_level must be between 0 and 9")

    path_set = settings.path_set
    if not path_set.categories:
        raise ConfigurationError("At least one backup category is required")
    if path_set.full_category not in path_set.categories:
        raise ConfigurationError(
            f"full_category '{path_set.full_category}' is not a configured category"
        )
    for key, category in path_set.categories.items():
        if not category.paths and not path_set.root_files_for(key):
            raise ConfigurationError(f"Category '{key}' has no root paths")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "treevault": {
            "log_level": settings.log_level,
            "output_dir": settings.output_dir,
        },
        "repository": {
            "project": settings.repository.project,
            "branch": settings.repository.branch,
            "api_url": settings.repository.api_url,
        },
        "transport": {
            "max_attempts": settings.transport.max_attempts,
            "rate_limit_delay": settings.transport.rate_limit_delay,
            "retry_delay": settings.transport.retry_delay,
            "timeout": settings.transport.timeout,
        },
        "archive": {
            "compression_level": settings.archive.compression_level,
        },
        "categories": {
            key: {"label": category.label, "paths": list(category.paths)}
            for key, category in settings.path_set.categories.items()
        },
        "full_category": settings.path_set.full_category,
        "root_files": list(settings.path_set.root_files),
    }
