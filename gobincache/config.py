"""
Configuration file parsing and management.

Reads YAML configuration and merges it from multiple sources
(explicit path -> project -> user -> defaults).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .common import vlog
from .manifest import DEFAULT_MANIFEST_PATH


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".gobincache.yml",                                      # Project root (highest priority)
    ".gobincache.yaml",
    os.path.expanduser("~/.config/gobincache/config.yml"),  # User global
    os.path.expanduser("~/.config/gobincache/config.yaml"),
]

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Policy:
    """
    Decision policies for ambiguous manifests.

    Attributes:
        missing_module: What to do when the binary's module is not required
            by the manifest ('install' or 'error')
        duplicates: Which requirement wins for a repeated module path ('last' or 'first')
    """
    missing_module: str = "install"
    duplicates: str = "last"

    def __post_init__(self):
        if self.missing_module not in {"install", "error"}:
            raise ValueError(
                f"Invalid missing_module policy: {self.missing_module}. "
                "Must be 'install' or 'error'"
            )
        if self.duplicates not in {"last", "first"}:
            raise ValueError(
                f"Invalid duplicates policy: {self.duplicates}. "
                "Must be 'last' or 'first'"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Policy:
        """Create Policy from dictionary."""
        return Policy(
            missing_module=data.get("missing_module", "install"),
            duplicates=data.get("duplicates", "last"),
        )


@dataclass(frozen=True)
class LoggingPreferences:
    """
    Logging preferences.

    Attributes:
        level: Console log level
        file: Optional log file path
    """
    level: str = "WARNING"
    file: str | None = None

    def __post_init__(self):
        if self.level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.level}. "
                f"Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LoggingPreferences:
        """Create LoggingPreferences from dictionary."""
        return LoggingPreferences(
            level=str(data.get("level", "WARNING")),
            file=data.get("file"),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for gobincache.

    Attributes:
        version: Config schema version
        manifest: Path to go.mod, relative to the working directory
        policy: Decision policies
        logging: Logging preferences
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    manifest: str = DEFAULT_MANIFEST_PATH
    policy: Policy = field(default_factory=Policy)
    logging: LoggingPreferences = field(default_factory=LoggingPreferences)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")
        if not self.manifest:
            raise ValueError("manifest path must not be empty")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        return Config(
            version=data.get("version", 1),
            manifest=data.get("manifest", DEFAULT_MANIFEST_PATH),
            policy=Policy.from_dict(data.get("policy") or {}),
            logging=LoggingPreferences.from_dict(data.get("logging") or {}),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        A value equal to its default is treated as unset.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        policy = Policy(
            missing_module=self.policy.missing_module if self.policy.missing_module != "install" else other.policy.missing_module,
            duplicates=self.policy.duplicates if self.policy.duplicates != "last" else other.policy.duplicates,
        )
        logging_prefs = LoggingPreferences(
            level=self.logging.level if self.logging.level != "WARNING" else other.logging.level,
            file=self.logging.file or other.logging.file,
        )
        return Config(
            version=self.version,
            manifest=self.manifest if self.manifest != DEFAULT_MANIFEST_PATH else other.manifest,
            policy=policy,
            logging=logging_prefs,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load a YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    data = _load_yaml(file_path)
    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
    except (ValueError, TypeError, AttributeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return config


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .gobincache.yml
    3. User ~/.config/gobincache/config.yml
    4. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return a list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    if os.path.basename(config.manifest) != "go.mod":
        warnings.append(f"Manifest path does not name a go.mod file: {config.manifest}")

    if config.logging.file and os.path.isdir(config.logging.file):
        warnings.append(f"Log file path is a directory: {config.logging.file}")

    return warnings
