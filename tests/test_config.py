"""
Tests for configuration parsing (gobincache/config.py).
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from gobincache.config import (
    Config,
    LoggingPreferences,
    Policy,
    _load_yaml,
    load_config,
    load_config_file,
    validate_config,
)


FIXTURES_DIR = Path(__file__).parent / "fixtures"
CONFIG_VALID = str(FIXTURES_DIR / "config_valid.yml")
CONFIG_MINIMAL = str(FIXTURES_DIR / "config_minimal.yml")
CONFIG_INVALID_VERSION = str(FIXTURES_DIR / "config_invalid_version.yml")
CONFIG_INVALID_POLICY = str(FIXTURES_DIR / "config_invalid_policy.yml")
CONFIG_PROJECT = str(FIXTURES_DIR / "config_project.yml")
CONFIG_USER = str(FIXTURES_DIR / "config_user.yml")
CONFIG_BROKEN = str(FIXTURES_DIR / "config_broken.yml")


class TestPolicy:
    """Tests for Policy dataclass."""

    def test_policy_defaults(self):
        policy = Policy()
        assert policy.missing_module == "install"
        assert policy.duplicates == "last"

    def test_policy_from_dict(self):
        policy = Policy.from_dict({"missing_module": "error"})
        assert policy.missing_module == "error"
        assert policy.duplicates == "last"

    def test_policy_invalid_missing_module(self):
        with pytest.raises(ValueError, match="Invalid missing_module policy"):
            Policy(missing_module="ignore")

    def test_policy_invalid_duplicates(self):
        with pytest.raises(ValueError, match="Invalid duplicates policy"):
            Policy(duplicates="random")

    def test_policy_immutable(self):
        policy = Policy()
        with pytest.raises(AttributeError):
            policy.duplicates = "first"  # Should fail (frozen)


class TestLoggingPreferences:
    """Tests for LoggingPreferences dataclass."""

    def test_defaults(self):
        prefs = LoggingPreferences()
        assert prefs.level == "WARNING"
        assert prefs.file is None

    def test_lowercase_level_accepted(self):
        assert LoggingPreferences(level="debug").level == "debug"

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            LoggingPreferences(level="LOUD")


class TestConfig:
    """Tests for Config dataclass."""

    def test_config_defaults(self):
        config = Config()
        assert config.version == 1
        assert config.manifest == "go.mod"
        assert config.policy == Policy()
        assert config.source == ""

    def test_config_invalid_version(self):
        with pytest.raises(ValueError, match="Unsupported config version"):
            Config(version=2)

    def test_config_empty_manifest(self):
        with pytest.raises(ValueError, match="manifest path"):
            Config(manifest="")

    def test_config_from_dict(self):
        config = Config.from_dict({
            "manifest": "tools/go.mod",
            "policy": {"duplicates": "first"},
            "logging": {"level": "INFO"},
        }, source="test.yml")
        assert config.manifest == "tools/go.mod"
        assert config.policy.duplicates == "first"
        assert config.logging.level == "INFO"
        assert config.source == "test.yml"

    def test_config_from_dict_null_sections(self):
        config = Config.from_dict({"policy": None, "logging": None})
        assert config.policy == Policy()

    def test_merge_prefers_non_default_values(self):
        project = Config.from_dict({"policy": {"duplicates": "first"}}, source="project")
        user = Config.from_dict({
            "manifest": "build/go.mod",
            "policy": {"missing_module": "error", "duplicates": "last"},
        }, source="user")
        merged = project.merge_with(user)
        assert merged.manifest == "build/go.mod"
        assert merged.policy.duplicates == "first"
        assert merged.policy.missing_module == "error"
        assert merged.source == "project"


class TestLoadConfigFile:
    """Tests for loading individual files."""

    def test_load_valid(self):
        config = load_config_file(CONFIG_VALID)
        assert config is not None
        assert config.manifest == "tools/go.mod"
        assert config.policy.missing_module == "error"
        assert config.policy.duplicates == "first"
        assert config.logging.level == "INFO"
        assert config.logging.file == "logs/gobincache.log"
        assert config.source == CONFIG_VALID

    def test_load_minimal(self):
        config = load_config_file(CONFIG_MINIMAL)
        assert config == Config(source=CONFIG_MINIMAL)

    def test_load_nonexistent(self, tmp_path):
        assert load_config_file(str(tmp_path / "missing.yml")) is None

    def test_load_invalid_version(self):
        assert load_config_file(CONFIG_INVALID_VERSION) is None

    def test_load_invalid_policy(self):
        assert load_config_file(CONFIG_INVALID_POLICY) is None

    def test_load_broken_yaml(self):
        assert _load_yaml(CONFIG_BROKEN) is None
        assert load_config_file(CONFIG_BROKEN) is None

    def test_load_non_mapping(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        assert _load_yaml(str(path)) == {}


class TestLoadConfig:
    """Tests for merged configuration loading."""

    def test_defaults_when_nothing_found(self, tmp_path):
        with patch("gobincache.config.CONFIG_LOCATIONS", [str(tmp_path / "none.yml")]):
            config = load_config()
        assert config == Config()

    def test_custom_path(self):
        with patch("gobincache.config.CONFIG_LOCATIONS", []):
            config = load_config(CONFIG_VALID)
        assert config.manifest == "tools/go.mod"

    def test_custom_path_unloadable(self, tmp_path):
        with pytest.raises(ValueError, match="Could not load config"):
            load_config(str(tmp_path / "missing.yml"))

    def test_precedence(self):
        with patch("gobincache.config.CONFIG_LOCATIONS", [CONFIG_PROJECT, CONFIG_USER]):
            config = load_config()
        assert config.policy.duplicates == "first"       # project
        assert config.policy.missing_module == "error"   # user
        assert config.manifest == "build/go.mod"         # user
        assert config.logging.level == "DEBUG"           # user
        assert config.source == CONFIG_PROJECT


class TestValidateConfig:
    """Tests for validate_config()."""

    def test_valid(self):
        assert validate_config(Config()) == []

    def test_non_gomod_manifest(self):
        warnings = validate_config(Config(manifest="deps.txt"))
        assert any("go.mod" in w for w in warnings)

    def test_log_file_is_directory(self, tmp_path):
        config = Config(logging=LoggingPreferences(file=str(tmp_path)))
        warnings = validate_config(config)
        assert any("directory" in w for w in warnings)
