"""
gobincache - Decide whether an installed Go binary is stale.

Core Modules:
- Manifest: go.mod parsing into immutable requirement records
- Build info: provenance extraction from Go binaries without executing them
- Resolver: toolchain and module version checks producing a verdict
- Config and logging: YAML configuration and structured logging
"""

__version__ = "1.0.0"

VERSION = __version__

from .errors import (
    GoBinCacheError,
    ManifestUnreadable,
    ManifestMalformed,
    ArtifactUnreadable,
    ToolchainVersionUnparseable,
    ModulePathNotFound,
)
from .manifest import (
    ManifestRequirement,
    ManifestToolchain,
    ManifestReplacement,
    ParsedManifest,
    parse_manifest,
    read_manifest,
)
from .buildinfo import (
    ArtifactMetadata,
    Missing,
    MISSING,
    inspect_artifact,
    read_build_info,
    parse_modinfo,
)
from .resolver import (
    Verdict,
    CheckResult,
    normalize_toolchain_version,
    compare_toolchain_versions,
    is_toolchain_outdated,
    evaluate,
    resolve,
    check_binary,
)
from .config import Config, Policy, LoggingPreferences, load_config, load_config_file, validate_config
from .logging_config import setup_logging, get_logger

__all__ = [
    "__version__",
    "VERSION",
    # Errors
    "GoBinCacheError",
    "ManifestUnreadable",
    "ManifestMalformed",
    "ArtifactUnreadable",
    "ToolchainVersionUnparseable",
    "ModulePathNotFound",
    # Manifest
    "ManifestRequirement",
    "ManifestToolchain",
    "ManifestReplacement",
    "ParsedManifest",
    "parse_manifest",
    "read_manifest",
    # Build info
    "ArtifactMetadata",
    "Missing",
    "MISSING",
    "inspect_artifact",
    "read_build_info",
    "parse_modinfo",
    # Resolver
    "Verdict",
    "CheckResult",
    "normalize_toolchain_version",
    "compare_toolchain_versions",
    "is_toolchain_outdated",
    "evaluate",
    "resolve",
    "check_binary",
    # Config
    "Config",
    "Policy",
    "LoggingPreferences",
    "load_config",
    "load_config_file",
    "validate_config",
    # Logging
    "setup_logging",
    "get_logger",
]
