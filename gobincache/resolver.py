"""
Staleness resolution for installed Go binaries.

Combines the parsed go.mod and the binary's embedded build info into a
verdict. Two independent checks run in order:

- Toolchain: the binary must not have been built by a Go toolchain older
  than the manifest's `go` directive (ordered comparison).
- Module version: the binary's main module version must equal the
  manifest's required version (opaque string comparison, since
  pseudo-versions and "(devel)" are not orderable).
"""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass
from typing import Any

from packaging.version import InvalidVersion, Version

from .buildinfo import ArtifactMetadata, Missing, inspect_artifact
from .common import vlog
from .errors import GoBinCacheError, ModulePathNotFound, ToolchainVersionUnparseable
from .logging_config import get_logger
from .manifest import DEFAULT_MANIFEST_PATH, ParsedManifest, read_manifest


# Go release grammar after the "go" prefix: 1.21, 1.21.3, 1.22rc1, 1.22beta1
GO_VERSION_RE = re.compile(r"^(0|[1-9]\d*)(\.(0|[1-9]\d*)){0,2}((rc|beta|alpha)(0|[1-9]\d*))?$")

MISSING_MODULE_POLICIES = ("install", "error")
DUPLICATE_POLICIES = ("last", "first")

REASON_MISSING = "missing"
REASON_TOOLCHAIN_OUTDATED = "toolchain_outdated"
REASON_VERSION_MISMATCH = "version_mismatch"
REASON_MODULE_NOT_IN_MANIFEST = "module_not_in_manifest"
REASON_UP_TO_DATE = "up_to_date"


class Verdict(enum.Enum):
    """Outcome of a staleness check."""
    UP_TO_DATE = "up_to_date"
    NEEDS_INSTALL = "needs_install"


def normalize_toolchain_version(value: str) -> Version:
    """
    Normalize a Go toolchain version into a comparable Version.

    Accepts both the go.mod form ("1.21") and the runtime form
    ("go1.21.3", "go1.22.0 X:boringcrypto").

    Args:
        value: Toolchain version string

    Returns:
        packaging Version

    Raises:
        ToolchainVersionUnparseable: If the value is not a Go release version
    """
    text = value.strip() if isinstance(value, str) else ""
    if text:
        text = text.split()[0]
    if text.startswith("go"):
        text = text[2:]

    if not GO_VERSION_RE.match(text):
        raise ToolchainVersionUnparseable(f"invalid Go toolchain version: {value!r}")
    try:
        return Version(text)
    except InvalidVersion as e:
        raise ToolchainVersionUnparseable(f"invalid Go toolchain version: {value!r}") from e


def compare_toolchain_versions(v1: str, v2: str) -> int:
    """
    Compare two Go toolchain versions.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    ver1 = normalize_toolchain_version(v1)
    ver2 = normalize_toolchain_version(v2)
    if ver1 < ver2:
        return -1
    elif ver1 > ver2:
        return 1
    return 0


def is_toolchain_outdated(required: str, built_with: str) -> bool:
    """
    Check whether a binary predates the toolchain the manifest requires.

    A bare language version such as "1.21" is met by every 1.21 toolchain,
    release candidates included. Newer toolchains are always acceptable.

    Args:
        required: Manifest `go` directive value
        built_with: Toolchain recorded in the binary

    Returns:
        True if the binary's toolchain is strictly older than required
    """
    req = normalize_toolchain_version(required)
    got = normalize_toolchain_version(built_with)

    if len(req.release) == 2 and req.pre is None:
        return got.release[:2] < req.release
    return got < req


def evaluate(
    manifest: ParsedManifest,
    artifact: ArtifactMetadata | Missing,
    missing_module: str = "install",
    duplicates: str = "last",
    verbose: bool = False,
) -> tuple[Verdict, str]:
    """
    Decide whether a binary needs to be reinstalled.

    Args:
        manifest: Parsed go.mod
        artifact: Binary build info, or MISSING
        missing_module: Policy when the binary's module is not required by the
            manifest ('install' or 'error')
        duplicates: Which requirement wins for repeated module paths ('last' or 'first')
        verbose: Enable verbose logging

    Returns:
        (verdict, reason)

    Raises:
        ToolchainVersionUnparseable: If either toolchain version is invalid
        ModulePathNotFound: If the module is not required and policy is 'error'
    """
    if missing_module not in MISSING_MODULE_POLICIES:
        raise ValueError(
            f"Invalid missing_module policy: {missing_module}. Must be 'install' or 'error'"
        )
    if duplicates not in DUPLICATE_POLICIES:
        raise ValueError(f"Invalid duplicates policy: {duplicates}. Must be 'last' or 'first'")

    if isinstance(artifact, Missing):
        return (Verdict.NEEDS_INSTALL, REASON_MISSING)

    required_go = manifest.toolchain.required_go_version
    if is_toolchain_outdated(required_go, artifact.built_with_toolchain_version):
        vlog(
            f"Toolchain {artifact.built_with_toolchain_version} is older than go {required_go}",
            verbose,
        )
        return (Verdict.NEEDS_INSTALL, REASON_TOOLCHAIN_OUTDATED)

    requirement = manifest.find_requirement(artifact.declared_module_path, duplicates)
    if requirement is None:
        if missing_module == "error":
            raise ModulePathNotFound(
                f"module ({artifact.declared_module_path}) not found in modfile."
            )
        vlog(f"Module {artifact.declared_module_path} is not required by {manifest.source}", verbose)
        return (Verdict.NEEDS_INSTALL, REASON_MODULE_NOT_IN_MANIFEST)

    if requirement.required_version != artifact.declared_module_version:
        vlog(
            f"{requirement.module_path}: installed {artifact.declared_module_version}, "
            f"required {requirement.required_version}",
            verbose,
        )
        return (Verdict.NEEDS_INSTALL, REASON_VERSION_MISMATCH)

    return (Verdict.UP_TO_DATE, REASON_UP_TO_DATE)


def resolve(
    manifest: ParsedManifest,
    artifact: ArtifactMetadata | Missing,
    missing_module: str = "install",
    duplicates: str = "last",
) -> Verdict:
    """Return only the verdict of evaluate()."""
    verdict, _ = evaluate(manifest, artifact, missing_module=missing_module, duplicates=duplicates)
    return verdict


@dataclass(frozen=True)
class CheckResult:
    """
    Result of checking one binary.

    Attributes:
        status: 'ok' (up to date), 'stale' (needs install) or 'error'
        binary_path: Binary that was checked
        manifest_path: Manifest it was checked against
        reason: Why the verdict was reached, or the error kind
        verdict: Verdict (None on error)
        artifact: Build info read from the binary, if any
        error: Failure that stopped the check (None unless status is 'error')
    """
    status: str
    binary_path: str
    manifest_path: str
    reason: str
    verdict: Verdict | None = None
    artifact: ArtifactMetadata | None = None
    error: GoBinCacheError | None = None

    @property
    def needs_install(self) -> bool:
        return self.status == "stale"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "binary_path": self.binary_path,
            "manifest_path": self.manifest_path,
            "reason": self.reason,
            "verdict": self.verdict.value if self.verdict else None,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "error": {
                "kind": self.error.kind,
                "stage": self.error.stage,
                "message": self.error.message,
            } if self.error else None,
        }


def check_binary(
    binary_path: str | os.PathLike,
    manifest_path: str | os.PathLike = DEFAULT_MANIFEST_PATH,
    missing_module: str = "install",
    duplicates: str = "last",
    verbose: bool = False,
) -> CheckResult:
    """
    Check a binary against a go.mod in a single read-only pass.

    Failures are returned as an 'error' result rather than raised, so the
    three outcomes stay distinguishable for the caller.

    Args:
        binary_path: Path to the installed binary
        manifest_path: Path to go.mod
        missing_module: Policy for module paths absent from the manifest
        duplicates: Policy for repeated requirement paths
        verbose: Enable verbose logging

    Returns:
        CheckResult
    """
    binary = os.fspath(binary_path)
    manifest_file = os.fspath(manifest_path)
    artifact: ArtifactMetadata | Missing | None = None

    try:
        manifest = read_manifest(manifest_file, verbose)
        artifact = inspect_artifact(binary, verbose)
        verdict, reason = evaluate(
            manifest, artifact, missing_module=missing_module, duplicates=duplicates, verbose=verbose
        )
    except GoBinCacheError as e:
        get_logger().debug(f"check failed: {e}", extra={"stage": e.stage})
        return CheckResult(
            status="error",
            binary_path=binary,
            manifest_path=manifest_file,
            reason=e.kind,
            artifact=artifact if isinstance(artifact, ArtifactMetadata) else None,
            error=e,
        )

    return CheckResult(
        status="ok" if verdict is Verdict.UP_TO_DATE else "stale",
        binary_path=binary,
        manifest_path=manifest_file,
        reason=reason,
        verdict=verdict,
        artifact=artifact if isinstance(artifact, ArtifactMetadata) else None,
    )
