"""
Error taxonomy for staleness checks.

Every failure carries the stage it happened in so callers can report
where a check broke down. A missing binary is not an error.
"""

from __future__ import annotations


class GoBinCacheError(Exception):
    """
    Base exception for staleness check failures.

    Attributes:
        message: Human-readable error message
        stage: Pipeline stage that failed ('manifest', 'artifact', 'toolchain', 'resolve')
    """
    stage = "check"

    def __init__(self, message: str, stage: str | None = None):
        self.message = message
        if stage is not None:
            self.stage = stage
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Name of the error kind (e.g. 'ManifestMalformed')."""
        return type(self).__name__


class ManifestUnreadable(GoBinCacheError):
    """The manifest file is missing or cannot be opened."""
    stage = "manifest"


class ManifestMalformed(GoBinCacheError):
    """The manifest was read but does not conform to the go.mod grammar."""
    stage = "manifest"

    def __init__(self, message: str, line: int | None = None, source: str = "go.mod"):
        self.line = line
        self.source = source
        if line is not None:
            message = f"{source}:{line}: {message}"
        super().__init__(message)


class ArtifactUnreadable(GoBinCacheError):
    """The binary exists but its build info cannot be extracted."""
    stage = "artifact"


class ToolchainVersionUnparseable(GoBinCacheError):
    """A Go toolchain version does not normalize to a comparable version."""
    stage = "toolchain"


class ModulePathNotFound(GoBinCacheError):
    """The binary's module path is not required by the manifest."""
    stage = "resolve"
