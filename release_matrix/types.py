"""Shared type definitions for release_matrix.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class VariantState(str, Enum):
    """Lifecycle state of a single variant pipeline."""

    PENDING = "pending"
    COMPILING = "compiling"
    STAGED = "staged"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class ParallelismMode(str, Enum):
    """How variant pipelines are scheduled."""

    PROCESS = "process"
    THREAD = "thread"


@dataclass
class BuildArtifact:
    """One binary produced for a (variant, architecture) pair.

    Attributes:
        binary_name: Name of the binary as declared by the variant.
        triple: Target triple the binary was compiled for.
        platform_label: Image platform label (e.g. amd64).
        source_path: Location where the toolchain wrote the binary.
        destination_path: Staged location (None until staged).
        sha256: Content hash, computed at staging time.
        size_bytes: File size, computed at staging time.
        cache_hit: Whether the binary was restored from the compiler cache.
    """

    binary_name: str
    triple: str
    platform_label: str
    source_path: Path
    destination_path: Path | None = None
    sha256: str | None = None
    size_bytes: int | None = None
    cache_hit: bool = False


@dataclass
class PublishedImage:
    """A multi-platform image pushed to the registry."""

    tag: str
    platforms: list[str] = field(default_factory=list)
    provenance: str = ""


__all__ = [
    "BuildArtifact",
    "ParallelismMode",
    "PublishedImage",
    "VariantState",
]
