"""Artifact staging and manifest generation.

This module handles:
- Relocating toolchain outputs into ``linux/<platformLabel>/<binaryName>``
- Computing checksums of staged binaries
- Writing a staging manifest beside the layout

The layout is consumed verbatim by the image descriptors, so it is a fixed
contract. Every source binary is checked before anything is moved, which
means a failed stage leaves no partial artifact set behind.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from release_matrix.catalog.schema import PLATFORM_OS
from release_matrix.errors import ArtifactMissingError, ConfigurationError
from release_matrix.types import BuildArtifact

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def staged_path(context_dir: Path, platform_label: str, binary_name: str) -> Path:
    """Location of a binary inside the image build context."""
    return context_dir / PLATFORM_OS / platform_label / binary_name


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def clear_layout(context_dir: Path) -> None:
    """Remove a staged layout left over from an earlier run."""
    layout = context_dir / PLATFORM_OS
    if layout.exists():
        logger.debug("Removing stale layout: %s", layout)
        shutil.rmtree(layout)


def stage(build_outputs: list[BuildArtifact], context_dir: Path) -> list[BuildArtifact]:
    """Move built binaries into the staging layout.

    Args:
        build_outputs: Artifacts reported by the compile stage.
        context_dir: Image build context receiving ``linux/...``.

    Returns:
        The same artifacts with destination, hash and size filled in.

    Raises:
        ConfigurationError: If two outputs map to the same staged path.
        ArtifactMissingError: If any source binary is absent.
    """
    seen: set[tuple[str, str]] = set()
    for artifact in build_outputs:
        slot = (artifact.platform_label, artifact.binary_name)
        if slot in seen:
            raise ConfigurationError(
                f"Duplicate artifact for {artifact.platform_label}/"
                f"{artifact.binary_name}"
            )
        seen.add(slot)

    missing = [str(a.source_path) for a in build_outputs if not a.source_path.is_file()]
    if missing:
        logger.error("Missing build outputs: %s", ", ".join(missing))
        raise ArtifactMissingError(missing)

    for artifact in build_outputs:
        dest = staged_path(context_dir, artifact.platform_label, artifact.binary_name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.exists():
            dest.unlink()
        shutil.move(str(artifact.source_path), str(dest))

        artifact.destination_path = dest
        artifact.size_bytes = dest.stat().st_size
        artifact.sha256 = compute_file_hash(dest)
        logger.debug(
            "Staged %s -> %s (%d bytes)",
            artifact.source_path,
            dest,
            artifact.size_bytes,
        )

    logger.info("Staged %d artifacts in %s", len(build_outputs), context_dir)
    return build_outputs


def verify_staged(
    artifacts: list[BuildArtifact],
    expected: list[tuple[str, str]],
) -> None:
    """Check that every (platform label, binary) pair is staged exactly once.

    Raises:
        ArtifactMissingError: If an expected pair has no staged file.
    """
    staged = {
        (a.platform_label, a.binary_name)
        for a in artifacts
        if a.destination_path is not None and a.destination_path.is_file()
    }
    missing = [f"{label}/{name}" for label, name in expected if (label, name) not in staged]
    if missing:
        raise ArtifactMissingError(missing)


def generate_manifest(
    artifacts: list[BuildArtifact],
    variant: str,
    context_dir: Path,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a staging manifest.

    Args:
        artifacts: Staged artifacts.
        variant: Variant name.
        context_dir: Build context the relative paths are computed from.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    entries: list[dict[str, Any]] = []
    for artifact in artifacts:
        entry = asdict(artifact)
        entry["source_path"] = str(artifact.source_path)
        if artifact.destination_path is not None:
            entry["destination_path"] = artifact.destination_path.relative_to(
                context_dir
            ).as_posix()
        entries.append(entry)

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "variant": variant,
        "artifacts": entries,
        "summary": {
            "total_artifacts": len(artifacts),
            "total_size_bytes": sum(a.size_bytes or 0 for a in artifacts),
            "platforms": sorted({a.platform_label for a in artifacts}),
            "cache_hits": sum(1 for a in artifacts if a.cache_hit),
        },
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_NAME",
    "clear_layout",
    "compute_file_hash",
    "generate_manifest",
    "stage",
    "staged_path",
    "verify_staged",
    "write_manifest",
]
