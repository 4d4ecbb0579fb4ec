"""Cache key computation for compiler outputs.

This module handles:
- Canonical input snapshot for one (variant, architecture) compile
- Deterministic hash computation over normalized inputs
- Probing the toolchain version that goes into every key

Identical keys must produce identical binaries, so every input that can
change the toolchain output is part of the snapshot.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from release_matrix.errors import CommandExecutionError

if TYPE_CHECKING:
    from release_matrix.catalog.schema import TargetArchitectureSchema
    from release_matrix.catalog.service import VariantPlan
    from release_matrix.runner import CommandRunner

logger = logging.getLogger(__name__)

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"


@dataclass
class CompileInputs:
    """Canonical representation of all compile inputs.

    Attributes:
        schema_version: Version of cache key schema.
        toolchain_version: Output of the compiler's version query.
        source_commit: Identifier of the source tree.
        triple: Target triple.
        build_packages: Sorted packages passed to the toolchain.
        binary_names: Sorted binaries expected from the build.
        linker: Cross linker, when one is used.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    toolchain_version: str = ""
    source_commit: str = ""
    triple: str = ""
    build_packages: list[str] = field(default_factory=list)
    binary_names: list[str] = field(default_factory=list)
    linker: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def create_compile_inputs(
    plan: VariantPlan,
    arch: TargetArchitectureSchema,
    toolchain_version: str,
    source_commit: str,
    linker: str | None = None,
) -> CompileInputs:
    """Create canonical compile inputs for one architecture build.

    Args:
        plan: Resolved variant.
        arch: Target architecture.
        toolchain_version: Toolchain version string.
        source_commit: Source tree identifier.
        linker: Cross linker actually used (None for native builds).

    Returns:
        CompileInputs instance with all normalized inputs.
    """
    return CompileInputs(
        toolchain_version=toolchain_version.strip(),
        source_commit=source_commit,
        triple=arch.triple,
        build_packages=sorted(plan.build_packages),
        binary_names=sorted(plan.binary_names),
        linker=linker,
    )


def compute_cache_key(inputs: CompileInputs) -> str:
    """Compute a cache key hash from compile inputs.

    Args:
        inputs: CompileInputs instance.

    Returns:
        Cache key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    hash_bytes = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{hash_bytes}"


def detect_toolchain_version(
    runner: CommandRunner,
    cwd: Path,
    rustc_command: str = "rustc",
) -> str | None:
    """Ask the compiler for its version.

    A failed detection only disables the compiler cache for the run.

    Args:
        runner: Command runner.
        cwd: Source tree (toolchain overrides are directory scoped).
        rustc_command: Compiler executable.

    Returns:
        Version string, or None if it could not be determined.
    """
    try:
        result = runner.run([rustc_command, "--version", "--verbose"], cwd=cwd)
    except CommandExecutionError as e:
        logger.warning("Could not detect toolchain version: %s", e)
        return None

    if not result.success or not result.output.strip():
        logger.warning(
            "Toolchain version check failed (exit code %d); compiler cache disabled",
            result.exit_code,
        )
        return None

    version = result.output.strip()
    logger.info("Toolchain: %s", version.splitlines()[0])
    return version


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "CompileInputs",
    "compute_cache_key",
    "create_compile_inputs",
    "detect_toolchain_version",
]
