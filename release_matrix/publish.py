"""Image publisher.

This module handles:
- Composing the multi-platform image build command for a variant
- Formatting image tags
- Building and pushing the manifest list in one backend invocation

The backend packages binaries that are already staged; it never compiles.
Building all platforms in one invocation is what produces a single
manifest list, and ``--push`` uploads it as one operation, so a failed
build never leaves a partial manifest in the registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from release_matrix.catalog.schema import TargetArchitectureSchema
from release_matrix.catalog.service import VariantPlan
from release_matrix.credentials import RegistrySession
from release_matrix.errors import CommandExecutionError, ConfigurationError, PublishError
from release_matrix.gate import Invocation
from release_matrix.runner import CommandRunner
from release_matrix.types import BuildArtifact, PublishedImage

logger = logging.getLogger(__name__)

PROVENANCE_ARG = "git_hash"
DEFAULT_TAG_PREFIX = "community-"


def format_image_tag(
    namespace: str,
    variant: str,
    tag: str,
    prefix: str = DEFAULT_TAG_PREFIX,
) -> str:
    """Return ``<namespace>/<variant>:<prefix><tag>``.

    The release tag is interpolated as-is.
    """
    return f"{namespace}/{variant}:{prefix}{tag}"


def provenance_arg(source_commit: str) -> str:
    """Build argument carrying the source commit."""
    return f"{PROVENANCE_ARG}={source_commit}"


@dataclass
class PublishContext:
    """Backend settings shared by every publish in a run.

    Attributes:
        runner: Command runner for backend invocations.
        source_dir: Source tree holding the image descriptors.
        registry_namespace: Namespace images are pushed under.
        tag_prefix: Prefix prepended to the release tag.
        docker_command: Backend executable.
        builder: Named builder instance, if any.
        log_dir: Directory for the publish log.
        push: Push after building.
        timeout: Optional timeout in seconds.
    """

    runner: CommandRunner
    source_dir: Path
    registry_namespace: str
    tag_prefix: str = DEFAULT_TAG_PREFIX
    docker_command: str = "docker"
    builder: str | None = None
    log_dir: Path | None = None
    push: bool = True
    timeout: int | None = None


def compose_publish_command(
    descriptor: Path,
    platforms: list[str],
    image_tag: str,
    source_commit: str,
    context_dir: Path,
    docker_command: str = "docker",
    builder: str | None = None,
    push: bool = True,
) -> list[str]:
    """Compose the multi-platform image build command.

    Args:
        descriptor: Image recipe file.
        platforms: Full platform set, e.g. ``["linux/amd64", "linux/arm64"]``.
        image_tag: Destination tag.
        source_commit: Commit recorded in the provenance build argument.
        context_dir: Build context containing the staged layout.
        docker_command: Backend executable.
        builder: Named builder instance, if any.
        push: Push the manifest list after building.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [docker_command, "buildx", "build"]
    if builder:
        cmd.extend(["--builder", builder])
    cmd.extend(["-f", str(descriptor)])
    cmd.extend(["--platform", ",".join(platforms)])
    cmd.extend(["-t", image_tag])
    cmd.append(f"--build-arg={provenance_arg(source_commit)}")
    cmd.append(str(context_dir))
    if push:
        cmd.append("--push")
    return cmd


def descriptor_path(plan: VariantPlan, source_dir: Path) -> Path:
    """Absolute path of a variant's image descriptor.

    Raises:
        ConfigurationError: If the descriptor file does not exist.
    """
    path = source_dir / plan.image_descriptor
    if not path.is_file():
        raise ConfigurationError(
            f"Image descriptor for '{plan.name}' not found: {path}",
            variant=plan.name,
        )
    return path


def publish(
    plan: VariantPlan,
    architectures: list[TargetArchitectureSchema],
    staged: list[BuildArtifact],
    invocation: Invocation,
    session: RegistrySession,
    context_dir: Path,
    ctx: PublishContext,
) -> PublishedImage:
    """Build and push the multi-platform image for a variant.

    Args:
        plan: Resolved variant.
        architectures: Target architectures; all go into one build.
        staged: Artifacts already staged in ``context_dir``.
        invocation: Triggering request (tag and provenance).
        session: Registry login established for this run.
        context_dir: Build context holding ``linux/<label>/<binary>``.
        ctx: Publish context.

    Returns:
        PublishedImage describing the pushed manifest list.

    Raises:
        ConfigurationError: If the descriptor is missing.
        PublishError: If the backend fails.
    """
    descriptor = descriptor_path(plan, ctx.source_dir)
    platforms = [a.platform for a in architectures]
    image_tag = format_image_tag(
        ctx.registry_namespace, plan.name, invocation.tag, ctx.tag_prefix
    )
    cmd = compose_publish_command(
        descriptor=descriptor,
        platforms=platforms,
        image_tag=image_tag,
        source_commit=invocation.source_commit,
        context_dir=context_dir,
        docker_command=ctx.docker_command,
        builder=ctx.builder,
        push=ctx.push,
    )
    log_path = (ctx.log_dir or context_dir) / "publish.log"

    logger.info(
        "Publishing %s for %s (%d staged binaries, registry user %s)",
        image_tag,
        ",".join(platforms),
        len(staged),
        session.username or "<external>",
    )

    try:
        result = ctx.runner.run(
            cmd,
            cwd=ctx.source_dir,
            log_path=log_path,
            timeout=ctx.timeout,
        )
    except CommandExecutionError as e:
        raise PublishError(str(e), log_path=str(log_path)) from e

    if not result.success:
        raise PublishError(
            f"Image build for {image_tag} failed with exit code {result.exit_code}",
            exit_code=result.exit_code,
            log_path=str(log_path),
        )

    logger.info("Published %s", image_tag)
    return PublishedImage(
        tag=image_tag,
        platforms=platforms,
        provenance=provenance_arg(invocation.source_commit),
    )


__all__ = [
    "DEFAULT_TAG_PREFIX",
    "PROVENANCE_ARG",
    "PublishContext",
    "compose_publish_command",
    "descriptor_path",
    "format_image_tag",
    "provenance_arg",
    "publish",
]
