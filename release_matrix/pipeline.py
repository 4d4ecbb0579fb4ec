"""Per-variant pipeline.

One pipeline drives a single variant through
``Pending -> Compiling -> Staged -> Publishing -> Done``. Any variant-level
error moves it to ``Failed``, which is terminal; nothing is retried. Each
variant works in its own directory under the run workspace, so pipelines
share nothing but the read-mostly compiler cache.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from release_matrix.builds.cache import CompilerCache
from release_matrix.builds.compile import CompileContext, build_all
from release_matrix.builds.staging import (
    MANIFEST_NAME,
    clear_layout,
    generate_manifest,
    stage,
    verify_staged,
    write_manifest,
)
from release_matrix.catalog.schema import ImageVariantSchema, TargetArchitectureSchema
from release_matrix.catalog.service import VariantPlan, resolve_variant
from release_matrix.config import Settings
from release_matrix.credentials import RegistrySession
from release_matrix.errors import ReleaseError, StagingError
from release_matrix.gate import Invocation
from release_matrix.publish import PublishContext, descriptor_path, publish
from release_matrix.runner import CommandRunner
from release_matrix.types import BuildArtifact, PublishedImage, VariantState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[VariantState, set[VariantState]] = {
    VariantState.PENDING: {VariantState.COMPILING, VariantState.FAILED},
    VariantState.COMPILING: {VariantState.STAGED, VariantState.FAILED},
    VariantState.STAGED: {VariantState.PUBLISHING, VariantState.FAILED},
    VariantState.PUBLISHING: {VariantState.DONE, VariantState.FAILED},
    VariantState.DONE: set(),
    VariantState.FAILED: set(),
}


class InvalidTransitionError(Exception):
    """Raised on a state change the pipeline does not allow."""

    def __init__(
        self,
        current: VariantState,
        target: VariantState,
        code: str = "invalid_transition",
    ) -> None:
        super().__init__(f"Cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target
        self.code = code


class VariantOutcome(BaseModel):
    """Final result of one variant's pipeline."""

    variant: str
    state: VariantState
    history: list[VariantState] = Field(default_factory=list)
    image_tag: str | None = None
    platforms: list[str] = Field(default_factory=list)
    provenance: str | None = None
    artifacts: list[dict[str, Any]] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    log_path: str | None = None
    workspace: str | None = None

    @property
    def success(self) -> bool:
        return self.state == VariantState.DONE


def variant_workspace(workspace_dir: Path, variant: str) -> Path:
    """Directory owned by one variant for the whole run."""
    return workspace_dir / variant


def artifact_to_dict(artifact: BuildArtifact, context_dir: Path) -> dict[str, Any]:
    """Summarize a staged artifact for reports."""
    dest = artifact.destination_path
    return {
        "binary_name": artifact.binary_name,
        "platform_label": artifact.platform_label,
        "triple": artifact.triple,
        "path": dest.relative_to(context_dir).as_posix() if dest else None,
        "sha256": artifact.sha256,
        "size_bytes": artifact.size_bytes,
        "cache_hit": artifact.cache_hit,
    }


class VariantPipeline:
    """Runs compile, stage and publish for one variant."""

    def __init__(
        self,
        variant: ImageVariantSchema,
        architectures: list[TargetArchitectureSchema],
        invocation: Invocation,
        session: RegistrySession,
        settings: Settings,
        runner: CommandRunner,
        toolchain_version: str | None = None,
        host: str | None = None,
    ) -> None:
        self.variant = variant
        self.architectures = architectures
        self.invocation = invocation
        self.session = session
        self.settings = settings
        self.runner = runner
        self.toolchain_version = toolchain_version
        self.host = host
        self.workspace = variant_workspace(settings.workspace_dir, variant.name)
        self.state = VariantState.PENDING
        self.history: list[VariantState] = [VariantState.PENDING]
        self.artifacts: list[BuildArtifact] = []
        self.image: PublishedImage | None = None

    def _transition(self, target: VariantState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        logger.debug("%s: %s -> %s", self.variant.name, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def _compile_context(self, plan: VariantPlan) -> CompileContext:
        settings = self.settings
        cache = (
            CompilerCache(settings.cache_dir) if settings.compiler_cache_enabled else None
        )
        ctx = CompileContext(
            runner=self.runner,
            source_dir=settings.source_dir,
            target_dir=self.workspace / "target",
            log_dir=self.workspace / "logs",
            cargo_command=settings.cargo_command,
            rustup_command=settings.rustup_command,
            prepare_targets=settings.prepare_targets,
            compiler_wrapper=settings.compiler_wrapper,
            wrapper_cache_dir=settings.cache_dir / "wrapper",
            cache=cache,
            toolchain_version=self.toolchain_version,
            source_commit=self.invocation.source_commit,
            timeout=settings.build_timeout,
        )
        if self.host is not None:
            ctx.host = self.host
        return ctx

    def _publish_context(self) -> PublishContext:
        settings = self.settings
        return PublishContext(
            runner=self.runner,
            source_dir=settings.source_dir,
            registry_namespace=settings.registry_namespace,
            tag_prefix=settings.tag_prefix,
            docker_command=settings.docker_command,
            builder=settings.buildx_builder,
            log_dir=self.workspace / "logs",
            push=settings.push_images,
            timeout=settings.publish_timeout,
        )

    def _stage(self, plan: VariantPlan, outputs: list[BuildArtifact]) -> None:
        self.artifacts = stage(outputs, self.workspace)
        verify_staged(
            self.artifacts,
            [
                (arch.platform_label, name)
                for arch in self.architectures
                for name in plan.binary_names
            ],
        )
        write_manifest(
            generate_manifest(
                self.artifacts,
                plan.name,
                self.workspace,
                extra_metadata={
                    "tag": self.invocation.tag,
                    "source_commit": self.invocation.source_commit,
                },
            ),
            self.workspace / MANIFEST_NAME,
        )

    def _steps(self) -> None:
        plan = resolve_variant(self.variant)
        descriptor_path(plan, self.settings.source_dir)

        try:
            self.workspace.mkdir(parents=True, exist_ok=True)
            clear_layout(self.workspace)
        except OSError as e:
            raise StagingError(f"Cannot prepare workspace {self.workspace}: {e}") from e

        self._transition(VariantState.COMPILING)
        outputs = build_all(plan, self.architectures, self._compile_context(plan))

        try:
            self._stage(plan, outputs)
        except ReleaseError:
            clear_layout(self.workspace)
            raise
        except OSError as e:
            clear_layout(self.workspace)
            raise StagingError(f"Staging failed for {plan.name}: {e}") from e
        self._transition(VariantState.STAGED)

        self._transition(VariantState.PUBLISHING)
        self.image = publish(
            plan,
            self.architectures,
            self.artifacts,
            self.invocation,
            self.session,
            self.workspace,
            self._publish_context(),
        )
        self._transition(VariantState.DONE)

    def run(self) -> VariantOutcome:
        """Run every stage and report the outcome.

        Variant-level errors are recorded in the outcome instead of being
        raised, so sibling variants are never affected.
        """
        logger.info("Starting variant %s", self.variant.name)
        outcome = VariantOutcome(
            variant=self.variant.name,
            state=self.state,
            workspace=str(self.workspace),
        )
        try:
            self._steps()
        except ReleaseError as e:
            logger.error("Variant %s failed: %s", self.variant.name, e)
            self._transition(VariantState.FAILED)
            outcome.error_code = e.code
            outcome.error_message = str(e)
            outcome.log_path = getattr(e, "log_path", None)

        outcome.state = self.state
        outcome.history = list(self.history)
        if self.state == VariantState.DONE:
            outcome.artifacts = [
                artifact_to_dict(a, self.workspace) for a in self.artifacts
            ]
        if self.image is not None:
            outcome.image_tag = self.image.tag
            outcome.platforms = list(self.image.platforms)
            outcome.provenance = self.image.provenance

        logger.info("Variant %s finished: %s", self.variant.name, self.state.value)
        return outcome


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "VariantOutcome",
    "VariantPipeline",
    "artifact_to_dict",
    "variant_workspace",
]
