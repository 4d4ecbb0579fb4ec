"""Release orchestration.

This module provides the high-level release API:
- run_release(): gate, registry login, toolchain version check, then the matrix
- run_matrix(): one independent pipeline per catalog variant
- plan_release(): the commands a run would execute, without running them

Variants run in parallel, in worker processes by default. A failing
variant never cancels its siblings; the run succeeds only if every
variant does.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, computed_field

from release_matrix.builds.cache_key import detect_toolchain_version
from release_matrix.builds.compile import compose_build_command, host_cpu, is_foreign
from release_matrix.catalog.schema import (
    CatalogSchema,
    ImageVariantSchema,
    TargetArchitectureSchema,
)
from release_matrix.catalog.service import resolve_variant, select_variants
from release_matrix.config import Settings
from release_matrix.credentials import (
    RegistryCredentials,
    RegistrySession,
    external_session,
    login,
)
from release_matrix.errors import INTERNAL_ERROR, ReleaseError
from release_matrix.gate import GatePolicy, Invocation, ensure_authorized
from release_matrix.pipeline import VariantOutcome, VariantPipeline
from release_matrix.publish import compose_publish_command, format_image_tag
from release_matrix.runner import CommandRunner, SubprocessRunner
from release_matrix.types import ParallelismMode, VariantState

logger = logging.getLogger(__name__)


class RunReport(BaseModel):
    """Result of a release run."""

    tag: str
    source_commit: str
    project_identity: str
    authorization: str = "authorized"
    outcomes: dict[str, VariantOutcome] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if not o.success]


@dataclass
class VariantJob:
    """Picklable unit of work handed to a worker."""

    variant: ImageVariantSchema
    architectures: list[TargetArchitectureSchema]
    invocation: Invocation
    session: RegistrySession
    settings: Settings
    runner: CommandRunner
    toolchain_version: str | None = None
    host: str | None = None


def run_variant_job(job: VariantJob) -> VariantOutcome:
    """Worker entry point: run one variant pipeline."""
    pipeline = VariantPipeline(
        variant=job.variant,
        architectures=job.architectures,
        invocation=job.invocation,
        session=job.session,
        settings=job.settings,
        runner=job.runner,
        toolchain_version=job.toolchain_version,
        host=job.host,
    )
    return pipeline.run()


def _make_executor(settings: Settings, jobs: int) -> Executor:
    workers = max(1, min(settings.max_parallel_variants, jobs))
    if ParallelismMode(settings.parallelism) == ParallelismMode.PROCESS:
        return ProcessPoolExecutor(max_workers=workers)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="variant")


def _crashed_outcome(variant: str, error: BaseException) -> VariantOutcome:
    return VariantOutcome(
        variant=variant,
        state=VariantState.FAILED,
        history=[VariantState.PENDING, VariantState.FAILED],
        error_code=getattr(error, "code", INTERNAL_ERROR),
        error_message=f"{type(error).__name__}: {error}",
    )


def run_matrix(
    catalog: CatalogSchema,
    invocation: Invocation,
    session: RegistrySession,
    settings: Settings,
    runner: CommandRunner,
    toolchain_version: str | None = None,
    variants: list[str] | None = None,
    host: str | None = None,
) -> dict[str, VariantOutcome]:
    """Run every selected variant pipeline and collect the outcomes.

    Args:
        catalog: Target catalog.
        invocation: Triggering request.
        session: Registry login for the run.
        settings: Effective settings.
        runner: Command runner handed to every pipeline.
        toolchain_version: Detected toolchain version, for cache keys.
        variants: Optional subset of variant names.
        host: Override of the build host CPU.

    Returns:
        Mapping of variant name to outcome, in catalog order.
    """
    selected = select_variants(catalog, variants)
    jobs = [
        VariantJob(
            variant=variant,
            architectures=list(catalog.architectures),
            invocation=invocation,
            session=session,
            settings=settings,
            runner=runner,
            toolchain_version=toolchain_version,
            host=host,
        )
        for variant in selected
    ]
    logger.info(
        "Running %d variant(s) with %s parallelism: %s",
        len(jobs),
        settings.parallelism,
        ", ".join(v.name for v in selected),
    )

    futures: dict[str, Future[VariantOutcome]] = {}
    with _make_executor(settings, len(jobs)) as executor:
        for job in jobs:
            futures[job.variant.name] = executor.submit(run_variant_job, job)

    outcomes: dict[str, VariantOutcome] = {}
    for name, future in futures.items():
        try:
            outcomes[name] = future.result()
        except Exception as e:
            logger.exception("Variant %s crashed", name)
            outcomes[name] = _crashed_outcome(name, e)
    return outcomes


def establish_session(
    settings: Settings,
    runner: CommandRunner,
    skip_login: bool = False,
) -> RegistrySession:
    """Log in to the registry once for the whole run.

    Raises:
        AuthenticationError: If credentials are missing or login fails.
    """
    if skip_login:
        logger.info("Skipping registry login; using existing backend session")
        return external_session(settings)
    credentials = RegistryCredentials.from_settings(settings)
    return login(
        credentials,
        runner,
        cwd=settings.source_dir,
        docker_command=settings.docker_command,
    )


def run_release(
    catalog: CatalogSchema,
    invocation: Invocation,
    settings: Settings,
    runner: CommandRunner | None = None,
    variants: list[str] | None = None,
    skip_login: bool = False,
    host: str | None = None,
) -> RunReport:
    """Run a complete release.

    Args:
        catalog: Target catalog.
        invocation: Triggering request.
        settings: Effective settings.
        runner: Command runner; a SubprocessRunner if not given.
        variants: Optional subset of variant names.
        skip_login: Reuse a registry login established outside the run.
        host: Override of the build host CPU.

    Returns:
        RunReport with one outcome per variant.

    Raises:
        GateDenied: If the invocation context is not authorized.
        AuthenticationError: If registry login fails.
    """
    runner = runner or SubprocessRunner()

    decision = ensure_authorized(invocation, GatePolicy.from_settings(settings))
    select_variants(catalog, variants)

    settings.workspace_dir.mkdir(parents=True, exist_ok=True)
    session = establish_session(settings, runner, skip_login=skip_login)

    toolchain_version: str | None = None
    if settings.compiler_cache_enabled:
        toolchain_version = detect_toolchain_version(
            runner, settings.source_dir, settings.rustc_command
        )

    outcomes = run_matrix(
        catalog,
        invocation,
        session,
        settings,
        runner,
        toolchain_version=toolchain_version,
        variants=variants,
        host=host,
    )
    report = RunReport(
        tag=invocation.tag,
        source_commit=invocation.source_commit,
        project_identity=invocation.project_identity,
        authorization=decision.reason,
        outcomes=outcomes,
    )
    if report.success:
        logger.info("Release %s succeeded for all variants", invocation.tag)
    else:
        logger.error(
            "Release %s failed for: %s", invocation.tag, ", ".join(report.failed)
        )
    return report


def plan_release(
    catalog: CatalogSchema,
    invocation: Invocation,
    settings: Settings,
    variants: list[str] | None = None,
    host: str | None = None,
) -> list[dict[str, Any]]:
    """Describe the commands a release would run, without running them.

    Variants with a missing mapping are reported with their error instead
    of commands.
    """
    host = host or host_cpu()
    planned: list[dict[str, Any]] = []
    for variant in select_variants(catalog, variants):
        entry: dict[str, Any] = {"variant": variant.name}
        try:
            plan = resolve_variant(variant)
        except ReleaseError as e:
            entry["error"] = str(e)
            planned.append(entry)
            continue

        workspace = settings.workspace_dir / variant.name
        compiles = []
        for arch in catalog.architectures:
            foreign = is_foreign(arch, host)
            compiles.append(
                {
                    "triple": arch.triple,
                    "foreign": foreign,
                    "linker": arch.linker if foreign else None,
                    "command": compose_build_command(
                        plan, arch, settings.cargo_command
                    ),
                }
            )
        image_tag = format_image_tag(
            settings.registry_namespace,
            plan.name,
            invocation.tag,
            settings.tag_prefix,
        )
        entry["compile"] = compiles
        entry["staged"] = [
            f"{arch.output_dir}/{name}"
            for arch in catalog.architectures
            for name in plan.binary_names
        ]
        entry["image_tag"] = image_tag
        entry["publish"] = compose_publish_command(
            descriptor=Path(settings.source_dir) / plan.image_descriptor,
            platforms=catalog.platforms,
            image_tag=image_tag,
            source_commit=invocation.source_commit,
            context_dir=workspace,
            docker_command=settings.docker_command,
            builder=settings.buildx_builder,
            push=settings.push_images,
        )
        planned.append(entry)
    return planned


__all__ = [
    "RunReport",
    "VariantJob",
    "establish_session",
    "plan_release",
    "run_matrix",
    "run_release",
    "run_variant_job",
]
