"""Cross-compilation stage.

This module handles:
- Composing the toolchain command for one (variant, architecture) pair
- Selecting a foreign linker when the target differs from the build host
- Consulting and populating the compiler cache
- Running the per-architecture builds concurrently

Each architecture is its own toolchain invocation because native and
foreign targets need different linker configuration.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from release_matrix.builds.cache import CompilerCache
from release_matrix.builds.cache_key import compute_cache_key, create_compile_inputs
from release_matrix.catalog.schema import TargetArchitectureSchema
from release_matrix.catalog.service import VariantPlan
from release_matrix.errors import CommandExecutionError, ToolchainError
from release_matrix.runner import CommandRunner
from release_matrix.types import BuildArtifact

logger = logging.getLogger(__name__)

# platform.machine() spellings mapped to triple CPU names
CPU_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
}


def normalize_cpu(machine: str) -> str:
    """Map a machine name to the CPU component used in target triples."""
    machine = machine.lower()
    return CPU_ALIASES.get(machine, machine)


def host_cpu() -> str:
    """CPU architecture of the build host."""
    return normalize_cpu(platform.machine())


def is_foreign(arch: TargetArchitectureSchema, host: str) -> bool:
    """Whether ``arch`` needs cross-linking on a ``host`` machine."""
    return arch.cpu != normalize_cpu(host)


@dataclass
class CompileContext:
    """Everything a variant's compile stage needs besides the variant.

    Attributes:
        runner: Command runner for toolchain invocations.
        source_dir: Source tree to build.
        target_dir: Toolchain output root for this variant.
        log_dir: Directory for per-architecture build logs.
        host: Build host CPU architecture.
        cargo_command: Toolchain executable.
        rustup_command: Toolchain manager executable.
        prepare_targets: Install target standard libraries first.
        compiler_wrapper: Optional compiler wrapper (e.g. sccache).
        wrapper_cache_dir: Storage for the wrapper's own cache.
        cache: Compiler output cache, None when disabled.
        toolchain_version: Version string used in cache keys.
        source_commit: Source identifier used in cache keys.
        timeout: Optional per-invocation timeout in seconds.
    """

    runner: CommandRunner
    source_dir: Path
    target_dir: Path
    log_dir: Path
    host: str = field(default_factory=host_cpu)
    cargo_command: str = "cargo"
    rustup_command: str = "rustup"
    prepare_targets: bool = False
    compiler_wrapper: str | None = None
    wrapper_cache_dir: Path | None = None
    cache: CompilerCache | None = None
    toolchain_version: str | None = None
    source_commit: str = ""
    timeout: int | None = None


def toolchain_output_dir(target_dir: Path, arch: TargetArchitectureSchema) -> Path:
    """Directory where the toolchain writes release binaries for ``arch``."""
    return target_dir / arch.triple / "release"


def compose_build_command(
    plan: VariantPlan,
    arch: TargetArchitectureSchema,
    cargo_command: str = "cargo",
) -> list[str]:
    """Compose the toolchain command for one architecture.

    Args:
        plan: Resolved variant.
        arch: Target architecture.
        cargo_command: Toolchain executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [cargo_command, "build"]
    for package in plan.build_packages:
        cmd.extend(["--package", package])
    cmd.extend(["--release", "--target", arch.triple])
    return cmd


def resolve_wrapper(wrapper: str | None) -> str | None:
    """Return the wrapper if it is installed, else None."""
    if not wrapper:
        return None
    if shutil.which(wrapper) is None:
        logger.warning("Compiler wrapper '%s' not found; building without it", wrapper)
        return None
    return wrapper


def compose_build_env(
    arch: TargetArchitectureSchema,
    ctx: CompileContext,
    wrapper: str | None,
) -> dict[str, str]:
    """Environment overrides for one architecture build.

    Args:
        arch: Target architecture.
        ctx: Compile context.
        wrapper: Installed compiler wrapper, or None.

    Returns:
        Variables to overlay on the process environment.
    """
    env: dict[str, str] = {"CARGO_TARGET_DIR": str(ctx.target_dir)}

    if is_foreign(arch, ctx.host) and arch.linker:
        linker_flag = f"-C linker={arch.linker}"
        inherited = os.environ.get("RUSTFLAGS", "").strip()
        env["RUSTFLAGS"] = f"{inherited} {linker_flag}" if inherited else linker_flag

    # An empty RUSTC_WRAPPER disables an inherited wrapper
    env["RUSTC_WRAPPER"] = wrapper or ""
    if wrapper and ctx.wrapper_cache_dir is not None:
        if Path(wrapper).name == "sccache":
            env["SCCACHE_DIR"] = str(ctx.wrapper_cache_dir)

    return env


def prepare_target(arch: TargetArchitectureSchema, ctx: CompileContext) -> None:
    """Install the standard library for ``arch``.

    Raises:
        ToolchainError: If the toolchain manager fails.
    """
    cmd = [ctx.rustup_command, "target", "add", arch.triple]
    log_path = ctx.log_dir / f"prepare-{arch.platform_label}.log"
    try:
        result = ctx.runner.run(
            cmd, cwd=ctx.source_dir, log_path=log_path, timeout=ctx.timeout
        )
    except CommandExecutionError as e:
        raise ToolchainError(str(e), triple=arch.triple, log_path=str(log_path)) from e
    if not result.success:
        raise ToolchainError(
            f"Adding target {arch.triple} failed with exit code {result.exit_code}",
            triple=arch.triple,
            exit_code=result.exit_code,
            log_path=str(log_path),
        )


def build(
    plan: VariantPlan,
    arch: TargetArchitectureSchema,
    ctx: CompileContext,
) -> list[BuildArtifact]:
    """Compile one variant for one architecture.

    Args:
        plan: Resolved variant.
        arch: Target architecture.
        ctx: Compile context.

    Returns:
        One BuildArtifact per declared binary, pointing at the toolchain
        output location.

    Raises:
        ToolchainError: If the toolchain exits non-zero or cannot start.
    """
    output_dir = toolchain_output_dir(ctx.target_dir, arch)
    foreign = is_foreign(arch, ctx.host)
    linker = arch.linker if foreign else None

    cache_key: str | None = None
    if ctx.cache is not None and ctx.toolchain_version and ctx.source_commit:
        inputs = create_compile_inputs(
            plan, arch, ctx.toolchain_version, ctx.source_commit, linker=linker
        )
        cache_key = compute_cache_key(inputs)
        if ctx.cache.restore(cache_key, list(plan.binary_names), output_dir):
            return [
                BuildArtifact(
                    binary_name=name,
                    triple=arch.triple,
                    platform_label=arch.platform_label,
                    source_path=output_dir / name,
                    cache_hit=True,
                )
                for name in plan.binary_names
            ]

    cmd = compose_build_command(plan, arch, ctx.cargo_command)
    env = compose_build_env(arch, ctx, resolve_wrapper(ctx.compiler_wrapper))
    log_path = ctx.log_dir / f"compile-{arch.platform_label}.log"

    logger.info(
        "Compiling %s for %s (%s)",
        plan.name,
        arch.triple,
        f"foreign, linker {linker}" if linker else "native",
    )

    try:
        result = ctx.runner.run(
            cmd,
            cwd=ctx.source_dir,
            env=env,
            log_path=log_path,
            timeout=ctx.timeout,
        )
    except CommandExecutionError as e:
        raise ToolchainError(str(e), triple=arch.triple, log_path=str(log_path)) from e

    if not result.success:
        raise ToolchainError(
            f"Build of {plan.name} for {arch.triple} failed "
            f"with exit code {result.exit_code}",
            triple=arch.triple,
            exit_code=result.exit_code,
            log_path=str(log_path),
        )

    artifacts = [
        BuildArtifact(
            binary_name=name,
            triple=arch.triple,
            platform_label=arch.platform_label,
            source_path=output_dir / name,
        )
        for name in plan.binary_names
    ]

    if cache_key is not None and ctx.cache is not None:
        produced = {a.binary_name: a.source_path for a in artifacts}
        if all(path.is_file() for path in produced.values()):
            ctx.cache.store(
                cache_key,
                produced,
                metadata={"variant": plan.name, "triple": arch.triple},
            )

    return artifacts


def build_all(
    plan: VariantPlan,
    architectures: list[TargetArchitectureSchema],
    ctx: CompileContext,
) -> list[BuildArtifact]:
    """Compile a variant for every architecture.

    Target preparation runs first, one architecture at a time. The
    architecture builds then run concurrently; all of them are awaited even
    when one fails, so no toolchain process outlives the stage.

    Raises:
        ToolchainError: The first failure, in architecture order.
    """
    ctx.log_dir.mkdir(parents=True, exist_ok=True)

    if ctx.prepare_targets:
        for arch in architectures:
            prepare_target(arch, ctx)

    with ThreadPoolExecutor(
        max_workers=len(architectures),
        thread_name_prefix=f"compile-{plan.name}",
    ) as pool:
        futures = [pool.submit(build, plan, arch, ctx) for arch in architectures]

    artifacts: list[BuildArtifact] = []
    errors: list[ToolchainError] = []
    for future in futures:
        try:
            artifacts.extend(future.result())
        except ToolchainError as e:
            errors.append(e)

    if errors:
        for e in errors[1:]:
            logger.error("Additional build failure for %s: %s", plan.name, e)
        raise errors[0]

    return artifacts


__all__ = [
    "CompileContext",
    "build",
    "build_all",
    "compose_build_command",
    "compose_build_env",
    "host_cpu",
    "is_foreign",
    "normalize_cpu",
    "prepare_target",
    "resolve_wrapper",
    "toolchain_output_dir",
]
