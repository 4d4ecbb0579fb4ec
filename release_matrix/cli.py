"""Thin CLI wrapper for release_matrix.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from release_matrix import __version__
from release_matrix.catalog.schema import CatalogSchema
from release_matrix.catalog.service import get_catalog
from release_matrix.config import Settings, get_settings, print_settings_json
from release_matrix.gate import Invocation, invocation_from_env

app = typer.Typer(
    name="release-matrix",
    help="Release matrix - cross-compile, stage and publish multi-arch images",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"release-matrix version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through rich at ``level``."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Release matrix - cross-compile, stage and publish multi-arch images."""


def _load_settings(
    source_dir: Path | None = None,
    workspace_dir: Path | None = None,
    catalog_path: Path | None = None,
) -> Settings:
    settings = get_settings()
    updates: dict[str, object] = {}
    if source_dir is not None:
        updates["source_dir"] = source_dir
    if workspace_dir is not None:
        updates["workspace_dir"] = workspace_dir
    if catalog_path is not None:
        updates["catalog_path"] = catalog_path
    if updates:
        settings = settings.model_copy(update=updates)
    return settings


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
        return

    catalog_display = (
        str(settings.catalog_path) if settings.catalog_path else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Workspace directory: {settings.workspace_dir}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Catalog:             {catalog_display}")
    console.print()
    console.print("[bold]Registry:[/bold]")
    console.print(f"  Namespace:           {settings.registry_namespace}")
    console.print(f"  Registry:            {settings.registry or '(default)'}")
    console.print(f"  Username:            {settings.registry_username or '(unset)'}")
    console.print(f"  Tag prefix:          {settings.tag_prefix}")
    console.print(f"  Push images:         {settings.push_images}")
    console.print()
    console.print("[bold]Gate:[/bold]")
    console.print(f"  Owner:               {settings.expected_owner}")
    console.print(f"  Repository:          {settings.expected_repository}")
    console.print(f"  Ref:                 {settings.expected_ref}")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  Compiler cache:      {settings.compiler_cache_enabled}")
    console.print(f"  Compiler wrapper:    {settings.compiler_wrapper or '(none)'}")
    console.print(f"  Prepare targets:     {settings.prepare_targets}")
    console.print(f"  Buildx builder:      {settings.buildx_builder or '(default)'}")
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Parallelism:         {settings.parallelism}")
    console.print(f"  Max variants:        {settings.max_parallel_variants}")
    console.print(f"  Log level:           {settings.log_level}")


TagOption = Annotated[
    str,
    typer.Option("--tag", "-t", help="Release tag (image tag suffix)"),
]
CommitOption = Annotated[
    str | None,
    typer.Option("--commit", help="Source commit (default: $GITHUB_SHA)"),
]
RepositoryOption = Annotated[
    str | None,
    typer.Option("--repository", help="owner/repo (default: $GITHUB_REPOSITORY)"),
]
RefOption = Annotated[
    str | None,
    typer.Option("--ref", help="Source branch ref (default: $GITHUB_REF)"),
]
OwnerOption = Annotated[
    str | None,
    typer.Option("--owner", help="Repository owner (default: $GITHUB_REPOSITORY_OWNER)"),
]
VariantOption = Annotated[
    list[str] | None,
    typer.Option("--variant", "-v", help="Limit to variant(s) (can be repeated)"),
]
CatalogOption = Annotated[
    Path | None,
    typer.Option("--catalog", "-c", help="Catalog file (YAML/JSON)"),
]
SourceOption = Annotated[
    Path | None,
    typer.Option("--source-dir", help="Source checkout to build"),
]
WorkspaceOption = Annotated[
    Path | None,
    typer.Option("--workspace", help="Workspace for build contexts and logs"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def _invocation(
    tag: str,
    commit: str | None,
    repository: str | None,
    ref: str | None,
    owner: str | None,
) -> Invocation:
    try:
        return invocation_from_env(
            tag,
            source_commit=commit,
            project_identity=repository,
            source_branch=ref,
            repository_owner=owner,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid invocation: {escape(str(e))}[/red]")
        raise typer.Exit(code=2) from None


def _catalog(settings: Settings) -> CatalogSchema:
    try:
        return get_catalog(settings.catalog_path)
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid catalog: {escape(str(e))}[/red]")
        raise typer.Exit(code=2) from None


@app.command()
def run(
    tag: TagOption,
    commit: CommitOption = None,
    repository: RepositoryOption = None,
    ref: RefOption = None,
    owner: OwnerOption = None,
    variants: VariantOption = None,
    catalog_path: CatalogOption = None,
    source_dir: SourceOption = None,
    workspace: WorkspaceOption = None,
    skip_login: Annotated[
        bool,
        typer.Option("--skip-login", help="Reuse an existing registry login"),
    ] = False,
    no_push: Annotated[
        bool,
        typer.Option("--no-push", help="Build images without pushing them"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Build and publish every variant for a release tag.

    Exits 0 when every variant succeeded or the release gate skipped the
    run, and 1 when any variant failed.
    """
    from release_matrix.catalog.service import VariantNotFoundError
    from release_matrix.errors import AuthenticationError, GateDenied
    from release_matrix.orchestrator import run_release

    settings = _load_settings(source_dir, workspace, catalog_path)
    configure_logging(settings.log_level)
    if no_push:
        settings = settings.model_copy(update={"push_images": False})
    invocation = _invocation(tag, commit, repository, ref, owner)
    catalog = _catalog(settings)

    try:
        report = run_release(
            catalog,
            invocation,
            settings,
            variants=variants,
            skip_login=skip_login,
        )
    except GateDenied as e:
        if json_output:
            console.print_json(data={"skipped": True, "reason": e.reason})
        else:
            console.print(f"[yellow]Release skipped: {e.reason}[/yellow]")
        return
    except AuthenticationError as e:
        console.print(f"[red]Registry login failed: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    except VariantNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2) from None

    if json_output:
        console.print_json(report.model_dump_json())
    else:
        console.print()
        console.print(f"[bold]Release {report.tag} ({report.source_commit}):[/bold]")
        for name, outcome in report.outcomes.items():
            if outcome.success:
                console.print(f"  [green]✓ {name}[/green] -> {outcome.image_tag}")
                for a in outcome.artifacts:
                    hit = " (cache hit)" if a["cache_hit"] else ""
                    console.print(f"      {a['path']}{hit}")
            else:
                console.print(f"  [red]✗ {name}[/red] ({outcome.state.value})")
                if outcome.error_message:
                    console.print(f"      Error: {escape(outcome.error_message)}")
                if outcome.log_path:
                    console.print(f"      Log: {outcome.log_path}")

    if not report.success:
        raise typer.Exit(code=1)


@app.command()
def plan(
    tag: TagOption,
    commit: CommitOption = None,
    repository: RepositoryOption = None,
    ref: RefOption = None,
    owner: OwnerOption = None,
    variants: VariantOption = None,
    catalog_path: CatalogOption = None,
    source_dir: SourceOption = None,
    workspace: WorkspaceOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the commands a release would run, without running them."""
    import shlex

    from release_matrix.catalog.service import VariantNotFoundError
    from release_matrix.gate import GatePolicy, authorize
    from release_matrix.orchestrator import plan_release

    settings = _load_settings(source_dir, workspace, catalog_path)
    invocation = _invocation(tag, commit, repository, ref, owner)
    catalog = _catalog(settings)
    decision = authorize(invocation, GatePolicy.from_settings(settings))

    try:
        planned = plan_release(catalog, invocation, settings, variants=variants)
    except VariantNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2) from None

    if json_output:
        output = {
            "gate": {"proceed": decision.proceed, "reason": decision.reason},
            "variants": planned,
        }
        console.print_json(data=output)
        return

    gate_style = "green" if decision.proceed else "yellow"
    console.print(f"[{gate_style}]Gate: {decision.reason}[/{gate_style}]")
    for entry in planned:
        console.print()
        console.print(f"[bold]{entry['variant']}[/bold]")
        if "error" in entry:
            console.print(f"  [red]{entry['error']}[/red]")
            continue
        for c in entry["compile"]:
            note = f" (linker {c['linker']})" if c["linker"] else ""
            console.print(f"  compile{note}: {shlex.join(c['command'])}")
        for path in entry["staged"]:
            console.print(f"  stage: {path}")
        console.print(f"  publish: {shlex.join(entry['publish'])}")


catalog_app = typer.Typer(help="Inspect the target catalog")
app.add_typer(catalog_app, name="catalog")


@catalog_app.command("list")
def catalog_list(
    catalog_path: CatalogOption = None,
    json_output: JsonOption = False,
) -> None:
    """List variants and target architectures."""
    settings = _load_settings(catalog_path=catalog_path)
    catalog = _catalog(settings)

    if json_output:
        console.print_json(data=catalog.model_dump(mode="json", exclude_none=True))
        return

    console.print(f"[bold]Found {len(catalog.variants)} variant(s):[/bold]")
    console.print()
    for v in catalog.variants:
        console.print(f"  [green]{v.name}[/green]")
        if v.description:
            console.print(f"    Description: {v.description}")
        console.print(f"    Packages: {', '.join(v.build_packages or []) or '(none)'}")
        console.print(f"    Binaries: {', '.join(v.binary_names) or '(none)'}")
        console.print(f"    Descriptor: {v.image_descriptor or '(none)'}")
        console.print()
    console.print("[bold]Architectures:[/bold]")
    for a in catalog.architectures:
        linker = f" (foreign linker {a.linker})" if a.linker else ""
        console.print(f"  {a.platform}: {a.triple}{linker}")


@catalog_app.command("show")
def catalog_show(
    name: Annotated[str, typer.Argument(help="Variant name")],
    catalog_path: CatalogOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show one variant."""
    from release_matrix.catalog.service import VariantNotFoundError, get_variant

    settings = _load_settings(catalog_path=catalog_path)
    catalog = _catalog(settings)
    try:
        variant = get_variant(catalog, name)
    except VariantNotFoundError:
        console.print(f"[red]Variant not found: {name}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(variant.model_dump_json(exclude_none=True))
        return

    console.print(f"[bold]{variant.name}[/bold]")
    console.print(f"  Packages: {', '.join(variant.build_packages or []) or '(none)'}")
    console.print(f"  Binaries: {', '.join(variant.binary_names) or '(none)'}")
    console.print(f"  Descriptor: {variant.image_descriptor or '(none)'}")


@catalog_app.command("validate")
def catalog_validate(
    path: Annotated[Path, typer.Argument(help="Catalog file to validate")],
    json_output: JsonOption = False,
) -> None:
    """Validate a catalog file and check every variant resolves."""
    from release_matrix.catalog.io import load_catalog, validate_catalog_file
    from release_matrix.catalog.service import resolve_variant
    from release_matrix.errors import ConfigurationError

    result = validate_catalog_file(path)
    problems: list[str] = []
    if result.success:
        for variant in load_catalog(path).variants:
            try:
                resolve_variant(variant)
            except ConfigurationError as e:
                problems.append(str(e))

    if json_output:
        output = result.model_dump(mode="json")
        output["problems"] = problems
        console.print_json(data=output)
    elif not result.success:
        console.print(f"[red]✗ {path}: {escape(result.error or '')}[/red]")
    else:
        console.print(f"[green]✓ {path}: {len(result.variants)} variant(s)[/green]")
        for problem in problems:
            console.print(f"  [yellow]! {problem}[/yellow]")

    if not result.success or problems:
        raise typer.Exit(code=1)


@catalog_app.command("export")
def catalog_export(
    output: Annotated[Path, typer.Argument(help="Output file (.yaml or .json)")],
    catalog_path: CatalogOption = None,
) -> None:
    """Export the effective catalog to a file."""
    from release_matrix.catalog.io import export_catalog_json, export_catalog_yaml

    settings = _load_settings(catalog_path=catalog_path)
    catalog = _catalog(settings)
    if output.suffix.lower() == ".json":
        export_catalog_json(catalog, output)
    else:
        export_catalog_yaml(catalog, output)
    console.print(f"[green]Exported catalog to {output}[/green]")


if __name__ == "__main__":
    app()
