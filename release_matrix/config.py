"""Configuration settings for release_matrix.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

A few settings also accept the well-known variables used by CI runners
(RUSTC_WRAPPER, SCCACHE_GHA_ENABLED, DOCKERHUB_USERNAME, DOCKERHUB_TOKEN).
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_workspace_dir() -> Path:
    """Return the default per-run workspace directory."""
    return Path.cwd() / ".release-matrix" / "work"


def _default_cache_dir() -> Path:
    """Return the default compiler cache directory."""
    return Path.home() / ".cache" / "release-matrix"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RELEASE_MATRIX_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELEASE_MATRIX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Root of the source checkout being released",
    )
    workspace_dir: Path = Field(
        default_factory=_default_workspace_dir,
        description="Root directory for per-variant build contexts and logs",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Shared compiler cache namespace",
    )
    catalog_path: Path | None = Field(
        default=None,
        description="Catalog file (YAML/JSON); built-in catalog if not set",
    )

    # Registry
    registry_namespace: str = Field(
        default="cnosdb",
        description="Registry namespace images are pushed under",
    )
    registry: str | None = Field(
        default=None,
        description="Registry host for login (Docker Hub if not set)",
    )
    registry_username: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RELEASE_MATRIX_REGISTRY_USERNAME", "DOCKERHUB_USERNAME"
        ),
        description="Registry username",
    )
    registry_password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RELEASE_MATRIX_REGISTRY_PASSWORD", "DOCKERHUB_TOKEN"
        ),
        description="Registry token or password",
    )
    tag_prefix: str = Field(
        default="community-",
        description="Prefix prepended to the release tag",
    )

    # Gate
    expected_owner: str = Field(default="cnosdb")
    expected_repository: str = Field(default="cnosdb/cnosdb")
    expected_ref: str = Field(default="refs/heads/main")

    # Concurrency
    parallelism: Literal["process", "thread"] = Field(
        default="process",
        description="Scheduling of variant pipelines",
    )
    max_parallel_variants: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Maximum variants processed concurrently",
    )

    # Toolchain and backend
    cargo_command: str = Field(default="cargo")
    rustc_command: str = Field(default="rustc")
    rustup_command: str = Field(default="rustup")
    docker_command: str = Field(default="docker")
    buildx_builder: str | None = Field(
        default=None,
        description="Named buildx builder instance",
    )
    prepare_targets: bool = Field(
        default=False,
        description="Run `rustup target add` for every target before compiling",
    )
    compiler_cache_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "RELEASE_MATRIX_COMPILER_CACHE_ENABLED", "SCCACHE_GHA_ENABLED"
        ),
        description="Consult and populate the compiler cache",
    )
    compiler_wrapper: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RELEASE_MATRIX_COMPILER_WRAPPER", "RUSTC_WRAPPER"
        ),
        description="Compiler wrapper (e.g. sccache)",
    )

    push_images: bool = Field(
        default=True,
        description="Push images after building; false builds the manifest list only",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds); passed through to external tools
    build_timeout: int | None = Field(default=None, ge=1)
    publish_timeout: int | None = Field(default=None, ge=1)


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secrets are masked by pydantic's SecretStr serialization.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
