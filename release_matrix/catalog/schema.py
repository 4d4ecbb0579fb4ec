"""Pydantic models for the target catalog.

This module defines the models for validating catalog data loaded from
YAML/JSON files and for exporting catalogs back to file formats.

Variant entries may omit their build packages or image descriptor; such
entries still load, and fail with a ConfigurationError when the variant is
built, so one bad entry never blocks the rest of the matrix.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")
PLATFORM_OS = "linux"


def _check_unique(values: list[str], what: str) -> list[str]:
    seen: set[str] = set()
    for v in values:
        if v in seen:
            raise ValueError(f"duplicate {what}: '{v}'")
        seen.add(v)
    return values


class TargetArchitectureSchema(BaseModel):
    """Schema for a cross-compilation target.

    Attributes:
        triple: Toolchain target triple (e.g. aarch64-unknown-linux-gnu).
        platform_label: Image platform architecture (e.g. arm64).
        linker: Linker used when this target is foreign to the build host.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    triple: str = Field(description="Toolchain target triple")
    platform_label: str = Field(description="Image platform architecture label")
    linker: str | None = Field(
        default=None, description="Cross linker for foreign builds"
    )

    @field_validator("triple")
    @classmethod
    def validate_triple(cls, v: str) -> str:
        """Validate the triple has at least arch-vendor-os parts."""
        if len(v.split("-")) < 3:
            raise ValueError(f"triple must look like arch-vendor-os, got '{v}'")
        return v

    @property
    def cpu(self) -> str:
        """CPU architecture component of the triple."""
        return self.triple.split("-", 1)[0]

    @property
    def platform(self) -> str:
        """Platform string understood by the image backend."""
        return f"{PLATFORM_OS}/{self.platform_label}"

    @property
    def output_dir(self) -> str:
        """Relative staging directory for this architecture."""
        return f"{PLATFORM_OS}/{self.platform_label}"


DEFAULT_ARCHITECTURES = [
    TargetArchitectureSchema(
        triple="x86_64-unknown-linux-gnu",
        platform_label="amd64",
    ),
    TargetArchitectureSchema(
        triple="aarch64-unknown-linux-gnu",
        platform_label="arm64",
        linker="aarch64-linux-gnu-gcc",
    ),
]


class ImageVariantSchema(BaseModel):
    """Schema for one buildable image variant.

    Attributes:
        name: Variant name, also the image repository name.
        description: Optional human-readable description.
        build_packages: Compilable units passed to the toolchain.
        binary_names: Binaries the build produces, in order.
        image_descriptor: Image recipe path relative to the source tree.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Variant name")
    description: str | None = Field(default=None)
    build_packages: list[str] | None = Field(default=None)
    binary_names: list[str] = Field(default_factory=list)
    image_descriptor: str | None = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is usable as an image repository name."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"name must be lowercase alphanumerics, '.', '_' or '-', got '{v}'"
            )
        return v

    @field_validator("build_packages")
    @classmethod
    def validate_build_packages(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return _check_unique(v, "build package")

    @field_validator("binary_names")
    @classmethod
    def validate_binary_names(cls, v: list[str]) -> list[str]:
        for name in v:
            if "/" in name or name in ("", ".", ".."):
                raise ValueError(f"invalid binary name: '{name}'")
        return _check_unique(v, "binary name")


class CatalogSchema(BaseModel):
    """Complete catalog: the variants and the architectures they target."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    variants: list[ImageVariantSchema] = Field(min_length=1)
    architectures: list[TargetArchitectureSchema] = Field(
        default_factory=lambda: list(DEFAULT_ARCHITECTURES),
        min_length=1,
    )

    @model_validator(mode="after")
    def validate_uniqueness(self) -> "CatalogSchema":
        """Validate variant names, triples and platform labels are unique."""
        _check_unique([v.name for v in self.variants], "variant name")
        _check_unique([a.triple for a in self.architectures], "triple")
        _check_unique(
            [a.platform_label for a in self.architectures], "platform label"
        )
        return self

    @property
    def platforms(self) -> list[str]:
        """Full platform set, in catalog order."""
        return [a.platform for a in self.architectures]


class CatalogImportResult(BaseModel):
    """Result of loading and validating a catalog file."""

    path: str
    success: bool
    variants: list[str] = Field(default_factory=list)
    error: str | None = None


__all__ = [
    "DEFAULT_ARCHITECTURES",
    "NAME_PATTERN",
    "CatalogImportResult",
    "CatalogSchema",
    "ImageVariantSchema",
    "TargetArchitectureSchema",
]
