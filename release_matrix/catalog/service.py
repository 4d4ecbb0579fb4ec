"""Catalog lookup and variant resolution.

The mapping from a variant to its build command branch and image descriptor
is a plain data table: resolve_variant() reads it and never branches on the
variant name.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from release_matrix.catalog.io import load_catalog
from release_matrix.catalog.schema import (
    DEFAULT_ARCHITECTURES,
    CatalogSchema,
    ImageVariantSchema,
)
from release_matrix.errors import ConfigurationError

DEFAULT_CATALOG = CatalogSchema(
    variants=[
        ImageVariantSchema(
            name="cnosdb",
            description="Database server and command line client",
            build_packages=["main", "client"],
            binary_names=["cnosdb", "cnosdb-cli"],
            image_descriptor="docker/Dockerfile",
        ),
        ImageVariantSchema(
            name="cnosdb-meta",
            description="Metadata service",
            build_packages=["meta"],
            binary_names=["cnosdb-meta"],
            image_descriptor="docker/Dockerfile_meta",
        ),
    ],
    architectures=list(DEFAULT_ARCHITECTURES),
)


class VariantNotFoundError(Exception):
    """Raised when a variant is not in the catalog."""

    def __init__(self, name: str, code: str = "variant_not_found") -> None:
        super().__init__(f"Variant not found: {name}")
        self.name = name
        self.code = code


@dataclass(frozen=True)
class VariantPlan:
    """Resolved build inputs for one variant.

    Attributes:
        name: Variant name.
        build_packages: Packages passed to the toolchain.
        binary_names: Binaries expected from each architecture build.
        image_descriptor: Image recipe path relative to the source tree.
    """

    name: str
    build_packages: tuple[str, ...]
    binary_names: tuple[str, ...]
    image_descriptor: str


def get_catalog(path: Path | None = None) -> CatalogSchema:
    """Return the catalog at ``path``, or the built-in catalog."""
    if path is None:
        return DEFAULT_CATALOG
    return load_catalog(path)


def get_variant(catalog: CatalogSchema, name: str) -> ImageVariantSchema:
    """Look up a variant by name.

    Raises:
        VariantNotFoundError: If no variant has this name.
    """
    for variant in catalog.variants:
        if variant.name == name:
            return variant
    raise VariantNotFoundError(name)


def select_variants(
    catalog: CatalogSchema, names: list[str] | None = None
) -> list[ImageVariantSchema]:
    """Return the variants to run, preserving catalog order.

    Args:
        catalog: Catalog to select from.
        names: Optional subset of variant names; all variants if empty.

    Raises:
        VariantNotFoundError: If a requested name is not in the catalog.
    """
    if not names:
        return list(catalog.variants)
    for name in names:
        get_variant(catalog, name)
    wanted = set(names)
    return [v for v in catalog.variants if v.name in wanted]


def resolve_variant(variant: ImageVariantSchema) -> VariantPlan:
    """Resolve the build packages, binaries and descriptor of a variant.

    Args:
        variant: Catalog entry.

    Returns:
        VariantPlan with every mapping present.

    Raises:
        ConfigurationError: If any mapping is missing.
    """
    packages = variant.build_packages or []
    descriptor = variant.image_descriptor or ""

    missing: list[str] = []
    if not packages:
        missing.append("build_packages")
    if not variant.binary_names:
        missing.append("binary_names")
    if not descriptor:
        missing.append("image_descriptor")
    if missing:
        raise ConfigurationError(
            f"Variant '{variant.name}' has no {', '.join(missing)} mapping",
            variant=variant.name,
        )

    return VariantPlan(
        name=variant.name,
        build_packages=tuple(packages),
        binary_names=tuple(variant.binary_names),
        image_descriptor=descriptor,
    )


__all__ = [
    "DEFAULT_CATALOG",
    "VariantNotFoundError",
    "VariantPlan",
    "get_catalog",
    "get_variant",
    "resolve_variant",
    "select_variants",
]
