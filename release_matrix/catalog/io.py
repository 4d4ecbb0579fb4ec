"""Catalog import/export functionality.

This module provides helpers for loading catalogs from YAML/JSON files
and exporting catalogs to file formats.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from release_matrix.catalog.schema import CatalogImportResult, CatalogSchema


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_catalog(path: Path) -> CatalogSchema:
    """Load and validate a catalog file.

    The format is chosen from the file extension (.json, else YAML).

    Args:
        path: Path to the catalog file.

    Returns:
        Validated CatalogSchema.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If data does not match the schema.
    """
    if path.suffix.lower() == ".json":
        data = load_json(path)
    else:
        data = load_yaml(path)
    return CatalogSchema.model_validate(data)


def validate_catalog_file(path: Path) -> CatalogImportResult:
    """Validate a catalog file without raising.

    Args:
        path: Path to the catalog file.

    Returns:
        CatalogImportResult describing success or the first error.
    """
    try:
        catalog = load_catalog(path)
    except FileNotFoundError:
        return CatalogImportResult(
            path=str(path), success=False, error=f"File not found: {path}"
        )
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        return CatalogImportResult(path=str(path), success=False, error=str(e))

    return CatalogImportResult(
        path=str(path),
        success=True,
        variants=[v.name for v in catalog.variants],
    )


def catalog_to_dict(catalog: CatalogSchema) -> dict[str, Any]:
    """Convert a catalog to a plain dict suitable for export."""
    return catalog.model_dump(exclude_none=True)


def export_catalog_yaml(catalog: CatalogSchema, path: Path) -> Path:
    """Write a catalog as YAML.

    Args:
        catalog: Catalog to export.
        path: Output path.

    Returns:
        The written path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(catalog_to_dict(catalog), f, sort_keys=False)
    return path


def export_catalog_json(catalog: CatalogSchema, path: Path) -> Path:
    """Write a catalog as JSON.

    Args:
        catalog: Catalog to export.
        path: Output path.

    Returns:
        The written path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(catalog_to_dict(catalog), f, indent=2)
    return path


__all__ = [
    "catalog_to_dict",
    "export_catalog_json",
    "export_catalog_yaml",
    "load_catalog",
    "load_json",
    "load_yaml",
    "validate_catalog_file",
]
