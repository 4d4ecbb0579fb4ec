"""Target catalog module.

This module handles:
- Catalog schema validation (variants and target architectures)
- Catalog import/export from YAML/JSON
- The built-in catalog and variant resolution
"""

from release_matrix.catalog.schema import (
    CatalogSchema,
    ImageVariantSchema,
    TargetArchitectureSchema,
)

__all__ = ["CatalogSchema", "ImageVariantSchema", "TargetArchitectureSchema"]
