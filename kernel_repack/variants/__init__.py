"""Variant catalog and firmware discovery.

This module handles:
- The catalog of known variants (defconfig and RP revision per variant)
- Enumerating firmware directories and validating their stock images
"""

from kernel_repack.variants.catalog import DEFAULT_CATALOG, VariantConfig, load_catalog
from kernel_repack.variants.discovery import (
    REQUIRED_IMAGES,
    VariantCheck,
    discover_variants,
)

__all__ = [
    "DEFAULT_CATALOG",
    "REQUIRED_IMAGES",
    "VariantCheck",
    "VariantConfig",
    "discover_variants",
    "load_catalog",
]
