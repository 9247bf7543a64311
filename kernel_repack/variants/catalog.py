"""Variant catalog.

Each known variant maps to the vendor defconfig it is compiled with and the
RP (rollback protection) revision written into the vendor_boot header.
Unknown variants are never defaulted to another entry.

Catalog file format (YAML)::

    variants:
      a52sxqxx:
        defconfig: a52sxq_eur_open_defconfig
        rp_revision: SRPUE26A001
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kernel_repack.errors import InvalidConfigurationError

VARIANT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")


class VariantConfig(BaseModel):
    """Build configuration of one device variant.

    Attributes:
        name: Variant identifier (firmware directory name).
        defconfig: Vendor defconfig name under arch/arm64/configs/vendor.
        rp_revision: Revision string written to the vendor_boot header.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Variant identifier")
    defconfig: str = Field(description="Vendor defconfig name")
    rp_revision: str = Field(description="vendor_boot header revision")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the variant name is a plain directory name."""
        if not VARIANT_NAME_PATTERN.match(v):
            raise ValueError(f"invalid variant name '{v}'")
        return v

    @field_validator("defconfig")
    @classmethod
    def validate_defconfig(cls, v: str) -> str:
        """Validate defconfig looks like a defconfig file name."""
        if not v.endswith("_defconfig") or "/" in v:
            raise ValueError(f"defconfig must be a '*_defconfig' name, got '{v}'")
        return v


Catalog = dict[str, VariantConfig]

DEFAULT_CATALOG: Catalog = {
    v.name: v
    for v in (
        VariantConfig(
            name="a52sxqxx",
            defconfig="a52sxq_eur_open_defconfig",
            rp_revision="SRPUE26A001",
        ),
        VariantConfig(
            name="a52sxqks",
            defconfig="a52sxq_kor_single_defconfig",
            rp_revision="SRPUF22A001",
        ),
        VariantConfig(
            name="a52sxqzt",
            defconfig="a52sxq_chn_tw_defconfig",
            rp_revision="SRPUE26A001",
        ),
    )
}


def parse_catalog(data: dict) -> Catalog:
    """Validate catalog data loaded from a file.

    Raises:
        InvalidConfigurationError: If the data is not a valid catalog.
    """
    variants = data.get("variants")
    if not isinstance(variants, dict) or not variants:
        raise InvalidConfigurationError(
            "Variant catalog must contain a non-empty 'variants' mapping",
            code="invalid_catalog",
        )

    catalog: Catalog = {}
    for name, entry in variants.items():
        if not isinstance(entry, dict):
            raise InvalidConfigurationError(
                f"Variant '{name}' must be a mapping", code="invalid_catalog"
            )
        try:
            catalog[str(name)] = VariantConfig(name=str(name), **entry)
        except ValidationError as e:
            raise InvalidConfigurationError(
                f"Invalid catalog entry '{name}': {e}", code="invalid_catalog"
            ) from e
    return catalog


def load_catalog(path: Path | None = None) -> Catalog:
    """Load a variant catalog.

    Args:
        path: YAML catalog file, or None for the built-in table.

    Returns:
        Mapping of variant name to VariantConfig.

    Raises:
        InvalidConfigurationError: If the file is missing or invalid.
    """
    if path is None:
        return dict(DEFAULT_CATALOG)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise InvalidConfigurationError(
            f"Variant catalog not found: {path}", code="invalid_catalog"
        ) from e
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(
            f"Variant catalog is not valid YAML: {e}", code="invalid_catalog"
        ) from e

    if not isinstance(data, dict):
        raise InvalidConfigurationError(
            f"Expected a YAML mapping in {path}", code="invalid_catalog"
        )
    return parse_catalog(data)


__all__ = ["DEFAULT_CATALOG", "Catalog", "VariantConfig", "load_catalog", "parse_catalog"]
