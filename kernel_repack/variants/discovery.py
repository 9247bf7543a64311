"""Firmware variant discovery.

Every immediate subdirectory of the firmware root is one variant. A variant
is accepted only if all required stock images are present (checked first)
and its name is in the catalog. A rejected variant never aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from kernel_repack.errors import MissingInputError
from kernel_repack.types import SkipReason
from kernel_repack.variants.catalog import Catalog, VariantConfig

logger = logging.getLogger(__name__)

REQUIRED_IMAGES = ("boot.img", "vbmeta.img", "dtbo.img", "vendor_boot.img")


@dataclass
class VariantCheck:
    """Outcome of validating one firmware directory."""

    name: str
    firmware_dir: Path
    config: VariantConfig | None = None
    skip_reason: SkipReason | None = None
    message: str | None = None
    missing: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.skip_reason is None and self.config is not None


def missing_images(firmware_dir: Path) -> list[str]:
    """Return the required images absent from ``firmware_dir``."""
    return [name for name in REQUIRED_IMAGES if not (firmware_dir / name).is_file()]


def check_variant(firmware_dir: Path, catalog: Catalog) -> VariantCheck:
    """Validate a single firmware directory."""
    name = firmware_dir.name
    missing = missing_images(firmware_dir)
    if missing:
        return VariantCheck(
            name=name,
            firmware_dir=firmware_dir,
            skip_reason=SkipReason.MISSING_FILES,
            message=f"Missing '{missing[0]}' in '{firmware_dir}'",
            missing=missing,
        )

    config = catalog.get(name)
    if config is None:
        return VariantCheck(
            name=name,
            firmware_dir=firmware_dir,
            skip_reason=SkipReason.UNKNOWN_VARIANT,
            message=f"No specific configuration found for '{name}'",
        )

    return VariantCheck(name=name, firmware_dir=firmware_dir, config=config)


def discover_variants(firmware_root: Path, catalog: Catalog) -> list[VariantCheck]:
    """Enumerate and validate variant directories.

    Args:
        firmware_root: Directory with one subdirectory per variant.
        catalog: Known variant configurations.

    Returns:
        One VariantCheck per subdirectory, sorted by name.

    Raises:
        MissingInputError: If the firmware root is missing or empty.
    """
    if not firmware_root.is_dir() or not any(firmware_root.iterdir()):
        raise MissingInputError(
            f"'{firmware_root}' does not exist or is empty. Create one "
            "subdirectory per variant (e.g. firmware/a52sxqxx) holding "
            f"{', '.join(REQUIRED_IMAGES)}.",
            path=str(firmware_root),
        )

    checks: list[VariantCheck] = []
    for path in sorted(firmware_root.iterdir()):
        if not path.is_dir():
            continue
        check = check_variant(path, catalog)
        if check.accepted:
            logger.debug("Variant %s accepted", check.name)
        else:
            logger.debug("Variant %s rejected: %s", check.name, check.message)
        checks.append(check)

    return checks


__all__ = [
    "REQUIRED_IMAGES",
    "VariantCheck",
    "check_variant",
    "discover_variants",
    "missing_images",
]
