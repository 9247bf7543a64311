"""Verification-metadata (vbmeta) rebuild.

This module handles the four-step rebuild for a variant:
1. Read algorithm and rollback index from the stock vbmeta image
2. Measure the stock boot, vendor_boot and dtbo sizes (partition sizes)
3. Add hash footers to the rebuilt images, signed with the local key
4. Make a new vbmeta image with verification disabled that includes the
   descriptors of the footered images

The descriptors are copied by avbtool from the footers themselves, so the
vbmeta image always describes the bytes actually on disk. Salts are derived
from the partition name so unchanged inputs and key give identical digests.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from kernel_repack.errors import MissingInputError
from kernel_repack.tools.avbtool import (
    FLAG_VERIFICATION_DISABLED,
    AvbTool,
    VbmetaInfo,
    key_bits_for_algorithm,
)
from kernel_repack.tools.runner import run_tool

logger = logging.getLogger(__name__)

SIGNED_PARTITIONS = ("boot", "vendor_boot", "dtbo")

PUBLIC_KEY_FILENAME = "avb_pkmd.bin"


@dataclass
class VbmetaRebuild:
    """Outcome of a vbmeta rebuild for one variant."""

    info: VbmetaInfo
    partition_sizes: dict[str, int]
    vbmeta_image: Path
    footered_images: list[Path] = field(default_factory=list)
    public_key: Path | None = None


def partition_salt(partition_name: str) -> str:
    """Return the fixed hash-footer salt for a partition."""
    return hashlib.sha256(f"kernel-repack/{partition_name}".encode()).hexdigest()


def reference_sizes(firmware_dir: Path) -> dict[str, int]:
    """Byte sizes of the stock images, used as partition sizes.

    Raises:
        MissingInputError: If a stock image is missing.
    """
    sizes: dict[str, int] = {}
    for name in SIGNED_PARTITIONS:
        stock = firmware_dir / f"{name}.img"
        if not stock.is_file():
            raise MissingInputError(f"Stock image not found: {stock}", path=str(stock))
        sizes[name] = stock.stat().st_size
    return sizes


def ensure_signing_key(key_path: Path, algorithm: str) -> Path | None:
    """Return the signing key, generating it only if it does not exist.

    An existing key is always reused; regenerating it would invalidate
    every image already signed with it.

    Args:
        key_path: PEM private key location.
        algorithm: AVB algorithm name; NONE needs no key.

    Returns:
        The key path, or None for the NONE algorithm.
    """
    bits = key_bits_for_algorithm(algorithm)
    if bits is None:
        return None
    if key_path.is_file():
        logger.info("Reusing signing key %s", key_path)
        return key_path

    key_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Generating %d-bit signing key at %s", bits, key_path)
    run_tool(["openssl", "genrsa", "-out", key_path, str(bits)])
    key_path.chmod(0o600)
    return key_path


@dataclass
class FooterResult:
    """Rebuilt images footered with the stock metadata and local key."""

    info: VbmetaInfo
    partition_sizes: dict[str, int]
    key: Path | None
    images: list[Path] = field(default_factory=list)


def add_footers(
    avbtool: AvbTool,
    firmware_dir: Path,
    variant_out: Path,
    key_path: Path,
) -> FooterResult:
    """Read the stock metadata and footer every rebuilt image in place.

    Args:
        avbtool: Verification tool.
        firmware_dir: Stock firmware directory of the variant.
        variant_out: Variant output directory with the rebuilt images.
        key_path: Signing key location (created if missing).

    Returns:
        FooterResult for ``make_vbmeta``.

    Raises:
        ToolOutputParseError: If the stock metadata cannot be parsed.
        ToolExecutionError: If avbtool or openssl fails.
        MissingInputError: If a stock or rebuilt image is missing.
    """
    images = [variant_out / f"{name}.img" for name in SIGNED_PARTITIONS]
    for image in images:
        if not image.is_file():
            raise MissingInputError(f"Rebuilt image not found: {image}", path=str(image))

    info = avbtool.info_image(firmware_dir / "vbmeta.img")
    logger.info(
        "Stock vbmeta: algorithm=%s rollback_index=%d",
        info.algorithm,
        info.rollback_index,
    )

    sizes = reference_sizes(firmware_dir)
    key = ensure_signing_key(key_path, info.algorithm)

    for name, image in zip(SIGNED_PARTITIONS, images):
        avbtool.add_hash_footer(
            image,
            partition_name=name,
            partition_size=sizes[name],
            algorithm=info.algorithm,
            key=key,
            salt=partition_salt(name),
        )

    return FooterResult(info=info, partition_sizes=sizes, key=key, images=images)


def make_vbmeta(
    avbtool: AvbTool,
    footers: FooterResult,
    variant_out: Path,
) -> VbmetaRebuild:
    """Create the vbmeta image describing the footered images.

    Raises:
        ToolExecutionError: If avbtool fails.
    """
    vbmeta_image = variant_out / "vbmeta.img"
    avbtool.make_vbmeta_image(
        vbmeta_image,
        algorithm=footers.info.algorithm,
        key=footers.key,
        rollback_index=footers.info.rollback_index,
        flags=FLAG_VERIFICATION_DISABLED,
        include_descriptors_from=footers.images,
    )

    public_key: Path | None = None
    if footers.key is not None:
        public_key = variant_out / PUBLIC_KEY_FILENAME
        avbtool.extract_public_key(footers.key, public_key)

    logger.info("Rebuilt %s", vbmeta_image)
    return VbmetaRebuild(
        info=footers.info,
        partition_sizes=footers.partition_sizes,
        vbmeta_image=vbmeta_image,
        footered_images=list(footers.images),
        public_key=public_key,
    )


def rebuild_vbmeta(
    avbtool: AvbTool,
    firmware_dir: Path,
    variant_out: Path,
    key_path: Path,
) -> VbmetaRebuild:
    """Footer the rebuilt images and create a matching vbmeta image."""
    footers = add_footers(avbtool, firmware_dir, variant_out, key_path)
    return make_vbmeta(avbtool, footers, variant_out)


__all__ = [
    "PUBLIC_KEY_FILENAME",
    "SIGNED_PARTITIONS",
    "FooterResult",
    "VbmetaRebuild",
    "add_footers",
    "ensure_signing_key",
    "make_vbmeta",
    "partition_salt",
    "rebuild_vbmeta",
    "reference_sizes",
]
