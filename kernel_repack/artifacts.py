"""Artifact discovery and manifest generation.

This module handles:
- Discovering rebuilt images in a variant output directory
- Computing checksums
- Writing a per-variant build manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from kernel_repack.types import ArtifactInfo

logger = logging.getLogger(__name__)

# Partition images a variant output directory is expected to hold
IMAGE_KINDS = {
    "boot.img": "boot",
    "vendor_boot.img": "vendor_boot",
    "dtbo.img": "dtbo",
    "vbmeta.img": "vbmeta",
}

MANIFEST_FILENAME = "manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_artifacts(variant_out: Path) -> list[ArtifactInfo]:
    """Discover the rebuilt partition images of a variant.

    Args:
        variant_out: Variant output directory.

    Returns:
        ArtifactInfo for each image present, in a fixed order.
    """
    if not variant_out.exists():
        logger.warning("Variant output directory does not exist: %s", variant_out)
        return []

    artifacts: list[ArtifactInfo] = []
    for filename, kind in IMAGE_KINDS.items():
        path = variant_out / filename
        if not path.is_file():
            continue
        artifacts.append(
            ArtifactInfo(
                filename=filename,
                relative_path=path.relative_to(variant_out).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
                kind=kind,
            )
        )

    logger.debug("Discovered %d images in %s", len(artifacts), variant_out)
    return artifacts


def generate_manifest(
    artifacts: list[ArtifactInfo],
    variant: str,
    build_inputs: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a variant build manifest.

    Args:
        artifacts: Discovered images.
        variant: Variant name.
        build_inputs: Optional build parameters to record.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "variant": variant,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
    }
    if build_inputs:
        manifest["build_inputs"] = build_inputs

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
    }
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


def discover_and_manifest(
    variant_out: Path,
    variant: str,
    build_inputs: dict[str, Any] | None = None,
) -> tuple[list[ArtifactInfo], Path]:
    """Discover images and write ``manifest.json`` in one step."""
    artifacts = discover_artifacts(variant_out)
    manifest = generate_manifest(artifacts, variant, build_inputs=build_inputs)
    path = write_manifest(manifest, variant_out / MANIFEST_FILENAME)
    return artifacts, path


__all__ = [
    "HASH_CHUNK_SIZE",
    "IMAGE_KINDS",
    "MANIFEST_FILENAME",
    "compute_file_hash",
    "discover_and_manifest",
    "discover_artifacts",
    "generate_manifest",
    "write_manifest",
]
