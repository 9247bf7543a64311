"""Shared type definitions for kernel_repack.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports, including the immutable BuildConfig that every
pipeline stage receives explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kernel_repack.config import Settings


class VariantState(str, Enum):
    """Progress of one variant through the pipeline."""

    DISCOVERED = "discovered"
    VALIDATED = "validated"
    BUILT = "built"
    ASSEMBLED = "assembled"
    FOOTERED = "footered"
    METADATA_REBUILT = "metadata_rebuilt"
    PACKAGED = "packaged"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    """Why a discovered variant was not processed."""

    MISSING_FILES = "missing_files"
    UNKNOWN_VARIANT = "unknown_variant"


class BatchMode(str, Enum):
    """How the pipeline reacts to a fatal error in one variant."""

    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


@dataclass(frozen=True)
class Flavor:
    """Kernel flavor derived from the source tree branch."""

    branch: str
    name: str
    letter: str


@dataclass(frozen=True)
class BuildConfig:
    """Immutable build parameters threaded through every stage.

    Attributes:
        work_dir: Root working directory.
        source_dir: Kernel source checkout.
        firmware_dir: Stock firmware root.
        output_dir: Output root (one subdirectory per variant).
        toolchain_dir: Resolved clang toolchain root.
        avbtool_path: Path to avbtool.
        magiskboot_path: Path to magiskboot.
        jobs: Parallel make jobs.
        clean: Delete prior compiler output before building.
        use_ccache: Compile through ccache.
        android_codename: Android release letter for LOCALVERSION.
        release_version: Release tag for LOCALVERSION.
        dtb_relpath: DTB path relative to the kernel output tree.
        flavor: Flavor detected from the source branch.
        build_timeout: Timeout per make invocation in seconds.
    """

    work_dir: Path
    source_dir: Path
    firmware_dir: Path
    output_dir: Path
    toolchain_dir: Path
    avbtool_path: Path
    magiskboot_path: Path
    jobs: int = 1
    clean: bool = False
    use_ccache: bool = True
    android_codename: str = "U"
    release_version: str = "custom"
    dtb_relpath: str = "arch/arm64/boot/dts/vendor/qcom/yupik.dtb"
    flavor: Flavor | None = None
    build_timeout: int | None = None

    @property
    def kernel_out_dir(self) -> Path:
        """Kernel build output tree (make O=...)."""
        return self.source_dir / "out"

    @property
    def staging_dir(self) -> Path:
        """Scratch directory shared by the image stages."""
        return self.output_dir / ".staging"

    @property
    def signing_key_path(self) -> Path:
        """Private key persisted across runs."""
        return self.output_dir / "avb_key.pem"

    def variant_output_dir(self, variant: str) -> Path:
        """Return the output directory for a variant."""
        return self.output_dir / variant

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        toolchain_dir: Path | None = None,
        flavor: Flavor | None = None,
        clean: bool = False,
        jobs: int | None = None,
    ) -> BuildConfig:
        """Build a config from settings plus CLI overrides."""
        return cls(
            work_dir=settings.work_dir,
            source_dir=settings.source_dir,
            firmware_dir=settings.firmware_dir,
            output_dir=settings.output_dir,
            toolchain_dir=toolchain_dir or settings.clang_dir,
            avbtool_path=settings.avbtool_path,
            magiskboot_path=settings.magiskboot_path,
            jobs=jobs or settings.jobs,
            clean=clean,
            use_ccache=settings.use_ccache,
            android_codename=settings.android_codename,
            release_version=settings.release_version,
            dtb_relpath=settings.dtb_relpath,
            flavor=flavor,
            build_timeout=settings.build_timeout,
        )


@dataclass
class ArtifactInfo:
    """Information about a rebuilt image."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None


__all__ = [
    "ArtifactInfo",
    "BatchMode",
    "BuildConfig",
    "Flavor",
    "SkipReason",
    "VariantState",
]
