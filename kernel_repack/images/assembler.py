"""Partition image assembler.

This module handles:
- Stripping the verification footer from a stock image
- Unpacking it, replacing exactly the requested entries, repacking
- The boot, vendor_boot and dtbo wrappers used by the pipeline

Only the named entries change; every other entry of the stock image is
carried through verbatim by the repack tool. For vendor_boot only the first
header line (the ``name=<revision>`` field) is rewritten.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from kernel_repack.errors import ToolOutputParseError
from kernel_repack.images.staging import staging_area
from kernel_repack.tools.avbtool import AvbTool
from kernel_repack.tools.magiskboot import MagiskBoot

logger = logging.getLogger(__name__)

HEADER_ENTRY = "header"
HEADER_NAME_KEY = "name"


class ReplacementSlot(str, Enum):
    """Entry of an unpacked image that can be replaced."""

    KERNEL = "kernel"
    DTB = "dtb"
    HEADER_NAME = "header_name"


@dataclass(frozen=True)
class Replacement:
    """A single entry replacement.

    ``payload`` is a file for KERNEL/DTB and the new value for HEADER_NAME.
    """

    slot: ReplacementSlot
    payload: Path | str


def patch_header_first_line(text: str, key: str, value: str) -> str:
    """Replace the first header line with ``key=value``.

    All following lines are kept byte for byte.
    """
    _, _, rest = text.partition("\n")
    return f"{key}={value}\n{rest}"


def _apply(replacement: Replacement, stage: Path) -> None:
    if replacement.slot is ReplacementSlot.HEADER_NAME:
        header = stage / HEADER_ENTRY
        if not header.is_file():
            raise ToolOutputParseError(
                f"Unpacked image has no '{HEADER_ENTRY}' entry", field=HEADER_ENTRY
            )
        header.write_text(
            patch_header_first_line(
                header.read_text(), HEADER_NAME_KEY, str(replacement.payload)
            )
        )
        return

    entry = stage / replacement.slot.value
    if not entry.is_file():
        raise ToolOutputParseError(
            f"Unpacked image has no '{entry.name}' entry", field=entry.name
        )
    shutil.copyfile(Path(replacement.payload), entry)


def assemble(
    stock_image: Path,
    replacements: Sequence[Replacement],
    *,
    magiskboot: MagiskBoot,
    avbtool: AvbTool,
    staging_dir: Path,
    output: Path,
) -> Path:
    """Rebuild a stock image with some entries replaced.

    Args:
        stock_image: Stock partition image (left untouched).
        replacements: Entries to replace.
        magiskboot: Image unpack/repack tool.
        avbtool: Verification tool (used to strip the footer).
        staging_dir: Shared scratch directory, reset on entry.
        output: Destination of the rebuilt image.

    Returns:
        ``output``.

    Raises:
        ToolExecutionError: If any tool invocation fails.
        ToolOutputParseError: If a replaced entry does not exist.
    """
    dump_header = any(r.slot is ReplacementSlot.HEADER_NAME for r in replacements)

    with staging_area(staging_dir) as stage:
        work = stage / stock_image.name
        shutil.copyfile(stock_image, work)

        avbtool.erase_footer(work)
        magiskboot.unpack(work, cwd=stage, header_only=dump_header)

        for replacement in replacements:
            _apply(replacement, stage)

        new_image = stage / f"{stock_image.stem}_new{stock_image.suffix}"
        magiskboot.repack(work, new_image, cwd=stage)

        output.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(new_image), str(output))

    logger.info("Assembled %s", output)
    return output


def pack_boot(
    firmware_dir: Path,
    kernel_image: Path,
    variant_out: Path,
    *,
    magiskboot: MagiskBoot,
    avbtool: AvbTool,
    staging_dir: Path,
) -> Path:
    """Splice the new kernel into the stock boot image."""
    logger.info("Packing boot.img")
    return assemble(
        firmware_dir / "boot.img",
        [Replacement(ReplacementSlot.KERNEL, kernel_image)],
        magiskboot=magiskboot,
        avbtool=avbtool,
        staging_dir=staging_dir,
        output=variant_out / "boot.img",
    )


def pack_vendor_boot(
    firmware_dir: Path,
    dtb: Path,
    rp_revision: str,
    variant_out: Path,
    *,
    magiskboot: MagiskBoot,
    avbtool: AvbTool,
    staging_dir: Path,
) -> Path:
    """Write the RP revision and the new DTB into the stock vendor_boot."""
    logger.info("Packing vendor_boot.img (revision %s)", rp_revision)
    return assemble(
        firmware_dir / "vendor_boot.img",
        [
            Replacement(ReplacementSlot.HEADER_NAME, rp_revision),
            Replacement(ReplacementSlot.DTB, dtb),
        ],
        magiskboot=magiskboot,
        avbtool=avbtool,
        staging_dir=staging_dir,
        output=variant_out / "vendor_boot.img",
    )


def pack_dtbo(dtbo_image: Path, variant_out: Path) -> Path:
    """Copy the freshly built dtbo image into the variant output."""
    logger.info("Packing dtbo.img")
    output = variant_out / "dtbo.img"
    output.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(dtbo_image, output)
    return output


__all__ = [
    "Replacement",
    "ReplacementSlot",
    "assemble",
    "pack_boot",
    "pack_dtbo",
    "pack_vendor_boot",
    "patch_header_first_line",
]
