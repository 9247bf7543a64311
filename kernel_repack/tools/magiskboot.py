"""Adapter for the boot image unpack/repack tool.

magiskboot works on the current directory: ``unpack`` explodes an image
into entry files (kernel, ramdisk.cpio, dtb, header, ...) and ``repack``
rebuilds a new image from the original plus whatever entries are present.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kernel_repack.tools.runner import ToolResult, run_tool

logger = logging.getLogger(__name__)


class MagiskBoot:
    """Thin wrapper over the magiskboot binary."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def unpack(self, image: Path, cwd: Path, header_only: bool = False) -> ToolResult:
        """Unpack ``image`` into ``cwd``.

        With ``header_only`` the header is dumped to a ``header`` text file
        that can be edited and is picked up again by ``repack``.
        """
        cmd: list[str | Path] = [self.path, "unpack"]
        if header_only:
            cmd.append("-h")
        cmd.append(image)
        logger.debug("Unpacking %s (header_only=%s)", image.name, header_only)
        return run_tool(cmd, cwd=cwd)

    def repack(self, original: Path, new_image: Path, cwd: Path) -> ToolResult:
        """Repack the entries in ``cwd`` using ``original`` as template."""
        logger.debug("Repacking %s -> %s", original.name, new_image.name)
        return run_tool([self.path, "repack", original, new_image], cwd=cwd)


__all__ = ["MagiskBoot"]
