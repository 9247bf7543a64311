"""Adapters for the external tools the pipeline drives.

This module handles:
- Generic subprocess execution and dependency checks (runner)
- The boot image unpack/repack tool (magiskboot)
- The verification-metadata tool (avbtool)
"""

from kernel_repack.tools.avbtool import AvbTool, VbmetaInfo
from kernel_repack.tools.magiskboot import MagiskBoot

__all__ = ["AvbTool", "MagiskBoot", "VbmetaInfo"]
