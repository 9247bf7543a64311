"""Kernel Repack - build an Android kernel and splice it into stock firmware.

This package compiles the kernel for each device variant, repacks the stock
boot/vendor_boot/dtbo images around it, re-signs the verification metadata
and produces a systemless module package for the companion runtime fixes.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
