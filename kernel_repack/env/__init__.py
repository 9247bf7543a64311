"""Environment preparation: toolchain resolution and source tree checks."""

from kernel_repack.env.source import PERMITTED_BRANCHES, detect_branch, resolve_flavor
from kernel_repack.env.toolchain import resolve_toolchain

__all__ = ["PERMITTED_BRANCHES", "detect_branch", "resolve_flavor", "resolve_toolchain"]
