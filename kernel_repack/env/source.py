"""Kernel source tree validation.

The source checkout must be on one of the permitted build branches; the
branch decides the kernel flavor embedded in the release string.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kernel_repack.errors import InvalidConfigurationError, MissingInputError
from kernel_repack.tools.runner import run_tool
from kernel_repack.types import Flavor

logger = logging.getLogger(__name__)

PERMITTED_BRANCHES: dict[str, Flavor] = {
    "oneui-ksu": Flavor(branch="oneui-ksu", name="OneUI", letter="O"),
    "aosp-ksu": Flavor(branch="aosp-ksu", name="AOSP", letter="A"),
}


def detect_branch(source_dir: Path) -> str:
    """Return the checked-out branch name of ``source_dir``.

    Raises:
        MissingInputError: If the source tree does not exist.
        ToolExecutionError: If git fails (e.g. not a checkout).
    """
    if not source_dir.is_dir():
        raise MissingInputError(
            f"Kernel source directory not found: {source_dir}", path=str(source_dir)
        )
    result = run_tool(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=source_dir)
    return result.stdout.strip()


def resolve_flavor(branch: str) -> Flavor:
    """Map a branch name to its flavor.

    Raises:
        InvalidConfigurationError: If the branch is not a build branch.
    """
    flavor = PERMITTED_BRANCHES.get(branch)
    if flavor is None:
        raise InvalidConfigurationError(
            f"Current branch '{branch}' is not a valid build branch "
            f"(expected one of: {', '.join(PERMITTED_BRANCHES)})",
            code="invalid_branch",
        )
    logger.info("%s branch detected", flavor.name)
    return flavor


__all__ = ["PERMITTED_BRANCHES", "detect_branch", "resolve_flavor"]
