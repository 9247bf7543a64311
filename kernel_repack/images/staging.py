"""Staging directory lifecycle.

The image stages share one scratch directory. It is emptied and recreated
on entry to every stage so nothing leaks between variants or stages.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


def reset_dir(path: Path) -> Path:
    """Delete ``path`` if present and recreate it empty."""
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True)
    return path


@contextmanager
def staging_area(path: Path, keep: bool = False) -> Iterator[Path]:
    """Provide a freshly emptied staging directory.

    Args:
        path: Staging directory.
        keep: Leave the directory in place on exit (for debugging).

    Yields:
        The empty staging directory.
    """
    reset_dir(path)
    logger.debug("Staging directory ready: %s", path)
    try:
        yield path
    finally:
        if not keep:
            shutil.rmtree(path, ignore_errors=True)


__all__ = ["reset_dir", "staging_area"]
