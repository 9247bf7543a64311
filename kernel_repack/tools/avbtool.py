"""Adapter for the verification-metadata tool (avbtool).

This module handles:
- Invoking avbtool subcommands with typed arguments
- Parsing the human-readable ``info_image`` output into a VbmetaInfo

All knowledge of avbtool's text output format is kept in
``parse_info_image`` so a structured-output mode can replace it later.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from kernel_repack.errors import ToolOutputParseError
from kernel_repack.tools.runner import ToolResult, run_tool

logger = logging.getLogger(__name__)

# First match wins; "Rollback Index Location:" must not match the index field
RE_ALGORITHM = re.compile(r"^\s*Algorithm:\s*(\S+)\s*$", re.MULTILINE)
RE_ROLLBACK_INDEX = re.compile(r"^\s*Rollback Index:\s*(\S+)\s*$", re.MULTILINE)
RE_RSA_BITS = re.compile(r"_RSA(\d+)$")

# AVB_VBMETA_IMAGE_FLAGS_VERIFICATION_DISABLED
FLAG_VERIFICATION_DISABLED = 2


@dataclass(frozen=True)
class VbmetaInfo:
    """Metadata extracted from a vbmeta image."""

    algorithm: str
    rollback_index: int


def parse_info_image(text: str) -> VbmetaInfo:
    """Parse ``avbtool info_image`` output.

    Args:
        text: Standard output of ``avbtool info_image``.

    Returns:
        VbmetaInfo with the signing algorithm and rollback index.

    Raises:
        ToolOutputParseError: If either field is absent or not parseable.
    """
    algo_match = RE_ALGORITHM.search(text)
    if not algo_match:
        raise ToolOutputParseError(
            "Could not find 'Algorithm:' in avbtool info_image output",
            field="algorithm",
        )

    rb_match = RE_ROLLBACK_INDEX.search(text)
    if not rb_match:
        raise ToolOutputParseError(
            "Could not find 'Rollback Index:' in avbtool info_image output",
            field="rollback_index",
        )
    try:
        rollback_index = int(rb_match.group(1))
    except ValueError as e:
        raise ToolOutputParseError(
            f"Invalid rollback index: {rb_match.group(1)!r}",
            field="rollback_index",
        ) from e

    return VbmetaInfo(algorithm=algo_match.group(1), rollback_index=rollback_index)


def key_bits_for_algorithm(algorithm: str) -> int | None:
    """Return the RSA key size an algorithm needs, or None for NONE.

    Raises:
        ToolOutputParseError: If the algorithm name is not recognized.
    """
    if algorithm.upper() == "NONE":
        return None
    match = RE_RSA_BITS.search(algorithm.upper())
    if not match:
        raise ToolOutputParseError(
            f"Unsupported signing algorithm: {algorithm}", field="algorithm"
        )
    return int(match.group(1))


class AvbTool:
    """Typed wrapper over avbtool.

    A ``.py`` path is run with the current Python interpreter.
    """

    def __init__(self, path: Path, python: str = sys.executable) -> None:
        self.path = path
        self.python = python

    def _command(self, *args: str | Path) -> list[str | Path]:
        if self.path.suffix == ".py":
            return [self.python, self.path, *args]
        return [self.path, *args]

    @staticmethod
    def _key_args(algorithm: str, key: Path | None) -> list[str | Path]:
        args: list[str | Path] = ["--algorithm", algorithm]
        if key is not None and algorithm.upper() != "NONE":
            args.extend(["--key", key])
        return args

    def info_image(self, image: Path) -> VbmetaInfo:
        """Read the algorithm and rollback index of a vbmeta image."""
        result = run_tool(self._command("info_image", "--image", image))
        return parse_info_image(result.stdout)

    def erase_footer(self, image: Path) -> ToolResult:
        """Strip the verification footer from an image in place."""
        return run_tool(self._command("erase_footer", "--image", image))

    def add_hash_footer(
        self,
        image: Path,
        partition_name: str,
        partition_size: int,
        algorithm: str,
        key: Path | None,
        salt: str | None = None,
    ) -> ToolResult:
        """Append a hash footer to ``image`` in place."""
        cmd = self._command(
            "add_hash_footer",
            "--image",
            image,
            "--partition_name",
            partition_name,
            "--partition_size",
            str(partition_size),
            *self._key_args(algorithm, key),
        )
        if salt:
            cmd.extend(["--salt", salt])
        logger.debug("Adding hash footer to %s (%s)", image.name, partition_name)
        return run_tool(cmd)

    def make_vbmeta_image(
        self,
        output: Path,
        algorithm: str,
        key: Path | None,
        rollback_index: int,
        flags: int,
        include_descriptors_from: Sequence[Path],
    ) -> ToolResult:
        """Create a vbmeta image embedding descriptors from other images."""
        cmd = self._command(
            "make_vbmeta_image",
            "--output",
            output,
            *self._key_args(algorithm, key),
            "--rollback_index",
            str(rollback_index),
            "--flags",
            str(flags),
        )
        for image in include_descriptors_from:
            cmd.extend(["--include_descriptors_from_image", image])
        return run_tool(cmd)

    def extract_public_key(self, key: Path, output: Path) -> ToolResult:
        """Write the AVB public key blob for ``key`` to ``output``."""
        return run_tool(
            self._command("extract_public_key", "--key", key, "--output", output)
        )


__all__ = [
    "FLAG_VERIFICATION_DISABLED",
    "AvbTool",
    "VbmetaInfo",
    "key_bits_for_algorithm",
    "parse_info_image",
]
