"""Tests for the avbtool and magiskboot adapters.

The adapters are checked for the argument vectors they build; run_tool is
mocked so no binary is executed.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from kernel_repack.errors import ToolOutputParseError
from kernel_repack.tools.avbtool import (
    FLAG_VERIFICATION_DISABLED,
    AvbTool,
    VbmetaInfo,
    key_bits_for_algorithm,
    parse_info_image,
)
from kernel_repack.tools.magiskboot import MagiskBoot
from kernel_repack.tools.runner import ToolResult

from tests.fakes import INFO_IMAGE_TEXT


def _ok(stdout: str = "") -> ToolResult:
    return ToolResult(command="avbtool", exit_code=0, stdout=stdout)


class TestParseInfoImage:
    """Tests for parse_info_image function."""

    def test_parses_real_output(self):
        """Should read algorithm and rollback index from info_image text."""
        info = parse_info_image(INFO_IMAGE_TEXT)
        assert info == VbmetaInfo(algorithm="SHA256_RSA4096", rollback_index=7)

    def test_ignores_rollback_index_location(self):
        """'Rollback Index Location' must not be read as the index."""
        text = (
            "Rollback Index Location:  3\n"
            "Algorithm:                SHA256_RSA2048\n"
            "Rollback Index:           12\n"
        )
        info = parse_info_image(text)
        assert info.rollback_index == 12
        assert info.algorithm == "SHA256_RSA2048"

    def test_missing_algorithm(self):
        """A missing Algorithm field should raise."""
        with pytest.raises(ToolOutputParseError) as exc_info:
            parse_info_image("Rollback Index: 0\n")
        assert exc_info.value.field == "algorithm"
        assert exc_info.value.code == "parse_failure"

    def test_missing_rollback_index(self):
        """A missing Rollback Index field should raise."""
        with pytest.raises(ToolOutputParseError) as exc_info:
            parse_info_image("Algorithm: NONE\n")
        assert exc_info.value.field == "rollback_index"

    def test_non_numeric_rollback_index(self):
        """A non-numeric rollback index should raise."""
        with pytest.raises(ToolOutputParseError):
            parse_info_image("Algorithm: NONE\nRollback Index: abc\n")

    def test_empty_output(self):
        """Empty output should raise."""
        with pytest.raises(ToolOutputParseError):
            parse_info_image("")


class TestKeyBitsForAlgorithm:
    """Tests for key_bits_for_algorithm function."""

    @pytest.mark.parametrize(
        ("algorithm", "bits"),
        [
            ("SHA256_RSA2048", 2048),
            ("SHA256_RSA4096", 4096),
            ("SHA512_RSA8192", 8192),
            ("NONE", None),
        ],
    )
    def test_known_algorithms(self, algorithm, bits):
        assert key_bits_for_algorithm(algorithm) == bits

    def test_unknown_algorithm(self):
        with pytest.raises(ToolOutputParseError):
            key_bits_for_algorithm("SHA256_ECDSA")


class TestAvbTool:
    """Tests for AvbTool argument composition."""

    def test_python_script_runs_through_interpreter(self, tmp_path):
        """A .py avbtool should be run with the given interpreter."""
        tool = AvbTool(tmp_path / "avbtool.py", python="/usr/bin/python3")
        with patch("kernel_repack.tools.avbtool.run_tool", return_value=_ok()) as run:
            tool.erase_footer(tmp_path / "boot.img")

        cmd = run.call_args[0][0]
        assert cmd[:3] == ["/usr/bin/python3", tmp_path / "avbtool.py", "erase_footer"]
        assert cmd[3:] == ["--image", tmp_path / "boot.img"]

    def test_binary_runs_directly(self, tmp_path):
        """A non-.py avbtool should be executed directly."""
        tool = AvbTool(tmp_path / "avbtool")
        with patch("kernel_repack.tools.avbtool.run_tool", return_value=_ok()) as run:
            tool.erase_footer(tmp_path / "boot.img")

        assert run.call_args[0][0][0] == tmp_path / "avbtool"

    def test_info_image_parses_stdout(self, tmp_path):
        """info_image should parse the tool's stdout."""
        tool = AvbTool(tmp_path / "avbtool")
        with patch(
            "kernel_repack.tools.avbtool.run_tool", return_value=_ok(INFO_IMAGE_TEXT)
        ):
            info = tool.info_image(tmp_path / "vbmeta.img")
        assert info.rollback_index == 7

    def test_add_hash_footer_arguments(self, tmp_path):
        """add_hash_footer should pass partition, size, key and salt."""
        tool = AvbTool(tmp_path / "avbtool")
        key = tmp_path / "key.pem"
        with patch("kernel_repack.tools.avbtool.run_tool", return_value=_ok()) as run:
            tool.add_hash_footer(
                tmp_path / "boot.img",
                partition_name="boot",
                partition_size=100663296,
                algorithm="SHA256_RSA4096",
                key=key,
                salt="ab" * 32,
            )

        cmd = [str(c) for c in run.call_args[0][0]]
        assert cmd[1] == "add_hash_footer"
        assert cmd[cmd.index("--partition_name") + 1] == "boot"
        assert cmd[cmd.index("--partition_size") + 1] == "100663296"
        assert cmd[cmd.index("--algorithm") + 1] == "SHA256_RSA4096"
        assert cmd[cmd.index("--key") + 1] == str(key)
        assert cmd[cmd.index("--salt") + 1] == "ab" * 32

    def test_no_key_for_none_algorithm(self, tmp_path):
        """The NONE algorithm should never pass --key."""
        tool = AvbTool(tmp_path / "avbtool")
        with patch("kernel_repack.tools.avbtool.run_tool", return_value=_ok()) as run:
            tool.add_hash_footer(
                tmp_path / "boot.img",
                partition_name="boot",
                partition_size=4096,
                algorithm="NONE",
                key=tmp_path / "key.pem",
            )

        cmd = [str(c) for c in run.call_args[0][0]]
        assert "--key" not in cmd
        assert "--salt" not in cmd

    def test_make_vbmeta_image_arguments(self, tmp_path):
        """make_vbmeta_image should include every descriptor source."""
        tool = AvbTool(tmp_path / "avbtool")
        images = [tmp_path / "boot.img", tmp_path / "dtbo.img"]
        with patch("kernel_repack.tools.avbtool.run_tool", return_value=_ok()) as run:
            tool.make_vbmeta_image(
                tmp_path / "vbmeta.img",
                algorithm="SHA256_RSA4096",
                key=tmp_path / "key.pem",
                rollback_index=7,
                flags=FLAG_VERIFICATION_DISABLED,
                include_descriptors_from=images,
            )

        cmd = [str(c) for c in run.call_args[0][0]]
        assert cmd[cmd.index("--rollback_index") + 1] == "7"
        assert cmd[cmd.index("--flags") + 1] == "2"
        assert cmd.count("--include_descriptors_from_image") == 2
        assert str(images[1]) in cmd


class TestMagiskBoot:
    """Tests for MagiskBoot argument composition."""

    def test_unpack(self, tmp_path):
        tool = MagiskBoot(Path("/opt/magiskboot"))
        with patch("kernel_repack.tools.magiskboot.run_tool", return_value=_ok()) as run:
            tool.unpack(tmp_path / "boot.img", cwd=tmp_path)

        assert run.call_args[0][0] == [
            Path("/opt/magiskboot"),
            "unpack",
            tmp_path / "boot.img",
        ]
        assert run.call_args.kwargs["cwd"] == tmp_path

    def test_unpack_header_only(self, tmp_path):
        tool = MagiskBoot(Path("/opt/magiskboot"))
        with patch("kernel_repack.tools.magiskboot.run_tool", return_value=_ok()) as run:
            tool.unpack(tmp_path / "vendor_boot.img", cwd=tmp_path, header_only=True)

        assert "-h" in run.call_args[0][0]

    def test_repack(self, tmp_path):
        tool = MagiskBoot(Path("/opt/magiskboot"))
        with patch("kernel_repack.tools.magiskboot.run_tool", return_value=_ok()) as run:
            tool.repack(tmp_path / "boot.img", tmp_path / "boot_new.img", cwd=tmp_path)

        assert run.call_args[0][0] == [
            Path("/opt/magiskboot"),
            "repack",
            tmp_path / "boot.img",
            tmp_path / "boot_new.img",
        ]
