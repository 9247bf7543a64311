"""Tests for kernel/compiler.py module.

Tests make parameter composition and module layout.
Uses mocked run_tool for build execution tests.
"""

from dataclasses import replace
from unittest.mock import patch

import pytest

from kernel_repack.errors import ToolExecutionError
from kernel_repack.kernel.compiler import (
    VENDOR_MODULES_RELPATH,
    build_env,
    build_kernel,
    clean_source,
    compose_localversion,
    compose_make_params,
    install_modules,
    rewrite_modules_dep,
    rewrite_modules_load,
)
from kernel_repack.tools.runner import ToolResult
from kernel_repack.variants.catalog import DEFAULT_CATALOG

VARIANT = DEFAULT_CATALOG["a52sxqxx"]


def _ok(*args, **kwargs) -> ToolResult:
    return ToolResult(command="make", exit_code=0)


class TestComposeMakeParams:
    """Tests for compose_make_params function."""

    def test_core_parameters(self, build_config):
        params = compose_make_params(build_config)
        assert params[0] == "make"
        assert "-j4" in params
        assert f"O={build_config.kernel_out_dir}" in params
        assert "ARCH=arm64" in params
        assert "LLVM=1" in params
        assert "LLVM_IAS=1" in params
        assert f"CROSS_COMPILE={build_config.toolchain_dir / 'bin'}/llvm-" in params
        assert "CC=clang" in params

    def test_ccache(self, build_config):
        params = compose_make_params(replace(build_config, use_ccache=True))
        assert "CC=ccache clang" in params


class TestLocalversion:
    """Tests for compose_localversion and build_env."""

    def test_localversion(self, build_config):
        assert compose_localversion(build_config, VARIANT) == "-U-custom-O-a52sxqxx"

    def test_env_prepends_toolchain(self, build_config):
        env = build_env(build_config, VARIANT)
        assert env["PATH"].startswith(str(build_config.toolchain_dir / "bin"))
        assert env["LOCALVERSION"] == "-U-custom-O-a52sxqxx"


class TestBuildKernel:
    """Tests for build_kernel function."""

    def _outputs(self, build_config):
        out = build_config.kernel_out_dir
        for rel in (
            "arch/arm64/boot/Image",
            "arch/arm64/boot/dtbo.img",
            build_config.dtb_relpath,
        ):
            (out / rel).parent.mkdir(parents=True, exist_ok=True)
            (out / rel).write_bytes(b"x")

    def test_defconfig_then_build(self, build_config, tmp_path):
        """Should run the variant defconfig and then the full build."""
        self._outputs(build_config)
        log = tmp_path / "build.log"

        with patch("kernel_repack.kernel.compiler.run_tool", side_effect=_ok) as run:
            output = build_kernel(build_config, VARIANT, log)

        first, second = (c[0][0] for c in run.call_args_list)
        assert first[-1] == "vendor/a52sxq_eur_open_defconfig"
        assert second == compose_make_params(build_config)
        assert run.call_args.kwargs["log_path"] == log
        assert output.kernel_image.name == "Image"
        assert output.dirty is True

    def test_missing_output_raises(self, build_config, tmp_path):
        """A build that produced no kernel image should fail."""
        with patch("kernel_repack.kernel.compiler.run_tool", side_effect=_ok):
            with pytest.raises(ToolExecutionError) as exc_info:
                build_kernel(build_config, VARIANT, tmp_path / "build.log")

        assert exc_info.value.code == "missing_build_output"

    def test_compiler_failure_propagates(self, build_config, tmp_path):
        """A failing make must not be retried."""
        with patch(
            "kernel_repack.kernel.compiler.run_tool",
            side_effect=ToolExecutionError("make failed", exit_code=2),
        ) as run:
            with pytest.raises(ToolExecutionError):
                build_kernel(build_config, VARIANT, tmp_path / "build.log")

        assert run.call_count == 1


class TestCleanSource:
    """Tests for clean_source function."""

    def test_removes_output_tree(self, build_config):
        (build_config.kernel_out_dir / "arch").mkdir(parents=True)
        clean_source(build_config)
        assert not build_config.kernel_out_dir.exists()
        # Cleaning twice is harmless
        clean_source(build_config)


class TestModuleMetadata:
    """Tests for modules.dep / modules.load rewriting."""

    def test_rewrite_modules_dep(self):
        text = (
            "kernel/drivers/net/wlan.ko: kernel/net/cfg80211.ko\n"
            "kernel/net/cfg80211.ko:\n"
        )
        assert rewrite_modules_dep(text) == (
            "/vendor/lib/modules/wlan.ko: /vendor/lib/modules/cfg80211.ko\n"
            "/vendor/lib/modules/cfg80211.ko:\n"
        )

    def test_rewrite_modules_dep_keeps_every_line(self):
        """Each entry is rewritten on its own line; none is merged away."""
        text = (
            "kernel/drivers/net/wlan.ko: kernel/net/cfg80211.ko kernel/lib/crc.ko\n"
            "kernel/net/cfg80211.ko: kernel/lib/crc.ko\n"
            "kernel/lib/crc.ko:\n"
            "kernel/top.ko:\n"
        )
        rewritten = rewrite_modules_dep(text)
        assert rewritten.splitlines() == [
            "/vendor/lib/modules/wlan.ko: /vendor/lib/modules/cfg80211.ko "
            "/vendor/lib/modules/crc.ko",
            "/vendor/lib/modules/cfg80211.ko: /vendor/lib/modules/crc.ko",
            "/vendor/lib/modules/crc.ko:",
            "/vendor/lib/modules/top.ko:",
        ]
        assert rewritten.count("\n") == text.count("\n")

    def test_rewrite_modules_load(self):
        text = "kernel/drivers/net/wlan.ko\nkernel/net/cfg80211.ko\n"
        assert rewrite_modules_load(text) == "wlan.ko\ncfg80211.ko\n"


class TestInstallModules:
    """Tests for install_modules function."""

    def test_layout(self, build_config, tmp_path):
        """Modules should be flattened into the vendor modules directory."""
        release = build_config.kernel_out_dir / "modules" / "lib" / "modules" / "5.4.0"

        def fake_install(cmd, **kwargs):
            assert "modules_install" in cmd
            (release / "kernel" / "drivers").mkdir(parents=True)
            (release / "kernel" / "drivers" / "wlan.ko").write_bytes(b"ko")
            (release / "modules.order").write_text("kernel/drivers/wlan.ko\n")
            (release / "modules.dep").write_text("kernel/drivers/wlan.ko:\n")
            return _ok()

        variant_out = tmp_path / "builds" / "a52sxqxx"
        with patch("kernel_repack.kernel.compiler.run_tool", side_effect=fake_install):
            modules = install_modules(
                build_config, VARIANT, variant_out, tmp_path / "build.log"
            )

        assert modules == variant_out / VENDOR_MODULES_RELPATH
        assert (modules / "wlan.ko").read_bytes() == b"ko"
        assert (modules / "modules.load").read_text() == "wlan.ko\n"
        assert (modules / "modules.dep").read_text() == "/vendor/lib/modules/wlan.ko:\n"
        # Temporary install tree removed
        assert not (build_config.kernel_out_dir / "modules").exists()
