"""Kernel compiler invocation.

This module handles:
- Composing the kernel ``make`` parameters for the clang/LLVM toolchain
- Running the defconfig and full build for a variant
- Installing modules and laying them out for /vendor/lib/modules

A compiler failure is fatal; nothing here retries.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from kernel_repack.errors import ToolExecutionError
from kernel_repack.tools.runner import run_tool
from kernel_repack.types import BuildConfig
from kernel_repack.variants.catalog import VariantConfig

logger = logging.getLogger(__name__)

KERNEL_IMAGE_RELPATH = "arch/arm64/boot/Image"
DTBO_IMAGE_RELPATH = "arch/arm64/boot/dtbo.img"

# Temporary INSTALL_MOD_PATH, relative to the kernel output tree
MODULES_INSTALL_DIRNAME = "modules"

# Where modules live inside a variant output directory
VENDOR_MODULES_RELPATH = Path("modules") / "vendor" / "lib" / "modules"

MODULE_METADATA_FILES = ("modules.alias", "modules.dep", "modules.softdep")

RE_DEP_PATH = re.compile(r"kernel/(?:[^:\s]*/)?([^:\s/]*\.ko)")


@dataclass
class KernelBuildOutput:
    """Artifacts produced by one kernel build."""

    kernel_image: Path
    dtbo_image: Path
    dtb: Path
    dirty: bool = False


def compose_make_params(config: BuildConfig) -> list[str]:
    """Compose the common ``make`` arguments.

    Args:
        config: Build configuration.

    Returns:
        Command prefix as a list of strings.
    """
    cc = "ccache clang" if config.use_ccache else "clang"
    return [
        "make",
        f"-j{config.jobs}",
        "-C",
        str(config.source_dir),
        f"O={config.kernel_out_dir}",
        "ARCH=arm64",
        "CLANG_TRIPLE=aarch64-linux-gnu-",
        "LLVM=1",
        "LLVM_IAS=1",
        f"CROSS_COMPILE={config.toolchain_dir / 'bin'}/llvm-",
        f"CC={cc}",
    ]


def compose_localversion(config: BuildConfig, variant: VariantConfig) -> str:
    """Return the LOCALVERSION suffix for a variant build."""
    letter = config.flavor.letter if config.flavor else "X"
    return (
        f"-{config.android_codename}-{config.release_version}-{letter}-{variant.name}"
    )


def build_env(config: BuildConfig, variant: VariantConfig) -> dict[str, str]:
    """Environment overrides for kernel make invocations."""
    path = f"{config.toolchain_dir / 'bin'}{os.pathsep}{os.environ.get('PATH', '')}"
    return {
        "PATH": path,
        "LOCALVERSION": compose_localversion(config, variant),
    }


def clean_source(config: BuildConfig) -> None:
    """Delete the kernel output tree so the next build starts clean."""
    logger.info("Cleaning up kernel source output at %s", config.kernel_out_dir)
    shutil.rmtree(config.kernel_out_dir, ignore_errors=True)


def build_kernel(
    config: BuildConfig,
    variant: VariantConfig,
    log_path: Path,
) -> KernelBuildOutput:
    """Configure and compile the kernel for a variant.

    Args:
        config: Build configuration.
        variant: Variant being built.
        log_path: Log file receiving compiler output.

    Returns:
        KernelBuildOutput with the kernel image, DTBO image and DTB.

    Raises:
        ToolExecutionError: If make fails or an expected output is missing.
    """
    out_dir = config.kernel_out_dir
    dirty = out_dir.exists()
    if dirty:
        logger.info("Starting %s kernel build... (DIRTY)", variant.name)
    else:
        logger.info("Starting %s kernel build...", variant.name)
    out_dir.mkdir(parents=True, exist_ok=True)

    params = compose_make_params(config)
    env = build_env(config, variant)

    run_tool(
        [*params, f"vendor/{variant.defconfig}"],
        env_override=env,
        log_path=log_path,
        timeout=config.build_timeout,
    )
    run_tool(params, env_override=env, log_path=log_path, timeout=config.build_timeout)

    output = KernelBuildOutput(
        kernel_image=out_dir / KERNEL_IMAGE_RELPATH,
        dtbo_image=out_dir / DTBO_IMAGE_RELPATH,
        dtb=out_dir / config.dtb_relpath,
        dirty=dirty,
    )
    for artifact in (output.kernel_image, output.dtbo_image, output.dtb):
        if not artifact.is_file():
            raise ToolExecutionError(
                f"Kernel build finished but {artifact} was not produced",
                log_path=str(log_path),
                code="missing_build_output",
            )
    return output


def rewrite_modules_dep(text: str) -> str:
    """Point every module path in modules.dep at /vendor/lib/modules."""
    return RE_DEP_PATH.sub(r"/vendor/lib/modules/\1", text)


def rewrite_modules_load(text: str) -> str:
    """Reduce each modules.order entry to its bare file name."""
    lines = [line.rsplit("/", 1)[-1] for line in text.splitlines()]
    return "\n".join(lines) + ("\n" if text.endswith("\n") else "")


def install_modules(
    config: BuildConfig,
    variant: VariantConfig,
    variant_out: Path,
    log_path: Path,
) -> Path:
    """Install built modules into the variant output directory.

    Args:
        config: Build configuration.
        variant: Variant being built.
        variant_out: Variant output directory.
        log_path: Log file receiving make output.

    Returns:
        Directory holding the .ko files and module metadata.
    """
    logger.info("Building kernel modules for %s", variant.name)
    run_tool(
        [
            *compose_make_params(config),
            f"INSTALL_MOD_PATH={config.kernel_out_dir / MODULES_INSTALL_DIRNAME}",
            "INSTALL_MOD_STRIP=1",
            "modules_install",
        ],
        env_override=build_env(config, variant),
        log_path=log_path,
        timeout=config.build_timeout,
    )

    install_root = config.kernel_out_dir / MODULES_INSTALL_DIRNAME
    modules_out = variant_out / VENDOR_MODULES_RELPATH
    modules_out.mkdir(parents=True, exist_ok=True)

    count = 0
    for ko in sorted(install_root.rglob("*.ko")):
        shutil.copy2(ko, modules_out / ko.name)
        count += 1

    release_dirs = sorted((install_root / "lib" / "modules").glob("*"))
    release_dir = next((d for d in release_dirs if d.is_dir()), None)
    if release_dir is not None:
        for name in MODULE_METADATA_FILES:
            src = release_dir / name
            if src.is_file():
                shutil.copy2(src, modules_out / name)
        order = release_dir / "modules.order"
        if order.is_file():
            (modules_out / "modules.load").write_text(
                rewrite_modules_load(order.read_text())
            )
        dep = modules_out / "modules.dep"
        if dep.is_file():
            dep.write_text(rewrite_modules_dep(dep.read_text()))

    shutil.rmtree(install_root, ignore_errors=True)
    logger.info("Installed %d modules to %s", count, modules_out)
    return modules_out


__all__ = [
    "DTBO_IMAGE_RELPATH",
    "KERNEL_IMAGE_RELPATH",
    "VENDOR_MODULES_RELPATH",
    "KernelBuildOutput",
    "build_kernel",
    "clean_source",
    "compose_localversion",
    "compose_make_params",
    "install_modules",
    "rewrite_modules_dep",
    "rewrite_modules_load",
]
