"""Systemless module packager.

This module handles:
- Locating the latest variant build and its vbmeta image
- Rendering module.prop, customize.sh, service.sh and the installer stubs
- Zipping the module tree into a flashable archive

The vbmeta digest and size written to service.sh are computed from the
image on disk on every run; they are never cached.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, PackageLoader, StrictUndefined

from kernel_repack.artifacts import compute_file_hash
from kernel_repack.errors import MissingInputError
from kernel_repack.images.staging import staging_area
from kernel_repack.kernel.compiler import VENDOR_MODULES_RELPATH

if TYPE_CHECKING:
    from kernel_repack.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = (
    "Systemless installer for custom kernel modules on sm7325 devices. "
    "Includes device-specific runtime fixes."
)

# Install location of the modules inside the module tree
MODULES_INSTALL_RELPATH = "system/vendor/lib/modules"

SELINUX_CONTEXT = "u:object_r:vendor_file:s0"

VBMETA_PROPERTIES = ("avb_version", "device_state", "digest", "hash_alg", "size")
AVB_VERSION = "1.0"

CAMERA_DEVICE_PREFIX = "a52s"
CAMERA_PROPERTY = "ro.boot.flash.locked"
CAMERA_REPLACEMENT = "ro.camera.notify_nfc"
CAMERA_LIBRARIES = (
    "/vendor/lib64/hw/camera.qcom.so",
    "/vendor/lib64/hw/com.qti.chi.override.so",
    "/vendor/lib/hw/camera.qcom.so",
    "/vendor/lib/hw/com.qti.chi.override.so",
)

INSTALLER_DIR = Path("META-INF") / "com" / "google" / "android"

_env = Environment(
    loader=PackageLoader("kernel_repack.packaging", "templates"),
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
    autoescape=False,
)


@dataclass(frozen=True)
class ModuleProps:
    """Metadata written to module.prop."""

    module_id: str
    name: str
    version: str
    version_code: int
    author: str
    description: str = DEFAULT_DESCRIPTION

    @classmethod
    def from_settings(cls, settings: Settings) -> ModuleProps:
        return cls(
            module_id=settings.module_id,
            name=settings.module_name,
            version=settings.module_version,
            version_code=settings.module_version_code,
            author=settings.module_author,
        )


@dataclass(frozen=True)
class VbmetaProperties:
    """Boot-state values derived from a vbmeta image."""

    digest: str
    size: int


@dataclass
class ModulePackage:
    """Result of packing the module archive."""

    zip_path: Path
    build_dir: Path
    vbmeta_image: Path | None
    vbmeta: VbmetaProperties | None
    module_count: int


def find_latest_build(builds_dir: Path) -> Path:
    """Return the most recently modified variant build directory.

    Hidden directories (staging areas) are ignored.

    Raises:
        MissingInputError: If there is no build directory.
    """
    candidates = []
    if builds_dir.is_dir():
        candidates = [
            d for d in builds_dir.iterdir() if d.is_dir() and not d.name.startswith(".")
        ]
    if not candidates:
        raise MissingInputError(
            f"Could not find any build directory in '{builds_dir}'. "
            "Run a full kernel build first.",
            path=str(builds_dir),
        )
    return max(candidates, key=lambda d: (d.stat().st_mtime, d.name))


def find_vbmeta(build_dir: Path) -> Path:
    """Return the first vbmeta.img found under ``build_dir``.

    Raises:
        MissingInputError: If no vbmeta image exists.
    """
    for path in sorted(build_dir.rglob("vbmeta.img")):
        if path.is_file():
            return path
    raise MissingInputError(
        f"Could not find a 'vbmeta.img' in the latest build directory: {build_dir}",
        path=str(build_dir),
    )


def vbmeta_properties(vbmeta_image: Path) -> VbmetaProperties:
    """Compute the digest and size of the vbmeta image on disk."""
    return VbmetaProperties(
        digest=compute_file_hash(vbmeta_image),
        size=vbmeta_image.stat().st_size,
    )


def render_module_prop(props: ModuleProps) -> str:
    return _env.get_template("module.prop.j2").render(props=props)


def render_customize_sh(props: ModuleProps, camera_fix: bool = True) -> str:
    """Render the install-time script (permissions, optional camera fix)."""
    return _env.get_template("customize.sh.j2").render(
        props=props,
        modules_relpath=MODULES_INSTALL_RELPATH,
        selinux_context=SELINUX_CONTEXT,
        camera_fix=camera_fix,
        camera_device_prefix=CAMERA_DEVICE_PREFIX,
        camera_property=CAMERA_PROPERTY,
        camera_replacement=CAMERA_REPLACEMENT,
        camera_libraries=CAMERA_LIBRARIES,
    )


def render_service_sh(vbmeta: VbmetaProperties) -> str:
    """Render the boot-time script restoring the vbmeta properties."""
    return _env.get_template("service.sh.j2").render(
        vbmeta=vbmeta,
        properties=VBMETA_PROPERTIES,
        avb_version=AVB_VERSION,
    )


def _write(path: Path, content: str, executable: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    mode = 0o755 if executable else 0o644
    path.chmod(mode)


def _copy_modules(modules_src: Path, dest: Path) -> int:
    dest.mkdir(parents=True, exist_ok=True)
    count = 0
    for path in sorted(modules_src.iterdir()):
        if path.is_file():
            shutil.copy2(path, dest / path.name)
            if path.suffix == ".ko":
                count += 1
    return count


def _zip_tree(tree: Path, zip_path: Path) -> None:
    with zipfile.ZipFile(
        zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
    ) as zf:
        for path in sorted(tree.rglob("*")):
            if path.is_file():
                zf.write(path, path.relative_to(tree).as_posix())


def pack_module(
    props: ModuleProps,
    builds_dir: Path,
    dest_dir: Path,
    staging_dir: Path,
    include_service: bool = True,
    include_camera_fix: bool = True,
    today: date | None = None,
) -> ModulePackage:
    """Build the flashable module archive from the latest build.

    Args:
        props: module.prop metadata.
        builds_dir: Output root holding one directory per variant.
        dest_dir: Directory receiving the zip file.
        staging_dir: Scratch directory for the module tree (removed after).
        include_service: Generate service.sh from the vbmeta image.
        include_camera_fix: Include the camera library patch in customize.sh.
        today: Date used in the archive name (default: today).

    Returns:
        ModulePackage describing the archive.

    Raises:
        MissingInputError: If no build, vbmeta image or modules are found.
    """
    stamp = (today or date.today()).strftime("%Y%m%d")
    zip_path = dest_dir / f"{props.module_id}-{props.version}-{stamp}.zip"
    zip_path.unlink(missing_ok=True)

    build_dir = find_latest_build(builds_dir)
    logger.info("Using latest build: %s", build_dir)

    vbmeta_image: Path | None = None
    vbmeta: VbmetaProperties | None = None
    if include_service:
        vbmeta_image = find_vbmeta(build_dir)
        vbmeta = vbmeta_properties(vbmeta_image)
        logger.info(
            "vbmeta digest %s, size %d (%s)", vbmeta.digest, vbmeta.size, vbmeta_image
        )

    modules_src = build_dir / VENDOR_MODULES_RELPATH
    if not modules_src.is_dir():
        raise MissingInputError(
            f"Could not find a modules directory in '{build_dir}'",
            path=str(modules_src),
        )

    with staging_area(staging_dir) as tree:
        _write(tree / "module.prop", render_module_prop(props))
        _write(
            tree / "customize.sh",
            render_customize_sh(props, camera_fix=include_camera_fix),
            executable=True,
        )
        if vbmeta is not None:
            _write(tree / "service.sh", render_service_sh(vbmeta), executable=True)
        _write(
            tree / INSTALLER_DIR / "update-binary",
            _env.get_template("update-binary.j2").render(),
            executable=True,
        )
        _write(
            tree / INSTALLER_DIR / "updater-script",
            _env.get_template("updater-script.j2").render(),
        )

        module_count = _copy_modules(modules_src, tree / MODULES_INSTALL_RELPATH)
        logger.info("Copied %d modules into the package", module_count)

        dest_dir.mkdir(parents=True, exist_ok=True)
        _zip_tree(tree, zip_path)

    logger.info("Created %s", zip_path)
    return ModulePackage(
        zip_path=zip_path,
        build_dir=build_dir,
        vbmeta_image=vbmeta_image,
        vbmeta=vbmeta,
        module_count=module_count,
    )


__all__ = [
    "ModulePackage",
    "ModuleProps",
    "VbmetaProperties",
    "find_latest_build",
    "find_vbmeta",
    "pack_module",
    "render_customize_sh",
    "render_module_prop",
    "render_service_sh",
    "vbmeta_properties",
]
