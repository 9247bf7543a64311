"""Configuration settings for kernel_repack.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Pinned prebuilt clang used when neither a local nor an SDK toolchain exists
DEFAULT_CLANG_URL = (
    "https://github.com/ravindu644/Android-Kernel-Tutorials/releases/download/"
    "toolchains/clang-r383902b.tar.gz"
)


# Unset locations, derived in order from an already resolved base field
DERIVED_PATHS = {
    "source_dir": ("work_dir", "kernel"),
    "firmware_dir": ("work_dir", "firmware"),
    "output_dir": ("work_dir", "builds"),
    "toolchains_dir": ("work_dir", "toolchains"),
    "clang_dir": ("toolchains_dir", "clang"),
    "avbtool_path": ("toolchains_dir", "avb/avbtool.py"),
    "magiskboot_path": ("toolchains_dir", "AIK_ARM/bin/magiskboot_x86"),
}


def _default_jobs() -> int:
    """Return the default make job count (one per CPU)."""
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the KREPACK_ prefix.
    Directory settings left unset are derived from ``work_dir``.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="KREPACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    work_dir: Path = Field(
        default_factory=Path.cwd,
        description="Root directory holding sources, firmware and outputs",
    )
    source_dir: Path = Field(
        default=Path(),
        description="Kernel source checkout (default: <work_dir>/kernel)",
    )
    firmware_dir: Path = Field(
        default=Path(),
        description="Stock firmware root, one subdirectory per variant",
    )
    output_dir: Path = Field(
        default=Path(),
        description="Output root, one subdirectory per variant",
    )
    toolchains_dir: Path = Field(
        default=Path(),
        description="Directory holding clang, avbtool and magiskboot",
    )
    clang_dir: Path = Field(
        default=Path(),
        description="Locally prepared clang toolchain (default: <toolchains>/clang)",
    )
    avbtool_path: Path = Field(
        default=Path(),
        description="Path to avbtool (default: <toolchains>/avb/avbtool.py)",
    )
    magiskboot_path: Path = Field(
        default=Path(),
        description="Path to magiskboot (default: <toolchains>/AIK_ARM/bin/magiskboot_x86)",
    )
    sdk_root: Path | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "KREPACK_SDK_ROOT", "ANDROID_SDK_ROOT", "ANDROID_HOME"
        ),
        description="Android SDK root used for toolchain auto-discovery",
    )
    variants_file: Path | None = Field(
        default=None,
        description="Optional YAML variant catalog replacing the built-in table",
    )

    # Toolchain
    clang_url: str = Field(
        default=DEFAULT_CLANG_URL,
        description="Pinned clang archive fetched when no toolchain is found",
    )

    # Kernel build
    jobs: int = Field(
        default_factory=_default_jobs,
        ge=1,
        description="Parallel make jobs",
    )
    use_ccache: bool = Field(
        default=True,
        description="Compile through ccache",
    )
    android_codename: str = Field(
        default="U",
        description="Android release letter embedded in LOCALVERSION",
    )
    release_version: str = Field(
        default="custom",
        description="Release tag embedded in LOCALVERSION",
    )
    dtb_relpath: str = Field(
        default="arch/arm64/boot/dts/vendor/qcom/yupik.dtb",
        description="Device-tree blob path relative to the kernel output tree",
    )

    # Module package metadata
    module_id: str = Field(default="sm7325-klm")
    module_name: str = Field(default="SM7325 Kernel Helper")
    module_author: str = Field(default="kernel-repack")
    module_version: str = Field(default="1.5")
    module_version_code: int = Field(default=6, ge=1)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int | None = Field(
        default=None,
        description="Timeout for each kernel make invocation (unset = none)",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for the toolchain download",
    )

    @model_validator(mode="before")
    @classmethod
    def _derive_paths(cls, data: Any) -> Any:
        """Fill unset directories relative to work_dir."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("work_dir") is None:
            data["work_dir"] = Path.cwd()
        for name, (base, relpath) in DERIVED_PATHS.items():
            if data.get(name) is None:
                data[name] = Path(data[base]) / relpath
        return data


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_CLANG_URL", "Settings", "get_settings", "print_settings_json"]
