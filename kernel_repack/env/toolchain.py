"""Compiler toolchain resolution and download.

This module handles:
- Locating a usable clang toolchain (local dir, then Android SDK/NDK)
- Downloading and extracting the pinned prebuilt archive on consent

A toolchain directory only counts when its compiler binary exists; an
empty or half-extracted directory is rejected.
"""

from __future__ import annotations

import logging
import tarfile
import tempfile
from collections.abc import Callable
from pathlib import Path

import httpx

from kernel_repack.errors import DownloadError, ToolchainNotFoundError

logger = logging.getLogger(__name__)

# Compiler binary relative to a toolchain root
COMPILER_RELPATH = Path("bin") / "clang"

# NDK toolchain layout under the SDK root
SDK_TOOLCHAIN_GLOB = "ndk/*/toolchains/llvm/prebuilt/linux-x86_64"

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

Fetcher = Callable[[Path], Path]


def has_compiler(toolchain_dir: Path | None) -> bool:
    """Return True if ``toolchain_dir`` contains the compiler binary."""
    if toolchain_dir is None:
        return False
    return (toolchain_dir / COMPILER_RELPATH).is_file()


def find_sdk_toolchain(sdk_root: Path | None) -> Path | None:
    """Find the newest NDK clang toolchain under an SDK root.

    Args:
        sdk_root: Android SDK root, or None.

    Returns:
        Toolchain root whose compiler binary exists, or None.
    """
    if sdk_root is None or not sdk_root.is_dir():
        return None

    candidates = sorted(sdk_root.glob(SDK_TOOLCHAIN_GLOB), reverse=True)
    for candidate in candidates:
        if has_compiler(candidate):
            return candidate
        logger.debug("Ignoring %s: no %s", candidate, COMPILER_RELPATH)
    return None


def resolve_toolchain(
    local_hint: Path,
    sdk_root: Path | None,
    allow_download: bool,
    fetch: Fetcher | None = None,
) -> Path:
    """Locate a usable compiler toolchain.

    Resolution order:
    1. ``local_hint`` (a previously prepared toolchain directory)
    2. The newest NDK toolchain under ``sdk_root``
    3. ``fetch(local_hint)`` when ``allow_download`` is set

    Args:
        local_hint: Directory of a locally prepared toolchain.
        sdk_root: Android SDK root used for auto-discovery.
        allow_download: Whether fetching the pinned archive is allowed.
        fetch: Callable that populates the given directory and returns the
            toolchain root. Required when ``allow_download`` is set.

    Returns:
        Path to the toolchain root.

    Raises:
        ToolchainNotFoundError: If no option yields a working compiler.
    """
    if has_compiler(local_hint):
        logger.info("Clang toolchain already exists at %s", local_hint)
        return local_hint

    sdk_toolchain = find_sdk_toolchain(sdk_root)
    if sdk_toolchain is not None:
        logger.info("Using SDK toolchain at %s", sdk_toolchain)
        return sdk_toolchain

    if allow_download and fetch is not None:
        logger.info("Clang toolchain not found. Downloading...")
        fetched = fetch(local_hint)
        if has_compiler(fetched):
            return fetched
        raise ToolchainNotFoundError(
            f"Downloaded toolchain at {fetched} has no {COMPILER_RELPATH}",
            hint="Check the configured clang archive URL.",
        )

    raise ToolchainNotFoundError(
        "No usable clang toolchain found.",
        hint=(
            f"Populate {local_hint}, set ANDROID_SDK_ROOT to an SDK with an NDK, "
            "or allow the pinned toolchain download."
        ),
    )


def _extract_tarball(archive_path: Path, dest_dir: Path) -> None:
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            for member in tar.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise DownloadError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise DownloadError(
            f"Failed to extract {archive_path}: {e}", code="extraction_error"
        ) from e


def download_toolchain(
    client: httpx.Client,
    url: str,
    dest_dir: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> Path:
    """Download the pinned toolchain archive and extract it.

    The archive is streamed to a temporary file next to ``dest_dir``,
    extracted directly into ``dest_dir`` and removed afterwards.

    Args:
        client: HTTPX client instance.
        url: Archive URL.
        dest_dir: Toolchain root to populate.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        ``dest_dir``.

    Raises:
        DownloadError: If the download or the extraction fails.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=dest_dir.parent, suffix=".tar.gz", delete=False
    ) as tmp_file:
        tmp_path = Path(tmp_file.name)

    logger.info("Downloading %s", url)
    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()
            total_bytes = 0
            with tmp_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)
        logger.info("Downloaded %d bytes", total_bytes)

        _extract_tarball(tmp_path, dest_dir)
        logger.info("Clang toolchain downloaded and extracted to %s", dest_dir)
        return dest_dir

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} "
            f"{e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e
    finally:
        tmp_path.unlink(missing_ok=True)


def make_fetcher(url: str, timeout: float = DOWNLOAD_TIMEOUT) -> Fetcher:
    """Return a fetch callable for ``resolve_toolchain`` bound to ``url``."""

    def fetch(dest_dir: Path) -> Path:
        with httpx.Client(follow_redirects=True) as client:
            return download_toolchain(client, url, dest_dir, timeout=timeout)

    return fetch


__all__ = [
    "COMPILER_RELPATH",
    "SDK_TOOLCHAIN_GLOB",
    "download_toolchain",
    "find_sdk_toolchain",
    "has_compiler",
    "make_fetcher",
    "resolve_toolchain",
]
