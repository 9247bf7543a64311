"""Thin CLI wrapper for kernel_repack.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from kernel_repack import __version__
from kernel_repack.config import Settings, get_settings, print_settings_json
from kernel_repack.errors import (
    MissingDependencyError,
    RepackError,
    ToolchainNotFoundError,
    ToolExecutionError,
)

app = typer.Typer(
    name="kernel-repack",
    help="Kernel Repack - build the kernel and repack stock firmware images",
    no_args_is_help=True,
)
console = Console()

WorkDirOption = Annotated[
    Path | None,
    typer.Option(
        "--work-dir",
        "-w",
        help="Root directory holding kernel/, firmware/, toolchains/ and builds/",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"kernel-repack version {__version__}")
        raise typer.Exit()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_settings(work_dir: Path | None) -> Settings:
    if work_dir is None:
        return get_settings()
    return Settings(work_dir=work_dir)


def _print_error(error: RepackError) -> None:
    """Print a labeled ERROR line plus any remediation hint or log path."""
    console.print(f"[red]ERROR: {escape(str(error))}[/red]")
    if isinstance(error, MissingDependencyError) and error.hint:
        console.print(escape(error.hint))
    if isinstance(error, ToolExecutionError) and error.log_path:
        console.print(f"See log: {escape(error.log_path)}")


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Kernel Repack - build the kernel and repack stock firmware images."""
    _configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    sdk_display = str(settings.sdk_root) if settings.sdk_root else "(not set)"
    catalog_display = (
        str(settings.variants_file) if settings.variants_file else "(built-in)"
    )
    timeout_display = (
        str(settings.build_timeout) if settings.build_timeout else "(none)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Kernel source:       {settings.source_dir}")
    console.print(f"  Firmware directory:  {settings.firmware_dir}")
    console.print(f"  Output directory:    {settings.output_dir}")
    console.print(f"  Clang toolchain:     {settings.clang_dir}")
    console.print(f"  avbtool:             {settings.avbtool_path}")
    console.print(f"  magiskboot:          {settings.magiskboot_path}")
    console.print(f"  SDK root:            {sdk_display}")
    console.print(f"  Variant catalog:     {catalog_display}")
    console.print()
    console.print("[bold]Kernel build:[/bold]")
    console.print(f"  Jobs:                {settings.jobs}")
    console.print(f"  ccache:              {settings.use_ccache}")
    console.print(f"  Android codename:    {settings.android_codename}")
    console.print(f"  Release version:     {settings.release_version}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Module package:[/bold]")
    console.print(f"  Module ID:           {settings.module_id}")
    console.print(f"  Module version:      {settings.module_version}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {timeout_display}")


@app.command()
def variants(
    work_dir: WorkDirOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List firmware variants and whether they would be built."""
    from kernel_repack.variants import discover_variants, load_catalog

    settings = _load_settings(work_dir)
    try:
        catalog = load_catalog(settings.variants_file)
        checks = discover_variants(settings.firmware_dir, catalog)
    except RepackError as e:
        _print_error(e)
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "variant": c.name,
                "accepted": c.accepted,
                "skip_reason": c.skip_reason.value if c.skip_reason else None,
                "message": c.message,
                "defconfig": c.config.defconfig if c.config else None,
                "rp_revision": c.config.rp_revision if c.config else None,
            }
            for c in checks
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"[bold]Variants in {settings.firmware_dir}:[/bold]")
    for c in checks:
        if c.config is not None and c.accepted:
            console.print(
                f"  [green]✓ {c.name}[/green]  "
                f"{c.config.defconfig} ({c.config.rp_revision})"
            )
        else:
            console.print(f"  [yellow]- {c.name}[/yellow]  {escape(c.message or '')}")


def _resolve_toolchain(
    settings: Settings, assume_yes: bool, interactive: bool = True
) -> Path:
    """Find a toolchain, asking before downloading the pinned archive.

    Without a prompt (JSON output) the download is declined unless
    ``assume_yes`` is set.
    """
    from kernel_repack.env.toolchain import make_fetcher, resolve_toolchain

    try:
        return resolve_toolchain(
            settings.clang_dir, settings.sdk_root, allow_download=False
        )
    except ToolchainNotFoundError:
        if not assume_yes and (
            not interactive
            or not typer.confirm(
                f"Clang toolchain not found. Download it from {settings.clang_url}?",
                default=False,
            )
        ):
            raise
    return resolve_toolchain(
        settings.clang_dir,
        settings.sdk_root,
        allow_download=True,
        fetch=make_fetcher(settings.clang_url, timeout=settings.download_timeout),
    )


def _run_pack_module(
    settings: Settings,
    include_service: bool,
    include_camera_fix: bool,
    json_output: bool,
) -> None:
    from kernel_repack.packaging.module import ModuleProps, pack_module

    package = pack_module(
        ModuleProps.from_settings(settings),
        builds_dir=settings.output_dir,
        dest_dir=settings.work_dir,
        staging_dir=settings.output_dir / ".module_tmp",
        include_service=include_service,
        include_camera_fix=include_camera_fix,
    )
    if json_output:
        output = {
            "zip_path": str(package.zip_path),
            "build_dir": str(package.build_dir),
            "module_count": package.module_count,
            "vbmeta_digest": package.vbmeta.digest if package.vbmeta else None,
            "vbmeta_size": package.vbmeta.size if package.vbmeta else None,
        }
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"Using latest build: {package.build_dir}")
    if package.vbmeta is not None:
        console.print(f"  VBMETA_DIGEST: {package.vbmeta.digest}")
        console.print(f"  VBMETA_SIZE:   {package.vbmeta.size}")
    console.print(f"[green]Module zip created: {package.zip_path}[/green]")


@app.command()
def build(
    clean: Annotated[
        bool,
        typer.Option("--clean", "-c", help="Delete prior compiler output first"),
    ] = False,
    vbmeta_only: Annotated[
        bool,
        typer.Option(
            "--vbmeta-only",
            help="Skip compilation; re-footer built images and rebuild vbmeta",
        ),
    ] = False,
    mode: Annotated[
        str,
        typer.Option(
            "--mode", "-m", help="Batch mode: fail-fast (default) or best-effort"
        ),
    ] = "fail-fast",
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Parallel make jobs"),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Download the toolchain without asking"),
    ] = False,
    pack: Annotated[
        bool,
        typer.Option("--pack-module", help="Pack the module zip after the build"),
    ] = False,
    work_dir: WorkDirOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build the kernel and repack the images of every firmware variant.

    Each subdirectory of the firmware directory is one variant. Variants
    with missing images or no known configuration are skipped with a
    warning. Use --mode=best-effort to keep going after a failed variant.
    """
    from kernel_repack.env.source import detect_branch, resolve_flavor
    from kernel_repack.pipeline import Toolbox, run_pipeline
    from kernel_repack.tools.runner import SYSTEM_TOOLS, check_dependencies
    from kernel_repack.types import BatchMode, BuildConfig, VariantState
    from kernel_repack.variants import load_catalog

    try:
        batch_mode = BatchMode(mode)
    except ValueError:
        console.print(f"[red]Invalid mode: {mode}[/red]")
        console.print("Valid values: fail-fast, best-effort")
        raise typer.Exit(code=1) from None

    settings = _load_settings(work_dir)

    try:
        catalog = load_catalog(settings.variants_file)

        if vbmeta_only:
            check_dependencies(("python3", "openssl"), (settings.avbtool_path,))
        else:
            system_tools = [*SYSTEM_TOOLS, *(["ccache"] if settings.use_ccache else [])]
            check_dependencies(
                system_tools, (settings.avbtool_path, settings.magiskboot_path)
            )

        toolchain_dir = None
        flavor = None
        if not vbmeta_only:
            toolchain_dir = _resolve_toolchain(
                settings, assume_yes=yes, interactive=not json_output
            )
            flavor = resolve_flavor(detect_branch(settings.source_dir))
            if not json_output:
                console.print(
                    f"Detected [bold]{flavor.name}[/bold] branch ({flavor.branch})"
                )

        build_config = BuildConfig.from_settings(
            settings,
            toolchain_dir=toolchain_dir,
            flavor=flavor,
            clean=clean,
            jobs=jobs,
        )
        report = run_pipeline(
            build_config,
            Toolbox.from_config(build_config),
            catalog,
            mode=batch_mode,
            vbmeta_only=vbmeta_only,
        )
    except RepackError as e:
        _print_error(e)
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(report.model_dump_json(indent=2), soft_wrap=True)
    else:
        console.print()
        console.print("[bold]Build Results:[/bold]")
        for r in report.results:
            if r.state is VariantState.PACKAGED:
                console.print(f"  [green]✓ {r.variant}[/green]")
                for a in r.artifacts:
                    console.print(f"      {a['filename']}")
            elif r.state is VariantState.SKIPPED:
                console.print(
                    f"[yellow]WARNING: {escape(r.error_message or '')}. "
                    f"Skipping {r.variant}.[/yellow]"
                )
            else:
                console.print(
                    f"[red]ERROR: {r.variant}: {escape(r.error_message or '')}[/red]"
                )
                if r.log_path:
                    console.print(f"      See log: {escape(r.log_path)}")
        console.print()
        console.print(f"  [green]Succeeded: {report.succeeded}[/green]")
        if report.skipped:
            console.print(f"  [yellow]Skipped: {report.skipped}[/yellow]")
        if report.failed:
            console.print(f"  [red]Failed: {report.failed}[/red]")
        if report.stopped_early:
            console.print("  [yellow]Stopped early (fail-fast mode)[/yellow]")

    if report.exit_code:
        raise typer.Exit(code=report.exit_code)

    if pack:
        try:
            _run_pack_module(settings, True, True, json_output)
        except RepackError as e:
            _print_error(e)
            raise typer.Exit(code=1) from None


@app.command("pack-module")
def pack_module_cmd(
    no_service: Annotated[
        bool,
        typer.Option("--no-service", help="Do not generate service.sh"),
    ] = False,
    no_camera_fix: Annotated[
        bool,
        typer.Option("--no-camera-fix", help="Leave camera libraries untouched"),
    ] = False,
    work_dir: WorkDirOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Pack the kernel modules of the latest build into a flashable zip."""
    settings = _load_settings(work_dir)
    try:
        _run_pack_module(
            settings,
            include_service=not no_service,
            include_camera_fix=not no_camera_fix,
            json_output=json_output,
        )
    except RepackError as e:
        _print_error(e)
        raise typer.Exit(code=1) from None


if __name__ == "__main__":
    app()
