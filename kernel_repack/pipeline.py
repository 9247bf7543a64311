"""Multi-variant build orchestration.

This module drives every discovered variant through the pipeline states:

    DISCOVERED -> VALIDATED -> BUILT -> ASSEMBLED -> FOOTERED
        -> METADATA_REBUILT -> PACKAGED

A variant that is rejected during discovery, or whose input disappears
mid-run, ends as SKIPPED and the batch continues. Any other error ends the
variant as FAILED; in fail-fast mode the batch then stops. The process exit
decision is taken from the aggregated report, never mid-loop.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from kernel_repack.artifacts import discover_and_manifest
from kernel_repack.errors import RepackError, is_fatal
from kernel_repack.images.assembler import pack_boot, pack_dtbo, pack_vendor_boot
from kernel_repack.images.vbmeta import add_footers, make_vbmeta
from kernel_repack.kernel.compiler import (
    build_kernel,
    clean_source,
    compose_localversion,
    install_modules,
)
from kernel_repack.tools.avbtool import AvbTool
from kernel_repack.tools.magiskboot import MagiskBoot
from kernel_repack.types import BatchMode, BuildConfig, SkipReason, VariantState
from kernel_repack.variants.catalog import Catalog, VariantConfig
from kernel_repack.variants.discovery import VariantCheck, discover_variants

logger = logging.getLogger(__name__)

BUILD_LOG_FILENAME = "build.log"


@dataclass
class Toolbox:
    """External image tools used by the pipeline."""

    avbtool: AvbTool
    magiskboot: MagiskBoot

    @classmethod
    def from_config(cls, config: BuildConfig) -> Toolbox:
        return cls(
            avbtool=AvbTool(config.avbtool_path),
            magiskboot=MagiskBoot(config.magiskboot_path),
        )


class VariantResult(BaseModel):
    """Final state of one variant."""

    model_config = ConfigDict(extra="forbid")

    variant: str
    state: VariantState = VariantState.DISCOVERED
    skip_reason: SkipReason | None = None
    error_code: str | None = None
    error_message: str | None = None
    log_path: str | None = None
    algorithm: str | None = None
    rollback_index: int | None = None
    artifacts: list[dict[str, Any]] = Field(default_factory=list)
    manifest_path: str | None = None

    @property
    def success(self) -> bool:
        return self.state is VariantState.PACKAGED


class PipelineReport(BaseModel):
    """Aggregated outcome of a pipeline run."""

    model_config = ConfigDict(extra="forbid")

    mode: BatchMode
    vbmeta_only: bool = False
    results: list[VariantResult] = Field(default_factory=list)
    stopped_early: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return len(self.results)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.state is VariantState.PACKAGED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.state is VariantState.SKIPPED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.state is VariantState.FAILED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def get(self, variant: str) -> VariantResult | None:
        """Return the result for a variant, if it was processed."""
        return next((r for r in self.results if r.variant == variant), None)


def _advance(result: VariantResult, state: VariantState) -> None:
    logger.debug("%s: %s -> %s", result.variant, result.state.value, state.value)
    result.state = state


def _skip(result: VariantResult, reason: SkipReason, message: str | None) -> None:
    _advance(result, VariantState.SKIPPED)
    result.skip_reason = reason
    result.error_message = message
    logger.warning("Skipping %s: %s", result.variant, message)


def _build_and_assemble(
    config: BuildConfig,
    tools: Toolbox,
    variant: VariantConfig,
    check: VariantCheck,
    result: VariantResult,
) -> None:
    variant_out = config.variant_output_dir(variant.name)
    variant_out.mkdir(parents=True, exist_ok=True)
    log_path = variant_out / BUILD_LOG_FILENAME
    result.log_path = str(log_path)

    build = build_kernel(config, variant, log_path)
    install_modules(config, variant, variant_out, log_path)
    _advance(result, VariantState.BUILT)

    pack_boot(
        check.firmware_dir,
        build.kernel_image,
        variant_out,
        magiskboot=tools.magiskboot,
        avbtool=tools.avbtool,
        staging_dir=config.staging_dir,
    )
    pack_vendor_boot(
        check.firmware_dir,
        build.dtb,
        variant.rp_revision,
        variant_out,
        magiskboot=tools.magiskboot,
        avbtool=tools.avbtool,
        staging_dir=config.staging_dir,
    )
    pack_dtbo(build.dtbo_image, variant_out)
    _advance(result, VariantState.ASSEMBLED)


def process_variant(
    config: BuildConfig,
    tools: Toolbox,
    check: VariantCheck,
    vbmeta_only: bool = False,
) -> VariantResult:
    """Run one discovered variant through the pipeline.

    Args:
        config: Build configuration.
        tools: Image tools.
        check: Discovery outcome for the variant.
        vbmeta_only: Skip compilation and assembly; re-footer the images
            already in the variant output directory.

    Returns:
        VariantResult in a terminal state (PACKAGED, SKIPPED or FAILED).
    """
    result = VariantResult(variant=check.name)
    variant = check.config
    if variant is None or check.skip_reason is not None:
        _skip(result, check.skip_reason or SkipReason.UNKNOWN_VARIANT, check.message)
        return result

    _advance(result, VariantState.VALIDATED)
    logger.info("Processing %s", variant.name)

    variant_out = config.variant_output_dir(variant.name)
    try:
        if vbmeta_only:
            logger.info("vbmeta-only: reusing images in %s", variant_out)
        else:
            _build_and_assemble(config, tools, variant, check, result)

        footers = add_footers(
            tools.avbtool, check.firmware_dir, variant_out, config.signing_key_path
        )
        result.algorithm = footers.info.algorithm
        result.rollback_index = footers.info.rollback_index
        _advance(result, VariantState.FOOTERED)

        make_vbmeta(tools.avbtool, footers, variant_out)
        _advance(result, VariantState.METADATA_REBUILT)

        build_inputs = {
            "defconfig": variant.defconfig,
            "rp_revision": variant.rp_revision,
            "flavor": config.flavor.name if config.flavor else None,
            "localversion": compose_localversion(config, variant),
            "algorithm": footers.info.algorithm,
            "rollback_index": footers.info.rollback_index,
            "vbmeta_only": vbmeta_only,
        }
        artifacts, manifest_path = discover_and_manifest(
            variant_out, variant.name, build_inputs=build_inputs
        )
        result.artifacts = [asdict(a) for a in artifacts]
        result.manifest_path = str(manifest_path)
        _advance(result, VariantState.PACKAGED)
    except RepackError as e:
        if not is_fatal(e):
            _skip(result, SkipReason.MISSING_FILES, str(e))
            return result
        _advance(result, VariantState.FAILED)
        result.error_code = e.code
        result.error_message = str(e)
        log_path = getattr(e, "log_path", None)
        if log_path:
            result.log_path = log_path
        logger.error("%s failed: %s", variant.name, e)
        return result

    logger.info("%s completed", variant.name)
    return result


def run_pipeline(
    config: BuildConfig,
    tools: Toolbox,
    catalog: Catalog,
    mode: BatchMode = BatchMode.FAIL_FAST,
    vbmeta_only: bool = False,
) -> PipelineReport:
    """Process every variant found under the firmware root.

    Args:
        config: Build configuration.
        tools: Image tools.
        catalog: Known variant configurations.
        mode: FAIL_FAST stops after the first failed variant,
            BEST_EFFORT continues with the rest.
        vbmeta_only: Only re-footer and rebuild vbmeta for existing outputs.

    Returns:
        PipelineReport with one result per processed variant.

    Raises:
        MissingInputError: If the firmware root is missing or empty.
    """
    checks = discover_variants(config.firmware_dir, catalog)

    if config.clean and not vbmeta_only:
        clean_source(config)

    report = PipelineReport(mode=mode, vbmeta_only=vbmeta_only)
    for check in checks:
        result = process_variant(config, tools, check, vbmeta_only=vbmeta_only)
        report.results.append(result)
        if result.state is VariantState.FAILED and mode is BatchMode.FAIL_FAST:
            remaining = len(checks) - len(report.results)
            if remaining:
                logger.info("Stopping after failure, %d variant(s) not run", remaining)
                report.stopped_early = True
            break

    logger.info(
        "Pipeline finished: %d succeeded, %d skipped, %d failed",
        report.succeeded,
        report.skipped,
        report.failed,
    )
    return report


__all__ = [
    "BUILD_LOG_FILENAME",
    "PipelineReport",
    "Toolbox",
    "VariantResult",
    "process_variant",
    "run_pipeline",
]
