"""Build service module.

This module provides the high-level build API:
- run_pipeline(): Main entry point - every requested variant, fail-fast
- run_variant(): One variant from devicetree patch to flashable zip

See the module docstrings of devicetree, runner, patcher and package for
the individual steps.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from mikernel_build.builds.package import package_variant
from mikernel_build.builds.patcher import patch_image
from mikernel_build.builds.runner import build_kernel
from mikernel_build.config import Settings
from mikernel_build.devicetree import patched_devicetree
from mikernel_build.fetch import create_client
from mikernel_build.sources import prepare_anykernel, prepare_kernelsu
from mikernel_build.types import (
    BuildContext,
    BuildRequest,
    PipelineResult,
    Variant,
    VariantResult,
)

logger = logging.getLogger(__name__)

StepCallback = Callable[[str], None]


def format_duration(seconds: float) -> str:
    """Format a duration as minutes and seconds, e.g. "12m 5s"."""
    total = int(seconds)
    return f"{total // 60}m {total % 60}s"


def _step(on_step: StepCallback | None, title: str) -> None:
    logger.debug("Step: %s", title)
    if on_step is not None:
        on_step(title)


def run_variant(
    variant: Variant,
    request: BuildRequest,
    context: BuildContext,
    settings: Settings,
    client: httpx.Client,
    now: datetime | None = None,
    on_step: StepCallback | None = None,
) -> VariantResult:
    """Build and package one variant.

    For MIUI the devicetree stays patched from before the build until the
    package is written, and is restored even if a step fails.

    Args:
        variant: Build variant.
        request: Build request.
        context: Build context.
        settings: Application settings.
        client: HTTPX client for the KPM patch download.
        now: Timestamp for the package name.
        on_step: Optional progress callback receiving step titles.

    Returns:
        VariantResult for the run.

    Raises:
        KernelBuildError: On the first fatal failure.
    """
    is_miui = variant is Variant.MIUI
    if is_miui:
        _step(on_step, "Adjusting MIUI devicetree")

    with patched_devicetree(context.source_dir, enabled=is_miui) as dts_patched:
        _step(on_step, f"Building {variant.value} kernel")
        build = build_kernel(variant, request, context, timeout=settings.build_timeout)
        logger.info(
            "%s kernel compiled in %s", variant.value, format_duration(build.duration)
        )

        image_patch = None
        if request.kernelsu:
            _step(on_step, "Applying KPM patch")
            image_patch = patch_image(
                client,
                build.image_path,
                settings.kpm_patch_url,
                download_timeout=settings.download_timeout,
            )

        _step(on_step, f"Packaging {variant.value} image")
        template = prepare_anykernel(context, settings)
        artifact = package_variant(
            variant,
            request,
            template_dir=template,
            boot_dir=context.boot_dir,
            artifacts_dir=context.artifacts_dir,
            revision=context.revision,
            now=now,
        )

    return VariantResult(
        variant=variant,
        build=build,
        artifact=artifact,
        image_patch=image_patch,
        devicetree_patched=dts_patched,
    )


def run_pipeline(
    request: BuildRequest,
    context: BuildContext,
    settings: Settings,
    client: httpx.Client | None = None,
    now: datetime | None = None,
    on_step: StepCallback | None = None,
) -> PipelineResult:
    """Run every requested variant, AOSP before MIUI.

    Prepares the AnyKernel3 template and, when requested, the KernelSU tree
    first. The first fatal error aborts everything that follows.

    Args:
        request: Build request.
        context: Build context.
        settings: Application settings.
        client: HTTPX client (a redirect-following one is created if None).
        now: Timestamp for package names.
        on_step: Optional progress callback receiving step titles.

    Returns:
        PipelineResult with one entry per variant.

    Raises:
        KernelBuildError: On the first fatal failure.
    """
    if client is None:
        with create_client() as own_client:
            return run_pipeline(request, context, settings, own_client, now, on_step)

    started_at = datetime.now(timezone.utc)
    results: list[VariantResult] = []

    _step(on_step, "Preparing AnyKernel3")
    prepare_anykernel(context, settings)

    if request.kernelsu:
        _step(on_step, "Setting up KernelSU")
        prepare_kernelsu(client, context, settings)

    for variant in request.variants:
        results.append(
            run_variant(variant, request, context, settings, client, now, on_step)
        )

    finished_at = datetime.now(timezone.utc)
    logger.info(
        "All builds finished in %s",
        format_duration((finished_at - started_at).total_seconds()),
    )
    return PipelineResult(
        request=request,
        revision=context.revision,
        started_at=started_at,
        finished_at=finished_at,
        variants=results,
    )


__all__ = [
    "format_duration",
    "run_pipeline",
    "run_variant",
]
