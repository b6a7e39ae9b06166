"""External source trees needed by the build.

This module provides:
- prepare_kernelsu(): Materialize the SukiSU tree via its setup script
- stamp_kernelsu_version(): Write the release string into the KernelSU Makefile
- prepare_anykernel(): Clone the AnyKernel3 packaging template

Both prepare steps are idempotent: an existing directory is reused as-is.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

import httpx

from mikernel_build.config import Settings
from mikernel_build.errors import FetchError
from mikernel_build.fetch import DownloadError, fetch_text, git_clone
from mikernel_build.types import BuildContext

logger = logging.getLogger(__name__)

KERNELSU_DIRNAME = "KernelSU"
KERNELSU_MAKEFILE = Path(KERNELSU_DIRNAME) / "kernel" / "Makefile"

_VERSION_API_RE = re.compile(
    r"KSU_VERSION_API[ \t]*:=[ \t]*(\S.*?)[ \t]*$", re.MULTILINE
)
_VERSION_FULL_RE = re.compile(r"KSU_VERSION_FULL :=.*")

SETUP_TIMEOUT = 600


def stamp_kernelsu_version(makefile: Path, tag: str) -> str | None:
    """Rewrite KSU_VERSION_FULL from KSU_VERSION_API.

    Args:
        makefile: KernelSU kernel/Makefile.
        tag: Suffix appended after the version.

    Returns:
        The API version that was stamped, or None if nothing was changed.
    """
    if not makefile.is_file():
        return None

    content = makefile.read_text(encoding="utf-8")
    match = _VERSION_API_RE.search(content)
    if not match or not match.group(1):
        logger.warning("KSU_VERSION_API not found in %s", makefile)
        return None

    version = match.group(1)
    replacement = f"KSU_VERSION_FULL := v{version}-{tag}"
    makefile.write_text(
        _VERSION_FULL_RE.sub(lambda _: replacement, content),
        encoding="utf-8",
    )
    logger.info("KernelSU version: v%s", version)
    return version


def prepare_kernelsu(
    client: httpx.Client,
    context: BuildContext,
    settings: Settings,
) -> Path:
    """Fetch the SukiSU source tree into the kernel tree.

    Downloads the upstream setup script and runs it with bash in the source
    directory. Skipped when the KernelSU directory already exists.

    Args:
        client: HTTPX client instance.
        context: Build context.
        settings: Application settings (setup URL, argument, version tag).

    Returns:
        Path to the KernelSU directory.

    Raises:
        FetchError: If the script cannot be fetched or fails.
    """
    ksu_dir = context.source_dir / KERNELSU_DIRNAME
    if ksu_dir.is_dir():
        logger.info("Using existing KernelSU directory %s", ksu_dir)
        return ksu_dir

    try:
        script = fetch_text(
            client, settings.kernelsu_setup_url, timeout=settings.download_timeout
        )
    except DownloadError as e:
        raise FetchError(
            f"Could not download KernelSU setup script: {e}",
            code="kernelsu_download_failed",
        ) from e

    cmd = ["bash", "-s", settings.kernelsu_setup_arg]
    logger.info("Running KernelSU setup (%s)", settings.kernelsu_setup_arg)
    try:
        result = subprocess.run(
            cmd,
            input=script,
            cwd=context.source_dir,
            env=dict(context.env),
            capture_output=True,
            text=True,
            timeout=SETUP_TIMEOUT,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise FetchError(
            f"KernelSU setup timed out after {SETUP_TIMEOUT}s",
            code="kernelsu_setup_timeout",
        ) from e
    except OSError as e:
        raise FetchError(
            f"Failed to run KernelSU setup: {e}",
            code="execution_error",
        ) from e

    if result.returncode != 0:
        raise FetchError(
            f"KernelSU setup failed with exit code {result.returncode}: "
            f"{result.stderr.strip()}",
            code="kernelsu_setup_failed",
        )

    stamp_kernelsu_version(
        context.source_dir / KERNELSU_MAKEFILE, settings.kernelsu_version_tag
    )
    logger.info("KernelSU setup complete")
    return ksu_dir


def anykernel_dir(context: BuildContext, settings: Settings) -> Path:
    """Location of the packaging template."""
    return context.source_dir / settings.anykernel_dirname


def prepare_anykernel(context: BuildContext, settings: Settings) -> Path:
    """Ensure the AnyKernel3 template is present.

    Args:
        context: Build context.
        settings: Application settings (repository and branch).

    Returns:
        Path to the template directory.

    Raises:
        FetchError: If the clone fails.
    """
    template = anykernel_dir(context, settings)
    if template.is_dir():
        logger.info("Using existing AnyKernel3 directory %s", template)
        return template

    git_clone(settings.anykernel_repo, template, branch=settings.anykernel_branch, depth=1)
    logger.info("AnyKernel3 downloaded")
    return template


__all__ = [
    "KERNELSU_DIRNAME",
    "KERNELSU_MAKEFILE",
    "anykernel_dir",
    "prepare_anykernel",
    "prepare_kernelsu",
    "stamp_kernelsu_version",
]
