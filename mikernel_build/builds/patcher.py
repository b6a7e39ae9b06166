"""KPM image patching for SukiSU builds.

The upstream patch_linux tool is run inside the boot directory. It reads
`Image` and writes `oImage`. Every failure here is downgraded to a warning:
the unpatched image is still a bootable kernel.
"""

from __future__ import annotations

import logging
import shutil
import stat
import subprocess
from pathlib import Path

import httpx

from mikernel_build.fetch import DownloadError, download_file
from mikernel_build.types import ImagePatchResult

logger = logging.getLogger(__name__)

PATCH_TOOL_NAME = "patch"
PATCHED_IMAGE_NAME = "oImage"
BACKUP_SUFFIX = ".orig"
PATCH_TIMEOUT = 300


def _keep_original(image_path: Path, message: str) -> ImagePatchResult:
    logger.warning("%s, using original image", message)
    return ImagePatchResult(applied=False, image_path=image_path, message=message)


def patch_image(
    client: httpx.Client,
    image_path: Path,
    url: str,
    download_timeout: float = 300,
) -> ImagePatchResult:
    """Download and apply the KPM patch to a kernel image.

    On success the original image is kept next to it with an .orig suffix
    and the patched output takes its place.

    Args:
        client: HTTPX client instance.
        image_path: Compiled kernel Image.
        url: patch_linux download URL.
        download_timeout: Download timeout in seconds.

    Returns:
        ImagePatchResult describing what happened.
    """
    boot_dir = image_path.parent
    tool = boot_dir / PATCH_TOOL_NAME
    patched = boot_dir / PATCHED_IMAGE_NAME

    try:
        download_file(client, url, tool, timeout=download_timeout)
    except DownloadError as e:
        return _keep_original(image_path, f"Could not download KPM patch tool ({e.code})")

    try:
        try:
            tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            return _keep_original(image_path, f"KPM patch tool not executable: {e}")
        try:
            result = subprocess.run(
                [str(tool)],
                cwd=boot_dir,
                capture_output=True,
                text=True,
                timeout=PATCH_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return _keep_original(image_path, f"KPM patch could not run: {e}")

        if result.returncode != 0:
            logger.debug("patch output: %s", result.stdout + result.stderr)
            return _keep_original(
                image_path, f"KPM patch failed with exit code {result.returncode}"
            )
        if not patched.is_file():
            return _keep_original(image_path, f"KPM patch produced no {PATCHED_IMAGE_NAME}")

        backup = image_path.with_name(image_path.name + BACKUP_SUFFIX)
        try:
            shutil.move(str(image_path), str(backup))
            shutil.move(str(patched), str(image_path))
        except OSError as e:
            if backup.is_file() and not image_path.exists():
                shutil.move(str(backup), str(image_path))
            return _keep_original(image_path, f"Could not replace image: {e}")
    finally:
        tool.unlink(missing_ok=True)

    logger.info("KPM patch applied (original kept as %s)", backup.name)
    return ImagePatchResult(applied=True, image_path=image_path, backup_path=backup)


__all__ = [
    "BACKUP_SUFFIX",
    "PATCHED_IMAGE_NAME",
    "PATCH_TOOL_NAME",
    "patch_image",
]
