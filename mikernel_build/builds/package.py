"""AnyKernel3 packaging.

This module handles:
- Concatenating compiled devicetree blobs into a single dtb
- Staging Image and dtb into the template's kernels/ directory
- Naming and writing the flashable zip
- Listing produced packages
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from mikernel_build.errors import PackageError
from mikernel_build.types import BuildRequest, PackageArtifact, Variant

logger = logging.getLogger(__name__)

STAGING_DIRNAME = "kernels"
DTB_NAME = "dtb"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
PACKAGE_TAG = "anykernel3"

# Top-level template entries never shipped in the zip
EXCLUDED_DIRS = {"out"}
EXCLUDED_SUFFIXES = {".zip"}

COPY_CHUNK_SIZE = 1024 * 1024


def concat_dtbs(boot_dir: Path) -> Path:
    """Concatenate every compiled .dtb under boot/dts into boot/dtb.

    Args:
        boot_dir: The arch/arm64/boot directory of the build output.

    Returns:
        Path to the combined dtb (empty if no blobs were found).

    Raises:
        PackageError: If the dtb cannot be written.
    """
    dtb_path = boot_dir / DTB_NAME
    dts_dir = boot_dir / "dts"
    blobs = sorted(dts_dir.rglob("*.dtb")) if dts_dir.is_dir() else []
    logger.info("Generating dtb: %s", dtb_path)

    try:
        dtb_path.parent.mkdir(parents=True, exist_ok=True)
        with dtb_path.open("wb") as out:
            for blob in blobs:
                with blob.open("rb") as f:
                    shutil.copyfileobj(f, out, COPY_CHUNK_SIZE)
    except OSError as e:
        raise PackageError(
            f"Failed to write {dtb_path}: {e}",
            code="dtb_error",
        ) from e

    if not blobs:
        logger.warning("No dtb files found, created empty %s", dtb_path.name)
    else:
        logger.debug("Combined %d dtb file(s)", len(blobs))
    return dtb_path


def package_filename(
    variant: Variant,
    request: BuildRequest,
    revision: str,
    now: datetime | None = None,
) -> str:
    """Compose the flashable zip name.

    Format: Kernel_<variant>_<device>_<SukiSU|NoKernelSU>_<timestamp>_anykernel3_<rev>.zip

    Args:
        variant: Build variant.
        request: Build request (device, KernelSU flag).
        revision: Source revision.
        now: Timestamp (default: current local time).

    Returns:
        File name.
    """
    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return (
        f"Kernel_{variant.value}_{request.device}_{request.kernelsu_label}"
        f"_{timestamp}_{PACKAGE_TAG}_{revision}.zip"
    )


def stage_kernel(template_dir: Path, image_path: Path, dtb_path: Path) -> Path:
    """Recreate the staging directory and copy Image and dtb into it.

    Args:
        template_dir: AnyKernel3 template directory.
        image_path: Kernel image.
        dtb_path: Combined dtb.

    Returns:
        The staging directory.

    Raises:
        PackageError: If staging fails.
    """
    staging = template_dir / STAGING_DIRNAME
    try:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        shutil.copy2(image_path, staging / image_path.name)
        shutil.copy2(dtb_path, staging / dtb_path.name)
    except OSError as e:
        raise PackageError(
            f"Failed to stage kernel into {staging}: {e}",
            code="stage_error",
        ) from e
    return staging


def _is_excluded(rel_path: Path) -> bool:
    top = rel_path.parts[0]
    if top.startswith("."):
        return True
    if top in EXCLUDED_DIRS:
        return True
    return len(rel_path.parts) == 1 and rel_path.suffix in EXCLUDED_SUFFIXES


def iter_package_files(template_dir: Path) -> Iterator[Path]:
    """Yield files and directories to archive, relative to the template directory.

    Directories are yielded before their contents so the archive keeps
    directory entries, empty ones included. Top-level hidden entries
    (.git, .gitignore, ...), out/ and earlier zips are skipped; hidden files
    further down are kept.
    """
    for path in sorted(template_dir.rglob("*")):
        rel_path = path.relative_to(template_dir)
        if _is_excluded(rel_path):
            continue
        if path.is_file() or path.is_dir():
            yield rel_path


def create_zip(template_dir: Path, zip_path: Path) -> int:
    """Write the template directory into a deflated zip.

    Args:
        template_dir: AnyKernel3 template directory.
        zip_path: Output archive.

    Returns:
        Number of entries archived (files and directories).

    Raises:
        PackageError: If the archive cannot be written.
    """
    count = 0
    try:
        with zipfile.ZipFile(
            zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for rel_path in iter_package_files(template_dir):
                if template_dir / rel_path == zip_path:
                    continue
                zf.write(template_dir / rel_path, rel_path.as_posix())
                count += 1
    except (OSError, zipfile.BadZipFile) as e:
        zip_path.unlink(missing_ok=True)
        raise PackageError(
            f"Failed to create {zip_path.name}: {e}",
            code="zip_error",
        ) from e
    return count


def package_variant(
    variant: Variant,
    request: BuildRequest,
    template_dir: Path,
    boot_dir: Path,
    artifacts_dir: Path,
    revision: str,
    now: datetime | None = None,
) -> PackageArtifact:
    """Stage the build output and produce the flashable zip.

    Args:
        variant: Build variant.
        request: Build request.
        template_dir: AnyKernel3 template directory (must exist).
        boot_dir: The arch/arm64/boot directory of the build output.
        artifacts_dir: Where the finished zip is moved.
        revision: Source revision.
        now: Timestamp used in the name.

    Returns:
        PackageArtifact for the finished zip.

    Raises:
        PackageError: If staging or archiving fails.
    """
    image_path = boot_dir / "Image"
    if not image_path.is_file():
        raise PackageError(f"Kernel image not found: {image_path}", code="image_missing")

    dtb_path = concat_dtbs(boot_dir)
    stage_kernel(template_dir, image_path, dtb_path)

    filename = package_filename(variant, request, revision, now)
    logger.info("Creating flashable zip: %s", filename)
    zip_path = template_dir / filename
    create_zip(template_dir, zip_path)

    final_path = artifacts_dir / filename
    try:
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        if final_path.resolve() != zip_path.resolve():
            shutil.move(str(zip_path), str(final_path))
    except OSError as e:
        raise PackageError(
            f"Failed to move {filename} to {artifacts_dir}: {e}",
            code="move_error",
        ) from e

    logger.info("Flashable zip created: %s", final_path)
    return PackageArtifact(
        variant=variant,
        path=final_path,
        size_bytes=final_path.stat().st_size,
    )


def list_packages(artifacts_dir: Path) -> list[Path]:
    """Return all zips in the artifacts directory, sorted by name."""
    if not artifacts_dir.is_dir():
        return []
    return sorted(p for p in artifacts_dir.glob("*.zip") if p.is_file())


__all__ = [
    "DTB_NAME",
    "STAGING_DIRNAME",
    "concat_dtbs",
    "create_zip",
    "iter_package_files",
    "list_packages",
    "package_filename",
    "package_variant",
    "stage_kernel",
]
