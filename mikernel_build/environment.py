"""Build environment resolution.

Turns Settings into an immutable BuildContext: validates the toolchain,
prepares ccache, captures the source revision and assembles the exact
environment every external command runs with.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

from mikernel_build.config import Settings
from mikernel_build.errors import BuildEnvironmentError
from mikernel_build.types import BuildContext

logger = logging.getLogger(__name__)

UNKNOWN_REVISION = "unknown"
REVISION_LENGTH = 8


def resolve_revision(source_dir: Path) -> str:
    """Return the abbreviated HEAD revision of the source tree.

    Never fails: returns "unknown" if git or repository metadata is missing.

    Args:
        source_dir: Kernel source tree.

    Returns:
        8-character revision or "unknown".
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", f"--short={REVISION_LENGTH}", "HEAD"],
            cwd=source_dir,
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("git rev-parse unavailable: %s", e)
        return UNKNOWN_REVISION

    revision = result.stdout.strip()
    if result.returncode != 0 or not revision:
        return UNKNOWN_REVISION
    return revision


def default_output_dir(source_dir: Path, device: str, revision: str) -> Path:
    """Out-of-tree build directory next to the source tree."""
    return source_dir.resolve().parent / f"build_{device}_{revision}"


def build_environment(
    settings: Settings,
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    """Assemble the environment for external commands.

    Args:
        settings: Application settings.
        base: Starting environment (default: os.environ).

    Returns:
        New environment mapping; the process environment is not modified.
    """
    env = dict(os.environ if base is None else base)
    path_parts = [
        str(settings.ccache_wrapper_dir),
        str(settings.toolchain_path / "bin"),
    ]
    if env.get("PATH"):
        path_parts.append(env["PATH"])
    env["PATH"] = os.pathsep.join(path_parts)
    env["CCACHE_DIR"] = str(settings.ccache_dir)
    env["CC"] = f"ccache {settings.compiler}"
    env["KBUILD_BUILD_VERSION"] = settings.build_version
    env["KBUILD_BUILD_USER"] = settings.build_user
    env["KBUILD_BUILD_HOST"] = settings.build_host
    env["KBUILD_BUILD_TIMESTAMP"] = settings.build_timestamp
    env["LOCALVERSION"] = settings.localversion
    return env


def configure_environment(settings: Settings, device: str) -> BuildContext:
    """Validate the toolchain and resolve the build context.

    Args:
        settings: Application settings.
        device: Target device name.

    Returns:
        BuildContext for the run.

    Raises:
        BuildEnvironmentError: If the toolchain or compiler is missing.
    """
    toolchain = settings.toolchain_path
    if not toolchain.is_dir():
        raise BuildEnvironmentError(
            f"Toolchain path does not exist: {toolchain}",
            code="toolchain_missing",
        )
    logger.info("Toolchain path: %s", toolchain)

    env = build_environment(settings)
    if shutil.which(settings.compiler, path=env["PATH"]) is None:
        raise BuildEnvironmentError(
            f"Compiler not found: {settings.compiler}",
            code="compiler_missing",
        )

    settings.ccache_dir.mkdir(parents=True, exist_ok=True)
    logger.info("ccache enabled: %s", settings.ccache_dir)

    source_dir = settings.source_dir.resolve()
    revision = resolve_revision(source_dir)
    # make runs with cwd=source_dir, so relative paths are anchored there
    if settings.output_dir:
        output_dir = (source_dir / settings.output_dir).resolve()
    else:
        output_dir = default_output_dir(source_dir, device, revision)
    if settings.artifacts_dir:
        artifacts_dir = (source_dir / settings.artifacts_dir).resolve()
    else:
        artifacts_dir = source_dir
    logger.info("Using build directory: %s", output_dir)

    return BuildContext(
        source_dir=source_dir,
        output_dir=output_dir,
        artifacts_dir=artifacts_dir,
        toolchain_path=toolchain,
        ccache_dir=settings.ccache_dir,
        revision=revision,
        jobs=settings.jobs or os.cpu_count() or 1,
        env=env,
    )


__all__ = [
    "UNKNOWN_REVISION",
    "build_environment",
    "configure_environment",
    "default_output_dir",
    "resolve_revision",
]
