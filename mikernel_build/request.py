"""Command-line token parsing into a BuildRequest.

The first token names the device; the rest are flags matched by exact
string equality, in any order. Unknown tokens are logged and ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from mikernel_build.errors import UsageError
from mikernel_build.types import BuildRequest

logger = logging.getLogger(__name__)

DEFCONFIG_SUFFIX = "_defconfig"
HELP_FLAGS = ("--help", "-h")

KERNELSU_FLAG = "ksu"
AOSP_FLAG = "--aosp"
MIUI_FLAG = "--miui"


def list_devices(configs_dir: Path) -> list[str]:
    """List device names that have a default configuration.

    Args:
        configs_dir: Directory containing <device>_defconfig files.

    Returns:
        Sorted device names, empty if the directory does not exist.
    """
    if not configs_dir.is_dir():
        return []
    return sorted(
        p.name.removesuffix(DEFCONFIG_SUFFIX)
        for p in configs_dir.glob(f"*{DEFCONFIG_SUFFIX}")
        if p.is_file()
    )


def is_help_request(tokens: Sequence[str]) -> bool:
    """Return True if the first token asks for help."""
    return bool(tokens) and tokens[0] in HELP_FLAGS


def parse_build_request(tokens: Sequence[str], configs_dir: Path) -> BuildRequest:
    """Parse command-line tokens into a BuildRequest.

    Args:
        tokens: Raw tokens after the program/command name.
        configs_dir: Directory containing <device>_defconfig files.

    Returns:
        Validated BuildRequest.

    Raises:
        UsageError: If no device is given or it has no defconfig.
    """
    if not tokens:
        raise UsageError(
            "A target device is required",
            devices=list_devices(configs_dir),
            code="missing_device",
        )

    device, *flags = tokens
    kernelsu = False
    build_aosp = False
    build_miui = False

    for flag in flags:
        if flag == KERNELSU_FLAG:
            kernelsu = True
            logger.info("KernelSU support enabled")
        elif flag == AOSP_FLAG:
            build_aosp = True
            logger.info("Building AOSP variant")
        elif flag == MIUI_FLAG:
            build_miui = True
            logger.info("Building MIUI variant")
        else:
            logger.warning("Ignoring unknown option: %s", flag)

    if not build_aosp and not build_miui:
        build_aosp = build_miui = True
        logger.info("No variant given, building AOSP and MIUI")

    if not device:
        raise UsageError(
            "Target device must not be empty",
            devices=list_devices(configs_dir),
            code="missing_device",
        )

    if not (configs_dir / f"{device}{DEFCONFIG_SUFFIX}").is_file():
        raise UsageError(
            f"No configuration found for device [{device}]",
            devices=list_devices(configs_dir),
            code="unknown_device",
        )

    return BuildRequest(
        device=device,
        kernelsu=kernelsu,
        build_aosp=build_aosp,
        build_miui=build_miui,
    )


def format_usage(program: str, devices: Sequence[str] | None) -> str:
    """Render usage text with examples and the available devices.

    Args:
        program: Program invocation shown in the examples.
        devices: Device names, or None if the configs directory is missing.

    Returns:
        Multi-line usage string.
    """
    lines = [
        f"Usage: {program} <device> [ksu] [--aosp|--miui]",
        "Examples:",
        f"  {program} alioth              # build AOSP and MIUI",
        f"  {program} alioth ksu          # build with KernelSU",
        f"  {program} alioth --aosp       # build AOSP only",
        f"  {program} alioth ksu --miui   # build MIUI with KernelSU",
        "",
        "Available devices:",
    ]
    if devices is None:
        lines.append("  (configuration directory not found)")
    elif not devices:
        lines.append("  (none)")
    else:
        lines.extend(f"  {d}" for d in devices)
    return "\n".join(lines)


__all__ = [
    "DEFCONFIG_SUFFIX",
    "HELP_FLAGS",
    "format_usage",
    "is_help_request",
    "list_devices",
    "parse_build_request",
]
