"""Kernel configuration directives applied on top of the device defconfig.

Directives are handed to the kernel tree's scripts/config helper in the
order they are listed here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from mikernel_build.types import Variant

CONFIG_SCRIPT = Path("scripts") / "config"


class ConfigAction(str, Enum):
    """scripts/config operation."""

    ENABLE = "enable"
    DISABLE = "disable"
    SET_STR = "set-str"


@dataclass(frozen=True)
class ConfigDirective:
    """A single option edit."""

    action: ConfigAction
    name: str
    value: str | None = None

    def __post_init__(self) -> None:
        if self.action is ConfigAction.SET_STR and self.value is None:
            raise ValueError(f"set-str directive for {self.name} needs a value")

    def as_args(self) -> list[str]:
        """Render as scripts/config arguments."""
        if self.action is ConfigAction.ENABLE:
            return ["-e", self.name]
        if self.action is ConfigAction.DISABLE:
            return ["-d", self.name]
        return ["--set-str", self.name, str(self.value)]


def enable(name: str) -> ConfigDirective:
    return ConfigDirective(ConfigAction.ENABLE, name)


def disable(name: str) -> ConfigDirective:
    return ConfigDirective(ConfigAction.DISABLE, name)


def set_str(name: str, value: str) -> ConfigDirective:
    return ConfigDirective(ConfigAction.SET_STR, name, value)


# SukiSU with SUSFS and KPM
KERNELSU_OPTIONS: tuple[ConfigDirective, ...] = (
    enable("KSU"),
    enable("KSU_SUSFS_HAS_MAGIC_MOUNT"),
    enable("KSU_SUSFS"),
    enable("KSU_SUSFS_SUS_PATH"),
    enable("KSU_SUSFS_SUS_MOUNT"),
    enable("KSU_SUSFS_AUTO_ADD_SUS_KSU_DEFAULT_MOUNT"),
    enable("KSU_SUSFS_AUTO_ADD_SUS_BIND_MOUNT"),
    enable("KSU_SUSFS_SUS_KSTAT"),
    enable("KSU_SUSFS_TRY_UMOUNT"),
    enable("KSU_SUSFS_AUTO_ADD_TRY_UMOUNT_FOR_BIND_MOUNT"),
    enable("KSU_SUSFS_SPOOF_UNAME"),
    enable("KSU_SUSFS_ENABLE_LOG"),
    enable("KSU_SUSFS_HIDE_KSU_SUSFS_SYMBOLS"),
    enable("KSU_SUSFS_SPOOF_CMDLINE_OR_BOOTCONFIG"),
    enable("KSU_SUSFS_OPEN_REDIRECT"),
    enable("KSU_SUSFS_SUS_MAP"),
    enable("KPM"),
)

KERNELSU_DISABLED: tuple[ConfigDirective, ...] = (disable("KSU"),)

# Vendor features the MIUI/HyperOS userspace expects
MIUI_OPTIONS: tuple[ConfigDirective, ...] = (
    set_str("STATIC_USERMODEHELPER_PATH", "/system/bin/micd"),
    enable("PERF_CRITICAL_RT_TASK"),
    enable("SF_BINDER"),
    enable("OVERLAY_FS"),
    disable("DEBUG_FS"),
    enable("MIGT"),
    enable("MIGT_ENERGY_MODEL"),
    enable("MIHW"),
    enable("PACKAGE_RUNTIME_INFO"),
    enable("BINDER_OPT"),
    enable("KPERFEVENTS"),
    enable("MILLET"),
    enable("PERF_HUMANTASK"),
    disable("LTO_CLANG"),
    disable("LOCALVERSION_AUTO"),
    enable("XIAOMI_MIUI"),
    disable("MI_MEMORY_SYSFS"),
    enable("TASK_DELAY_ACCT"),
    enable("MIUI_ZRAM_MEMORY_TRACKING"),
    disable("CONFIG_MODULE_SIG_SHA512"),
    disable("CONFIG_MODULE_SIG_HASH"),
    enable("MI_FRAGMENTION"),
    enable("PERF_HELPER"),
    enable("BOOTUP_RECLAIM"),
    enable("MI_RECLAIM"),
    enable("RTMM"),
)


def select_directives(variant: Variant, kernelsu: bool) -> list[list[ConfigDirective]]:
    """Select directive groups for a variant.

    Each group is applied by a separate scripts/config invocation.

    Args:
        variant: Build variant.
        kernelsu: Whether KernelSU is requested.

    Returns:
        Ordered list of directive groups.
    """
    groups = [list(KERNELSU_OPTIONS if kernelsu else KERNELSU_DISABLED)]
    if variant is Variant.MIUI:
        groups.append(list(MIUI_OPTIONS))
    return groups


def compose_config_command(
    source_dir: Path,
    config_file: Path,
    directives: list[ConfigDirective],
) -> list[str]:
    """Compose a scripts/config command.

    Args:
        source_dir: Kernel source tree.
        config_file: The .config being edited.
        directives: Edits to apply, in order.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [str(source_dir / CONFIG_SCRIPT), "--file", str(config_file)]
    for directive in directives:
        cmd.extend(directive.as_args())
    return cmd


__all__ = [
    "CONFIG_SCRIPT",
    "ConfigAction",
    "ConfigDirective",
    "KERNELSU_DISABLED",
    "KERNELSU_OPTIONS",
    "MIUI_OPTIONS",
    "compose_config_command",
    "disable",
    "enable",
    "select_directives",
    "set_str",
]
