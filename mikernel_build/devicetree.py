"""MIUI devicetree adjustments.

The MIUI variant needs a handful of panel tweaks in the Qualcomm vendor
devicetree sources. They are applied as plain-text global replacements
(no dts parsing), to a backup-protected copy of the live directory, and
undone after the build.

The backup directory is the only record of a pending restore: at most one
may exist, and if it does the live tree is considered patched.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mikernel_build.errors import BuildError
from mikernel_build.types import DevicetreeState

logger = logging.getLogger(__name__)

DTS_SUBDIR = Path("arch") / "arm64" / "boot" / "dts" / "vendor" / "qcom"
BACKUP_DIRNAME = ".dts.bak"


@dataclass(frozen=True)
class Substitution:
    """Replace every occurrence of `old` with `new` in matching files.

    Attributes:
        old: Exact text to find.
        new: Replacement text.
        targets: Glob patterns relative to the devicetree directory.
        group: Label used in log output.
    """

    old: str
    new: str
    targets: tuple[str, ...]
    group: str = ""


def _sub(old: str, new: str, *targets: str, group: str) -> Substitution:
    return Substitution(old=old, new=new, targets=targets, group=group)


def _uncomment(text: str, *targets: str, group: str) -> Substitution:
    return _sub(f"//{text}", text, *targets, group=group)


PANEL = "panel dimensions"
SMART_FPS = "smart fps"
REFRESH = "refresh rates"
BRIGHTNESS = "brightness"

# Physical panel size corrections (mm), smart-fps, refresh rates, DCS brightness
MIUI_SUBSTITUTIONS: tuple[Substitution, ...] = (
    _sub("<154>", "<1537>", "dsi-panel-j1s*", group=PANEL),
    _sub("<154>", "<1537>", "dsi-panel-j2*", group=PANEL),
    _sub("<155>", "<1544>", "dsi-panel-j3s-37-02-0a-dsc-video.dtsi", group=PANEL),
    _sub("<155>", "<1545>", "dsi-panel-j11-38-08-0a-fhd-cmd.dtsi", group=PANEL),
    _sub("<155>", "<1546>", "dsi-panel-k11a-38-08-0a-dsc-cmd.dtsi", group=PANEL),
    _sub("<155>", "<1546>", "dsi-panel-l11r-38-08-0a-dsc-cmd.dtsi", group=PANEL),
    _sub("<70>", "<695>", "dsi-panel-j11-38-08-0a-fhd-cmd.dtsi", group=PANEL),
    _sub("<70>", "<695>", "dsi-panel-j3s-37-02-0a-dsc-video.dtsi", group=PANEL),
    _sub("<70>", "<695>", "dsi-panel-k11a-38-08-0a-dsc-cmd.dtsi", group=PANEL),
    _sub("<70>", "<695>", "dsi-panel-l11r-38-08-0a-dsc-cmd.dtsi", group=PANEL),
    _sub("<71>", "<710>", "dsi-panel-j1s*", group=PANEL),
    _sub("<71>", "<710>", "dsi-panel-j2*", group=PANEL),
    _sub(
        "// mi,mdss-dsi-pan-enable-smart-fps",
        "mi,mdss-dsi-pan-enable-smart-fps",
        "dsi-panel*",
        group=SMART_FPS,
    ),
    _sub(
        "// mi,mdss-dsi-smart-fps-max_framerate",
        "mi,mdss-dsi-smart-fps-max_framerate",
        "dsi-panel*",
        group=SMART_FPS,
    ),
    _sub(
        "// qcom,mdss-dsi-pan-enable-smart-fps",
        "qcom,mdss-dsi-pan-enable-smart-fps",
        "dsi-panel*",
        group=SMART_FPS,
    ),
    _sub(
        "qcom,mdss-dsi-qsync-min-refresh-rate",
        "//qcom,mdss-dsi-qsync-min-refresh-rate",
        "dsi-panel*",
        group=SMART_FPS,
    ),
    _sub(
        "120 90 60",
        "120 90 60 50 30",
        "dsi-panel-g7a-36-02-0c-dsc-video.dtsi",
        "dsi-panel-g7a-37-02-0a-dsc-video.dtsi",
        "dsi-panel-g7a-37-02-0b-dsc-video.dtsi",
        group=REFRESH,
    ),
    _sub(
        "144 120 90 60",
        "144 120 90 60 50 48 30",
        "dsi-panel-j3s-37-02-0a-dsc-video.dtsi",
        group=REFRESH,
    ),
    _uncomment(
        "39 00 00 00 00 00 03 51 03 FF",
        "dsi-panel-j9-38-0a-0a-fhd-video.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 00 00 00 00 00 03 51 0D FF",
        "dsi-panel-j2-p2-1-38-0c-0a-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 00 00 00 00 00 05 51 0F 8F 00 00",
        "dsi-panel-j1s-42-02-0a-dsc-cmd.dtsi",
        "dsi-panel-j1s-42-02-0a-mp-dsc-cmd.dtsi",
        "dsi-panel-j2-mp-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-p2-1-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2s-mp-42-02-0a-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 00 00 03 51 00 00",
        "dsi-panel-j2-38-0c-0a-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 00 00 03 51 03 FF",
        "dsi-panel-j11-38-08-0a-fhd-cmd.dtsi",
        "dsi-panel-j9-38-0a-0a-fhd-video.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 00 00 03 51 07 FF",
        "dsi-panel-j1u-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-p1-42-02-0b-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 00 00 03 51 0F FF",
        "dsi-panel-j1u-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-p1-42-02-0b-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 00 00 05 51 07 FF 00 00",
        "dsi-panel-j1s-42-02-0a-dsc-cmd.dtsi",
        "dsi-panel-j1s-42-02-0a-mp-dsc-cmd.dtsi",
        "dsi-panel-j2-mp-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2-p2-1-42-02-0b-dsc-cmd.dtsi",
        "dsi-panel-j2s-mp-42-02-0a-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 01 00 03 51 03 FF",
        "dsi-panel-j11-38-08-0a-fhd-cmd.dtsi",
        group=BRIGHTNESS,
    ),
    _uncomment(
        "39 01 00 00 11 00 03 51 03 FF",
        "dsi-panel-j2-p2-1-38-0c-0a-dsc-cmd.dtsi",
        group=BRIGHTNESS,
    ),
)


def resolve_targets(dts_dir: Path, patterns: Sequence[str]) -> list[Path]:
    """Expand glob patterns to existing files, without duplicates.

    Args:
        dts_dir: Devicetree directory.
        patterns: Glob patterns relative to dts_dir.

    Returns:
        Matching files in pattern order, each pattern's matches sorted.
    """
    seen: set[Path] = set()
    files: list[Path] = []
    for pattern in patterns:
        matches = sorted(p for p in dts_dir.glob(pattern) if p.is_file())
        if not matches:
            logger.debug("No devicetree file matches %s", pattern)
        for path in matches:
            if path not in seen:
                seen.add(path)
                files.append(path)
    return files


def apply_substitution(dts_dir: Path, substitution: Substitution) -> int:
    """Apply one substitution across its target files.

    Args:
        dts_dir: Devicetree directory.
        substitution: The replacement to apply.

    Returns:
        Number of files whose content changed.
    """
    old = substitution.old.encode("utf-8")
    new = substitution.new.encode("utf-8")
    changed = 0
    for path in resolve_targets(dts_dir, substitution.targets):
        content = path.read_bytes()
        if old not in content:
            continue
        path.write_bytes(content.replace(old, new))
        changed += 1
    return changed


def apply_substitutions(
    dts_dir: Path,
    table: Sequence[Substitution] = MIUI_SUBSTITUTIONS,
) -> int:
    """Apply a substitution table in order.

    Args:
        dts_dir: Devicetree directory.
        table: Ordered substitutions.

    Returns:
        Total number of file edits.
    """
    total = 0
    current_group = None
    for substitution in table:
        if substitution.group and substitution.group != current_group:
            current_group = substitution.group
            logger.info("Adjusting %s", current_group)
        total += apply_substitution(dts_dir, substitution)
    return total


class DevicetreePatcher:
    """Backup-protected patching of the live devicetree directory.

    States: UNMODIFIED -> patch() -> PATCHED -> restore() -> UNMODIFIED.
    """

    def __init__(self, dts_dir: Path, backup_dir: Path) -> None:
        self.dts_dir = dts_dir
        self.backup_dir = backup_dir

    @classmethod
    def for_source(cls, source_dir: Path) -> DevicetreePatcher:
        """Patcher for the vendor devicetree of a kernel source tree."""
        return cls(source_dir / DTS_SUBDIR, source_dir / BACKUP_DIRNAME)

    @property
    def state(self) -> DevicetreeState:
        if self.backup_dir.exists():
            return DevicetreeState.PATCHED
        return DevicetreeState.UNMODIFIED

    def patch(self, table: Sequence[Substitution] = MIUI_SUBSTITUTIONS) -> bool:
        """Back up the devicetree directory and apply the table.

        A backup left by an interrupted run is restored first.

        Args:
            table: Ordered substitutions.

        Returns:
            True if the tree was patched, False if the directory is missing.

        Raises:
            BuildError: If the backup or an edit fails. The live tree is
                left unmodified and no backup remains.
        """
        if self.state is DevicetreeState.PATCHED:
            logger.warning(
                "Found stale devicetree backup %s, restoring it first", self.backup_dir
            )
            self.restore()

        if not self.dts_dir.is_dir():
            logger.info("Devicetree directory %s not found, skipping", self.dts_dir)
            return False

        try:
            shutil.copytree(self.dts_dir, self.backup_dir, symlinks=True)
        except OSError as e:
            # A partial backup must never be mistaken for a pending restore
            shutil.rmtree(self.backup_dir, ignore_errors=True)
            raise BuildError(
                f"Failed to back up devicetree {self.dts_dir}: {e}",
                code="devicetree_error",
            ) from e

        try:
            edits = apply_substitutions(self.dts_dir, table)
        except OSError as e:
            self.restore()
            raise BuildError(
                f"Failed to adjust devicetree: {e}",
                code="devicetree_error",
            ) from e
        logger.info("MIUI devicetree adjusted (%d file edit(s))", edits)
        return True

    def restore(self) -> bool:
        """Put the backup back in place.

        Returns:
            True if a backup was restored.
        """
        if self.state is DevicetreeState.UNMODIFIED:
            return False
        if self.dts_dir.exists():
            shutil.rmtree(self.dts_dir)
        shutil.move(str(self.backup_dir), str(self.dts_dir))
        logger.info("Devicetree restored")
        return True


@contextmanager
def patched_devicetree(
    source_dir: Path,
    enabled: bool = True,
    table: Sequence[Substitution] = MIUI_SUBSTITUTIONS,
) -> Iterator[bool]:
    """Keep the devicetree patched for the duration of the block.

    Restores on every exit path, including build failures.

    Args:
        source_dir: Kernel source tree.
        enabled: Whether to patch at all.
        table: Ordered substitutions.

    Yields:
        True if the tree is patched inside the block.
    """
    if not enabled:
        yield False
        return

    patcher = DevicetreePatcher.for_source(source_dir)
    try:
        yield patcher.patch(table)
    finally:
        patcher.restore()


__all__ = [
    "BACKUP_DIRNAME",
    "DTS_SUBDIR",
    "DevicetreePatcher",
    "MIUI_SUBSTITUTIONS",
    "Substitution",
    "apply_substitution",
    "apply_substitutions",
    "patched_devicetree",
    "resolve_targets",
]
