"""Shared type definitions for mikernel_build.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Variant(str, Enum):
    """Build flavor. Declaration order is the build order."""

    AOSP = "AOSP"
    MIUI = "MIUI"


class DevicetreeState(str, Enum):
    """State of the live devicetree source directory."""

    UNMODIFIED = "unmodified"
    PATCHED = "patched"


@dataclass(frozen=True)
class BuildRequest:
    """What the operator asked for on the command line."""

    device: str
    kernelsu: bool = False
    build_aosp: bool = True
    build_miui: bool = True

    def __post_init__(self) -> None:
        """Validate that at least one variant is selected."""
        if not self.device:
            raise ValueError("device must be provided")
        if not (self.build_aosp or self.build_miui):
            raise ValueError("at least one of build_aosp/build_miui must be set")

    @property
    def variants(self) -> list[Variant]:
        """Requested variants, AOSP before MIUI."""
        selected = {Variant.AOSP: self.build_aosp, Variant.MIUI: self.build_miui}
        return [v for v in Variant if selected[v]]

    @property
    def kernelsu_label(self) -> str:
        """Label used in package names."""
        return "SukiSU" if self.kernelsu else "NoKernelSU"


@dataclass(frozen=True)
class BuildContext:
    """Resolved, read-only inputs to every build step.

    Attributes:
        source_dir: Kernel source tree.
        output_dir: Out-of-tree build directory (O=).
        artifacts_dir: Directory where finished zips are collected.
        toolchain_path: Clang toolchain root.
        ccache_dir: Compiler cache directory.
        revision: Abbreviated source revision or "unknown".
        jobs: Parallel make jobs.
        env: Complete environment for external commands.
    """

    source_dir: Path
    output_dir: Path
    artifacts_dir: Path
    toolchain_path: Path
    ccache_dir: Path
    revision: str
    jobs: int
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def boot_dir(self) -> Path:
        """Directory holding the compiled Image and dtb."""
        return self.output_dir / "arch" / "arm64" / "boot"

    @property
    def image_path(self) -> Path:
        """Expected kernel image location after a successful build."""
        return self.boot_dir / "Image"

    @property
    def build_log(self) -> Path:
        """Log file receiving external command output."""
        return self.output_dir / "build.log"


@dataclass
class KernelBuildResult:
    """Result of compiling one variant."""

    variant: Variant
    image_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        """Wall-clock seconds spent in the build."""
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class ImagePatchResult:
    """Outcome of the KPM image patch. Failure is never fatal."""

    applied: bool
    image_path: Path
    backup_path: Path | None = None
    message: str | None = None


@dataclass
class PackageArtifact:
    """A finished flashable zip."""

    variant: Variant
    path: Path
    size_bytes: int

    @property
    def filename(self) -> str:
        """Archive file name."""
        return self.path.name


@dataclass
class VariantResult:
    """Everything one variant run produced."""

    variant: Variant
    build: KernelBuildResult
    artifact: PackageArtifact
    image_patch: ImagePatchResult | None = None
    devicetree_patched: bool = False


@dataclass
class PipelineResult:
    """Result of a full invocation."""

    request: BuildRequest
    revision: str
    started_at: datetime
    finished_at: datetime
    variants: list[VariantResult] = field(default_factory=list)

    @property
    def duration(self) -> float:
        """Total wall-clock seconds."""
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def artifacts(self) -> list[PackageArtifact]:
        """Produced archives in build order."""
        return [r.artifact for r in self.variants]


__all__ = [
    "BuildContext",
    "BuildRequest",
    "DevicetreeState",
    "ImagePatchResult",
    "KernelBuildResult",
    "PackageArtifact",
    "PipelineResult",
    "Variant",
    "VariantResult",
]
