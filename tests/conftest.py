"""Shared fixtures: a miniature kernel tree and fake external tools.

FakeTools stands in for subprocess.run and emulates just enough of make,
scripts/config, git, bash and the KPM patch tool for the pipeline to run
end to end inside tmp_path.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import patch

import pytest

from mikernel_build.devicetree import DTS_SUBDIR
from mikernel_build.types import BuildContext

J1S_PANEL = "dsi-panel-j1s-42-02-0a-dsc-cmd.dtsi"
J3S_PANEL = "dsi-panel-j3s-37-02-0a-dsc-video.dtsi"
G7A_PANEL = "dsi-panel-g7a-37-02-0a-dsc-video.dtsi"

PANEL_FILES = {
    J1S_PANEL: (
        "qcom,mdss-pan-physical-width-dimension = <71>;\n"
        "qcom,mdss-pan-physical-height-dimension = <154>;\n"
        "// mi,mdss-dsi-pan-enable-smart-fps;\n"
        "qcom,mdss-dsi-qsync-min-refresh-rate = <30>;\n"
        "//39 00 00 00 00 00 05 51 0F 8F 00 00\n"
    ),
    J3S_PANEL: (
        "qcom,mdss-pan-physical-width-dimension = <70>;\n"
        "qcom,mdss-pan-physical-height-dimension = <155>;\n"
        "mi,mdss-dsi-supported-fps = <144 120 90 60>;\n"
    ),
    G7A_PANEL: "qcom,dsi-supported-dfps-list = <120 90 60>;\n",
    "sm8250-camera.dtsi": "camera = <154>;\n",
}


def make_kernel_tree(root: Path, devices: tuple[str, ...] = ("alioth", "lmi")) -> Path:
    """Create a minimal kernel source tree."""
    configs = root / "arch" / "arm64" / "configs"
    configs.mkdir(parents=True)
    for device in devices:
        (configs / f"{device}_defconfig").write_text("CONFIG_ARM64=y\n")
    (configs / "README").write_text("not a defconfig\n")

    scripts = root / "scripts"
    scripts.mkdir()
    (scripts / "config").write_text("#!/bin/sh\n")

    dts = root / DTS_SUBDIR
    dts.mkdir(parents=True)
    for name, content in PANEL_FILES.items():
        (dts / name).write_text(content)
    return root


@pytest.fixture
def kernel_tree(tmp_path: Path) -> Path:
    """Kernel source tree with alioth and lmi defconfigs and panel dtsi files."""
    return make_kernel_tree(tmp_path / "kernel")


@pytest.fixture
def build_context(kernel_tree: Path, tmp_path: Path) -> BuildContext:
    """Build context rooted in the fixture kernel tree."""
    return BuildContext(
        source_dir=kernel_tree,
        output_dir=tmp_path / "build_alioth_abcdef12",
        artifacts_dir=kernel_tree,
        toolchain_path=tmp_path / "toolchain",
        ccache_dir=tmp_path / "ccache",
        revision="abcdef12",
        jobs=4,
        env={"PATH": "/usr/bin", "KBUILD_BUILD_VERSION": "1"},
    )


@pytest.fixture
def settings(kernel_tree: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Settings pointing at the fixture tree, isolated from the host env."""
    from mikernel_build.config import Settings

    monkeypatch.setenv("TOOLCHAIN_PATH", str(tmp_path / "toolchain"))
    monkeypatch.setenv("CCACHE_DIR", str(tmp_path / "ccache"))
    return Settings(
        source_dir=kernel_tree,
        output_dir=tmp_path / "build_alioth_abcdef12",
        artifacts_dir=kernel_tree,
        jobs=4,
    )


def _completed(cmd: list[str], returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


@dataclass
class FakeTools:
    """Recording replacement for subprocess.run."""

    produce_image: bool = True
    make_returncode: int = 0
    clone_returncode: int = 0
    setup_returncode: int = 0
    patch_returncode: int = 0
    patch_writes_output: bool = True
    revision: str | None = "abcdef12"
    calls: list[list[str]] = field(default_factory=list)
    dts_snapshots: list[str] = field(default_factory=list)
    setup_inputs: list[str] = field(default_factory=list)

    def commands(self, program: str) -> list[list[str]]:
        """Recorded calls whose executable name matches."""
        return [c for c in self.calls if Path(c[0]).name == program]

    def __call__(self, cmd, *args, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        program = Path(cmd[0]).name
        cwd = Path(kwargs.get("cwd") or ".")

        if program == "make":
            return self._make(cmd, cwd)
        if program == "config":
            return _completed(cmd)
        if program == "git":
            return self._git(cmd)
        if program == "bash":
            return self._bash(cmd, cwd, kwargs.get("input") or "")
        if program == "patch":
            return self._patch(cmd, cwd)
        raise AssertionError(f"unexpected command: {cmd}")

    def _make(self, cmd: list[str], cwd: Path):
        out_dir = Path(next(a for a in cmd if a.startswith("O="))[2:])
        if cmd[-1].endswith("_defconfig"):
            (out_dir / ".config").write_text("CONFIG_ARM64=y\n")
            return _completed(cmd, self.make_returncode)

        panel = cwd / DTS_SUBDIR / J1S_PANEL
        if panel.exists():
            self.dts_snapshots.append(panel.read_text())
        if self.make_returncode == 0 and self.produce_image:
            boot = out_dir / "arch" / "arm64" / "boot"
            dts = boot / "dts" / "vendor" / "qcom"
            dts.mkdir(parents=True)
            (boot / "Image").write_bytes(b"IMAGE")
            (dts / "kona.dtb").write_bytes(b"DTB1")
            (dts / "kona-v2.dtb").write_bytes(b"DTB2")
        return _completed(cmd, self.make_returncode)

    def _git(self, cmd: list[str]):
        if cmd[1] == "rev-parse":
            if self.revision is None:
                return _completed(cmd, 128, stderr="fatal: not a git repository")
            return _completed(cmd, stdout=f"{self.revision}\n")
        if cmd[1] == "clone":
            if self.clone_returncode != 0:
                return _completed(cmd, self.clone_returncode, stderr="fatal: unable to access")
            dest = Path(cmd[-1])
            (dest / ".git").mkdir(parents=True)
            (dest / ".git" / "HEAD").write_text("ref: refs/heads/kona\n")
            (dest / ".gitignore").write_text("*.zip\n")
            (dest / "anykernel.sh").write_text("# AnyKernel3 Ramdisk Mod Script\n")
            meta = dest / "META-INF" / "com" / "google" / "android"
            meta.mkdir(parents=True)
            (meta / "update-binary").write_text("#!/sbin/sh\n")
            return _completed(cmd)
        raise AssertionError(f"unexpected git command: {cmd}")

    def _bash(self, cmd: list[str], cwd: Path, script: str):
        self.setup_inputs.append(script)
        if self.setup_returncode != 0:
            return _completed(cmd, self.setup_returncode, stderr="setup failed")
        makefile = cwd / "KernelSU" / "kernel" / "Makefile"
        makefile.parent.mkdir(parents=True)
        makefile.write_text(
            "KSU_VERSION_API := 3.1.7\n"
            "KSU_VERSION_FULL := v3.x-unknown\n"
        )
        return _completed(cmd)

    def _patch(self, cmd: list[str], cwd: Path):
        if self.patch_returncode == 0 and self.patch_writes_output:
            (cwd / "oImage").write_bytes(b"PATCHED")
        return _completed(cmd, self.patch_returncode)


@pytest.fixture
def fake_tools():
    """Patch subprocess.run with FakeTools for the duration of a test."""
    tools = FakeTools()
    with patch("subprocess.run", side_effect=tools):
        yield tools
