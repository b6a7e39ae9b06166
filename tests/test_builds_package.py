"""Tests for AnyKernel3 packaging."""

import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from mikernel_build.builds.package import (
    concat_dtbs,
    create_zip,
    iter_package_files,
    list_packages,
    package_filename,
    package_variant,
    stage_kernel,
)
from mikernel_build.errors import PackageError
from mikernel_build.types import BuildRequest, Variant

NOW = datetime(2025, 10, 29, 11, 41, 46)


@pytest.fixture
def boot_dir(tmp_path: Path) -> Path:
    boot = tmp_path / "out" / "arch" / "arm64" / "boot"
    dts = boot / "dts" / "vendor" / "qcom"
    dts.mkdir(parents=True)
    (boot / "Image").write_bytes(b"IMAGE")
    (dts / "kona.dtb").write_bytes(b"AAA")
    (dts / "kona-v2.dtb").write_bytes(b"BBB")
    (dts / "kona.dts").write_text("not a blob")
    return boot


@pytest.fixture
def template(tmp_path: Path) -> Path:
    ak = tmp_path / "anykernel"
    (ak / ".git").mkdir(parents=True)
    (ak / ".git" / "HEAD").write_text("ref\n")
    (ak / ".gitignore").write_text("*.zip\n")
    (ak / "anykernel.sh").write_text("# script\n")
    (ak / "out").mkdir()
    (ak / "out" / "junk").write_text("x")
    (ak / "old.zip").write_bytes(b"PK")
    tools = ak / "tools"
    tools.mkdir()
    (tools / ".keep").write_text("")
    (tools / "busybox").write_bytes(b"bb")
    return ak


class TestConcatDtbs:
    """Tests for concat_dtbs function."""

    def test_concatenates_sorted_blobs(self, boot_dir: Path):
        dtb = concat_dtbs(boot_dir)
        assert dtb == boot_dir / "dtb"
        # kona-v2.dtb sorts before kona.dtb
        assert dtb.read_bytes() == b"BBBAAA"

    def test_no_blobs_creates_empty_file(self, tmp_path: Path):
        boot = tmp_path / "boot"
        boot.mkdir()
        dtb = concat_dtbs(boot)
        assert dtb.is_file()
        assert dtb.read_bytes() == b""

    def test_unwritable_dtb(self, boot_dir: Path):
        """A dtb path that cannot be written is a coded packaging error."""
        (boot_dir / "dtb").mkdir()

        with pytest.raises(PackageError) as exc_info:
            concat_dtbs(boot_dir)

        assert exc_info.value.code == "dtb_error"


class TestPackageFilename:
    """Tests for package_filename function."""

    def test_name_format(self):
        request = BuildRequest(device="alioth", kernelsu=True)
        name = package_filename(Variant.MIUI, request, "abcdef12", now=NOW)
        assert name == "Kernel_MIUI_alioth_SukiSU_20251029_114146_anykernel3_abcdef12.zip"

    def test_without_kernelsu(self):
        request = BuildRequest(device="lmi")
        name = package_filename(Variant.AOSP, request, "unknown", now=NOW)
        assert name.startswith("Kernel_AOSP_lmi_NoKernelSU_")
        assert name.endswith("_anykernel3_unknown.zip")


class TestStageKernel:
    """Tests for stage_kernel function."""

    def test_replaces_staging_dir(self, template: Path, boot_dir: Path):
        stale = template / "kernels" / "Image.old"
        stale.parent.mkdir()
        stale.write_text("old")
        dtb = concat_dtbs(boot_dir)

        staging = stage_kernel(template, boot_dir / "Image", dtb)

        assert sorted(p.name for p in staging.iterdir()) == ["Image", "dtb"]

    def test_missing_image(self, template: Path, tmp_path: Path):
        with pytest.raises(PackageError) as exc_info:
            stage_kernel(template, tmp_path / "Image", tmp_path / "dtb")
        assert exc_info.value.code == "stage_error"


class TestCreateZip:
    """Tests for create_zip and iter_package_files."""

    def test_exclusions(self, template: Path):
        entries = [p.as_posix() for p in iter_package_files(template)]
        assert entries == ["anykernel.sh", "tools", "tools/.keep", "tools/busybox"]

    def test_archive_contents(self, template: Path, tmp_path: Path):
        zip_path = template / "new.zip"
        count = create_zip(template, zip_path)

        assert count == 4
        with zipfile.ZipFile(zip_path) as zf:
            assert sorted(zf.namelist()) == [
                "anykernel.sh",
                "tools/",
                "tools/.keep",
                "tools/busybox",
            ]
            assert zf.getinfo("anykernel.sh").compress_type == zipfile.ZIP_DEFLATED

    def test_keeps_empty_directories(self, template: Path):
        """Empty template directories survive as directory entries."""
        (template / "modules" / "system").mkdir(parents=True)
        zip_path = template / "new.zip"

        create_zip(template, zip_path)

        with zipfile.ZipFile(zip_path) as zf:
            assert "modules/" in zf.namelist()
            assert zf.getinfo("modules/system/").is_dir()


class TestPackageVariant:
    """Tests for package_variant function."""

    def test_produces_zip(self, template: Path, boot_dir: Path, tmp_path: Path):
        artifacts = tmp_path / "artifacts"
        request = BuildRequest(device="alioth")

        artifact = package_variant(
            Variant.AOSP,
            request,
            template_dir=template,
            boot_dir=boot_dir,
            artifacts_dir=artifacts,
            revision="abcdef12",
            now=NOW,
        )

        expected = (
            artifacts / "Kernel_AOSP_alioth_NoKernelSU_20251029_114146_anykernel3_abcdef12.zip"
        )
        assert artifact.path == expected
        assert artifact.size_bytes == expected.stat().st_size
        assert not (template / expected.name).exists()
        with zipfile.ZipFile(expected) as zf:
            assert zf.read("kernels/Image") == b"IMAGE"
            assert zf.read("kernels/dtb") == b"BBBAAA"
            assert "old.zip" not in zf.namelist()

    def test_missing_image(self, template: Path, tmp_path: Path):
        with pytest.raises(PackageError) as exc_info:
            package_variant(
                Variant.AOSP,
                BuildRequest(device="alioth"),
                template_dir=template,
                boot_dir=tmp_path / "empty",
                artifacts_dir=tmp_path,
                revision="abcdef12",
            )
        assert exc_info.value.code == "image_missing"


class TestListPackages:
    """Tests for list_packages function."""

    def test_lists_zips(self, tmp_path: Path):
        (tmp_path / "b.zip").write_bytes(b"")
        (tmp_path / "a.zip").write_bytes(b"")
        (tmp_path / "notes.txt").write_text("")
        assert [p.name for p in list_packages(tmp_path)] == ["a.zip", "b.zip"]

    def test_missing_dir(self, tmp_path: Path):
        assert list_packages(tmp_path / "missing") == []
