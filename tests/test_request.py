"""Tests for command-line token parsing."""

import itertools
import logging
from pathlib import Path

import pytest

from mikernel_build.errors import UsageError
from mikernel_build.request import (
    format_usage,
    is_help_request,
    list_devices,
    parse_build_request,
)
from mikernel_build.types import Variant


VARIANT_FLAGS = ("ksu", "--aosp", "--miui")
FLAG_ORDERINGS = [
    ordering
    for size in range(len(VARIANT_FLAGS) + 1)
    for subset in itertools.combinations(VARIANT_FLAGS, size)
    for ordering in itertools.permutations(subset)
]


@pytest.fixture
def configs_dir(kernel_tree: Path) -> Path:
    return kernel_tree / "arch" / "arm64" / "configs"


class TestListDevices:
    """Tests for list_devices function."""

    def test_lists_sorted_devices(self, configs_dir: Path) -> None:
        """Should strip the _defconfig suffix and sort."""
        (configs_dir / "cmi_defconfig").write_text("")
        assert list_devices(configs_dir) == ["alioth", "cmi", "lmi"]

    def test_ignores_other_files(self, configs_dir: Path) -> None:
        """Files without the suffix should not be listed."""
        assert "README" not in list_devices(configs_dir)

    def test_missing_directory(self, tmp_path: Path) -> None:
        """A missing directory should yield an empty list."""
        assert list_devices(tmp_path / "nope") == []


class TestIsHelpRequest:
    """Tests for is_help_request function."""

    @pytest.mark.parametrize("flag", ["--help", "-h"])
    def test_help_flags(self, flag: str) -> None:
        assert is_help_request([flag]) is True

    def test_help_must_be_first(self) -> None:
        """Help is only recognized in device position."""
        assert is_help_request(["alioth", "--help"]) is False

    def test_empty(self) -> None:
        assert is_help_request([]) is False


class TestParseBuildRequest:
    """Tests for parse_build_request function."""

    def test_device_only_builds_both(self, configs_dir: Path) -> None:
        """No variant flag should select both variants."""
        request = parse_build_request(["alioth"], configs_dir)
        assert request.device == "alioth"
        assert request.kernelsu is False
        assert request.variants == [Variant.AOSP, Variant.MIUI]

    def test_ksu_flag(self, configs_dir: Path) -> None:
        """The ksu token should enable KernelSU."""
        request = parse_build_request(["alioth", "ksu"], configs_dir)
        assert request.kernelsu is True

    def test_aosp_only(self, configs_dir: Path) -> None:
        request = parse_build_request(["alioth", "--aosp"], configs_dir)
        assert request.variants == [Variant.AOSP]

    def test_miui_only_with_ksu(self, configs_dir: Path) -> None:
        """Flags may appear in any order."""
        request = parse_build_request(["lmi", "--miui", "ksu"], configs_dir)
        assert request.kernelsu is True
        assert request.variants == [Variant.MIUI]

    def test_both_flags(self, configs_dir: Path) -> None:
        """Giving both variant flags is the same as giving neither."""
        request = parse_build_request(["alioth", "--miui", "--aosp"], configs_dir)
        assert request.variants == [Variant.AOSP, Variant.MIUI]

    @pytest.mark.parametrize("flags", FLAG_ORDERINGS, ids=lambda f: " ".join(f) or "none")
    def test_flag_order_is_irrelevant(self, configs_dir: Path, flags: tuple[str, ...]) -> None:
        """Every ordering of a flag subset yields the same request."""
        request = parse_build_request(["alioth", *flags], configs_dir)

        assert request == parse_build_request(["alioth", *sorted(flags)], configs_dir)
        no_variant = "--aosp" not in flags and "--miui" not in flags
        assert request.kernelsu == ("ksu" in flags)
        assert request.build_aosp == ("--aosp" in flags or no_variant)
        assert request.build_miui == ("--miui" in flags or no_variant)

    def test_flags_are_case_sensitive(self, configs_dir: Path) -> None:
        """KSU in upper case is not the ksu flag."""
        request = parse_build_request(["alioth", "KSU"], configs_dir)
        assert request.kernelsu is False

    def test_unknown_token_ignored_with_warning(
        self, configs_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Unknown options should be warned about, not rejected."""
        with caplog.at_level(logging.WARNING):
            request = parse_build_request(["alioth", "--fast"], configs_dir)
        assert request.device == "alioth"
        assert "--fast" in caplog.text

    def test_no_tokens(self, configs_dir: Path) -> None:
        """Missing device should raise a usage error listing devices."""
        with pytest.raises(UsageError) as exc_info:
            parse_build_request([], configs_dir)
        assert exc_info.value.code == "missing_device"
        assert exc_info.value.devices == ["alioth", "lmi"]

    def test_empty_device(self, configs_dir: Path) -> None:
        with pytest.raises(UsageError) as exc_info:
            parse_build_request(["", "ksu"], configs_dir)
        assert exc_info.value.code == "missing_device"

    def test_unknown_device(self, configs_dir: Path) -> None:
        """A device without defconfig should be rejected."""
        with pytest.raises(UsageError) as exc_info:
            parse_build_request(["umi"], configs_dir)
        assert exc_info.value.code == "unknown_device"
        assert "umi" in str(exc_info.value)

    def test_missing_configs_dir(self, tmp_path: Path) -> None:
        """With no configs directory every device is unknown."""
        with pytest.raises(UsageError) as exc_info:
            parse_build_request(["alioth"], tmp_path / "missing")
        assert exc_info.value.devices == []


class TestFormatUsage:
    """Tests for format_usage function."""

    def test_lists_devices(self) -> None:
        text = format_usage("mikernel build", ["alioth", "lmi"])
        assert text.startswith("Usage: mikernel build <device> [ksu] [--aosp|--miui]")
        assert "Available devices:" in text
        assert "  alioth" in text
        assert "  lmi" in text

    def test_missing_directory(self) -> None:
        text = format_usage("mikernel build", None)
        assert "(configuration directory not found)" in text

    def test_no_devices(self) -> None:
        text = format_usage("mikernel build", [])
        assert "(none)" in text
