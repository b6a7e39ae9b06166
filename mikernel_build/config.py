"""Configuration settings for mikernel_build.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

TOOLCHAIN_PATH and CCACHE_DIR are honoured without the MIKERNEL_ prefix so
existing build hosts keep working.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ANYKERNEL_REPO = "https://github.com/liyafe1997/AnyKernel3"
KERNELSU_SETUP_URL = (
    "https://raw.githubusercontent.com/ApartTUSITU/SukiSU-Ultra/main/kernel/setup.sh"
)
KPM_PATCH_URL = (
    "https://github.com/SukiSU-Ultra/SukiSU_KernelPatch_patch/releases/download/"
    "0.12.2/patch_linux"
)


def _default_toolchain_path() -> Path:
    """Return the default clang toolchain directory."""
    return Path.home() / "zyc-clang"


def _default_ccache_dir() -> Path:
    """Return the default compiler cache directory."""
    return Path.home() / ".cache" / "ccache_mikernel"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the MIKERNEL_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIKERNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Kernel source tree (where arch/arm64/configs lives)",
    )
    output_dir: Path | None = Field(
        default=None,
        description="Build output directory (default: ../build_<device>_<rev>)",
    )
    artifacts_dir: Path | None = Field(
        default=None,
        description="Where flashable zips are collected (default: source_dir)",
    )
    toolchain_path: Path = Field(
        default_factory=_default_toolchain_path,
        validation_alias=AliasChoices("MIKERNEL_TOOLCHAIN_PATH", "TOOLCHAIN_PATH"),
        description="Clang toolchain root (bin/ is prepended to PATH)",
    )
    ccache_dir: Path = Field(
        default_factory=_default_ccache_dir,
        validation_alias=AliasChoices("MIKERNEL_CCACHE_DIR", "CCACHE_DIR"),
        description="Compiler cache directory",
    )
    ccache_wrapper_dir: Path = Field(
        default=Path("/usr/lib/ccache"),
        description="Directory holding ccache compiler wrappers",
    )
    compiler: str = Field(default="clang", description="Compiler executable")

    # External sources
    anykernel_repo: str = Field(default=ANYKERNEL_REPO)
    anykernel_branch: str = Field(default="kona")
    anykernel_dirname: str = Field(
        default="anykernel",
        description="Template directory name inside source_dir",
    )
    kernelsu_setup_url: str = Field(default=KERNELSU_SETUP_URL)
    kernelsu_setup_arg: str = Field(
        default="ApartTUSITU",
        description="Argument passed to the KernelSU setup script",
    )
    kernelsu_version_tag: str = Field(
        default="且听风吟",
        description="Suffix written into KSU_VERSION_FULL",
    )
    kpm_patch_url: str = Field(default=KPM_PATCH_URL)

    # Build identity
    build_user: str = Field(default="xiaomi-builder")
    build_host: str = Field(default="xiaomi-build-server")
    build_timestamp: str = Field(default="Wed Oct 29 11:41:46 UTC 2025")
    build_version: str = Field(default="1")
    localversion: str = Field(default="-g92c089fc2d37")

    # Operational
    jobs: int | None = Field(
        default=None,
        ge=1,
        description="Parallel make jobs (uses CPU count if not set)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=300,
        ge=10,
        description="Timeout for script and patch tool downloads",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for each make invocation (None = no timeout)",
    )

    @property
    def configs_dir(self) -> Path:
        """Directory holding <device>_defconfig files."""
        return self.source_dir / "arch" / "arm64" / "configs"


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "ANYKERNEL_REPO",
    "KERNELSU_SETUP_URL",
    "KPM_PATCH_URL",
    "Settings",
    "get_settings",
    "print_settings_json",
]
