"""Error taxonomy for mikernel_build.

Every error carries a human-readable message and a stable code for
structured handling. All of them are fatal: the CLI stops the whole run
on the first one it sees.
"""

from __future__ import annotations


class KernelBuildError(Exception):
    """Base class for fatal build pipeline errors."""

    def __init__(self, message: str, code: str = "kernel_build_error") -> None:
        """Initialize KernelBuildError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class UsageError(KernelBuildError):
    """Raised for missing or invalid command-line arguments."""

    def __init__(
        self,
        message: str,
        devices: list[str] | None = None,
        code: str = "usage_error",
    ) -> None:
        """Initialize UsageError.

        Args:
            message: Error description.
            devices: Valid device names to show alongside the usage text.
            code: Error code for structured error handling.
        """
        super().__init__(message, code=code)
        self.devices = devices or []


class BuildEnvironmentError(KernelBuildError):
    """Raised when the toolchain or compiler is unavailable."""

    def __init__(self, message: str, code: str = "environment_error") -> None:
        super().__init__(message, code=code)


class FetchError(KernelBuildError):
    """Raised when a required external source tree cannot be obtained."""

    def __init__(self, message: str, code: str = "fetch_error") -> None:
        super().__init__(message, code=code)


class BuildError(KernelBuildError):
    """Raised when the kernel build fails or produces no image."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


class PackageError(KernelBuildError):
    """Raised when the flashable zip cannot be produced."""

    def __init__(self, message: str, code: str = "package_error") -> None:
        super().__init__(message, code=code)


__all__ = [
    "BuildEnvironmentError",
    "BuildError",
    "FetchError",
    "KernelBuildError",
    "PackageError",
    "UsageError",
]
