"""Kernel build runner.

This module handles:
- Composing the make arguments for an out-of-tree arm64 clang build
- Applying the device defconfig and scripts/config directives
- Executing commands with subprocess, appending output to the build log
- Enforcing build timeouts and checking the produced Image
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from mikernel_build.builds.kconfig import compose_config_command, select_directives
from mikernel_build.errors import BuildError
from mikernel_build.types import BuildContext, BuildRequest, KernelBuildResult, Variant

logger = logging.getLogger(__name__)

ARCH = "arm64"
CROSS_COMPILE = "aarch64-linux-gnu-"
CROSS_COMPILE_ARM32 = "arm-linux-gnueabi-"
CLANG_TRIPLE = "aarch64-linux-gnu-"


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        command: The command that was executed.
        exit_code: Process exit code.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def run_logged(
    cmd: list[str],
    cwd: Path,
    env: Mapping[str, str] | None,
    log_path: Path,
    timeout: int | None = None,
) -> CommandResult:
    """Run a command, appending its output to a log file.

    Args:
        cmd: Command as list of strings.
        cwd: Working directory.
        env: Full environment for the child (None = inherit).
        log_path: Log file to append to.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        CommandResult with exit code and timing.

    Raises:
        BuildError: If the command cannot be started or times out.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    started_at = datetime.now(timezone.utc)

    try:
        with log_path.open("a") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=dict(env) if env is not None else None,
                check=False,
            )
            exit_code = result.returncode

    except subprocess.TimeoutExpired as e:
        message = f"Command timed out after {timeout} seconds: {cmd_str}"
        logger.error("%s. See log: %s", message, log_path)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise BuildError(message, exit_code=-1, code="build_timeout") from e

    except OSError as e:
        message = f"Failed to execute {cmd[0]}: {e}"
        logger.error(message)
        raise BuildError(message, code="execution_error") from e

    finished_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if exit_code != 0:
        logger.error("Command failed with exit code %d. See log: %s", exit_code, log_path)

    return CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        started_at=started_at,
        finished_at=finished_at,
    )


def compose_make_args(context: BuildContext, compiler: str = "clang") -> list[str]:
    """Compose the fixed make arguments for an arm64 clang build.

    Args:
        context: Build context (output dir, jobs).
        compiler: Compiler passed as CC.

    Returns:
        make arguments, without the leading "make" and without targets.
    """
    return [
        f"O={context.output_dir}",
        f"ARCH={ARCH}",
        f"SUBARCH={ARCH}",
        f"CC={compiler}",
        f"CROSS_COMPILE={CROSS_COMPILE}",
        f"CROSS_COMPILE_ARM32={CROSS_COMPILE_ARM32}",
        f"CROSS_COMPILE_COMPAT={CROSS_COMPILE_ARM32}",
        f"CLANG_TRIPLE={CLANG_TRIPLE}",
        f"-j{context.jobs}",
    ]


def compose_make_command(
    context: BuildContext,
    target: str | None = None,
) -> list[str]:
    """Compose a make command, optionally for a single target.

    Args:
        context: Build context.
        target: Make target such as "alioth_defconfig" (None = full build).

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = ["make", *compose_make_args(context)]
    if target:
        cmd.append(target)
    return cmd


def reset_output_dir(context: BuildContext) -> None:
    """Wipe and recreate the output directory and seed .version.

    Raises:
        BuildError: If the directory cannot be cleaned or created.
    """
    try:
        if context.output_dir.exists():
            logger.info("Cleaning build directory %s", context.output_dir)
            shutil.rmtree(context.output_dir)
        context.output_dir.mkdir(parents=True)
        (context.output_dir / ".version").write_text(
            context.env.get("KBUILD_BUILD_VERSION", "1") + "\n"
        )
    except OSError as e:
        raise BuildError(
            f"Failed to prepare build directory {context.output_dir}: {e}",
            code="output_dir_error",
        ) from e


def _check(result: CommandResult, what: str, log_path: Path) -> None:
    if not result.success:
        raise BuildError(
            f"{what} failed with exit code {result.exit_code}. See log: {log_path}",
            exit_code=result.exit_code,
            code="make_failed",
        )


def build_kernel(
    variant: Variant,
    request: BuildRequest,
    context: BuildContext,
    timeout: int | None = None,
) -> KernelBuildResult:
    """Configure and compile the kernel for one variant.

    Runs the device defconfig, the scripts/config directive groups for the
    variant, then the full build.

    Args:
        variant: Build variant.
        request: Parsed build request.
        context: Build context.
        timeout: Timeout per make invocation in seconds.

    Returns:
        KernelBuildResult pointing at the produced Image.

    Raises:
        BuildError: If any step fails or no Image is produced.
    """
    reset_output_dir(context)
    log_path = context.build_log

    defconfig = f"{request.device}_defconfig"
    logger.info("Applying %s", defconfig)
    result = run_logged(
        compose_make_command(context, defconfig),
        cwd=context.source_dir,
        env=context.env,
        log_path=log_path,
        timeout=timeout,
    )
    _check(result, defconfig, log_path)

    config_file = context.output_dir / ".config"
    for directives in select_directives(variant, request.kernelsu):
        logger.info("Applying %d configuration directive(s)", len(directives))
        result = run_logged(
            compose_config_command(context.source_dir, config_file, directives),
            cwd=context.source_dir,
            env=context.env,
            log_path=log_path,
        )
        _check(result, "scripts/config", log_path)

    logger.info("Compiling %s kernel with %d job(s)", variant.value, context.jobs)
    started_at = datetime.now(timezone.utc)
    result = run_logged(
        compose_make_command(context),
        cwd=context.source_dir,
        env=context.env,
        log_path=log_path,
        timeout=timeout,
    )
    finished_at = datetime.now(timezone.utc)
    _check(result, "Kernel build", log_path)

    if not context.image_path.is_file():
        raise BuildError(
            f"Kernel image not found: {context.image_path}",
            code="image_missing",
        )

    return KernelBuildResult(
        variant=variant,
        image_path=context.image_path,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = [
    "CommandResult",
    "build_kernel",
    "compose_make_args",
    "compose_make_command",
    "reset_output_dir",
    "run_logged",
]
