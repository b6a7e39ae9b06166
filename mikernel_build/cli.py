"""Thin CLI wrapper for mikernel_build.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from mikernel_build import __version__
from mikernel_build.config import Settings, get_settings, print_settings_json
from mikernel_build.errors import KernelBuildError, UsageError
from mikernel_build.request import (
    format_usage,
    is_help_request,
    list_devices,
    parse_build_request,
)
from mikernel_build.types import BuildContext, BuildRequest

app = typer.Typer(
    name="mikernel",
    help="MiKernel Build - build and package SM8250 kernels for AOSP and MIUI",
    no_args_is_help=True,
)
console = Console()

BUILD_PROGRAM = "mikernel build"


def configure_logging(level: str) -> None:
    """Route log records through rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mikernel-build version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """MiKernel Build - build and package SM8250 kernels for AOSP and MIUI."""
    configure_logging(get_settings().log_level)


def _usage(settings: Settings) -> str:
    configs_dir = settings.configs_dir
    devices = list_devices(configs_dir) if configs_dir.is_dir() else None
    return format_usage(BUILD_PROGRAM, devices)


def _print_summary(request: BuildRequest, context: BuildContext) -> None:
    yes_no = {True: "yes", False: "no"}
    console.rule("[bold]Build configuration[/bold]")
    console.print(f"  Target device: [cyan]{request.device}[/cyan]")
    console.print(f"  KernelSU:      {'enabled' if request.kernelsu else 'disabled'}")
    console.print(f"  Build AOSP:    {yes_no[request.build_aosp]}")
    console.print(f"  Build MIUI:    {yes_no[request.build_miui]}")
    console.print(f"  Git commit:    {context.revision}")
    console.print(f"  Build dir:     {context.output_dir}")
    console.print(f"  Jobs:          {context.jobs}")


@app.command(
    "build",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
    add_help_option=False,
)
def build(
    tokens: Annotated[
        list[str] | None,
        typer.Argument(
            help="<device> [ksu] [--aosp|--miui] [--help|-h]",
            show_default=False,
        ),
    ] = None,
) -> None:
    """Build kernel(s) for a device and package them as flashable zips.

    Without --aosp or --miui both variants are built. Add `ksu` to
    integrate SukiSU and apply the KPM image patch.
    """
    from mikernel_build.builds.package import list_packages
    from mikernel_build.builds.service import format_duration, run_pipeline
    from mikernel_build.environment import configure_environment

    settings = get_settings()
    tokens = tokens or []

    if is_help_request(tokens):
        console.print(_usage(settings), markup=False, highlight=False)
        raise typer.Exit()

    try:
        request = parse_build_request(tokens, settings.configs_dir)
    except UsageError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        console.print(_usage(settings), markup=False, highlight=False)
        raise typer.Exit(code=1) from None

    try:
        context = configure_environment(settings, request.device)
        _print_summary(request, context)
        result = run_pipeline(
            request,
            context,
            settings,
            on_step=lambda title: console.rule(f"[green]{escape(title)}[/green]"),
        )
    except KernelBuildError as e:
        console.print(f"[red]Error ({e.code}): {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    console.rule("[green]Build complete[/green]")
    console.print(
        f"[green]✓ All kernel builds finished! "
        f"Total time: {format_duration(result.duration)}[/green]"
    )
    for variant_result in result.variants:
        patch = variant_result.image_patch
        if patch is not None and not patch.applied:
            console.print(
                f"[yellow]{variant_result.variant.value}: KPM patch not applied "
                f"({escape(patch.message or 'unknown reason')})[/yellow]"
            )

    packages = list_packages(context.artifacts_dir)
    if not packages:
        console.print("[blue]No flashable zips found[/blue]")
        return

    console.print("[bold]Flashable zips:[/bold]")
    for path in packages:
        size_mib = path.stat().st_size / (1024 * 1024)
        console.print(f"  {path.name}  ({size_mib:.1f} MiB)")


@app.command()
def devices() -> None:
    """List devices with a default configuration."""
    settings = get_settings()
    configs_dir = settings.configs_dir
    if not configs_dir.is_dir():
        console.print(f"[red]Configuration directory not found: {configs_dir}[/red]")
        raise typer.Exit(code=1)

    names = list_devices(configs_dir)
    if not names:
        console.print("[yellow]No device configurations found[/yellow]")
        return
    for name in names:
        console.print(f"  {name}")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(
            print_settings_json(settings), markup=False, highlight=False, soft_wrap=True
        )
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    output_dir = settings.output_dir or "(../build_<device>_<rev>)"
    artifacts_dir = settings.artifacts_dir or "(source directory)"
    console.print(f"  Output directory:    {output_dir}")
    console.print(f"  Artifacts directory: {artifacts_dir}")
    console.print(f"  Toolchain path:      {settings.toolchain_path}")
    console.print(f"  ccache directory:    {settings.ccache_dir}")
    console.print()
    console.print("[bold]Sources:[/bold]")
    console.print(f"  AnyKernel3 repo:     {settings.anykernel_repo}")
    console.print(f"  AnyKernel3 branch:   {settings.anykernel_branch}")
    console.print(f"  KernelSU setup:      {settings.kernelsu_setup_url}")
    console.print(f"  KPM patch:           {settings.kpm_patch_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Jobs:                {settings.jobs or '(CPU count)'}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout or '(none)'}")
