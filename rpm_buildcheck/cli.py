"""Thin CLI wrapper for rpm_buildcheck.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from rpm_buildcheck import __version__
from rpm_buildcheck.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="buildcheck",
    help="RPM Build Check - build a container image for every RPM package",
    no_args_is_help=True,
)
console = Console()


def configure_logging(level: str) -> None:
    """Send library logs to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _print_plain(text: str) -> None:
    """Print machine-readable text without wrapping or markup."""
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def _effective_settings(**overrides: object) -> Settings:
    """Apply CLI flag overrides on top of env/default settings."""
    settings = get_settings()
    update = {k: v for k, v in overrides.items() if v is not None}
    if update:
        settings = settings.model_copy(update=update)
    return settings


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rpm-buildcheck version {__version__}")
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
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (overrides env)"),
    ] = None,
) -> None:
    """RPM Build Check - build a container image for every RPM package."""
    configure_logging((log_level or get_settings().log_level).upper())


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
        _print_plain(print_settings_json(settings))
        return

    cache_dir_display = (
        str(settings.cache_dir) if settings.cache_dir else "(new temp directory)"
    )
    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Container:[/bold]")
    console.print(f"  Base image:          {settings.base_image}")
    console.print(f"  Container tool:      {settings.container_tool}")
    console.print(f"  Image prefix:        {settings.image_prefix}")
    console.print(f"  Package cache path:  {settings.package_cache_path}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {cache_dir_display}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print(f"  Recipe name:         {settings.recipe_name}")
    console.print(f"  Build log:           {settings.log_name}")
    console.print(f"  Failure log:         {settings.failure_log_name}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Rebuild failures:    {settings.rebuild}")
    console.print(f"  Claim markers early: {settings.claim_markers_early}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Parallel builds:     {settings.parallel_builds}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout or 'none'}")
    console.print(f"  Slot timeout:        {settings.slot_timeout or 'none'}")


catalog_app = typer.Typer(help="Inspect the package catalog of the base image")
app.add_typer(catalog_app, name="catalog")


@catalog_app.command("list")
def catalog_list(
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Base container image to analyze"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the RPM packages available in the base image."""
    from rpm_buildcheck.builds.errors import BuildExecutionError
    from rpm_buildcheck.catalog.parser import CatalogParseError, list_packages

    settings = _effective_settings(base_image=image)
    try:
        with console.status("Listing available RPM packages", spinner="dots"):
            records = list_packages(settings)
    except (BuildExecutionError, CatalogParseError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_plain(json.dumps([asdict(r) for r in records], indent=2))
        return

    console.print(f"[bold]Found {len(records)} RPM packages[/bold]")
    for r in records:
        console.print(f"  {r.name}.{r.arch} {r.version} ({r.repository})")


recipes_app = typer.Typer(help="Write build recipes")
app.add_typer(recipes_app, name="recipes")


@recipes_app.command("generate")
def recipes_generate(
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Target directory (temp dir if omitted)"),
    ] = None,
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Base container image to analyze"),
    ] = None,
) -> None:
    """Write one Dockerfile per package available in the base image."""
    from rpm_buildcheck.builds.errors import BuildExecutionError
    from rpm_buildcheck.catalog.materializer import write_recipes
    from rpm_buildcheck.catalog.parser import CatalogParseError, list_packages

    settings = _effective_settings(base_image=image)
    try:
        with console.status("Listing available RPM packages", spinner="dots"):
            records = list_packages(settings)
        console.print(f"Found {len(records)} RPM packages")
        result = write_recipes(records, settings, base_dir=output)
    except (BuildExecutionError, CatalogParseError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(
        f"[green]Wrote {result.written} Dockerfiles to {result.base_dir}[/green]"
    )
    if result.skipped:
        console.print(f"[yellow]Skipped {result.skipped} duplicate(s)[/yellow]")


cache_app = typer.Typer(help="Manage the shared DNF cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("create")
def cache_create(
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", "-c", help="Cache directory to (re)populate"),
    ] = None,
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Base container image"),
    ] = None,
) -> None:
    """Create or refresh the shared DNF cache."""
    from rpm_buildcheck.builds.cache import provision_cache
    from rpm_buildcheck.builds.errors import FatalSetupError

    settings = _effective_settings(base_image=image, cache_dir=cache_dir)
    try:
        with console.status("Creating shared DNF cache", spinner="dots"):
            path = provision_cache(settings)
    except FatalSetupError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(
        f"[green]Created DNF cache directory: {path}[/green]", soft_wrap=True
    )


@app.command("build")
def build(
    root: Annotated[
        Path,
        typer.Argument(help="Build all Dockerfiles under this directory"),
    ],
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", "-r", help="Only rebuild previously failed builds"),
    ] = False,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Maximum number of parallel builds"),
    ] = None,
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Base container image"),
    ] = None,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", "-c", help="Reuse this DNF cache directory"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build every context under ROOT and list the failed ones.

    Exits non-zero only if the cache or the job list cannot be set up;
    individual build failures are reported, not fatal.
    """
    from rpm_buildcheck.builds.errors import FatalSetupError
    from rpm_buildcheck.builds.models import JobResult
    from rpm_buildcheck.builds.orchestrator import format_failure_summary, run_builds

    settings = _effective_settings(
        rebuild=rebuild or None,
        parallel_builds=jobs,
        base_image=image,
        cache_dir=cache_dir,
    )

    total = 0
    progress = Progress(
        TextColumn("Building"),
        BarColumn(bar_width=64),
        MofNCompleteColumn(),
        console=console,
        disable=json_output,
    )
    task_id = progress.add_task("build", total=None)
    status = console.status("Creating shared DNF cache", spinner="dots")

    def on_ready(cache_path: Path, contexts: list[Path]) -> None:
        nonlocal total
        status.stop()
        total = len(contexts)
        if not json_output:
            console.print(
                f"* Created DNF cache directory: {cache_path}", soft_wrap=True
            )
        progress.update(task_id, total=total)
        progress.start()

    def on_finished(result: JobResult) -> None:
        progress.advance(task_id)
        if json_output:
            return
        number = f"{result.sequence}/{total}" if result.sequence else f"-/{total}"
        if result.success:
            progress.console.print(
                f"{number} Building {result.context}: success", soft_wrap=True
            )
        else:
            progress.console.print(
                f"{number} Building {result.context}: [red]failed[/red]: see build log",
                soft_wrap=True,
            )

    status.start()
    try:
        report = run_builds(
            root, settings, on_job_finished=on_finished, on_ready=on_ready
        )
    except FatalSetupError as e:
        status.stop()
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        status.stop()
        if progress.live.is_started:
            progress.stop()

    if json_output:
        _print_plain(report.model_dump_json(indent=2))
        return

    console.print(
        f"[bold]{report.succeeded} succeeded, {report.failed} failed "
        f"of {report.total} build(s)[/bold]"
    )
    summary = format_failure_summary(report)
    if summary:
        _print_plain(summary)


__all__ = ["app", "configure_logging"]
