"""Command-line interface for stitchgrid.

Provides commands for turning an image into a cross-stitch pattern,
matching a single color against the thread catalog, and searching the
catalog by name.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from stitchgrid.catalog import ReferenceCatalog, default_catalog
from stitchgrid.config import StitchGridConfig, load_config
from stitchgrid.errors import StitchGridError
from stitchgrid.grid import count_color_usage
from stitchgrid.image_io import load_buffer
from stitchgrid.logging import setup_logging
from stitchgrid.matcher import MatchCache, PaletteMatcher
from stitchgrid.models import Pattern, PixelBuffer, ProcessingSettings
from stitchgrid.observability import RunMetricsCollector, write_run_summary
from stitchgrid.pipeline import PatternPipeline, PipelineState
from stitchgrid.project import ProjectStore
from stitchgrid.renderer import format_chart_text, render_pattern
from stitchgrid.scheduling import ChunkPolicy

console = Console()
err_console = Console(stderr=True)

_STAGES = (
    PipelineState.QUANTIZING,
    PipelineState.MATCHING,
    PipelineState.RECOLORING,
    PipelineState.GRID_MAPPING,
)


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    if verbose:
        setup_logging(level=logging.DEBUG, verbose=True)
    else:
        setup_logging(level=logging.WARNING)


def _load_catalog(path: Path | None) -> ReferenceCatalog:
    return ReferenceCatalog.load(path) if path is not None else default_catalog()


def _fail(message: str) -> NoReturn:
    err_console.print(f"[bold red]✗[/] {escape(message)}")
    sys.exit(1)


@click.group()
@click.version_option(package_name="stitchgrid")
def main() -> None:
    """stitchgrid: turn images into counted cross-stitch patterns."""


@main.command()
@click.argument(
    "image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)
@click.option("--max-colors", "-k", type=int, help="Maximum thread colors (2-50)")
@click.option("--width", "-W", type=int, help="Grid width in stitches (10-500)")
@click.option("--height", "-H", type=int, help="Grid height in stitches (10-500)")
@click.option(
    "--fit-aspect",
    is_flag=True,
    help="Derive the grid size from the image aspect ratio",
)
@click.option(
    "--constrained",
    is_flag=True,
    help="Use small chunks and extra yields (low-power targets)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the rendered chart as PNG",
)
@click.option(
    "--chart",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the symbol chart and legend as text",
)
@click.option(
    "--project",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Save settings and palette to a project JSON file",
)
@click.option(
    "--metrics",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write run metrics as JSON",
)
@click.option("--colorless", is_flag=True, help="Render symbols on white")
@click.option("--verbose", "-v", is_flag=True, help="Enable detailed logging")
def generate(
    image: Path,
    config_path: Path | None,
    max_colors: int | None,
    width: int | None,
    height: int | None,
    fit_aspect: bool,
    constrained: bool,
    output: Path | None,
    chart: Path | None,
    project: Path | None,
    metrics: Path | None,
    colorless: bool,
    verbose: bool,
) -> None:
    """Generate a cross-stitch pattern from IMAGE.

    Example:

        \b
        stitchgrid generate photo.jpg --max-colors 12 --width 80 \\
            --fit-aspect --output chart.png --chart chart.txt
    """
    _setup_logging(verbose)

    try:
        config = load_config(config_path) if config_path else StitchGridConfig()
        overrides = {
            key: value
            for key, value in (
                ("max_colors", max_colors),
                ("grid_width", width),
                ("grid_height", height),
            )
            if value is not None
        }
        if colorless:
            overrides["colorless_mode"] = True
        settings = ProcessingSettings.create(
            **{**config.settings.model_dump(), **overrides}
        )

        with console.status("[bold blue]Loading image and catalog..."):
            buffer = load_buffer(image)
            catalog = _load_catalog(config.catalog_path)

        console.print(
            f"[bold green]✓[/] Loaded {image.name} ({buffer.width}×{buffer.height}), "
            f"{len(catalog)} reference colors"
        )

        policy = (
            ChunkPolicy.constrained()
            if constrained
            else config.pipeline.chunk_policy()
        )
        matcher = PaletteMatcher(
            catalog, cache=MatchCache(config.pipeline.match_cache_capacity)
        )
        collector = RunMetricsCollector()
        pattern = _run_generation(
            buffer, settings, matcher, policy, collector, fit_aspect
        )
        collector.finish()

        _print_summary(pattern)

        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            render_pattern(pattern, colorless=settings.colorless_mode).save(output)
            console.print(f"[bold green]✓[/] Chart image saved: {output}")
        if chart:
            chart.parent.mkdir(parents=True, exist_ok=True)
            chart.write_text(format_chart_text(pattern), encoding="utf-8")
            console.print(f"[bold green]✓[/] Symbol chart saved: {chart}")
        if project:
            ProjectStore(project).save(settings, pattern.palette)
            console.print(f"[bold green]✓[/] Project saved: {project}")
        if metrics:
            write_run_summary(metrics, collector.snapshot())
            console.print(f"[bold green]✓[/] Metrics saved: {metrics}")

    except (StitchGridError, FileNotFoundError) as e:
        _fail(f"Generation failed: {e}")
    except KeyboardInterrupt:
        err_console.print("\n[bold yellow]⚠[/] Generation interrupted by user")
        sys.exit(130)


def _run_generation(
    buffer: PixelBuffer,
    settings: ProcessingSettings,
    matcher: PaletteMatcher,
    policy: ChunkPolicy,
    collector: RunMetricsCollector,
    fit_aspect: bool,
) -> Pattern:
    """Run the pipeline with a live progress display."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        tasks: dict[str, TaskID] = {
            stage.value: progress.add_task(
                f"[cyan]{stage.value.replace('_', ' ').capitalize()}",
                total=1,
                start=False,
            )
            for stage in _STAGES
        }

        def progress_callback(stage_name: str, current: int, total: int) -> None:
            task = tasks.get(stage_name)
            if task is None:
                return
            if current == 0:
                progress.start_task(task)
            progress.update(task, completed=current, total=total)

        pipeline = PatternPipeline(
            matcher=matcher,
            policy=policy,
            progress_callback=progress_callback,
            metrics=collector,
        )
        return asyncio.run(pipeline.generate(buffer, settings, fit_to_aspect=fit_aspect))


def _print_summary(pattern: Pattern) -> None:
    usage = count_color_usage(pattern.cells)
    table = Table(title=f"Pattern {pattern.width}×{pattern.height}")
    table.add_column("Symbol", justify="center")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Hex")
    table.add_column("Stitches", justify="right")
    for entry in pattern.palette:
        table.add_row(
            entry.symbol,
            entry.id,
            entry.display_name,
            entry.hex,
            str(usage.get(entry.id, 0)),
        )
    console.print(table)


@main.command()
@click.argument("red", type=click.IntRange(0, 255))
@click.argument("green", type=click.IntRange(0, 255))
@click.argument("blue", type=click.IntRange(0, 255))
@click.option("--top", "-n", type=click.IntRange(min=1), default=5, show_default=True)
@click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Custom catalog JSON",
)
def match(red: int, green: int, blue: int, top: int, catalog_path: Path | None) -> None:
    """Show the catalog threads closest to RED GREEN BLUE."""
    try:
        matcher = PaletteMatcher(_load_catalog(catalog_path))
        ranked = matcher.top_n((red, green, blue), top)
    except StitchGridError as e:
        _fail(str(e))

    table = Table(title=f"Closest threads to ({red}, {green}, {blue})")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Hex")
    table.add_column("Distance", justify="right")
    for color, distance in ranked:
        table.add_row(color.id, color.display_name, color.hex, f"{distance:.2f}")
    console.print(table)


@main.command()
@click.argument("query")
@click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Custom catalog JSON",
)
def catalog(query: str, catalog_path: Path | None) -> None:
    """Search catalog thread names for QUERY."""
    try:
        results = _load_catalog(catalog_path).search(query)
    except StitchGridError as e:
        _fail(str(e))

    if not results:
        console.print(f"[bold yellow]⚠[/] No threads match {query!r}")
        return
    table = Table(title=f"{len(results)} threads matching {query!r}")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Hex")
    for color in results:
        table.add_row(color.id, color.display_name, color.hex)
    console.print(table)


if __name__ == "__main__":
    main()
