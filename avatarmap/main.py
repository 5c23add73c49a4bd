#!/usr/bin/env python3
"""
avatarmap - Avatar Cache Entry Point

Fetches avatars for every configured source into the local cache and
writes one mapping file per source.

Usage:
    python -m avatarmap.main run
    python -m avatarmap.main run twitter --concurrency 4
    python -m avatarmap.main sources
"""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from avatarmap.config import settings
from avatarmap.runner import run_named_sources
from avatarmap.sources import SOURCE_INFO, SOURCE_LOADERS


console = Console()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Also log to this file")
@click.option("--log-json", is_flag=True, help="Write the log file as JSON lines")
def cli(debug, log_file, log_json):
    """Avatar cache builder"""
    if debug or log_file:
        from avatarmap.utils.logging import setup_logging
        setup_logging(level="DEBUG" if debug else None, log_file=log_file, serialize=log_json)


@cli.command()
@click.argument("sources", nargs=-1, type=click.Choice(list(SOURCE_LOADERS.keys()) + ["all"]))
@click.option("--concurrency", "-c", type=click.IntRange(min=1), default=None, help="Fetch workers per source")
@click.option("--source-workers", type=click.IntRange(min=1), default=None, help="Sources processed in parallel")
@click.option("--skip-cached", is_flag=True, help="Reuse avatars already in the cache")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Directory with the input JSON files")
@click.option("--mapping-dir", type=click.Path(path_type=Path), default=None, help="Directory for the mapping files")
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None, help="Root of the avatar cache")
def run(sources, concurrency, source_workers, skip_cached, data_dir, mapping_dir, cache_dir):
    """
    Fetch avatars and write mapping files.

    SOURCES are source names (e.g., 'twitter'); none or 'all' runs every source.
    """
    if not sources or "all" in sources:
        sources = list(SOURCE_LOADERS.keys())

    console.print("\n[bold blue]avatarmap - Avatar Cache[/bold blue]")
    console.print(f"Sources: {', '.join(sources)}")
    console.print(f"Concurrency: {concurrency or settings.pipeline.concurrency}\n")

    results = run_named_sources(
        sources,
        data_dir=data_dir,
        mapping_dir=mapping_dir,
        cache_dir=cache_dir,
        concurrency=concurrency,
        source_workers=source_workers,
        skip_cached=skip_cached or None,
    )

    table = Table(title="Avatar Summary")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Identifiers")
    table.add_column("Written")
    table.add_column("No image")
    table.add_column("Failed")
    table.add_column("Artifact")
    table.add_column("Duration")

    for result in results:
        status = "[green]Success[/green]" if result.success else "[red]Failed[/red]"
        duration = f"{result.duration_seconds:.1f}s" if result.duration_seconds is not None else "-"
        artifact = result.artifact_path.as_posix() if result.artifact_path else "-"

        table.add_row(
            result.source_name,
            status,
            str(result.identifiers),
            str(result.written),
            str(result.empty),
            str(result.failed),
            artifact,
            duration,
        )

    console.print(table)

    failed_sources = [r for r in results if not r.success]
    for result in failed_sources:
        console.print(f"[red]{result.source_name}: {escape('; '.join(result.errors))}[/red]")

    if failed_sources:
        sys.exit(1)


@cli.command("sources")
def list_sources():
    """List known sources and their input files."""
    table = Table(title="Sources")
    table.add_column("Source")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Input files")

    for source_id in SOURCE_LOADERS:
        info = SOURCE_INFO.get(source_id, {})
        table.add_row(
            source_id,
            info.get("name", source_id),
            info.get("description", ""),
            ", ".join(info.get("files", [])),
        )

    console.print(table)


if __name__ == "__main__":
    cli()
