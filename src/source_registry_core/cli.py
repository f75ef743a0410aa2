"""CLI entrypoint for the source registry."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from itertools import groupby
from pathlib import Path
from typing import Optional

import typer

from source_registry_core.config import Settings, load_settings
from source_registry_core.db import open_record_store
from source_registry_core.export import DEFAULT_EXPORT_FILE, write_library_export
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger, configure_logging
from source_registry_core.migrations.runner import apply_migrations
from source_registry_core.models import ScanResult
from source_registry_core.registry import RegistryService, ScanSummary
from source_registry_core.repositories import RegistryRepository
from source_registry_core.seeds import SEED_SOURCES, get_seed_by_name

app = typer.Typer(name="source-registry", help="Source registry scanner and exporter")


@app.callback()
def main() -> None:
    """Scan seed sources into the registry and export it."""


@contextmanager
def open_repository(settings: Settings) -> Iterator[RegistryRepository]:
    with open_record_store(settings.postgres()) as store:
        yield RegistryRepository(store)


def build_fetcher(settings: Settings, logger: RegistryLogger) -> Fetcher:
    return Fetcher(
        user_agent=settings.user_agent,
        timeout_s=settings.fetch_timeout_s,
        retries=settings.fetch_retries,
        retry_delay_s=settings.retry_delay_s,
        default_rate_per_minute=settings.rate_limit_per_minute,
        robots_ttl_s=settings.robots_cache_ttl_s,
        logger=logger,
    )


def _print_seeds() -> None:
    typer.echo("Available seed sources:\n")
    for seed in SEED_SOURCES:
        typer.echo(f"  {seed.name}")
        typer.echo(f"    Type: {seed.type}")
        typer.echo(f"    URL:  {seed.seed_url}")
        typer.echo(f"    Rate: {seed.rate_limit_per_minute or 30}/min")
        if seed.description:
            typer.echo(f"    Desc: {seed.description}")
        typer.echo("")


def _print_sources(repository: RegistryRepository) -> None:
    sources = repository.list_sources()
    typer.echo("Registered sources:\n")
    if not sources:
        typer.echo("  No sources registered yet. Run a scan first.")
        return
    for source in sources:
        typer.echo(f"  {source.name} ({source.id})")
        typer.echo(f"    Type:        {source.type}")
        typer.echo(f"    Base URL:    {source.base_url}")
        typer.echo(f"    Scan Status: {source.scan_status}")
        typer.echo(f"    Last Scan:   {source.last_scan_at or 'never'}")
        if source.scan_error:
            typer.echo(f"    Error:       {source.scan_error}")
        typer.echo("")


def _print_assets(repository: RegistryRepository) -> None:
    assets = repository.list_assets()
    typer.echo("Registered assets:\n")
    if not assets:
        typer.echo("  No assets registered yet. Run a scan first.")
        return
    ordered = sorted(assets, key=lambda a: a.source_id)
    for source_id, group in groupby(ordered, key=lambda a: a.source_id):
        typer.echo(f"  Source: {source_id}")
        for asset in group:
            state = "active" if asset.active else "inactive"
            toc = "TOC ok" if asset.toc_extraction_success else "no TOC"
            total = asset.toc_stats.total_nodes if asset.toc_stats else 0
            typer.echo(f"  [{state}] {asset.title}")
            typer.echo(f"       ID:      {asset.id}")
            typer.echo(f"       Slug:    {asset.slug}")
            typer.echo(f"       Robots:  {asset.robots_status}")
            typer.echo(f"       {toc} ({total} nodes)")
            if asset.license_name:
                typer.echo(f"       License: {asset.license_name}")
            typer.echo("")
    active = sum(1 for a in assets if a.active)
    typer.echo(f"  Total: {len(assets)} assets ({active} active)")


def _print_counts(
    duration_s: float, scanned: int, skipped: int, nodes: int, errors: list[str]
) -> None:
    typer.echo(f"   Duration:   {duration_s:.2f}s")
    typer.echo(f"   Assets:     {scanned} scanned")
    if skipped:
        typer.echo(f"   Skipped:    {skipped} (already scanned)")
    typer.echo(f"   TOC Nodes:  {nodes}")
    if errors:
        typer.echo(f"\nErrors ({len(errors)}):")
        for error in errors:
            typer.echo(f"   - {error}")


def _print_result(result: ScanResult, duration_s: float) -> None:
    typer.echo("\nScan completed.")
    typer.echo(f"   Source:     {result.source.name} ({result.source.id})")
    _print_counts(
        duration_s,
        result.assets_scanned,
        result.assets_skipped,
        result.nodes_mapped,
        result.errors,
    )


def _print_summary(summary: ScanSummary, duration_s: float) -> None:
    typer.echo("\nScan completed.")
    typer.echo(f"   Sources:    {summary.sources}")
    _print_counts(
        duration_s,
        summary.assets_scanned,
        summary.assets_skipped,
        summary.nodes_mapped,
        summary.errors,
    )


def _all_failed(results: list[ScanResult]) -> bool:
    return not results or all(r.source.scan_status == "failed" for r in results)


async def _scan(
    service: RegistryService,
    *,
    seed_name: str | None,
    source_id: str | None,
    skip_scanned: bool,
) -> bool:
    """Runs the requested scan and reports whether anything succeeded."""
    started = time.monotonic()
    if skip_scanned:
        typer.echo("Mode: skipping already scanned assets")
    if seed_name:
        seed = get_seed_by_name(seed_name, service.seeds)
        if seed is None:
            typer.echo(f'Seed not found: "{seed_name}"', err=True)
            typer.echo("Available seeds:", err=True)
            for s in service.seeds:
                typer.echo(f"  - {s.name}", err=True)
            return False
        typer.echo(f"Scanning seed: {seed.name} ({seed.seed_url})")
        result = await service.scan_seed(seed, skip_scanned=skip_scanned)
        _print_result(result, time.monotonic() - started)
        return not _all_failed([result])
    if source_id:
        typer.echo(f"Scanning source by ID: {source_id}")
        result = await service.scan_source_by_id(source_id, skip_scanned=skip_scanned)
        _print_result(result, time.monotonic() - started)
        return not _all_failed([result])

    typer.echo(f"Scanning all seed sources: {', '.join(s.name for s in service.seeds)}")
    summary = await service.scan_all_seeds(skip_scanned=skip_scanned)
    _print_summary(summary, time.monotonic() - started)
    return not _all_failed(summary.results)


async def _run_scan(
    repository: RegistryRepository,
    settings: Settings,
    logger: RegistryLogger,
    *,
    seed_name: str | None,
    source_id: str | None,
    skip_scanned: bool,
) -> bool:
    async with build_fetcher(settings, logger) as fetcher:
        service = RegistryService(repository, fetcher, logger=logger)
        return await _scan(
            service, seed_name=seed_name, source_id=source_id, skip_scanned=skip_scanned
        )


def _export(repository: RegistryRepository, output: Path) -> None:
    started = time.monotonic()
    typer.echo("Exporting registry to library JSON...")
    path, data = write_library_export(repository, output)
    typer.echo(f"   File:         {path}")
    typer.echo(f"   Sources:      {data['totalSources']}")
    typer.echo(f"   Assets:       {data['totalAssets']}")
    typer.echo(f"   TOC Nodes:    {data['totalTocNodes']}")
    typer.echo(f"   Duration:     {int((time.monotonic() - started) * 1000)}ms")


@app.command()
def scan(
    seed: Optional[str] = typer.Option(None, "--seed", help="Scan a specific seed by name"),
    source_id: Optional[str] = typer.Option(None, "--source-id", help="Scan a stored source by ID"),
    skip_scanned: bool = typer.Option(
        False, "--skip-scanned", help="Skip assets already scanned successfully"
    ),
    export: bool = typer.Option(False, "--export", help="Export the registry to JSON after scanning"),
    export_only: bool = typer.Option(False, "--export-only", help="Export without scanning"),
    output: Path = typer.Option(Path(DEFAULT_EXPORT_FILE), "--output", help="Export file path"),
    list_seeds: bool = typer.Option(False, "--list-seeds", help="List built-in seed sources"),
    list_sources: bool = typer.Option(False, "--list-sources", help="List registered sources"),
    list_assets: bool = typer.Option(False, "--list-assets", help="List registered assets"),
) -> None:
    """Scan seed sources into the registry."""
    if list_seeds:
        _print_seeds()
        return

    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger = RegistryLogger(max_logs=settings.log_buffer_size)

    with ExitStack() as stack:
        try:
            repository = stack.enter_context(open_repository(settings))
        except Exception as e:  # noqa: BLE001
            typer.echo(f"Failed to initialize registry store: {e}", err=True)
            raise typer.Exit(code=1) from e

        if list_sources:
            _print_sources(repository)
            return
        if list_assets:
            _print_assets(repository)
            return
        if export_only:
            _export(repository, output)
            return

        try:
            ok = asyncio.run(
                _run_scan(
                    repository,
                    settings,
                    logger,
                    seed_name=seed,
                    source_id=source_id,
                    skip_scanned=skip_scanned,
                )
            )
        except Exception as e:  # noqa: BLE001
            typer.echo(f"Scan failed: {e}", err=True)
            raise typer.Exit(code=1) from e

        if export:
            _export(repository, output)
        if not ok:
            raise typer.Exit(code=1)
        if not export:
            typer.echo("\nUse --list-sources or --list-assets to see results.")
            typer.echo("Use --export to save the library to JSON.")
            typer.echo("To activate an asset, use the API: POST /registry/activate-asset")


@app.command()
def migrate() -> None:
    """Create or upgrade the registry tables."""
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    cfg = settings.postgres()
    try:
        applied = apply_migrations(cfg.build_dsn(), schema=cfg.schema)
    except Exception as e:  # noqa: BLE001
        typer.echo(f"Migration failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    if applied:
        typer.echo(f"Applied: {', '.join(applied)}")
    else:
        typer.echo("Schema is up to date.")


if __name__ == "__main__":
    app()
