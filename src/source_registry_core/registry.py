from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urlparse

from source_registry_core.adapters import SourceAdapter, get_adapter
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import (
    Asset,
    AssetCandidate,
    RobotsStatus,
    ScanLog,
    ScanResult,
    SeedConfig,
    Source,
    TocNode,
    TocStats,
    ValidationIssue,
    ValidationReport,
)
from source_registry_core.repositories.registry import RegistryRepository
from source_registry_core.seeds import SEED_SOURCES, allowed_domains_for, get_seed_by_name, is_url_allowed
from source_registry_core.store import utcnow

AdapterFactory = Callable[..., SourceAdapter]


class RegistryError(Exception):
    pass


class NotFoundError(RegistryError, LookupError):
    pass


@dataclass(frozen=True)
class ScanSummary:
    sources: int = 0
    assets_scanned: int = 0
    assets_skipped: int = 0
    nodes_mapped: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[ScanResult] = field(default_factory=list)


def toc_stats(nodes: list[TocNode]) -> TocStats:
    return TocStats(
        chapters=sum(1 for n in nodes if n.node_type == "chapter"),
        sections=sum(1 for n in nodes if n.node_type == "section"),
        total_nodes=len(nodes),
        depth=max((n.depth for n in nodes), default=0),
    )


def _report_dict(report: ValidationReport) -> dict[str, Any]:
    data = asdict(report)
    data["scanned_at"] = report.scanned_at.isoformat()
    return data


class RegistryService:
    """
    Runs adapters against seeds and keeps the registry tables current.

    One broken asset never aborts a seed: its failure is recorded in the scan's `errors` and
    the loop moves on.
    """

    def __init__(
        self,
        repository: RegistryRepository,
        fetcher: Fetcher,
        *,
        logger: RegistryLogger | None = None,
        seeds: tuple[SeedConfig, ...] = SEED_SOURCES,
        adapter_factory: AdapterFactory = get_adapter,
    ):
        self.repository = repository
        self.fetcher = fetcher
        self.seeds = seeds
        self._log = logger or RegistryLogger()
        self._adapter_factory = adapter_factory

    # sources

    def get_or_create_source(self, seed: SeedConfig) -> Source:
        existing = self.repository.get_source_by_name(seed.name)
        if existing:
            return existing
        created = self.repository.insert_source(
            {
                "name": seed.name,
                "type": seed.type,
                "base_url": seed.base_url,
                "description": seed.description,
                "rate_limit_per_minute": seed.rate_limit_per_minute or 30,
                "config": {**seed.config, "seedUrl": seed.seed_url},
                "scan_status": "idle",
                "robots_status": "unknown",
            }
        )
        self._log.info("source", f"Created source: {seed.name}", source_id=created.id)
        return created

    def get_sources(self) -> list[Source]:
        return self.repository.list_sources()

    def get_source_by_id(self, source_id: str) -> Source | None:
        return self.repository.get_source(source_id)

    # assets

    def get_or_create_asset(self, source_id: str, candidate: AssetCandidate) -> Asset:
        existing = self.repository.get_asset_by_slug(candidate.slug, source_id=source_id)
        if existing:
            return existing
        created = self.repository.insert_asset(
            {
                "source_id": source_id,
                "slug": candidate.slug,
                "title": candidate.title,
                "url": candidate.url,
                "description": candidate.description,
                "version": candidate.version,
                "metadata": candidate.metadata,
                "active": False,
                "scan_status": "idle",
                "robots_status": "unknown",
            }
        )
        self._log.info(
            "asset", f"Created asset: {candidate.title}", source_id=source_id, asset_id=created.id
        )
        return created

    def get_assets(self, source_id: str | None = None) -> list[Asset]:
        return self.repository.list_assets(source_id)

    def get_asset_by_id(self, asset_id: str) -> Asset | None:
        return self.repository.get_asset(asset_id)

    def get_active_assets(self) -> list[Asset]:
        return self.repository.list_active_assets()

    def get_toc_nodes(self, asset_id: str) -> list[TocNode]:
        return self.repository.list_toc_nodes(asset_id)

    def activate_asset(self, asset_id: str) -> Asset:
        asset = self.repository.get_asset(asset_id)
        if asset is None:
            raise NotFoundError("Asset not found")
        if asset.robots_status == "disallowed":
            raise RegistryError("Cannot activate asset: blocked by robots.txt")
        if not asset.toc_extraction_success:
            raise RegistryError("Cannot activate asset: TOC extraction not successful")
        updated = self.repository.update_asset(asset_id, active=True)
        self._scan_log(
            action="activate",
            status="completed",
            source_id=asset.source_id,
            asset_id=asset_id,
            message="Asset manually activated",
        )
        self._log.info("asset", f"Activated asset: {asset.title}", asset_id=asset_id)
        return updated or asset

    def deactivate_asset(self, asset_id: str) -> Asset:
        updated = self.repository.update_asset(asset_id, active=False)
        if updated is None:
            raise NotFoundError("Asset not found")
        self._scan_log(
            action="deactivate",
            status="completed",
            source_id=updated.source_id,
            asset_id=asset_id,
            message="Asset deactivated",
        )
        return updated

    async def _db(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Repository calls block on the database, so async paths run them off the event loop."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    # scan logs

    def _scan_log(self, **fields: Any) -> None:
        try:
            self.repository.add_scan_log(**fields)
        except Exception as e:  # noqa: BLE001
            self._log.error("scan_log", f"Failed to save scan log: {e}")

    def get_scan_logs(
        self,
        *,
        source_id: str | None = None,
        asset_id: str | None = None,
        limit: int = 100,
    ) -> list[ScanLog]:
        return self.repository.list_scan_logs(source_id=source_id, asset_id=asset_id, limit=limit)

    # scanning

    async def scan_seed(self, seed: SeedConfig, *, skip_scanned: bool = False) -> ScanResult:
        started = time.monotonic()
        self._log.info("scan", f"Scanning seed: {seed.name}", url=seed.seed_url)
        errors: list[str] = []
        scanned = skipped = nodes_mapped = 0

        source = await self._db(self.get_or_create_source, seed)
        await self._db(
            self.repository.update_source, source.id, scan_status="scanning", last_scan_at=utcnow()
        )
        await self._db(
            self._scan_log,
            action="discover",
            status="started",
            source_id=source.id,
            message=f"Starting discovery for {seed.name}",
        )

        try:
            host = urlparse(seed.base_url).hostname
            if host:
                self.fetcher.set_rate_limit(host, seed.rate_limit_per_minute or 30)
            adapter = self._adapter_factory(
                seed.type, self.fetcher, logger=self._log, config=seed.config
            )
            candidates = await adapter.discover_assets(seed.seed_url, seed.config)
            self._log.info(
                "scan", f"Discovered {len(candidates)} asset candidates", source_id=source.id
            )
            allowed = allowed_domains_for(seed)

            for candidate in candidates:
                if not is_url_allowed(candidate.url, allowed):
                    self._log.warn(
                        "scan", f"Skipping disallowed URL: {candidate.url}", source_id=source.id
                    )
                    continue
                try:
                    asset = await self._db(self.get_or_create_asset, source.id, candidate)
                    if (
                        skip_scanned
                        and asset.scan_status == "completed"
                        and asset.toc_extraction_success
                    ):
                        self._log.debug(
                            "scan",
                            f"Skipping already scanned asset: {candidate.title}",
                            asset_id=asset.id,
                        )
                        skipped += 1
                        continue
                    scanned += 1
                    nodes_mapped += await self._scan_asset(adapter, seed, source, asset, candidate)
                except Exception as e:  # noqa: BLE001
                    message = f"Failed to process asset {candidate.title}: {e}"
                    errors.append(message)
                    self._log.error("scan", message, source_id=source.id)
                    await self._db(
                        self._scan_log,
                        action="error",
                        status="failed",
                        source_id=source.id,
                        message=message,
                    )

            await self._db(
                self.repository.update_source,
                source.id,
                scan_status="completed",
                scan_error="; ".join(errors) if errors else None,
            )
            await self._db(
                self._scan_log,
                action="discover",
                status="completed",
                source_id=source.id,
                message=f"Completed scan of {seed.name}",
                details={
                    "assets": scanned,
                    "nodes": nodes_mapped,
                    "skipped": skipped,
                    "errors": len(errors),
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
        except Exception as e:  # noqa: BLE001
            message = f"Scan failed for {seed.name}: {e}"
            errors.append(message)
            self._log.error("scan", message, source_id=source.id)
            await self._db(self.repository.update_source, source.id, scan_status="failed", scan_error=message)
            await self._db(
                self._scan_log, action="discover", status="failed", source_id=source.id, message=message
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        self._log.info(
            "scan",
            f"Finished scanning {seed.name}",
            source_id=source.id,
            duration_ms=duration_ms,
            details={
                "assets": scanned,
                "nodes": nodes_mapped,
                "skipped": skipped,
                "errors": len(errors),
            },
        )
        return ScanResult(
            source=await self._db(self.repository.get_source, source.id) or source,
            assets_scanned=scanned,
            assets_skipped=skipped,
            nodes_mapped=nodes_mapped,
            errors=errors,
        )

    async def _scan_asset(
        self,
        adapter: SourceAdapter,
        seed: SeedConfig,
        source: Source,
        asset: Asset,
        candidate: AssetCandidate,
    ) -> int:
        """validate, then map_toc, then persist; returns the number of nodes stored."""
        await self._db(
            self._scan_log,
            action="validate",
            status="started",
            source_id=source.id,
            asset_id=asset.id,
            message=f"Validating {candidate.title}",
        )
        validation = await adapter.validate(candidate, seed.base_url)
        errors = list(validation.errors)
        robots_status: RobotsStatus = validation.robots_status
        if robots_status == "disallowed" or errors:
            robots_status = "needs_review"

        await self._db(
            self._scan_log,
            action="map_toc",
            status="started",
            source_id=source.id,
            asset_id=asset.id,
            message=f"Mapping TOC for {candidate.title}",
        )
        stored: list[TocNode] = []
        stats: TocStats | None = None
        try:
            nodes = await adapter.map_toc(candidate, seed.base_url)
            stored = await self._db(self.repository.replace_toc_nodes, asset.id, nodes)
            if stored:
                stats = toc_stats(stored)
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "scan",
                f"TOC mapping failed for {candidate.title}",
                asset_id=asset.id,
                details={"error": str(e)},
            )
            errors.append(ValidationIssue(code="TOC_MAPPING_FAILED", message=str(e)))

        toc_success = bool(stored)
        report = ValidationReport(
            robots_status=robots_status,
            toc_extraction_success=toc_success,
            toc_stats=stats or TocStats(),
            scanned_at=utcnow(),
            license_name=validation.license_name,
            license_url=validation.license_url,
            license_confidence=validation.license_confidence,
            errors=errors,
            warnings=list(validation.warnings),
        )
        report_data = _report_dict(report)
        await self._db(
            self.repository.update_asset,
            asset.id,
            title=candidate.title,
            url=candidate.url,
            description=candidate.description,
            version=candidate.version,
            metadata=candidate.metadata,
            license_name=validation.license_name,
            license_url=validation.license_url,
            license_confidence=validation.license_confidence,
            robots_status=robots_status,
            toc_extraction_success=toc_success,
            toc_stats=stats,
            selector_hints=adapter.selector_hints(),
            validation_report=report_data,
            scan_status="completed",
            scan_error="; ".join(e.message for e in errors) or None,
            last_scan_at=report.scanned_at,
        )
        await self._db(
            self._scan_log,
            action="validate",
            status="completed",
            source_id=source.id,
            asset_id=asset.id,
            message=f"Validation complete for {candidate.title}",
            details=report_data,
        )
        return len(stored)

    def _seed_for_source(self, source: Source) -> SeedConfig:
        seed = get_seed_by_name(source.name, self.seeds)
        if seed is not None:
            return seed
        config = dict(source.config or {})
        seed_url = config.pop("seedUrl", None)
        if not seed_url:
            raise NotFoundError(f"No seed configuration found for source: {source.name}")
        return SeedConfig(
            name=source.name,
            type=source.type,
            base_url=source.base_url,
            seed_url=seed_url,
            description=source.description,
            rate_limit_per_minute=source.rate_limit_per_minute,
            config=config,
        )

    async def scan_source_by_id(self, source_id: str, *, skip_scanned: bool = False) -> ScanResult:
        source = await self._db(self.repository.get_source, source_id)
        if source is None:
            raise NotFoundError("Source not found")
        return await self.scan_seed(self._seed_for_source(source), skip_scanned=skip_scanned)

    async def scan_all_seeds(self, *, skip_scanned: bool = False) -> ScanSummary:
        self._log.info("scan", "Starting scan of all seed sources")
        results: list[ScanResult] = []
        errors: list[str] = []
        for seed in self.seeds:
            try:
                result = await self.scan_seed(seed, skip_scanned=skip_scanned)
            except Exception as e:  # noqa: BLE001
                message = f"Failed to scan {seed.name}: {e}"
                self._log.error("scan", message)
                errors.append(message)
                continue
            results.append(result)
            errors.extend(result.errors)

        summary = ScanSummary(
            sources=len(results),
            assets_scanned=sum(r.assets_scanned for r in results),
            assets_skipped=sum(r.assets_skipped for r in results),
            nodes_mapped=sum(r.nodes_mapped for r in results),
            errors=errors,
            results=results,
        )
        self._log.info(
            "scan",
            "Completed scan of all seeds",
            details={
                "sources": summary.sources,
                "assets": summary.assets_scanned,
                "nodes": summary.nodes_mapped,
                "skipped": summary.assets_skipped,
                "errorCount": len(errors),
            },
        )
        return summary
