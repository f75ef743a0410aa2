"""HTTP routes for the source registry."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, NoReturn

import psycopg
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from source_registry_core.config import Settings, load_settings
from source_registry_core.db import open_connection
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger, configure_logging
from source_registry_core.models import Asset, ScanResult
from source_registry_core.registry import NotFoundError, RegistryError, RegistryService
from source_registry_core.repositories import PostgresRecordStore, RegistryRepository
from source_registry_core.seeds import get_seed_by_name

_CONN: psycopg.Connection | None = None
_REPOSITORY: RegistryRepository | None = None
_FETCHER: Fetcher | None = None
_SERVICE: RegistryService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_registry_logger() -> RegistryLogger:
    return RegistryLogger(max_logs=get_app_settings().log_buffer_size)


def get_repository() -> RegistryRepository:
    global _CONN, _REPOSITORY
    if _REPOSITORY is None:
        cfg = get_app_settings().postgres()
        _CONN = open_connection(cfg.build_dsn(), schema=cfg.schema)
        _REPOSITORY = RegistryRepository(PostgresRecordStore(_CONN))
    return _REPOSITORY


def get_fetcher() -> Fetcher:
    global _FETCHER
    if _FETCHER is None:
        settings = get_app_settings()
        _FETCHER = Fetcher(
            user_agent=settings.user_agent,
            timeout_s=settings.fetch_timeout_s,
            retries=settings.fetch_retries,
            retry_delay_s=settings.retry_delay_s,
            default_rate_per_minute=settings.rate_limit_per_minute,
            robots_ttl_s=settings.robots_cache_ttl_s,
            logger=get_registry_logger(),
        )
    return _FETCHER


def get_registry_service() -> RegistryService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = RegistryService(
            get_repository(), get_fetcher(), logger=get_registry_logger()
        )
    return _SERVICE


async def close_resources() -> None:
    global _CONN, _REPOSITORY, _FETCHER, _SERVICE
    if _FETCHER is not None:
        await _FETCHER.aclose()
    if _CONN is not None:
        _CONN.close()
    _CONN = _REPOSITORY = _FETCHER = _SERVICE = None


class AssetActionRequest(BaseModel):
    asset_id: str | None = None


router = APIRouter()


def _fail(log: RegistryLogger, error: str, exc: Exception) -> NoReturn:
    log.error("api", f"{error}: {exc}")
    raise HTTPException(status_code=500, detail={"error": error, "message": str(exc)})


def _scan_response(result: ScanResult, started: float) -> dict[str, Any]:
    return {
        "success": True,
        "duration": int((time.monotonic() - started) * 1000),
        "source": {"id": result.source.id, "name": result.source.name},
        "assets_scanned": result.assets_scanned,
        "assets_skipped": result.assets_skipped,
        "nodes_mapped": result.nodes_mapped,
        "errors": result.errors,
    }


@router.post("/scan", summary="Scan all seeds, one seed, or one stored source")
async def scan(
    source_id: str | None = Query(default=None),
    seed_name: str | None = Query(default=None),
    skip_scanned: bool = Query(default=False),
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    started = time.monotonic()
    suffix = " (skip scanned)" if skip_scanned else ""
    try:
        if source_id:
            log.info("api", f"Scanning source by ID: {source_id}{suffix}")
            result = await service.scan_source_by_id(source_id, skip_scanned=skip_scanned)
            return _scan_response(result, started)
        if seed_name:
            seed = get_seed_by_name(seed_name, service.seeds)
            if seed is None:
                raise HTTPException(
                    status_code=404,
                    detail={
                        "error": f"Seed not found: {seed_name}",
                        "available_seeds": [s.name for s in service.seeds],
                    },
                )
            log.info("api", f"Scanning seed: {seed_name}{suffix}")
            result = await service.scan_seed(seed, skip_scanned=skip_scanned)
            return _scan_response(result, started)

        log.info("api", f"Scanning all seeds{suffix}")
        summary = await service.scan_all_seeds(skip_scanned=skip_scanned)
        return {
            "success": True,
            "duration": int((time.monotonic() - started) * 1000),
            "sources_scanned": summary.sources,
            "assets_scanned": summary.assets_scanned,
            "assets_skipped": summary.assets_skipped,
            "nodes_mapped": summary.nodes_mapped,
            "errors": summary.errors,
        }
    except HTTPException:
        raise
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": str(e)}) from e
    except Exception as e:  # noqa: BLE001
        _fail(log, "Scan failed", e)


@router.get("/sources", summary="List registered sources")
def list_sources(
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    try:
        sources = service.get_sources()
    except Exception as e:  # noqa: BLE001
        _fail(log, "Failed to get sources", e)
    return {
        "sources": sources,
        "count": len(sources),
        "available_seeds": [
            {"name": s.name, "type": s.type, "base_url": s.base_url} for s in service.seeds
        ],
    }


@router.get("/sources/{source_id}", summary="Get one source with its assets")
def get_source(
    source_id: str,
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    try:
        source = service.get_source_by_id(source_id)
        assets = service.get_assets(source_id) if source else []
    except Exception as e:  # noqa: BLE001
        _fail(log, "Failed to get source", e)
    if source is None:
        raise HTTPException(status_code=404, detail={"error": "Source not found"})
    return {
        "source": source,
        "assets": assets,
        "assets_count": len(assets),
        "active_assets": sum(1 for a in assets if a.active),
    }


@router.get("/assets", summary="List assets, optionally by source or active flag")
def list_assets(
    source_id: str | None = Query(default=None),
    active: bool | None = Query(default=None),
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    try:
        source = service.get_source_by_id(source_id) if source_id else None
        assets: list[Asset] = service.get_assets(source_id) if source or not source_id else []
    except Exception as e:  # noqa: BLE001
        _fail(log, "Failed to get assets", e)
    if source_id and source is None:
        raise HTTPException(status_code=404, detail={"error": "Source not found"})
    if active is not None:
        assets = [a for a in assets if a.active == active]
    return {"assets": assets, "count": len(assets)}


@router.get("/assets/{asset_id}", summary="Get one asset with its TOC nodes")
def get_asset(
    asset_id: str,
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    try:
        asset = service.get_asset_by_id(asset_id)
        nodes = service.get_toc_nodes(asset_id) if asset else []
    except Exception as e:  # noqa: BLE001
        _fail(log, "Failed to get asset", e)
    if asset is None:
        raise HTTPException(status_code=404, detail={"error": "Asset not found"})
    return {"asset": asset, "toc_nodes": nodes, "nodes_count": len(nodes)}


def _asset_action(
    action: str,
    request: AssetActionRequest | None,
    service: RegistryService,
    log: RegistryLogger,
) -> dict[str, Any]:
    asset_id = request.asset_id if request else None
    if not asset_id:
        raise HTTPException(status_code=400, detail={"error": "asset_id is required"})
    try:
        if action == "activate":
            asset = service.activate_asset(asset_id)
        else:
            asset = service.deactivate_asset(asset_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": str(e)}) from e
    except RegistryError as e:
        log.warn("api", f"Failed to {action} asset: {e}", asset_id=asset_id)
        raise HTTPException(
            status_code=400, detail={"error": f"Failed to {action} asset", "message": str(e)}
        ) from e
    except Exception as e:  # noqa: BLE001
        _fail(log, f"Failed to {action} asset", e)
    log.info("api", f"{action.capitalize()}d asset: {asset.title}", asset_id=asset.id)
    return {"success": True, "asset": asset}


@router.post("/activate-asset", summary="Make an asset eligible for grounding")
def activate_asset(
    request: AssetActionRequest | None = Body(default=None),
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    return _asset_action("activate", request, service, log)


@router.post("/deactivate-asset", summary="Withdraw an asset from grounding")
def deactivate_asset(
    request: AssetActionRequest | None = Body(default=None),
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    return _asset_action("deactivate", request, service, log)


@router.get("/logs", summary="Recent scan logs, newest first")
def list_logs(
    source_id: str | None = Query(default=None),
    asset_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    service: RegistryService = Depends(get_registry_service),
    log: RegistryLogger = Depends(get_registry_logger),
) -> dict[str, Any]:
    try:
        logs = service.get_scan_logs(source_id=source_id, asset_id=asset_id, limit=limit)
    except Exception as e:  # noqa: BLE001
        _fail(log, "Failed to get logs", e)
    return {"logs": logs, "count": len(logs)}


@router.get("/seeds", summary="Built-in seed configurations")
def list_seeds(service: RegistryService = Depends(get_registry_service)) -> dict[str, Any]:
    return {
        "seeds": [
            {
                "name": s.name,
                "type": s.type,
                "base_url": s.base_url,
                "seed_url": s.seed_url,
                "description": s.description,
                "rate_limit_per_minute": s.rate_limit_per_minute,
            }
            for s in service.seeds
        ]
    }


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_resources()


def create_app() -> FastAPI:
    settings = get_app_settings()
    configure_logging(settings.log_level, settings.log_json)
    app = FastAPI(title="Source Registry", version="0.1.0", lifespan=_lifespan)
    app.include_router(router, prefix="/registry", tags=["registry"])

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, bool]:
        return {"ok": True}

    return app


__all__ = [
    "create_app",
    "get_app_settings",
    "get_fetcher",
    "get_registry_logger",
    "get_registry_service",
    "get_repository",
    "router",
]
