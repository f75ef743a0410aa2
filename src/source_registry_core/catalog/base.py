from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Generic, TypeVar

from source_registry_core.grounding.node_resolver import to_toc_summaries
from source_registry_core.grounding.types import TocNodeSummary
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, TocNode
from source_registry_core.registry import toc_stats
from source_registry_core.repositories.registry import RegistryRepository
from source_registry_core.store import utcnow

T = TypeVar("T")

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float

    def is_stale(self, now: float, ttl_s: float) -> bool:
        return now - self.fetched_at >= ttl_s


def tokenize(text: str | None, min_length: int = 3) -> list[str]:
    return [t for t in _TOKEN_SPLIT_RE.split((text or "").lower()) if len(t) >= min_length]


class LazyTocCatalog:
    """
    Shared plumbing for catalogs whose assets are created on demand: a TOC is read from the
    registry when present, otherwise mapped live once and stored with parent links.
    """

    log_action = "catalog"

    def __init__(self, repository: RegistryRepository, *, logger: RegistryLogger | None = None):
        self.repository = repository
        self._log = logger or RegistryLogger()

    def _stored_toc(self, asset: Asset) -> list[TocNode]:
        existing = self.repository.list_toc_nodes(asset.id)
        if existing:
            self._log.info(
                self.log_action,
                f"Using cached TOC for {asset.title} ({len(existing)} nodes)",
                asset_id=asset.id,
            )
        return existing

    def _save_toc(self, asset: Asset, nodes: list[TocNode], *, completed: bool = False) -> list[TocNode]:
        stored = self.repository.replace_toc_nodes(asset.id, nodes)
        changes = {"toc_extraction_success": True, "toc_stats": toc_stats(stored)}
        if completed:
            changes.update(scan_status="completed", last_scan_at=utcnow())
        self.repository.update_asset(asset.id, **changes)
        self._log.info(self.log_action, f"Saved {len(stored)} TOC nodes to registry", asset_id=asset.id)
        return stored

    def summaries_for(self, asset: Asset) -> list[TocNodeSummary]:
        return to_toc_summaries(self.repository.list_toc_nodes(asset.id))
