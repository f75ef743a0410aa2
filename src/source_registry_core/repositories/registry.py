from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict, replace
from typing import Any

from source_registry_core.models import (
    Asset,
    ScanLog,
    SelectorHints,
    Source,
    TocNode,
    TocStats,
)
from source_registry_core.store import (
    ASSETS,
    LEARNING_PATH_ITEMS,
    NODES,
    SCAN_LOGS,
    SOURCES,
    RecordStore,
    new_record_id,
)

_SOURCE_FIELDS = frozenset(Source.__dataclass_fields__)
_ASSET_FIELDS = frozenset(Asset.__dataclass_fields__)
_NODE_FIELDS = frozenset(TocNode.__dataclass_fields__)
_SCAN_LOG_FIELDS = frozenset(ScanLog.__dataclass_fields__)


def _pick(row: dict[str, Any], fields: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k in fields}


def _hints(value: dict[str, Any] | None) -> SelectorHints | None:
    if not value:
        return None
    return SelectorHints(**_pick(value, frozenset(SelectorHints.__dataclass_fields__)))


def source_from_row(row: dict[str, Any]) -> Source:
    data = _pick(row, _SOURCE_FIELDS)
    data["config"] = data.get("config") or {}
    return Source(**data)


def asset_from_row(row: dict[str, Any]) -> Asset:
    data = _pick(row, _ASSET_FIELDS)
    stats = data.get("toc_stats")
    data["toc_stats"] = TocStats(**stats) if stats else None
    data["selector_hints"] = _hints(data.get("selector_hints"))
    data["metadata"] = data.get("metadata") or {}
    return Asset(**data)


def node_from_row(row: dict[str, Any]) -> TocNode:
    data = _pick(row, _NODE_FIELDS)
    data["selector_hints"] = _hints(data.get("selector_hints"))
    data["metadata"] = data.get("metadata") or {}
    return TocNode(**data)


def scan_log_from_row(row: dict[str, Any]) -> ScanLog:
    return ScanLog(**_pick(row, _SCAN_LOG_FIELDS))


def link_toc_nodes(asset_id: str, nodes: Iterable[TocNode]) -> list[TocNode]:
    """
    Assigns ids and parent links to a pre-ordered node list.

    A node's parent is the closest preceding node one level shallower. Depth jumps
    (e.g. a depth-2 node straight after a depth-0 node) are clamped so depth always equals
    the number of ancestors.
    """
    ordered = sorted(nodes, key=lambda n: n.sort_order)
    stack: list[TocNode] = []
    linked: list[TocNode] = []
    for index, node in enumerate(ordered):
        depth = max(0, node.depth)
        del stack[depth:]
        depth = min(depth, len(stack))
        parent = stack[-1] if stack else None
        item = replace(
            node,
            id=node.id or new_record_id(),
            asset_id=asset_id,
            parent_id=parent.id if parent else None,
            depth=depth,
            sort_order=index,
        )
        stack.append(item)
        linked.append(item)
    return linked


class RegistryRepository:
    def __init__(self, store: RecordStore):
        self._store = store

    @property
    def store(self) -> RecordStore:
        return self._store

    # sources

    def get_source(self, source_id: str) -> Source | None:
        row = self._store.get(SOURCES, source_id)
        return source_from_row(row) if row else None

    def get_source_by_name(self, name: str) -> Source | None:
        rows = self._store.select(SOURCES, where={"name": name}, limit=1)
        return source_from_row(rows[0]) if rows else None

    def get_source_by_base_url(self, base_url: str) -> Source | None:
        rows = self._store.select(SOURCES, where={"base_url": base_url}, limit=1)
        return source_from_row(rows[0]) if rows else None

    def list_sources(self) -> list[Source]:
        return [source_from_row(r) for r in self._store.select(SOURCES, order_by="name")]

    def insert_source(self, record: dict[str, Any]) -> Source:
        return source_from_row(self._store.insert(SOURCES, record))

    def update_source(self, source_id: str, **changes: Any) -> Source | None:
        row = self._store.update(SOURCES, source_id, changes)
        return source_from_row(row) if row else None

    # assets

    def get_asset(self, asset_id: str) -> Asset | None:
        row = self._store.get(ASSETS, asset_id)
        return asset_from_row(row) if row else None

    def get_asset_by_slug(self, slug: str, *, source_id: str | None = None) -> Asset | None:
        where: dict[str, Any] = {"slug": slug}
        if source_id is not None:
            where["source_id"] = source_id
        rows = self._store.select(ASSETS, where=where, limit=1)
        return asset_from_row(rows[0]) if rows else None

    def list_assets(self, source_id: str | None = None) -> list[Asset]:
        where = {"source_id": source_id} if source_id else None
        return [asset_from_row(r) for r in self._store.select(ASSETS, where=where, order_by="title")]

    def list_active_assets(self) -> list[Asset]:
        rows = self._store.select(ASSETS, where={"active": True}, order_by="title")
        return [asset_from_row(r) for r in rows]

    def insert_asset(self, record: dict[str, Any]) -> Asset:
        return asset_from_row(self._store.insert(ASSETS, record))

    def update_asset(self, asset_id: str, **changes: Any) -> Asset | None:
        for key in ("toc_stats", "selector_hints"):
            value = changes.get(key)
            if value is not None and not isinstance(value, dict):
                changes[key] = asdict(value)
        row = self._store.update(ASSETS, asset_id, changes)
        return asset_from_row(row) if row else None

    # toc nodes

    def list_toc_nodes(self, asset_id: str) -> list[TocNode]:
        rows = self._store.select(NODES, where={"asset_id": asset_id}, order_by="sort_order")
        return [node_from_row(r) for r in rows]

    def list_all_toc_nodes(self) -> list[TocNode]:
        return [node_from_row(r) for r in self._store.select(NODES, order_by="sort_order")]

    def get_nodes_by_ids(self, node_ids: Sequence[str]) -> list[TocNode]:
        if not node_ids:
            return []
        rows = self._store.select(NODES, where={"id": list(node_ids)}, order_by="sort_order")
        return [node_from_row(r) for r in rows]

    def count_toc_nodes(self, asset_id: str | None = None) -> int:
        where = {"asset_id": asset_id} if asset_id else None
        return len(self._store.select(NODES, where=where))

    def replace_toc_nodes(self, asset_id: str, nodes: Iterable[TocNode]) -> list[TocNode]:
        """
        Replace-all semantics for an asset's TOC; readers never see a partial set.
        """
        linked = link_toc_nodes(asset_id, nodes)
        with self._store.transaction():
            self._store.delete(NODES, where={"asset_id": asset_id})
            for node in linked:
                self._store.insert(NODES, asdict(node))
        return linked

    # scan logs

    def add_scan_log(
        self,
        *,
        action: str,
        status: str,
        source_id: str | None = None,
        asset_id: str | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ScanLog:
        row = self._store.insert(
            SCAN_LOGS,
            {
                "source_id": source_id,
                "asset_id": asset_id,
                "action": action,
                "status": status,
                "message": message,
                "details": details,
            },
        )
        return scan_log_from_row(row)

    def list_scan_logs(
        self,
        *,
        source_id: str | None = None,
        asset_id: str | None = None,
        limit: int = 100,
    ) -> list[ScanLog]:
        where: dict[str, Any] = {}
        if source_id:
            where["source_id"] = source_id
        if asset_id:
            where["asset_id"] = asset_id
        rows = self._store.select(
            SCAN_LOGS, where=where or None, order_by="created_at", descending=True, limit=limit
        )
        return [scan_log_from_row(r) for r in rows]

    # learning path items

    def update_learning_path_item(self, item_id: str, **changes: Any) -> dict[str, Any] | None:
        return self._store.update(LEARNING_PATH_ITEMS, item_id, changes)
