from __future__ import annotations

import copy
import uuid
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

SOURCES = "source_registry_sources"
ASSETS = "source_registry_assets"
NODES = "source_registry_nodes"
SCAN_LOGS = "source_registry_scan_logs"
LEARNING_PATH_ITEMS = "learning_path_items"

TABLES: frozenset[str] = frozenset({SOURCES, ASSETS, NODES, SCAN_LOGS, LEARNING_PATH_ITEMS})

# Tables whose rows carry created_at/updated_at maintained by the store.
TIMESTAMPED: dict[str, tuple[str, ...]] = {
    SOURCES: ("created_at", "updated_at"),
    ASSETS: ("created_at", "updated_at"),
    NODES: ("created_at",),
    SCAN_LOGS: ("created_at",),
    LEARNING_PATH_ITEMS: ("created_at", "updated_at"),
}


class RecordStore(Protocol):
    """
    Table-name + id keyed persistence port.

    `where` maps column -> value; list/tuple values match any member.
    """

    def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    def get(self, table: str, record_id: str) -> dict[str, Any] | None: ...

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]: ...

    def update(
        self, table: str, record_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    def delete(self, table: str, *, where: Mapping[str, Any]) -> int: ...

    def transaction(self) -> AbstractContextManager[None]: ...


def check_table(table: str) -> str:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    return table


def new_record_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(row: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    if not where:
        return True
    for key, expected in where.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts last ascending, like postgres.
    return (1, 0) if value is None else (0, value)


class InMemoryRecordStore:
    """Dict-backed `RecordStore` used for tests and dry runs."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in TABLES}

    def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [r for r in self._tables[check_table(table)].values() if _matches(r, where)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        row = self._tables[check_table(table)].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        rows = self._tables[check_table(table)]
        row = copy.deepcopy(dict(record))
        row.setdefault("id", new_record_id())
        if row["id"] in rows:
            raise ValueError(f"Duplicate id {row['id']} in {table}")
        now = utcnow()
        for col in TIMESTAMPED[table]:
            row.setdefault(col, now)
        rows[row["id"]] = row
        return copy.deepcopy(row)

    def update(
        self, table: str, record_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        rows = self._tables[check_table(table)]
        row = rows.get(record_id)
        if row is None:
            return None
        row.update(copy.deepcopy(dict(changes)))
        if "updated_at" in TIMESTAMPED[table]:
            row["updated_at"] = utcnow()
        return copy.deepcopy(row)

    def delete(self, table: str, *, where: Mapping[str, Any]) -> int:
        rows = self._tables[check_table(table)]
        doomed = [rid for rid, r in rows.items() if _matches(r, where)]
        for rid in doomed:
            del rows[rid]
        return len(doomed)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        snapshot = copy.deepcopy(self._tables)
        try:
            yield
        except BaseException:
            self._tables = snapshot
            raise
