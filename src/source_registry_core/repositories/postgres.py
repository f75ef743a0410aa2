from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from source_registry_core.store import (
    ASSETS,
    LEARNING_PATH_ITEMS,
    NODES,
    SCAN_LOGS,
    SOURCES,
    TIMESTAMPED,
    check_table,
    new_record_id,
)

JSON_COLUMNS: dict[str, frozenset[str]] = {
    SOURCES: frozenset({"config"}),
    ASSETS: frozenset({"toc_stats", "selector_hints", "validation_report", "metadata"}),
    NODES: frozenset({"selector_hints", "metadata"}),
    SCAN_LOGS: frozenset({"details"}),
    LEARNING_PATH_ITEMS: frozenset({"source_node_ids"}),
}


def _adapt(table: str, record: Mapping[str, Any]) -> dict[str, Any]:
    json_cols = JSON_COLUMNS[table]
    return {
        k: Jsonb(v) if k in json_cols and v is not None else v
        for k, v in record.items()
    }


def _where_clause(where: Mapping[str, Any] | None) -> tuple[sql.Composable, list[Any]]:
    if not where:
        return sql.SQL(""), []
    parts: list[sql.Composable] = []
    params: list[Any] = []
    for key, value in where.items():
        ident = sql.Identifier(key)
        if isinstance(value, (list, tuple, set, frozenset)):
            parts.append(sql.SQL("{} = any(%s)").format(ident))
            params.append(list(value))
        elif value is None:
            parts.append(sql.SQL("{} is null").format(ident))
        else:
            parts.append(sql.SQL("{} = %s").format(ident))
            params.append(value)
    return sql.SQL(" where ") + sql.SQL(" and ").join(parts), params


class PostgresRecordStore:
    """
    `RecordStore` over a psycopg connection.

    Writes commit immediately unless they run inside `transaction()`.
    """

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn
        self._tx_depth = 0

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        clause, params = _where_clause(where)
        query = sql.SQL("select * from {}").format(sql.Identifier(check_table(table))) + clause
        if order_by:
            direction = sql.SQL(" desc") if descending else sql.SQL(" asc")
            query += sql.SQL(" order by {}").format(sql.Identifier(order_by)) + direction
        if limit is not None:
            query += sql.SQL(" limit %s")
            params.append(limit)
        with self._conn.cursor(row_factory=dict_row) as cur:
            rows = cur.execute(query, params).fetchall()
        self._commit()
        return rows

    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        rows = self.select(table, where={"id": record_id}, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        payload = dict(record)
        payload.setdefault("id", new_record_id())
        payload = _adapt(check_table(table), payload)
        cols = list(payload)
        query = sql.SQL("insert into {} ({}) values ({}) returning *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder(c) for c in cols),
        )
        with self._conn.cursor(row_factory=dict_row) as cur:
            row = cur.execute(query, payload).fetchone()
        self._commit()
        return row

    def update(
        self, table: str, record_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        payload = _adapt(check_table(table), changes)
        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder(c)) for c in payload
        ]
        if "updated_at" in TIMESTAMPED[table] and "updated_at" not in payload:
            assignments.append(sql.SQL("updated_at = now()"))
        if not assignments:
            return self.get(table, record_id)
        query = sql.SQL("update {} set {} where id = {} returning *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(assignments),
            sql.Placeholder("__record_id"),
        )
        with self._conn.cursor(row_factory=dict_row) as cur:
            row = cur.execute(query, {**payload, "__record_id": record_id}).fetchone()
        self._commit()
        return row

    def delete(self, table: str, *, where: Mapping[str, Any]) -> int:
        if not where:
            raise ValueError("delete requires a where clause")
        clause, params = _where_clause(where)
        query = sql.SQL("delete from {}").format(sql.Identifier(check_table(table))) + clause
        cur = self._conn.execute(query, params)
        self._commit()
        return cur.rowcount

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._conn.transaction():
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
        self._commit()
