from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import psycopg
from psycopg import sql

from source_registry_core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")


def discover_migrations(directory: Path | None = None) -> list[Migration]:
    directory = directory or Path(__file__).resolve().parent / "sql"
    return [Migration(version=p.stem, path=p) for p in sorted(directory.glob("*.sql"))]


def _prepare(conn: psycopg.Connection, schema: str) -> set[str]:
    conn.execute(sql.SQL("create schema if not exists {}").format(sql.Identifier(schema)))
    conn.execute(sql.SQL("set search_path to {}").format(sql.Identifier(schema)))
    conn.execute(
        """
        create table if not exists schema_migrations (
          version text primary key,
          applied_at timestamptz not null default now()
        )
        """
    )
    return {r[0] for r in conn.execute("select version from schema_migrations").fetchall()}


def apply_migrations(
    dsn: str,
    *,
    schema: str = "public",
    migrations: Iterable[Migration] | None = None,
) -> list[str]:
    """
    Creates the registry tables in `schema`. Safe to re-run: recorded versions are skipped.
    """
    if migrations is None:
        migrations = discover_migrations()

    applied: list[str] = []
    with psycopg.connect(dsn) as conn:
        conn.execute("set timezone to 'UTC'")
        done = _prepare(conn, schema)
        for mig in migrations:
            if mig.version in done:
                continue
            conn.execute(mig.read())
            conn.execute("insert into schema_migrations(version) values (%s)", (mig.version,))
            conn.commit()
            logger.info("applied migration %s", mig.version, extra={"ctx_schema": schema})
            applied.append(mig.version)
    return applied
