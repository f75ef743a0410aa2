from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import psycopg
from pydantic import SecretStr

from source_registry_core.repositories.postgres import PostgresRecordStore

_SCHEMA_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class PostgresConfig:
    dsn: str | None = None
    host: str | None = None
    port: int = 5432
    db: str | None = None
    user: str | None = None
    password: SecretStr | str | None = None
    schema: str = "public"

    def build_dsn(self) -> str:
        """
        Raises ValueError naming every missing variable so callers fail before any scan starts.
        """
        if self.dsn:
            return self.dsn
        missing = []
        if not self.host:
            missing.append("POSTGRES_HOST")
        if not self.db:
            missing.append("POSTGRES_DB")
        if not self.user:
            missing.append("POSTGRES_USER")
        if not self.password:
            missing.append("POSTGRES_PASSWORD")
        if missing:
            raise ValueError(f"Missing Postgres config: {', '.join(missing)} (or set PG_DSN)")
        password = (
            self.password.get_secret_value()
            if isinstance(self.password, SecretStr)
            else self.password
        )
        return f"postgresql://{self.user}:{password}@{self.host}:{self.port}/{self.db}"


def open_connection(dsn: str, *, schema: str = "public") -> psycopg.Connection:
    if not _SCHEMA_RE.match(schema):
        raise ValueError(f"Invalid schema name: {schema!r}")
    return psycopg.connect(dsn, options=f"-c search_path={schema} -c timezone=UTC")


@contextmanager
def connect(dsn: str, *, schema: str = "public") -> Iterator[psycopg.Connection]:
    with open_connection(dsn, schema=schema) as conn:
        yield conn


@contextmanager
def open_record_store(cfg: PostgresConfig) -> Iterator[PostgresRecordStore]:
    with connect(cfg.build_dsn(), schema=cfg.schema) as conn:
        yield PostgresRecordStore(conn)
