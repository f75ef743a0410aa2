from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from typing import Any

import httpx
import psycopg
import pytest

from source_registry_core.db import connect
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger
from source_registry_core.migrations.runner import apply_migrations
from source_registry_core.repositories.registry import RegistryRepository
from source_registry_core.store import InMemoryRecordStore

Pages = dict[str, "str | tuple[int, str]"]


@pytest.fixture(scope="session")
def pg_dsn() -> str:
    dsn = os.environ.get("PG_DSN")
    if not dsn:
        pytest.skip("PG_DSN not set; skipping DB integration tests")
    return dsn


@pytest.fixture(scope="session")
def pg_schema(pg_dsn: str) -> Generator[str, None, None]:
    schema = f"test_{uuid.uuid4().hex[:10]}"
    apply_migrations(pg_dsn, schema=schema)
    yield schema
    with psycopg.connect(pg_dsn) as conn:
        conn.execute(f'drop schema if exists "{schema}" cascade')
        conn.commit()


@pytest.fixture()
def conn(pg_dsn: str, pg_schema: str) -> Generator[psycopg.Connection, None, None]:
    with connect(pg_dsn, schema=pg_schema) as c:
        yield c


@pytest.fixture()
def registry_logger() -> RegistryLogger:
    return RegistryLogger()


@pytest.fixture()
def repository() -> RegistryRepository:
    return RegistryRepository(InMemoryRecordStore())


class FakeChatModel:
    """Scripted `ChatModel`: returns (or raises) queued replies in order and records calls."""

    def __init__(self, *replies: str | Exception):
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {
                "system": system,
                "user": user,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        if not self.replies:
            raise AssertionError("unexpected model call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture()
def make_model() -> type[FakeChatModel]:
    return FakeChatModel


class SiteRecorder:
    def __init__(self, pages: Pages):
        self.pages = pages
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        page = self.pages.get(url)
        if page is None:
            return httpx.Response(404, text="not found")
        status, body = page if isinstance(page, tuple) else (200, page)
        return httpx.Response(status, text=body, headers={"content-type": "text/html"})


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def make_fetcher(registry_logger: RegistryLogger) -> Callable[..., tuple[Fetcher, SiteRecorder]]:
    """Fetcher wired to an in-process site: `pages` maps absolute URL -> body or (status, body)."""

    def _make(pages: Pages, **kwargs: Any) -> tuple[Fetcher, SiteRecorder]:
        site = SiteRecorder(pages)
        client = httpx.AsyncClient(transport=httpx.MockTransport(site), follow_redirects=True)
        kwargs.setdefault("retry_delay_s", 0.0)
        kwargs.setdefault("sleep", _no_sleep)
        fetcher = Fetcher(client=client, logger=registry_logger, **kwargs)
        return fetcher, site

    return _make
