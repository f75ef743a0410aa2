from __future__ import annotations

import asyncio

import httpx
import pytest

from source_registry_core.fetcher import Fetcher, TokenBucket, parse_robots_txt
from source_registry_core.logging import RegistryLogger

ROBOTS = """
User-agent: *
Disallow: /private/
Allow: /private/open
Crawl-delay: 4

User-agent: SourceRegistryBot
Disallow: /bots-only/

Sitemap: https://example.org/sitemap.xml
"""


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_specific_agent_group_replaces_wildcard_group() -> None:
    rules = parse_robots_txt(ROBOTS, "SourceRegistryBot/1.0 (+https://example.org/bot)")
    assert not rules.is_allowed("/bots-only/page")
    assert rules.is_allowed("/private/secret")
    assert rules.crawl_delay is None
    assert rules.sitemaps == ("https://example.org/sitemap.xml",)


def test_agent_groups_match_whole_product_token() -> None:
    text = "User-agent: Bot\nDisallow: /\n\nUser-agent: *\nDisallow: /private/\n"
    rules = parse_robots_txt(text, "SourceRegistryBot/1.0")
    assert rules.is_allowed("/public")
    assert not rules.is_allowed("/private/x")

    exact = parse_robots_txt("User-agent: sourceregistrybot\nDisallow: /\n", "SourceRegistryBot/1.0")
    assert not exact.is_allowed("/public")


def test_wildcard_group_longest_match_wins() -> None:
    rules = parse_robots_txt(ROBOTS, "OtherBot/2.0")
    assert not rules.is_allowed("/private/secret")
    assert rules.is_allowed("/private/open/page")
    assert rules.is_allowed("/public")
    assert rules.crawl_delay == 4


@pytest.mark.parametrize(
    ("pattern", "path", "allowed"),
    [
        ("/*.pdf$", "/files/book.pdf", False),
        ("/*.pdf$", "/files/book.pdf?x=1", True),
        ("/search*", "/search?q=x", False),
        ("/", "/anything", False),
    ],
)
def test_wildcards_and_anchors(pattern: str, path: str, allowed: bool) -> None:
    rules = parse_robots_txt(f"User-agent: *\nDisallow: {pattern}\n")
    assert rules.is_allowed(path) is allowed


@pytest.mark.asyncio
async def test_token_bucket_waits_once_burst_is_spent() -> None:
    clock = FakeClock()
    bucket = TokenBucket(60, clock=clock, sleep=clock.sleep)

    for _ in range(60):
        assert await bucket.acquire() == 0.0
    waited = await bucket.acquire()

    assert waited == pytest.approx(1.0)
    assert clock.sleeps == [pytest.approx(1.0)]


def test_token_bucket_rejects_non_positive_rate() -> None:
    with pytest.raises(ValueError):
        TokenBucket(0)


@pytest.mark.asyncio
async def test_fetch_is_blocked_by_robots(make_fetcher) -> None:  # noqa: ANN001
    fetcher, site = make_fetcher(
        {
            "https://example.org/robots.txt": "User-agent: *\nDisallow: /private/\n",
            "https://example.org/private/page": "<html>secret</html>",
        }
    )
    result = await fetcher.fetch("https://example.org/private/page")

    assert not result.ok
    assert result.status == 403
    assert result.error == "Blocked by robots.txt"
    assert "https://example.org/private/page" not in site.requests


@pytest.mark.asyncio
async def test_fetch_returns_non_retryable_status_without_retry(make_fetcher) -> None:  # noqa: ANN001
    fetcher, site = make_fetcher({"https://example.org/gone": (410, "gone")})
    result = await fetcher.fetch("https://example.org/gone")

    assert result.status == 410
    assert result.error == "HTTP 410"
    assert site.requests.count("https://example.org/gone") == 1


@pytest.mark.asyncio
async def test_fetch_retries_server_errors_with_backoff() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(404)
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, text="<html>ok</html>")

    clock = FakeClock()
    fetcher = Fetcher(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retries=3,
        retry_delay_s=1.0,
        clock=clock,
        sleep=clock.sleep,
        logger=RegistryLogger(),
    )
    result = await fetcher.fetch("https://example.org/page")

    assert result.ok
    assert result.html == "<html>ok</html>"
    assert clock.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fetch_reports_transport_failure_as_status_zero() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(404)
        raise httpx.ConnectError("connection refused", request=request)

    clock = FakeClock()
    fetcher = Fetcher(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retries=2,
        clock=clock,
        sleep=clock.sleep,
    )
    result = await fetcher.fetch("https://example.org/page")

    assert not result.ok
    assert result.status == 0
    assert "connection refused" in (result.error or "")
    assert len(clock.sleeps) == 2


@pytest.mark.asyncio
async def test_fetch_timeout_is_status_zero_and_retried() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(404)
        await asyncio.sleep(30)
        return httpx.Response(200, text="too late")

    clock = FakeClock()
    fetcher = Fetcher(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        timeout_s=0.05,
        retries=1,
        retry_delay_s=1.0,
        clock=clock,
        sleep=clock.sleep,
    )
    result = await fetcher.fetch("https://example.org/slow")

    assert not result.ok
    assert result.status == 0
    assert result.error == "TimeoutError"
    assert clock.sleeps == [1.0]


@pytest.mark.asyncio
async def test_unreachable_robots_is_allowed_but_unknown(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/robots.txt": (500, "oops")})
    robots = await fetcher.check_robots("https://example.org/page")

    assert robots.allowed
    assert robots.status == "unknown"


@pytest.mark.asyncio
async def test_robots_status_partial_and_crawl_delay_lowers_rate(make_fetcher) -> None:  # noqa: ANN001
    fetcher, site = make_fetcher(
        {"https://example.org/robots.txt": "User-agent: *\nDisallow: /admin/\nCrawl-delay: 10\n"}
    )
    robots = await fetcher.check_robots("https://example.org/docs")
    await fetcher.check_robots("https://example.org/docs/2")

    assert robots.allowed
    assert robots.status == "partial"
    assert fetcher.rate_limit("example.org") == 6
    assert site.requests.count("https://example.org/robots.txt") == 1


@pytest.mark.asyncio
async def test_non_http_urls_are_disallowed(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({})
    robots = await fetcher.check_robots("ftp://example.org/file")
    assert not robots.allowed
    assert robots.status == "disallowed"


def test_fetcher_validates_configuration() -> None:
    with pytest.raises(ValueError):
        Fetcher(timeout_s=0)
    with pytest.raises(ValueError):
        Fetcher(retries=-1)


@pytest.mark.asyncio
async def test_seed_rate_does_not_override_crawl_delay(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/robots.txt": "User-agent: *\nCrawl-delay: 10\n"})
    await fetcher.check_robots("https://example.org/docs")
    assert fetcher.rate_limit("example.org") == 6

    fetcher.set_rate_limit("Example.org", 30)
    assert fetcher.rate_limit("example.org") == 6

    fetcher.set_rate_limit("example.org", 2)
    assert fetcher.rate_limit("example.org") == 2

    fetcher.set_rate_limit("other.org", 30)
    assert fetcher.rate_limit("other.org") == 30
