from __future__ import annotations

import asyncio
import math
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx

from source_registry_core.config import DEFAULT_USER_AGENT
from source_registry_core.logging import RegistryLogger

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class FetchResult:
    ok: bool
    status: int
    url: str
    html: str | None = None
    error: str | None = None
    redirected: bool = False
    final_url: str | None = None


@dataclass(frozen=True)
class RobotsRule:
    allow: bool
    path: str

    def matches(self, path: str) -> bool:
        return _rule_regex(self.path).match(path) is not None


def _rule_regex(pattern: str) -> re.Pattern[str]:
    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    return re.compile(regex + ("$" if anchored else ""))


@dataclass(frozen=True)
class RobotsRules:
    rules: tuple[RobotsRule, ...] = ()
    crawl_delay: float | None = None
    sitemaps: tuple[str, ...] = ()

    def is_allowed(self, path: str) -> bool:
        """Longest matching rule wins; allow wins a tie."""
        best: RobotsRule | None = None
        for rule in self.rules:
            if not rule.path or not rule.matches(path or "/"):
                continue
            if (
                best is None
                or len(rule.path) > len(best.path)
                or (len(rule.path) == len(best.path) and rule.allow)
            ):
                best = rule
        return best is None or best.allow


@dataclass(frozen=True)
class RobotsResult:
    allowed: bool
    # allowed | disallowed | partial | unknown
    status: str
    crawl_delay: float | None = None
    sitemaps: tuple[str, ...] = ()


def _agent_token(user_agent: str) -> str:
    return user_agent.split("/", 1)[0].strip().lower()


def parse_robots_txt(text: str, user_agent: str = DEFAULT_USER_AGENT) -> RobotsRules:
    """
    Parses the groups that apply to `user_agent`.

    A group naming our agent token (whole token, case-insensitive) replaces the `*` group
    entirely.
    """
    token = _agent_token(user_agent)
    groups: list[tuple[list[str], list[RobotsRule], list[float]]] = []
    sitemaps: list[str] = []
    current: tuple[list[str], list[RobotsRule], list[float]] | None = None
    last_was_agent = False

    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = (p.strip() for p in line.split(":", 1))
        key = key.lower()
        if key == "sitemap":
            if value:
                sitemaps.append(value)
            continue
        if key == "user-agent":
            if current is None or not last_was_agent:
                current = ([], [], [])
                groups.append(current)
            current[0].append(value.lower())
            last_was_agent = True
            continue
        last_was_agent = False
        if current is None:
            continue
        if key in {"allow", "disallow"}:
            if value:
                current[1].append(RobotsRule(allow=key == "allow", path=value))
        elif key == "crawl-delay":
            try:
                current[2].append(float(value))
            except ValueError:
                continue

    specific = [g for g in groups if any(a != "*" and _agent_token(a) == token for a in g[0])]
    selected = specific or [g for g in groups if "*" in g[0]]
    rules = tuple(r for g in selected for r in g[1])
    delays = [d for g in selected for d in g[2] if d > 0]
    return RobotsRules(
        rules=rules,
        crawl_delay=max(delays) if delays else None,
        sitemaps=tuple(sitemaps),
    )


@dataclass
class TokenBucket:
    """
    Per-host permit source refilled continuously at `rate_per_minute / 60` tokens a second.

    Permits are handed out one at a time under a lock, so concurrent callers for the same host
    queue rather than burst.
    """

    rate_per_minute: int
    clock: Clock = time.monotonic
    sleep: Sleep = asyncio.sleep

    tokens: float = field(init=False)
    _updated_at: float = field(init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be > 0")
        self.tokens = float(self.rate_per_minute)
        self._updated_at = self.clock()

    @property
    def refill_per_second(self) -> float:
        return self.rate_per_minute / 60.0

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self._updated_at)
        self.tokens = min(float(self.rate_per_minute), self.tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    async def acquire(self) -> float:
        """Takes one permit, returning how long the caller waited for it."""
        waited = 0.0
        async with self._lock:
            self._refill()
            if self.tokens < 1:
                waited = (1 - self.tokens) / self.refill_per_second
                await self.sleep(waited)
                self._refill()
            self.tokens -= 1
        return waited


@dataclass(frozen=True)
class _CachedRobots:
    rules: RobotsRules | None
    status: str
    fetched_at: float


class Fetcher:
    """
    Polite HTTP client: robots.txt first, then a per-host rate limit, bounded retries with
    exponential backoff, and a hard deadline per request.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_s: float = 30.0,
        retries: int = 3,
        retry_delay_s: float = 1.0,
        default_rate_per_minute: int = 30,
        robots_ttl_s: float = 3600.0,
        robots_timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
        logger: RegistryLogger | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if retries < 0:
            raise ValueError("retries must be >= 0")
        if retry_delay_s < 0:
            raise ValueError("retry_delay_s must be >= 0")
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.default_rate_per_minute = default_rate_per_minute
        self.robots_ttl_s = robots_ttl_s
        self.robots_timeout_s = robots_timeout_s
        self._client = client
        self._owns_client = client is None
        self._log = logger or RegistryLogger()
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._robots: dict[str, _CachedRobots] = {}

    async def __aenter__(self) -> Fetcher:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    def _bucket(self, host: str) -> TokenBucket:
        bucket = self._buckets.get(host)
        if bucket is None:
            bucket = TokenBucket(self.default_rate_per_minute, clock=self._clock, sleep=self._sleep)
            self._buckets[host] = bucket
        return bucket

    def set_rate_limit(self, host: str, rate_per_minute: int) -> None:
        """A cached robots.txt crawl-delay caps whatever rate is requested."""
        host = host.lower()
        delayed = self._crawl_delay_rate(host)
        if delayed is not None:
            rate_per_minute = min(rate_per_minute, delayed)
        self._buckets[host] = TokenBucket(rate_per_minute, clock=self._clock, sleep=self._sleep)

    def _crawl_delay_rate(self, host: str) -> int | None:
        cached = self._robots.get(host)
        if cached is None or cached.rules is None or not cached.rules.crawl_delay:
            return None
        return max(1, math.floor(60 / cached.rules.crawl_delay))

    def rate_limit(self, host: str) -> int:
        return self._bucket(host.lower()).rate_per_minute

    def clear_caches(self) -> None:
        self._buckets.clear()
        self._robots.clear()

    async def _load_robots(self, scheme: str, host: str) -> _CachedRobots:
        cached = self._robots.get(host)
        now = self._clock()
        if cached is not None and now - cached.fetched_at < self.robots_ttl_s:
            return cached

        robots_url = f"{scheme}://{host}/robots.txt"
        rules: RobotsRules | None = None
        status = "allowed"
        try:
            resp = await asyncio.wait_for(
                self._http().get(robots_url, headers=self._headers(), timeout=self.robots_timeout_s),
                timeout=self.robots_timeout_s,
            )
            if resp.status_code == 404:
                rules = RobotsRules()
            elif resp.is_success:
                rules = parse_robots_txt(resp.text, self.user_agent)
            else:
                status = "unknown"
                self._log.warn(
                    "robots",
                    f"robots.txt returned HTTP {resp.status_code}; treating as unknown",
                    url=robots_url,
                )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            status = "unknown"
            self._log.warn("robots", f"robots.txt fetch failed: {e!r}", url=robots_url)

        if rules is not None and rules.crawl_delay:
            delayed = max(1, math.floor(60 / rules.crawl_delay))
            current = self.rate_limit(host)
            if delayed < current:
                self.set_rate_limit(host, delayed)
                self._log.info(
                    "robots",
                    f"crawl-delay {rules.crawl_delay}s lowers rate to {delayed}/min",
                    url=robots_url,
                )

        entry = _CachedRobots(rules=rules, status=status, fetched_at=now)
        self._robots[host] = entry
        return entry

    async def check_robots(self, url: str) -> RobotsResult:
        """
        Unreachable robots.txt yields `allowed=True` with status `unknown`, so the caller can
        record the uncertainty instead of assuming permission was granted.
        """
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if parsed.scheme not in {"http", "https"} or not host:
            return RobotsResult(allowed=False, status="disallowed")
        if parsed.port:
            host = f"{host}:{parsed.port}"

        entry = await self._load_robots(parsed.scheme, host)
        if entry.rules is None:
            return RobotsResult(allowed=True, status=entry.status)

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"
        allowed = entry.rules.is_allowed(path)
        if not allowed:
            status = "disallowed"
        elif any(not r.allow for r in entry.rules.rules):
            status = "partial"
        else:
            status = "allowed"
        return RobotsResult(
            allowed=allowed,
            status=status,
            crawl_delay=entry.rules.crawl_delay,
            sitemaps=entry.rules.sitemaps,
        )

    async def fetch(
        self,
        url: str,
        *,
        retries: int | None = None,
        timeout_s: float | None = None,
    ) -> FetchResult:
        retries = self.retries if retries is None else retries
        timeout_s = timeout_s or self.timeout_s
        started = self._clock()

        robots = await self.check_robots(url)
        if not robots.allowed:
            self._log.warn("fetch", "Blocked by robots.txt", url=url)
            return FetchResult(ok=False, status=403, url=url, error="Blocked by robots.txt")

        host = (urlparse(url).netloc or "").lower()
        last_error = "Unknown error"
        last_status = 0
        for attempt in range(retries + 1):
            await self._bucket(host).acquire()
            try:
                resp = await asyncio.wait_for(
                    self._http().get(url, headers=self._headers(), timeout=timeout_s),
                    timeout=timeout_s,
                )
            except (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError) as e:
                last_status = 0
                last_error = str(e) or e.__class__.__name__
                self._log.warn(
                    "fetch",
                    f"attempt {attempt + 1}/{retries + 1} failed: {last_error}",
                    url=url,
                )
            else:
                final_url = str(resp.url)
                if resp.is_success:
                    self._log.debug(
                        "fetch",
                        f"HTTP {resp.status_code}",
                        url=url,
                        duration_ms=int((self._clock() - started) * 1000),
                    )
                    return FetchResult(
                        ok=True,
                        status=resp.status_code,
                        url=url,
                        html=resp.text,
                        redirected=final_url != url,
                        final_url=final_url,
                    )
                last_status = resp.status_code
                last_error = f"HTTP {resp.status_code}"
                if resp.status_code not in RETRYABLE_STATUSES:
                    self._log.warn("fetch", last_error, url=url)
                    return FetchResult(
                        ok=False,
                        status=resp.status_code,
                        url=url,
                        error=last_error,
                        redirected=final_url != url,
                        final_url=final_url,
                    )
            if attempt < retries:
                await self._sleep(self.retry_delay_s * (2**attempt))

        self._log.error(
            "fetch",
            f"giving up after {retries + 1} attempts: {last_error}",
            url=url,
            duration_ms=int((self._clock() - started) * 1000),
        )
        return FetchResult(ok=False, status=last_status, url=url, error=last_error)
