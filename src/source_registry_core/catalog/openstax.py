from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from source_registry_core.adapters.openstax import OPENSTAX_BASE_URL, OpenStaxAdapter
from source_registry_core.catalog.base import CacheEntry, LazyTocCatalog, tokenize
from source_registry_core.grounding.types import TocNodeSummary
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, AssetCandidate, Source, TocNode
from source_registry_core.repositories.registry import RegistryRepository

OPENSTAX_SOURCE_NAME = "OpenStax"
OPENSTAX_LICENSE = {
    "license_name": "CC BY 4.0",
    "license_url": "https://creativecommons.org/licenses/by/4.0/",
    "license_confidence": 0.95,
}

# Words that show up in half the catalog's titles; a match on one of these alone says little.
GENERIC_WORDS = frozenset(
    {
        "introduction", "fundamentals", "basics", "principles", "concepts", "guide", "learn",
        "learning", "course", "study", "tutorial", "the", "and", "for", "with", "from", "into",
    }
)
TECHNICAL_TERMS = frozenset(
    {
        "programming", "coding", "software", "java", "python", "javascript", "react", "database",
        "algorithm", "data", "structure", "web", "api", "machine", "learning", "artificial",
        "intelligence", "computer", "science",
    }
)


@dataclass(frozen=True)
class OpenStaxBook:
    slug: str
    title: str
    url: str
    description: str | None = None
    subjects: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    cover_url: str | None = None

    @classmethod
    def from_candidate(cls, candidate: AssetCandidate) -> OpenStaxBook:
        meta = candidate.metadata or {}

        def strings(key: str) -> list[str]:
            value = meta.get(key)
            return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []

        return cls(
            slug=candidate.slug,
            title=candidate.title,
            url=candidate.url,
            description=candidate.description,
            subjects=strings("subjects"),
            categories=strings("categories"),
            cover_url=meta.get("coverUrl"),
        )


@dataclass(frozen=True)
class BookMatch:
    book: OpenStaxBook
    score: int
    matched_terms: list[str]


def score_book(book: OpenStaxBook, terms: list[str]) -> BookMatch:
    """
    Title substring hits weigh 10, subject hits 8, description or category words 3, and a
    partial word overlap 1; generic words count 2, 2 and 1 and never partially. More than one
    meaningful term adds 3 per term.

    Matches made only of generic words keep 30% of their score, and a technical query that
    hits no subject keeps 40%, so "java fundamentals" does not land on "Fundamentals of Nursing".
    """
    title = book.title.lower()
    subjects = [s.lower() for s in book.subjects]
    book_terms = set(tokenize(" ".join([book.title, book.description or "", *book.subjects, *book.categories])))

    score = 0
    subject_matches = 0
    matched: list[str] = []
    for term in terms:
        generic = term in GENERIC_WORDS
        if term in title:
            score += 2 if generic else 10
            matched.append(term)
        elif any(term in s for s in subjects):
            subject_matches += 1
            score += 2 if generic else 8
            matched.append(term)
        elif term in book_terms:
            score += 1 if generic else 3
            matched.append(term)
        elif not generic and any(term in t or t in term for t in book_terms):
            score += 1
            matched.append(term)

    meaningful = sum(1 for t in matched if t not in GENERIC_WORDS)
    if meaningful > 1:
        score += meaningful * 3
    if matched and meaningful == 0:
        score = math.floor(score * 0.3)
    if subject_matches == 0 and any(t in TECHNICAL_TERMS for t in terms):
        score = math.floor(score * 0.4)
    return BookMatch(book=book, score=score, matched_terms=matched)


@dataclass(frozen=True)
class DiscoveredContent:
    asset: Asset
    toc_summaries: list[TocNodeSummary]


class OpenStaxCatalog(LazyTocCatalog):
    """
    OpenStax textbooks on demand, for topics the registry has not scanned yet. The book list is
    cached for `ttl_s`; picking a book creates its registry asset and maps its TOC live.
    """

    log_action = "dynamic-fetch"

    def __init__(
        self,
        repository: RegistryRepository,
        adapter: OpenStaxAdapter,
        *,
        logger: RegistryLogger | None = None,
        ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(repository, logger=logger)
        self.adapter = adapter
        self.ttl_s = ttl_s
        self._clock = clock
        self._cache: CacheEntry[list[OpenStaxBook]] | None = None

    async def get_books(self, force_refresh: bool = False) -> list[OpenStaxBook]:
        now = self._clock()
        if not force_refresh and self._cache and not self._cache.is_stale(now, self.ttl_s):
            return self._cache.value

        self._log.info(self.log_action, "Fetching OpenStax book catalog")
        try:
            candidates = await self.adapter.discover_assets(OPENSTAX_BASE_URL)
        except Exception as e:
            self._log.error(self.log_action, f"Failed to fetch OpenStax books: {e}")
            raise
        books = [OpenStaxBook.from_candidate(c) for c in candidates]
        self._cache = CacheEntry(value=books, fetched_at=now)
        self._log.info(self.log_action, f"Cached {len(books)} OpenStax books")
        return books

    async def search_books_by_topic(self, topic: str) -> list[BookMatch]:
        terms = tokenize(topic)
        matches = [score_book(b, terms) for b in await self.get_books()]
        results = sorted((m for m in matches if m.score > 0), key=lambda m: m.score, reverse=True)
        self._log.info(
            self.log_action,
            f'Found {len(results)} books matching "{topic}"',
            details={"topMatches": [m.book.title for m in results[:3]]},
        )
        return results

    async def find_best_book(self, topic: str) -> OpenStaxBook | None:
        results = await self.search_books_by_topic(topic)
        return results[0].book if results else None

    def _get_or_create_source(self) -> Source:
        existing = self.repository.get_source_by_name(OPENSTAX_SOURCE_NAME)
        if existing:
            return existing
        return self.repository.insert_source(
            {
                "name": OPENSTAX_SOURCE_NAME,
                "type": "openstax",
                "base_url": OPENSTAX_BASE_URL,
                "description": "Free, peer-reviewed, openly licensed textbooks",
                "robots_status": "allowed",
                "rate_limit_per_minute": 30,
                "scan_status": "idle",
                **OPENSTAX_LICENSE,
            }
        )

    def get_or_create_asset(self, book: OpenStaxBook) -> Asset:
        source = self._get_or_create_source()
        existing = self.repository.get_asset_by_slug(book.slug, source_id=source.id)
        if existing:
            self._log.info(self.log_action, f"Found existing asset for {book.title}", asset_id=existing.id)
            return existing
        created = self.repository.insert_asset(
            {
                "source_id": source.id,
                "slug": book.slug,
                "title": book.title,
                "url": book.url,
                "description": book.description,
                "robots_status": "allowed",
                "active": True,
                "scan_status": "idle",
                "metadata": {
                    "subjects": list(book.subjects),
                    "categories": list(book.categories),
                    "coverUrl": book.cover_url,
                },
                **OPENSTAX_LICENSE,
            }
        )
        self._log.info(self.log_action, f"Created new asset for {book.title}", asset_id=created.id)
        return created

    async def get_toc_for_asset(self, asset: Asset) -> list[TocNode]:
        existing = self._stored_toc(asset)
        if existing:
            return existing

        self._log.info(self.log_action, f"Fetching TOC live for {asset.title}", url=asset.url)
        candidate = AssetCandidate(
            slug=asset.slug, title=asset.title, url=asset.url, description=asset.description
        )
        nodes = await self.adapter.map_toc(candidate, OPENSTAX_BASE_URL)
        if not nodes:
            self._log.warn(self.log_action, f"No TOC nodes found for {asset.title}")
            return []
        return self._save_toc(asset, nodes, completed=True)

    async def get_toc_summaries(self, asset: Asset) -> list[TocNodeSummary]:
        await self.get_toc_for_asset(asset)
        return self.summaries_for(asset)

    async def discover_content_for_topic(self, topic: str) -> DiscoveredContent | None:
        self._log.info(self.log_action, f'Discovering content for topic: "{topic}"')
        book = await self.find_best_book(topic)
        if book is None:
            self._log.warn(self.log_action, f'No OpenStax book found for topic: "{topic}"')
            return None

        asset = self.get_or_create_asset(book)
        summaries = await self.get_toc_summaries(asset)
        if not summaries:
            self._log.error(self.log_action, f"Failed to get TOC for {book.title}")
            return None
        self._log.info(
            self.log_action,
            f"Content discovered: {asset.title} with {len(summaries)} TOC nodes",
            asset_id=asset.id,
        )
        return DiscoveredContent(asset=asset, toc_summaries=summaries)
