from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from source_registry_core.adapters.mit_ocw import OCW_BASE_URL, MitOcwAdapter
from source_registry_core.catalog.base import CacheEntry, LazyTocCatalog, tokenize
from source_registry_core.grounding.types import TocNodeSummary
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, AssetCandidate, Source, TocNode
from source_registry_core.repositories.registry import RegistryRepository
from source_registry_core.seeds import get_seed_by_name

OCW_SOURCE_NAME = "MIT OpenCourseWare"
OCW_LICENSE = {
    "license_name": "CC BY-NC-SA 4.0",
    "license_url": "https://creativecommons.org/licenses/by-nc-sa/4.0/",
    "license_confidence": 0.85,
}
MIN_BEST_COURSE_SCORE = 10


@dataclass(frozen=True)
class MitOcwCourse:
    slug: str
    title: str
    url: str
    course_number: str = ""
    description: str | None = None
    department: str | None = None
    level: str | None = None
    topics: list[str] = field(default_factory=list)

    @classmethod
    def from_candidate(cls, candidate: AssetCandidate) -> MitOcwCourse:
        meta = candidate.metadata or {}
        topics = meta.get("topics")
        return cls(
            slug=candidate.slug,
            title=candidate.title,
            url=candidate.url,
            course_number=str(meta.get("courseNumber") or ""),
            description=candidate.description,
            department=meta.get("department"),
            level=meta.get("level"),
            topics=[t for t in topics if isinstance(t, str)] if isinstance(topics, list) else [],
        )


@dataclass(frozen=True)
class CourseMatch:
    course: MitOcwCourse
    score: int
    matched_terms: list[str]


def score_course(course: MitOcwCourse, terms: list[str]) -> CourseMatch:
    """
    Title hits weigh 15, topics 10, department 8, description 5; each term counts once, at its
    best field. Several matched terms add 2 per term.
    """
    fields = (
        (set(tokenize(course.title)), 15),
        ({t for topic in course.topics for t in tokenize(topic)}, 10),
        (set(tokenize(course.department)), 8),
        (set(tokenize(course.description)), 5),
    )
    score = 0
    matched: list[str] = []
    for term in terms:
        for tokens, weight in fields:
            if term in tokens:
                score += weight
                matched.append(term)
                break
    if len(matched) > 1:
        score += len(matched) * 2
    return CourseMatch(course=course, score=score, matched_terms=matched)


class MitOcwCatalog(LazyTocCatalog):
    """
    On-demand access to MIT OCW courses: a TTL-cached course list, topic search, and lazy
    registry assets whose TOC is mapped live the first time it is asked for.
    """

    log_action = "mit-ocw-fetch"

    def __init__(
        self,
        repository: RegistryRepository,
        adapter: MitOcwAdapter,
        *,
        logger: RegistryLogger | None = None,
        ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(repository, logger=logger)
        self.adapter = adapter
        self.ttl_s = ttl_s
        self._clock = clock
        self._cache: CacheEntry[list[MitOcwCourse]] | None = None

    async def get_courses(self, force_refresh: bool = False) -> list[MitOcwCourse]:
        now = self._clock()
        if not force_refresh and self._cache and not self._cache.is_stale(now, self.ttl_s):
            return self._cache.value

        self._log.info(self.log_action, "Fetching MIT OCW course catalog")
        try:
            candidates = await self.adapter.discover_assets(OCW_BASE_URL)
        except Exception as e:
            self._log.error(self.log_action, f"Failed to fetch MIT OCW courses: {e}")
            raise
        courses = [MitOcwCourse.from_candidate(c) for c in candidates]
        self._cache = CacheEntry(value=courses, fetched_at=now)
        self._log.info(self.log_action, f"Cached {len(courses)} MIT OCW courses")
        return courses

    async def search_courses_by_topic(self, topic: str) -> list[CourseMatch]:
        terms = tokenize(topic)
        matches = [score_course(c, terms) for c in await self.get_courses()]
        results = sorted((m for m in matches if m.score > 0), key=lambda m: m.score, reverse=True)
        self._log.info(
            self.log_action,
            f'Found {len(results)} matching MIT OCW courses for "{topic}"',
            details={"topMatches": [m.course.title for m in results[:3]]},
        )
        return results

    async def find_best_course(self, topic: str) -> MitOcwCourse | None:
        results = await self.search_courses_by_topic(topic)
        if results and results[0].score >= MIN_BEST_COURSE_SCORE:
            return results[0].course
        return None

    def _get_or_create_source(self) -> Source:
        existing = self.repository.get_source_by_name(OCW_SOURCE_NAME)
        if existing:
            return existing
        seed = get_seed_by_name(OCW_SOURCE_NAME)
        return self.repository.insert_source(
            {
                "name": OCW_SOURCE_NAME,
                "type": "mit_ocw",
                "base_url": OCW_BASE_URL,
                "description": seed.description if seed else None,
                "robots_status": "allowed",
                "rate_limit_per_minute": 30,
                "scan_status": "idle",
                "config": {"seedUrl": seed.seed_url} if seed else {},
                **OCW_LICENSE,
            }
        )

    def get_or_create_asset(self, course: MitOcwCourse) -> Asset:
        source = self._get_or_create_source()
        existing = self.repository.get_asset_by_slug(course.slug, source_id=source.id)
        if existing:
            return existing
        created = self.repository.insert_asset(
            {
                "source_id": source.id,
                "slug": course.slug,
                "title": course.title,
                "url": course.url,
                "description": course.description,
                "robots_status": "allowed",
                "active": True,
                "scan_status": "idle",
                "metadata": {
                    "courseNumber": course.course_number,
                    "department": course.department,
                    "level": course.level,
                    "topics": list(course.topics),
                },
                **OCW_LICENSE,
            }
        )
        self._log.info(self.log_action, f"Created asset for {course.title}", asset_id=created.id)
        return created

    async def get_toc_for_asset(self, asset: Asset) -> list[TocNode]:
        existing = self._stored_toc(asset)
        if existing:
            return existing

        self._log.info(self.log_action, f"Fetching TOC live for {asset.title}", url=asset.url)
        candidate = AssetCandidate(
            slug=asset.slug, title=asset.title, url=asset.url, description=asset.description
        )
        nodes = await self.adapter.map_toc(candidate, OCW_BASE_URL)
        if not nodes:
            self._log.warn(self.log_action, f"No TOC nodes extracted for {asset.title}")
            return []
        return self._save_toc(asset, nodes)

    async def get_toc_summaries(self, asset: Asset) -> list[TocNodeSummary]:
        await self.get_toc_for_asset(asset)
        return self.summaries_for(asset)
