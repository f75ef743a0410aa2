from __future__ import annotations

import math
import re
import time
from typing import Any

import httpx

from source_registry_core.config import DEFAULT_USER_AGENT
from source_registry_core.logging import RegistryLogger
from source_registry_core.visual.types import (
    VISUAL_CAPTION_SUFFIX,
    FailedIntent,
    ImageCandidate,
    VisualAid,
    VisualAidResult,
    VisualFetchConfig,
    VisualIntent,
)

COMMONS_API = "https://commons.wikimedia.org/w/api.php"
WIKIPEDIA_API = "https://en.wikipedia.org/w/api.php"

MIN_QUALITY_SCORE = 5

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

_QUERY_STOP_WORDS = frozenset(
    {"the", "and", "for", "with", "how", "what", "calculating", "understanding"}
)
_TERM_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "of", "in", "on", "for", "to", "and", "or", "with", "how", "do",
        "does", "what", "is", "are", "calculation", "calculating", "diagram", "illustration",
        "educational",
    }
)

PHOTO_TERMS = ("photo", "photograph", "picture of", "image of", "jpg", "jpeg")
IRRELEVANT_TERMS = (
    "logo", "icon", "flag", "coat of arms", "portrait", "screenshot", "map",
    "texture", "pattern", "background", "wallpaper", "tile", "fabric",
    "design", "decoration", "abstract art", "seamless", "vector art",
    "stock image", "stock photo", "clipart", "lethal", "weapon", "soldier",
    "military", "torso", "target",
)
GENERIC_PATTERN_TERMS = (
    "stripe", "striped", "stripes", "lines pattern", "divided into", "sections", "parallel lines",
)
# Advanced or comparison topics that crowd out basic calculation diagrams.
SPECIALIZED_TERMS = (
    "moment of", "whirl", "segmented", "supersilver", "supergolden",
    "golden rectangle", "silver rectangle", "parabola", "integral",
    "riemann", "curve", "calculus", "connection with", "relationship between",
    "equal area", "same area", "rectangles of area",
)
STRONG_EDUCATIONAL_TERMS = ("labeled", "label", "formula", "diagram", "illustration", "calculation")
HIGH_PRIORITY_TERMS = (
    "labeled", "label", "formula", "equation", "calculation", "how to calculate", "computing",
)
STRONG_DIAGRAM_TERMS = ("diagram", "illustration", "chart", "graph", "schematic")
GENERIC_FILE_TERMS = ("svg", "png")
SHAPE_CONFLICTS = (("rectangle", "circle"), ("circle", "rectangle"))


def extract_key_terms(text: str) -> list[str]:
    words = _NON_ALNUM_RE.sub("", text.lower()).split()
    return [w for w in words if len(w) >= 3 and w not in _TERM_STOP_WORDS]


def relevant_terms(intent: VisualIntent) -> list[str]:
    return list(
        dict.fromkeys([*extract_key_terms(intent.concept), *extract_key_terms(intent.search_query)])
    )


def build_search_queries(intent: VisualIntent) -> list[str]:
    """Fallback queries from most specific to broadest."""
    concept = intent.concept.lower()
    words = [
        w
        for w in _NON_ALNUM_RE.sub("", concept).split()
        if len(w) > 2 and w not in _QUERY_STOP_WORDS
    ][:3]
    queries: list[str] = []
    if len(words) >= 2:
        queries.append(" ".join(words[:2]))
        queries.append(f"{' '.join(words[:2])} labeled")
    if words and any(t in concept for t in ("area", "formula", "equation")):
        queries.append(f"{words[0]} formula")
    if words:
        queries.append(f"{' '.join(words)} diagram")
        if len(words[0]) > 3:
            queries.append(words[0])
    return queries


def _reject_reason(
    candidate: ImageCandidate,
    intent: VisualIntent,
    terms: list[str],
    config: VisualFetchConfig,
) -> str | None:
    title = candidate.title.lower()
    if any(t in title for t in PHOTO_TERMS):
        return "photo"
    if any(t in title for t in IRRELEVANT_TERMS):
        return "irrelevant type"
    has_diagram_label = any(t in title for t in ("diagram", "illustration", "chart"))
    if any(t in title for t in GENERIC_PATTERN_TERMS) and not has_diagram_label:
        return "generic pattern without diagram label"
    if any(t in title for t in SPECIALIZED_TERMS):
        query = intent.search_query.lower()
        basic = any(t in query for t in ("area", "formula", "calculation")) and not any(
            t in query for t in ("moment", "calculus", "equal")
        )
        if basic:
            return "too specialized for a basic concept"
    for wanted, other in SHAPE_CONFLICTS:
        if wanted in terms and other in title:
            return f"wrong shape - {other} vs {wanted}"

    matches = sum(1 for t in terms if len(t) >= 3 and t in title)
    required = 1 if any(t in title for t in STRONG_EDUCATIONAL_TERMS) else 2
    if matches < required:
        return f"insufficient matches - need {required}, got {matches}"
    if candidate.width < config.min_width or candidate.height < config.min_height:
        return "size"
    return None


def score_candidate(candidate: ImageCandidate, intent: VisualIntent, terms: list[str]) -> int:
    title = candidate.title.lower()
    matches = sum(1 for t in terms if len(t) >= 3 and t in title)
    score = matches
    if any(t in title for t in HIGH_PRIORITY_TERMS):
        score += 10
    if any(t in title for t in STRONG_DIAGRAM_TERMS):
        score += 5
    if intent.visual_type in title:
        score += 2
    if any(t in title for t in GENERIC_FILE_TERMS):
        score -= 1
    if matches < math.ceil(len(terms) / 2):
        score -= 5
    return score


def filter_candidates(
    candidates: list[ImageCandidate],
    intent: VisualIntent,
    config: VisualFetchConfig | None = None,
    *,
    logger: RegistryLogger | None = None,
) -> list[ImageCandidate]:
    """
    Drop photos, decorative or off-topic images and undersized files, then keep survivors
    scoring at least MIN_QUALITY_SCORE, best first.
    """
    config = config or VisualFetchConfig()
    terms = relevant_terms(intent)
    if logger:
        logger.debug("visual-aid-service", f"Filtering with relevance terms: {', '.join(terms)}")

    scored: list[tuple[int, ImageCandidate]] = []
    for candidate in candidates:
        reason = _reject_reason(candidate, intent, terms, config)
        if reason is not None:
            if logger:
                logger.debug("visual-aid-service", f'Rejected ({reason}): "{candidate.title}"')
            continue
        score = score_candidate(candidate, intent, terms)
        if logger:
            logger.debug("visual-aid-service", f'Scored "{candidate.title}": {score}')
        scored.append((score, candidate))

    scored.sort(key=lambda s: s[0], reverse=True)
    quality = [c for score, c in scored if score >= MIN_QUALITY_SCORE]
    if not quality and scored and logger:
        logger.debug(
            "visual-aid-service",
            f"All {len(scored)} candidates scored below quality threshold ({MIN_QUALITY_SCORE})",
        )
    return quality


def to_visual_aid(candidate: ImageCandidate, intent: VisualIntent) -> VisualAid:
    return VisualAid(
        src=candidate.url,
        alt=f"Illustrative {intent.visual_type} showing {intent.concept}",
        caption=f"{intent.concept} {VISUAL_CAPTION_SUFFIX}",
        query=intent.search_query,
        intent=intent,
        attribution=f"Source: {candidate.source}" if candidate.source else None,
        thumbnail_src=candidate.thumbnail_url,
    )


def _file_title(title: Any) -> str:
    return str(title or "").replace("File:", "", 1)


class VisualAidService:
    """
    Looks up illustrative images for visual intents in free image catalogs.

    Intents are processed one after another to stay polite to the catalogs; a failure anywhere
    leaves that intent without visuals instead of raising.
    """

    def __init__(
        self,
        config: VisualFetchConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        logger: RegistryLogger | None = None,
    ):
        self.config = config or VisualFetchConfig()
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None
        self._log = logger or RegistryLogger()

    async def __aenter__(self) -> VisualAidService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_ms / 1000,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def _get_json(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        r = await self._http().get(
            url,
            params=params,
            headers={"User-Agent": self.user_agent},
            timeout=self.config.timeout_ms / 1000,
        )
        r.raise_for_status()
        data = r.json()
        return data if isinstance(data, dict) else {}

    def _sized(self, info: dict[str, Any]) -> bool:
        return (info.get("width") or 0) >= self.config.min_width and (
            info.get("height") or 0
        ) >= self.config.min_height

    async def search_wikimedia_commons(self, query: str) -> list[ImageCandidate]:
        params = {
            "action": "query",
            "format": "json",
            "generator": "search",
            "gsrsearch": query,
            "gsrlimit": "15",
            "gsrnamespace": "6",
            "prop": "imageinfo",
            "iiprop": "url|size|extmetadata|mime",
            "iiurlwidth": "400",
            "origin": "*",
        }
        try:
            data = await self._get_json(COMMONS_API, params)
        except httpx.TimeoutException as e:
            raise RuntimeError("Image search timed out") from e
        except httpx.HTTPStatusError as e:
            raise RuntimeError(f"Wikimedia API error: {e.response.status_code}") from e

        pages = (data.get("query") or {}).get("pages") or {}
        results: list[ImageCandidate] = []
        for page in pages.values():
            infos = page.get("imageinfo") or []
            if not infos or not self._sized(infos[0]):
                continue
            info = infos[0]
            results.append(
                ImageCandidate(
                    url=info.get("url") or "",
                    thumbnail_url=info.get("thumburl"),
                    title=_file_title(page.get("title")),
                    source="Wikimedia Commons",
                    width=info.get("width") or 0,
                    height=info.get("height") or 0,
                )
            )
        return results

    async def search_wikipedia_images(self, query: str) -> list[ImageCandidate]:
        try:
            search = await self._get_json(
                WIKIPEDIA_API,
                {
                    "action": "query",
                    "format": "json",
                    "list": "search",
                    "srsearch": query,
                    "srlimit": "5",
                    "origin": "*",
                },
            )
            hits = (search.get("query") or {}).get("search") or []
            if not hits:
                return []
            article = hits[0].get("title") or ""
            page_data = await self._get_json(
                WIKIPEDIA_API,
                {
                    "action": "query",
                    "format": "json",
                    "prop": "images|imageinfo",
                    "titles": article,
                    "iiprop": "url|size",
                    "iiurlwidth": "400",
                    "origin": "*",
                },
            )
        except httpx.HTTPError as e:
            self._log.debug("visual-aid-service", f"Wikipedia image search failed: {e}")
            return []

        pages = list(((page_data.get("query") or {}).get("pages") or {}).values())
        page = next((p for p in pages if p.get("images")), None)
        if page is None:
            return []

        results: list[ImageCandidate] = []
        for image in page["images"][:10]:
            try:
                info_data = await self._get_json(
                    WIKIPEDIA_API,
                    {
                        "action": "query",
                        "format": "json",
                        "prop": "imageinfo",
                        "titles": image.get("title") or "",
                        "iiprop": "url|size",
                        "iiurlwidth": "400",
                        "origin": "*",
                    },
                )
            except httpx.HTTPError:
                continue
            for img_page in ((info_data.get("query") or {}).get("pages") or {}).values():
                infos = img_page.get("imageinfo") or []
                if not infos or not self._sized(infos[0]):
                    continue
                info = infos[0]
                results.append(
                    ImageCandidate(
                        url=info.get("url") or "",
                        thumbnail_url=info.get("thumburl"),
                        title=_file_title(image.get("title")),
                        source=f"Wikipedia: {article}",
                        width=info.get("width") or 0,
                        height=info.get("height") or 0,
                    )
                )
        return results

    async def search_images(self, query: str) -> list[ImageCandidate]:
        try:
            results = await self.search_wikimedia_commons(query)
            if results:
                return results
            results = await self.search_wikipedia_images(query)
            if results:
                return results
        except Exception as e:  # noqa: BLE001
            self._log.warn("visual-aid-service", f"Image search failed: {e}")
            return []
        self._log.debug("visual-aid-service", f'No images found for query: "{query}"')
        return []

    async def fetch_for_intent(self, intent: VisualIntent) -> list[VisualAid]:
        queries = build_search_queries(intent)
        self._log.debug(
            "visual-aid-service",
            f"Generated {len(queries)} search queries",
            details={"queries": queries, "concept": intent.concept},
        )
        for query in queries:
            candidates = await self.search_images(query)
            if not candidates:
                continue
            filtered = filter_candidates(candidates, intent, self.config, logger=self._log)
            if filtered:
                aids = [to_visual_aid(c, intent) for c in filtered[: self.config.max_per_intent]]
                self._log.debug(
                    "visual-aid-service",
                    f'Found {len(aids)} quality images with query: "{query}"',
                )
                return aids
            self._log.debug(
                "visual-aid-service",
                f'Query "{query}" returned {len(candidates)} results but none met quality standards',
            )
        self._log.debug(
            "visual-aid-service",
            f'No quality images found after trying {len(queries)} queries for: "{intent.concept}"',
        )
        return []

    async def fetch_visual_aids(self, intents: list[VisualIntent]) -> VisualAidResult:
        started = time.monotonic()
        self._log.info("visual-aid-service", f"Fetching visual aids for {len(intents)} intents")
        aids: list[VisualAid] = []
        failed: list[FailedIntent] = []
        for intent in intents:
            try:
                found = await self.fetch_for_intent(intent)
            except Exception as e:  # noqa: BLE001
                failed.append(FailedIntent(intent=intent, reason=str(e)))
                self._log.warn(
                    "visual-aid-service",
                    f'Failed to fetch visuals for: "{intent.concept}"',
                    details={"error": str(e)},
                )
                continue
            if found:
                aids.extend(found)
                self._log.debug(
                    "visual-aid-service", f'Found {len(found)} visuals for: "{intent.concept}"'
                )
            else:
                failed.append(FailedIntent(intent=intent, reason="No suitable images found"))
                self._log.debug(
                    "visual-aid-service", f'No suitable visuals for: "{intent.concept}"'
                )

        self._log.info(
            "visual-aid-service",
            "Visual aid fetch complete",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "total_intents": len(intents),
                "successful": len(aids),
                "failed": len(failed),
            },
        )
        return VisualAidResult(visual_aids=aids, failed_intents=failed)
