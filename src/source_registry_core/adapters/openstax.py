from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

import orjson

from source_registry_core.adapters.base import (
    AdapterError,
    SourceAdapter,
    TocBuilder,
    slugify,
)
from source_registry_core.models import (
    AssetCandidate,
    NodeType,
    SelectorHints,
    TocNode,
    ValidationResult,
)

OPENSTAX_BASE_URL = "https://openstax.org"
CMS_API_URL = "https://openstax.org/apps/cms/api"
BOOKS_BASE_URL = "https://openstax.org/books"

_TAG_RE = re.compile(r"<[^>]*>")
_PRELOADED_RE = re.compile(r"window\.__PRELOADED_STATE__\s*=\s*(\{[\s\S]*?\});?\s*</script>")


def strip_html(html: str | None) -> str:
    return _TAG_RE.sub("", html or "").strip()


def find_tree(obj: Any, depth: int = 0) -> dict[str, Any] | None:
    if depth > 5 or not isinstance(obj, dict):
        return None
    tree = obj.get("tree")
    if isinstance(tree, dict) and tree.get("contents"):
        return tree
    for value in obj.values():
        found = find_tree(value, depth + 1)
        if found:
            return found
    return None


def _preloaded_tree(state: dict[str, Any]) -> dict[str, Any] | None:
    for path in (("page", "book"), ("content", "book"), ("book",)):
        cur: Any = state
        for key in path:
            cur = cur.get(key) if isinstance(cur, dict) else None
        tree = cur.get("tree") if isinstance(cur, dict) else None
        if isinstance(tree, dict) and tree.get("contents"):
            return tree
    return find_tree(state)


def _node_type(item: dict[str, Any], depth: int) -> NodeType:
    if item.get("toc_type") == "book-content":
        return "chapter" if item.get("toc_target_type") == "chapter" else "section"
    if depth == 0:
        return "chapter" if item.get("contents") else "section"
    if depth == 1:
        return "section"
    return "subsection"


class OpenStaxAdapter(SourceAdapter):
    """OpenStax textbooks, discovered through the CMS books API."""

    source_type = "openstax"

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        self.log("info", "discover", "Discovering OpenStax books via CMS API")
        result = await self.fetcher.fetch(f"{CMS_API_URL}/books/")
        if not result.ok or not result.html:
            raise AdapterError(f"Failed to fetch books API: {result.error}")
        try:
            books = orjson.loads(result.html).get("books") or []
        except (orjson.JSONDecodeError, AttributeError) as e:
            raise AdapterError(f"Failed to parse books API response: {e}") from e

        assets: list[AssetCandidate] = []
        for book in books:
            if book.get("book_state") != "live":
                self.log("debug", "discover", f"Skipping non-live book: {book.get('title')}")
                continue
            slug = book.get("slug") or (book.get("meta") or {}).get("slug")
            if not slug:
                continue
            slug = re.sub(r"^books/", "", slug)
            assets.append(
                AssetCandidate(
                    slug=slug,
                    title=book.get("title") or slug,
                    url=f"{BOOKS_BASE_URL}/{slug}/pages/1-introduction",
                    description=strip_html(book.get("description")) or None,
                    metadata={
                        "cnxId": book.get("cnx_id"),
                        "bookUuid": book.get("book_uuid"),
                        "detailsUrl": f"{OPENSTAX_BASE_URL}/details/books/{slug}",
                        "coverUrl": book.get("cover_url"),
                        "subjects": [
                            s.get("subject_name") for s in book.get("book_subjects") or []
                        ],
                        "categories": [
                            c.get("subject_category") for c in book.get("book_categories") or []
                        ],
                        "publishDate": book.get("publish_date"),
                    },
                )
            )
        self.log("info", "discover", f"Discovered {len(assets)} OpenStax books")
        return assets

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await super().validate(candidate, base_url)
        if not result.license_name or (result.license_confidence or 0) < 0.9:
            result = replace(
                result,
                license_name="CC BY 4.0",
                license_url="https://creativecommons.org/licenses/by/4.0/",
                license_confidence=0.95,
            )
        return result

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        self.log("info", "map_toc", f"Mapping TOC for {candidate.title}")
        result = await self.fetcher.fetch(candidate.url)
        if not result.ok or not result.html:
            self.log("error", "map_toc", f"Failed to fetch book page: {result.error}")
            return []
        m = _PRELOADED_RE.search(result.html)
        if not m:
            self.log("warn", "map_toc", "Could not find __PRELOADED_STATE__ in page")
            return []
        try:
            state = orjson.loads(m.group(1))
        except orjson.JSONDecodeError as e:
            self.log("error", "map_toc", f"Failed to parse __PRELOADED_STATE__: {e}")
            return []

        tree = _preloaded_tree(state) if isinstance(state, dict) else None
        if not tree:
            self.log("warn", "map_toc", "Could not find tree structure in preloaded state")
            return []

        toc = TocBuilder()

        def walk(contents: list[Any], depth: int) -> None:
            for item in contents:
                if not isinstance(item, dict):
                    continue
                title = strip_html(item.get("title"))
                if not title:
                    continue
                page_slug = item.get("slug") or ""
                toc.add(
                    title=title,
                    url=f"{BOOKS_BASE_URL}/{candidate.slug}/pages/{page_slug}"
                    if page_slug
                    else candidate.url,
                    node_type=_node_type(item, depth),
                    depth=depth,
                    slug=slugify(f"{candidate.slug}-{page_slug or title}-{len(toc)}"),
                    metadata={
                        "tocType": item.get("toc_type"),
                        "tocTargetType": item.get("toc_target_type"),
                    },
                )
                children = item.get("contents")
                if isinstance(children, list) and children:
                    walk(children, depth + 1)

        walk(tree["contents"], 0)
        self.log("info", "map_toc", f"Mapped {len(toc)} TOC nodes for {candidate.title}")
        return toc.nodes

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content='.main-content, [data-type="page"], .content',
            title='h1, .title, [data-type="document-title"]',
            toc='.table-of-contents, #toc, nav[aria-label="Table of Contents"]',
            license='.license, [data-type="license"]',
        )
