from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from source_registry_core.fetcher import Fetcher
from source_registry_core.grounding.types import Citation, ExtractedContent, ExtractedFigure
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, SelectorHints, TocNode

DEFAULT_CONTENT_SELECTORS: dict[str, str] = {
    "content": '.main-content, [data-type="page"], .content, article, main, .book-content',
    "title": 'h1, .title, [data-type="document-title"]',
    "paragraph": 'p, [data-type="para"]',
    "heading": "h1, h2, h3, h4, h5, h6",
    "figure": 'figure, .figure, [data-type="figure"]',
    "figcaption": 'figcaption, .caption, [data-type="caption"]',
    "image": "img",
    "exclude": (
        "nav, .nav, .sidebar, .toc, .table-of-contents, header, footer, .header, .footer, "
        'script, style, [data-type="note"], .os-eoc, .os-teacher, .os-solutions'
    ),
}

MIN_PARAGRAPH_CHARS = 20

_WS_RE = re.compile(r"\s+")
_SECTION_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)*)")


@dataclass(frozen=True)
class PageContent:
    title: str
    content_text: str
    headings: list[str]
    figures: list[ExtractedFigure]


def merge_selectors(hints: SelectorHints | Mapping[str, Any] | None) -> dict[str, str]:
    selectors = dict(DEFAULT_CONTENT_SELECTORS)
    if hints is None:
        return selectors
    data = asdict(hints) if isinstance(hints, SelectorHints) else dict(hints)
    for key, value in data.items():
        if key in selectors and isinstance(value, str) and value.strip():
            selectors[key] = value
    return selectors


def _absolute(src: str, page_url: str) -> str:
    if src and not src.startswith("http"):
        return urljoin(page_url, src)
    return src


def extract_content(
    html: str, url: str, selector_hints: SelectorHints | Mapping[str, Any] | None = None
) -> PageContent | None:
    """
    Pull readable text, headings and figures out of a page.

    Returns None when no content region matches; chrome (nav, footers, notes...) is removed
    before anything is read.
    """
    selectors = merge_selectors(selector_hints)
    soup = BeautifulSoup(html, "html.parser")
    for el in soup.select(selectors["exclude"]):
        el.extract()

    area = soup.select_one(selectors["content"])
    if area is None:
        return None

    title_el = soup.select_one(selectors["title"])
    title = (title_el.get_text().strip() if title_el else "") or "Untitled"

    headings = [t for t in (h.get_text().strip() for h in area.select(selectors["heading"])) if t]

    paragraphs = [
        t
        for t in (p.get_text().strip() for p in area.select(selectors["paragraph"]))
        if len(t) > MIN_PARAGRAPH_CHARS
    ]
    content_text = "\n\n".join(paragraphs)
    if not content_text:
        content_text = _WS_RE.sub(" ", area.get_text()).strip()

    figures: list[ExtractedFigure] = []
    seen: set[str] = set()
    in_figures: set[int] = set()
    for fig in area.select(selectors["figure"]):
        for img in fig.select(selectors["image"]):
            in_figures.add(id(img))
        img = fig.select_one(selectors["image"])
        if img is None:
            continue
        src = _absolute(str(img.get("src") or ""), url)
        if not src or src in seen:
            continue
        caption = "".join(c.get_text() for c in fig.select(selectors["figcaption"])).strip()
        seen.add(src)
        figures.append(
            ExtractedFigure(url=src, alt=str(img.get("alt") or "") or None, caption=caption or None)
        )

    for img in area.select(selectors["image"]):
        if id(img) in in_figures:
            continue
        src = _absolute(str(img.get("src") or ""), url)
        if src and src not in seen:
            seen.add(src)
            figures.append(ExtractedFigure(url=src, alt=str(img.get("alt") or "") or None))

    return PageContent(title=title, content_text=content_text, headings=headings, figures=figures)


def build_section_path(node: TocNode, all_nodes: Sequence[TocNode]) -> list[str]:
    by_id = {n.id: n for n in all_nodes if n.id}
    path: list[str] = []
    visited: set[str] = {node.id} if node.id else set()
    current: TocNode | None = node
    while current is not None:
        path.insert(0, current.title)
        if not current.parent_id or current.parent_id in visited:
            break
        visited.add(current.parent_id)
        current = by_id.get(current.parent_id)
    return path


def build_citations(contents: Sequence[ExtractedContent]) -> list[Citation]:
    return [
        Citation(
            source_title=c.source_title,
            section_title=c.title,
            section_path=list(c.section_path),
            url=c.url,
            node_id=c.node_id,
        )
        for c in contents
    ]


def format_citations_display(citations: Sequence[Citation]) -> str:
    """
    e.g. "Based on Calculus Volume 1, Sections 2.1–2.3".
    """
    if not citations:
        return ""
    source = citations[0].source_title
    titles = [c.section_title for c in citations]
    if len(titles) == 1:
        return f"Based on {source}, {titles[0]}"

    numbers = [m.group(1) for m in (_SECTION_NUMBER_RE.search(t) for t in titles) if m]
    if len(numbers) == len(titles):
        return f"Based on {source}, Sections {numbers[0]}–{numbers[-1]}"
    if len(titles) <= 3:
        return f"Based on {source}: {', '.join(titles)}"
    return f"Based on {source}: {', '.join(titles[:2])} and {len(titles) - 2} more sections"


class ContentRetriever:
    def __init__(
        self,
        fetcher: Fetcher,
        *,
        logger: RegistryLogger | None = None,
        batch_delay_s: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.batch_delay_s = batch_delay_s
        self._log = logger or RegistryLogger()
        self._sleep = sleep

    async def extract_content_from_url(
        self, url: str, selector_hints: SelectorHints | Mapping[str, Any] | None = None
    ) -> PageContent | None:
        """None means the node could not be grounded; it is not an error."""
        started = time.monotonic()
        self._log.info("content-retriever", f"Fetching content from: {url}", url=url)
        result = await self.fetcher.fetch(url)
        if not result.ok or not result.html:
            self._log.error(
                "content-retriever",
                f"Failed to fetch: {url}",
                url=url,
                details={"status": result.status, "error": result.error},
            )
            return None

        page = extract_content(result.html, url, selector_hints)
        if page is None:
            self._log.warn("content-retriever", f"No content area found for: {url}", url=url)
            return None
        self._log.info(
            "content-retriever",
            f"Content extracted from: {url}",
            url=url,
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "titleLength": len(page.title),
                "contentLength": len(page.content_text),
                "headingsCount": len(page.headings),
                "figuresCount": len(page.figures),
            },
        )
        return page

    async def _retrieve_one(
        self, node: TocNode, asset: Asset, all_nodes: Sequence[TocNode]
    ) -> ExtractedContent | None:
        if not node.url or not node.id:
            self._log.warn(
                "content-retriever",
                f"Node has no URL to retrieve: {node.title}",
                asset_id=asset.id,
            )
            return None
        try:
            page = await self.extract_content_from_url(node.url, asset.selector_hints)
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "content-retriever",
                f"Error extracting node content: {e}",
                asset_id=asset.id,
                url=node.url,
                details={"nodeId": node.id},
            )
            return None
        if page is None:
            self._log.warn(
                "content-retriever",
                f"Failed to extract content for node: {node.title}",
                asset_id=asset.id,
                url=node.url,
                details={"nodeId": node.id},
            )
            return None
        return ExtractedContent(
            node_id=node.id,
            title=page.title or node.title,
            url=node.url,
            content_text=page.content_text,
            headings=page.headings,
            figures=page.figures,
            source_title=asset.title,
            section_path=build_section_path(node, all_nodes),
        )

    async def retrieve_nodes_content(
        self,
        nodes: Sequence[TocNode],
        asset: Asset,
        max_concurrent: int = 2,
        *,
        context_nodes: Sequence[TocNode] | None = None,
    ) -> list[ExtractedContent]:
        """
        Fetch nodes in batches of `max_concurrent`, pausing between batches.

        Failed nodes are left out of the result. `context_nodes` (usually the whole TOC) is
        used to build section paths; it defaults to `nodes`.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        started = time.monotonic()
        self._log.info(
            "content-retriever",
            f"Retrieving content for {len(nodes)} nodes",
            asset_id=asset.id,
            details={"assetTitle": asset.title},
        )
        lookup = context_nodes if context_nodes is not None else nodes
        results: list[ExtractedContent] = []
        for i in range(0, len(nodes), max_concurrent):
            batch = nodes[i : i + max_concurrent]
            extracted = await asyncio.gather(*(self._retrieve_one(n, asset, lookup) for n in batch))
            results.extend(e for e in extracted if e is not None)
            if i + max_concurrent < len(nodes):
                await self._sleep(self.batch_delay_s)

        self._log.info(
            "content-retriever",
            "Content retrieval complete",
            asset_id=asset.id,
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"requestedNodes": len(nodes), "successfulNodes": len(results)},
        )
        return results
