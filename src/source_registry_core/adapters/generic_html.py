from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from source_registry_core.adapters.base import (
    SourceAdapter,
    TocBuilder,
    clean_text,
    resolve_url,
    slugify,
)
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import AssetCandidate, NodeType, SelectorHints, TocNode

_HEADINGS = "h1[id], h2[id], h3[id], h4[id], h5[id], h6[id]"
_NAV_LINK_SELECTORS = ("nav a", ".navigation a", ".sidebar a", "aside a")


@dataclass(frozen=True)
class GenericHtmlConfig:
    toc_selector: str = "nav, .toc, #toc, .table-of-contents, aside"
    content_selector: str = "main, article, .content, #content, .main-content"
    title_selector: str = 'h1, .title, [role="heading"]'
    asset_link_selector: str = "a[href]"
    max_depth: int = 5
    exclude_patterns: tuple[str, ...] = ("#", "javascript:", "mailto:", "tel:")
    allowed_domains: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None, base: GenericHtmlConfig | None = None) -> GenericHtmlConfig:
        """Accepts snake_case or camelCase keys (seed configs use camelCase)."""
        cfg = base or cls()
        if not data:
            return cfg
        changes: dict[str, Any] = {}
        for f in fields(cls):
            camel = "".join(
                part if i == 0 else part.capitalize() for i, part in enumerate(f.name.split("_"))
            )
            for key in (f.name, camel):
                if key in data and data[key] is not None:
                    value = data[key]
                    if f.name in {"exclude_patterns", "allowed_domains"}:
                        value = tuple(value)
                    changes[f.name] = value
                    break
        return replace(cfg, **changes)

    def excluded(self, href: str) -> bool:
        return any(p in href for p in self.exclude_patterns)

    def domain_allowed(self, host: str) -> bool:
        return any(d in host for d in self.allowed_domains)


def _node_type(depth: int) -> NodeType:
    if depth == 0:
        return "chapter"
    if depth == 1:
        return "section"
    if depth == 2:
        return "subsection"
    return "other"


class GenericHtmlAdapter(SourceAdapter):
    """Configurable crawler for sites without a dedicated adapter."""

    source_type = "generic_html"

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        config: GenericHtmlConfig | None = None,
        logger: RegistryLogger | None = None,
    ):
        super().__init__(fetcher, logger=logger)
        self.config = config or GenericHtmlConfig()

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        self.log("info", "discover", f"Discovering assets from {seed_url}")
        cfg = GenericHtmlConfig.from_mapping(config, self.config)
        seed_host = urlparse(seed_url).hostname or ""
        if cfg.allowed_domains and not cfg.domain_allowed(seed_host):
            self.log("warn", "discover", f"Domain {seed_host} not in allowed domains")
            return []

        result = await self.fetcher.fetch(seed_url)
        if not result.ok or not result.html:
            self.log("error", "discover", f"Failed to fetch seed URL: {result.error}")
            return []

        soup = BeautifulSoup(result.html, "html.parser")
        title_el = soup.select_one(cfg.title_selector)
        page_title = (
            (clean_text(title_el.get_text()) if title_el else "")
            or (clean_text(soup.title.get_text()) if soup.title else "")
            or "Documentation"
        )

        assets: list[AssetCandidate] = []
        seen: set[str] = set()
        for link in soup.select(cfg.asset_link_selector):
            href = str(link.get("href") or "")
            if not href or cfg.excluded(href):
                continue
            url = resolve_url(href, seed_url)
            host = urlparse(url).hostname or ""
            if host != seed_host and not cfg.domain_allowed(host):
                continue
            if url in seen:
                continue
            seen.add(url)
            hint = str(link.get("title") or "")
            title = clean_text(link.get_text()) or hint or slugify(urlparse(url).path).replace("-", " ")
            if len(title) < 2:
                continue
            assets.append(
                AssetCandidate(slug=slugify(title), title=title, url=url, description=hint or None)
            )

        if not assets:
            assets.append(AssetCandidate(slug=slugify(page_title), title=page_title, url=seed_url))
        self.log("info", "discover", f"Discovered {len(assets)} assets")
        return assets

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        self.log("info", "map_toc", f"Mapping TOC for {candidate.title}")
        result = await self.fetcher.fetch(candidate.url)
        if not result.ok or not result.html:
            self.log("error", "map_toc", f"Failed to fetch asset: {result.error}")
            return []
        soup = BeautifulSoup(result.html, "html.parser")
        page_url = result.final_url or candidate.url

        for strategy in (self._from_toc_container, self._from_headings, self._from_links):
            toc = TocBuilder()
            strategy(soup, toc, candidate, page_url)
            if toc.nodes:
                self.log("info", "map_toc", f"Mapped {len(toc)} TOC nodes via {strategy.__name__}")
                return toc.nodes
        self.log("warn", "map_toc", f"No TOC found for {candidate.title}")
        return []

    def _from_toc_container(
        self, soup: BeautifulSoup, toc: TocBuilder, candidate: AssetCandidate, page_url: str
    ) -> None:
        for selector in (s.strip() for s in self.config.toc_selector.split(",")):
            container = soup.select_one(selector)
            if container is None:
                continue
            first_list = container.find(["ul", "ol"])
            if first_list is None:
                continue
            self._parse_list(first_list, toc, candidate.slug, page_url, 0)
            if toc.nodes:
                return

    def _parse_list(self, lst: Tag, toc: TocBuilder, asset_slug: str, page_url: str, depth: int) -> None:
        if depth > self.config.max_depth:
            return
        for li in lst.find_all("li", recursive=False):
            link = li.find("a", recursive=False)
            if link is None:
                continue
            title = clean_text(link.get_text())
            if not title:
                continue
            href = str(link.get("href") or "")
            url = resolve_url(href, page_url) if href and not self.config.excluded(href) else page_url
            toc.add(
                title=title,
                url=url,
                node_type=_node_type(depth),
                depth=depth,
                slug=f"{asset_slug}-{slugify(title)}-{depth}-{len(toc)}",
            )
            nested = li.find(["ul", "ol"], recursive=False)
            if nested is not None:
                self._parse_list(nested, toc, asset_slug, page_url, depth + 1)

    def _from_headings(
        self, soup: BeautifulSoup, toc: TocBuilder, candidate: AssetCandidate, page_url: str
    ) -> None:
        area = soup.select_one(self.config.content_selector) or soup.body or soup
        base = page_url.split("#", 1)[0]
        for heading in area.select(_HEADINGS):
            anchor = str(heading.get("id") or "")
            title = clean_text(heading.get_text())
            if not anchor or not title:
                continue
            depth = max(0, int(heading.name[1]) - 2)
            toc.add(
                title=title,
                url=f"{base}#{anchor}",
                node_type=_node_type(depth),
                depth=depth,
                slug=f"{candidate.slug}-{anchor}",
            )

    def _from_links(
        self, soup: BeautifulSoup, toc: TocBuilder, candidate: AssetCandidate, page_url: str
    ) -> None:
        seen: set[str] = set()
        for selector in _NAV_LINK_SELECTORS:
            for link in soup.select(selector):
                href = str(link.get("href") or "")
                title = clean_text(link.get_text())
                if not href or not title or self.config.excluded(href):
                    continue
                url = resolve_url(href, page_url)
                if url in seen:
                    continue
                seen.add(url)
                toc.add(
                    title=title,
                    url=url,
                    node_type="section",
                    depth=0,
                    slug=f"{candidate.slug}-{slugify(title)}-{len(toc)}",
                )
            if toc.nodes:
                return

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content=self.config.content_selector,
            title=self.config.title_selector,
            toc=self.config.toc_selector,
        )
