from __future__ import annotations

from dataclasses import replace
from typing import Any

from bs4 import BeautifulSoup, Tag

from source_registry_core.adapters.base import (
    SourceAdapter,
    TocBuilder,
    clean_text,
    node_type_for_depth,
    resolve_url,
    slugify,
)
from source_registry_core.models import AssetCandidate, SelectorHints, TocNode, ValidationResult

DEFAULT_VERSIONS = ("3.13", "3.12", "3.11", "3.10")

PYTHON_DOCS_SECTIONS: tuple[tuple[str, str], ...] = (
    ("Tutorial", "tutorial"),
    ("Library Reference", "library"),
    ("Language Reference", "reference"),
    ("Python Setup and Usage", "using"),
    ("HOWTOs", "howto"),
    ("Installing Python Modules", "installing"),
    ("Distributing Python Modules", "distributing"),
    ("FAQs", "faq"),
)

GENERIC_TOC_SELECTORS = (
    ".toctree-wrapper ul",
    ".sidebar-toctree ul",
    "#table-of-contents ul",
    ".toc ul",
    "nav.contents ul",
)


def is_python_docs(url: str) -> bool:
    return "docs.python.org" in url


def _walk_toctree(ul: Tag, toc: TocBuilder, *, page_url: str, slug_prefix: str, depth: int = 0) -> None:
    for li in ul.find_all("li", recursive=False):
        link = li.find("a", recursive=False)
        if link is None:
            continue
        href = str(link.get("href") or "")
        title = clean_text(link.get_text())
        if not href or not title:
            continue
        toc.add(
            title=title,
            url=resolve_url(href, page_url),
            node_type=node_type_for_depth(depth),
            depth=depth,
            slug=f"{slug_prefix}-{slugify(title)}-{len(toc)}",
        )
        nested = li.find(["ul", "ol"], recursive=False)
        if nested is not None:
            _walk_toctree(nested, toc, page_url=page_url, slug_prefix=slug_prefix, depth=depth + 1)


class SphinxDocsAdapter(SourceAdapter):
    """Sphinx-generated documentation sites; docs.python.org gets version probing."""

    source_type = "sphinx_docs"

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        self.log("info", "discover", f"Discovering Sphinx docs from {seed_url}")
        config = config or {}
        if is_python_docs(seed_url):
            return await self._discover_python_docs(
                list(config.get("versions") or DEFAULT_VERSIONS),
                str(config.get("defaultLanguage") or config.get("language") or "en"),
            )

        result = await self.fetcher.fetch(seed_url)
        if not result.ok or not result.html:
            self.log("error", "discover", f"Failed to fetch Sphinx index: {result.error}")
            return []

        soup = BeautifulSoup(result.html, "html.parser")
        assets: list[AssetCandidate] = []
        for el in soup.select('select[name="version"] option, a[href*="/version/"], .version-selector a'):
            version = str(el.get("value") or "") or clean_text(el.get_text())
            if not version or "latest" in version:
                continue
            href = str(el.get("href") or f"{seed_url.rstrip('/')}/{version}/")
            assets.append(
                AssetCandidate(
                    slug=f"docs-v{slugify(version)}",
                    title=f"Documentation v{version}",
                    url=resolve_url(href, seed_url),
                    version=version,
                )
            )
        if not assets:
            title = clean_text(soup.title.get_text()) if soup.title else ""
            assets.append(AssetCandidate(slug="docs", title=title or "Documentation", url=seed_url))

        self.log("info", "discover", f"Discovered {len(assets)} Sphinx doc assets")
        return assets

    async def _discover_python_docs(self, versions: list[str], language: str) -> list[AssetCandidate]:
        assets: list[AssetCandidate] = []
        for version in versions:
            url = f"https://docs.python.org/{version}/"
            result = await self.fetcher.fetch(url, retries=0)
            if not result.ok:
                self.log("debug", "discover", f"Python {version} docs not available")
                continue
            assets.append(
                AssetCandidate(
                    slug=f"python-{version}",
                    title=f"Python {version} Documentation",
                    url=url,
                    version=version,
                    description=f"Official Python {version} documentation",
                    metadata={
                        "language": language,
                        "sections": [slug for _, slug in PYTHON_DOCS_SECTIONS],
                    },
                )
            )
        return assets

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await super().validate(candidate, base_url)
        if is_python_docs(candidate.url) and (
            not result.license_name or (result.license_confidence or 0) < 0.9
        ):
            result = replace(
                result,
                license_name="PSF License",
                license_url="https://docs.python.org/3/license.html",
                license_confidence=0.95,
            )
        return result

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        self.log("info", "map_toc", f"Mapping TOC for {candidate.title}")
        if is_python_docs(candidate.url):
            return await self._map_python_docs(candidate)
        return await self._map_generic(candidate)

    async def _map_python_docs(self, candidate: AssetCandidate) -> list[TocNode]:
        toc = TocBuilder()
        for name, section in PYTHON_DOCS_SECTIONS:
            section_url = resolve_url(f"{section}/index.html", candidate.url)
            toc.add(
                title=name,
                url=section_url,
                node_type="chapter",
                depth=0,
                slug=f"{candidate.slug}-{section}",
            )
            result = await self.fetcher.fetch(section_url)
            if not result.ok or not result.html:
                self.log("debug", "map_toc", f"Could not fetch section {name}: {result.error}")
                continue

            soup = BeautifulSoup(result.html, "html.parser")
            seen: set[str] = set()
            for li in soup.select(".toctree-l1, .toctree-wrapper li"):
                link = li.find("a", recursive=False)
                if link is None:
                    continue
                href = str(link.get("href") or "")
                title = clean_text(link.get_text())
                if not href or not title or title in seen:
                    continue
                if href.startswith("http") and "python.org" not in href:
                    continue
                seen.add(title)
                toc.add(
                    title=title,
                    url=resolve_url(href, section_url),
                    node_type="section",
                    depth=1,
                    slug=f"{candidate.slug}-{section}-{slugify(title)}-{len(toc)}",
                )
        self.log("info", "map_toc", f"Mapped {len(toc)} TOC nodes for Python docs")
        return toc.nodes

    async def _map_generic(self, candidate: AssetCandidate) -> list[TocNode]:
        result = await self.fetcher.fetch(candidate.url)
        if not result.ok or not result.html:
            return []
        soup = BeautifulSoup(result.html, "html.parser")
        root = None
        for selector in GENERIC_TOC_SELECTORS:
            found = soup.select_one(selector)
            if found is not None and found.find("a") is not None:
                root = found
                break
        if root is None:
            self.log("warn", "map_toc", "Could not find TOC in generic Sphinx docs")
            return []

        toc = TocBuilder()
        _walk_toctree(root, toc, page_url=candidate.url, slug_prefix=candidate.slug)
        self.log("info", "map_toc", f"Mapped {len(toc)} TOC nodes")
        return toc.nodes

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content='.body, .document, [role="main"], main',
            title="h1, .title",
            toc=".toctree-wrapper, .sphinxsidebar, nav.contents",
            license=".footer, #license",
        )
