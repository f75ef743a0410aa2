from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import quote, urlparse

from bs4 import BeautifulSoup

from source_registry_core.adapters import SourceAdapter, TocBuilder, get_adapter, resolve_url, slugify
from source_registry_core.adapters.base import clean_text
from source_registry_core.catalog.base import LazyTocCatalog, tokenize
from source_registry_core.fetcher import Fetcher
from source_registry_core.grounding.types import TocNodeSummary
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, AssetCandidate, Source, TocNode
from source_registry_core.repositories.registry import RegistryRepository

SEARCH_URL = "https://html.duckduckgo.com/html/?q="
MIN_DOC_SCORE = 10
MAX_WEB_RESULTS = 10
MAX_BASIC_NODES = 50

_MDN_LICENSE_URL = "https://developer.mozilla.org/en-US/docs/MDN/Writing_guidelines/Attrib_copyright_license"

# Names that look alike but are different technologies.
CONFUSED_TERMS: dict[str, tuple[str, ...]] = {
    "java": ("javascript", "js"),
    "javascript": ("java",),
    "js": ("java",),
    "c": ("cpp", "csharp", "c++", "c#"),
    "cpp": ("c", "csharp"),
    "csharp": ("c", "cpp"),
}

_CONTENT_LINKS = ("main a", "article a", ".content a", "#content a", ".main-content a", '[role="main"] a')
_NAV_LINKS = (
    "nav a",
    ".sidebar a",
    ".toc a",
    ".navigation a",
    '[role="navigation"] a',
    ".menu a",
    ".nav-list a",
    ".table-of-contents a",
    "#toc a",
    ".index a",
)
_SKIP_TITLES = frozenset({"home", "back", "next", "previous", "skip"})
_DOC_HINTS = ("docs.", "developer.", "learn.", "tutorial", "guide")


@dataclass(frozen=True)
class DocSource:
    name: str
    slug: str
    base_url: str
    doc_url: str
    doc_type: str
    keywords: tuple[str, ...]
    description: str
    license_name: str
    license_url: str

    @property
    def source_type(self) -> str:
        return "sphinx_docs" if self.doc_type == "sphinx" else "generic_html"

    @property
    def hostname(self) -> str:
        return urlparse(self.base_url).hostname or ""


KNOWN_DOC_SOURCES: tuple[DocSource, ...] = (
    DocSource(
        "Dev.java - Learn Java", "dev-java", "https://dev.java", "https://dev.java/learn/", "generic",
        ("java", "jdk", "jvm", "programming", "oop", "object-oriented"),
        "Official Oracle Java Developer Portal - modern Java learning resources",
        "Oracle Technology Network License", "https://www.oracle.com/legal/terms.html",
    ),
    DocSource(
        "Java Programming (Wikibooks)", "java-wikibooks", "https://en.wikibooks.org",
        "https://en.wikibooks.org/wiki/Java_Programming", "generic",
        ("java", "jdk", "jvm", "programming", "oop", "beginner"),
        "Free, open Java programming textbook from Wikibooks",
        "CC BY-SA 3.0", "https://creativecommons.org/licenses/by-sa/3.0/",
    ),
    DocSource(
        "Python Documentation", "python-docs", "https://docs.python.org",
        "https://docs.python.org/3/tutorial/index.html", "sphinx",
        ("python", "programming", "scripting", "language"),
        "Official Python programming language documentation",
        "PSF License", "https://docs.python.org/3/license.html",
    ),
    DocSource(
        "MDN Web Docs - JavaScript", "mdn-javascript", "https://developer.mozilla.org",
        "https://developer.mozilla.org/en-US/docs/Web/JavaScript/Guide", "generic",
        ("javascript", "js", "web", "ecmascript", "programming"),
        "MDN JavaScript Guide and Reference", "CC BY-SA 2.5", _MDN_LICENSE_URL,
    ),
    DocSource(
        "MDN Web Docs - HTML", "mdn-html", "https://developer.mozilla.org",
        "https://developer.mozilla.org/en-US/docs/Learn/HTML", "generic",
        ("html", "web", "markup", "frontend"),
        "MDN HTML Learning Guide", "CC BY-SA 2.5", _MDN_LICENSE_URL,
    ),
    DocSource(
        "MDN Web Docs - CSS", "mdn-css", "https://developer.mozilla.org",
        "https://developer.mozilla.org/en-US/docs/Learn/CSS", "generic",
        ("css", "stylesheet", "web", "styling", "frontend"),
        "MDN CSS Learning Guide", "CC BY-SA 2.5", _MDN_LICENSE_URL,
    ),
    DocSource(
        "Rust Book", "rust-book", "https://doc.rust-lang.org", "https://doc.rust-lang.org/book/", "generic",
        ("rust", "programming", "systems", "memory", "safety"),
        "The Rust Programming Language book",
        "MIT/Apache 2.0", "https://github.com/rust-lang/book/blob/main/LICENSE-MIT",
    ),
    DocSource(
        "Go Documentation", "go-docs", "https://go.dev", "https://go.dev/doc/", "generic",
        ("go", "golang", "programming", "concurrency"),
        "Official Go programming language documentation", "BSD License", "https://go.dev/LICENSE",
    ),
    DocSource(
        "React Documentation", "react-docs", "https://react.dev", "https://react.dev/learn", "generic",
        ("react", "reactjs", "javascript", "frontend", "ui", "component"),
        "Official React documentation and learning guides",
        "CC BY 4.0", "https://github.com/reactjs/react.dev/blob/main/LICENSE-DOCS.md",
    ),
    DocSource(
        "Vue.js Documentation", "vue-docs", "https://vuejs.org", "https://vuejs.org/guide/introduction.html",
        "generic", ("vue", "vuejs", "javascript", "frontend", "framework"),
        "Official Vue.js documentation", "MIT", "https://github.com/vuejs/docs/blob/main/LICENSE",
    ),
    DocSource(
        "Next.js Documentation", "nextjs-docs", "https://nextjs.org", "https://nextjs.org/docs", "generic",
        ("nextjs", "next", "react", "ssr", "fullstack", "framework"),
        "Official Next.js documentation", "MIT", "https://github.com/vercel/next.js/blob/canary/license.md",
    ),
    DocSource(
        "Django Documentation", "django-docs", "https://docs.djangoproject.com",
        "https://docs.djangoproject.com/en/stable/intro/tutorial01/", "sphinx",
        ("django", "python", "web", "backend", "framework"),
        "Official Django web framework documentation",
        "BSD License", "https://github.com/django/django/blob/main/LICENSE",
    ),
    DocSource(
        "Node.js Documentation", "nodejs-docs", "https://nodejs.org", "https://nodejs.org/docs/latest/api/",
        "generic", ("nodejs", "node", "javascript", "backend", "runtime"),
        "Official Node.js API documentation", "MIT", "https://github.com/nodejs/node/blob/main/LICENSE",
    ),
    DocSource(
        "Express.js Documentation", "express-docs", "https://expressjs.com",
        "https://expressjs.com/en/starter/installing.html", "generic",
        ("express", "expressjs", "nodejs", "backend", "api", "web"),
        "Express.js web framework documentation",
        "CC BY-SA 3.0", "https://github.com/expressjs/expressjs.com/blob/gh-pages/LICENSE.md",
    ),
    DocSource(
        "PostgreSQL Documentation", "postgresql-docs", "https://www.postgresql.org",
        "https://www.postgresql.org/docs/current/tutorial.html", "generic",
        ("postgresql", "postgres", "sql", "database", "relational"),
        "PostgreSQL database documentation", "PostgreSQL License", "https://www.postgresql.org/about/licence/",
    ),
    DocSource(
        "MongoDB Documentation", "mongodb-docs", "https://www.mongodb.com",
        "https://www.mongodb.com/docs/manual/introduction/", "generic",
        ("mongodb", "mongo", "nosql", "database", "document"),
        "MongoDB documentation and tutorials",
        "CC BY-NC-SA 3.0", "https://www.mongodb.com/legal/documentation-license",
    ),
    DocSource(
        "Docker Documentation", "docker-docs", "https://docs.docker.com", "https://docs.docker.com/get-started/",
        "generic", ("docker", "container", "devops", "deployment", "virtualization"),
        "Docker containerization documentation",
        "Apache 2.0", "https://github.com/docker/docs/blob/main/LICENSE",
    ),
    DocSource(
        "Git Documentation", "git-docs", "https://git-scm.com", "https://git-scm.com/book/en/v2", "generic",
        ("git", "version", "control", "vcs", "github"),
        "Pro Git book - comprehensive Git documentation",
        "CC BY-NC-SA 3.0", "https://git-scm.com/book/en/v2",
    ),
    DocSource(
        "Kubernetes Documentation", "kubernetes-docs", "https://kubernetes.io",
        "https://kubernetes.io/docs/tutorials/kubernetes-basics/", "generic",
        ("kubernetes", "k8s", "container", "orchestration", "devops"),
        "Kubernetes container orchestration documentation",
        "CC BY 4.0", "https://github.com/kubernetes/website/blob/main/LICENSE",
    ),
    DocSource(
        "NumPy Documentation", "numpy-docs", "https://numpy.org",
        "https://numpy.org/doc/stable/user/absolute_beginners.html", "sphinx",
        ("numpy", "python", "array", "numerical", "data", "science"),
        "NumPy numerical computing library documentation",
        "BSD License", "https://numpy.org/doc/stable/license.html",
    ),
    DocSource(
        "Pandas Documentation", "pandas-docs", "https://pandas.pydata.org",
        "https://pandas.pydata.org/docs/getting_started/intro_tutorials/", "sphinx",
        ("pandas", "python", "dataframe", "data", "analysis"),
        "Pandas data analysis library documentation",
        "BSD License", "https://github.com/pandas-dev/pandas/blob/main/LICENSE",
    ),
    DocSource(
        "TypeScript Documentation", "typescript-docs", "https://www.typescriptlang.org",
        "https://www.typescriptlang.org/docs/handbook/intro.html", "generic",
        ("typescript", "ts", "javascript", "types", "programming"),
        "Official TypeScript handbook and documentation",
        "Apache 2.0", "https://github.com/microsoft/TypeScript/blob/main/LICENSE.txt",
    ),
)


@dataclass(frozen=True)
class DocMatch:
    source: DocSource
    score: int
    matched_keywords: list[str]


@dataclass(frozen=True)
class WebSearchResult:
    title: str
    url: str
    snippet: str
    domain: str


@dataclass(frozen=True)
class DocDiscovery:
    asset: Asset
    toc_summaries: list[TocNodeSummary]
    source: DocSource


def score_doc(source: DocSource, terms: list[str]) -> DocMatch:
    """
    Exact keyword hits weigh 15, words of the name 10, words of the description 5, plus 3 per
    match when several terms match. A term whose look-alike is one of the source's keywords
    ("java" against a JavaScript guide) rules the source out entirely.
    """
    name_words = set(tokenize(source.name, 2))
    description_words = set(tokenize(source.description, 2))
    score = 0
    matched: list[str] = []
    for term in terms:
        if any(kw in CONFUSED_TERMS.get(term, ()) for kw in source.keywords):
            return DocMatch(source=source, score=0, matched_keywords=[])
        if term in source.keywords:
            score += 15
        elif term in name_words:
            score += 10
        elif term in description_words:
            score += 5
        else:
            continue
        matched.append(term)
    if len(matched) > 1:
        score += len(matched) * 3
    return DocMatch(source=source, score=score, matched_keywords=matched)


def parse_search_results(html: str, limit: int = MAX_WEB_RESULTS) -> list[WebSearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results: list[WebSearchResult] = []
    for el in soup.select(".result"):
        if len(results) >= limit:
            break
        link = el.select_one(".result__a")
        if link is None:
            continue
        title = clean_text(link.get_text())
        url = str(link.get("href") or "")
        snippet_el = el.select_one(".result__snippet")
        domain = urlparse(url).hostname if url.startswith("http") else None
        if title and domain:
            results.append(
                WebSearchResult(
                    title=title,
                    url=url,
                    snippet=clean_text(snippet_el.get_text()) if snippet_el else "",
                    domain=domain,
                )
            )
    return results


def extract_basic_structure(html: str, source: DocSource, page_url: str | None = None) -> list[TocNode]:
    """
    Last-resort TOC for doc pages no adapter understands: same-site links from the main
    content, then navigation, then a Wikibooks article body, then linked headings.
    """
    page_url = page_url or source.doc_url
    soup = BeautifulSoup(html, "html.parser")
    site = source.hostname.removeprefix("www.")
    toc = TocBuilder()
    seen: set[str] = set()

    def add(href: str, title: str, depth: int = 1) -> None:
        title = clean_text(title)
        if len(toc) >= MAX_BASIC_NODES or not href or not 3 <= len(title) <= 100:
            return
        if href.startswith("#") and len(href) < 3:
            return
        url = resolve_url(href, page_url)
        if site not in (urlparse(url).hostname or "") or url in seen:
            return
        seen.add(url)
        toc.add(
            title=title,
            url=url,
            node_type="chapter" if depth == 0 else "section",
            depth=depth,
            slug=slugify(title)[:100],
        )

    for selector in _CONTENT_LINKS:
        for link in soup.select(selector):
            title = clean_text(link.get_text())
            if len(title) < 5 or title.lower() in _SKIP_TITLES:
                continue
            add(str(link.get("href") or ""), title)
        if len(toc) > 10:
            break

    if len(toc) < 5:
        for selector in _NAV_LINKS:
            for link in soup.select(selector):
                add(str(link.get("href") or ""), link.get_text())
            if len(toc) > 5:
                break

    if len(toc) < 5:
        for link in soup.select(".mw-parser-output > ul a, .mw-parser-output > ol a"):
            href = str(link.get("href") or "")
            if "action=edit" in href or (href.startswith("http") and "wikibooks" not in href):
                continue
            add(href, link.get_text())

    if len(toc) < 5:
        for link in soup.select("h1 a, h2 a, h3 a, h4 a"):
            heading = link.find_parent(["h1", "h2", "h3", "h4"])
            depth = int(heading.name[1]) - 1 if heading is not None else 1
            add(str(link.get("href") or ""), link.get_text(), depth)

    return toc.nodes


class WebDocsSearcher(LazyTocCatalog):
    """
    Curated documentation sites as a fallback when no textbook covers a topic. Matching is by
    exact keyword, so one language's docs never stand in for a similarly named one.
    """

    log_action = "web-docs"

    def __init__(
        self,
        repository: RegistryRepository,
        fetcher: Fetcher,
        *,
        logger: RegistryLogger | None = None,
        sources: tuple[DocSource, ...] = KNOWN_DOC_SOURCES,
        adapter_factory: Callable[..., SourceAdapter] = get_adapter,
    ):
        super().__init__(repository, logger=logger)
        self.fetcher = fetcher
        self.sources = sources
        self._adapter_factory = adapter_factory

    def search_known_docs(self, query: str) -> list[DocMatch]:
        terms = tokenize(query, 2)
        matches = (score_doc(s, terms) for s in self.sources)
        results = sorted((m for m in matches if m.score > 0), key=lambda m: m.score, reverse=True)
        self._log.info(
            self.log_action,
            f'Found {len(results)} matching docs for "{query}"',
            details={"topMatches": [m.source.name for m in results[:3]]},
        )
        return results

    def find_best_doc(self, query: str) -> DocSource | None:
        results = self.search_known_docs(query)
        if results and results[0].score >= MIN_DOC_SCORE:
            return results[0].source
        return None

    async def search_web(self, query: str) -> list[WebSearchResult]:
        search_query = f"{query} documentation tutorial site:docs OR site:developer OR site:learn"
        self._log.info(self.log_action, f'Searching web for: "{query}"')
        result = await self.fetcher.fetch(SEARCH_URL + quote(search_query, safe=""), timeout_s=10.0)
        if not result.ok or not result.html:
            self._log.warn(self.log_action, "Web search failed", details={"error": result.error})
            return []
        results = parse_search_results(result.html)
        self._log.info(self.log_action, f"Web search returned {len(results)} results")
        return results

    def _get_or_create_source(self, doc: DocSource) -> Source:
        existing = self.repository.get_source_by_base_url(doc.base_url)
        if existing:
            return existing
        return self.repository.insert_source(
            {
                "name": f"{doc.name} ({doc.hostname})",
                "type": doc.source_type,
                "base_url": doc.base_url,
                "description": doc.description,
                "license_name": doc.license_name,
                "license_url": doc.license_url,
                "license_confidence": 0.9,
                "robots_status": "allowed",
                "rate_limit_per_minute": 10,
                "scan_status": "idle",
            }
        )

    def get_or_create_doc_asset(self, doc: DocSource) -> Asset:
        source = self._get_or_create_source(doc)
        existing = self.repository.get_asset_by_slug(doc.slug, source_id=source.id)
        if existing:
            return existing
        created = self.repository.insert_asset(
            {
                "source_id": source.id,
                "slug": doc.slug,
                "title": doc.name,
                "url": doc.doc_url,
                "description": doc.description,
                "license_name": doc.license_name,
                "license_url": doc.license_url,
                "license_confidence": 0.9,
                "robots_status": "allowed",
                "active": True,
                "scan_status": "idle",
            }
        )
        self._log.info(self.log_action, f"Created asset for {doc.name}", asset_id=created.id)
        return created

    async def get_toc_for_doc_asset(self, asset: Asset, doc: DocSource) -> list[TocNode]:
        existing = self._stored_toc(asset)
        if existing:
            return existing

        self._log.info(self.log_action, f"Fetching TOC for {asset.title}", url=doc.doc_url)
        candidate = AssetCandidate(
            slug=asset.slug, title=asset.title, url=doc.doc_url, description=asset.description
        )
        adapter = self._adapter_factory(doc.source_type, self.fetcher, logger=self._log)
        nodes = await adapter.map_toc(candidate, doc.base_url)
        if not nodes:
            self._log.warn(self.log_action, f"No TOC nodes extracted for {asset.title}; trying page links")
            page = await self.fetcher.fetch(doc.doc_url)
            if page.ok and page.html:
                nodes = extract_basic_structure(page.html, doc, page.final_url)
        if not nodes:
            return []
        return self._save_toc(asset, nodes)

    async def discover_docs_for_topic(self, topic: str) -> DocDiscovery | None:
        """First viable curated source that yields a non-empty TOC; a web search is only logged."""
        self._log.info(self.log_action, f'Discovering docs for: "{topic}"')
        viable = [m for m in self.search_known_docs(topic) if m.score >= MIN_DOC_SCORE]
        for match in viable:
            doc = match.source
            try:
                asset = self.get_or_create_doc_asset(doc)
                await self.get_toc_for_doc_asset(asset, doc)
                summaries = self.summaries_for(asset)
            except Exception as e:  # noqa: BLE001
                self._log.error(self.log_action, f"Error fetching {doc.name}: {e}")
                continue
            if summaries:
                self._log.info(
                    self.log_action,
                    f"Loaded {len(summaries)} sections from {doc.name}",
                    asset_id=asset.id,
                )
                return DocDiscovery(asset=asset, toc_summaries=summaries, source=doc)
            self._log.warn(self.log_action, f"No TOC extracted from {doc.name}, trying next")

        web_results = await self.search_web(topic)
        hit = next((r for r in web_results if any(h in r.domain or h in r.url for h in _DOC_HINTS)), None)
        if hit is not None:
            self._log.info(self.log_action, f"Found web doc: {hit.url}", url=hit.url)
        return None
