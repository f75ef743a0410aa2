from __future__ import annotations

from typing import Any

import pytest

from source_registry_core.adapters import get_adapter
from source_registry_core.catalog import (
    KNOWN_DOC_SOURCES,
    CacheEntry,
    MitOcwCatalog,
    MitOcwCourse,
    OpenStaxBook,
    OpenStaxCatalog,
    WebDocsSearcher,
    extract_basic_structure,
    parse_search_results,
    score_book,
    score_course,
    score_doc,
    tokenize,
)
from source_registry_core.models import AssetCandidate, TocNode

CALCULUS = AssetCandidate(
    slug="18-01-single-variable-calculus-fall-2006",
    title="Single Variable Calculus",
    url="https://ocw.mit.edu/courses/18-01-single-variable-calculus-fall-2006/",
    description="Differentiation and integration of functions of one variable",
    metadata={"courseNumber": "18.01", "department": "Mathematics", "topics": ["Calculus", "Mathematics"]},
)
ALGORITHMS = AssetCandidate(
    slug="6-006-introduction-to-algorithms-spring-2020",
    title="Introduction to Algorithms",
    url="https://ocw.mit.edu/courses/6-006-introduction-to-algorithms-spring-2020/",
    metadata={"courseNumber": "6.006", "department": "Electrical Engineering and Computer Science"},
)


class FakeCatalogAdapter:
    def __init__(self, candidates: list[AssetCandidate], nodes: list[TocNode] | None = None):
        self.candidates = candidates
        self.nodes = nodes or []
        self.discover_calls = 0
        self.map_calls = 0

    async def discover_assets(self, seed_url: str, config: dict[str, Any] | None = None) -> list[AssetCandidate]:
        self.discover_calls += 1
        return list(self.candidates)

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        self.map_calls += 1
        return list(self.nodes)


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _catalog(repository, adapter: FakeCatalogAdapter, clock: Clock | None = None) -> MitOcwCatalog:  # noqa: ANN001
    return MitOcwCatalog(repository, adapter, ttl_s=3600, clock=clock or Clock())  # type: ignore[arg-type]


def test_cache_entry_staleness() -> None:
    entry = CacheEntry(value=[], fetched_at=100.0)
    assert not entry.is_stale(3699.0, 3600)
    assert entry.is_stale(3700.0, 3600)


def test_tokenize_drops_short_tokens() -> None:
    assert tokenize("Intro to 3-D Graphics & AI") == ["intro", "graphics"]
    assert tokenize(None) == []


def test_score_course_weights_fields() -> None:
    course = MitOcwCourse.from_candidate(CALCULUS)
    assert course.course_number == "18.01"
    assert course.topics == ["Calculus", "Mathematics"]

    title_hit = score_course(course, ["calculus", "derivatives"])
    assert title_hit.score == 15
    assert title_hit.matched_terms == ["calculus"]

    multi = score_course(course, ["integration", "mathematics"])
    assert multi.score == 5 + 10 + 4
    assert score_course(course, ["biology"]).score == 0


@pytest.mark.asyncio
async def test_course_list_is_cached_until_ttl(repository) -> None:  # noqa: ANN001
    adapter = FakeCatalogAdapter([CALCULUS, ALGORITHMS])
    clock = Clock()
    catalog = _catalog(repository, adapter, clock)

    assert len(await catalog.get_courses()) == 2
    clock.now += 600
    await catalog.get_courses()
    assert adapter.discover_calls == 1

    clock.now += 3600
    await catalog.get_courses()
    assert adapter.discover_calls == 2

    await catalog.get_courses(force_refresh=True)
    assert adapter.discover_calls == 3


@pytest.mark.asyncio
async def test_search_and_best_course(repository) -> None:  # noqa: ANN001
    catalog = _catalog(repository, FakeCatalogAdapter([CALCULUS, ALGORITHMS]))

    matches = await catalog.search_courses_by_topic("single calculus algorithms")
    assert [m.score for m in matches] == [15 + 15 + 4, 15]
    assert [m.course.title for m in matches] == ["Single Variable Calculus", "Introduction to Algorithms"]

    best = await catalog.find_best_course("single variable calculus")
    assert best is not None and best.slug == CALCULUS.slug
    # description-only hit scores 5, under the threshold
    assert await catalog.find_best_course("integration") is None


@pytest.mark.asyncio
async def test_assets_are_created_once_and_toc_is_mapped_lazily(repository) -> None:  # noqa: ANN001
    nodes = [
        TocNode(title="Syllabus", url=f"{CALCULUS.url}pages/syllabus/", node_type="page", depth=0, sort_order=0),
        TocNode(title="Lecture Notes", url=f"{CALCULUS.url}pages/lecture-notes/", node_type="chapter", depth=0, sort_order=1),
        TocNode(title="Derivatives", url=f"{CALCULUS.url}pages/lecture-notes/1", node_type="section", depth=1, sort_order=2),
    ]
    adapter = FakeCatalogAdapter([CALCULUS], nodes)
    catalog = _catalog(repository, adapter)
    course = (await catalog.get_courses())[0]

    asset = catalog.get_or_create_asset(course)
    assert catalog.get_or_create_asset(course).id == asset.id
    assert asset.active
    assert asset.license_name == "CC BY-NC-SA 4.0"
    source = repository.get_source(asset.source_id)
    assert source.name == "MIT OpenCourseWare"
    assert source.type == "mit_ocw"

    stored = await catalog.get_toc_for_asset(asset)
    assert [n.title for n in stored] == ["Syllabus", "Lecture Notes", "Derivatives"]
    assert stored[2].parent_id == stored[1].id
    refreshed = repository.get_asset(asset.id)
    assert refreshed.toc_extraction_success
    assert refreshed.toc_stats.total_nodes == 3

    summaries = await catalog.get_toc_summaries(asset)
    assert [s.title for s in summaries] == ["Syllabus", "Lecture Notes", "Derivatives"]
    assert adapter.map_calls == 1


@pytest.mark.asyncio
async def test_empty_live_toc_is_not_stored(repository) -> None:  # noqa: ANN001
    catalog = _catalog(repository, FakeCatalogAdapter([CALCULUS]))
    asset = catalog.get_or_create_asset(MitOcwCourse.from_candidate(CALCULUS))

    assert await catalog.get_toc_for_asset(asset) == []
    assert not repository.get_asset(asset.id).toc_extraction_success


@pytest.mark.asyncio
async def test_course_asset_ignores_same_slug_from_other_sources(repository) -> None:  # noqa: ANN001
    other = repository.insert_source({"name": "Mirror", "type": "generic_html", "base_url": "https://mirror.example.org"})
    foreign = repository.insert_asset(
        {"source_id": other.id, "slug": CALCULUS.slug, "title": "Mirrored Calculus", "url": "https://mirror.example.org/c"}
    )
    catalog = _catalog(repository, FakeCatalogAdapter([CALCULUS]))

    asset = catalog.get_or_create_asset(MitOcwCourse.from_candidate(CALCULUS))

    assert asset.id != foreign.id
    assert asset.title == "Single Variable Calculus"
    assert repository.get_source(asset.source_id).name == "MIT OpenCourseWare"
    assert catalog.get_or_create_asset(MitOcwCourse.from_candidate(CALCULUS)).id == asset.id


PYTHON_BOOK = AssetCandidate(
    slug="introduction-python-programming",
    title="Introduction to Python Programming",
    url="https://openstax.org/books/introduction-python-programming/pages/1-introduction",
    description="An introductory programming text.",
    metadata={
        "subjects": ["Computer Science"],
        "categories": ["Computer Science"],
        "coverUrl": "https://openstax.org/cover.png",
    },
)
NURSING_BOOK = AssetCandidate(
    slug="fundamentals-nursing",
    title="Fundamentals of Nursing",
    url="https://openstax.org/books/fundamentals-nursing/pages/1-introduction",
    description="Covers patient care.",
    metadata={"subjects": ["Nursing"], "categories": ["Nursing"]},
)


def test_score_book_discounts_generic_and_off_subject_matches() -> None:
    python = OpenStaxBook.from_candidate(PYTHON_BOOK)
    nursing = OpenStaxBook.from_candidate(NURSING_BOOK)
    assert python.subjects == ["Computer Science"]
    assert python.cover_url == "https://openstax.org/cover.png"

    assert score_book(python, ["computer", "science", "python"]).score == 8 + 8 + 10 + 9
    # technical query with no subject hit keeps 40%
    assert score_book(python, ["python", "programming"]).score == 10
    assert score_book(nursing, ["java", "fundamentals"]).score == 0
    assert score_book(nursing, ["fundamentals"]).matched_terms == ["fundamentals"]
    assert score_book(nursing, ["fundamentals"]).score == 0
    assert score_book(nursing, ["patients"]).score == 1


def _openstax(repository, adapter: FakeCatalogAdapter) -> OpenStaxCatalog:  # noqa: ANN001
    return OpenStaxCatalog(repository, adapter, clock=Clock())  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_openstax_discovery_creates_asset_and_maps_toc_once(repository) -> None:  # noqa: ANN001
    nodes = [
        TocNode(title="1 Statements", url=f"{PYTHON_BOOK.url}", node_type="chapter", depth=0, sort_order=0),
        TocNode(title="1.1 Background", url=None, node_type="section", depth=1, sort_order=1),
    ]
    adapter = FakeCatalogAdapter([NURSING_BOOK, PYTHON_BOOK], nodes)
    catalog = _openstax(repository, adapter)

    found = await catalog.discover_content_for_topic("computer science python")

    assert found is not None
    assert found.asset.slug == PYTHON_BOOK.slug
    assert found.asset.license_name == "CC BY 4.0"
    assert [s.title for s in found.toc_summaries] == ["1 Statements", "1.1 Background"]
    assert repository.get_source(found.asset.source_id).type == "openstax"
    stored = repository.get_asset(found.asset.id)
    assert stored.scan_status == "completed"
    assert stored.last_scan_at is not None
    assert stored.toc_stats.chapters == 1

    again = await catalog.discover_content_for_topic("python computer science")
    assert again is not None and again.asset.id == found.asset.id
    assert adapter.map_calls == 1
    assert adapter.discover_calls == 1


@pytest.mark.asyncio
async def test_openstax_discovery_without_match_or_toc_is_none(repository) -> None:  # noqa: ANN001
    catalog = _openstax(repository, FakeCatalogAdapter([NURSING_BOOK, PYTHON_BOOK]))

    assert await catalog.find_best_book("java fundamentals") is None
    assert await catalog.discover_content_for_topic("java fundamentals") is None
    # the nursing book matches but its TOC comes back empty
    assert await catalog.discover_content_for_topic("nursing") is None


DOCS = {d.slug: d for d in KNOWN_DOC_SOURCES}


def test_known_doc_sources_are_unique() -> None:
    assert len(KNOWN_DOC_SOURCES) == 22
    assert len(DOCS) == 22
    assert DOCS["python-docs"].source_type == "sphinx_docs"
    assert DOCS["mdn-css"].source_type == "generic_html"


def test_score_doc_keeps_look_alike_languages_apart() -> None:
    assert score_doc(DOCS["mdn-javascript"], ["java"]).score == 0
    assert score_doc(DOCS["typescript-docs"], ["java"]).score == 0
    assert score_doc(DOCS["dev-java"], ["java"]).score == 15
    assert score_doc(DOCS["numpy-docs"], ["python", "data"]).score == 15 + 15 + 6
    assert score_doc(DOCS["python-docs"], ["documentation"]).score == 10
    assert score_doc(DOCS["python-docs"], ["official"]).score == 5


def test_search_known_docs_and_best_doc(repository) -> None:  # noqa: ANN001
    searcher = WebDocsSearcher(repository, object())  # type: ignore[arg-type]

    assert [m.source.slug for m in searcher.search_known_docs("Java")] == ["dev-java", "java-wikibooks"]
    assert searcher.find_best_doc("java").slug == "dev-java"
    assert searcher.find_best_doc("kotlin") is None


def test_parse_search_results_keeps_absolute_links() -> None:
    html = """
    <div class="result">
      <a class="result__a" href="https://docs.example.dev/guide">Example <b>Guide</b></a>
      <a class="result__snippet">Learn the  basics.</a>
    </div>
    <div class="result"><a class="result__a" href="/l/?uddg=x">Redirect</a></div>
    <div class="result"><a class="result__a" href="https://x.org/"></a></div>
    """
    results = parse_search_results(html)

    assert len(results) == 1
    assert results[0].title == "Example Guide"
    assert results[0].domain == "docs.example.dev"
    assert results[0].snippet == "Learn the basics."


def test_basic_structure_from_wikibooks_lists_and_headings() -> None:
    html = """
    <html><body>
      <h1><a href="/wiki/Java_Programming">Java Programming</a></h1>
      <div class="mw-parser-output"><ul>
        <li><a href="/wiki/Java_Programming/Overview">Overview</a></li>
        <li><a href="/wiki/Java_Programming/History">History</a></li>
        <li><a href="/w/index.php?title=Java&action=edit">edit</a></li>
        <li><a href="https://example.com/ext">External</a></li>
        <li><a href="/wiki/Java_Programming/History">History again</a></li>
      </ul></div>
      <h2><a href="/wiki/Java_Programming/Basics">Language Basics</a></h2>
    </body></html>
    """
    nodes = extract_basic_structure(html, DOCS["java-wikibooks"])

    assert [n.title for n in nodes] == ["Overview", "History", "Java Programming", "Language Basics"]
    assert nodes[0].url == "https://en.wikibooks.org/wiki/Java_Programming/Overview"
    assert [(n.depth, n.node_type) for n in nodes[2:]] == [(0, "chapter"), (1, "section")]
    assert [n.sort_order for n in nodes] == [0, 1, 2, 3]


PANDAS_TOC = """
<html><body><div class="toctree-wrapper"><ul>
  <li><a href="01_table_oriented.html">What kind of data does pandas handle?</a></li>
  <li><a href="02_read_write.html">How do I read and write tabular data?</a></li>
</ul></div></body></html>
"""


@pytest.mark.asyncio
async def test_docs_discovery_falls_through_to_first_source_with_toc(repository, make_fetcher) -> None:  # noqa: ANN001
    pandas = DOCS["pandas-docs"]
    fetcher, site = make_fetcher({pandas.doc_url: PANDAS_TOC})
    searcher = WebDocsSearcher(repository, fetcher)

    found = await searcher.discover_docs_for_topic("python data")

    assert found is not None
    assert found.source.slug == "pandas-docs"
    assert [s.title for s in found.toc_summaries] == [
        "What kind of data does pandas handle?",
        "How do I read and write tabular data?",
    ]
    assert DOCS["numpy-docs"].doc_url in site.requests
    source = repository.get_source(found.asset.source_id)
    assert source.name == "Pandas Documentation (pandas.pydata.org)"
    assert source.type == "sphinx_docs"
    assert source.rate_limit_per_minute == 10
    assert found.asset.license_name == "BSD License"
    assert found.asset.license_confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_docs_discovery_skips_sources_that_raise(repository, make_fetcher) -> None:  # noqa: ANN001
    mdn = DOCS["mdn-javascript"]
    nav = (
        '<html><body><nav><ul><li><a href="/en-US/docs/Web/JavaScript/Guide/Introduction">Introduction</a></li>'
        '<li><a href="/en-US/docs/Web/JavaScript/Guide/Grammar_and_types">Grammar and types</a></li></ul></nav>'
        "</body></html>"
    )
    fetcher, _ = make_fetcher({mdn.doc_url: nav})

    def factory(source_type: str, fetcher, **kwargs: Any):  # noqa: ANN001, ANN202
        if source_type == "sphinx_docs":
            raise RuntimeError("sphinx unavailable")
        return get_adapter(source_type, fetcher, **kwargs)

    searcher = WebDocsSearcher(repository, fetcher, adapter_factory=factory)
    found = await searcher.discover_docs_for_topic("python web")

    assert found is not None
    assert found.source.slug == "mdn-javascript"
    assert [s.title for s in found.toc_summaries] == ["Introduction", "Grammar and types"]


@pytest.mark.asyncio
async def test_docs_discovery_without_curated_match_searches_web(repository, make_fetcher) -> None:  # noqa: ANN001
    fetcher, site = make_fetcher({})
    searcher = WebDocsSearcher(repository, fetcher)

    assert await searcher.discover_docs_for_topic("kotlin coroutines") is None
    assert any(u.startswith("https://html.duckduckgo.com/html/?q=") for u in site.requests)
    assert await searcher.search_web("kotlin") == []


def test_doc_assets_share_a_source_per_site(repository) -> None:  # noqa: ANN001
    searcher = WebDocsSearcher(repository, object())  # type: ignore[arg-type]

    html_asset = searcher.get_or_create_doc_asset(DOCS["mdn-html"])
    css_asset = searcher.get_or_create_doc_asset(DOCS["mdn-css"])

    assert html_asset.source_id == css_asset.source_id
    assert html_asset.id != css_asset.id
    assert searcher.get_or_create_doc_asset(DOCS["mdn-html"]).id == html_asset.id
    assert repository.get_source(html_asset.source_id).name == "MDN Web Docs - HTML (developer.mozilla.org)"
