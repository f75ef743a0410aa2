from __future__ import annotations

import pytest

from source_registry_core.grounding.retriever import (
    ContentRetriever,
    build_section_path,
    extract_content,
    format_citations_display,
)
from source_registry_core.grounding.types import Citation
from source_registry_core.models import Asset, SelectorHints, TocNode

PAGE = """
<html><body>
<nav><a href="/">Home</a></nav>
<main>
  <h1>Limits</h1>
  <h2>Definition</h2>
  <p>A limit describes the value a function approaches.</p>
  <p>Too short.</p>
  <figure><img src="img/graph.png" alt="Graph"><figcaption>Figure 1: A graph</figcaption></figure>
  <img src="https://cdn.example.org/extra.png">
  <img src="img/graph.png">
</main>
<footer><p>Copyright notice goes here for every page</p></footer>
</body></html>
"""


def _node(node_id: str, title: str, parent_id: str | None = None, url: str | None = None) -> TocNode:
    return TocNode(
        id=node_id,
        title=title,
        url=url,
        node_type="section",
        depth=0 if parent_id is None else 1,
        sort_order=0,
        parent_id=parent_id,
    )


def _citation(title: str) -> Citation:
    return Citation(
        source_title="Calculus Volume 1",
        section_title=title,
        section_path=[title],
        url="https://example.org",
        node_id=title,
    )


def test_extract_content_strips_chrome_and_collects_figures() -> None:
    page = extract_content(PAGE, "https://example.org/book/limits")

    assert page is not None
    assert page.title == "Limits"
    assert page.headings == ["Limits", "Definition"]
    assert page.content_text == "A limit describes the value a function approaches."
    assert [(f.url, f.alt, f.caption) for f in page.figures] == [
        ("https://example.org/book/img/graph.png", "Graph", "Figure 1: A graph"),
        ("https://cdn.example.org/extra.png", None, None),
    ]


def test_extract_content_without_content_area_is_none() -> None:
    assert extract_content("<html><body><div>loose text</div></body></html>", "https://x") is None


def test_extract_content_honours_selector_hints_and_falls_back_to_text() -> None:
    html = '<html><body><div id="body">  short\n  words  </div></body></html>'
    page = extract_content(html, "https://x", SelectorHints(content="#body"))

    assert page is not None
    assert page.title == "Untitled"
    assert page.content_text == "short words"


def test_build_section_path_walks_to_root() -> None:
    chapter = _node("c1", "Chapter 2 Limits")
    section = _node("s1", "2.1 Preview", parent_id="c1")
    sub = _node("u1", "Tangent problem", parent_id="s1")

    assert build_section_path(sub, [chapter, section, sub]) == [
        "Chapter 2 Limits",
        "2.1 Preview",
        "Tangent problem",
    ]
    assert build_section_path(section, [section]) == ["2.1 Preview"]


def test_build_section_path_survives_cycles() -> None:
    a = _node("a", "A", parent_id="b")
    b = _node("b", "B", parent_id="a")
    assert build_section_path(a, [a, b]) == ["B", "A"]


def test_format_citations_display() -> None:
    assert format_citations_display([]) == ""
    assert format_citations_display([_citation("Limits")]) == "Based on Calculus Volume 1, Limits"
    assert (
        format_citations_display([_citation("2.1 Preview"), _citation("2.2 Limits"), _citation("2.3 Laws")])
        == "Based on Calculus Volume 1, Sections 2.1–2.3"
    )
    assert (
        format_citations_display([_citation("Limits"), _citation("Continuity")])
        == "Based on Calculus Volume 1: Limits, Continuity"
    )
    assert (
        format_citations_display([_citation(t) for t in ("A", "B", "C", "D")])
        == "Based on Calculus Volume 1: A, B and 2 more sections"
    )


@pytest.mark.asyncio
async def test_retrieve_nodes_content_batches_and_skips_failures(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/book/1/1": PAGE})
    sleeps: list[float] = []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    retriever = ContentRetriever(fetcher, batch_delay_s=0.25, sleep=sleep)
    asset = Asset(id="a1", source_id="s1", slug="calc", title="Calculus", url="https://example.org/book")
    chapter = _node("c1", "Chapter 1", url="https://example.org/book/1")
    found = _node("s1", "1.1 Basics", parent_id="c1", url="https://example.org/book/1/1")
    missing = _node("s2", "1.2 Missing", parent_id="c1", url="https://example.org/book/1/2")
    no_url = _node("s3", "1.3 Offline", parent_id="c1")

    contents = await retriever.retrieve_nodes_content(
        [found, missing, no_url], asset, context_nodes=[chapter, found, missing, no_url]
    )

    assert [c.node_id for c in contents] == ["s1"]
    assert contents[0].section_path == ["Chapter 1", "1.1 Basics"]
    assert contents[0].source_title == "Calculus"
    assert contents[0].title == "Limits"
    assert sleeps == [0.25]


@pytest.mark.asyncio
async def test_retrieve_nodes_content_rejects_zero_concurrency(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({})
    asset = Asset(id="a1", source_id="s1", slug="calc", title="Calculus", url="https://example.org")
    with pytest.raises(ValueError):
        await ContentRetriever(fetcher).retrieve_nodes_content([], asset, max_concurrent=0)
