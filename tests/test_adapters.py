from __future__ import annotations

import pytest

from source_registry_core.adapters import (
    GenericHtmlAdapter,
    GenericHtmlConfig,
    OpenStaxAdapter,
    detect_license,
    get_adapter,
    slugify,
)
from source_registry_core.models import AssetCandidate

NAV_PAGE = """
<html><body>
<nav><ul>
  <li><a href="/book/ch1">Chapter 1</a>
    <ul>
      <li><a href="/book/ch1/s1">1.1 Limits</a></li>
      <li><a href="/book/ch1/s2">1.2 Continuity</a></li>
    </ul>
  </li>
  <li><a href="#">Chapter 2</a></li>
</ul></nav>
<main><p>Text licensed under CC BY-SA 4.0.</p></main>
</body></html>
"""

HEADINGS_PAGE = """
<html><body><main>
  <h1 id="intro">Introduction</h1>
  <h2 id="setup">Setup</h2>
  <h3 id="install">Installing</h3>
  <h2>No anchor</h2>
</main></body></html>
"""

SEED_PAGE = """
<html><head><title>Site</title></head><body>
  <h1>Example Library</h1>
  <a href="/book">Calculus</a>
  <a href="/book">Calculus again</a>
  <a href="https://elsewhere.net/x">Elsewhere</a>
  <a href="mailto:me@example.org">Mail</a>
  <a href="/guide" title="Style guide"><img src="/guide.png"></a>
</body></html>
"""


@pytest.mark.parametrize(
    ("html", "name"),
    [
        ("<p>Licensed under Creative Commons Attribution 4.0 International</p>", "CC Attribution 4.0"),
        ("<p>cc by-nc-sa 4.0</p>", "CC BY-NC-SA 4.0"),
        ("<footer>Released under the MIT License.</footer>", "MIT License"),
        ("<p>Apache License, Version 2.0</p>", "Apache 2.0"),
        ("<p>GNU General Public License v3</p>", "GPL v3"),
    ],
)
def test_detect_license_from_text(html: str, name: str) -> None:
    assert detect_license(f"<html><body>{html}</body></html>").name == name


def test_detect_license_from_cc_link_and_meta() -> None:
    link = detect_license(
        '<html><body><a href="https://creativecommons.org/licenses/by-sa/3.0/">license</a></body></html>'
    )
    assert link.name == "CC BY-SA 3.0"
    assert link.url == "https://creativecommons.org/licenses/by-sa/3.0/"

    meta = detect_license('<html><head><meta name="license" content="Custom Terms"></head><body></body></html>')
    assert meta.name == "Custom Terms"
    assert meta.confidence == pytest.approx(0.7)

    assert detect_license("<html><body>nothing here</body></html>").name is None


def test_slugify() -> None:
    assert slugify("Calculus Volume 1!") == "calculus-volume-1"
    assert slugify("  Hello__World -- x ") == "hello-world-x"


def test_get_adapter_by_type() -> None:
    fetcher = object()
    assert isinstance(get_adapter("openstax", fetcher), OpenStaxAdapter)  # type: ignore[arg-type]
    assert isinstance(get_adapter("custom", fetcher), GenericHtmlAdapter)  # type: ignore[arg-type]
    with pytest.raises(ValueError, match="No adapter"):
        get_adapter("gopher", fetcher)  # type: ignore[arg-type]


def test_generic_config_accepts_camel_case_keys() -> None:
    cfg = GenericHtmlConfig.from_mapping({"tocSelector": ".menu", "allowedDomains": ["a.org"], "max_depth": 2})
    assert cfg.toc_selector == ".menu"
    assert cfg.allowed_domains == ("a.org",)
    assert cfg.max_depth == 2
    assert GenericHtmlConfig.from_mapping(None) == GenericHtmlConfig()


@pytest.mark.asyncio
async def test_generic_discover_keeps_same_host_links(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/": SEED_PAGE})
    adapter = GenericHtmlAdapter(fetcher)

    assets = await adapter.discover_assets("https://example.org/")

    assert [(a.slug, a.url) for a in assets] == [
        ("calculus", "https://example.org/book"),
        ("style-guide", "https://example.org/guide"),
    ]
    assert assets[0].title == "Calculus"
    assert assets[1].description == "Style guide"


@pytest.mark.asyncio
async def test_generic_discover_falls_back_to_seed_page(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/": "<html><body><h1>Only Page</h1></body></html>"})
    assets = await GenericHtmlAdapter(fetcher).discover_assets("https://example.org/")

    assert len(assets) == 1
    assert assets[0].slug == "only-page"
    assert assets[0].url == "https://example.org/"


@pytest.mark.asyncio
async def test_generic_map_toc_from_nav_list(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/book": NAV_PAGE})
    candidate = AssetCandidate(slug="calc", title="Calculus", url="https://example.org/book")

    nodes = await GenericHtmlAdapter(fetcher).map_toc(candidate, "https://example.org")

    assert [(n.title, n.depth, n.node_type) for n in nodes] == [
        ("Chapter 1", 0, "chapter"),
        ("1.1 Limits", 1, "section"),
        ("1.2 Continuity", 1, "section"),
        ("Chapter 2", 0, "chapter"),
    ]
    assert [n.sort_order for n in nodes] == [0, 1, 2, 3]
    assert nodes[1].url == "https://example.org/book/ch1/s1"
    assert nodes[3].url == "https://example.org/book"


@pytest.mark.asyncio
async def test_seed_config_limits_generic_toc_depth(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/book": NAV_PAGE})
    candidate = AssetCandidate(slug="calc", title="Calculus", url="https://example.org/book")

    adapter = get_adapter("generic_html", fetcher, config={"seedUrl": "https://example.org/", "maxDepth": 0})
    assert isinstance(adapter, GenericHtmlAdapter)
    assert adapter.config.max_depth == 0

    nodes = await adapter.map_toc(candidate, "https://example.org")

    assert [(n.title, n.depth) for n in nodes] == [("Chapter 1", 0), ("Chapter 2", 0)]


@pytest.mark.asyncio
async def test_generic_map_toc_from_anchored_headings(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/page": HEADINGS_PAGE})
    candidate = AssetCandidate(slug="doc", title="Doc", url="https://example.org/page")

    nodes = await GenericHtmlAdapter(fetcher).map_toc(candidate, "https://example.org")

    assert [(n.title, n.depth) for n in nodes] == [("Introduction", 0), ("Setup", 0), ("Installing", 1)]
    assert nodes[2].url == "https://example.org/page#install"
    assert nodes[2].slug == "doc-install"


@pytest.mark.asyncio
async def test_generic_map_toc_missing_page_is_empty(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({})
    candidate = AssetCandidate(slug="x", title="X", url="https://example.org/missing")
    assert await GenericHtmlAdapter(fetcher).map_toc(candidate, "https://example.org") == []


@pytest.mark.asyncio
async def test_validate_reports_license_and_robots(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher(
        {
            "https://example.org/robots.txt": "User-agent: *\nDisallow: /private/\n",
            "https://example.org/book": NAV_PAGE,
        }
    )
    candidate = AssetCandidate(slug="calc", title="Calculus", url="https://example.org/book")

    result = await GenericHtmlAdapter(fetcher).validate(candidate, "https://example.org")

    assert result.robots_status == "partial"
    assert result.license_name == "CC BY-SA 4.0"
    assert result.errors == []


@pytest.mark.asyncio
async def test_validate_records_fetch_failure(make_fetcher) -> None:  # noqa: ANN001
    fetcher, _ = make_fetcher({"https://example.org/book": (500, "down")}, retries=0)
    candidate = AssetCandidate(slug="calc", title="Calculus", url="https://example.org/book")

    result = await GenericHtmlAdapter(fetcher).validate(candidate, "https://example.org")

    assert [e.code for e in result.errors] == ["FETCH_FAILED"]
    assert result.errors[0].details == {"status": 500}
