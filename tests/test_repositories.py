from __future__ import annotations

import pytest

from source_registry_core.models import SelectorHints, TocNode, TocStats
from source_registry_core.repositories.postgres import PostgresRecordStore
from source_registry_core.repositories.registry import RegistryRepository, link_toc_nodes
from source_registry_core.store import ASSETS, SOURCES, InMemoryRecordStore


def _node(title: str, depth: int, order: int) -> TocNode:
    return TocNode(title=title, url=f"https://example.org/{order}", node_type="section", depth=depth, sort_order=order)


def _seed_asset(repo: RegistryRepository, slug: str = "calc-1") -> str:
    source = repo.insert_source(
        {"name": "Example", "type": "generic_html", "base_url": "https://example.org"}
    )
    asset = repo.insert_asset(
        {"source_id": source.id, "slug": slug, "title": "Calculus 1", "url": "https://example.org/calc"}
    )
    return asset.id


def test_link_toc_nodes_assigns_parents_from_depth() -> None:
    nodes = [_node("Ch 1", 0, 0), _node("1.1", 1, 1), _node("1.1.1", 2, 2), _node("1.2", 1, 3), _node("Ch 2", 0, 4)]
    linked = link_toc_nodes("asset-1", nodes)

    by_title = {n.title: n for n in linked}
    assert by_title["Ch 1"].parent_id is None
    assert by_title["1.1"].parent_id == by_title["Ch 1"].id
    assert by_title["1.1.1"].parent_id == by_title["1.1"].id
    assert by_title["1.2"].parent_id == by_title["Ch 1"].id
    assert by_title["Ch 2"].parent_id is None
    assert all(n.asset_id == "asset-1" and n.id for n in linked)


def test_link_toc_nodes_clamps_depth_jumps() -> None:
    linked = link_toc_nodes("a", [_node("Root", 0, 0), _node("Deep", 3, 1), _node("Deeper", 4, 2)])
    by_id = {n.id: n for n in linked}

    for node in linked:
        ancestors = 0
        current = node
        while current.parent_id:
            current = by_id[current.parent_id]
            ancestors += 1
        assert node.depth == ancestors
    assert [n.depth for n in linked] == [0, 1, 2]


def test_replace_toc_nodes_swaps_the_whole_set() -> None:
    repo = RegistryRepository(InMemoryRecordStore())
    asset_id = _seed_asset(repo)

    repo.replace_toc_nodes(asset_id, [_node("Old", 0, 0), _node("Old child", 1, 1)])
    repo.replace_toc_nodes(asset_id, [_node("New", 0, 0)])

    nodes = repo.list_toc_nodes(asset_id)
    assert [n.title for n in nodes] == ["New"]
    assert repo.count_toc_nodes(asset_id) == 1


def test_in_memory_transaction_rolls_back_on_error() -> None:
    store = InMemoryRecordStore()
    store.insert(SOURCES, {"id": "s1", "name": "kept", "type": "custom", "base_url": "https://x"})

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert(SOURCES, {"id": "s2", "name": "dropped", "type": "custom", "base_url": "https://y"})
            raise RuntimeError("boom")

    assert [r["id"] for r in store.select(SOURCES)] == ["s1"]


def test_in_memory_select_matches_list_values_and_copies_rows() -> None:
    store = InMemoryRecordStore()
    for rid in ("a", "b", "c"):
        store.insert(ASSETS, {"id": rid, "slug": rid, "title": rid.upper()})

    rows = store.select(ASSETS, where={"id": ["a", "c"]}, order_by="title", descending=True)
    assert [r["id"] for r in rows] == ["c", "a"]

    rows[0]["title"] = "mutated"
    assert store.get(ASSETS, "c")["title"] == "C"


def test_update_asset_serializes_nested_dataclasses() -> None:
    repo = RegistryRepository(InMemoryRecordStore())
    asset_id = _seed_asset(repo)

    updated = repo.update_asset(
        asset_id,
        toc_stats=TocStats(chapters=1, sections=2, total_nodes=3, depth=1),
        selector_hints=SelectorHints(content="main"),
    )

    assert updated is not None
    assert updated.toc_stats == TocStats(chapters=1, sections=2, total_nodes=3, depth=1)
    assert updated.selector_hints == SelectorHints(content="main")


def test_scan_logs_filter_and_limit() -> None:
    repo = RegistryRepository(InMemoryRecordStore())
    for i in range(3):
        repo.add_scan_log(action="discover", status="started", source_id="s1", message=f"m{i}")
    repo.add_scan_log(action="discover", status="started", source_id="s2", message="other")

    assert len(repo.list_scan_logs(source_id="s1")) == 3
    assert len(repo.list_scan_logs(limit=2)) == 2


def test_postgres_store_round_trip(conn) -> None:  # noqa: ANN001
    repo = RegistryRepository(PostgresRecordStore(conn))
    source = repo.insert_source(
        {
            "name": "PG Example",
            "type": "generic_html",
            "base_url": "https://pg.example.org",
            "config": {"seedUrl": "https://pg.example.org/"},
        }
    )
    asset = repo.insert_asset(
        {"source_id": source.id, "slug": "pg-book", "title": "PG Book", "url": "https://pg.example.org/book"}
    )

    stored = repo.replace_toc_nodes(asset.id, [_node("Ch 1", 0, 0), _node("1.1", 1, 1)])
    assert repo.get_source_by_name("PG Example").config == {"seedUrl": "https://pg.example.org/"}
    assert [n.title for n in repo.list_toc_nodes(asset.id)] == ["Ch 1", "1.1"]
    assert repo.get_nodes_by_ids([stored[1].id])[0].parent_id == stored[0].id

    repo.update_asset(asset.id, active=True, toc_stats=TocStats(total_nodes=2))
    assert repo.get_asset(asset.id).toc_stats == TocStats(total_nodes=2)
    assert [a.slug for a in repo.list_active_assets()] == ["pg-book"]
