from __future__ import annotations

from pathlib import Path

import orjson

from source_registry_core.export import build_library_export, build_toc_tree, write_library_export
from source_registry_core.models import TocNode


def _node(node_id: str, title: str, parent_id: str | None, depth: int, order: int) -> TocNode:
    return TocNode(
        id=node_id,
        asset_id="a1",
        title=title,
        url=f"https://example.org/{node_id}",
        node_type="chapter" if depth == 0 else "section",
        depth=depth,
        sort_order=order,
        parent_id=parent_id,
    )


def test_build_toc_tree_nests_and_promotes_orphans() -> None:
    tree = build_toc_tree(
        [
            _node("c1", "Chapter 1", None, 0, 0),
            _node("s1", "1.1", "c1", 1, 1),
            _node("s2", "1.2", "c1", 1, 2),
            _node("x1", "Orphan", "ghost", 1, 3),
        ]
    )

    assert [e["title"] for e in tree] == ["Chapter 1", "Orphan"]
    assert [c["title"] for c in tree[0]["children"]] == ["1.1", "1.2"]
    assert "children" not in tree[0]["children"][0]
    assert "children" not in tree[1]
    assert tree[0]["type"] == "chapter"


def _populate(repository) -> str:  # noqa: ANN001
    source = repository.insert_source(
        {"name": "OpenStax", "type": "openstax", "base_url": "https://openstax.org"}
    )
    asset = repository.insert_asset(
        {
            "source_id": source.id,
            "slug": "calculus-volume-1",
            "title": "Calculus Volume 1",
            "url": "https://openstax.org/details/books/calculus-volume-1",
            "description": "Intro calculus",
            "license_name": "CC BY-NC-SA 4.0",
            "metadata": {"subjects": ["Math"], "coverUrl": "https://img/cover.png", "pages": 873},
        }
    )
    repository.insert_asset(
        {"source_id": source.id, "slug": "physics", "title": "Physics", "url": "https://openstax.org/p"}
    )
    repository.replace_toc_nodes(
        asset.id,
        [
            TocNode(title="1 Functions", url=None, node_type="chapter", depth=0, sort_order=0),
            TocNode(title="1.1 Review", url=None, node_type="section", depth=1, sort_order=1),
        ],
    )
    return asset.id


def test_build_library_export(repository) -> None:  # noqa: ANN001
    asset_id = _populate(repository)

    data = build_library_export(repository)

    assert data["version"] == "1.0"
    assert (data["totalSources"], data["totalAssets"], data["totalTocNodes"]) == (1, 2, 2)
    assert data["sources"][0]["assetCount"] == 2
    entry = next(e for e in data["library"] if e["id"] == asset_id)
    assert entry["source"]["name"] == "OpenStax"
    assert entry["license"] == {"name": "CC BY-NC-SA 4.0"}
    assert entry["subjects"] == ["Math"]
    assert entry["coverUrl"] == "https://img/cover.png"
    assert entry["metadata"] == {"pages": 873}
    assert entry["toc"][0]["children"][0]["title"] == "1.1 Review"

    physics = next(e for e in data["library"] if e["slug"] == "physics")
    assert physics["toc"] == []
    assert "description" not in physics and "license" not in physics


def test_write_library_export(repository, tmp_path: Path) -> None:  # noqa: ANN001
    _populate(repository)

    path, data = write_library_export(repository, tmp_path / "library.json")

    assert path == (tmp_path / "library.json").resolve()
    on_disk = orjson.loads(path.read_bytes())
    assert on_disk["totalAssets"] == data["totalAssets"] == 2
    assert on_disk["generatedAt"] == data["generatedAt"]
