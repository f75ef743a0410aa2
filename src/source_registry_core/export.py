from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import orjson

from source_registry_core.models import Asset, Source, TocNode
from source_registry_core.repositories.registry import RegistryRepository
from source_registry_core.store import utcnow

EXPORT_VERSION = "1.0"
DEFAULT_EXPORT_FILE = "source-library.json"

_LIFTED_METADATA = ("subjects", "categories", "coverUrl")


def build_toc_tree(nodes: Sequence[TocNode]) -> list[dict[str, Any]]:
    """
    Nest flat parent-pointer nodes. Nodes whose parent is missing from `nodes` become roots.
    """
    entries: dict[str, dict[str, Any]] = {}
    parents: dict[str, str | None] = {}
    for node in nodes:
        key = node.id or f"_{len(entries)}"
        entries[key] = {
            "title": node.title,
            "url": node.url,
            "type": node.node_type,
            "depth": node.depth,
            "children": [],
        }
        parents[key] = node.parent_id

    roots: list[dict[str, Any]] = []
    for key, entry in entries.items():
        parent = entries.get(parents[key] or "")
        if parent is not None and parent is not entry:
            parent["children"].append(entry)
        else:
            roots.append(entry)

    def clean(entry: dict[str, Any]) -> dict[str, Any]:
        children = entry.pop("children")
        if children:
            entry["children"] = [clean(c) for c in children]
        return entry

    return [clean(r) for r in roots]


def _library_entry(asset: Asset, source: Source, nodes: Sequence[TocNode]) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": asset.id,
        "title": asset.title,
        "slug": asset.slug,
        "url": asset.url,
        "source": {"id": source.id, "name": source.name, "type": source.type},
        "toc": build_toc_tree(nodes),
    }
    if asset.description:
        entry["description"] = asset.description
    if asset.license_name or asset.license_url:
        entry["license"] = {
            k: v for k, v in (("name", asset.license_name), ("url", asset.license_url)) if v
        }
    meta = dict(asset.metadata or {})
    for key in _LIFTED_METADATA:
        value = meta.pop(key, None)
        if value:
            entry[key] = value
    if meta:
        entry["metadata"] = meta
    return entry


def build_library_export(repository: RegistryRepository) -> dict[str, Any]:
    sources = repository.list_sources()
    assets = repository.list_assets()
    nodes = repository.list_all_toc_nodes()

    nodes_by_asset: dict[str, list[TocNode]] = defaultdict(list)
    for node in nodes:
        if node.asset_id:
            nodes_by_asset[node.asset_id].append(node)
    source_by_id = {s.id: s for s in sources}

    library = [
        _library_entry(asset, source_by_id[asset.source_id], nodes_by_asset.get(asset.id, []))
        for asset in assets
        if asset.source_id in source_by_id
    ]
    return {
        "version": EXPORT_VERSION,
        "generatedAt": utcnow().isoformat(),
        "totalSources": len(sources),
        "totalAssets": len(assets),
        "totalTocNodes": len(nodes),
        "sources": [
            {
                "id": s.id,
                "name": s.name,
                "type": s.type,
                "url": s.base_url,
                "assetCount": sum(1 for a in assets if a.source_id == s.id),
            }
            for s in sources
        ],
        "library": library,
    }


def write_library_export(
    repository: RegistryRepository, path: str | Path = DEFAULT_EXPORT_FILE
) -> tuple[Path, dict[str, Any]]:
    data = build_library_export(repository)
    out = Path(path).resolve()
    out.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
    return out, data
