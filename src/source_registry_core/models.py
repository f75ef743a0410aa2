from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

SourceType = Literal["openstax", "sphinx_docs", "generic_html", "mit_ocw", "custom"]
RobotsStatus = Literal["allowed", "disallowed", "partial", "unknown", "needs_review"]
ScanStatus = Literal["idle", "scanning", "completed", "failed"]
NodeType = Literal["root", "part", "chapter", "section", "subsection", "page", "other"]
ScanAction = Literal["discover", "validate", "map_toc", "activate", "deactivate", "error"]
ScanLogStatus = Literal["started", "completed", "failed", "skipped"]

SOURCE_TYPES: tuple[str, ...] = ("openstax", "sphinx_docs", "generic_html", "mit_ocw", "custom")
NODE_TYPES: tuple[str, ...] = ("root", "part", "chapter", "section", "subsection", "page", "other")


@dataclass(frozen=True)
class TocStats:
    chapters: int = 0
    sections: int = 0
    total_nodes: int = 0
    depth: int = 0


@dataclass(frozen=True)
class SelectorHints:
    content: str | None = None
    title: str | None = None
    toc: str | None = None
    license: str | None = None


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    type: SourceType
    base_url: str
    description: str | None = None
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float | None = None
    robots_status: RobotsStatus = "unknown"
    rate_limit_per_minute: int = 30
    user_agent: str | None = None
    last_scan_at: datetime | None = None
    scan_status: ScanStatus = "idle"
    scan_error: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    details: dict[str, Any] | None = None


@dataclass(frozen=True)
class ValidationReport:
    robots_status: RobotsStatus
    toc_extraction_success: bool
    toc_stats: TocStats
    scanned_at: datetime
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


@dataclass(frozen=True)
class Asset:
    id: str
    source_id: str
    slug: str
    title: str
    url: str
    description: str | None = None
    version: str | None = None
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float | None = None
    robots_status: RobotsStatus = "unknown"
    active: bool = False
    toc_extraction_success: bool = False
    toc_stats: TocStats | None = None
    selector_hints: SelectorHints | None = None
    last_scan_at: datetime | None = None
    scan_status: ScanStatus = "idle"
    scan_error: str | None = None
    validation_report: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class TocNode:
    """
    One table-of-contents entry.

    Adapters emit nodes without `id`/`asset_id`/`parent_id`, in pre-order with `sort_order`
    increasing; the repository assigns ids and parent links when the set is stored.
    """

    title: str
    url: str | None
    node_type: NodeType
    depth: int
    sort_order: int
    slug: str | None = None
    id: str | None = None
    asset_id: str | None = None
    parent_id: str | None = None
    selector_hints: SelectorHints | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanLog:
    id: str
    action: ScanAction
    status: ScanLogStatus
    source_id: str | None = None
    asset_id: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AssetCandidate:
    slug: str
    title: str
    url: str
    description: str | None = None
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationResult:
    robots_status: RobotsStatus
    license_name: str | None = None
    license_url: str | None = None
    license_confidence: float | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


@dataclass(frozen=True)
class SeedConfig:
    name: str
    type: SourceType
    base_url: str
    seed_url: str
    description: str | None = None
    rate_limit_per_minute: int = 30
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanResult:
    source: Source
    assets_scanned: int
    assets_skipped: int
    nodes_mapped: int
    errors: list[str] = field(default_factory=list)
