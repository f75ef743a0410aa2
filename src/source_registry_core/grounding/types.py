from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from source_registry_core.store import utcnow

ContentMode = Literal["ai_generated", "registry_backed"]


@dataclass(frozen=True)
class TocNodeSummary:
    """The slice of a TocNode the model sees during node selection."""

    node_id: str
    title: str
    order: int
    depth: int
    node_type: str


@dataclass(frozen=True)
class NodeSelectionResult:
    selected_node_ids: list[str]
    reasoning: str


@dataclass(frozen=True)
class ResolveNodesRequest:
    module_title: str
    module_description: str
    source_asset_id: str
    path_context: str | None = None


@dataclass(frozen=True)
class ResolveNodesResult:
    source_asset_id: str
    source_node_ids: list[str]
    content_unavailable: bool
    reasoning: str
    resolved_at: datetime = field(default_factory=utcnow)

    @classmethod
    def unavailable(cls, source_asset_id: str, reasoning: str) -> ResolveNodesResult:
        return cls(
            source_asset_id=source_asset_id,
            source_node_ids=[],
            content_unavailable=True,
            reasoning=reasoning,
        )


@dataclass(frozen=True)
class ExtractedFigure:
    url: str
    alt: str | None = None
    caption: str | None = None


@dataclass(frozen=True)
class ExtractedContent:
    """
    Text pulled from one registry node's page.

    `section_path` lists ancestor titles from the TOC root down to the node itself.
    """

    node_id: str
    title: str
    url: str
    content_text: str
    headings: list[str]
    figures: list[ExtractedFigure]
    source_title: str
    section_path: list[str]


@dataclass(frozen=True)
class Citation:
    source_title: str
    section_title: str
    section_path: list[str]
    url: str
    node_id: str


@dataclass(frozen=True)
class RenderedSection:
    title: str
    content: str
    source_node_id: str | None = None


@dataclass(frozen=True)
class RenderedConcept:
    concept: str
    explanation: str
    example_sections: list[dict[str, Any]] | None = None
    source_node_id: str | None = None


@dataclass(frozen=True)
class RenderedModuleContent:
    """
    Synthesizer output for one module.

    When `content_unavailable` is set, `unavailable_reason` says which step gave up; the other
    fields are still populated (possibly empty) so callers can always render something.
    """

    overview: str
    learning_objectives: list[str] = field(default_factory=list)
    sections: list[RenderedSection] = field(default_factory=list)
    chapters: list[dict[str, Any]] = field(default_factory=list)
    key_concepts: list[RenderedConcept] = field(default_factory=list)
    practical_exercises: list[dict[str, Any]] = field(default_factory=list)
    assessment: dict[str, Any] = field(default_factory=lambda: {"questions": []})
    visuals: list[dict[str, Any]] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    figures: list[ExtractedFigure] = field(default_factory=list)
    visual_aids: list[Any] = field(default_factory=list)
    rendered_at: datetime = field(default_factory=utcnow)
    content_unavailable: bool = False
    unavailable_reason: str | None = None

    @classmethod
    def unavailable(
        cls,
        overview: str,
        reason: str,
        *,
        citations: list[Citation] | None = None,
        figures: list[ExtractedFigure] | None = None,
    ) -> RenderedModuleContent:
        return cls(
            overview=overview,
            citations=list(citations or []),
            figures=list(figures or []),
            content_unavailable=True,
            unavailable_reason=reason,
        )
