from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from source_registry_core.store import utcnow

VisualType = Literal["diagram", "graph", "plot", "flow"]
VISUAL_TYPES: tuple[str, ...] = ("diagram", "graph", "plot", "flow")

VISUAL_AID_INSTRUCTION = """VISUAL CONTEXT: Illustrative diagrams are being shown above your response.

IMPORTANT RESPONSE RULES:
- Do NOT mention, reference, or describe the visuals in your reply.
- Do NOT point to any "diagram", "image", or "picture".
- The response should stand alone as if no visuals were provided.

The visuals are supplemental and are NOT authoritative sources."""

VISUAL_CAPTION_SUFFIX = "(Illustrative diagram - not from the source text)"


@dataclass(frozen=True)
class VisualIntent:
    """What to search for; never an image itself."""

    concept: str
    visual_type: VisualType
    key_elements: list[str]
    constraints: list[str]
    search_query: str
    priority: int = 5


@dataclass(frozen=True)
class VisualAid:
    src: str
    alt: str
    caption: str
    query: str
    intent: VisualIntent
    attribution: str | None = None
    thumbnail_src: str | None = None
    usage_label: Literal["illustrative"] = field(default="illustrative", init=False)


@dataclass(frozen=True)
class VisualIntentResult:
    intents: list[VisualIntent]
    reasoning: str
    visuals_recommended: bool
    generated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class FailedIntent:
    intent: VisualIntent
    reason: str


@dataclass(frozen=True)
class VisualAidResult:
    visual_aids: list[VisualAid]
    failed_intents: list[FailedIntent] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def has_visuals(self) -> bool:
        return bool(self.visual_aids)


@dataclass(frozen=True)
class GenerateVisualIntentRequest:
    module_title: str
    explanation_text: str
    source_section_titles: list[str] = field(default_factory=list)
    learning_objectives: list[str] = field(default_factory=list)
    key_concepts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class VisualFetchConfig:
    max_per_intent: int = 3
    timeout_ms: int = 10_000
    diagrams_only: bool = True
    min_width: int = 200
    min_height: int = 200


@dataclass(frozen=True)
class ImageCandidate:
    """One hit from an image catalog, before filtering."""

    url: str
    title: str = ""
    thumbnail_url: str | None = None
    source: str | None = None
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class VisualAidContext:
    visual_aids: list[VisualAid]
    instruction: str


@dataclass(frozen=True)
class EnrichedModuleVisuals:
    visual_aids: list[VisualAid]
    intents: list[VisualIntent]
    enrichment_successful: bool
    error: str | None = None
    enriched_at: datetime = field(default_factory=utcnow)

    @property
    def has_visuals(self) -> bool:
        return bool(self.visual_aids)
