from source_registry_core.grounding.node_resolver import NodeResolver, filter_non_learning_content
from source_registry_core.grounding.retriever import (
    ContentRetriever,
    build_citations,
    extract_content,
    format_citations_display,
)
from source_registry_core.grounding.service import ModuleGroundingService
from source_registry_core.grounding.synthesizer import ContentSynthesizer
from source_registry_core.grounding.types import (
    Citation,
    ExtractedContent,
    ExtractedFigure,
    RenderedModuleContent,
    ResolveNodesRequest,
    ResolveNodesResult,
    TocNodeSummary,
)

__all__ = [
    "Citation",
    "ContentRetriever",
    "ContentSynthesizer",
    "ExtractedContent",
    "ExtractedFigure",
    "ModuleGroundingService",
    "NodeResolver",
    "RenderedModuleContent",
    "ResolveNodesRequest",
    "ResolveNodesResult",
    "TocNodeSummary",
    "build_citations",
    "extract_content",
    "filter_non_learning_content",
    "format_citations_display",
]
