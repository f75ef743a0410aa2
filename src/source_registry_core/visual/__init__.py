from source_registry_core.visual.aid_service import VisualAidService, filter_candidates
from source_registry_core.visual.enrichment import (
    attach_visuals,
    build_visual_aid_context,
    enrich_module_with_visuals,
    format_visuals_for_frontend,
)
from source_registry_core.visual.intent_generator import VisualIntentGenerator, validate_intents
from source_registry_core.visual.types import (
    GenerateVisualIntentRequest,
    VisualAid,
    VisualAidResult,
    VisualFetchConfig,
    VisualIntent,
    VisualIntentResult,
)

__all__ = [
    "GenerateVisualIntentRequest",
    "VisualAid",
    "VisualAidResult",
    "VisualAidService",
    "VisualFetchConfig",
    "VisualIntent",
    "VisualIntentGenerator",
    "VisualIntentResult",
    "attach_visuals",
    "build_visual_aid_context",
    "enrich_module_with_visuals",
    "filter_candidates",
    "format_visuals_for_frontend",
    "validate_intents",
]
