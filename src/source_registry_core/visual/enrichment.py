from __future__ import annotations

import time
from dataclasses import replace
from typing import Any

from source_registry_core.grounding.types import RenderedModuleContent
from source_registry_core.logging import RegistryLogger
from source_registry_core.visual.aid_service import VisualAidService
from source_registry_core.visual.intent_generator import VisualIntentGenerator
from source_registry_core.visual.types import (
    VISUAL_AID_INSTRUCTION,
    EnrichedModuleVisuals,
    GenerateVisualIntentRequest,
    VisualAid,
    VisualAidContext,
)


async def enrich_module_with_visuals(
    request: GenerateVisualIntentRequest,
    *,
    generator: VisualIntentGenerator,
    aid_service: VisualAidService,
    logger: RegistryLogger | None = None,
) -> EnrichedModuleVisuals:
    """
    Intent generation followed by image lookup. Never raises: module rendering carries on
    text-only when this fails.
    """
    log = logger or RegistryLogger()
    started = time.monotonic()
    log.info(
        "module-visual-enrichment", f'Starting visual enrichment for: "{request.module_title}"'
    )
    try:
        intents = await generator.generate_visual_intent(request)
        if not intents.visuals_recommended or not intents.intents:
            log.info(
                "module-visual-enrichment",
                f'No visuals recommended for: "{request.module_title}"',
            )
            return EnrichedModuleVisuals(visual_aids=[], intents=[], enrichment_successful=True)

        aids = await aid_service.fetch_visual_aids(intents.intents)
    except Exception as e:  # noqa: BLE001
        log.error(
            "module-visual-enrichment",
            f"Visual enrichment failed: {e}",
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return EnrichedModuleVisuals(
            visual_aids=[], intents=[], enrichment_successful=False, error=str(e)
        )

    log.info(
        "module-visual-enrichment",
        f'Visual enrichment complete for: "{request.module_title}"',
        duration_ms=int((time.monotonic() - started) * 1000),
        details={
            "intents_generated": len(intents.intents),
            "aids_fetched": len(aids.visual_aids),
            "failed_intents": len(aids.failed_intents),
        },
    )
    return EnrichedModuleVisuals(
        visual_aids=aids.visual_aids,
        intents=intents.intents,
        enrichment_successful=True,
        enriched_at=aids.fetched_at,
    )


def build_visual_aid_context(visual_aids: list[VisualAid]) -> VisualAidContext:
    if not visual_aids:
        return VisualAidContext(visual_aids=[], instruction="")
    descriptions = "\n".join(
        f"Visual {i + 1}: {aid.alt}\n  - Concept: {aid.intent.concept}\n  - Type: {aid.intent.visual_type}"
        for i, aid in enumerate(visual_aids)
    )
    instruction = (
        f"{VISUAL_AID_INSTRUCTION}\n\n"
        f"Available Illustrative Visuals:\n{descriptions}\n\n"
        "When referencing these visuals:\n"
        '- Say "The illustrative diagram shows..." or "As illustrated in the visual..."\n'
        '- NEVER say "According to the diagram..." (implies authority)\n'
        "- Use visuals to support understanding of concepts from the source text\n"
        "- If a visual doesn't match the text perfectly, prioritize the text"
    )
    return VisualAidContext(visual_aids=list(visual_aids), instruction=instruction)


def format_visuals_for_frontend(visual_aids: list[VisualAid]) -> list[dict[str, Any]]:
    return [
        {
            "type": "illustrative_image",
            "src": aid.src,
            "alt": aid.alt,
            "caption": aid.caption,
            "usage_label": aid.usage_label,
            "attribution": aid.attribution,
            "thumbnail_src": aid.thumbnail_src,
        }
        for aid in visual_aids
    ]


def attach_visuals(
    content: RenderedModuleContent, enriched: EnrichedModuleVisuals
) -> RenderedModuleContent:
    """Visual aids ride alongside the rendered text; they never replace any of it."""
    if not enriched.has_visuals:
        return content
    return replace(content, visual_aids=format_visuals_for_frontend(enriched.visual_aids))
