from __future__ import annotations

import re
import time
from collections.abc import Iterable
from typing import Any

from source_registry_core.llm import ChatModel, parse_json_object
from source_registry_core.logging import RegistryLogger
from source_registry_core.visual.types import (
    VISUAL_TYPES,
    GenerateVisualIntentRequest,
    VisualIntent,
    VisualIntentResult,
)

MAX_INTENTS = 5
MAX_QUESTION_INTENTS = 2
MAX_EXPLANATION_CHARS = 3000

BASE_CONSTRAINTS = ("no photographs", "no proprietary screenshots", "educational diagrams only")
DIAGRAM_TERMS = ("diagram", "illustration", "flowchart", "chart", "graph", "visual")

VISUAL_INTENT_SYSTEM_PROMPT = """You are an educational visual design assistant. Your job is to analyze learning content and suggest what types of illustrative diagrams would help learners understand the concepts.

CRITICAL RULES:
1. You are NOT generating images - only specifications for what to search for
2. Visuals are SUPPLEMENTAL AIDS only - they do not replace source text
3. Suggest ONLY diagrams, flowcharts, graphs, or conceptual illustrations
4. NEVER suggest photos of real objects/people
5. NEVER suggest proprietary screenshots or copyrighted material
6. Focus on abstract, educational diagrams that illustrate relationships

Return JSON only with this structure:
{
  "visuals_recommended": true/false,
  "reasoning": "Brief explanation of why visuals would/wouldn't help",
  "intents": [
    {
      "concept": "The core concept being illustrated",
      "visual_type": "diagram" | "graph" | "plot" | "flow",
      "key_elements": ["element1", "element2"],
      "constraints": ["avoid photos", "no proprietary content"],
      "search_query": "short query",
      "priority": 1-10
    }
  ]
}

Guidelines for visual_type:
- "diagram": For structures, relationships, components
- "graph": For data relationships, networks, connections
- "plot": For mathematical functions, data trends, distributions
- "flow": For processes, workflows, sequences, algorithms

Guidelines for search_query:
- Keep queries SHORT: 2-4 words maximum
- Use simple, common terms that would appear in image filenames, e.g. "rectangle area diagram", "water cycle illustration"
- NO complex phrases, sentences or special characters

If the content is primarily text-based definitions or abstract theory without visual concepts, set visuals_recommended to false."""

QUESTION_PROMPT = """Analyze this question and determine if an educational diagram/illustration would help the response:

Question: "{question}"

RULES:
1. Only suggest diagrams for questions about processes, relationships, data, or visual concepts
2. Do NOT suggest diagrams for simple definitions or abstract theoretical questions
3. Suggest at most 1-2 visual intents
4. search_query MUST be SHORT (2-4 words) - this is used to search image databases

Return JSON:
{{
  "visuals_recommended": true/false,
  "reasoning": "Brief explanation",
  "intents": [
    {{
      "concept": "The concept to illustrate",
      "visual_type": "diagram" | "graph" | "plot" | "flow",
      "key_elements": ["element1", "element2"],
      "constraints": ["no photos", "educational only"],
      "search_query": "2-4 word query like 'rectangle area diagram'"
    }}
  ]
}}"""

USE_VISUALS_PROMPT = """Would the following educational module benefit from illustrative diagrams or visual aids?

Module: {title}
Description: {description}

Answer with JSON only: {{ "uses_visual_aids": true/false, "reason": "brief explanation" }}

Consider:
- Processes, workflows, or sequences: YES
- Relationships between concepts: YES
- Data or mathematical concepts: YES
- Pure definitions or abstract theory: likely NO"""

_UNSAFE_CHARS_RE = re.compile(r"[<>'\"]")
_WS_RE = re.compile(r"\s+")


def sanitize_search_query(query: str) -> str:
    cleaned = _WS_RE.sub(" ", _UNSAFE_CHARS_RE.sub("", query)).strip()[:100]
    if not any(term in cleaned.lower() for term in DIAGRAM_TERMS):
        cleaned = f"{cleaned} diagram"
    return cleaned


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def validate_intents(raw: Any) -> list[VisualIntent]:
    """
    Normalize model-proposed intents; entries without a concept or query are dropped and the
    rest are ranked by priority (top five kept).
    """
    if not isinstance(raw, list):
        return []
    intents: list[VisualIntent] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        concept = item.get("concept")
        query = item.get("search_query")
        if not isinstance(concept, str) or not concept:
            continue
        if not isinstance(query, str) or not query:
            continue
        visual_type = item.get("visual_type")
        if visual_type not in VISUAL_TYPES:
            visual_type = "diagram"
        priority = item.get("priority")
        if isinstance(priority, (int, float)) and not isinstance(priority, bool):
            priority = max(1, min(10, round(priority)))
        else:
            priority = 5
        constraints = list(dict.fromkeys([*BASE_CONSTRAINTS, *_strings(item.get("constraints"))]))
        intents.append(
            VisualIntent(
                concept=concept[:200],
                visual_type=visual_type,
                key_elements=_strings(item.get("key_elements"))[:10],
                constraints=constraints,
                search_query=sanitize_search_query(query),
                priority=priority,
            )
        )
    intents.sort(key=lambda i: i.priority, reverse=True)
    return intents[:MAX_INTENTS]


def _bullets(items: Iterable[str]) -> str:
    return "\n".join(f"- {i}" for i in items)


def build_intent_prompt(request: GenerateVisualIntentRequest) -> str:
    parts = [f"## Module Title\n{request.module_title}", ""]
    if request.source_section_titles:
        parts += [f"## Source Sections\n{chr(10).join(request.source_section_titles)}", ""]
    if request.learning_objectives:
        parts += [f"## Learning Objectives\n{_bullets(request.learning_objectives)}", ""]
    if request.key_concepts:
        parts += [f"## Key Concepts\n{_bullets(request.key_concepts)}", ""]
    text = request.explanation_text
    if len(text) > MAX_EXPLANATION_CHARS:
        text = text[:MAX_EXPLANATION_CHARS] + "..."
    parts += [
        f"## Module Content\n{text}",
        "",
        "Analyze this educational content and suggest what illustrative diagrams would help "
        "learners understand the concepts. Remember: only suggest diagrams/illustrations, "
        "never photos.",
    ]
    return "\n".join(parts)


class VisualIntentGenerator:
    """Asks the model what diagrams would help; it never fetches images itself."""

    def __init__(self, model: ChatModel, *, logger: RegistryLogger | None = None):
        self.model = model
        self._log = logger or RegistryLogger()

    async def generate_visual_intent(
        self, request: GenerateVisualIntentRequest
    ) -> VisualIntentResult:
        started = time.monotonic()
        self._log.info(
            "visual-intent",
            f'Generating visual intents for module: "{request.module_title}"',
            details={
                "nodeCount": len(request.source_section_titles),
                "textLength": len(request.explanation_text),
            },
        )
        try:
            raw = await self.model.complete(
                system=VISUAL_INTENT_SYSTEM_PROMPT,
                user=build_intent_prompt(request),
                temperature=0.7,
                max_tokens=1500,
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "visual-intent",
                f"Failed to generate visual intents: {e}",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return VisualIntentResult(
                intents=[],
                reasoning=f"Error generating visual intents: {e}",
                visuals_recommended=False,
            )

        parsed = parse_json_object(raw or "{}")
        if parsed is None:
            self._log.error(
                "visual-intent",
                "Failed to parse AI response",
                details={"response": (raw or "")[:500]},
            )
            return VisualIntentResult(
                intents=[],
                reasoning="Failed to parse visual intent response",
                visuals_recommended=False,
            )

        intents = validate_intents(parsed.get("intents"))
        recommended = parsed.get("visuals_recommended")
        if not isinstance(recommended, bool):
            recommended = bool(intents)
        self._log.info(
            "visual-intent",
            f"Generated {len(intents)} visual intents",
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"visuals_recommended": recommended, "intent_count": len(intents)},
        )
        reasoning = parsed.get("reasoning")
        return VisualIntentResult(
            intents=intents,
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else "Visual intents generated",
            visuals_recommended=recommended,
        )

    async def generate_visual_intent_from_question(self, question: str) -> VisualIntentResult:
        started = time.monotonic()
        self._log.info(
            "visual-intent", f'Generating visual intents for question: "{question[:100]}..."'
        )
        try:
            raw = await self.model.complete(
                system="",
                user=QUESTION_PROMPT.format(question=question),
                temperature=0.5,
                max_tokens=800,
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "visual-intent",
                f"Failed to generate visual intents for question: {e}",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return VisualIntentResult(intents=[], reasoning=f"Error: {e}", visuals_recommended=False)

        parsed = parse_json_object(raw or "{}")
        if parsed is None:
            self._log.error(
                "visual-intent",
                "Failed to parse question visual intent response",
                details={"response": (raw or "")[:500]},
            )
            return VisualIntentResult(
                intents=[],
                reasoning="Failed to parse visual intent response",
                visuals_recommended=False,
            )

        reasoning = parsed.get("reasoning")
        reasoning = reasoning if isinstance(reasoning, str) else ""
        if parsed.get("visuals_recommended") is not True:
            self._log.debug(
                "visual-intent",
                "No visuals recommended for question",
                details={"reasoning": reasoning},
            )
            return VisualIntentResult(
                intents=[],
                reasoning=reasoning or "Visuals not appropriate for this question",
                visuals_recommended=False,
            )

        intents = validate_intents(parsed.get("intents"))[:MAX_QUESTION_INTENTS]
        self._log.info(
            "visual-intent",
            f"Generated {len(intents)} visual intents for question",
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return VisualIntentResult(
            intents=intents,
            reasoning=reasoning or "Visual intents generated for question",
            visuals_recommended=bool(intents),
        )

    async def should_use_visual_aids(self, module_title: str, module_description: str) -> bool:
        """Quick yes/no from the model; any failure means no."""
        self._log.debug(
            "visual-intent", f'Checking if module would benefit from visuals: "{module_title}"'
        )
        try:
            raw = await self.model.complete(
                system="",
                user=USE_VISUALS_PROMPT.format(title=module_title, description=module_description),
                temperature=0.3,
                max_tokens=200,
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            self._log.warn("visual-intent", f"Failed to check visual aids: {e}")
            return False
        parsed = parse_json_object(raw or "{}") or {}
        self._log.debug(
            "visual-intent",
            "Visual aids check completed",
            details={"result": parsed.get("uses_visual_aids"), "reason": parsed.get("reason")},
        )
        return parsed.get("uses_visual_aids") is True
