from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

from source_registry_core.grounding.retriever import build_citations
from source_registry_core.grounding.types import (
    ExtractedContent,
    ExtractedFigure,
    RenderedConcept,
    RenderedModuleContent,
    RenderedSection,
)
from source_registry_core.llm import ChatModel, parse_json_object
from source_registry_core.logging import RegistryLogger

SYNTHESIS_SYSTEM_PROMPT = """You are an expert educational content synthesizer for a learning platform.

Your job is to create clear, structured learning content based EXCLUSIVELY on the source material provided.

CRITICAL RULES - YOU MUST FOLLOW THESE:
1. You may ONLY explain concepts explicitly present in the provided source text
2. Do NOT add any external knowledge, facts, or examples not in the source
3. If something is not explained in the source, explicitly state: "This concept is not covered in the provided source material"
4. Do NOT make up examples, analogies, or explanations that aren't directly supported by the source
5. When in doubt, be explicit that information is limited to what's in the source
6. Preserve mathematical notation and formulas exactly as they appear in the source
7. Reference figures from the source when they exist and are relevant
8. Create quiz questions based on key facts from the source
9. Generate visual diagrams to illustrate concepts, processes, or relationships from the source

VISUAL AIDS HANDLING:
- If illustrative visual aids are provided, you may reference them descriptively
- Say "The illustrative diagram shows..." or "As illustrated in the visual..."
- NEVER say "According to the diagram..." (this implies authority)
- NEVER introduce new facts based on what appears in the visuals
- Visual aids are supplemental - the source text is ALWAYS authoritative
- If a visual doesn't match the text perfectly, prioritize the text

OUTPUT FORMAT - Respond with JSON only:
{
  "overview": "A 2-3 paragraph introduction synthesized from the source material. Use markdown formatting.",
  "learning_objectives": ["Objective derived from source content"],
  "chapters": [
    {
      "id": 0,
      "title": "Chapter title from source",
      "duration": "10-15 min",
      "content": "Markdown reading content ONLY from source material. No quiz questions here.",
      "quizzes": [
        {
          "question": "Question testing understanding of source content",
          "options": [{"id": "A", "text": "Option A"}, {"id": "B", "text": "Option B"}],
          "correct": "B",
          "explanation": "Why this is correct based on the source"
        }
      ]
    }
  ],
  "key_concepts": [
    {
      "concept": "Concept name from source",
      "explanation": "Explanation ONLY using source text",
      "example_sections": [{"type": "code" | "conceptual" | "pattern", "title": "Example title", "items": ["Example from source"]}]
    }
  ],
  "practical_exercises": [
    {
      "title": "Exercise title",
      "description": "Problem based on source material",
      "exercise_type": "short_answer" | "multiple_choice" | "code_editor",
      "difficulty": "beginner" | "intermediate" | "advanced",
      "estimated_time": "5-15 min",
      "correct_answer": "The answer",
      "hints": ["Hint 1"]
    }
  ],
  "assessment": {"questions": [{"question": "...", "type": "multiple-choice", "options": ["A", "B", "C", "D"], "correct_answer": "B", "explanation": "..."}]},
  "visuals": [{"title": "Diagram title", "description": "What this diagram illustrates from the source", "nodes": [], "edges": []}],
  "figures_referenced": ["0_0", "0_1"]
}

If the source material is insufficient to create meaningful content:
{
  "overview": "The provided source material does not contain sufficient information to fully explain this topic.",
  "learning_objectives": [],
  "chapters": [],
  "key_concepts": [],
  "practical_exercises": [],
  "assessment": {"questions": []},
  "visuals": [],
  "figures_referenced": [],
  "content_unavailable_reason": "Explanation of what's missing"
}"""

NO_CONTENT_REASON = "No source content could be retrieved for the selected registry nodes"
INVALID_RESPONSE_REASON = "AI synthesis produced invalid response"


def format_source_content(contents: Sequence[ExtractedContent]) -> str:
    parts: list[str] = []
    for index, content in enumerate(contents):
        parts += [
            f"--- SOURCE {index + 1}: {content.title} ---",
            f"Section Path: {' > '.join(content.section_path)}",
            f"Node ID: {content.node_id}",
            f"URL: {content.url}",
            "",
            "Content:",
            content.content_text,
        ]
        if content.headings:
            parts += ["", "Headings in this section:"]
            parts += [f"  - {h}" for h in content.headings]
        if content.figures:
            parts += ["", "Figures available:"]
            for fi, fig in enumerate(content.figures):
                parts.append(f"  [Figure {index}_{fi}] {fig.caption or fig.alt or 'No caption'}")
                parts.append(f"    URL: {fig.url}")
        parts += ["", "---", ""]
    return "\n".join(parts)


def build_synthesis_prompt(
    module_title: str,
    module_description: str,
    difficulty: str,
    source_text: str,
    visual_context: str | None = None,
) -> str:
    prompt = (
        "Create educational content for this learning module:\n\n"
        f"Module Title: {module_title}\n"
        f"Module Description: {module_description}\n"
        f"Difficulty Level: {difficulty}\n\n"
        "The content MUST be derived ONLY from the following source material:\n\n"
        f"{source_text}\n\n"
        "Remember: ONLY use information present in the source material above. "
        "Do NOT add external knowledge."
    )
    if visual_context:
        prompt += "\n\n" + visual_context
    return prompt


def _dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def referenced_figures(
    contents: Sequence[ExtractedContent], references: Sequence[str]
) -> list[ExtractedFigure]:
    """Figures whose "{source}_{figure}" index is referenced; all figures when none are."""
    everything = [f for c in contents for f in c.figures]
    if not references:
        return everything
    wanted = {r.removeprefix("figure_index_") for r in references}
    return [
        fig
        for si, content in enumerate(contents)
        for fi, fig in enumerate(content.figures)
        if f"{si}_{fi}" in wanted
    ]


def parse_rendered_content(
    parsed: dict[str, Any], contents: Sequence[ExtractedContent]
) -> RenderedModuleContent:
    """Map an untrusted model payload onto RenderedModuleContent; missing fields become empty."""
    sections = [
        RenderedSection(
            title=_text(s.get("title")),
            content=_text(s.get("content")),
            source_node_id=s.get("source_node_id") if isinstance(s.get("source_node_id"), str) else None,
        )
        for s in _dict_list(parsed.get("sections"))
    ]
    if isinstance(parsed.get("chapters"), list):
        chapters = _dict_list(parsed.get("chapters"))
    else:
        chapters = [
            {"id": i, "title": s.title, "duration": "10-15 min", "content": s.content, "quizzes": []}
            for i, s in enumerate(sections)
        ]
    concepts = [
        RenderedConcept(
            concept=_text(c.get("concept")),
            explanation=_text(c.get("explanation")),
            example_sections=_dict_list(c.get("example_sections")) or None,
            source_node_id=c.get("source_node_id") if isinstance(c.get("source_node_id"), str) else None,
        )
        for c in _dict_list(parsed.get("key_concepts"))
    ]
    assessment = parsed.get("assessment")
    if not isinstance(assessment, dict):
        assessment = {"questions": []}
    reason = parsed.get("content_unavailable_reason")
    reason = reason if isinstance(reason, str) and reason else None

    return RenderedModuleContent(
        overview=_text(parsed.get("overview")),
        learning_objectives=_str_list(parsed.get("learning_objectives")),
        sections=sections,
        chapters=chapters,
        key_concepts=concepts,
        practical_exercises=_dict_list(parsed.get("practical_exercises")),
        assessment=assessment,
        visuals=_dict_list(parsed.get("visuals")),
        citations=build_citations(contents),
        figures=referenced_figures(contents, _str_list(parsed.get("figures_referenced"))),
        content_unavailable=reason is not None,
        unavailable_reason=reason,
    )


class ContentSynthesizer:
    """
    Turns extracted source text into module content under a strict grounding prompt.

    The three ways synthesis can fail (no input, unparseable output, model error) each yield
    `content_unavailable` with their own reason; the model may also report insufficient
    material itself.
    """

    def __init__(self, model: ChatModel, *, logger: RegistryLogger | None = None):
        self.model = model
        self._log = logger or RegistryLogger()

    async def synthesize_module_content(
        self,
        module_title: str,
        module_description: str,
        extracted_contents: Sequence[ExtractedContent],
        difficulty: str,
        *,
        visual_context: str | None = None,
    ) -> RenderedModuleContent:
        started = time.monotonic()
        self._log.info(
            "content-synthesizer",
            f'Synthesizing content for module: "{module_title}"',
            details={"sourcesCount": len(extracted_contents), "difficulty": difficulty},
        )
        if not extracted_contents:
            self._log.warn("content-synthesizer", "No extracted content provided for synthesis")
            return RenderedModuleContent.unavailable(
                "No source content is available for this module. The requested topic may not "
                "be covered in the selected source material.",
                NO_CONTENT_REASON,
            )

        citations = build_citations(extracted_contents)
        all_figures = [f for c in extracted_contents for f in c.figures]
        user = build_synthesis_prompt(
            module_title,
            module_description,
            difficulty,
            format_source_content(extracted_contents),
            visual_context,
        )
        try:
            raw = await self.model.complete(
                system=SYNTHESIS_SYSTEM_PROMPT,
                user=user,
                temperature=0.4,
                max_tokens=8000,
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "content-synthesizer",
                f"AI synthesis failed: {e}",
                details={"moduleTitle": module_title},
            )
            return RenderedModuleContent.unavailable(
                "Content synthesis failed due to an error. Please try again later.",
                f"Synthesis error: {e}",
                citations=citations,
                figures=all_figures,
            )

        parsed = parse_json_object(raw or "{}")
        if parsed is None:
            self._log.error(
                "content-synthesizer",
                "Failed to parse AI response",
                details={"response": (raw or "")[:500]},
            )
            return RenderedModuleContent.unavailable(
                "Content synthesis failed. Please try again.",
                INVALID_RESPONSE_REASON,
                citations=citations,
                figures=all_figures,
            )

        rendered = parse_rendered_content(parsed, extracted_contents)
        self._log.info(
            "content-synthesizer",
            f'Content synthesis complete for "{module_title}"',
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "sectionsCount": len(rendered.sections),
                "conceptsCount": len(rendered.key_concepts),
                "hasUnavailableReason": rendered.content_unavailable,
            },
        )
        return rendered
