from __future__ import annotations

import orjson
import pytest

from source_registry_core.grounding.synthesizer import (
    INVALID_RESPONSE_REASON,
    NO_CONTENT_REASON,
    ContentSynthesizer,
    format_source_content,
    referenced_figures,
)
from source_registry_core.grounding.types import ExtractedContent, ExtractedFigure


def _content(node_id: str, figures: int = 0) -> ExtractedContent:
    return ExtractedContent(
        node_id=node_id,
        title=f"Section {node_id}",
        url=f"https://example.org/{node_id}",
        content_text=f"Source text for {node_id}.",
        headings=["Overview"],
        figures=[
            ExtractedFigure(url=f"https://example.org/{node_id}/{i}.png", caption=f"Figure {i}")
            for i in range(figures)
        ],
        source_title="Calculus Volume 1",
        section_path=["Chapter 2", f"Section {node_id}"],
    )


CONTENTS = [_content("n1", figures=2), _content("n2", figures=1)]


def test_format_source_content_lists_paths_and_figures() -> None:
    text = format_source_content(CONTENTS)

    assert "--- SOURCE 1: Section n1 ---" in text
    assert "Section Path: Chapter 2 > Section n1" in text
    assert "[Figure 0_1] Figure 1" in text
    assert "[Figure 1_0] Figure 0" in text
    assert "  - Overview" in text


def test_referenced_figures_selects_by_index() -> None:
    assert [f.url for f in referenced_figures(CONTENTS, ["0_1", "figure_index_1_0"])] == [
        "https://example.org/n1/1.png",
        "https://example.org/n2/0.png",
    ]
    assert len(referenced_figures(CONTENTS, [])) == 3


@pytest.mark.asyncio
async def test_no_content_is_unavailable_without_model_call(make_model) -> None:  # noqa: ANN001
    model = make_model()
    rendered = await ContentSynthesizer(model).synthesize_module_content("Limits", "d", [], "beginner")

    assert rendered.content_unavailable
    assert rendered.unavailable_reason == NO_CONTENT_REASON
    assert model.calls == []


@pytest.mark.asyncio
async def test_model_error_keeps_citations(make_model) -> None:  # noqa: ANN001
    model = make_model(RuntimeError("timeout"))
    rendered = await ContentSynthesizer(model).synthesize_module_content(
        "Limits", "d", CONTENTS, "beginner"
    )

    assert rendered.content_unavailable
    assert rendered.unavailable_reason == "Synthesis error: timeout"
    assert [c.node_id for c in rendered.citations] == ["n1", "n2"]
    assert len(rendered.figures) == 3


@pytest.mark.asyncio
async def test_unparseable_reply_is_invalid_response(make_model) -> None:  # noqa: ANN001
    model = make_model("Here is your module! It covers limits.")
    rendered = await ContentSynthesizer(model).synthesize_module_content(
        "Limits", "d", CONTENTS, "beginner"
    )

    assert rendered.content_unavailable
    assert rendered.unavailable_reason == INVALID_RESPONSE_REASON


@pytest.mark.asyncio
async def test_sections_become_chapters_when_chapters_missing(make_model) -> None:  # noqa: ANN001
    reply = {
        "overview": "Limits describe approach.",
        "learning_objectives": ["Define a limit", 7],
        "sections": [{"title": "Intuition", "content": "Values get close.", "source_node_id": "n1"}],
        "chapters": "not a list",
        "key_concepts": [{"concept": "Limit", "explanation": "Approached value", "example_sections": []}],
        "figures_referenced": ["0_0"],
    }
    model = make_model(orjson.dumps(reply).decode())

    rendered = await ContentSynthesizer(model).synthesize_module_content(
        "Limits", "Intro to limits", CONTENTS, "intermediate", visual_context="VISUAL AIDS: none"
    )

    assert not rendered.content_unavailable
    assert rendered.learning_objectives == ["Define a limit"]
    assert rendered.chapters == [
        {"id": 0, "title": "Intuition", "duration": "10-15 min", "content": "Values get close.", "quizzes": []}
    ]
    assert rendered.key_concepts[0].example_sections is None
    assert rendered.assessment == {"questions": []}
    assert [f.url for f in rendered.figures] == ["https://example.org/n1/0.png"]

    call = model.calls[0]
    assert call["json_mode"] is True
    assert "Difficulty Level: intermediate" in call["user"]
    assert call["user"].endswith("VISUAL AIDS: none")


@pytest.mark.asyncio
async def test_model_can_declare_material_insufficient(make_model) -> None:  # noqa: ANN001
    reply = {"overview": "Not enough material.", "chapters": [], "content_unavailable_reason": "No examples"}
    model = make_model(orjson.dumps(reply).decode())

    rendered = await ContentSynthesizer(model).synthesize_module_content(
        "Limits", "d", CONTENTS, "beginner"
    )

    assert rendered.content_unavailable
    assert rendered.unavailable_reason == "No examples"
    assert rendered.chapters == []
