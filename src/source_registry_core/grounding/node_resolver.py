from __future__ import annotations

import re
import time
from collections.abc import Sequence

from source_registry_core.grounding.types import (
    NodeSelectionResult,
    ResolveNodesRequest,
    ResolveNodesResult,
    TocNodeSummary,
)
from source_registry_core.llm import ChatModel, parse_json_object
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import TocNode

MAX_SELECTED_NODES = 5

_NON_LEARNING_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        # setup and installation
        r"setup",
        r"install",
        r"environment",
        r"development\s*environment",
        r"configuration",
        r"getting\s*started",
        r"prerequisites",
        r"requirements",
        # administrative
        r"syllabus",
        r"course\s*info",
        r"course\s*overview",
        r"overview.*setup",
        r"overview.*environment",
        r"overview.*installation",
        r"grading",
        r"policy",
        r"policies",
        r"schedule",
        r"calendar",
        r"logistics",
        # resources and downloads
        r"resources",
        r"downloads",
        r"materials",
        r"software",
        r"^tools$",
        # front matter
        r"^preface$",
        r"^about\s*this",
        r"^how\s*to\s*use",
        r"^introduction$",
    )
]

NODE_SELECTION_PROMPT = """You are helping to ground educational module content in authoritative source material.

Given a module title and a table of contents from a trusted educational source, select the MOST APPROPRIATE sections that should be used to create the module content.

IMPORTANT RULES:
1. Select sections that DIRECTLY relate to the module topic
2. Prefer specific sections over broad chapter-level nodes
3. Select 1-5 nodes maximum - be selective
4. If the module topic is clearly not covered in the TOC, return an empty array
5. Consider the logical order and depth - prefer sections at similar depths
6. **EXCLUDE setup, installation, environment, prerequisites, and administrative sections** - only select learning content
7. Skip sections about: "Getting Started", "Setup", "Installation", "Environment", "Prerequisites", "Course Info", "Syllabus", "Requirements", "Resources", "Downloads"

Respond with JSON ONLY in this exact structure:
{
  "selected_node_ids": ["node_id_1", "node_id_2"],
  "reasoning": "Brief explanation of why these sections were selected"
}

If no suitable sections exist for this module topic:
{
  "selected_node_ids": [],
  "reasoning": "Explanation of why no suitable content was found"
}"""


def to_toc_summaries(nodes: Sequence[TocNode]) -> list[TocNodeSummary]:
    return [
        TocNodeSummary(
            node_id=n.id or "",
            title=n.title,
            order=n.sort_order,
            depth=n.depth,
            node_type=n.node_type,
        )
        for n in nodes
        if n.id
    ]


def is_learning_content(title: str) -> bool:
    text = title.strip().lower()
    return not any(p.search(text) for p in _NON_LEARNING_PATTERNS)


def filter_non_learning_content(
    summaries: Sequence[TocNodeSummary], *, logger: RegistryLogger | None = None
) -> list[TocNodeSummary]:
    """Drop setup, administrative and front-matter entries; they never make a module."""
    kept: list[TocNodeSummary] = []
    for s in summaries:
        if is_learning_content(s.title):
            kept.append(s)
        elif logger is not None:
            logger.info("node-resolver", f'Filtering out non-learning content: "{s.title}"')
    return kept


def format_toc_outline(summaries: Sequence[TocNodeSummary]) -> str:
    return "\n".join(
        f"{'  ' * s.depth}[{s.node_id}] {s.title} ({s.node_type}, order: {s.order})"
        for s in summaries
    )


def build_selection_prompt(
    module_title: str,
    module_description: str,
    summaries: Sequence[TocNodeSummary],
    path_context: str | None = None,
) -> str:
    lines = [
        f"Module Title: {module_title}",
        f"Module Description: {module_description}",
    ]
    if path_context:
        lines.append(f"Learning Path Context: {path_context}")
    lines += [
        "",
        "Table of Contents:",
        format_toc_outline(summaries),
        "",
        "Select the most appropriate sections for this module.",
    ]
    return "\n".join(lines)


class NodeResolver:
    """
    Asks the model which TOC nodes of an asset ground a module.

    Ids coming back from the model are checked against the nodes that were offered; anything
    else is dropped.
    """

    def __init__(self, model: ChatModel, *, logger: RegistryLogger | None = None):
        self.model = model
        self._log = logger or RegistryLogger()

    async def select_nodes_for_module(
        self,
        module_title: str,
        module_description: str,
        toc_nodes: Sequence[TocNode],
        path_context: str | None = None,
    ) -> NodeSelectionResult:
        started = time.monotonic()
        self._log.info(
            "node-resolver",
            f'Selecting nodes for module: "{module_title}"',
            details={"nodeCount": len(toc_nodes)},
        )
        summaries = to_toc_summaries(toc_nodes)
        filtered = filter_non_learning_content(summaries, logger=self._log)
        if not filtered:
            self._log.warn("node-resolver", "No learning content nodes available after filtering")
            return NodeSelectionResult(
                selected_node_ids=[],
                reasoning="All available nodes were setup/administrative content",
            )
        self._log.info(
            "node-resolver", f"Filtered {len(summaries) - len(filtered)} non-learning nodes"
        )

        raw = await self.model.complete(
            system=NODE_SELECTION_PROMPT,
            user=build_selection_prompt(module_title, module_description, filtered, path_context),
            temperature=0.3,
            max_tokens=500,
            json_mode=True,
        )
        parsed = parse_json_object(raw or "{}")
        if parsed is None:
            self._log.error(
                "node-resolver",
                "Failed to parse AI response",
                details={"response": (raw or "")[:500]},
            )
            return NodeSelectionResult(
                selected_node_ids=[],
                reasoning="Failed to parse AI response for node selection",
            )

        requested = parsed.get("selected_node_ids")
        if not isinstance(requested, list):
            requested = []
        known = {s.node_id for s in filtered}
        validated: list[str] = []
        for node_id in requested:
            if isinstance(node_id, str) and node_id in known and node_id not in validated:
                validated.append(node_id)
        validated = validated[:MAX_SELECTED_NODES]
        if len(validated) != len(requested):
            self._log.warn(
                "node-resolver",
                "Some selected node IDs were invalid or filtered out",
                details={"requested": requested, "valid": validated},
            )

        reasoning = parsed.get("reasoning")
        reasoning = reasoning if isinstance(reasoning, str) else ""
        self._log.info(
            "node-resolver",
            f'Node selection complete for "{module_title}"',
            duration_ms=int((time.monotonic() - started) * 1000),
            details={"selectedCount": len(validated), "reasoning": reasoning},
        )
        return NodeSelectionResult(selected_node_ids=validated, reasoning=reasoning)

    async def resolve_nodes_for_module(
        self, request: ResolveNodesRequest, toc_nodes: Sequence[TocNode]
    ) -> ResolveNodesResult:
        """Never raises: model or parsing failures come back as `content_unavailable`."""
        started = time.monotonic()
        self._log.info(
            "node-resolver",
            f'Resolving nodes for module: "{request.module_title}"',
            asset_id=request.source_asset_id,
            details={"availableNodes": len(toc_nodes)},
        )
        if not toc_nodes:
            self._log.warn(
                "node-resolver", "No TOC nodes available for asset", asset_id=request.source_asset_id
            )
            return ResolveNodesResult.unavailable(
                request.source_asset_id,
                "No table of contents nodes available for this source asset",
            )

        try:
            selection = await self.select_nodes_for_module(
                request.module_title,
                request.module_description,
                toc_nodes,
                request.path_context,
            )
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "node-resolver",
                f"Node resolution failed: {e}",
                asset_id=request.source_asset_id,
                details={"moduleTitle": request.module_title},
            )
            return ResolveNodesResult.unavailable(
                request.source_asset_id, f"Node resolution failed: {e}"
            )

        unavailable = not selection.selected_node_ids
        self._log.info(
            "node-resolver",
            f'Node resolution complete for "{request.module_title}"',
            asset_id=request.source_asset_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "selectedCount": len(selection.selected_node_ids),
                "contentUnavailable": unavailable,
            },
        )
        return ResolveNodesResult(
            source_asset_id=request.source_asset_id,
            source_node_ids=list(selection.selected_node_ids),
            content_unavailable=unavailable,
            reasoning=selection.reasoning,
        )
