from __future__ import annotations

import time
from collections.abc import Sequence

from source_registry_core.fetcher import Fetcher
from source_registry_core.grounding.node_resolver import NodeResolver, to_toc_summaries
from source_registry_core.grounding.retriever import ContentRetriever, format_citations_display
from source_registry_core.grounding.synthesizer import ContentSynthesizer
from source_registry_core.grounding.types import (
    Citation,
    RenderedModuleContent,
    ResolveNodesRequest,
    ResolveNodesResult,
    TocNodeSummary,
)
from source_registry_core.llm import ChatModel
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import Asset, TocNode
from source_registry_core.repositories.registry import RegistryRepository


class ModuleGroundingService:
    """
    Module-facing entry points: resolve which registry nodes back a module, then render the
    module from those nodes on demand.

    Every missing precondition (unknown asset, inactive asset, no nodes...) becomes an
    unavailable result with its own reason instead of an exception.
    """

    def __init__(
        self,
        repository: RegistryRepository,
        fetcher: Fetcher,
        model: ChatModel,
        *,
        logger: RegistryLogger | None = None,
        resolver: NodeResolver | None = None,
        retriever: ContentRetriever | None = None,
        synthesizer: ContentSynthesizer | None = None,
    ):
        self.repository = repository
        self._log = logger or RegistryLogger()
        self.resolver = resolver or NodeResolver(model, logger=self._log)
        self.retriever = retriever or ContentRetriever(fetcher, logger=self._log)
        self.synthesizer = synthesizer or ContentSynthesizer(model, logger=self._log)

    def get_toc_summaries(self, asset_id: str) -> list[TocNodeSummary]:
        return to_toc_summaries(self.repository.list_toc_nodes(asset_id))

    def get_toc_nodes(self, asset_id: str) -> list[TocNode]:
        return self.repository.list_toc_nodes(asset_id)

    def get_nodes_by_ids(self, node_ids: Sequence[str]) -> list[TocNode]:
        if not node_ids:
            return []
        return self.repository.get_nodes_by_ids(node_ids)

    def get_asset(self, asset_id: str) -> Asset | None:
        return self.repository.get_asset(asset_id)

    def get_active_assets(self, source_id: str | None = None) -> list[Asset]:
        assets = self.repository.list_active_assets()
        if source_id is not None:
            assets = [a for a in assets if a.source_id == source_id]
        return assets

    async def resolve_nodes_for_module(
        self,
        module_title: str,
        module_description: str,
        source_asset_id: str,
        path_context: str | None = None,
    ) -> ResolveNodesResult:
        started = time.monotonic()
        self._log.info(
            "module-grounding",
            f'Resolving nodes for module: "{module_title}"',
            asset_id=source_asset_id,
        )
        asset = self.get_asset(source_asset_id)
        if asset is None:
            self._log.error("module-grounding", f"Asset not found: {source_asset_id}")
            return ResolveNodesResult.unavailable(
                source_asset_id, "Source asset not found in registry"
            )
        if not asset.active:
            self._log.warn("module-grounding", f"Asset not active: {source_asset_id}")
            return ResolveNodesResult.unavailable(
                source_asset_id, "Source asset is not activated in registry"
            )

        result = await self.resolver.resolve_nodes_for_module(
            ResolveNodesRequest(
                module_title=module_title,
                module_description=module_description,
                source_asset_id=source_asset_id,
                path_context=path_context,
            ),
            self.get_toc_nodes(source_asset_id),
        )
        self._log.info(
            "module-grounding",
            f'Node resolution complete for "{module_title}"',
            asset_id=source_asset_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "selectedNodes": len(result.source_node_ids),
                "contentUnavailable": result.content_unavailable,
            },
        )
        return result

    async def render_module_content(
        self,
        module_id: str,
        module_title: str,
        module_description: str,
        source_asset_id: str,
        source_node_ids: Sequence[str],
        difficulty: str,
        *,
        visual_context: str | None = None,
    ) -> RenderedModuleContent:
        started = time.monotonic()
        self._log.info(
            "module-grounding",
            f'Rendering content for module: "{module_title}"',
            asset_id=source_asset_id,
            details={"moduleId": module_id, "nodeCount": len(source_node_ids)},
        )
        if not source_node_ids:
            self._log.warn("module-grounding", "No source nodes to render")
            return RenderedModuleContent.unavailable(
                "No source content is available for this module.",
                "No source nodes were selected for this module",
            )

        asset = self.get_asset(source_asset_id)
        if asset is None:
            self._log.error("module-grounding", f"Asset not found: {source_asset_id}")
            return RenderedModuleContent.unavailable(
                "Source asset not found.", "Source asset not found in registry"
            )

        nodes = [n for n in self.get_nodes_by_ids(source_node_ids) if n.asset_id == asset.id]
        if not nodes:
            self._log.error(
                "module-grounding", f"No valid nodes found for IDs: {', '.join(source_node_ids)}"
            )
            return RenderedModuleContent.unavailable(
                "Source nodes not found.", "Selected source nodes not found in registry"
            )

        self._log.info("module-grounding", f"Retrieving content from {len(nodes)} nodes")
        contents = await self.retriever.retrieve_nodes_content(
            nodes, asset, context_nodes=self.get_toc_nodes(asset.id)
        )
        if not contents:
            self._log.error("module-grounding", "Content retrieval failed for all nodes")
            return RenderedModuleContent.unavailable(
                "Failed to retrieve source content. Please try again later.",
                "Content retrieval failed for all source nodes",
            )

        self._log.info("module-grounding", f"Synthesizing content from {len(contents)} sources")
        rendered = await self.synthesizer.synthesize_module_content(
            module_title,
            module_description,
            contents,
            difficulty,
            visual_context=visual_context,
        )
        self._log.info(
            "module-grounding",
            f'Content rendering complete for "{module_title}"',
            asset_id=source_asset_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            details={
                "sectionsCount": len(rendered.sections),
                "conceptsCount": len(rendered.key_concepts),
                "citationsCount": len(rendered.citations),
            },
        )
        return rendered

    def persist_module_resolution(self, module_id: str, resolution: ResolveNodesResult) -> None:
        updated = self.repository.update_learning_path_item(
            module_id,
            source_asset_id=resolution.source_asset_id,
            source_node_ids=list(resolution.source_node_ids),
            content_mode="registry_backed",
            content_unavailable=resolution.content_unavailable,
            last_resolved_at=resolution.resolved_at,
        )
        if updated is None:
            raise LookupError(f"Failed to update module: {module_id} not found")
        self._log.info(
            "module-grounding",
            f"Persisted resolution for module: {module_id}",
            details={
                "nodeCount": len(resolution.source_node_ids),
                "contentUnavailable": resolution.content_unavailable,
            },
        )

    def get_module_citation_display(
        self, source_asset_id: str | None, source_node_ids: Sequence[str] | None
    ) -> str:
        if not source_asset_id or not source_node_ids:
            return ""
        asset = self.get_asset(source_asset_id)
        if asset is None:
            return ""
        citations = [
            Citation(
                source_title=asset.title,
                section_title=node.title,
                section_path=[],
                url=node.url or "",
                node_id=node.id or "",
            )
            for node in self.get_nodes_by_ids(source_node_ids)
        ]
        return format_citations_display(citations)
