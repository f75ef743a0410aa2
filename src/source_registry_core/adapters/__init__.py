from __future__ import annotations

from typing import Any

from source_registry_core.adapters.base import (
    AdapterError,
    LicenseInfo,
    SourceAdapter,
    TocBuilder,
    detect_license,
    resolve_url,
    slugify,
)
from source_registry_core.adapters.generic_html import GenericHtmlAdapter, GenericHtmlConfig
from source_registry_core.adapters.mit_ocw import MitOcwAdapter
from source_registry_core.adapters.openstax import OpenStaxAdapter
from source_registry_core.adapters.sphinx_docs import SphinxDocsAdapter
from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger

ADAPTER_TYPES: dict[str, type[SourceAdapter]] = {
    "openstax": OpenStaxAdapter,
    "sphinx_docs": SphinxDocsAdapter,
    "generic_html": GenericHtmlAdapter,
    "mit_ocw": MitOcwAdapter,
    "custom": GenericHtmlAdapter,
}


def get_adapter(
    source_type: str,
    fetcher: Fetcher,
    *,
    logger: RegistryLogger | None = None,
    config: dict[str, Any] | None = None,
) -> SourceAdapter:
    """
    `config` is the seed config; only the generic crawler reads it, so its depth limit,
    exclude patterns and selectors apply to TOC mapping as well as discovery.
    """
    try:
        cls = ADAPTER_TYPES[source_type]
    except KeyError:
        raise ValueError(f"No adapter for source type: {source_type}") from None
    if issubclass(cls, GenericHtmlAdapter):
        return cls(fetcher, config=GenericHtmlConfig.from_mapping(config), logger=logger)
    return cls(fetcher, logger=logger)


__all__ = [
    "ADAPTER_TYPES",
    "AdapterError",
    "GenericHtmlAdapter",
    "GenericHtmlConfig",
    "LicenseInfo",
    "MitOcwAdapter",
    "OpenStaxAdapter",
    "SourceAdapter",
    "SphinxDocsAdapter",
    "TocBuilder",
    "detect_license",
    "get_adapter",
    "resolve_url",
    "slugify",
]
