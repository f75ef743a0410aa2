from __future__ import annotations

from source_registry_core.catalog.base import CacheEntry, LazyTocCatalog, tokenize
from source_registry_core.catalog.mit_ocw import CourseMatch, MitOcwCatalog, MitOcwCourse, score_course
from source_registry_core.catalog.openstax import (
    BookMatch,
    DiscoveredContent,
    OpenStaxBook,
    OpenStaxCatalog,
    score_book,
)
from source_registry_core.catalog.web_docs import (
    KNOWN_DOC_SOURCES,
    DocDiscovery,
    DocMatch,
    DocSource,
    WebDocsSearcher,
    WebSearchResult,
    extract_basic_structure,
    parse_search_results,
    score_doc,
)

__all__ = [
    "KNOWN_DOC_SOURCES",
    "BookMatch",
    "CacheEntry",
    "CourseMatch",
    "DiscoveredContent",
    "DocDiscovery",
    "DocMatch",
    "DocSource",
    "LazyTocCatalog",
    "MitOcwCatalog",
    "MitOcwCourse",
    "OpenStaxBook",
    "OpenStaxCatalog",
    "WebDocsSearcher",
    "WebSearchResult",
    "extract_basic_structure",
    "parse_search_results",
    "score_book",
    "score_course",
    "score_doc",
    "tokenize",
]
