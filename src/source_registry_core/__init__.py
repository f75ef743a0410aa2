from source_registry_core.config import Settings, load_settings
from source_registry_core.export import build_library_export, write_library_export
from source_registry_core.fetcher import Fetcher, FetchResult
from source_registry_core.llm import ChatModel, LlmClient
from source_registry_core.logging import RegistryLogger, configure_logging
from source_registry_core.registry import NotFoundError, RegistryError, RegistryService
from source_registry_core.repositories import RegistryRepository
from source_registry_core.store import InMemoryRecordStore

__all__ = [
    "__version__",
    "ChatModel",
    "FetchResult",
    "Fetcher",
    "InMemoryRecordStore",
    "LlmClient",
    "NotFoundError",
    "RegistryError",
    "RegistryLogger",
    "RegistryRepository",
    "RegistryService",
    "Settings",
    "build_library_export",
    "configure_logging",
    "load_settings",
    "write_library_export",
]

__version__ = "0.1.0"
