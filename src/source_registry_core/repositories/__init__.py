from source_registry_core.repositories.postgres import PostgresRecordStore
from source_registry_core.repositories.registry import RegistryRepository, link_toc_nodes

__all__ = [
    "PostgresRecordStore",
    "RegistryRepository",
    "link_toc_nodes",
]
