"""Marketplace collaborators: protocols and httpx implementations."""
from catalog_migration.clients.protocols import DestinationCatalog, SourceCatalog
from catalog_migration.clients.source_client import SourceCatalogClient
from catalog_migration.clients.destination_client import DestinationCatalogClient

__all__ = [
    "SourceCatalog",
    "DestinationCatalog",
    "SourceCatalogClient",
    "DestinationCatalogClient",
]
