"""Source-agnostic instrument history providers.

Key abstractions:

- ``DataProvider``: consumer-facing async interface, ``fetch_all()``.
- ``FileProvider``: one delimited file per instrument under a root dir.
- ``DatabaseProvider``: reads the relational store over a read-only
  connection.
- ``create_provider``: picks the variant from configuration.
"""

from __future__ import annotations

from pairview.core.config import ProviderConfig, StorageConfig
from pairview.core.models import ProviderKind
from pairview.providers.base import DataProvider
from pairview.providers.csv_provider import FileProvider
from pairview.providers.sqlite_provider import DatabaseProvider


def create_provider(provider: ProviderConfig, storage: StorageConfig) -> DataProvider:
    """Build the configured provider variant."""
    if provider.kind == ProviderKind.DATABASE:
        return DatabaseProvider(storage.connection)
    return FileProvider(provider.root, provider.csv)


__all__ = [
    "DataProvider",
    "FileProvider",
    "DatabaseProvider",
    "create_provider",
]
