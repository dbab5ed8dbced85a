"""Data provider protocol: the source-agnostic interface layer.

Architecture
------------
Every source of instrument history sits behind one capability:

    Source (files | relational store) → DataProvider.fetch_all() → list[SeriesStore]

Consumers (the pairs container, the import pipeline) depend only on this
protocol. The concrete variant is chosen once, at construction time, by
``create_provider``; nothing downstream branches on the source kind.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pairview.core.models import ProviderKind, SeriesStore


@runtime_checkable
class DataProvider(Protocol):
    """Consumer-facing interface for fetching instrument histories."""

    @property
    def kind(self) -> ProviderKind:
        """Which variant this provider is."""
        ...

    @property
    def skipped_rows(self) -> int:
        """Malformed rows skipped during the most recent fetch."""
        ...

    async def fetch_all(self) -> list[SeriesStore]:
        """Fetch every instrument with its history.

        Raises
        ------
        ConfigurationInvalid
            The provider's configuration is unusable. Raised before I/O.
        SourceUnavailable
            The file root or store connection could not be opened.
        MalformedRecord
            A whole file could not be read (file variant only).
        """
        ...
