"""Database provider: reads instrument histories from the relational store.

Each fetch opens its own read-only connection, so a refresh never writes
to the store and never contends with the store's writer connection.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

import aiosqlite

from pairview.core.config import require_connection
from pairview.core.exceptions import SourceUnavailable
from pairview.core.models import ProviderKind, SeriesStore
from pairview.storage.sqlite_store import read_all_series

logger = logging.getLogger(__name__)


def _read_only_target(connection: str) -> str:
    """Turn a path or ``file:`` URI into a read-only SQLite URI."""
    if connection == ":memory:":
        return "file::memory:?mode=ro"
    if connection.startswith("file:"):
        if "mode=" in connection:
            return connection
        sep = "&" if "?" in connection else "?"
        return f"{connection}{sep}mode=ro"
    return f"file:{quote(Path(connection).resolve().as_posix())}?mode=ro"


class DatabaseProvider:
    """DataProvider over a relational store reached by a connection descriptor.

    Parameters
    ----------
    connection : str
        Opaque descriptor (for SQLite a path or ``file:`` URI). Must not be
        empty; an empty descriptor raises ConfigurationInvalid immediately.
    """

    def __init__(self, connection: str) -> None:
        self._connection = require_connection(connection)

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.DATABASE

    @property
    def connection(self) -> str:
        return self._connection

    @property
    def skipped_rows(self) -> int:
        return 0

    async def fetch_all(self) -> list[SeriesStore]:
        target = _read_only_target(self._connection)
        try:
            async with aiosqlite.connect(target, uri=True) as db:
                series = await read_all_series(db)
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Cannot read instruments from {self._connection}: {e}",
                context={"source": "database", "location": self._connection},
            ) from e
        logger.info("Loaded %d instruments from %s", len(series), self._connection)
        return series
