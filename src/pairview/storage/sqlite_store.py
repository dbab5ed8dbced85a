"""SQLite instrument store: Protocol definition, implementation, factory.

One ``SqliteInstrumentStore`` owns one connection and is the single writer
for its database. The persist line and the import pipeline both write
through it, and its write lock keeps their transactions from interleaving.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import ClassVar, Literal, Protocol, runtime_checkable

import aiosqlite

from pairview.core.config import StorageConfig, require_connection
from pairview.core.exceptions import PairViewError, PersistenceFailure, SourceUnavailable
from pairview.core.models import Sample, SeriesStore

logger = logging.getLogger(__name__)

UpsertOutcome = Literal["inserted", "appended"]


@runtime_checkable
class InstrumentStore(Protocol):
    """Abstract persistence interface for instrument histories."""

    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...
    async def exists(self, code: str) -> bool: ...
    async def get_series(self, code: str) -> SeriesStore | None: ...
    async def list_codes(self) -> list[str]: ...
    async def load_all(self) -> list[SeriesStore]: ...
    async def history_length(self, code: str) -> int: ...
    async def upsert_series(self, series: SeriesStore) -> UpsertOutcome: ...
    async def append_new(self, series: SeriesStore) -> int: ...


class SqliteInstrumentStore:
    """SQLite implementation of the instrument store.

    Uses aiosqlite for async access, WAL mode for concurrent readers,
    and a version-tracked migration system.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS instruments (
                    code TEXT PRIMARY KEY,
                    created_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL REFERENCES instruments(code),
                    timestamp TEXT NOT NULL,
                    price REAL NOT NULL,
                    volume REAL NOT NULL DEFAULT 0
                )""",
                "CREATE INDEX IF NOT EXISTS idx_samples_code_ts ON samples(code, timestamp)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig | str) -> None:
        connection = config.connection if isinstance(config, StorageConfig) else config
        self._path = require_connection(connection)
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def connection(self) -> str:
        return self._path

    async def __aenter__(self) -> SqliteInstrumentStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations."""
        try:
            if self._path != ":memory:" and not self._path.startswith("file:"):
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path, uri=self._path.startswith("file:"))
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise SourceUnavailable(
                f"Failed to open instrument store: {e}",
                context={"source": "database", "location": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise SourceUnavailable(
                "Instrument store is not initialized",
                context={"source": "database", "location": self._path},
            )
        return self._db

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Reads ---

    async def exists(self, code: str) -> bool:
        try:
            async with self._conn().execute(
                "SELECT 1 FROM instruments WHERE code = ?", (code,)
            ) as cursor:
                row = await cursor.fetchone()
            return row is not None
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Failed to look up instrument {code}: {e}",
                context={"source": "database", "location": self._path},
            ) from e

    async def get_series(self, code: str) -> SeriesStore | None:
        if not await self.exists(code):
            return None
        try:
            async with self._conn().execute(
                """SELECT code, timestamp, price, volume FROM samples
                   WHERE code = ? ORDER BY timestamp, id""",
                (code,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Failed to read history for {code}: {e}",
                context={"source": "database", "location": self._path},
            ) from e
        return SeriesStore(code=code, samples=tuple(_row_to_sample(r) for r in rows))

    async def list_codes(self) -> list[str]:
        try:
            async with self._conn().execute(
                "SELECT code FROM instruments ORDER BY code"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Failed to list instruments: {e}",
                context={"source": "database", "location": self._path},
            ) from e
        return [row[0] for row in rows]

    async def load_all(self) -> list[SeriesStore]:
        try:
            return await read_all_series(self._conn())
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Failed to read instruments: {e}",
                context={"source": "database", "location": self._path},
            ) from e

    async def history_length(self, code: str) -> int:
        try:
            async with self._conn().execute(
                "SELECT COUNT(*) FROM samples WHERE code = ?", (code,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise SourceUnavailable(
                f"Failed to count history for {code}: {e}",
                context={"source": "database", "location": self._path},
            ) from e
        return row[0]

    # --- Writes ---

    async def upsert_series(self, series: SeriesStore) -> UpsertOutcome:
        """Insert the instrument if absent, then append its full history.

        Committed as one transaction per instrument.
        """
        async with self._write_lock:
            try:
                existed = await self.exists(series.code)
                if not existed:
                    await self._conn().execute(
                        "INSERT INTO instruments (code) VALUES (?)", (series.code,)
                    )
                await self._insert_samples(series.code, series.samples)
                await self._conn().commit()
            except Exception as e:
                await self._rollback()
                if isinstance(e, PersistenceFailure):
                    raise
                raise PersistenceFailure(
                    f"Failed to upsert {series.code}: {e}",
                    context={"operation": "upsert", "code": series.code},
                ) from e

        outcome: UpsertOutcome = "appended" if existed else "inserted"
        logger.debug("%s %s (%d samples)", outcome.capitalize(), series.code, len(series))
        return outcome

    async def append_new(self, series: SeriesStore) -> int:
        """Append only the samples newer than the stored tail.

        Returns the number of samples written. Repeated calls with the same
        series write nothing after the first.
        """
        async with self._write_lock:
            try:
                async with self._conn().execute(
                    "SELECT MAX(timestamp) FROM samples WHERE code = ?", (series.code,)
                ) as cursor:
                    row = await cursor.fetchone()
                tail = datetime.fromisoformat(row[0]) if row[0] is not None else None
                if tail is not None and tail.tzinfo is not None:
                    tail = tail.astimezone().replace(tzinfo=None)
                fresh = [s for s in series.samples if tail is None or s.timestamp > tail]

                if not await self.exists(series.code):
                    await self._conn().execute(
                        "INSERT INTO instruments (code) VALUES (?)", (series.code,)
                    )
                await self._insert_samples(series.code, fresh)
                await self._conn().commit()
            except Exception as e:
                await self._rollback()
                if isinstance(e, PersistenceFailure):
                    raise
                raise PersistenceFailure(
                    f"Failed to append {series.code}: {e}",
                    context={"operation": "append", "code": series.code},
                ) from e
        return len(fresh)

    async def _insert_samples(self, code: str, samples: Iterable[Sample]) -> None:
        rows = [(code, s.timestamp.isoformat(), s.price, s.volume) for s in samples]
        if rows:
            await self._conn().executemany(
                "INSERT INTO samples (code, timestamp, price, volume) VALUES (?, ?, ?, ?)",
                rows,
            )

    async def _rollback(self) -> None:
        if self._db is None:
            return
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            logger.warning("Rollback failed on %s", self._path, exc_info=True)


async def read_all_series(db: aiosqlite.Connection) -> list[SeriesStore]:
    """Read every instrument and its history over an open connection."""
    async with db.execute("SELECT code FROM instruments ORDER BY code") as cursor:
        codes = [row[0] for row in await cursor.fetchall()]
    async with db.execute(
        "SELECT code, timestamp, price, volume FROM samples ORDER BY code, timestamp, id"
    ) as cursor:
        rows = await cursor.fetchall()

    history: dict[str, list[Sample]] = {code: [] for code in codes}
    for row in rows:
        history.setdefault(row[0], []).append(_row_to_sample(row))
    return [SeriesStore(code=code, samples=tuple(samples)) for code, samples in history.items()]


def _row_to_sample(row) -> Sample:
    return Sample(
        timestamp=datetime.fromisoformat(row[1]),
        price=row[2],
        volume=row[3],
    )


async def create_store(config: StorageConfig) -> SqliteInstrumentStore:
    """Create and initialize the instrument store from configuration."""
    store = SqliteInstrumentStore(config)
    try:
        await store.initialize()
    except PairViewError:
        await store.close()
        raise
    return store
