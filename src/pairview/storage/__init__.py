"""Relational persistence for instrument histories."""

from pairview.storage.sqlite_store import (
    InstrumentStore,
    SqliteInstrumentStore,
    UpsertOutcome,
    create_store,
    read_all_series,
)

__all__ = [
    "InstrumentStore",
    "SqliteInstrumentStore",
    "UpsertOutcome",
    "create_store",
    "read_all_series",
]
