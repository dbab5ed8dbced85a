"""In-memory pair state shared by the refresh and persist lines."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from pairview.core.models import PairConfig, SeriesStore, SynthesisResult
from pairview.pairs.synthesizer import PairSynthesizer
from pairview.providers.base import DataProvider
from pairview.storage.sqlite_store import InstrumentStore

logger = logging.getLogger(__name__)


class PairsContainer:
    """Holds the latest series per instrument and derives pairs on request.

    Every read and every replacement of the series map happens under one
    asyncio lock. The map is swapped whole on refresh and its values are
    immutable, so a reader always sees one complete generation.

    Parameters
    ----------
    provider : DataProvider
        Source for ``refresh``.
    pair_config : PairConfig
        Transform used by ``pair`` unless overridden per call.
    load_values_count : int
        Number of most recent samples kept per instrument.
    """

    def __init__(
        self,
        provider: DataProvider,
        pair_config: PairConfig | None = None,
        load_values_count: int = 500,
        synthesizer: PairSynthesizer | None = None,
    ) -> None:
        if load_values_count < 1:
            raise ValueError(f"load_values_count must be >= 1, got {load_values_count}")
        self._provider = provider
        self._pair_config = pair_config or PairConfig()
        self._load_values_count = load_values_count
        self._synthesizer = synthesizer or PairSynthesizer()
        self._series: dict[str, SeriesStore] = {}
        self._lock = asyncio.Lock()
        self._generation = 0
        self._refreshed_at: datetime | None = None

    @property
    def provider(self) -> DataProvider:
        return self._provider

    @property
    def pair_config(self) -> PairConfig:
        return self._pair_config

    @pair_config.setter
    def pair_config(self, config: PairConfig) -> None:
        self._pair_config = config

    @property
    def generation(self) -> int:
        """Number of completed refreshes."""
        return self._generation

    @property
    def refreshed_at(self) -> datetime | None:
        return self._refreshed_at

    async def refresh(self) -> int:
        """Fetch fresh data from the provider and replace the state.

        Fetch errors propagate and leave the previous state untouched.
        Returns the number of instruments now held.
        """
        fresh = await self._provider.fetch_all()
        trimmed = {s.code: s.tail(self._load_values_count) for s in fresh}
        async with self._lock:
            self._series = trimmed
            self._generation += 1
            self._refreshed_at = datetime.now()
        logger.debug("Refreshed %d instruments (generation %d)", len(trimmed), self._generation)
        return len(trimmed)

    async def snapshot(self) -> dict[str, SeriesStore]:
        """Return a consistent copy of the current series map."""
        async with self._lock:
            return dict(self._series)

    async def codes(self) -> list[str]:
        async with self._lock:
            return sorted(self._series)

    async def pair(
        self,
        code_a: str,
        code_b: str,
        config: PairConfig | None = None,
    ) -> SynthesisResult:
        """Synthesize the pair series for two held instruments."""
        async with self._lock:
            series_a = self._series.get(code_a)
            series_b = self._series.get(code_b)
        for code, series in ((code_a, series_a), (code_b, series_b)):
            if series is None:
                raise KeyError(f"Unknown instrument: {code}")
        return self._synthesizer.synthesize(series_a, series_b, config or self._pair_config)

    async def persist(self, store: InstrumentStore) -> int:
        """Write the samples the store has not seen yet. Returns samples written."""
        snapshot = await self.snapshot()
        written = 0
        for series in snapshot.values():
            written += await store.append_new(series)
        logger.debug("Persisted %d new samples across %d instruments", written, len(snapshot))
        return written
