"""Shared pytest fixtures for pairview."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from pairview.core.models import ProviderKind, Sample, SeriesStore
from pairview.storage import SqliteInstrumentStore

T0 = datetime(2024, 1, 15, 9, 30, 0)


def build_series(
    code: str,
    prices: list[float],
    volumes: list[float] | None = None,
    start: datetime = T0,
    step: timedelta = timedelta(minutes=1),
) -> SeriesStore:
    volumes = volumes if volumes is not None else [100.0 * (i + 1) for i in range(len(prices))]
    return SeriesStore(
        code=code,
        samples=tuple(
            Sample(timestamp=start + i * step, price=p, volume=v)
            for i, (p, v) in enumerate(zip(prices, volumes))
        ),
    )


class FakeProvider:
    """In-memory DataProvider returning scripted batches.

    Each entry of ``batches`` is returned (or raised, if an exception) by one
    ``fetch_all`` call; the last entry repeats once the script runs out.
    """

    kind = ProviderKind.FILE
    skipped_rows = 0

    def __init__(self, *batches, delay: float = 0.0) -> None:
        self._batches = list(batches) or [[]]
        self._delay = delay
        self.calls = 0

    async def fetch_all(self) -> list[SeriesStore]:
        item = self._batches[min(self.calls, len(self._batches) - 1)]
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(self.calls)
        return list(item)


@pytest.fixture
def make_series():
    """Factory for SeriesStore with evenly spaced timestamps."""
    return build_series


@pytest.fixture
def market_dir(tmp_path: Path) -> Path:
    """Directory with three well-formed OHLCV files (header present)."""
    root = tmp_path / "MarketData"
    root.mkdir()
    header = "date,open,high,low,close,volume\n"
    (root / "AAA.csv").write_text(
        header
        + "2024-01-15,10.0,10.5,9.5,10.2,1000\n"
        + "2024-01-16,10.2,10.8,10.0,10.6,1200\n"
        + "2024-01-17,10.6,11.0,10.4,10.9,900\n"
    )
    (root / "BBB.csv").write_text(
        header
        + "2024-01-15,20.0,21.0,19.5,20.4,500\n"
        + "2024-01-16,20.4,21.5,20.0,21.2,650\n"
        + "2024-01-17,21.2,22.0,21.0,21.8,700\n"
    )
    (root / "CCC.csv").write_text(
        header
        + "2024-01-15,5.0,5.2,4.8,5.1,3000\n"
        + "2024-01-16,5.1,5.3,4.9,5.0,3100\n"
    )
    return root


@pytest.fixture
async def store(tmp_path: Path):
    """An initialized SqliteInstrumentStore on a temp file."""
    s = SqliteInstrumentStore(str(tmp_path / "store.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def fake_provider():
    """Factory for FakeProvider."""
    return FakeProvider


@pytest.fixture
def generations(make_series):
    """Build generation ``n``: instruments AAA, BBB, CCC with every price equal to ``n``."""

    def build(n: int, length: int = 3) -> list[SeriesStore]:
        return [make_series(code, [float(n)] * length) for code in ("AAA", "BBB", "CCC")]

    return build
