"""File provider: reads instrument histories from delimited flat files.

Every regular file directly under the root is one instrument; its code is
the file name without extension. Columns are mapped by index through a
``CsvFormat``.

When the format names no timestamp column, rows are stamped with the
processing time: rows already seen by an earlier fetch keep the stamp they
were given then, and rows new to this fetch all share one clock reading.
That timestamp records when the data was ingested, not when it was observed.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import math
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from pairview.core.exceptions import MalformedRecord, SourceUnavailable
from pairview.core.models import CsvFormat, ProviderKind, Sample, SeriesStore

logger = logging.getLogger(__name__)


class FileProvider:
    """DataProvider over a directory of delimited files.

    Parameters
    ----------
    root : str | Path
        Directory holding one file per instrument.
    csv_format : CsvFormat
        Separator, column indices and header flag.
    clock : Callable[[], datetime]
        Source of synthesized timestamps. Default: ``datetime.now``.
    """

    def __init__(
        self,
        root: str | Path,
        csv_format: CsvFormat | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._root = Path(root)
        self._format = csv_format or CsvFormat()
        self._clock = clock
        self._skipped_rows = 0
        self._stamps: dict[str, tuple[datetime, ...]] = {}

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.FILE

    @property
    def root(self) -> Path:
        return self._root

    @property
    def csv_format(self) -> CsvFormat:
        return self._format

    @property
    def skipped_rows(self) -> int:
        return self._skipped_rows

    async def fetch_all(self) -> list[SeriesStore]:
        """Parse every file under the root. File reads run off the event loop."""
        self._format.ensure_valid()
        series, skipped = await asyncio.to_thread(self._read_root)
        self._skipped_rows = skipped
        logger.info(
            "Loaded %d instruments from %s (%d malformed rows skipped)",
            len(series),
            self._root,
            skipped,
        )
        return series

    def _read_root(self) -> tuple[list[SeriesStore], int]:
        if not self._root.is_dir():
            raise SourceUnavailable(
                f"Market data directory not found: {self._root}",
                context={"source": "file", "location": str(self._root)},
            )
        try:
            paths = sorted(
                p for p in self._root.iterdir() if p.is_file() and not p.name.startswith(".")
            )
        except OSError as e:
            raise SourceUnavailable(
                f"Cannot list market data directory {self._root}: {e}",
                context={"source": "file", "location": str(self._root)},
            ) from e

        result: list[SeriesStore] = []
        seen: set[str] = set()
        total_skipped = 0
        stamp = self._clock()
        for path in paths:
            code = path.stem
            if code in seen:
                logger.warning("Duplicate instrument code %s, ignoring %s", code, path.name)
                continue
            seen.add(code)
            series, skipped = self.read_file(path, stamp)
            if self._format.timestamp_index is None:
                series = self._carry_stamps(series, stamp)
            total_skipped += skipped
            result.append(series)
        return result, total_skipped

    def read_file(self, path: Path, stamp: datetime | None = None) -> tuple[SeriesStore, int]:
        """Parse one file into a SeriesStore.

        Returns the series and the number of malformed rows skipped. Raises
        MalformedRecord if the file cannot be decoded or none of its data
        rows parse.

        ``stamp`` is used for every sample when the format has no timestamp
        column. Default: one fresh clock reading.
        """
        try:
            with open(path, newline="", encoding="utf-8") as f:
                rows = list(csv.reader(f, delimiter=self._format.separator))
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise MalformedRecord(
                f"Cannot read {path.name}: {e}",
                context={"path": str(path)},
            ) from e

        start = 1 if self._format.has_header else 0
        if stamp is None:
            stamp = self._clock()
        samples: list[Sample] = []
        skipped = 0
        for line_no, row in enumerate(rows[start:], start=start + 1):
            if not row or all(not cell.strip() for cell in row):
                continue
            try:
                samples.append(self.parse_row(row, line_no, path, stamp))
            except MalformedRecord as e:
                skipped += 1
                logger.warning("Skipping row: %s", e)

        if skipped and not samples:
            raise MalformedRecord(
                f"No parseable rows in {path.name} ({skipped} malformed)",
                context={"path": str(path), "skipped": skipped},
            )

        if self._format.timestamp_index is not None:
            samples.sort(key=lambda s: s.timestamp)
        return SeriesStore(code=path.stem, samples=tuple(samples)), skipped

    def parse_row(self, row: list[str], line_no: int, path: Path, stamp: datetime) -> Sample:
        """Map one split line to a Sample, or raise MalformedRecord."""
        fmt = self._format
        if len(row) < fmt.min_columns:
            raise MalformedRecord(
                f"{path.name}:{line_no}: expected at least {fmt.min_columns} columns, got {len(row)}",
                context={"path": str(path), "line": line_no},
            )
        try:
            price = float(row[fmt.price_index])
            volume = float(row[fmt.volume_index])
            if not (math.isfinite(price) and math.isfinite(volume)):
                raise ValueError("non-finite value")
            timestamp = self._parse_timestamp(row) if fmt.timestamp_index is not None else stamp
            return Sample(timestamp=timestamp, price=price, volume=volume)
        except (ValueError, ValidationError) as e:
            raise MalformedRecord(
                f"{path.name}:{line_no}: {e}",
                context={"path": str(path), "line": line_no},
            ) from e

    def _parse_timestamp(self, row: list[str]) -> datetime:
        raw = row[self._format.timestamp_index].strip()
        if self._format.timestamp_format:
            return datetime.strptime(raw, self._format.timestamp_format)
        return datetime.fromisoformat(raw)

    def _carry_stamps(self, series: SeriesStore, stamp: datetime) -> SeriesStore:
        """Reuse the previous fetch's stamps for rows it already returned."""
        previous = self._stamps.get(series.code, ())
        if previous:
            stamp = max(stamp, previous[-1])
        stamps = previous[: len(series)] + (stamp,) * max(len(series) - len(previous), 0)
        self._stamps[series.code] = stamps
        return SeriesStore(
            code=series.code,
            samples=tuple(
                s.model_copy(update={"timestamp": t}) for s, t in zip(series.samples, stamps)
            ),
        )
