"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pairview.core.exceptions import ConfigurationInvalid

# --- Type Aliases ---

InstrumentCode = str

# --- Enumerations ---


class TransformKind(StrEnum):
    """Algebraic form used to combine the two legs of a pair."""

    RATIO = "Ratio"
    RATIO_WITH_BETA = "RatioWithBeta"
    SPREAD = "Spread"
    SPREAD_WITH_BETA = "SpreadWithBeta"

    @classmethod
    def _missing_(cls, value: object) -> TransformKind | None:
        # Accept any casing and the older "...IncludingBeta" spelling.
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("includingbeta", "withbeta").replace("_", "")
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

    @property
    def uses_beta(self) -> bool:
        return self in (TransformKind.RATIO_WITH_BETA, TransformKind.SPREAD_WITH_BETA)

    @property
    def is_ratio(self) -> bool:
        return self in (TransformKind.RATIO, TransformKind.RATIO_WITH_BETA)


class ProviderKind(StrEnum):
    """Supported data provider variants."""

    FILE = "file"
    DATABASE = "database"


class ImportStatus(StrEnum):
    """Terminal state of an import run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# --- Series Models ---


class Sample(BaseModel):
    """One timestamped price/volume observation. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: float
    volume: float = 0.0

    @field_validator("timestamp")
    @classmethod
    def timestamp_naive_local(cls, v: datetime) -> datetime:
        # Stored and synthesized stamps are naive local time.
        if v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"volume must be >= 0, got {v}")
        return v


class SeriesStore(BaseModel):
    """Ordered sample history for one instrument.

    Samples are kept in non-decreasing timestamp order. Updates never mutate
    an existing store: ``append`` and ``tail`` return a new one.
    """

    model_config = ConfigDict(frozen=True)

    code: InstrumentCode
    samples: tuple[Sample, ...] = ()

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("code must not be empty")
        return v

    @model_validator(mode="after")
    def timestamps_non_decreasing(self) -> SeriesStore:
        for prev, cur in zip(self.samples, self.samples[1:]):
            if cur.timestamp < prev.timestamp:
                raise ValueError(
                    f"samples for {self.code} out of order: "
                    f"{cur.timestamp.isoformat()} after {prev.timestamp.isoformat()}"
                )
        return self

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def prices(self) -> list[float]:
        return [s.price for s in self.samples]

    @property
    def last_timestamp(self) -> datetime | None:
        return self.samples[-1].timestamp if self.samples else None

    def append(self, samples: Iterable[Sample]) -> SeriesStore:
        """Return a new store with ``samples`` added after the current tail."""
        return SeriesStore(code=self.code, samples=self.samples + tuple(samples))

    def tail(self, n: int) -> SeriesStore:
        """Return a new store holding at most the last ``n`` samples."""
        if n >= len(self.samples):
            return self
        return SeriesStore(code=self.code, samples=self.samples[-n:] if n > 0 else ())

    def restamped(self, timestamp: datetime) -> SeriesStore:
        """Return a copy with every sample stamped at ``timestamp``."""
        return SeriesStore(
            code=self.code,
            samples=tuple(s.model_copy(update={"timestamp": timestamp}) for s in self.samples),
        )


# --- Configuration Models ---

ALLOWED_SEPARATORS = (",", ".", ";", ":", "\\", "|", "\t")


class CsvFormat(BaseModel):
    """Layout of the delimited files read by the file provider.

    Column indices are 0-based. Use ``from_external`` to convert the 1-based
    column numbers a user types in.

    An equal price and volume index is accepted at construction time and
    rejected by ``ensure_valid``, which every consumer calls before I/O.
    """

    model_config = ConfigDict(frozen=True)

    separator: str = ","
    price_index: int = Field(default=4, ge=0)
    volume_index: int = Field(default=5, ge=0)
    has_header: bool = False
    timestamp_index: int | None = Field(default=None, ge=0)
    timestamp_format: str | None = None

    @field_validator("separator")
    @classmethod
    def separator_allowed(cls, v: str) -> str:
        if v not in ALLOWED_SEPARATORS:
            raise ValueError(f"separator must be one of {ALLOWED_SEPARATORS!r}, got {v!r}")
        return v

    @classmethod
    def from_external(
        cls,
        separator: str,
        price_column: int,
        volume_column: int,
        has_header: bool = False,
        timestamp_column: int | None = None,
        timestamp_format: str | None = None,
    ) -> CsvFormat:
        """Build a format from 1-based column numbers."""
        for name, column in (
            ("price_column", price_column),
            ("volume_column", volume_column),
            ("timestamp_column", timestamp_column),
        ):
            if column is not None and column < 1:
                raise ConfigurationInvalid(
                    f"{name} is 1-based and must be >= 1, got {column}",
                    context={"field": name, "value": column},
                )
        return cls(
            separator=separator,
            price_index=price_column - 1,
            volume_index=volume_column - 1,
            has_header=has_header,
            timestamp_index=timestamp_column - 1 if timestamp_column is not None else None,
            timestamp_format=timestamp_format,
        )

    def ensure_valid(self) -> None:
        """Raise ConfigurationInvalid if the column mapping is ambiguous."""
        if self.price_index == self.volume_index:
            raise ConfigurationInvalid(
                "Price and volume columns must differ",
                context={"field": "volume_index", "value": self.volume_index},
            )
        if self.timestamp_index is not None and self.timestamp_index in (
            self.price_index,
            self.volume_index,
        ):
            raise ConfigurationInvalid(
                "Timestamp column must differ from price and volume columns",
                context={"field": "timestamp_index", "value": self.timestamp_index},
            )

    @property
    def min_columns(self) -> int:
        indices = [self.price_index, self.volume_index]
        if self.timestamp_index is not None:
            indices.append(self.timestamp_index)
        return max(indices) + 1


class PairConfig(BaseModel):
    """Transform selection for pair synthesis.

    ``beta`` is only read by the *WithBeta transforms. When it is None the
    regression slope of the aligned series is used instead.
    """

    model_config = ConfigDict(frozen=True)

    transform: TransformKind = TransformKind.RATIO
    beta: float | None = None

    @field_validator("beta")
    @classmethod
    def beta_finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError(f"beta must be a finite number, got {v}")
        return v


class SessionWindow(BaseModel):
    """Time-of-day window during which refresh fires are allowed.

    ``stop`` earlier than ``start`` means the window wraps midnight.
    """

    model_config = ConfigDict(frozen=True)

    start: time
    stop: time

    def contains(self, moment: time) -> bool:
        if self.start <= self.stop:
            return self.start <= moment <= self.stop
        return moment >= self.start or moment <= self.stop


class ScheduleConfig(BaseModel):
    """Intervals for the refresh and persist lines, in scheduler time units."""

    model_config = ConfigDict(frozen=True)

    refresh_interval: int = Field(default=60, ge=1)
    persist_interval: int = Field(default=300, ge=1)
    session: SessionWindow | None = None


# --- Result Models ---


class SynthesisResult(BaseModel):
    """Output of one synthesis call.

    ``skipped`` counts aligned points omitted because the active formula had
    no finite value for them (zero divisor, non-positive log operand).
    """

    model_config = ConfigDict(frozen=True)

    series: SeriesStore
    transform: TransformKind
    r_value: float
    beta: float | None = None
    aligned: int = 0
    skipped: int = 0

    @property
    def branch(self) -> str:
        return "linear" if self.r_value >= 0 else "log"


class ImportNotice(BaseModel):
    """Terminal notification emitted at the end of every import run."""

    model_config = ConfigDict(frozen=True)

    status: ImportStatus
    message: str
    total: int = 0
    processed: int = 0
    inserted: int = 0
    appended: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ImportStatus.COMPLETED
