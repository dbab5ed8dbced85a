"""Pair synthesis: combine two instrument series into one derived series.

The two legs are aligned on timestamp (inner join). Duplicate timestamps
inside one leg are matched by occurrence order, so series whose samples
share a synthesized ingestion time line up positionally.

One regression of leg B's price on leg A's price is run per call. Its
correlation coefficient ``r`` picks the branch for every point:

    transform        r >= 0 (linear)      r < 0 (log)
    Ratio            y / x                ln(y) * ln(x)
    RatioWithBeta    y / (beta * x)       ln(y) * ln(beta * x)
    Spread           y - x                y + x
    SpreadWithBeta   y - beta * x         y + beta * x

Points where the active formula has no finite value (zero divisor,
non-positive log operand) are dropped and counted, never raised.
"""

from __future__ import annotations

import logging
import math

import numpy as np
import pandas as pd
from scipy import stats

from pairview.core.models import (
    PairConfig,
    Sample,
    SeriesStore,
    SynthesisResult,
    TransformKind,
)

logger = logging.getLogger(__name__)


def align(series_a: SeriesStore, series_b: SeriesStore) -> pd.DataFrame:
    """Inner-join two series on (timestamp, occurrence).

    Returns a frame with columns ``pos_a``, ``pos_b`` (indices into each
    leg's samples), ``x``, ``y`` (leg prices), ordered by timestamp.
    """
    columns = ["pos_a", "pos_b", "x", "y"]
    if not series_a.samples or not series_b.samples:
        return pd.DataFrame(columns=columns)

    left = _frame(series_a)
    right = _frame(series_b)
    merged = left.merge(
        right,
        on=["timestamp", "occurrence"],
        how="inner",
        suffixes=("_a", "_b"),
    )
    merged = merged.sort_values(["timestamp", "occurrence"], kind="stable")
    return merged.rename(columns={"price_a": "x", "price_b": "y"})[columns].reset_index(drop=True)


def _frame(series: SeriesStore) -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "timestamp": [s.timestamp for s in series.samples],
            "price": [s.price for s in series.samples],
            "pos": range(len(series.samples)),
        }
    )
    df["occurrence"] = df.groupby("timestamp").cumcount()
    return df


def regression_statistic(x: np.ndarray, y: np.ndarray) -> tuple[float, float | None]:
    """Return (r, slope) of the OLS fit of y on x.

    Fewer than two points or a constant x leg gives r = 0.0 and no slope.
    """
    if len(x) < 2 or np.ptp(x) == 0:
        return 0.0, None
    fit = stats.linregress(x, y)
    r = float(fit.rvalue)
    slope = float(fit.slope)
    if not math.isfinite(r):
        r = 0.0
    return r, slope if math.isfinite(slope) else None


def combine(
    transform: TransformKind,
    x: np.ndarray,
    y: np.ndarray,
    r_value: float,
    beta: float = 1.0,
) -> np.ndarray:
    """Apply the branch formula pointwise. Undefined points come back non-finite."""
    linear = r_value >= 0
    with np.errstate(divide="ignore", invalid="ignore"):
        if transform == TransformKind.RATIO:
            return y / x if linear else np.log(y) * np.log(x)
        if transform == TransformKind.RATIO_WITH_BETA:
            bx = beta * x
            return y / bx if linear else np.log(y) * np.log(bx)
        if transform == TransformKind.SPREAD:
            return y - x if linear else y + x
        if transform == TransformKind.SPREAD_WITH_BETA:
            return y - beta * x if linear else y + beta * x
    raise ValueError(f"Unknown transform: {transform}")


class PairSynthesizer:
    """Builds the synthetic series for a pair of instruments.

    Stateless and deterministic: identical inputs give identical results.

    Usage:
        synth = PairSynthesizer()
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.SPREAD))
        result.series, result.skipped, result.r_value
    """

    def synthesize(
        self,
        series_a: SeriesStore,
        series_b: SeriesStore,
        config: PairConfig,
    ) -> SynthesisResult:
        aligned = align(series_a, series_b)
        x = aligned["x"].to_numpy(dtype=float)
        y = aligned["y"].to_numpy(dtype=float)

        r_value, slope = regression_statistic(x, y)

        beta: float | None = None
        if config.transform.uses_beta:
            beta = config.beta if config.beta is not None else (slope if slope is not None else 1.0)

        values = combine(config.transform, x, y, r_value, beta if beta is not None else 1.0)
        valid = np.isfinite(values)

        samples = []
        for pos_a, value in zip(aligned["pos_a"][valid], values[valid]):
            leg = series_a.samples[int(pos_a)]
            samples.append(Sample(timestamp=leg.timestamp, price=float(value), volume=leg.volume))

        skipped = int((~valid).sum())
        if skipped:
            logger.warning(
                "%s/%s %s: omitted %d of %d aligned points (r=%.4f)",
                series_a.code,
                series_b.code,
                config.transform,
                skipped,
                len(aligned),
                r_value,
            )

        return SynthesisResult(
            series=SeriesStore(code=f"{series_a.code}/{series_b.code}", samples=tuple(samples)),
            transform=config.transform,
            r_value=r_value,
            beta=beta,
            aligned=len(aligned),
            skipped=skipped,
        )
