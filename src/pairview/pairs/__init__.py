"""Pair synthesis and in-memory pair state."""

from pairview.pairs.container import PairsContainer
from pairview.pairs.synthesizer import PairSynthesizer, align, combine, regression_statistic

__all__ = [
    "PairSynthesizer",
    "PairsContainer",
    "align",
    "combine",
    "regression_statistic",
]
