"""Tests for pairview.pairs.synthesizer."""

import math
from datetime import datetime, timedelta

import numpy as np
import pytest

from pairview.core.models import PairConfig, SeriesStore, TransformKind
from pairview.pairs.synthesizer import PairSynthesizer, align, combine, regression_statistic

T0 = datetime(2024, 1, 15, 9, 30)


@pytest.fixture
def synth():
    return PairSynthesizer()


@pytest.fixture
def rising(make_series):
    return make_series("AAA", [1.0, 2.0, 3.0]), make_series("BBB", [2.0, 4.0, 6.0])


@pytest.fixture
def falling(make_series):
    return make_series("AAA", [1.0, 2.0, 3.0]), make_series("BBB", [6.0, 4.0, 2.0])


class TestAlign:
    def test_inner_join_on_timestamp(self, make_series):
        a = make_series("AAA", [1.0, 2.0, 3.0])
        b = make_series("BBB", [5.0, 6.0, 7.0], start=T0 + timedelta(minutes=1))
        frame = align(a, b)
        assert list(frame["x"]) == [2.0, 3.0]
        assert list(frame["y"]) == [5.0, 6.0]
        assert list(frame["pos_a"]) == [1, 2]
        assert list(frame["pos_b"]) == [0, 1]

    def test_duplicate_timestamps_matched_by_occurrence(self, make_series):
        a = make_series("AAA", [1.0, 2.0, 3.0]).restamped(T0)
        b = make_series("BBB", [10.0, 20.0]).restamped(T0)
        frame = align(a, b)
        assert list(frame["x"]) == [1.0, 2.0]
        assert list(frame["y"]) == [10.0, 20.0]

    def test_empty_leg(self, make_series):
        frame = align(SeriesStore(code="AAA"), make_series("BBB", [1.0]))
        assert len(frame) == 0
        assert list(frame.columns) == ["pos_a", "pos_b", "x", "y"]

    def test_disjoint_timestamps(self, make_series):
        a = make_series("AAA", [1.0])
        b = make_series("BBB", [1.0], start=T0 + timedelta(days=1))
        assert len(align(a, b)) == 0


class TestRegressionStatistic:
    def test_perfect_positive(self):
        r, slope = regression_statistic(np.array([1.0, 2.0, 3.0]), np.array([2.0, 4.0, 6.0]))
        assert r == pytest.approx(1.0)
        assert slope == pytest.approx(2.0)

    def test_perfect_negative(self):
        r, slope = regression_statistic(np.array([1.0, 2.0, 3.0]), np.array([6.0, 4.0, 2.0]))
        assert r == pytest.approx(-1.0)
        assert slope == pytest.approx(-2.0)

    def test_single_point(self):
        assert regression_statistic(np.array([1.0]), np.array([2.0])) == (0.0, None)

    def test_constant_x(self):
        assert regression_statistic(np.array([2.0, 2.0, 2.0]), np.array([1.0, 2.0, 3.0])) == (
            0.0,
            None,
        )

    def test_constant_y_is_zero_r(self):
        r, slope = regression_statistic(np.array([1.0, 2.0, 3.0]), np.array([5.0, 5.0, 5.0]))
        assert r == 0.0
        assert slope == pytest.approx(0.0)


class TestCombine:
    x = np.array([1.0, 2.0, 4.0])
    y = np.array([2.0, 3.0, 8.0])

    @pytest.mark.parametrize(
        "transform, expected",
        [
            (TransformKind.RATIO, [2.0, 1.5, 2.0]),
            (TransformKind.RATIO_WITH_BETA, [1.0, 0.75, 1.0]),
            (TransformKind.SPREAD, [1.0, 1.0, 4.0]),
            (TransformKind.SPREAD_WITH_BETA, [0.0, -1.0, 0.0]),
        ],
    )
    def test_linear_branch(self, transform, expected):
        result = combine(transform, self.x, self.y, r_value=0.5, beta=2.0)
        np.testing.assert_allclose(result, expected)

    @pytest.mark.parametrize(
        "transform, expected",
        [
            (
                TransformKind.RATIO,
                [math.log(2.0) * math.log(1.0), math.log(3.0) * math.log(2.0), math.log(8.0) * math.log(4.0)],
            ),
            (
                TransformKind.RATIO_WITH_BETA,
                [math.log(2.0) * math.log(2.0), math.log(3.0) * math.log(4.0), math.log(8.0) * math.log(8.0)],
            ),
            (TransformKind.SPREAD, [3.0, 5.0, 12.0]),
            (TransformKind.SPREAD_WITH_BETA, [4.0, 7.0, 16.0]),
        ],
    )
    def test_log_branch(self, transform, expected):
        result = combine(transform, self.x, self.y, r_value=-0.5, beta=2.0)
        np.testing.assert_allclose(result, expected)

    def test_zero_r_is_linear(self):
        result = combine(TransformKind.SPREAD, self.x, self.y, r_value=0.0)
        np.testing.assert_allclose(result, [1.0, 1.0, 4.0])

    def test_undefined_points_are_non_finite(self):
        result = combine(TransformKind.RATIO, np.array([0.0, 1.0]), np.array([1.0, 1.0]), r_value=1.0)
        assert not np.isfinite(result[0])
        assert result[1] == 1.0


class TestPairSynthesizer:
    def test_ratio_linear(self, synth, rising):
        a, b = rising
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.RATIO))
        assert result.branch == "linear"
        assert result.series.prices == pytest.approx([2.0, 2.0, 2.0])
        assert result.skipped == 0
        assert result.aligned == 3

    def test_ratio_log_branch(self, synth, falling):
        a, b = falling
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.RATIO))
        assert result.r_value == pytest.approx(-1.0)
        assert result.series.prices == pytest.approx(
            [
                math.log(6.0) * math.log(1.0),
                math.log(4.0) * math.log(2.0),
                math.log(2.0) * math.log(3.0),
            ]
        )

    def test_spread_switches_to_sum_when_anticorrelated(self, synth, falling):
        a, b = falling
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.SPREAD))
        assert result.series.prices == pytest.approx([7.0, 6.0, 5.0])

    def test_explicit_beta(self, synth, rising):
        a, b = rising
        result = synth.synthesize(
            a, b, PairConfig(transform=TransformKind.SPREAD_WITH_BETA, beta=0.5)
        )
        assert result.beta == 0.5
        assert result.series.prices == pytest.approx([1.5, 3.0, 4.5])

    def test_beta_defaults_to_regression_slope(self, synth, rising):
        a, b = rising
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.RATIO_WITH_BETA))
        assert result.beta == pytest.approx(2.0)
        assert result.series.prices == pytest.approx([1.0, 1.0, 1.0])

    def test_beta_falls_back_to_one_without_slope(self, synth, make_series):
        a = make_series("AAA", [2.0, 2.0])
        b = make_series("BBB", [1.0, 3.0])
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.SPREAD_WITH_BETA))
        assert result.r_value == 0.0
        assert result.beta == 1.0
        assert result.series.prices == pytest.approx([-1.0, 1.0])

    def test_beta_ignored_for_plain_transforms(self, synth, rising):
        a, b = rising
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.SPREAD, beta=3.0))
        assert result.beta is None
        assert result.series.prices == pytest.approx([1.0, 2.0, 3.0])

    def test_zero_divisor_point_skipped(self, synth, make_series):
        a = make_series("AAA", [0.0, 1.0, 2.0])
        b = make_series("BBB", [1.0, 2.0, 3.0])
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.RATIO))
        assert result.skipped == 1
        assert len(result.series) == 2
        assert result.series.samples[0].timestamp == a.samples[1].timestamp

    def test_non_positive_log_operand_skipped(self, synth, make_series):
        a = make_series("AAA", [1.0, 2.0, 3.0])
        b = make_series("BBB", [3.0, 2.0, -1.0])
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.RATIO))
        assert result.branch == "log"
        assert result.skipped == 1
        assert len(result.series) == 2
        assert all(math.isfinite(p) for p in result.series.prices)

    def test_output_carries_leg_a_time_and_volume(self, synth, make_series):
        a = make_series("AAA", [1.0, 2.0], volumes=[11.0, 22.0])
        b = make_series("BBB", [3.0, 5.0], volumes=[99.0, 99.0])
        result = synth.synthesize(a, b, PairConfig(transform=TransformKind.SPREAD))
        assert result.series.code == "AAA/BBB"
        assert [s.volume for s in result.series.samples] == [11.0, 22.0]
        assert [s.timestamp for s in result.series.samples] == [s.timestamp for s in a.samples]

    def test_empty_inputs(self, synth):
        result = synth.synthesize(
            SeriesStore(code="AAA"), SeriesStore(code="BBB"), PairConfig()
        )
        assert len(result.series) == 0
        assert result.r_value == 0.0
        assert result.aligned == 0

    def test_deterministic(self, synth, falling):
        a, b = falling
        config = PairConfig(transform=TransformKind.RATIO_WITH_BETA)
        assert synth.synthesize(a, b, config) == synth.synthesize(a, b, config)
