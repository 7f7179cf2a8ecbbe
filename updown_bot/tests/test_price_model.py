"""Tests for the log-normal price model."""

from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.special import ndtr
from scipy.stats import norm

from updown_bot.price_model import (
    PROB_CEILING,
    PROB_FLOOR,
    PriceModel,
    VolatilityEstimate,
    finite_or_none,
    normal_cdf,
)


class TestFiniteOrNone:
    def test_numbers_and_numeric_strings(self) -> None:
        assert finite_or_none(1) == 1.0
        assert finite_or_none("97000.5") == 97000.5

    def test_rejects_missing_and_non_finite(self) -> None:
        assert finite_or_none(None) is None
        assert finite_or_none(float("nan")) is None
        assert finite_or_none(float("inf")) is None
        assert finite_or_none("abc") is None
        assert finite_or_none(True) is None


class TestNormalCdf:
    def test_matches_reference_cdf(self) -> None:
        for x in np.linspace(-6.0, 6.0, 121):
            assert normal_cdf(float(x)) == pytest.approx(float(ndtr(x)), abs=2e-7)

    def test_symmetry(self) -> None:
        assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-8)
        assert normal_cdf(1.3) + normal_cdf(-1.3) == pytest.approx(1.0, abs=1e-9)


class TestEstimateVolatility:
    def test_too_few_prices(self) -> None:
        model = PriceModel(min_samples=2)
        assert model.estimate_volatility([]).valid is False
        assert model.estimate_volatility([100.0, 101.0]).valid is False

    def test_known_series(self) -> None:
        closes = [100.0, 101.0, 100.5, 102.0, 101.0, 101.5]
        model = PriceModel(lookback=120, min_samples=2)
        est = model.estimate_volatility(closes)

        returns = np.diff(np.log(closes))
        expected = math.sqrt(float(np.var(returns, ddof=1)) / 60.0)
        assert est.valid is True
        assert est.sample_count == 5
        assert est.sigma == pytest.approx(expected, rel=1e-12)

    def test_constant_prices_invalid(self) -> None:
        model = PriceModel(min_samples=2)
        est = model.estimate_volatility([100.0] * 50)
        assert est.valid is False
        assert est.sigma is None

    def test_min_samples_enforced(self) -> None:
        model = PriceModel(min_samples=30)
        closes = [100.0 + (i % 2) for i in range(20)]
        est = model.estimate_volatility(closes)
        assert est.valid is False
        assert est.sample_count == 19

    def test_min_samples_floor_of_two(self) -> None:
        model = PriceModel(min_samples=0)
        # Zero falls back to the default of 30 rather than accepting 1 return.
        est = model.estimate_volatility([100.0, 101.0, 100.0])
        assert est.valid is False

    def test_only_trailing_window_used(self) -> None:
        quiet = [100.0 + 0.01 * (i % 2) for i in range(10)]
        closes = [1.0, 500.0] + quiet
        model = PriceModel(lookback=10, min_samples=2)
        windowed = model.estimate_volatility(closes)
        reference = model.estimate_volatility(quiet)
        assert windowed.sigma == pytest.approx(reference.sigma)

    def test_non_positive_pairs_skipped(self) -> None:
        model = PriceModel(min_samples=2)
        est = model.estimate_volatility([100.0, 0.0, 101.0, 100.0, 101.0])
        # (100,0) and (0,101) are dropped, leaving two returns.
        assert est.valid is True
        assert est.sample_count == 2

    def test_non_finite_prices_filtered(self) -> None:
        model = PriceModel(min_samples=2)
        est = model.estimate_volatility([100.0, float("nan"), 101.0, None, 100.0, 101.0])
        assert est.valid is True
        assert est.sample_count == 3

    def test_invalid_factory(self) -> None:
        est = VolatilityEstimate.invalid(4)
        assert est == VolatilityEstimate(sigma=None, sample_count=4, valid=False)


class TestProbabilityUp:
    def test_at_the_money_is_half(self) -> None:
        prob = PriceModel.probability_up(100.0, 100.0, 300, 1e-4)
        assert prob is not None
        assert prob.p_up == pytest.approx(0.5, abs=1e-6)
        assert prob.z == 0.0

    def test_matches_closed_form(self) -> None:
        spot, strike, t, sigma = 97100.0, 97000.0, 420, 1.2e-4
        prob = PriceModel.probability_up(spot, strike, t, sigma)
        z = math.log(strike / spot) / (sigma * math.sqrt(t))
        assert prob is not None
        assert prob.z == pytest.approx(z)
        assert prob.p_up == pytest.approx(float(norm.sf(z)), abs=1e-6)

    def test_above_strike_favours_up(self) -> None:
        prob = PriceModel.probability_up(101.0, 100.0, 600, 1e-4)
        assert prob is not None
        assert prob.p_up > 0.5 > prob.p_down

    def test_complementary(self) -> None:
        prob = PriceModel.probability_up(99.7, 100.0, 120, 2e-4)
        assert prob is not None
        assert prob.p_up + prob.p_down == pytest.approx(1.0)

    @pytest.mark.parametrize("t_sec, sigma", [(60, 1e-4), (600, 1e-4), (300, 5e-4)])
    def test_higher_strike_never_raises_p_up(self, t_sec, sigma) -> None:
        strikes = np.linspace(95.0, 105.0, 41)
        p_ups = [PriceModel.probability_up(100.0, k, t_sec, sigma).p_up for k in strikes]
        assert all(later <= earlier for earlier, later in zip(p_ups, p_ups[1:]))
        assert p_ups[0] > p_ups[-1]

    def test_bounds_over_grid(self) -> None:
        for spot in (50.0, 100.0, 200.0):
            for strike in (50.0, 99.9, 100.0, 200.0):
                for t_sec in (1, 60, 900):
                    for sigma in (1e-6, 1e-4, 1e-2):
                        prob = PriceModel.probability_up(spot, strike, t_sec, sigma)
                        assert prob is not None
                        assert PROB_FLOOR <= prob.p_up <= PROB_CEILING
                        assert prob.p_up + prob.p_down == pytest.approx(1.0, abs=1e-12)

    def test_clamped(self) -> None:
        far_up = PriceModel.probability_up(200.0, 100.0, 10, 1e-4)
        far_down = PriceModel.probability_up(50.0, 100.0, 10, 1e-4)
        assert far_up is not None and far_up.p_up == PROB_CEILING
        assert far_down is not None and far_down.p_up == PROB_FLOOR

    @pytest.mark.parametrize(
        "args",
        [
            (None, 100.0, 60, 1e-4),
            (100.0, None, 60, 1e-4),
            (100.0, 100.0, 0, 1e-4),
            (100.0, 100.0, 60, 0.0),
            (-1.0, 100.0, 60, 1e-4),
            (100.0, float("nan"), 60, 1e-4),
        ],
    )
    def test_invalid_inputs(self, args) -> None:
        assert PriceModel.probability_up(*args) is None
