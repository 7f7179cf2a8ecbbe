"""Tests for probability blending, edge and market projection."""

from __future__ import annotations

import pytest

from updown_bot.edge_detector import (
    BlendMode,
    Edge,
    blend_probabilities,
    compute_edge,
    project_market_future,
    to_probability,
)


class TestBlendProbabilities:
    def test_blend(self) -> None:
        est = blend_probabilities(0.6, 0.4, 0.7)
        assert est is not None
        assert est.mode is BlendMode.BLEND
        assert est.p_up == pytest.approx(0.54)
        assert est.p_down == pytest.approx(0.46)

    def test_quant_only(self) -> None:
        est = blend_probabilities(0.62, None)
        assert est is not None
        assert est.mode is BlendMode.QUANT_ONLY
        assert est.p_up == pytest.approx(0.62)

    def test_heuristic_only(self) -> None:
        est = blend_probabilities(None, 0.3)
        assert est is not None
        assert est.mode is BlendMode.HEUR_ONLY
        assert est.p_up == pytest.approx(0.3)

    def test_neither(self) -> None:
        assert blend_probabilities(None, float("nan")) is None

    def test_weight_clamped(self) -> None:
        est = blend_probabilities(0.8, 0.2, 1.5)
        assert est is not None
        assert est.p_up == pytest.approx(0.8)
        est = blend_probabilities(0.8, 0.2, -3)
        assert est is not None
        assert est.p_up == pytest.approx(0.2)

    def test_output_clamped_in_every_mode(self) -> None:
        for est in (
            blend_probabilities(1.0, None),
            blend_probabilities(None, 0.0),
            blend_probabilities(1.0, 1.0),
        ):
            assert est is not None
            assert 0.001 <= est.p_up <= 0.999
            assert est.p_up + est.p_down == pytest.approx(1.0)


class TestToProbability:
    def test_units(self) -> None:
        assert to_probability(0.55) == pytest.approx(0.55)
        assert to_probability(55) == pytest.approx(0.55)
        assert to_probability("0.4") == pytest.approx(0.4)

    def test_bounds(self) -> None:
        assert to_probability(150) == 1.0
        assert to_probability(-0.1) is None
        assert to_probability(None) is None


class TestComputeEdge:
    def test_both_sides(self) -> None:
        edge = compute_edge(0.6, 0.4, 0.55, 0.47)
        assert edge.edge_up == pytest.approx(0.05)
        assert edge.edge_down == pytest.approx(-0.07)

    def test_cents_quotes(self) -> None:
        edge = compute_edge(0.6, 0.4, 55, 47)
        assert edge.edge_up == pytest.approx(0.05)

    def test_missing_side(self) -> None:
        edge = compute_edge(0.6, 0.4, None, 0.45)
        assert edge.edge_up is None
        assert edge.edge_down == pytest.approx(-0.05)

    def test_missing_model(self) -> None:
        assert compute_edge(None, None, 0.5, 0.5) == Edge()


class TestProjectMarketFuture:
    def test_flat_market_holds(self) -> None:
        proj = project_market_future(0.5, 0.5, 100.0, 100.0, 100.0, 1e-4, 300)
        assert proj.ok is True
        assert proj.future_up_prob == pytest.approx(0.5, abs=1e-6)
        assert proj.strategy == "HOLD"

    def test_reference_above_strike_buys_up(self) -> None:
        proj = project_market_future(0.5, 0.5, 101.0, 101.0, 100.0, 1e-4, 300)
        assert proj.ok is True
        assert proj.future_up_prob == pytest.approx(0.7 * 0.999 + 0.3 * 0.5)
        assert proj.edge_vs_market_cents == pytest.approx(proj.future_up_cents - 50.0)
        assert proj.strategy == "BUY_UP_FAST"

    def test_reference_below_strike_buys_down(self) -> None:
        proj = project_market_future(0.6, 0.4, 99.0, 99.0, 100.0, 1e-4, 300)
        assert proj.strategy == "BUY_DOWN_FAST"

    def test_basis_impact_is_capped(self) -> None:
        capped = project_market_future(0.5, 0.5, 100.0, 200.0, 101.0, 1e-3, 300)
        at_cap = project_market_future(0.5, 0.5, 101.0, 101.0, 101.0, 1e-3, 300)
        # +100% basis is capped at +1%, i.e. spot 101.
        assert capped.future_up_prob == pytest.approx(at_cap.future_up_prob)

    def test_market_up_from_down_price(self) -> None:
        proj = project_market_future(None, 0.3, 100.0, None, 100.0, 1e-4, 300)
        assert proj.market_up_prob == pytest.approx(0.7)

    def test_without_market_uses_model(self) -> None:
        proj = project_market_future(None, None, 100.0, 100.0, 100.0, 1e-4, 300)
        assert proj.ok is True
        assert proj.edge_vs_market_cents is None
        assert proj.strategy == "HOLD"
        assert proj.future_up_prob == pytest.approx(0.5, abs=1e-6)

    def test_invalid_inputs(self) -> None:
        with_market = project_market_future(0.5, 0.5, None, 100.0, 100.0, 1e-4, 300)
        without_market = project_market_future(None, None, 100.0, 100.0, None, 1e-4, 300)
        assert with_market.ok is False and with_market.strategy == "HOLD"
        assert without_market.ok is False and without_market.strategy == "N/A"
