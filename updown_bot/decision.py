"""Coarse trade recommendation from edge and remaining time."""

from __future__ import annotations

from dataclasses import dataclass, replace

from updown_bot.models import Phase, RecommendationAction, Side, Strength
from updown_bot.phases import edge_threshold, phase_from_seconds
from updown_bot.price_model import finite_or_none

# Edge magnitude (probability units) at which strength steps up.
STRENGTH_BANDS: tuple[tuple[float, Strength], ...] = (
    (0.05, Strength.HIGH),
    (0.03, Strength.MED),
)


@dataclass(frozen=True)
class Recommendation:
    action: RecommendationAction
    side: Side | None
    phase: Phase
    strength: Strength

    def label(self) -> str:
        if self.action is RecommendationAction.ENTER and self.side is not None:
            return f"{self.side.value}:{self.phase.value}:{self.strength.value}"
        return RecommendationAction.NO_TRADE.value


def _strength(edge: float) -> Strength:
    for lower, strength in STRENGTH_BANDS:
        if edge >= lower:
            return strength
    return Strength.LOW


def decide(
    remaining_minutes: object,
    edge_up: object,
    edge_down: object,
    model_up: object = None,
    model_down: object = None,
) -> Recommendation:
    """ENTER toward the higher-edge side once it clears the phase floor.

    The chosen side also needs a positive edge: two negative edges whose
    magnitude clears the floor still give NO_TRADE.

    ``model_up``/``model_down`` are accepted for parity with the strategy
    snapshot; the gate itself only looks at edges.
    """
    minutes = finite_or_none(remaining_minutes)
    if minutes is None or minutes <= 0:
        return Recommendation(RecommendationAction.NO_TRADE, None, Phase.CLOSED, Strength.LOW)

    phase = phase_from_seconds(minutes * 60.0)
    no_trade = Recommendation(RecommendationAction.NO_TRADE, None, phase, Strength.LOW)

    up = finite_or_none(edge_up)
    down = finite_or_none(edge_down)
    if up is None and down is None:
        return no_trade

    magnitude = max(abs(up) if up is not None else 0.0, abs(down) if down is not None else 0.0)
    if down is None or (up is not None and up >= down):
        side, best = Side.UP, up
    else:
        side, best = Side.DOWN, down

    if best is None or best <= 0 or magnitude <= edge_threshold(phase):
        return no_trade
    return Recommendation(RecommendationAction.ENTER, side, phase, _strength(best))


def apply_quant_safety(
    rec: Recommendation,
    *,
    enabled: bool,
    strike: object,
    reference_price: object,
    sigma: object,
    quant_up: object,
) -> Recommendation:
    """Force NO_TRADE when any quant input is unavailable."""
    if not enabled:
        return rec
    required = (strike, reference_price, sigma, quant_up)
    if all(finite_or_none(v) is not None for v in required):
        return rec
    return replace(
        rec,
        action=RecommendationAction.NO_TRADE,
        side=None,
        phase=Phase.SAFE,
        strength=Strength.LOW,
    )
