"""Edge detection: compare model probabilities against market prices.

Blends the quant probability with an optional heuristic probability,
then measures per-side edge against the market's quoted buy prices.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from updown_bot.price_model import PriceModel, clamp_probability, finite_or_none


DEFAULT_MODEL_WEIGHT = 0.7


class BlendMode(str, Enum):
    QUANT_ONLY = "quant_only"
    HEUR_ONLY = "heur_only"
    BLEND = "blend"


@dataclass(frozen=True)
class ProbabilityEstimate:
    """Blended directional probability with provenance."""

    p_up: float
    p_down: float
    mode: BlendMode


@dataclass(frozen=True)
class Edge:
    """Model probability minus market-implied probability, per side."""

    edge_up: float | None = None
    edge_down: float | None = None


def to_probability(price: object) -> float | None:
    """Convert a quoted price to probability units.

    Quotes above 1 are taken as cents.
    """
    numeric = finite_or_none(price)
    if numeric is None:
        return None
    if numeric > 1:
        numeric /= 100.0
    if numeric < 0:
        return None
    return min(1.0, numeric)


def blend_probabilities(
    quant_up: object,
    heuristic_up: object,
    weight: object = DEFAULT_MODEL_WEIGHT,
) -> Optional[ProbabilityEstimate]:
    """Blend quant and heuristic up-probabilities.

    Parameters
    ----------
    quant_up: log-normal model P(up), or None
    heuristic_up: independently scored P(up), or None
    weight: weight on the quant probability, clamped into [0, 1]
    """
    pq = finite_or_none(quant_up)
    ph = finite_or_none(heuristic_up)
    w = finite_or_none(weight)
    w = max(0.0, min(1.0, DEFAULT_MODEL_WEIGHT if w is None else w))

    if pq is None and ph is None:
        return None
    if pq is None:
        p_up, mode = ph, BlendMode.HEUR_ONLY
    elif ph is None:
        p_up, mode = pq, BlendMode.QUANT_ONLY
    else:
        p_up, mode = w * pq + (1.0 - w) * ph, BlendMode.BLEND

    p_up = clamp_probability(p_up)  # type: ignore[arg-type]
    return ProbabilityEstimate(p_up=p_up, p_down=1.0 - p_up, mode=mode)


def compute_edge(
    model_up: object,
    model_down: object,
    market_up: object,
    market_down: object,
) -> Edge:
    """Per-side edge; a side is None when either of its inputs is missing."""
    m_up = finite_or_none(model_up)
    m_down = finite_or_none(model_down)
    k_up = to_probability(market_up)
    k_down = to_probability(market_down)
    return Edge(
        edge_up=None if m_up is None or k_up is None else m_up - k_up,
        edge_down=None if m_down is None or k_down is None else m_down - k_down,
    )


# ── Market future projection ──────────────────────────────────────

_BASIS_IMPACT = 0.35
_BASIS_CAP = 0.01
_FAST_EDGE_CENTS = 2.5


@dataclass(frozen=True)
class MarketProjection:
    """Where the up price should trade given the model and the basis."""

    ok: bool
    market_up_prob: float | None
    future_up_prob: float | None
    future_up_cents: float | None
    edge_vs_market_cents: float | None
    strategy: str


def project_market_future(
    market_up: object,
    market_down: object,
    reference_price: object,
    secondary_price: object,
    strike: object,
    sigma: object,
    t_sec: object,
    model_weight: float = DEFAULT_MODEL_WEIGHT,
) -> MarketProjection:
    """Project the fair up price from the reference/secondary basis.

    The secondary (spot exchange) price usually leads the reference feed,
    so the reference is nudged by a capped share of the basis before
    pricing.  The result is blended with the market's own up probability.
    """
    up = to_probability(market_up)
    down = to_probability(market_down)
    if up is not None:
        market_up_prob: float | None = up
    elif down is not None:
        market_up_prob = 1.0 - down
    else:
        market_up_prob = None
    fallback = "HOLD" if market_up_prob is not None else "N/A"

    s = finite_or_none(reference_price)
    b = finite_or_none(secondary_price)
    t = finite_or_none(t_sec)
    invalid = MarketProjection(
        ok=False,
        market_up_prob=market_up_prob,
        future_up_prob=None,
        future_up_cents=None,
        edge_vs_market_cents=None,
        strategy=fallback,
    )
    if s is None or s <= 0 or t is None or t <= 0:
        return invalid

    basis = (b - s) / s if b is not None else 0.0
    impact = max(-_BASIS_CAP, min(_BASIS_CAP, basis * _BASIS_IMPACT))
    quant = PriceModel.probability_up(s * (1.0 + impact), strike, max(1.0, t), sigma)
    if quant is None:
        return invalid

    if market_up_prob is None:
        future = quant.p_up
    else:
        future = model_weight * quant.p_up + (1.0 - model_weight) * market_up_prob
    future = clamp_probability(future)
    future_cents = future * 100.0
    edge_cents = None if market_up_prob is None else future_cents - market_up_prob * 100.0

    strategy = "HOLD"
    if edge_cents is not None:
        if edge_cents >= _FAST_EDGE_CENTS:
            strategy = "BUY_UP_FAST"
        elif edge_cents <= -_FAST_EDGE_CENTS:
            strategy = "BUY_DOWN_FAST"

    return MarketProjection(
        ok=True,
        market_up_prob=market_up_prob,
        future_up_prob=future,
        future_up_cents=future_cents,
        edge_vs_market_cents=edge_cents,
        strategy=strategy,
    )
