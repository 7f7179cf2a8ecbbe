"""Closed-form log-normal model for 15-minute up/down markets.

Estimates a per-second volatility from recent 1-minute closes, then
prices the probability that the settlement reference finishes at or
above the latched strike:

    z    = ln(K / S) / (σ · √T)
    P_up = 1 - Φ(z)

with σ in per-second units and T in seconds.  Probabilities are clamped
to ``[0.001, 0.999]`` so the model never claims certainty.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np


PROB_FLOOR = 0.001
PROB_CEILING = 0.999

# Abramowitz & Stegun 7.1.26, |error| <= 1.5e-7.
_ERF_P = 0.3275911
_ERF_A1 = 0.254829592
_ERF_A2 = -0.284496736
_ERF_A3 = 1.421413741
_ERF_A4 = -1.453152027
_ERF_A5 = 1.061405429


def finite_or_none(value: object) -> float | None:
    """Coerce *value* to a finite float, or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def clamp_probability(
    prob: float,
    floor: float = PROB_FLOOR,
    ceiling: float = PROB_CEILING,
) -> float:
    """Clamp probability to [floor, ceiling]."""
    return max(floor, min(ceiling, prob))


def erf_approx(x: float) -> float:
    sign = -1.0 if x < 0 else 1.0
    ax = abs(x)
    t = 1.0 / (1.0 + _ERF_P * ax)
    poly = ((((_ERF_A5 * t + _ERF_A4) * t + _ERF_A3) * t + _ERF_A2) * t + _ERF_A1) * t
    return sign * (1.0 - poly * math.exp(-ax * ax))


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the closed-form erf approximation."""
    return 0.5 * (1.0 + erf_approx(x / math.sqrt(2.0)))


@dataclass(frozen=True)
class VolatilityEstimate:
    """Per-second volatility of log returns."""

    sigma: float | None
    sample_count: int
    valid: bool

    @classmethod
    def invalid(cls, sample_count: int = 0) -> "VolatilityEstimate":
        return cls(sigma=None, sample_count=sample_count, valid=False)


@dataclass(frozen=True)
class LognormalProbability:
    p_up: float
    p_down: float
    z: float


class PriceModel:
    """Volatility estimator and log-normal up-probability.

    Parameters
    ----------
    lookback:
        Number of trailing close samples used for the volatility window.
    min_samples:
        Minimum number of valid log returns required (floored at 2).
    period_seconds:
        Spacing between close samples (60 for 1-minute klines).
    """

    def __init__(
        self,
        lookback: int = 120,
        min_samples: int = 30,
        period_seconds: int = 60,
    ) -> None:
        self._lookback = lookback
        self._min_samples = min_samples
        self._period_seconds = period_seconds

    # ── Volatility estimation ──────────────────────────────────────

    def estimate_volatility(self, closes: Iterable[object]) -> VolatilityEstimate:
        """Compute per-second σ from the trailing window of *closes*.

        Pairs where either price is non-positive are skipped.  Returns an
        invalid estimate when fewer than ``min_samples`` returns survive
        or the resulting σ is not strictly positive.
        """
        prices = [p for p in (finite_or_none(c) for c in closes) if p is not None]
        if len(prices) < 3:
            return VolatilityEstimate.invalid()

        required = max(2, int(self._min_samples or 30))
        window = prices[-max(3, int(self._lookback)):]

        returns: list[float] = []
        for prev, cur in zip(window, window[1:]):
            if prev <= 0 or cur <= 0:
                continue
            r = math.log(cur / prev)
            if math.isfinite(r):
                returns.append(r)

        if len(returns) < required:
            return VolatilityEstimate.invalid(len(returns))

        arr = np.asarray(returns, dtype=np.float64)
        var_period = float(np.var(arr, ddof=1))
        if not math.isfinite(var_period) or var_period <= 0:
            return VolatilityEstimate.invalid(len(returns))

        sigma = math.sqrt(var_period / self._period_seconds)
        if not math.isfinite(sigma) or sigma <= 0:
            return VolatilityEstimate.invalid(len(returns))
        return VolatilityEstimate(sigma=sigma, sample_count=len(returns), valid=True)

    # ── Probability ────────────────────────────────────────────────

    @staticmethod
    def probability_up(
        spot: object,
        strike: object,
        t_seconds: object,
        sigma: object,
    ) -> Optional[LognormalProbability]:
        """P(settlement >= strike) under driftless log-normal diffusion.

        Returns ``None`` on missing, non-finite or non-positive inputs.
        """
        s = finite_or_none(spot)
        k = finite_or_none(strike)
        t = finite_or_none(t_seconds)
        sig = finite_or_none(sigma)
        if s is None or k is None or t is None or sig is None:
            return None
        if s <= 0 or k <= 0 or t <= 0 or sig <= 0:
            return None

        denom = sig * math.sqrt(t)
        if not math.isfinite(denom) or denom <= 0:
            return None

        z = math.log(k / s) / denom
        p_up = clamp_probability(1.0 - normal_cdf(z))
        return LognormalProbability(p_up=p_up, p_down=1.0 - p_up, z=z)
