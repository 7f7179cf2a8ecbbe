"""Time-to-settlement phases shared by the decision gate and strategy.

A 15-minute market is split into urgency bands by remaining seconds:

    | Phase     | Remaining    | Edge threshold |
    |-----------|--------------|----------------|
    | EARLY     | > 600 s      | 0.020          |
    | MID       | > 180 s      | 0.015          |
    | LATE      | > 30 s       | 0.010          |
    | ULTRALATE | <= 30 s      | 0.010          |

The same table drives scalp entries in the strategy engine and the
entry floor of the coarse recommendation, so both layers agree on
urgency.
"""

from __future__ import annotations

from updown_bot.models import Phase

# Ordered (lower bound in seconds, phase); first bound exceeded wins.
PHASE_BANDS: tuple[tuple[float, Phase], ...] = (
    (600.0, Phase.EARLY),
    (180.0, Phase.MID),
    (30.0, Phase.LATE),
)

EDGE_THRESHOLDS: dict[Phase, float] = {
    Phase.EARLY: 0.02,
    Phase.MID: 0.015,
    Phase.LATE: 0.01,
    Phase.ULTRALATE: 0.01,
}


def phase_from_seconds(t_sec: float) -> Phase:
    for lower, phase in PHASE_BANDS:
        if t_sec > lower:
            return phase
    return Phase.ULTRALATE


def edge_threshold(phase: Phase) -> float:
    """Minimum edge for a scalp entry (or ENTER recommendation) in *phase*."""
    return EDGE_THRESHOLDS.get(phase, EDGE_THRESHOLDS[Phase.ULTRALATE])
