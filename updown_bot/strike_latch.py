"""Write-once settlement strike per market slug."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from updown_bot.price_model import finite_or_none

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrikeLatchState:
    slug: str | None = None
    strike: float | None = None
    latched_at: float | None = None


class StrikeLatch:
    """Freezes the first reference price seen after a market opens.

    The latch follows a single active slug.  A new slug discards the
    previous strike; once latched, later reference prices never move it.
    """

    def __init__(self) -> None:
        self._state = StrikeLatchState()

    @property
    def state(self) -> StrikeLatchState:
        return self._state

    def observe(
        self,
        slug: str | None,
        reference_price: object,
        start_time: float | None = None,
        now: float | None = None,
    ) -> float | None:
        """Feed one tick; return the strike for *slug* or ``None``."""
        if not slug:
            return None
        if slug != self._state.slug:
            if self._state.slug is not None:
                LOGGER.info("StrikeLatch: slug changed %s -> %s, reset", self._state.slug, slug)
            self._state = StrikeLatchState(slug=slug)

        if self._state.strike is None:
            price = finite_or_none(reference_price)
            ts = time.time() if now is None else now
            if price is not None and price > 0 and (start_time is None or ts >= start_time):
                self._state = StrikeLatchState(slug=self._state.slug, strike=price, latched_at=ts)
                LOGGER.info("StrikeLatch: %s strike latched at %.4f", self._state.slug, price)

        return self._state.strike
