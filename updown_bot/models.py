from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Side(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class Phase(str, Enum):
    EARLY = "EARLY"
    MID = "MID"
    LATE = "LATE"
    ULTRALATE = "ULTRALATE"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"
    SAFE = "SAFE"


class ActionType(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"


class PositionTag(str, Enum):
    SCALP = "SCALP"
    HOLD = "HOLD"


class RecommendationAction(str, Enum):
    ENTER = "ENTER"
    NO_TRADE = "NO_TRADE"


class Strength(str, Enum):
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"


@dataclass(frozen=True)
class PriceSample:
    """A single observed price with optional provenance."""

    price: float
    timestamp: Optional[float] = None  # unix seconds
    source: str = ""


@dataclass(frozen=True)
class Candle:
    open_time: float  # unix seconds
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class OrderBookSummary:
    best_bid: float | None = None
    best_ask: float | None = None
    spread: float | None = None
    bid_liquidity: float | None = None
    ask_liquidity: float | None = None


@dataclass(frozen=True)
class MarketSnapshot:
    """Active up/down market with live per-side quotes.

    ``up_price``/``down_price`` are buy prices in probability units.
    ``strike_hint`` is whatever strike the venue advertises; the latched
    strike is authoritative.
    """

    slug: str
    question: str
    up_token_id: str
    down_token_id: str
    start_time: float | None = None        # unix seconds
    settlement_time: float | None = None   # unix seconds
    up_price: float | None = None
    down_price: float | None = None
    up_book: OrderBookSummary = OrderBookSummary()
    down_book: OrderBookSummary = OrderBookSummary()
    liquidity: float | None = None
    strike_hint: float | None = None

    @property
    def spread(self) -> float | None:
        """Wider of the two per-side spreads."""
        up, down = self.up_book.spread, self.down_book.spread
        if up is not None and down is not None:
            return max(up, down)
        return up if up is not None else down

    def token_for(self, side: Side) -> str:
        return self.up_token_id if side is Side.UP else self.down_token_id


@dataclass(frozen=True)
class TradeAction:
    type: ActionType
    tag: PositionTag
    side: Side
    size_usd: float
    reason: str

    def describe(self) -> str:
        return f"{self.type.value}_{self.tag.value}_{self.side.value}:{self.reason}"
