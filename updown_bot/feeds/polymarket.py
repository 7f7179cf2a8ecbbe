"""Polymarket market discovery, CLOB quotes and the live reference feed."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from updown_bot.feeds.base import PriceStream
from updown_bot.models import MarketSnapshot, OrderBookSummary, PriceSample
from updown_bot.price_model import finite_or_none

LOGGER = logging.getLogger(__name__)

LIVE_PRICE_TOPIC = "crypto_prices_chainlink"

_STRIKE_KEYS = (
    "priceToBeat",
    "price_to_beat",
    "strikePrice",
    "strike_price",
    "strike",
    "threshold",
    "thresholdPrice",
    "threshold_price",
    "targetPrice",
    "target_price",
    "referencePrice",
    "reference_price",
)
_STRIKE_KEY_PATTERN = re.compile(r"(price|strike|threshold|target|beat)", re.IGNORECASE)
_PRICE_TO_BEAT_PATTERN = re.compile(r"price\s*to\s*beat[^\d$]*\$?\s*([0-9][0-9,]*(?:\.[0-9]+)?)", re.IGNORECASE)
_NESTED_STRIKE_RANGE = (1000.0, 2_000_000.0)
_MAX_SCAN_DEPTH = 6


# ── Field coercion ─────────────────────────────────────────────────

def parse_json_array(value: Any) -> list[Any]:
    """Gamma encodes list fields as JSON strings; accept either form."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def coerce_timestamp(value: Any) -> float | None:
    """Unix seconds from epoch numbers (s/ms/us/ns) or ISO-8601 text."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        numeric = float(value)
        if numeric > 1e18:
            numeric /= 1_000_000_000.0
        elif numeric > 1e15:
            numeric /= 1_000_000.0
        elif numeric > 1e12:
            numeric /= 1_000.0
        return numeric if numeric > 0 else None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return coerce_timestamp(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()

    return None


def to_size(value: Any) -> float:
    numeric = finite_or_none(value)
    return max(0.0, numeric) if numeric is not None else 0.0


def summarize_book(payload: Any) -> OrderBookSummary:
    """Best levels and total resting size from a CLOB ``/book`` payload."""
    if not isinstance(payload, dict):
        return OrderBookSummary()

    def _levels(key: str) -> list[tuple[float, float]]:
        out = []
        for level in payload.get(key) or []:
            if not isinstance(level, dict):
                continue
            price = finite_or_none(level.get("price"))
            if price is None:
                continue
            out.append((price, to_size(level.get("size"))))
        return out

    bids = _levels("bids")
    asks = _levels("asks")
    best_bid = max((p for p, _ in bids), default=None)
    best_ask = min((p for p, _ in asks), default=None)
    spread = best_ask - best_bid if best_bid is not None and best_ask is not None else None
    return OrderBookSummary(
        best_bid=best_bid,
        best_ask=best_ask,
        spread=spread,
        bid_liquidity=sum(s for _, s in bids) if bids else None,
        ask_liquidity=sum(s for _, s in asks) if asks else None,
    )


def extract_strike_hint(market: Dict[str, Any]) -> float | None:
    """Strike advertised by the market record, if any.

    Direct strike-like keys win; otherwise nested price-like keys with a
    plausible magnitude; otherwise the "price to beat" in the question.
    """
    for key in _STRIKE_KEYS:
        value = market.get(key)
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            numeric = finite_or_none(value)
            if numeric is not None:
                return numeric

    low, high = _NESTED_STRIKE_RANGE
    seen: set[int] = set()
    stack: list[tuple[Any, int]] = [(market, 0)]
    while stack:
        obj, depth = stack.pop()
        if not isinstance(obj, (dict, list)) or id(obj) in seen or depth > _MAX_SCAN_DEPTH:
            continue
        seen.add(id(obj))
        items = obj.items() if isinstance(obj, dict) else enumerate(obj)
        for key, value in items:
            if isinstance(value, (dict, list)):
                stack.append((value, depth + 1))
                continue
            if not _STRIKE_KEY_PATTERN.search(str(key)) or isinstance(value, bool):
                continue
            numeric = finite_or_none(value) if isinstance(value, (int, float, str)) else None
            if numeric is not None and low < numeric < high:
                return numeric

    text = str(market.get("question") or market.get("title") or "")
    match = _PRICE_TO_BEAT_PATTERN.search(text)
    if match is None:
        return None
    return finite_or_none(match.group(1).replace(",", ""))


def _market_window(market: Dict[str, Any]) -> tuple[float | None, float | None]:
    start = coerce_timestamp(market.get("eventStartTime") or market.get("startTime") or market.get("startDate"))
    end = coerce_timestamp(market.get("endDate") or market.get("endTime") or market.get("closedTime"))
    return start, end


def pick_live_market(markets: List[Dict[str, Any]], now: float) -> Dict[str, Any] | None:
    """The market trading now, else the next one to open.

    Among markets that have not ended, those already started win; ties
    go to the earliest settlement.
    """
    candidates = []
    for market in markets:
        start, end = _market_window(market)
        if end is None or end <= now:
            continue
        started = start is None or start <= now
        candidates.append((0 if started else 1, end, market))
    if not candidates:
        return None
    candidates.sort(key=lambda item: (item[0], item[1]))
    return candidates[0][2]


class PolymarketClient:
    """Market discovery over the gamma API plus CLOB quotes.

    Parameters
    ----------
    series_slug:
        Recurring series whose newest live market is tracked.
    slug_prefix:
        Only markets whose slug starts with this prefix are considered.
    market_slug:
        Fixed market slug; bypasses series discovery when set.
    cache_seconds:
        Series discovery result is reused for this long.
    """

    def __init__(
        self,
        series_slug: str,
        slug_prefix: str = "",
        market_slug: str = "",
        up_label: str = "Up",
        down_label: str = "Down",
        gamma_base_url: str = "https://gamma-api.polymarket.com",
        clob_base_url: str = "https://clob.polymarket.com",
        timeout_seconds: float = 10.0,
        cache_seconds: float = 0.7,
        gamma_client: httpx.AsyncClient | None = None,
        clob_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._series_slug = series_slug
        self._slug_prefix = slug_prefix
        self._market_slug = market_slug
        self._up_label = up_label.strip().lower()
        self._down_label = down_label.strip().lower()
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._gamma = gamma_client or httpx.AsyncClient(
            base_url=gamma_base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._clob = clob_client or httpx.AsyncClient(
            base_url=clob_base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._cached_market: Dict[str, Any] | None = None
        self._cached_at = 0.0

    # ── Discovery ─────────────────────────────────────────────────

    async def resolve_market(self) -> Dict[str, Any] | None:
        if self._market_slug:
            return await self._fetch_market_by_slug(self._market_slug)

        now = self._clock()
        if self._cached_market is not None and now - self._cached_at < self._cache_seconds:
            return self._cached_market

        markets = await self._fetch_series_markets()
        picked = pick_live_market(markets, now)
        if picked is not None and picked is not self._cached_market:
            LOGGER.debug("PolymarketClient: tracking %s", picked.get("slug"))
        self._cached_market = picked
        self._cached_at = now
        return picked

    async def _fetch_market_by_slug(self, slug: str) -> Dict[str, Any] | None:
        response = await self._gamma.get("/markets", params={"slug": slug})
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, list):
            return payload[0] if payload and isinstance(payload[0], dict) else None
        return payload if isinstance(payload, dict) and payload else None

    async def _fetch_series_markets(self) -> List[Dict[str, Any]]:
        response = await self._gamma.get(
            "/events",
            params={"series_slug": self._series_slug, "active": "true", "closed": "false", "limit": 50},
        )
        response.raise_for_status()
        events = response.json()
        if not isinstance(events, list):
            return []

        markets: List[Dict[str, Any]] = []
        for event in events:
            if not isinstance(event, dict):
                continue
            for market in event.get("markets") or []:
                if not isinstance(market, dict):
                    continue
                slug = str(market.get("slug") or "")
                if self._slug_prefix and not slug.startswith(self._slug_prefix):
                    continue
                if "eventStartTime" not in market and event.get("startTime"):
                    market = {**market, "eventStartTime": event.get("startTime")}
                markets.append(market)
        return markets

    # ── Quotes ────────────────────────────────────────────────────

    async def fetch_buy_price(self, token_id: str) -> float | None:
        response = await self._clob.get("/price", params={"token_id": token_id, "side": "buy"})
        response.raise_for_status()
        payload = response.json()
        return finite_or_none(payload.get("price")) if isinstance(payload, dict) else None

    async def fetch_book(self, token_id: str) -> OrderBookSummary:
        response = await self._clob.get("/book", params={"token_id": token_id})
        response.raise_for_status()
        return summarize_book(response.json())

    async def fetch_snapshot(self) -> MarketSnapshot | None:
        """Current market with per-side quotes, or ``None`` if none is live.

        CLOB read failures fall back to the gamma summary fields.
        """
        market = await self.resolve_market()
        if market is None:
            LOGGER.debug("PolymarketClient: no live market for %s", self._market_slug or self._series_slug)
            return None

        outcomes = [str(o).strip().lower() for o in parse_json_array(market.get("outcomes"))]
        token_ids = parse_json_array(market.get("clobTokenIds"))
        outcome_prices = parse_json_array(market.get("outcomePrices"))

        up_idx = outcomes.index(self._up_label) if self._up_label in outcomes else None
        down_idx = outcomes.index(self._down_label) if self._down_label in outcomes else None
        if up_idx is None or down_idx is None or max(up_idx, down_idx) >= len(token_ids):
            LOGGER.warning("PolymarketClient: %s missing token ids", market.get("slug"))
            return None
        up_token = str(token_ids[up_idx]).strip()
        down_token = str(token_ids[down_idx]).strip()
        if not up_token or not down_token:
            LOGGER.warning("PolymarketClient: %s missing token ids", market.get("slug"))
            return None

        def _gamma_price(idx: int) -> float | None:
            return finite_or_none(outcome_prices[idx]) if idx < len(outcome_prices) else None

        results = await asyncio.gather(
            self.fetch_buy_price(up_token),
            self.fetch_buy_price(down_token),
            self.fetch_book(up_token),
            self.fetch_book(down_token),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for exc in errors:
            if not isinstance(exc, (httpx.HTTPError, ValueError)):
                raise exc

        up_price: Optional[float]
        down_price: Optional[float]
        if not errors:
            up_price, down_price, up_book, down_book = results  # type: ignore[assignment]
        else:
            LOGGER.warning("PolymarketClient: CLOB read failed (%s), using gamma summary", errors[0])
            up_price = down_price = None
            summary_spread = finite_or_none(market.get("spread")) or None
            up_book = OrderBookSummary(
                best_bid=finite_or_none(market.get("bestBid")) or None,
                best_ask=finite_or_none(market.get("bestAsk")) or None,
                spread=summary_spread,
            )
            down_book = OrderBookSummary(spread=summary_spread)

        start, end = _market_window(market)
        liquidity = finite_or_none(market.get("liquidityNum")) or finite_or_none(market.get("liquidity")) or None
        return MarketSnapshot(
            slug=str(market.get("slug") or ""),
            question=str(market.get("question") or market.get("title") or ""),
            up_token_id=up_token,
            down_token_id=down_token,
            start_time=start,
            settlement_time=end,
            up_price=up_price if up_price is not None else _gamma_price(up_idx),
            down_price=down_price if down_price is not None else _gamma_price(down_idx),
            up_book=up_book,
            down_book=down_book,
            liquidity=liquidity,
            strike_hint=extract_strike_hint(market),
        )

    async def aclose(self) -> None:
        await self._gamma.aclose()
        await self._clob.aclose()


class PolymarketLiveStream(PriceStream):
    """Settlement reference price from the live-data websocket."""

    name = "PolymarketLiveStream"

    def __init__(self, symbol_includes: str, ws_url: str = "wss://ws-live-data.polymarket.com") -> None:
        super().__init__()
        self._symbol_includes = symbol_includes.lower()
        self._ws_url = ws_url

    @property
    def url(self) -> str:
        return self._ws_url

    def subscription_message(self) -> dict[str, Any]:
        return {
            "action": "subscribe",
            "subscriptions": [{"topic": LIVE_PRICE_TOPIC, "type": "*", "filters": ""}],
        }

    def parse_message(self, msg: Any) -> PriceSample | None:
        # {"topic":"crypto_prices_chainlink","type":"update",
        #  "payload":{"symbol":"btc/usd","timestamp":1700000000000,"value":97000.1}}
        if not isinstance(msg, dict) or msg.get("topic") != LIVE_PRICE_TOPIC:
            return None
        payload = msg.get("payload")
        if not isinstance(payload, dict):
            return None
        symbol = str(payload.get("symbol") or "").lower()
        if self._symbol_includes not in symbol:
            return None
        price = finite_or_none(payload.get("value"))
        if price is None or price <= 0:
            return None
        return PriceSample(
            price=price,
            timestamp=coerce_timestamp(payload.get("timestamp")),
            source="polymarket_ws",
        )
