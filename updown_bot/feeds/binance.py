"""Binance spot REST client and trade stream.

The spot exchange usually leads the settlement reference, so its last
trade is used as the secondary price and its 1-minute closes feed the
volatility estimate.
"""

from __future__ import annotations

import logging
from typing import Any, List

import httpx

from updown_bot.feeds.base import PriceStream
from updown_bot.models import Candle, PriceSample
from updown_bot.price_model import finite_or_none

LOGGER = logging.getLogger(__name__)


def parse_kline(row: Any) -> Candle | None:
    """One REST kline row ``[open_ms, o, h, l, c, v, ...]`` to a Candle."""
    if not isinstance(row, list) or len(row) < 6:
        return None
    try:
        return Candle(
            open_time=float(row[0]) / 1000.0,
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )
    except (TypeError, ValueError):
        return None


class BinanceClient:
    """Async REST reads against the Binance spot API."""

    def __init__(
        self,
        symbol: str,
        base_url: str = "https://api.binance.com",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._symbol = symbol.upper()
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_seconds)

    async def fetch_klines(self, interval: str = "1m", limit: int = 240) -> List[Candle]:
        response = await self._client.get(
            "/api/v3/klines",
            params={"symbol": self._symbol, "interval": interval, "limit": limit},
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            return []
        candles = [parse_kline(row) for row in payload]
        return [c for c in candles if c is not None]

    async def fetch_last_price(self) -> float | None:
        response = await self._client.get("/api/v3/ticker/price", params={"symbol": self._symbol})
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            return None
        return finite_or_none(payload.get("price"))

    async def aclose(self) -> None:
        await self._client.aclose()


class BinanceTradeStream(PriceStream):
    """Last trade price from the ``<symbol>@trade`` stream."""

    name = "BinanceTradeStream"

    def __init__(self, symbol: str, ws_base_url: str = "wss://stream.binance.com:9443/ws") -> None:
        super().__init__()
        self._symbol = symbol.lower()
        self._ws_base_url = ws_base_url.rstrip("/")

    @property
    def url(self) -> str:
        return f"{self._ws_base_url}/{self._symbol}@trade"

    def parse_message(self, msg: Any) -> PriceSample | None:
        # {"e":"trade","s":"BTCUSDT","p":"97500.00","q":"0.001","T":1700000000000}
        if not isinstance(msg, dict) or msg.get("e") != "trade":
            return None
        if str(msg.get("s") or "").lower() != self._symbol:
            return None
        price = finite_or_none(msg.get("p"))
        if price is None or price <= 0:
            return None
        ts = finite_or_none(msg.get("T"))
        return PriceSample(price=price, timestamp=ts / 1000.0 if ts is not None else None, source="binance_ws")
