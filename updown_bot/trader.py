"""Order submission for strategy actions.

Disabled and dry-run by default.  Live mode posts a JSON market order
to the trading API, trying ``/orders`` then ``/order``.  Failures are
returned in ``OrderResult`` rather than raised so one rejected order
never aborts a tick.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from updown_bot.models import ActionType, MarketSnapshot, Side, TradeAction

LOGGER = logging.getLogger(__name__)

ORDER_PATHS = ("/orders", "/order")


@dataclass(frozen=True)
class OrderResult:
    ok: bool
    dry_run: bool = False
    skipped: bool = False
    reason: str = ""
    endpoint: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    data: Any = None
    error: Optional[str] = None


class OrderSubmitter:
    """Turns ``TradeAction`` records into venue orders.

    Parameters
    ----------
    enabled:
        When false every submission is skipped.
    dry_run:
        When true the payload is built and returned without a network call.
    default_size_usd:
        Used when an action carries no usable size.
    """

    def __init__(
        self,
        enabled: bool = False,
        dry_run: bool = True,
        api_url: str = "https://clob.polymarket.com",
        api_key: str = "",
        api_secret: str = "",
        api_passphrase: str = "",
        default_size_usd: float = 1.0,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.enabled = enabled
        self.dry_run = dry_run
        self._api_key = api_key
        self._api_secret = api_secret
        self._api_passphrase = api_passphrase
        self._default_size_usd = default_size_usd
        self._clock = clock
        self._client = client or httpx.AsyncClient(base_url=api_url.rstrip("/"), timeout=timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["X-API-KEY"] = self._api_key
        if self._api_secret:
            headers["X-API-SECRET"] = self._api_secret
        if self._api_passphrase:
            headers["X-API-PASSPHRASE"] = self._api_passphrase
        return headers

    def build_payload(
        self,
        action: TradeAction,
        market: MarketSnapshot,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        price = market.up_price if action.side is Side.UP else market.down_price
        size = action.size_usd if action.size_usd and action.size_usd > 0 else self._default_size_usd
        return {
            "market": market.slug,
            "token_id": market.token_for(action.side),
            "side": "buy" if action.type is ActionType.OPEN else "sell",
            "outcome": action.side.value,
            "order_type": "market",
            "size_usd": size,
            "max_price_cents": round(price * 100.0, 2) if price is not None else None,
            "note": action.describe(),
            "metadata": metadata,
            "ts": int(self._clock() * 1000),
        }

    async def submit(
        self,
        action: TradeAction,
        market: MarketSnapshot | None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderResult:
        if not self.enabled or market is None or not market.token_for(action.side):
            return OrderResult(ok=False, skipped=True, reason="trading_not_enabled_or_missing_data")

        payload = self.build_payload(action, market, metadata)
        if self.dry_run:
            LOGGER.info("OrderSubmitter: dry-run %s %s", market.slug, action.describe())
            return OrderResult(ok=True, dry_run=True, payload=payload)

        last_error = "unknown_order_error"
        for path in ORDER_PATHS:
            try:
                response = await self._client.post(path, json=payload, headers=self._headers())
            except httpx.HTTPError as exc:
                last_error = str(exc) or type(exc).__name__
                continue
            if response.is_error:
                last_error = f"http_{response.status_code}:{response.text[:200]}"
                continue
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = {"raw": response.text}
            LOGGER.info("OrderSubmitter: submitted %s %s via %s", market.slug, action.describe(), path)
            return OrderResult(ok=True, endpoint=path, payload=payload, data=data)

        LOGGER.warning("OrderSubmitter: %s %s failed: %s", market.slug, action.describe(), last_error)
        return OrderResult(ok=False, payload=payload, error=last_error)

    async def aclose(self) -> None:
        await self._client.aclose()
