from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import websockets

from updown_bot.models import Candle, PriceSample

LOGGER = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 5.0
RECV_TIMEOUT_SECONDS = 30.0


class PriceStream(ABC):
    """Reconnecting websocket that caches the latest price sample.

    Subclasses provide the URL, an optional subscription message and the
    message parser.  Readers only ever see the cached value through
    ``get_last``; connection errors are logged and retried.
    """

    name = "stream"

    def __init__(self) -> None:
        self._last: PriceSample | None = None
        self._running = False
        self._ws: Any = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    @abstractmethod
    def url(self) -> str:
        raise NotImplementedError

    def subscription_message(self) -> dict[str, Any] | None:
        return None

    @abstractmethod
    def parse_message(self, msg: Any) -> PriceSample | None:
        """Extract a sample from one decoded message, or ``None`` to skip."""
        raise NotImplementedError

    # ── public API ─────────────────────────────────────────────────

    def get_last(self) -> PriceSample | None:
        return self._last

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._ws_loop())
        LOGGER.info("%s: started (%s)", self.name, self.url)

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as exc:
                LOGGER.debug("%s: close failed: %s", self.name, exc)
            self._ws = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        LOGGER.info("%s: stopped", self.name)

    # ── internals ──────────────────────────────────────────────────

    def handle_raw(self, raw: str | bytes) -> PriceSample | None:
        """Decode *raw*, update the cache and return the parsed sample."""
        try:
            msg = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        sample = self.parse_message(msg)
        if sample is not None:
            self._last = sample
        return sample

    async def _ws_loop(self) -> None:
        while self._running:
            try:
                await self._connect_and_stream()
            except asyncio.CancelledError:
                return
            except Exception as exc:
                LOGGER.warning("%s: WS error: %s, reconnecting in %.0fs", self.name, exc, RECONNECT_DELAY_SECONDS)
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _connect_and_stream(self) -> None:
        async with websockets.connect(self.url, ping_interval=20, ping_timeout=10) as ws:
            self._ws = ws
            sub = self.subscription_message()
            if sub is not None:
                await ws.send(json.dumps(sub))
            LOGGER.info("%s: connected", self.name)

            while self._running:
                try:
                    raw = await asyncio.wait_for(ws.recv(), timeout=RECV_TIMEOUT_SECONDS)
                except asyncio.TimeoutError:
                    await ws.ping()
                    continue
                self.handle_raw(raw)


class HeuristicScorer(ABC):
    """Independent P(up) estimate from recent candles.

    The engine blends this with the quant probability when one is
    injected; without a scorer it runs on the quant model alone.
    """

    @abstractmethod
    async def score(self, candles: Sequence[Candle]) -> float | None:
        raise NotImplementedError
