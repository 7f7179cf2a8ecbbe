"""On-demand Chainlink aggregator reads over Polygon JSON-RPC."""

from __future__ import annotations

import logging
import time
from typing import List, Sequence

import httpx

from updown_bot.models import PriceSample

LOGGER = logging.getLogger(__name__)

# keccak("latestRoundData()")[:4]
LATEST_ROUND_DATA_SELECTOR = "0xfeaf968c"
_WORD_HEX = 64


def decode_latest_round_data(result: str, decimals: int) -> tuple[float, float | None] | None:
    """``(answer, updated_at)`` from the ABI-encoded return value.

    The tuple is ``(roundId, answer, startedAt, updatedAt, answeredInRound)``
    with ``answer`` a signed 256-bit integer.
    """
    if not isinstance(result, str) or not result.startswith("0x"):
        return None
    body = result[2:]
    if len(body) < 5 * _WORD_HEX:
        return None
    words: List[int] = [int(body[i * _WORD_HEX:(i + 1) * _WORD_HEX], 16) for i in range(5)]
    answer = words[1]
    if answer >= 2 ** 255:
        answer -= 2 ** 256
    updated_at = float(words[3]) if words[3] > 0 else None
    return answer / (10 ** decimals), updated_at


class ChainlinkRpcClient:
    """Reads ``latestRoundData`` from a price aggregator contract.

    Each RPC URL is tried in order; the last error is raised if none
    answers.
    """

    def __init__(
        self,
        aggregator: str,
        rpc_urls: Sequence[str],
        decimals: int = 8,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_urls:
            raise ValueError("at least one RPC URL is required")
        self._aggregator = aggregator
        self._rpc_urls = list(rpc_urls)
        self._decimals = decimals
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._request_id = 0

    async def fetch_price(self) -> PriceSample | None:
        last_error: Exception | None = None
        for url in self._rpc_urls:
            try:
                return await self._call(url)
            except (httpx.HTTPError, ValueError, KeyError) as exc:
                LOGGER.debug("ChainlinkRpcClient: %s failed: %s", url, exc)
                last_error = exc
        assert last_error is not None
        raise last_error

    async def _call(self, url: str) -> PriceSample | None:
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_call",
            "params": [{"to": self._aggregator, "data": LATEST_ROUND_DATA_SELECTOR}, "latest"],
        }
        response = await self._client.post(url, json=body)
        response.raise_for_status()
        payload = response.json()
        if "error" in payload:
            raise ValueError(f"rpc error: {payload['error']}")
        decoded = decode_latest_round_data(payload["result"], self._decimals)
        if decoded is None:
            return None
        price, updated_at = decoded
        if price <= 0:
            return None
        return PriceSample(price=price, timestamp=updated_at or time.time(), source="chainlink_rpc")

    async def aclose(self) -> None:
        await self._client.aclose()
