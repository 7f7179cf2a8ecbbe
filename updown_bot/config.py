"""Configuration for the 15-minute up/down signal bot."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class CoinProfile:
    """Venue identifiers for one underlying."""

    coin: str
    binance_symbol: str
    slug_prefix: str
    series_slug: str
    chainlink_aggregator: str
    chainlink_decimals: int
    live_symbol: str  # substring matched against live-data feed symbols


COIN_PROFILES: Dict[str, CoinProfile] = {
    "BTC": CoinProfile(
        coin="BTC",
        binance_symbol="BTCUSDT",
        slug_prefix="btc-updown-15m-",
        series_slug="btc-up-or-down-15m",
        chainlink_aggregator="0xc907E116054Ad103354f2D350FD2514433D57F6f",
        chainlink_decimals=8,
        live_symbol="btc",
    ),
    "ETH": CoinProfile(
        coin="ETH",
        binance_symbol="ETHUSDT",
        slug_prefix="eth-updown-15m-",
        series_slug="eth-up-or-down-15m",
        chainlink_aggregator="0xF9680D99D6C9589e2a93a78A04A279e509205945",
        chainlink_decimals=8,
        live_symbol="eth",
    ),
    "SOL": CoinProfile(
        coin="SOL",
        binance_symbol="SOLUSDT",
        slug_prefix="sol-updown-15m-",
        series_slug="sol-up-or-down-15m",
        chainlink_aggregator="0x10C8264C0935b3B9870013e057f330Ff3e9C56dC",
        chainlink_decimals=8,
        live_symbol="sol",
    ),
    "XRP": CoinProfile(
        coin="XRP",
        binance_symbol="XRPUSDT",
        slug_prefix="xrp-updown-15m-",
        series_slug="xrp-up-or-down-15m",
        chainlink_aggregator="0x785ba89291f676b5386652eB12b30cF361020694",
        chainlink_decimals=8,
        live_symbol="xrp",
    ),
}


def coin_profile(coin: str) -> CoinProfile:
    """Profile for *coin*; unknown coins fall back to BTC."""
    return COIN_PROFILES.get(coin.strip().upper(), COIN_PROFILES["BTC"])


@dataclass(frozen=True)
class UpDownSettings:
    """Settings for the up/down signal bot.

    All env vars are prefixed with ``UPDOWN_``.
    """

    coin: str = "BTC"

    # ── Endpoints ──────────────────────────────────────────────────
    binance_base_url: str = "https://api.binance.com"
    binance_ws_url: str = "wss://stream.binance.com:9443/ws"
    gamma_base_url: str = "https://gamma-api.polymarket.com"
    clob_base_url: str = "https://clob.polymarket.com"
    live_data_ws_url: str = "wss://ws-live-data.polymarket.com"
    polygon_rpc_urls: List[str] = field(default_factory=lambda: ["https://polygon-rpc.com"])
    http_timeout_seconds: float = 10.0

    # ── Market selection ──────────────────────────────────────────
    market_slug: str = ""          # fixed slug; empty = latest live in series
    series_slug: str = ""          # empty = coin profile default
    up_outcome_label: str = "Up"
    down_outcome_label: str = "Down"
    candle_window_minutes: int = 15

    # ── Loop pacing ────────────────────────────────────────────────
    poll_interval_seconds: float = 0.7
    min_wait_seconds: float = 0.1
    backoff_step_seconds: float = 0.5
    backoff_cap_seconds: float = 4.0
    error_log_interval_seconds: float = 5.0

    # ── Quant model ───────────────────────────────────────────────
    sigma_lookback_minutes: int = 120
    min_samples: int = 30
    model_weight: float = 0.7
    sigma_min: float = 0.0         # per-second fallback for an invalid estimate; 0 disables
    safe_no_trade_without_quant: bool = True

    # ── Strategy ──────────────────────────────────────────────────
    order_size_usd: float = 1.0
    max_tracked_markets: int = 64
    state_eviction_grace_seconds: float = 600.0

    # ── Order submission ──────────────────────────────────────────
    trading_enabled: bool = False
    dry_run: bool = True
    trading_api_url: str = "https://clob.polymarket.com"
    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""

    # ── Output ────────────────────────────────────────────────────
    signals_csv: str = "logs/signals.csv"
    log_level: str = "INFO"

    @property
    def profile(self) -> CoinProfile:
        return coin_profile(self.coin)

    @property
    def resolved_series_slug(self) -> str:
        return self.series_slug or self.profile.series_slug


def load_settings() -> UpDownSettings:
    """Build ``UpDownSettings`` from ``UPDOWN_*`` environment variables."""
    return UpDownSettings(
        coin=os.getenv("UPDOWN_COIN", "BTC").strip().upper() or "BTC",
        binance_base_url=os.getenv("UPDOWN_BINANCE_BASE_URL", "https://api.binance.com"),
        binance_ws_url=os.getenv("UPDOWN_BINANCE_WS_URL", "wss://stream.binance.com:9443/ws"),
        gamma_base_url=os.getenv("UPDOWN_GAMMA_BASE_URL", "https://gamma-api.polymarket.com"),
        clob_base_url=os.getenv("UPDOWN_CLOB_BASE_URL", "https://clob.polymarket.com"),
        live_data_ws_url=os.getenv("UPDOWN_LIVE_DATA_WS_URL", "wss://ws-live-data.polymarket.com"),
        polygon_rpc_urls=_as_csv(os.getenv("UPDOWN_POLYGON_RPC_URLS")) or ["https://polygon-rpc.com"],
        http_timeout_seconds=_as_float(os.getenv("UPDOWN_HTTP_TIMEOUT_SECONDS"), 10.0),
        market_slug=os.getenv("UPDOWN_MARKET_SLUG", ""),
        series_slug=os.getenv("UPDOWN_SERIES_SLUG", ""),
        up_outcome_label=os.getenv("UPDOWN_UP_LABEL", "Up"),
        down_outcome_label=os.getenv("UPDOWN_DOWN_LABEL", "Down"),
        candle_window_minutes=_as_int(os.getenv("UPDOWN_CANDLE_WINDOW_MINUTES"), 15),
        poll_interval_seconds=_as_float(os.getenv("UPDOWN_POLL_INTERVAL_SECONDS"), 0.7),
        min_wait_seconds=_as_float(os.getenv("UPDOWN_MIN_WAIT_SECONDS"), 0.1),
        backoff_step_seconds=_as_float(os.getenv("UPDOWN_BACKOFF_STEP_SECONDS"), 0.5),
        backoff_cap_seconds=_as_float(os.getenv("UPDOWN_BACKOFF_CAP_SECONDS"), 4.0),
        error_log_interval_seconds=_as_float(os.getenv("UPDOWN_ERROR_LOG_INTERVAL_SECONDS"), 5.0),
        sigma_lookback_minutes=_as_int(os.getenv("UPDOWN_SIGMA_LOOKBACK_MINUTES"), 120),
        min_samples=_as_int(os.getenv("UPDOWN_MIN_SAMPLES"), 30),
        model_weight=_as_float(os.getenv("UPDOWN_MODEL_WEIGHT"), 0.7),
        sigma_min=_as_float(os.getenv("UPDOWN_SIGMA_MIN"), 0.0),
        safe_no_trade_without_quant=_as_bool(os.getenv("UPDOWN_SAFE_NO_TRADE_WITHOUT_QUANT"), True),
        order_size_usd=_as_float(os.getenv("UPDOWN_ORDER_SIZE_USD"), 1.0),
        max_tracked_markets=_as_int(os.getenv("UPDOWN_MAX_TRACKED_MARKETS"), 64),
        state_eviction_grace_seconds=_as_float(os.getenv("UPDOWN_STATE_EVICTION_GRACE_SECONDS"), 600.0),
        trading_enabled=_as_bool(os.getenv("UPDOWN_TRADING_ENABLED"), False),
        dry_run=_as_bool(os.getenv("UPDOWN_DRY_RUN"), True),
        trading_api_url=os.getenv("UPDOWN_TRADING_API_URL", "https://clob.polymarket.com"),
        api_key=os.getenv("UPDOWN_API_KEY", ""),
        api_secret=os.getenv("UPDOWN_API_SECRET", ""),
        api_passphrase=os.getenv("UPDOWN_API_PASSPHRASE", ""),
        signals_csv=os.getenv("UPDOWN_SIGNALS_CSV", "logs/signals.csv"),
        log_level=os.getenv("UPDOWN_LOG_LEVEL", "INFO"),
    )
