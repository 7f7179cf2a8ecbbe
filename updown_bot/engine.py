"""Tick runner: fetch, fuse, decide, act.

Each tick reads the cached stream prices, fans out the REST reads,
then runs the numeric pipeline

    strike latch -> volatility -> log-normal P(up) -> blend -> edge
    -> recommendation (+ quant safety) -> strategy engine

and submits whatever actions the strategy emits.  Ticks run strictly
one after another on a single task, so per-market state needs no
locking.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from updown_bot.config import UpDownSettings
from updown_bot.decision import Recommendation, apply_quant_safety, decide
from updown_bot.edge_detector import (
    Edge,
    MarketProjection,
    ProbabilityEstimate,
    blend_probabilities,
    compute_edge,
    project_market_future,
    to_probability,
)
from updown_bot.feeds.base import HeuristicScorer, PriceStream
from updown_bot.feeds.binance import BinanceClient, BinanceTradeStream
from updown_bot.feeds.chainlink import ChainlinkRpcClient
from updown_bot.feeds.polymarket import PolymarketClient, PolymarketLiveStream
from updown_bot.models import Candle, MarketSnapshot, RecommendationAction
from updown_bot.price_model import PriceModel, VolatilityEstimate
from updown_bot.signal_logger import SignalLogger, SignalRow
from updown_bot.strategy import StrategyDecision, StrategyEngine, TickSnapshot
from updown_bot.strike_latch import StrikeLatch
from updown_bot.trader import OrderResult, OrderSubmitter

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    """Everything one tick computed."""

    slug: str | None
    time_left_min: float | None
    t_sec: int
    reference_price: float | None
    secondary_price: float | None
    strike: float | None
    volatility: VolatilityEstimate
    sigma: float | None
    market_up: float | None
    market_down: float | None
    quant_up: float | None
    estimate: ProbabilityEstimate | None
    edge: Edge
    recommendation: Recommendation
    projection: MarketProjection
    decision: StrategyDecision
    orders: List[OrderResult] = field(default_factory=list)


def remaining_minutes(
    market: MarketSnapshot | None,
    now: float,
    window_minutes: int = 15,
) -> float:
    """Minutes to settlement, else to the end of the current candle window."""
    if market is not None and market.settlement_time is not None:
        return (market.settlement_time - now) / 60.0
    window = window_minutes * 60.0
    elapsed = now % window
    return (window - elapsed) / 60.0


def seconds_left(minutes: float | None) -> int:
    """Whole seconds left; at least 1 while the market is open, 0 after."""
    if minutes is None or not math.isfinite(minutes) or minutes <= 0:
        return 0
    return max(1, int(math.floor(minutes * 60.0)))


def next_wait(
    elapsed: float,
    streak: int,
    poll_interval: float = 0.7,
    min_wait: float = 0.1,
    step: float = 0.5,
    cap: float = 4.0,
) -> float:
    """Sleep before the next tick: remaining poll budget plus error backoff."""
    backoff = min(cap, step * max(0, streak))
    return max(min_wait, poll_interval - elapsed) + backoff


class SignalEngine:
    """Owns the clients, the strike latch and the strategy engine.

    Parameters
    ----------
    settings:
        Runtime settings.
    binance:
        Klines and last-trade REST client.
    polymarket:
        Market discovery and quote client.
    chainlink:
        On-demand reference reads when the live stream has no value.
    reference_stream, secondary_stream:
        Background websocket caches; optional.
    heuristic:
        Optional independent P(up) scorer.
    """

    def __init__(
        self,
        settings: UpDownSettings,
        binance: BinanceClient,
        polymarket: PolymarketClient,
        chainlink: ChainlinkRpcClient | None = None,
        reference_stream: PriceStream | None = None,
        secondary_stream: PriceStream | None = None,
        heuristic: HeuristicScorer | None = None,
        submitter: OrderSubmitter | None = None,
        signal_logger: SignalLogger | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._binance = binance
        self._polymarket = polymarket
        self._chainlink = chainlink
        self._reference_stream = reference_stream
        self._secondary_stream = secondary_stream
        self._heuristic = heuristic
        self._submitter = submitter or OrderSubmitter(
            enabled=False,
            default_size_usd=settings.order_size_usd,
        )
        self._signal_logger = signal_logger
        self._clock = clock
        self._sleep = sleep

        self._price_model = PriceModel(
            lookback=settings.sigma_lookback_minutes,
            min_samples=settings.min_samples,
        )
        self._strike_latch = StrikeLatch()
        self._strategy = StrategyEngine(
            size_usd=settings.order_size_usd,
            max_states=settings.max_tracked_markets,
            eviction_grace_seconds=settings.state_eviction_grace_seconds,
            clock=clock,
        )

        self._running = False
        self._tick_count = 0
        self._error_streak = 0
        self._error_signature: str | None = None
        self._last_error_log = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: UpDownSettings,
        heuristic: HeuristicScorer | None = None,
    ) -> "SignalEngine":
        profile = settings.profile
        timeout = settings.http_timeout_seconds
        return cls(
            settings,
            binance=BinanceClient(profile.binance_symbol, settings.binance_base_url, timeout),
            polymarket=PolymarketClient(
                series_slug=settings.resolved_series_slug,
                slug_prefix=profile.slug_prefix,
                market_slug=settings.market_slug,
                up_label=settings.up_outcome_label,
                down_label=settings.down_outcome_label,
                gamma_base_url=settings.gamma_base_url,
                clob_base_url=settings.clob_base_url,
                timeout_seconds=timeout,
                cache_seconds=settings.poll_interval_seconds,
            ),
            chainlink=ChainlinkRpcClient(
                profile.chainlink_aggregator,
                settings.polygon_rpc_urls,
                decimals=profile.chainlink_decimals,
                timeout_seconds=timeout,
            ),
            reference_stream=PolymarketLiveStream(profile.live_symbol, settings.live_data_ws_url),
            secondary_stream=BinanceTradeStream(profile.binance_symbol, settings.binance_ws_url),
            heuristic=heuristic,
            submitter=OrderSubmitter(
                enabled=settings.trading_enabled,
                dry_run=settings.dry_run,
                api_url=settings.trading_api_url,
                api_key=settings.api_key,
                api_secret=settings.api_secret,
                api_passphrase=settings.api_passphrase,
                default_size_usd=settings.order_size_usd,
                timeout_seconds=timeout,
            ),
            signal_logger=SignalLogger(settings.signals_csv) if settings.signals_csv else None,
        )

    @property
    def strategy(self) -> StrategyEngine:
        return self._strategy

    @property
    def error_streak(self) -> int:
        return self._error_streak

    # ── Loop ──────────────────────────────────────────────────────

    async def run(self, duration_minutes: float = 0) -> None:
        """Run ticks until stopped.

        Parameters
        ----------
        duration_minutes:
            How long to run (0 = indefinitely until stopped).
        """
        self._running = True
        start = time.monotonic()
        LOGGER.info(
            "SignalEngine: starting (coin=%s, poll=%.2fs, weight=%.2f, trading=%s, dry_run=%s)",
            self._settings.coin,
            self._settings.poll_interval_seconds,
            self._settings.model_weight,
            self._submitter.enabled,
            self._submitter.dry_run,
        )

        for stream in self._streams():
            await stream.start()
        try:
            while self._running:
                if duration_minutes > 0 and (time.monotonic() - start) / 60.0 >= duration_minutes:
                    LOGGER.info("SignalEngine: duration limit reached (%.1f min)", duration_minutes)
                    break

                tick_start = time.monotonic()
                try:
                    await self.run_tick()
                    self._error_streak = 0
                    self._error_signature = None
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._record_error(exc)

                wait = next_wait(
                    time.monotonic() - tick_start,
                    self._error_streak,
                    poll_interval=self._settings.poll_interval_seconds,
                    min_wait=self._settings.min_wait_seconds,
                    step=self._settings.backoff_step_seconds,
                    cap=self._settings.backoff_cap_seconds,
                )
                if self._running:
                    await self._sleep(wait)
        except asyncio.CancelledError:
            LOGGER.info("SignalEngine: cancelled")
        finally:
            self._running = False
            for stream in self._streams():
                await stream.stop()
            if self._signal_logger is not None:
                self._signal_logger.close()
            LOGGER.info("SignalEngine: stopped after %d tick(s)", self._tick_count)

    def stop(self) -> None:
        """Signal the engine to stop after the current tick."""
        self._running = False

    async def aclose(self) -> None:
        await self._binance.aclose()
        await self._polymarket.aclose()
        if self._chainlink is not None:
            await self._chainlink.aclose()
        await self._submitter.aclose()

    def _streams(self) -> List[PriceStream]:
        return [s for s in (self._reference_stream, self._secondary_stream) if s is not None]

    def _record_error(self, exc: Exception) -> None:
        signature = f"{type(exc).__name__}:{exc}"
        if signature == self._error_signature:
            self._error_streak += 1
        else:
            self._error_signature = signature
            self._error_streak = 1
            self._last_error_log = 0.0

        now = self._clock()
        if now - self._last_error_log >= self._settings.error_log_interval_seconds:
            self._last_error_log = now
            LOGGER.warning("SignalEngine: tick failed (streak=%d): %s", self._error_streak, signature)

    # ── Fetch ─────────────────────────────────────────────────────

    async def _reference_price(self) -> float | None:
        cached = self._reference_stream.get_last() if self._reference_stream is not None else None
        if cached is not None:
            return cached.price
        if self._chainlink is None:
            return None
        sample = await self._chainlink.fetch_price()
        return sample.price if sample is not None else None

    async def _fetch_inputs(
        self,
    ) -> tuple[List[Candle], float | None, float | None, MarketSnapshot | None]:
        secondary_cached = self._secondary_stream.get_last() if self._secondary_stream is not None else None
        klines, last_price, reference, market = await asyncio.gather(
            self._binance.fetch_klines(limit=max(self._settings.sigma_lookback_minutes, 3) + 1),
            self._binance.fetch_last_price(),
            self._reference_price(),
            self._polymarket.fetch_snapshot(),
            return_exceptions=True,
        )
        for value in (klines, reference, market):
            if isinstance(value, BaseException):
                raise value
        if isinstance(last_price, BaseException):
            if isinstance(last_price, asyncio.CancelledError):
                raise last_price
            LOGGER.warning("SignalEngine: last price unavailable: %s", last_price)
            last_price = None

        secondary = secondary_cached.price if secondary_cached is not None else last_price
        return klines, secondary, reference, market  # type: ignore[return-value]

    async def _heuristic_up(self, candles: Sequence[Candle]) -> float | None:
        if self._heuristic is None:
            return None
        try:
            return await self._heuristic.score(candles)
        except Exception as exc:
            LOGGER.warning("SignalEngine: heuristic score unavailable: %s", exc)
            return None

    # ── Tick ──────────────────────────────────────────────────────

    async def run_tick(self) -> TickResult:
        candles, secondary, reference, market = await self._fetch_inputs()
        heuristic_up = await self._heuristic_up(candles)
        self._tick_count += 1
        settings = self._settings

        now = self._clock()
        minutes = remaining_minutes(market, now, settings.candle_window_minutes)
        t_sec = seconds_left(minutes)
        slug = market.slug if market is not None and market.slug else None

        strike = self._strike_latch.observe(
            slug,
            reference,
            start_time=market.start_time if market is not None else None,
            now=now,
        )

        vol = self._price_model.estimate_volatility([c.close for c in candles])
        if vol.valid:
            sigma = vol.sigma
        else:
            sigma = settings.sigma_min if settings.sigma_min > 0 else None

        quant = PriceModel.probability_up(reference, strike, max(1, t_sec), sigma)
        quant_up = quant.p_up if quant is not None else None
        estimate = blend_probabilities(quant_up, heuristic_up, settings.model_weight)
        model_up = estimate.p_up if estimate is not None else None
        model_down = estimate.p_down if estimate is not None else None

        market_up = market.up_price if market is not None else None
        market_down = market.down_price if market is not None else None
        edge = compute_edge(model_up, model_down, market_up, market_down)

        rec = decide(minutes, edge.edge_up, edge.edge_down, model_up, model_down)
        rec = apply_quant_safety(
            rec,
            enabled=settings.safe_no_trade_without_quant,
            strike=strike,
            reference_price=reference,
            sigma=sigma,
            quant_up=quant_up,
        )

        projection = project_market_future(
            market_up,
            market_down,
            reference,
            secondary,
            strike,
            sigma,
            t_sec,
            model_weight=settings.model_weight,
        )

        decision = self._strategy.decide(
            TickSnapshot(
                slug=slug,
                t_sec=t_sec,
                sigma=sigma,
                spread=market.spread if market is not None else None,
                liquidity=market.liquidity if market is not None else None,
                edge_up=edge.edge_up,
                edge_down=edge.edge_down,
                p_model_up=model_up,
                p_model_down=model_down,
                market_up_price=market_up,
                market_down_price=market_down,
                reference_price=reference,
                secondary_price=secondary,
                strike=strike,
                settlement_time=market.settlement_time if market is not None else None,
            )
        )

        orders: List[OrderResult] = []
        for action in decision.actions:
            orders.append(await self._submitter.submit(action, market, metadata={"t_sec": t_sec}))

        result = TickResult(
            slug=slug,
            time_left_min=minutes,
            t_sec=t_sec,
            reference_price=reference,
            secondary_price=secondary,
            strike=strike,
            volatility=vol,
            sigma=sigma,
            market_up=to_probability(market_up),
            market_down=to_probability(market_down),
            quant_up=quant_up,
            estimate=estimate,
            edge=edge,
            recommendation=rec,
            projection=projection,
            decision=decision,
            orders=orders,
        )
        self._log_tick(result, now)
        return result

    def _log_tick(self, result: TickResult, now: float) -> None:
        rec = result.recommendation
        est = result.estimate
        LOGGER.info(
            "SignalEngine: %s t=%ds S=%s K=%s sigma=%s pUp=%s edge=%s/%s rec=%s %s/%s actions=%d",
            result.slug or "-",
            result.t_sec,
            _fmt(result.reference_price, 2),
            _fmt(result.strike, 2),
            _fmt(result.sigma, 6),
            _fmt(est.p_up if est else None, 3),
            _fmt(result.edge.edge_up, 3),
            _fmt(result.edge.edge_down, 3),
            rec.label(),
            result.decision.phase.value,
            result.decision.note,
            len(result.decision.actions),
        )
        if self._signal_logger is None:
            return

        window = float(self._settings.candle_window_minutes)
        time_left = result.time_left_min
        if rec.action is RecommendationAction.ENTER and rec.side is not None:
            signal = f"BUY {rec.side.value}"
        else:
            signal = "NO TRADE"
        self._signal_logger.log(
            SignalRow(
                timestamp=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                slug=result.slug or "",
                entry_minute=window - time_left if time_left is not None else None,
                time_left_min=time_left,
                signal=signal,
                model_up=est.p_up if est else None,
                model_down=est.p_down if est else None,
                mkt_up=result.market_up,
                mkt_down=result.market_down,
                edge_up=result.edge.edge_up,
                edge_down=result.edge.edge_down,
                recommendation=rec.label(),
                reference_price=result.reference_price,
                secondary_price=result.secondary_price,
                strike=result.strike,
                sigma=result.sigma,
                quant_mode=est.mode.value if est else "",
                future_up_cents=result.projection.future_up_cents,
                future_edge_cents=result.projection.edge_vs_market_cents,
                future_strategy=result.projection.strategy,
                strategy_phase=result.decision.phase.value,
                strategy_note=result.decision.note,
                actions="|".join(a.describe() for a in result.decision.actions),
            )
        )


def _fmt(value: Optional[float], digits: int) -> str:
    return "-" if value is None else f"{value:.{digits}f}"
