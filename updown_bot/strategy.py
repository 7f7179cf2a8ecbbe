"""Per-market scalp/hold strategy state machine.

Each market slug gets one ``StrategyState``.  Every tick the engine
receives a ``TickSnapshot``, re-evaluates the risk gates, and walks the
rules in a fixed order, mutating state as each rule fires so later rules
in the same tick see the result:

    0. scalp exit        take-profit / stop-loss / timeout
    1. lead arming       secondary price crosses strike before reference
    2. lead confirm      reference follows within the arming window
    3. threshold scalp   edge clears the phase threshold
    4. forced scalp      last scalp window (90 s, 150 s]
    5. dominance hold    <= 60 s, reference far from strike or p >= 0.55
    6. forced hold       <= 45 s, higher model probability

At most one scalp and one hold ever open per slug, and a closed scalp is
never re-entered.  All snapshot fields may be missing; missing inputs
fail the corresponding gate instead of raising.
"""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Dict, List, Optional

from updown_bot.models import ActionType, Phase, PositionTag, Side, TradeAction
from updown_bot.phases import edge_threshold, phase_from_seconds
from updown_bot.price_model import finite_or_none

LOGGER = logging.getLogger(__name__)

# ── Risk gates ─────────────────────────────────────────────────────
MAX_SPREAD = 0.03
MAX_SCALP_SPREAD = 0.025
MIN_LIQUIDITY = 5.0
MAX_EXPOSURE = 2

# ── Scalp ──────────────────────────────────────────────────────────
SCALP_TAKE_PROFIT = 0.02
SCALP_STOP_LOSS = -0.02
SCALP_TIMEOUT_SECONDS = 120.0
SCALP_MIN_T_SEC = 90.0
FORCED_SCALP_T_SEC = 150.0

# ── Lead signal ────────────────────────────────────────────────────
LEAD_MIN_MOVE = 0.001
LEAD_WINDOW_SECONDS = 20.0

# ── Hold ───────────────────────────────────────────────────────────
HOLD_T_SEC = 60.0
FORCED_HOLD_T_SEC = 45.0
DOMINANCE_VOL_MULTIPLE = 3.0
DOMINANCE_MIN_PROB = 0.97
HOLD_MIN_PROB = 0.55


@dataclass
class Position:
    side: Side
    entry_price: float | None  # None when the side had no quote at entry
    opened_at: float
    tag: PositionTag


@dataclass
class PendingSignal:
    side: Side
    armed_at: float


@dataclass
class StrategyState:
    """Mutable per-slug strategy record."""

    did_scalp: bool = False
    did_hold: bool = False
    scalp_closed: bool = False
    scalp_position: Optional[Position] = None
    hold_position: Optional[Position] = None
    pending_lead_signal: Optional[PendingSignal] = None
    settlement_time: float | None = None

    @property
    def exposure(self) -> int:
        return (1 if self.scalp_position else 0) + (1 if self.hold_position else 0)

    @property
    def scalp_available(self) -> bool:
        return not self.did_scalp and self.scalp_position is None and not self.scalp_closed

    @property
    def hold_available(self) -> bool:
        return not self.did_hold and self.hold_position is None


@dataclass(frozen=True)
class TickSnapshot:
    """Already-fetched inputs for one strategy tick."""

    slug: str | None
    t_sec: float | None = None
    sigma: float | None = None
    spread: float | None = None
    liquidity: float | None = None
    edge_up: float | None = None
    edge_down: float | None = None
    p_model_up: float | None = None
    p_model_down: float | None = None
    market_up_price: float | None = None
    market_down_price: float | None = None
    reference_price: float | None = None
    secondary_price: float | None = None
    strike: float | None = None
    settlement_time: float | None = None

    def normalized(self) -> "TickSnapshot":
        """Copy with every numeric field coerced to a finite float or None."""
        numeric = {f.name: finite_or_none(getattr(self, f.name)) for f in fields(self) if f.name != "slug"}
        return replace(self, **numeric)

    def market_price(self, side: Side) -> float | None:
        return self.market_up_price if side is Side.UP else self.market_down_price

    def model_prob(self, side: Side) -> float | None:
        return self.p_model_up if side is Side.UP else self.p_model_down


@dataclass(frozen=True)
class RiskGates:
    sigma_ok: bool
    spread_ok: bool
    scalp_spread_ok: bool
    liquidity_ok: bool

    @classmethod
    def evaluate(cls, snap: TickSnapshot) -> "RiskGates":
        return cls(
            sigma_ok=snap.sigma is not None and snap.sigma > 0,
            spread_ok=snap.spread is not None and snap.spread <= MAX_SPREAD,
            scalp_spread_ok=snap.spread is not None and snap.spread <= MAX_SCALP_SPREAD,
            liquidity_ok=snap.liquidity is not None and snap.liquidity >= MIN_LIQUIDITY,
        )

    @property
    def general_ok(self) -> bool:
        return self.sigma_ok and self.spread_ok and self.liquidity_ok


@dataclass(frozen=True)
class StrategyDecision:
    phase: Phase
    note: str
    actions: List[TradeAction] = field(default_factory=list)


class StrategyEngine:
    """Owns the per-slug state store and runs the rule chain.

    Parameters
    ----------
    size_usd:
        Notional attached to every emitted action.
    max_states:
        Cap on tracked slugs; least recently used are dropped first.
    eviction_grace_seconds:
        States are dropped this long after their market's settlement.
    clock:
        Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        size_usd: float = 1.0,
        max_states: int = 64,
        eviction_grace_seconds: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._size_usd = size_usd
        self._max_states = max(1, max_states)
        self._grace = eviction_grace_seconds
        self._clock = clock
        self._states: "OrderedDict[str, StrategyState]" = OrderedDict()

    @property
    def states(self) -> Dict[str, StrategyState]:
        return dict(self._states)

    def get_state(self, slug: str) -> StrategyState:
        """Return the state for *slug*, creating it on first reference."""
        st = self._states.get(slug)
        if st is None:
            st = StrategyState()
            self._states[slug] = st
            while len(self._states) > self._max_states:
                evicted, _ = self._states.popitem(last=False)
                LOGGER.debug("StrategyEngine: evicted %s (capacity)", evicted)
        else:
            self._states.move_to_end(slug)
        return st

    def evict_settled(self, now: float | None = None) -> int:
        """Drop states whose market settled more than the grace period ago."""
        ts = self._clock() if now is None else now
        expired = [
            slug for slug, st in self._states.items()
            if st.settlement_time is not None and st.settlement_time + self._grace < ts
        ]
        for slug in expired:
            del self._states[slug]
        if expired:
            LOGGER.debug("StrategyEngine: evicted %d settled market(s)", len(expired))
        return len(expired)

    # ── Decision ──────────────────────────────────────────────────

    def decide(self, snapshot: TickSnapshot) -> StrategyDecision:
        snap = snapshot.normalized()
        if not snap.slug:
            return StrategyDecision(phase=Phase.UNKNOWN, note="missing_market")
        if snap.t_sec is None or snap.t_sec <= 0:
            return StrategyDecision(phase=Phase.CLOSED, note="market_ended")

        now = self._clock()
        self.evict_settled(now)
        st = self.get_state(snap.slug)
        if snap.settlement_time is not None:
            st.settlement_time = snap.settlement_time

        phase = phase_from_seconds(snap.t_sec)
        gates = RiskGates.evaluate(snap)
        actions: List[TradeAction] = []

        self._exit_scalp(st, snap, now, actions)
        self._arm_lead_signal(st, snap, gates, now)
        self._confirm_lead_signal(st, snap, gates, now, actions)
        self._threshold_scalp(st, snap, gates, phase, now, actions)
        self._forced_scalp(st, snap, gates, now, actions)
        self._dominance_hold(st, snap, gates, now, actions)
        self._forced_hold(st, snap, gates, now, actions)

        for action in actions:
            LOGGER.info("StrategyEngine: %s %s (t=%.0fs)", snap.slug, action.describe(), snap.t_sec)

        return StrategyDecision(
            phase=phase,
            note="OK" if gates.general_ok else "RISK_FILTER",
            actions=actions,
        )

    # ── Position helpers ──────────────────────────────────────────

    def _action(self, type_: ActionType, tag: PositionTag, side: Side, reason: str) -> TradeAction:
        return TradeAction(type=type_, tag=tag, side=side, size_usd=self._size_usd, reason=reason)

    def _open(
        self,
        st: StrategyState,
        tag: PositionTag,
        side: Side,
        snap: TickSnapshot,
        reason: str,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        pos = Position(side=side, entry_price=snap.market_price(side), opened_at=now, tag=tag)
        if tag is PositionTag.SCALP:
            st.did_scalp = True
            st.scalp_position = pos
            st.pending_lead_signal = None
        else:
            st.did_hold = True
            st.hold_position = pos
        actions.append(self._action(ActionType.OPEN, tag, side, reason))

    # ── Rules ─────────────────────────────────────────────────────

    def _exit_scalp(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        pos = st.scalp_position
        if pos is None:
            return

        reason: str | None = None
        cur = snap.market_price(pos.side)
        if cur is not None and pos.entry_price is not None:
            pnl = cur - pos.entry_price
            if pnl >= SCALP_TAKE_PROFIT:
                reason = "TP_+0.02"
            elif pnl <= SCALP_STOP_LOSS:
                reason = "SL_-0.02"
        if reason is None and now - pos.opened_at > SCALP_TIMEOUT_SECONDS:
            reason = "TIMEOUT_120s"
        if reason is None:
            return

        actions.append(self._action(ActionType.CLOSE, PositionTag.SCALP, pos.side, reason))
        st.scalp_position = None
        st.scalp_closed = True

    def _arm_lead_signal(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        now: float,
    ) -> None:
        if not st.scalp_available:
            return
        if not (gates.sigma_ok and gates.spread_ok and gates.liquidity_ok):
            return
        ref, lead, k = snap.reference_price, snap.secondary_price, snap.strike
        if ref is None or lead is None or k is None or k <= 0:
            return

        crossed_up = lead >= k and ref < k
        crossed_down = lead < k and ref >= k
        if not (crossed_up or crossed_down):
            return
        if abs((lead - k) / k) <= LEAD_MIN_MOVE:
            return

        side = Side.UP if crossed_up else Side.DOWN
        # Re-arming on every crossing tick restarts the window and may flip the side.
        st.pending_lead_signal = PendingSignal(side=side, armed_at=now)
        LOGGER.debug("StrategyEngine: %s lead signal armed %s", snap.slug, side.value)

    def _confirm_lead_signal(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        pending = st.pending_lead_signal
        if pending is None:
            return
        if now - pending.armed_at > LEAD_WINDOW_SECONDS or not st.scalp_available:
            st.pending_lead_signal = None
            return

        ref, k = snap.reference_price, snap.strike
        if ref is None or k is None:
            return
        confirmed = ref >= k if pending.side is Side.UP else ref < k
        if not confirmed:
            return
        if snap.t_sec > SCALP_MIN_T_SEC and gates.scalp_spread_ok and st.exposure < MAX_EXPOSURE:  # type: ignore[operator]
            self._open(st, PositionTag.SCALP, pending.side, snap, "LEAD_CONFIRM", now, actions)

    def _threshold_scalp(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        phase: Phase,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        if not st.scalp_available or snap.t_sec <= SCALP_MIN_T_SEC:  # type: ignore[operator]
            return
        if not (gates.scalp_spread_ok and gates.liquidity_ok and gates.sigma_ok):
            return
        if st.exposure >= MAX_EXPOSURE:
            return

        th = edge_threshold(phase)
        if snap.edge_up is not None and snap.edge_up >= th:
            self._open(st, PositionTag.SCALP, Side.UP, snap, f"EDGE_UP_{th}", now, actions)
        elif snap.edge_down is not None and snap.edge_down >= th:
            self._open(st, PositionTag.SCALP, Side.DOWN, snap, f"EDGE_DOWN_{th}", now, actions)

    def _forced_scalp(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        t = snap.t_sec
        if not st.scalp_available or not (SCALP_MIN_T_SEC < t <= FORCED_SCALP_T_SEC):  # type: ignore[operator]
            return
        if not gates.general_ok or st.exposure >= MAX_EXPOSURE:
            return

        up = snap.edge_up if snap.edge_up is not None else -math.inf
        down = snap.edge_down if snap.edge_down is not None else -math.inf
        side = Side.UP if up >= down else Side.DOWN
        self._open(st, PositionTag.SCALP, side, snap, "FORCED_SCALP_150", now, actions)

    def _dominance_hold(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        if not st.hold_available or snap.t_sec > HOLD_T_SEC:  # type: ignore[operator]
            return
        if not gates.general_ok or st.exposure >= MAX_EXPOSURE:
            return
        ref, k = snap.reference_price, snap.strike
        if ref is None or k is None:
            return

        vol_window = snap.sigma * math.sqrt(snap.t_sec)  # type: ignore[operator]
        distance = ref - k
        dominant = Side.UP if distance >= 0 else Side.DOWN
        dominant_prob = snap.model_prob(dominant)

        if abs(distance) > DOMINANCE_VOL_MULTIPLE * vol_window and (dominant_prob or 0.0) >= DOMINANCE_MIN_PROB:
            self._open(st, PositionTag.HOLD, dominant, snap, "HOLD_DOM_0.97", now, actions)
        elif (snap.p_model_up or 0.0) >= HOLD_MIN_PROB:
            self._open(st, PositionTag.HOLD, Side.UP, snap, "HOLD_PUP_0.55", now, actions)
        elif (snap.p_model_down or 0.0) >= HOLD_MIN_PROB:
            self._open(st, PositionTag.HOLD, Side.DOWN, snap, "HOLD_PDOWN_0.55", now, actions)

    def _forced_hold(
        self,
        st: StrategyState,
        snap: TickSnapshot,
        gates: RiskGates,
        now: float,
        actions: List[TradeAction],
    ) -> None:
        if not st.hold_available or snap.t_sec > FORCED_HOLD_T_SEC:  # type: ignore[operator]
            return
        if not gates.general_ok or st.exposure >= MAX_EXPOSURE:
            return

        up = snap.p_model_up if snap.p_model_up is not None else -math.inf
        down = snap.p_model_down if snap.p_model_down is not None else -math.inf
        side = Side.UP if up >= down else Side.DOWN
        self._open(st, PositionTag.HOLD, side, snap, "FORCED_HOLD_45", now, actions)
