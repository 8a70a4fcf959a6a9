"""
Trade State Machine

Per side: IDLE -> ENTERED -> EXITED, re-armed to IDLE at session close.

Entry (once per side per session):
- side armed by a breakout: close beyond the opening-range extreme inside
  the session with matching bias
- inside the entry window, side not locked, bias matches the side
- at least one pattern: ORB retest, EMA catch-up, VWAP retest
- no opposing divergence on the same bar

Exit (from the bar after entry, while ENTERED): stop touch, target-2,
divergence against the position with close back through the fast EMA,
structure break, end-of-day time cutoff. Any one is sufficient.

The lock clears at session close whether or not the position has exited.
A side that is still ENTERED at that point keeps its position and cannot
re-enter until it exits, so positions on one side never overlap.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .bars import Bar
from .bias import BiasState, MomentumReading
from .config import EngineConfig
from .context import IndicatorState
from .delta import DeltaState, DivergenceReading
from .orders import EntryPattern, ExitReason, OrderAction, OrderInstruction, Side
from .risk import AdaptiveRiskEngine, EntryZones, RiskLevels
from .sessions import SessionSnapshot

logger = logging.getLogger(__name__)


class TradeStatus(Enum):
    IDLE = "IDLE"
    ENTERED = "ENTERED"
    EXITED = "EXITED"


@dataclass
class SideState:
    side: Side
    status: TradeStatus = TradeStatus.IDLE
    locked: bool = False
    armed: bool = False
    risk: Optional[RiskLevels] = None
    entry_bar_time: Optional[int] = None
    entry_pattern: Optional[EntryPattern] = None
    exit_reason: Optional[ExitReason] = None

    @property
    def in_position(self) -> bool:
        return self.status is TradeStatus.ENTERED


@dataclass(frozen=True)
class BarContext:
    """Everything the state machine reads for one bar."""
    bar: Bar
    session: SessionSnapshot
    indicators: IndicatorState
    bias: BiasState
    momentum: MomentumReading
    delta: DeltaState
    divergence: DivergenceReading
    zones: Optional[EntryZones]
    in_entry_window: bool
    past_time_exit: bool


class TradeStateMachine:
    """Entry/exit controller for one instrument, both sides."""

    def __init__(self, config: EngineConfig, risk_engine: AdaptiveRiskEngine, symbol: str = ''):
        self.config = config
        self.risk_engine = risk_engine
        self.symbol = symbol
        self.sides: Dict[Side, SideState] = {
            Side.LONG: SideState(Side.LONG),
            Side.SHORT: SideState(Side.SHORT),
        }

    def on_bar(self, ctx: BarContext) -> List[OrderInstruction]:
        orders: List[OrderInstruction] = []

        self._update_arms(ctx)

        for side in (Side.LONG, Side.SHORT):
            state = self.sides[side]

            if state.in_position and state.entry_bar_time != ctx.bar.time:
                order = self._evaluate_exit(state, ctx)
                if order:
                    orders.append(order)

            order = self._evaluate_entry(state, ctx)
            if order:
                orders.append(order)

        if ctx.session.is_session_close:
            self._reset_session(ctx.bar)

        return orders

    # ── Entry ──

    def _update_arms(self, ctx: BarContext):
        orb = ctx.session.opening_range
        if not ctx.session.in_session or not orb.is_set:
            return
        close = ctx.bar.close
        long_state = self.sides[Side.LONG]
        short_state = self.sides[Side.SHORT]

        if not long_state.armed and close > orb.high and ctx.bias.bullish:
            long_state.armed = True
            logger.info(f"[{self.symbol}] Long breakout armed: close {close:.2f} > OR high {orb.high:.2f}")
        if not short_state.armed and close < orb.low and ctx.bias.bearish:
            short_state.armed = True
            logger.info(f"[{self.symbol}] Short breakout armed: close {close:.2f} < OR low {orb.low:.2f}")

    def entry_patterns(self, side: Side, ctx: BarContext) -> List[EntryPattern]:
        """Patterns firing on this bar for `side`, in priority order."""
        z = ctx.zones
        if z is None:
            return []

        bar = ctx.bar
        ind = ctx.indicators
        orb = ctx.session.opening_range
        fast = ind.fast_ema
        vwap = ind.vwap
        min_momentum = self.config.momentum.min_momentum_for_catchup
        patterns = []

        if side is Side.LONG:
            if (orb.is_set and z.orb_long_bottom <= bar.low <= z.orb_long_top
                    and bar.close > orb.high and ind.volume_confirmation):
                patterns.append(EntryPattern.ORB_RETEST)
            if (fast is not None
                    and fast - z.ema_tolerance <= bar.low <= fast + z.ema_catchup_width
                    and bar.close > fast
                    and ctx.momentum.score >= min_momentum
                    and ind.ema_trend == 1):
                patterns.append(EntryPattern.EMA_CATCHUP)
            if (vwap is not None and fast is not None
                    and bar.low <= vwap + z.vwap_tolerance
                    and bar.close > vwap and bar.close > fast
                    and ctx.bias.bullish and ind.volume_spike):
                patterns.append(EntryPattern.VWAP_RETEST)
        else:
            if (orb.is_set and z.orb_short_bottom <= bar.high <= z.orb_short_top
                    and bar.close < orb.low and ind.volume_confirmation):
                patterns.append(EntryPattern.ORB_RETEST)
            if (fast is not None
                    and fast - z.ema_catchup_width <= bar.high <= fast + z.ema_tolerance
                    and bar.close < fast
                    and ctx.momentum.score >= min_momentum
                    and ind.ema_trend == -1):
                patterns.append(EntryPattern.EMA_CATCHUP)
            if (vwap is not None and fast is not None
                    and bar.high >= vwap - z.vwap_tolerance
                    and bar.close < vwap and bar.close < fast
                    and ctx.bias.bearish and ind.volume_spike):
                patterns.append(EntryPattern.VWAP_RETEST)

        return patterns

    def _evaluate_entry(self, state: SideState, ctx: BarContext) -> Optional[OrderInstruction]:
        side = state.side
        if state.locked or state.in_position or not state.armed:
            return None
        if not ctx.in_entry_window or ctx.zones is None:
            return None

        bias_ok = ctx.bias.bullish if side is Side.LONG else ctx.bias.bearish
        if not bias_ok:
            return None

        patterns = self.entry_patterns(side, ctx)
        if not patterns:
            return None

        opposing = ctx.divergence.bearish if side is Side.LONG else ctx.divergence.bullish
        if opposing.active:
            logger.info(
                f"[{self.symbol}] {side.value} entry ({', '.join(p.value for p in patterns)}) "
                f"vetoed by opposing divergence"
            )
            return None

        bar = ctx.bar
        pattern = patterns[0]
        levels = self.risk_engine.open_levels(side, bar.close, ctx.zones.atr)

        state.status = TradeStatus.ENTERED
        state.locked = True
        state.risk = levels
        state.entry_bar_time = bar.time
        state.entry_pattern = pattern
        state.exit_reason = None

        logger.info(
            f"[{self.symbol}] ENTRY {side.value.upper()} @ {bar.close:.2f} via {pattern.value} "
            f"(fired: {', '.join(p.value for p in patterns)}) | "
            f"Stop: {levels.initial_stop:.2f} T1: {levels.target1:.2f} T2: {levels.target2:.2f}"
        )

        return OrderInstruction(
            symbol=self.symbol,
            side=side,
            action=OrderAction.OPEN,
            size=self.config.trade_size,
            tag=pattern.value,
            bar_time=bar.time,
            signal_price=bar.close,
            stop_price=levels.initial_stop,
            target_price=levels.target2,
        )

    # ── Exit ──

    def exit_reasons(self, state: SideState, ctx: BarContext) -> List[ExitReason]:
        """All exit conditions true on this bar, in reporting order."""
        levels = state.risk
        bar = ctx.bar
        fast = ctx.indicators.fast_ema
        orb = ctx.session.opening_range
        reasons = []

        if levels.stop_touched(bar.high, bar.low):
            reasons.append(ExitReason.STOP_OUT)
        if levels.target2_touched(bar.high, bar.low):
            reasons.append(ExitReason.TARGET2)

        if state.side is Side.LONG:
            if ctx.divergence.bearish.active and fast is not None and bar.close < fast:
                reasons.append(ExitReason.DIVERGENCE)
            if orb.is_set and fast is not None and bar.close < orb.high and bar.close < fast:
                reasons.append(ExitReason.STRUCTURE_BREAK)
        else:
            if ctx.divergence.bullish.active and fast is not None and bar.close > fast:
                reasons.append(ExitReason.DIVERGENCE)
            if orb.is_set and fast is not None and bar.close > orb.low and bar.close > fast:
                reasons.append(ExitReason.STRUCTURE_BREAK)

        if ctx.past_time_exit:
            reasons.append(ExitReason.TIME_EXIT)

        return reasons

    def _evaluate_exit(self, state: SideState, ctx: BarContext) -> Optional[OrderInstruction]:
        bar = ctx.bar
        levels = state.risk
        previous_stop = levels.trailing_stop
        levels.update_trailing(bar.high, bar.low)
        if levels.trailing_stop != previous_stop:
            logger.info(
                f"[{self.symbol}] {state.side.value} trailing stop "
                f"{previous_stop:.2f} -> {levels.trailing_stop:.2f}"
            )

        reasons = self.exit_reasons(state, ctx)
        if not reasons:
            return None

        reason = reasons[0]
        if len(reasons) > 1:
            logger.info(
                f"[{self.symbol}] Simultaneous exit triggers for {state.side.value}: "
                f"{', '.join(r.value for r in reasons)} (emitting {reason.value})"
            )

        state.status = TradeStatus.EXITED
        state.exit_reason = reason
        logger.info(
            f"[{self.symbol}] EXIT {state.side.value.upper()} @ {bar.close:.2f} ({reason.value}) | "
            f"entry {levels.entry_price:.2f} stop {levels.trailing_stop:.2f}"
        )

        return OrderInstruction(
            symbol=self.symbol,
            side=state.side,
            action=OrderAction.CLOSE,
            size=self.config.trade_size,
            tag=reason.value,
            bar_time=bar.time,
            signal_price=bar.close,
            stop_price=levels.trailing_stop,
        )

    # ── Session boundary ──

    def _reset_session(self, bar: Bar):
        for state in self.sides.values():
            state.locked = False
            state.armed = False
            if state.in_position:
                logger.warning(
                    f"[{self.symbol}] {state.side.value} position still open at session close; "
                    f"lock cleared, re-entry blocked until it exits"
                )
                continue
            state.status = TradeStatus.IDLE
            state.risk = None
            state.entry_bar_time = None
            state.entry_pattern = None
            state.exit_reason = None
        logger.info(f"[{self.symbol}] Entry locks reset at session close")

    def reset(self):
        for side in list(self.sides):
            self.sides[side] = SideState(side)
