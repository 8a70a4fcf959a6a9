"""
Signal Engine

Top-level per-instrument controller. Each bar passes, once and in order,
through the session tracker, indicator context, bias/momentum estimator,
delta approximator/divergence detector, risk engine and trade state
machine. The state machine is the only stage with external effects
(order instructions).

Processing is a synchronous fold: one bar is fully processed before the
next is admitted. Instruments are independent; MultiSymbolEngine keeps one
SignalEngine per symbol with no shared mutable state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .bars import Bar, ExchangeClock, HigherTimeframes, parse_time_of_day, validate_bar
from .bias import BiasMomentumEstimator, BiasState, MomentumReading
from .config import EngineConfig
from .context import IndicatorContext, IndicatorState
from .delta import DeltaApproximator, DeltaState, DivergenceDetector, DivergenceReading
from .errors import OutOfOrderBarError
from .orders import OrderInstruction, Side
from .risk import AdaptiveRiskEngine
from .sessions import SessionSnapshot, SessionTracker
from .trade_state import BarContext, TradeStateMachine

logger = logging.getLogger(__name__)

OrderCallback = Callable[[OrderInstruction], Any]


@dataclass(frozen=True)
class BarSnapshot:
    """Per-bar diagnostic output for charting/alerting. Not authoritative."""
    symbol: str
    time: int
    close: float
    session: SessionSnapshot
    indicators: IndicatorState
    bias: BiasState
    momentum: MomentumReading
    delta: DeltaState
    divergence: DivergenceReading
    risk: Dict[str, Optional[dict]]
    status: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        orb = self.session.opening_range
        return {
            'symbol': self.symbol,
            'time': self.time,
            'close': self.close,
            'in_session': self.session.in_session,
            'orb_high': orb.high,
            'orb_low': orb.low,
            'pivot': self.session.pivot,
            'fast_ema': self.indicators.fast_ema,
            'slow_ema': self.indicators.slow_ema,
            'vwap': self.indicators.vwap,
            'atr': self.indicators.blended_atr,
            'bias_score': self.bias.score,
            'bias': self.bias.label,
            'momentum': self.momentum.score,
            'delta_ratio': self.delta.ratio,
            'cum_delta': self.delta.cumulative,
            'smoothed_delta': self.delta.smoothed,
            'delta_roc': self.delta.roc,
            'bearish_div': self.divergence.bearish.active,
            'bearish_div_strength': self.divergence.bearish.strength,
            'bullish_div': self.divergence.bullish.active,
            'bullish_div_strength': self.divergence.bullish.strength,
            'long_status': self.status['long'],
            'short_status': self.status['short'],
            'long_stop': (self.risk['long'] or {}).get('trailing_stop'),
            'short_stop': (self.risk['short'] or {}).get('trailing_stop'),
        }


@dataclass
class BarResult:
    orders: List[OrderInstruction] = field(default_factory=list)
    snapshot: Optional[BarSnapshot] = None


class SignalEngine:
    """
    Trading-signal engine for one instrument.

    Usage:
        engine = SignalEngine('SPY', EngineConfig())
        for bar in feed:
            result = engine.process_bar(bar)
            for order in result.orders:
                broker.submit(order)
    """

    def __init__(self, symbol: str = '', config: Optional[EngineConfig] = None):
        self.symbol = symbol
        self.config = (config or EngineConfig()).validate()

        ses = self.config.sessions
        self.clock = ExchangeClock(ses.timezone)
        self.sessions = SessionTracker(ses, self.clock)
        self.frames = HigherTimeframes(self.clock, self.config.max_history)
        self.context = IndicatorContext(self.config.indicators, self.clock, self.config.max_history)
        self.bias = BiasMomentumEstimator(self.config.momentum)
        self.delta = DeltaApproximator(self.config.delta)
        self.divergence = DivergenceDetector(self.config.delta, symbol)
        self.risk = AdaptiveRiskEngine(self.config.risk)
        self.trades = TradeStateMachine(self.config, self.risk, symbol)

        self._entry_start = parse_time_of_day(ses.entry_start)
        self._entry_end = parse_time_of_day(ses.entry_end)
        self._time_exit = parse_time_of_day(ses.time_exit)

        self._last_time: Optional[int] = None
        self._bar_count = 0
        self._order_callbacks: List[OrderCallback] = []
        self._pending_tasks: Set[asyncio.Task] = set()

        logger.info(f"SignalEngine initialized for {symbol or '<unnamed>'}")

    def register_order_callback(self, callback: OrderCallback):
        """
        Register an execution sink. Receives each OrderInstruction.

        A coroutine callback is scheduled on the running event loop, or run
        to completion before the fold continues when no loop is running.
        """
        self._order_callbacks.append(callback)

    def process_bar(self, bar: Union[Bar, Dict[str, Any]]) -> BarResult:
        """
        Process one bar and return the orders and diagnostic snapshot.

        Raises:
            BarError: malformed bar
            OutOfOrderBarError: bar time not after the previous bar; the
                engine state is left untouched
        """
        bar = Bar.from_dict(bar) if isinstance(bar, dict) else validate_bar(bar)

        if self._last_time is not None and bar.time <= self._last_time:
            raise OutOfOrderBarError(self.symbol, self._last_time, bar.time)
        self._last_time = bar.time
        self._bar_count += 1

        # 1. Sessions
        session = self.sessions.update(bar)
        sod = session.seconds_of_day

        # 2. Indicators + bias/momentum
        frames = self.frames.update(bar)
        indicators = self.context.update(bar, frames, session.in_session)
        bias, momentum = self.bias.update(bar, frames, indicators)

        # 3. Delta + divergence
        delta = self.delta.update(bar, session.is_session_open)
        divergence = self.divergence.update(bar, delta.smoothed, session.in_session)

        # 4. Risk zones
        orb = session.opening_range
        zones = self.risk.zones(indicators.blended_atr, orb.high, orb.low, indicators.ema_slope_norm)

        # 5. Trade state machine
        ctx = BarContext(
            bar=bar,
            session=session,
            indicators=indicators,
            bias=bias,
            momentum=momentum,
            delta=delta,
            divergence=divergence,
            zones=zones,
            in_entry_window=self._entry_start <= sod < self._entry_end,
            past_time_exit=sod >= self._time_exit,
        )
        orders = self.trades.on_bar(ctx)
        if orders:
            self._dispatch(orders)

        return BarResult(orders=orders, snapshot=self._snapshot(bar, ctx))

    def _snapshot(self, bar: Bar, ctx: BarContext) -> BarSnapshot:
        sides = self.trades.sides
        return BarSnapshot(
            symbol=self.symbol,
            time=bar.time,
            close=bar.close,
            session=ctx.session,
            indicators=ctx.indicators,
            bias=ctx.bias,
            momentum=ctx.momentum,
            delta=ctx.delta,
            divergence=ctx.divergence,
            risk={
                side.value: sides[side].risk.to_dict() if sides[side].risk else None
                for side in (Side.LONG, Side.SHORT)
            },
            status={side.value: sides[side].status.value for side in (Side.LONG, Side.SHORT)},
        )

    def _dispatch(self, orders: List[OrderInstruction]):
        for order in orders:
            for cb in self._order_callbacks:
                try:
                    result = cb(order)
                    if asyncio.iscoroutine(result):
                        self._schedule(result)
                except Exception as e:
                    logger.error(f"Error in order callback for {self.symbol}: {e}", exc_info=True)

    def _schedule(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._handle_task_done)

    def _handle_task_done(self, task: asyncio.Task):
        self._pending_tasks.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Error in async order callback for {self.symbol}: {e}", exc_info=True)

    @property
    def bar_count(self) -> int:
        return self._bar_count

    def reset(self):
        """Drop all carried state (history, sessions, positions)."""
        self.sessions.reset()
        self.frames.reset()
        self.context.reset()
        self.delta.reset()
        self.divergence.reset()
        self.trades.reset()
        self._last_time = None
        self._bar_count = 0
        logger.info(f"SignalEngine reset for {self.symbol or '<unnamed>'}")


class MultiSymbolEngine:
    """One independent SignalEngine per symbol, created on first bar."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = (config or EngineConfig()).validate()
        self._engines: Dict[str, SignalEngine] = {}

    def get_or_create(self, symbol: str) -> SignalEngine:
        if symbol not in self._engines:
            self._engines[symbol] = SignalEngine(symbol, self.config)
        return self._engines[symbol]

    def process_bar(self, symbol: str, bar: Union[Bar, Dict[str, Any]]) -> BarResult:
        return self.get_or_create(symbol).process_bar(bar)

    @property
    def symbols(self) -> List[str]:
        return list(self._engines)

    def reset_all(self):
        for engine in self._engines.values():
            engine.reset()
