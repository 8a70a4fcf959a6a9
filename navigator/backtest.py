"""
Backtest the signal engine on historical bars

Usage:
    python run.py --bars data/SPY_1min.csv --symbol SPY

Replays a bar file through SignalEngine. Every order is filled at the
open of the bar after the one that produced it (the engine's
next_bar_open rule). A position still open when the data ends is closed
at the last close.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from .bars import Bar
from .config import EngineConfig
from .engine import BarSnapshot, SignalEngine
from .errors import BarError, OutOfOrderBarError
from .indicators import IndicatorManager
from .orders import OrderAction, OrderInstruction, Side

logger = logging.getLogger(__name__)

END_OF_DATA = "end_of_data"


@dataclass
class BacktestTrade:
    """A single round trip, in fill prices."""
    side: Side
    pattern: str
    signal_time: int
    entry_time: int
    entry_price: float
    initial_stop: float
    size: int
    exit_time: Optional[int] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None
    mfe: float = 0.0  # Max favorable excursion (R)
    mae: float = 0.0  # Max adverse excursion (R)

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    @property
    def initial_risk(self) -> float:
        return abs(self.entry_price - self.initial_stop) or 0.0001

    @property
    def pnl_points(self) -> float:
        if self.exit_price is None:
            return 0.0
        return (self.exit_price - self.entry_price) * self.side.sign

    @property
    def pnl(self) -> float:
        return self.pnl_points * self.size

    @property
    def r_multiple(self) -> float:
        return self.pnl_points / self.initial_risk

    def track_excursion(self, bar: Bar):
        if self.side is Side.LONG:
            favorable, adverse = bar.high - self.entry_price, self.entry_price - bar.low
        else:
            favorable, adverse = self.entry_price - bar.low, bar.high - self.entry_price
        self.mfe = max(self.mfe, favorable / self.initial_risk)
        self.mae = max(self.mae, adverse / self.initial_risk)

    def to_dict(self) -> dict:
        return {
            'side': self.side.value,
            'pattern': self.pattern,
            'signal_time': self.signal_time,
            'entry_time': self.entry_time,
            'entry_price': self.entry_price,
            'initial_stop': self.initial_stop,
            'exit_time': self.exit_time,
            'exit_price': self.exit_price,
            'exit_reason': self.exit_reason,
            'size': self.size,
            'pnl': self.pnl,
            'r_multiple': self.r_multiple,
            'mfe': self.mfe,
            'mae': self.mae,
        }


@dataclass
class PatternStats:
    """Stats for one entry pattern."""
    name: str
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_r: float = 0.0
    total_pnl: float = 0.0
    win_rate: float = 0.0
    avg_r: float = 0.0
    avg_mfe: float = 0.0
    avg_mae: float = 0.0
    exits: Dict[str, int] = field(default_factory=dict)

    def add(self, trade: BacktestTrade):
        self.total_trades += 1
        n = self.total_trades
        self.total_r += trade.r_multiple
        self.total_pnl += trade.pnl
        self.avg_mfe = (self.avg_mfe * (n - 1) + trade.mfe) / n
        self.avg_mae = (self.avg_mae * (n - 1) + trade.mae) / n
        if trade.pnl_points > 0:
            self.wins += 1
        elif trade.pnl_points < 0:
            self.losses += 1
        self.exits[trade.exit_reason] = self.exits.get(trade.exit_reason, 0) + 1
        self.win_rate = self.wins / n * 100
        self.avg_r = self.total_r / n


@dataclass
class BacktestResult:
    symbol: str
    bars: int
    orders: List[OrderInstruction]
    trades: List[BacktestTrade]
    snapshots: List[BarSnapshot]

    @property
    def stats(self) -> Dict[str, PatternStats]:
        stats: Dict[str, PatternStats] = {}
        for trade in self.trades:
            stats.setdefault(trade.pattern, PatternStats(trade.pattern)).add(trade)
        return stats


# ═══════════════════════════════════════════════════════════════════════════
# DATA LOADING
# ═══════════════════════════════════════════════════════════════════════════

def load_bars_csv(path: Union[str, Path], timezone: str = 'US/Eastern') -> List[Bar]:
    """
    Load OHLCV bars from CSV.

    The time column may be 'time' or 'timestamp' (epoch seconds) or
    'datetime'/'date' (parsed; naive values are taken as exchange-local).

    Raises:
        BarError: file has no usable time column or a malformed row
        OutOfOrderBarError: a row's time is not after the row above it
    """
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]

    if 'time' not in df.columns:
        if 'timestamp' in df.columns:
            df = df.rename(columns={'timestamp': 'time'})
        else:
            source = next((c for c in ('datetime', 'date') if c in df.columns), None)
            if source is None:
                raise BarError(f"{path}: no time/timestamp/datetime column")
            dt = pd.to_datetime(df[source])
            if dt.dt.tz is None:
                dt = dt.dt.tz_localize(timezone)
            epoch = pd.Timestamp('1970-01-01', tz='UTC')
            df['time'] = (dt.dt.tz_convert('UTC') - epoch) // pd.Timedelta(seconds=1)

    bars = [Bar.from_dict(row) for row in df.to_dict('records')]
    for i in range(1, len(bars)):
        if bars[i].time <= bars[i - 1].time:
            logger.error(f"{path}: row {i + 1} is not after the row above it")
            raise OutOfOrderBarError('', bars[i - 1].time, bars[i].time)
    logger.info(f"Loaded {len(bars)} bars from {path}")
    return bars


# ═══════════════════════════════════════════════════════════════════════════
# REPLAY
# ═══════════════════════════════════════════════════════════════════════════

def run_backtest(bars: Iterable[Union[Bar, dict]], config: Optional[EngineConfig] = None,
                 symbol: str = '') -> BacktestResult:
    """
    Replay bars through a fresh engine.

    Args:
        bars: Bars (or bar dicts) in time order
        config: Engine configuration (defaults when None)
        symbol: Instrument symbol stamped on orders
    """
    engine = SignalEngine(symbol, config)
    orders: List[OrderInstruction] = []
    trades: List[BacktestTrade] = []
    snapshots: List[BarSnapshot] = []
    open_trades: Dict[Side, BacktestTrade] = {}
    pending: List[OrderInstruction] = []
    last_bar: Optional[Bar] = None
    count = 0

    for raw in bars:
        bar = Bar.from_dict(raw) if isinstance(raw, dict) else raw

        for order in pending:
            _fill(order, bar, open_trades, trades)
        pending = []

        for trade in open_trades.values():
            trade.track_excursion(bar)

        result = engine.process_bar(bar)
        snapshots.append(result.snapshot)
        orders.extend(result.orders)
        pending = list(result.orders)

        last_bar = bar
        count += 1
        if count % 10000 == 0:
            logger.info(f"  Processed {count} bars, {len(orders)} orders so far...")

    if last_bar is not None:
        for side, trade in list(open_trades.items()):
            trade.exit_time = last_bar.time
            trade.exit_price = last_bar.close
            trade.exit_reason = END_OF_DATA
            del open_trades[side]
        if pending:
            logger.warning(f"{len(pending)} order(s) on the final bar were never filled")

    logger.info(f"Backtest complete: {len(trades)} trades, {len(orders)} orders across {count} bars")
    return BacktestResult(symbol=symbol, bars=count, orders=orders, trades=trades, snapshots=snapshots)


def _fill(order: OrderInstruction, bar: Bar, open_trades: Dict[Side, BacktestTrade],
          trades: List[BacktestTrade]):
    if order.action is OrderAction.OPEN:
        trade = BacktestTrade(
            side=order.side,
            pattern=order.tag,
            signal_time=order.bar_time,
            entry_time=bar.time,
            entry_price=bar.open,
            initial_stop=order.stop_price,
            size=order.size,
        )
        open_trades[order.side] = trade
        trades.append(trade)
        return

    trade = open_trades.pop(order.side, None)
    if trade is None:
        logger.warning(f"Close order for {order.side.value} with no open trade at {order.bar_time}")
        return
    trade.exit_time = bar.time
    trade.exit_price = bar.open
    trade.exit_reason = order.tag


# ═══════════════════════════════════════════════════════════════════════════
# REPORTING
# ═══════════════════════════════════════════════════════════════════════════

def snapshots_to_frame(snapshots: List[BarSnapshot], timezone: str = 'US/Eastern') -> pd.DataFrame:
    """Per-bar diagnostics as a DataFrame, with an exchange-local datetime column."""
    df = pd.DataFrame([s.to_dict() for s in snapshots])
    if not df.empty:
        df['datetime'] = pd.to_datetime(df['time'], unit='s', utc=True).dt.tz_convert(timezone)
    return df


def trades_to_frame(trades: List[BacktestTrade]) -> pd.DataFrame:
    return pd.DataFrame([t.to_dict() for t in trades])


def bars_to_frame(bars: List[Bar]) -> pd.DataFrame:
    return pd.DataFrame([asdict(b) for b in bars])


def chart_indicators(config: EngineConfig) -> IndicatorManager:
    """Vectorised indicators with the engine's own parameters."""
    ses = config.sessions
    ind = config.indicators
    delta = config.delta
    session = {
        'session_open': ses.session_open,
        'session_close': ses.session_close,
        'timezone': ses.timezone,
    }

    manager = IndicatorManager()
    manager.add_indicator('ema', {'period': ind.fast_ema_period})
    manager.add_indicator('ema', {'period': ind.slow_ema_period})
    manager.add_indicator('vwap', session)
    manager.add_indicator('volume_ma', {
        'period': ind.volume_ma_period,
        'spike_multiplier': ind.volume_spike_multiplier,
    })
    manager.add_indicator('atr', {'period': ind.atr_period})
    manager.add_indicator('delta')
    manager.add_indicator('cumulative_delta', {
        'smoothing': delta.smoothing_period,
        'session_open': ses.session_open,
        'timezone': ses.timezone,
    })
    manager.add_indicator('delta_divergence', {
        'lookback': delta.divergence_lookback,
        'threshold': delta.divergence_threshold,
        'smoothing': delta.smoothing_period,
        **session,
    })
    return manager


def chart_frame(bars: List[Bar], snapshots: List[BarSnapshot], config: EngineConfig) -> pd.DataFrame:
    """
    OHLCV with the vectorised indicator columns ('EMA_9_value', ...),
    joined on time to the per-bar engine snapshot.
    """
    snaps = snapshots_to_frame(snapshots, config.sessions.timezone)
    if not bars:
        return snaps
    frame = chart_indicators(config).calculate_frame(bars_to_frame(bars))
    return frame.merge(snaps.drop(columns=['close']), on='time', how='left')


def print_results(result: BacktestResult):
    """Print backtest results as a table."""
    stats = result.stats
    print("\n" + "=" * 90)
    print(f"BACKTEST RESULTS - {result.symbol or 'unnamed'} ({result.bars} bars)")
    print("=" * 90)
    print(f"{'Pattern':<16} {'Trades':>8} {'Win%':>8} {'Wins':>6} {'Losses':>8} {'Avg R':>8} {'Total R':>10} {'P&L':>12}")
    print("-" * 90)

    total_trades = 0
    total_wins = 0
    total_r = 0.0
    total_pnl = 0.0

    for s in sorted(stats.values(), key=lambda x: x.total_trades, reverse=True):
        print(
            f"{s.name:<16} {s.total_trades:>8} {s.win_rate:>7.1f}% "
            f"{s.wins:>6} {s.losses:>8} {s.avg_r:>+7.2f}R {s.total_r:>+9.1f}R {s.total_pnl:>+12.2f}"
        )
        total_trades += s.total_trades
        total_wins += s.wins
        total_r += s.total_r
        total_pnl += s.total_pnl

    print("-" * 90)
    overall_wr = (total_wins / total_trades * 100) if total_trades > 0 else 0
    overall_avg_r = total_r / total_trades if total_trades > 0 else 0
    print(f"{'TOTAL':<16} {total_trades:>8} {overall_wr:>7.1f}% {total_wins:>6} {'':>8} "
          f"{overall_avg_r:>+7.2f}R {total_r:>+9.1f}R {total_pnl:>+12.2f}")
    print("=" * 90)

    exits: Dict[str, int] = {}
    for s in stats.values():
        for reason, n in s.exits.items():
            exits[reason] = exits.get(reason, 0) + n
    if exits:
        print("Exits: " + ", ".join(f"{k}={v}" for k, v in sorted(exits.items())))
