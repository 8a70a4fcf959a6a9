"""
Delta Approximation & Divergence Detection

There is no trade-level buy/sell classification in a bar feed, so order
flow is approximated from candle structure:

    delta_ratio = (close - open) / (high - low)      +1 = all buying
    weighted    = delta_ratio * volume

Cumulative delta resets to the bar's weighted delta on the session-open
bar and otherwise accumulates. It is EMA-smoothed and compared against
price extremes over a fixed look-back:

- Bearish divergence: price at a new L-bar high, smoothed delta below
  (1 - threshold) of its L-bar high, inside the trading session
- Bullish divergence: price at a new L-bar low, smoothed delta above
  (1 + threshold) of its L-bar low, inside the trading session

This is a heuristic proxy, not true order flow. The formulas are kept
exactly as specified rather than "improved".
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from .bars import Bar
from .config import DeltaConfig
from .context import ExpAverage, sma

logger = logging.getLogger(__name__)


def delta_ratio(bar: Bar) -> float:
    """Body-to-range ratio in [-1, 1]. Zero when the bar has no range."""
    total_range = bar.high - bar.low
    if total_range <= 0:
        return 0.0
    return (bar.close - bar.open) / total_range


def weighted_delta(bar: Bar) -> float:
    return delta_ratio(bar) * bar.volume


def absorption_signal(bar: Bar) -> float:
    """
    Lower-wick ratio minus upper-wick ratio.

    A long upper wick suggests selling absorption (negative), a long lower
    wick buying absorption (positive).
    """
    total_range = bar.high - bar.low
    if total_range <= 0:
        return 0.0
    upper = bar.high - max(bar.open, bar.close)
    lower = min(bar.open, bar.close) - bar.low
    return (lower - upper) / total_range


@dataclass(frozen=True)
class DeltaState:
    ratio: float
    weighted: float
    cumulative: float
    smoothed: float
    roc: float
    absorption: float
    trend: int


@dataclass(frozen=True)
class DivergenceFlag:
    active: bool = False
    strength: float = 0.0


@dataclass(frozen=True)
class DivergenceReading:
    bearish: DivergenceFlag
    bullish: DivergenceFlag
    volume_climax: bool = False
    bull_exhaustion: bool = False
    bear_exhaustion: bool = False


NO_DIVERGENCE = DivergenceReading(bearish=DivergenceFlag(), bullish=DivergenceFlag())


class DeltaApproximator:
    """Per-bar delta proxy, session cumulative delta and its smoothing."""

    def __init__(self, config: DeltaConfig):
        self.config = config
        self.cumulative = 0.0
        self._smoother = ExpAverage(config.smoothing_period)
        self._smoothed: Deque[float] = deque(maxlen=max(config.delta_period, 2) + 1)

    def update(self, bar: Bar, session_open: bool) -> DeltaState:
        ratio = delta_ratio(bar)
        weighted = ratio * bar.volume

        if session_open:
            self.cumulative = weighted
            logger.debug(f"Cumulative delta reset at {bar.time}: {weighted:.1f}")
        else:
            self.cumulative += weighted

        smoothed = self._smoother.update(self.cumulative)
        self._smoothed.append(smoothed)

        return DeltaState(
            ratio=ratio,
            weighted=weighted,
            cumulative=self.cumulative,
            smoothed=smoothed,
            roc=self._rate_of_change(),
            absorption=absorption_signal(bar),
            trend=self._trend(),
        )

    def _rate_of_change(self) -> float:
        n = self.config.delta_period
        if len(self._smoothed) <= n:
            return 0.0
        base = self._smoothed[-1 - n]
        if base == 0:
            return 0.0
        return (self._smoothed[-1] - base) / abs(base)

    def _trend(self) -> int:
        if len(self._smoothed) < 3:
            return 0
        s0, s1, s2 = self._smoothed[-1], self._smoothed[-2], self._smoothed[-3]
        if s0 > s1 > s2:
            return 1
        if s0 < s1 < s2:
            return -1
        return 0

    def reset(self):
        self.cumulative = 0.0
        self._smoother.reset()
        self._smoothed.clear()


class DivergenceDetector:
    """
    Price/delta divergence over a rolling look-back that includes the
    current bar. Flags stay off until a full look-back is available.
    """

    def __init__(self, config: DeltaConfig, symbol: str = ''):
        self.config = config
        self.symbol = symbol
        lookback = config.divergence_lookback
        self._highs: Deque[float] = deque(maxlen=lookback)
        self._lows: Deque[float] = deque(maxlen=lookback)
        self._deltas: Deque[float] = deque(maxlen=lookback)
        self._volumes: Deque[float] = deque(maxlen=config.volume_average_period)
        self._prev: DivergenceReading = NO_DIVERGENCE

    def update(self, bar: Bar, smoothed: float, in_session: bool) -> DivergenceReading:
        cfg = self.config
        self._highs.append(bar.high)
        self._lows.append(bar.low)
        self._deltas.append(smoothed)
        self._volumes.append(bar.volume)

        if len(self._deltas) < cfg.divergence_lookback:
            self._prev = NO_DIVERGENCE
            return NO_DIVERGENCE

        delta_high = max(self._deltas)
        delta_low = min(self._deltas)

        price_hh = bar.high >= max(self._highs)
        delta_lh = smoothed < delta_high * (1 - cfg.divergence_threshold)
        bearish = price_hh and delta_lh and in_session

        price_ll = bar.low <= min(self._lows)
        delta_hl = smoothed > delta_low * (1 + cfg.divergence_threshold)
        bullish = price_ll and delta_hl and in_session

        avg_volume = sma(self._volumes, cfg.volume_average_period)
        climax = avg_volume is not None and bar.volume > avg_volume * cfg.climax_multiplier

        reading = DivergenceReading(
            bearish=DivergenceFlag(bearish, _strength(bearish, smoothed, delta_high)),
            bullish=DivergenceFlag(bullish, _strength(bullish, smoothed, delta_low)),
            volume_climax=climax,
            bull_exhaustion=bearish and climax and bar.close < bar.open,
            bear_exhaustion=bullish and climax and bar.close > bar.open,
        )
        self._log_onsets(reading, bar)
        self._prev = reading
        return reading

    def _log_onsets(self, reading: DivergenceReading, bar: Bar):
        tag = f"[{self.symbol}] " if self.symbol else ""
        if reading.bearish.active and not self._prev.bearish.active:
            logger.info(f"{tag}Bearish delta divergence at {bar.high:.2f} "
                        f"({reading.bearish.strength:.0%})")
        if reading.bullish.active and not self._prev.bullish.active:
            logger.info(f"{tag}Bullish delta divergence at {bar.low:.2f} "
                        f"({reading.bullish.strength:.0%})")
        if reading.bull_exhaustion:
            logger.info(f"{tag}Bullish exhaustion - consider exit")
        if reading.bear_exhaustion:
            logger.info(f"{tag}Bearish exhaustion - consider exit")

    def reset(self):
        self._highs.clear()
        self._lows.clear()
        self._deltas.clear()
        self._volumes.clear()
        self._prev = NO_DIVERGENCE


def _strength(active: bool, smoothed: float, extremum: Optional[float]) -> float:
    if not active or not extremum:
        return 0.0
    return abs(smoothed - extremum) / abs(extremum)
