"""
Bias & Momentum Estimator

Multi-timeframe bias: the sign of close against the midpoint of the
in-progress 4-hour and daily bars, summed into a score in [-2, 2].

Momentum: four independent factors worth 0.25 each, kept as a flag set so
each contribution can be inspected on its own.
"""

import logging
from dataclasses import dataclass
from enum import Flag
from typing import Optional, Tuple

from .bars import Bar, HigherTimeframeView
from .config import MomentumConfig
from .context import IndicatorState

logger = logging.getLogger(__name__)

FACTOR_WEIGHT = 0.25


class MomentumFactor(Flag):
    NONE = 0
    TREND_ALIGNED = 1      # EMA trend agrees with a definite bias
    VWAP_ALIGNED = 2       # close on the bias side of VWAP
    VOLUME_CONFIRMED = 4   # volume above its moving average
    SLOPE_STRONG = 8       # |EMA slope / ATR| above threshold


ALL_FACTORS = (
    MomentumFactor.TREND_ALIGNED,
    MomentumFactor.VWAP_ALIGNED,
    MomentumFactor.VOLUME_CONFIRMED,
    MomentumFactor.SLOPE_STRONG,
)


def momentum_score(factors: MomentumFactor) -> float:
    """Unweighted sum of active factors, 0.25 each (max 1.0)."""
    return FACTOR_WEIGHT * sum(1 for f in ALL_FACTORS if f in factors)


def sign(value: float) -> int:
    return 1 if value > 0 else -1 if value < 0 else 0


@dataclass(frozen=True)
class TimeframeBias:
    high: float
    low: float
    bias: int

    @property
    def mid(self) -> float:
        return (self.high + self.low) / 2


@dataclass(frozen=True)
class BiasState:
    h4: TimeframeBias
    daily: TimeframeBias
    score: int
    prev_day_high: Optional[float] = None
    prev_day_low: Optional[float] = None

    @property
    def bullish(self) -> bool:
        return self.score >= 1

    @property
    def bearish(self) -> bool:
        return self.score <= -1

    @property
    def label(self) -> str:
        if self.bullish:
            return "bullish"
        if self.bearish:
            return "bearish"
        return "neutral"


@dataclass(frozen=True)
class MomentumReading:
    factors: MomentumFactor
    score: float

    def has(self, factor: MomentumFactor) -> bool:
        return factor in self.factors


def timeframe_bias(close: float, high: float, low: float) -> TimeframeBias:
    mid = (high + low) / 2
    return TimeframeBias(high=high, low=low, bias=sign(close - mid))


def combine_bias(*biases: int) -> int:
    return max(-2, min(2, sum(biases)))


def evaluate_momentum(close: float, bias: BiasState, ind: IndicatorState,
                      config: MomentumConfig) -> MomentumFactor:
    factors = MomentumFactor.NONE

    if (ind.ema_trend == 1 and bias.bullish) or (ind.ema_trend == -1 and bias.bearish):
        factors |= MomentumFactor.TREND_ALIGNED

    if ind.vwap is not None:
        if (bias.bullish and close > ind.vwap) or (bias.bearish and close < ind.vwap):
            factors |= MomentumFactor.VWAP_ALIGNED

    if ind.volume_confirmation:
        factors |= MomentumFactor.VOLUME_CONFIRMED

    if abs(ind.ema_slope_norm) > config.slope_strength_threshold:
        factors |= MomentumFactor.SLOPE_STRONG

    return factors


class BiasMomentumEstimator:
    """Computes BiasState and MomentumReading for each bar."""

    def __init__(self, config: MomentumConfig):
        self.config = config
        self._last_label: Optional[str] = None

    def update(self, bar: Bar, frames: HigherTimeframeView,
               ind: IndicatorState) -> Tuple[BiasState, MomentumReading]:
        h4 = timeframe_bias(bar.close, frames.h4.high, frames.h4.low)
        daily = timeframe_bias(bar.close, frames.daily.high, frames.daily.low)
        prev = frames.prev_daily

        bias = BiasState(
            h4=h4,
            daily=daily,
            score=combine_bias(h4.bias, daily.bias),
            prev_day_high=prev.high if prev else None,
            prev_day_low=prev.low if prev else None,
        )

        if bias.label != self._last_label:
            logger.debug(f"Bias now {bias.label} (score {bias.score:+d})")
            self._last_label = bias.label

        factors = evaluate_momentum(bar.close, bias, ind, self.config)
        return bias, MomentumReading(factors=factors, score=momentum_score(factors))
