"""
Adaptive Risk Engine

Volatility-normalised stop/target levels and entry zones sized from a
blended ATR (the larger of the base-timeframe and 15-minute ATR, which
keeps stops outside normal wick noise).

Trailing stop state machine:
- INITIAL: trailing stop == initial stop
- BREAKEVEN: once price touches target-1, the stop ratchets to
  entry ± ATR × breakeven_offset and never loosens afterwards
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import RiskConfig
from .orders import Side

logger = logging.getLogger(__name__)


class TrailingStopState(Enum):
    INITIAL = "INITIAL"
    BREAKEVEN = "BREAKEVEN"


def blended_atr(*atrs: Optional[float]) -> Optional[float]:
    """Max of the available ATR values, None when none is available."""
    values = [a for a in atrs if a is not None]
    return max(values) if values else None


@dataclass
class RiskLevels:
    """Risk levels owned by one open position. ATR is frozen at entry."""
    side: Side
    entry_price: float
    atr: float
    initial_stop: float
    target1: float
    target2: float
    trailing_stop: float
    breakeven_offset: float
    trailing_state: TrailingStopState = TrailingStopState.INITIAL

    @classmethod
    def from_entry(cls, side: Side, entry: float, atr: float, config: RiskConfig) -> 'RiskLevels':
        sign = side.sign
        stop = entry - sign * atr * config.stop_multiplier
        return cls(
            side=side,
            entry_price=entry,
            atr=atr,
            initial_stop=stop,
            target1=entry + sign * atr * config.target1_multiplier,
            target2=entry + sign * atr * config.target2_multiplier,
            trailing_stop=stop,
            breakeven_offset=config.breakeven_offset,
        )

    @property
    def initial_risk(self) -> float:
        """R value in price units (always positive)."""
        return abs(self.entry_price - self.initial_stop)

    @property
    def target1_reached(self) -> bool:
        return self.trailing_state is TrailingStopState.BREAKEVEN

    def update_trailing(self, high: float, low: float) -> float:
        """Advance the trailing stop for one bar. Monotonic, never loosens."""
        if self.side is Side.LONG:
            if high >= self.target1:
                self.trailing_state = TrailingStopState.BREAKEVEN
            if self.target1_reached:
                lock_in = self.entry_price + self.atr * self.breakeven_offset
                self.trailing_stop = max(self.trailing_stop, lock_in)
        else:
            if low <= self.target1:
                self.trailing_state = TrailingStopState.BREAKEVEN
            if self.target1_reached:
                lock_in = self.entry_price - self.atr * self.breakeven_offset
                self.trailing_stop = min(self.trailing_stop, lock_in)
        return self.trailing_stop

    def stop_touched(self, high: float, low: float) -> bool:
        if self.side is Side.LONG:
            return low <= self.trailing_stop
        return high >= self.trailing_stop

    def target2_touched(self, high: float, low: float) -> bool:
        if self.side is Side.LONG:
            return high >= self.target2
        return low <= self.target2

    def to_dict(self) -> dict:
        return {
            'side': self.side.value,
            'entry_price': self.entry_price,
            'atr': self.atr,
            'initial_stop': self.initial_stop,
            'target1': self.target1,
            'target2': self.target2,
            'trailing_stop': self.trailing_stop,
            'trailing_state': self.trailing_state.value,
        }


@dataclass(frozen=True)
class EntryZones:
    """ATR-sized entry bands for one bar."""
    atr: float
    orb_long_top: Optional[float]
    orb_long_bottom: Optional[float]
    orb_short_top: Optional[float]
    orb_short_bottom: Optional[float]
    ema_catchup_width: float
    ema_tolerance: float
    vwap_tolerance: float
    widened: bool


class AdaptiveRiskEngine:
    """Builds entry zones each bar and risk levels at entry."""

    def __init__(self, config: RiskConfig):
        self.config = config

    def zones(self, atr: Optional[float], orb_high: Optional[float],
              orb_low: Optional[float], ema_slope_norm: float) -> Optional[EntryZones]:
        """
        Entry zones for the current bar, or None without an ATR.

        The EMA catch-up band widens when normalised EMA slope shows
        strong momentum.
        """
        if not atr:
            return None
        cfg = self.config

        widened = abs(ema_slope_norm) > cfg.zone_widening_threshold
        multiplier = cfg.zone_widening_factor if widened else 1.0

        return EntryZones(
            atr=atr,
            orb_long_top=orb_high + atr * cfg.orb_zone_buffer if orb_high is not None else None,
            orb_long_bottom=orb_high - atr * cfg.catchup_zone_multiplier if orb_high is not None else None,
            orb_short_top=orb_low + atr * cfg.catchup_zone_multiplier if orb_low is not None else None,
            orb_short_bottom=orb_low - atr * cfg.orb_zone_buffer if orb_low is not None else None,
            ema_catchup_width=atr * cfg.catchup_zone_multiplier * multiplier,
            ema_tolerance=atr * cfg.ema_tolerance,
            vwap_tolerance=atr * cfg.vwap_tolerance,
            widened=widened,
        )

    def open_levels(self, side: Side, entry_price: float, atr: float) -> RiskLevels:
        levels = RiskLevels.from_entry(side, entry_price, atr, self.config)
        logger.debug(
            f"Risk levels {side.value} @ {entry_price:.2f} (ATR {atr:.4f}): "
            f"stop={levels.initial_stop:.2f} T1={levels.target1:.2f} T2={levels.target2:.2f}"
        )
        return levels
