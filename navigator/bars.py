"""
Bar Records, Exchange Clock and Higher-Timeframe Aggregation

Bar is the immutable OHLCV record every component consumes. ExchangeClock
turns unix timestamps into exchange-local time-of-day (all session
boundaries are expressed in exchange time). HigherTimeframes rolls base
bars into 15-minute, 4-hour and daily buckets, the same way the live
candlestick builder rolls ticks into bars.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Deque, Dict, List, Optional, Tuple

import pytz

from .errors import BarError

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

_BAR_FIELDS = ('open', 'high', 'low', 'close', 'volume')


@dataclass(frozen=True)
class Bar:
    """One OHLCV sample. `time` is the bar start in unix seconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def range(self) -> float:
        return self.high - self.low

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bar':
        """
        Build a validated Bar from a feed dict.

        Accepts either 'time' or 'timestamp' for the bar start.

        Raises:
            BarError: on a missing field, a non-numeric or NaN value,
                or high below low
        """
        ts = data.get('time', data.get('timestamp'))
        if ts is None:
            raise BarError(f"Bar missing time field: {data}")

        values = {}
        for key in _BAR_FIELDS:
            if key not in data or data[key] is None:
                raise BarError(f"Bar missing required field '{key}': {data}")
            try:
                values[key] = float(data[key])
            except (TypeError, ValueError) as e:
                raise BarError(f"Bar field '{key}' is not numeric: {data[key]!r}") from e

        try:
            time = int(ts)
        except (TypeError, ValueError) as e:
            raise BarError(f"Bar time is not an integer timestamp: {ts!r}") from e

        bar = cls(time=time, **values)
        validate_bar(bar)
        return bar


def validate_bar(bar: Bar) -> Bar:
    """Reject NaN prices and inverted ranges. Zero range is allowed."""
    for key in _BAR_FIELDS:
        if math.isnan(getattr(bar, key)):
            raise BarError(f"Bar at {bar.time} has NaN {key}")
    if bar.high < bar.low:
        raise BarError(f"Bar at {bar.time} has high {bar.high} below low {bar.low}")
    if bar.volume < 0:
        raise BarError(f"Bar at {bar.time} has negative volume {bar.volume}")
    return bar


def parse_time_of_day(value: str) -> int:
    """Parse 'HH:MM' or 'HH:MM:SS' into seconds from midnight."""
    parts = str(value).strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Time must be HH:MM or HH:MM:SS, got {value!r}")
    try:
        nums = [int(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Time must be numeric HH:MM, got {value!r}") from e
    hours, minutes = nums[0], nums[1]
    seconds = nums[2] if len(nums) == 3 else 0
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 3600 + minutes * 60 + seconds


def format_time_of_day(seconds: int) -> str:
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}"


class ExchangeClock:
    """Converts unix timestamps to exchange-local date and time-of-day."""

    def __init__(self, timezone: str = 'US/Eastern'):
        self.timezone = timezone
        self.tz = pytz.timezone(timezone)

    def localize(self, ts: int) -> datetime:
        return datetime.fromtimestamp(ts, tz=pytz.UTC).astimezone(self.tz)

    def seconds_of_day(self, ts: int) -> int:
        dt = self.localize(ts)
        return dt.hour * 3600 + dt.minute * 60 + dt.second

    def session_date(self, ts: int) -> date:
        return self.localize(ts).date()

    def to_timestamp(self, day: date, seconds_of_day: int) -> int:
        """Exchange-local date + time-of-day -> unix seconds."""
        naive = datetime(
            day.year, day.month, day.day,
            seconds_of_day // 3600, (seconds_of_day % 3600) // 60, seconds_of_day % 60,
        )
        return int(self.tz.localize(naive).timestamp())


# ═══════════════════════════════════════════════════════════════════════════
# HIGHER TIMEFRAME AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AggregateBar:
    """A higher-timeframe bar built from base bars (may be in progress)."""
    key: Tuple[date, int]
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def add(self, bar: Bar):
        self.high = max(self.high, bar.high)
        self.low = min(self.low, bar.low)
        self.close = bar.close
        self.volume += bar.volume


class TimeframeAggregator:
    """
    Rolls base bars into fixed exchange-local buckets.

    Buckets are aligned to exchange midnight: a 15-minute bucket covers
    09:30-09:45 local, a 4-hour bucket 08:00-12:00, a daily bucket the whole
    local calendar day. The last element of `history()` is the in-progress
    bucket, which includes the current bar.
    """

    def __init__(self, name: str, bucket_seconds: int, clock: ExchangeClock,
                 max_bars: int = 200):
        self.name = name
        self.bucket_seconds = bucket_seconds
        self.clock = clock
        self._bars: Deque[AggregateBar] = deque(maxlen=max_bars)

    def _key(self, ts: int) -> Tuple[date, int]:
        local = self.clock.localize(ts)
        sod = local.hour * 3600 + local.minute * 60 + local.second
        return local.date(), sod // self.bucket_seconds

    def update(self, bar: Bar) -> AggregateBar:
        key = self._key(bar.time)
        current = self._bars[-1] if self._bars else None

        if current is not None and current.key == key:
            current.add(bar)
            return current

        agg = AggregateBar(
            key=key, time=bar.time,
            open=bar.open, high=bar.high, low=bar.low,
            close=bar.close, volume=bar.volume,
        )
        self._bars.append(agg)
        if current is not None:
            logger.debug(
                f"[{self.name}] closed bucket {current.key}: "
                f"H={current.high:.2f} L={current.low:.2f} C={current.close:.2f}"
            )
        return agg

    @property
    def current(self) -> Optional[AggregateBar]:
        return self._bars[-1] if self._bars else None

    @property
    def previous(self) -> Optional[AggregateBar]:
        return self._bars[-2] if len(self._bars) >= 2 else None

    def history(self) -> List[AggregateBar]:
        return list(self._bars)

    def reset(self):
        self._bars.clear()


@dataclass(frozen=True)
class HigherTimeframeView:
    """Read-only view of the higher-timeframe state after a bar."""
    m15: List[AggregateBar]
    h4: AggregateBar
    daily: AggregateBar
    prev_daily: Optional[AggregateBar]


class HigherTimeframes:
    """15-minute, 4-hour and daily aggregators fed from the base stream."""

    def __init__(self, clock: ExchangeClock, max_bars: int = 200):
        self.m15 = TimeframeAggregator('15m', 15 * 60, clock, max_bars)
        self.h4 = TimeframeAggregator('4h', 4 * 60 * 60, clock, max_bars)
        self.daily = TimeframeAggregator('1d', SECONDS_PER_DAY, clock, max_bars)

    def update(self, bar: Bar) -> HigherTimeframeView:
        self.m15.update(bar)
        h4 = self.h4.update(bar)
        daily = self.daily.update(bar)
        return HigherTimeframeView(
            m15=self.m15.history(),
            h4=h4,
            daily=daily,
            prev_daily=self.daily.previous,
        )

    def reset(self):
        self.m15.reset()
        self.h4.reset()
        self.daily.reset()
