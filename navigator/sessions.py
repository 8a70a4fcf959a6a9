"""
Session Tracker

Maintains rolling high/low for each configured time-of-day window
(Asia, London, pre-market, NY, opening range) and emits explicit boundary
events for the components downstream.

Reset rule: a window's extrema reset to the bar's high/low only on the bar
whose exchange time-of-day equals the window start to the second. While the
window is active the extrema widen; outside it they hold their last value
(yesterday's range stays readable until the next reset). A feed that skips
the exact start second leaves the window un-reset for that cycle.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .bars import Bar, ExchangeClock, format_time_of_day, parse_time_of_day
from .config import SessionConfig

logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    WINDOW_RESET = "window_reset"
    SESSION_OPEN = "session_open"
    SESSION_CLOSE = "session_close"


@dataclass(frozen=True)
class SessionEvent:
    type: SessionEventType
    name: str
    time: int


@dataclass(frozen=True)
class WindowRange:
    """Frozen view of one window's extrema after a bar."""
    name: str
    high: Optional[float]
    low: Optional[float]
    active: bool

    @property
    def is_set(self) -> bool:
        return self.high is not None and self.low is not None

    @property
    def mid(self) -> Optional[float]:
        return (self.high + self.low) / 2 if self.is_set else None

    @property
    def range(self) -> Optional[float]:
        return self.high - self.low if self.is_set else None


class SessionWindow:
    """Rolling extrema for one named time-of-day interval."""

    def __init__(self, name: str, start: int, end: int):
        self.name = name
        self.start = start
        self.end = end
        self.high: Optional[float] = None
        self.low: Optional[float] = None
        self.reset_count = 0
        self._warned_unset = False

    @classmethod
    def from_times(cls, name: str, start: str, end: str) -> 'SessionWindow':
        return cls(name, parse_time_of_day(start), parse_time_of_day(end))

    def is_active(self, seconds_of_day: int) -> bool:
        if self.start < self.end:
            return self.start <= seconds_of_day < self.end
        # Wraps past midnight
        return seconds_of_day >= self.start or seconds_of_day < self.end

    def update(self, bar: Bar, seconds_of_day: int) -> bool:
        """Apply one bar. Returns True when this bar reset the window."""
        if seconds_of_day == self.start:
            self.high = bar.high
            self.low = bar.low
            self.reset_count += 1
            self._warned_unset = False
            return True

        if not self.is_active(seconds_of_day):
            return False

        if self.high is None:
            if not self._warned_unset:
                logger.debug(
                    f"Window '{self.name}' active but its {format_time_of_day(self.start)} "
                    f"reset bar has not been seen"
                )
                self._warned_unset = True
            return False

        self.high = max(self.high, bar.high)
        self.low = min(self.low, bar.low)
        return False

    def view(self, seconds_of_day: int) -> WindowRange:
        return WindowRange(self.name, self.high, self.low, self.is_active(seconds_of_day))

    def reset(self):
        self.high = None
        self.low = None
        self.reset_count = 0
        self._warned_unset = False


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only session state after one bar."""
    time: int
    seconds_of_day: int
    windows: Dict[str, WindowRange]
    opening_range: WindowRange
    pivot: Optional[float]
    in_session: bool
    london_swept_asia_high: bool
    london_swept_asia_low: bool
    events: Tuple[SessionEvent, ...] = ()

    def window(self, name: str) -> WindowRange:
        return self.windows[name]

    def has_event(self, event_type: SessionEventType) -> bool:
        return any(e.type is event_type for e in self.events)

    @property
    def is_session_open(self) -> bool:
        return self.has_event(SessionEventType.SESSION_OPEN)

    @property
    def is_session_close(self) -> bool:
        return self.has_event(SessionEventType.SESSION_CLOSE)


class SessionTracker:
    """
    Evaluates every configured window independently on each bar.

    Windows may overlap (NY and the opening range both start at 09:30).
    """

    def __init__(self, config: SessionConfig, clock: Optional[ExchangeClock] = None):
        self.config = config
        self.clock = clock or ExchangeClock(config.timezone)
        self.windows: Dict[str, SessionWindow] = {
            w.name: SessionWindow.from_times(w.name, w.start, w.end)
            for w in config.windows
        }
        self._pivot_time = parse_time_of_day(config.pivot_time)
        self._session_open = parse_time_of_day(config.session_open)
        self._session_close = parse_time_of_day(config.session_close)
        self.pivot: Optional[float] = None

        logger.info(
            f"SessionTracker initialized ({config.timezone}): "
            + ", ".join(
                f"{w.name} {format_time_of_day(w.start)}-{format_time_of_day(w.end)}"
                for w in self.windows.values()
            )
        )

    def in_session(self, seconds_of_day: int) -> bool:
        return self._session_open <= seconds_of_day < self._session_close

    def update(self, bar: Bar) -> SessionSnapshot:
        sod = self.clock.seconds_of_day(bar.time)
        events = []

        for window in self.windows.values():
            if window.update(bar, sod):
                events.append(SessionEvent(SessionEventType.WINDOW_RESET, window.name, bar.time))
                logger.debug(
                    f"Window '{window.name}' reset at {format_time_of_day(sod)}: "
                    f"H={bar.high:.2f} L={bar.low:.2f}"
                )

        if sod == self._pivot_time:
            self.pivot = bar.close

        if sod == self._session_open:
            events.append(SessionEvent(SessionEventType.SESSION_OPEN, 'session', bar.time))
            logger.info(f"Session open at {self.clock.localize(bar.time):%Y-%m-%d %H:%M}")
        if sod == self._session_close:
            events.append(SessionEvent(SessionEventType.SESSION_CLOSE, 'session', bar.time))
            logger.info(f"Session close at {self.clock.localize(bar.time):%Y-%m-%d %H:%M}")

        views = {name: w.view(sod) for name, w in self.windows.items()}
        asia = views[self.config.asia_window]
        london = views[self.config.london_window]

        return SessionSnapshot(
            time=bar.time,
            seconds_of_day=sod,
            windows=views,
            opening_range=views[self.config.opening_range_window],
            pivot=self.pivot,
            in_session=self.in_session(sod),
            london_swept_asia_high=bool(london.is_set and asia.is_set and london.high > asia.high),
            london_swept_asia_low=bool(london.is_set and asia.is_set and london.low < asia.low),
            events=tuple(events),
        )

    def reset(self):
        for window in self.windows.values():
            window.reset()
        self.pivot = None
