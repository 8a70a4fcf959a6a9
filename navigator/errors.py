"""
Engine Exceptions

All errors raised by the navigator package derive from NavigatorError.
They also subclass ValueError so callers that already guard bar parsing
with ``except ValueError`` keep working.
"""


class NavigatorError(Exception):
    """Base class for every error raised by the engine."""


class ConfigError(NavigatorError, ValueError):
    """Invalid engine configuration. Raised at load/construction time."""


class BarError(NavigatorError, ValueError):
    """Malformed bar: missing field, NaN value or high below low."""


class OutOfOrderBarError(BarError):
    """Bar timestamp did not strictly increase. Feed contract violation."""

    def __init__(self, symbol: str, previous_time: int, bar_time: int):
        self.symbol = symbol
        self.previous_time = previous_time
        self.bar_time = bar_time
        super().__init__(
            f"[{symbol or '-'}] bar time {bar_time} is not after previous bar {previous_time}"
        )
