"""
Session Navigator - intraday multi-session trading-signal engine
"""
from .bars import Bar, ExchangeClock
from .config import EngineConfig, load_config
from .engine import BarResult, BarSnapshot, MultiSymbolEngine, SignalEngine
from .errors import BarError, ConfigError, NavigatorError, OutOfOrderBarError
from .orders import EntryPattern, ExitReason, OrderAction, OrderInstruction, Side

__version__ = '0.1.0'

__all__ = [
    'Bar',
    'ExchangeClock',
    'EngineConfig',
    'load_config',
    'SignalEngine',
    'MultiSymbolEngine',
    'BarResult',
    'BarSnapshot',
    'NavigatorError',
    'ConfigError',
    'BarError',
    'OutOfOrderBarError',
    'Side',
    'OrderAction',
    'OrderInstruction',
    'EntryPattern',
    'ExitReason',
]
