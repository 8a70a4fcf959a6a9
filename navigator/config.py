"""
Engine Configuration

Typed parameter groups with the defaults of the original studies, loaded
from the `engine:` section of config.yaml. Every parameter is validated
when the config is built so bad values fail at startup instead of
producing silently wrong signals mid-stream.
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytz
import yaml

from .bars import parse_time_of_day
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config.yaml'


@dataclass
class WindowConfig:
    """A named time-of-day window. `end <= start` wraps past midnight."""
    name: str
    start: str
    end: str


def _default_windows() -> List[WindowConfig]:
    return [
        WindowConfig('asia', '20:00', '00:00'),
        WindowConfig('london', '02:00', '05:00'),
        WindowConfig('premarket', '08:00', '09:30'),
        WindowConfig('ny', '09:30', '16:00'),
        WindowConfig('opening_range', '09:30', '09:45'),
    ]


@dataclass
class SessionConfig:
    """Session boundaries in exchange-local time."""
    timezone: str = 'US/Eastern'
    windows: List[WindowConfig] = field(default_factory=_default_windows)
    opening_range_window: str = 'opening_range'
    asia_window: str = 'asia'
    london_window: str = 'london'
    pivot_time: str = '08:00'
    session_open: str = '09:30'
    session_close: str = '16:00'
    entry_start: str = '09:45'
    entry_end: str = '11:00'
    time_exit: str = '15:50'


@dataclass
class IndicatorConfig:
    fast_ema_period: int = 9
    slow_ema_period: int = 21
    slope_bars: int = 3
    volume_ma_period: int = 20
    volume_spike_multiplier: float = 1.5
    atr_period: int = 14
    atr_15m_period: int = 14


@dataclass
class MomentumConfig:
    slope_strength_threshold: float = 0.3
    min_momentum_for_catchup: float = 0.3


@dataclass
class DeltaConfig:
    delta_period: int = 20
    smoothing_period: int = 5
    divergence_lookback: int = 10
    divergence_threshold: float = 0.15
    volume_average_period: int = 20
    climax_multiplier: float = 2.5


@dataclass
class RiskConfig:
    stop_multiplier: float = 1.5
    target1_multiplier: float = 2.0
    target2_multiplier: float = 4.0
    breakeven_offset: float = 0.2
    catchup_zone_multiplier: float = 0.5
    orb_zone_buffer: float = 0.3
    ema_tolerance: float = 0.2
    vwap_tolerance: float = 0.3
    zone_widening_threshold: float = 0.5
    zone_widening_factor: float = 1.5


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    trade_size: int = 100
    max_history: int = 600
    sessions: SessionConfig = field(default_factory=SessionConfig)
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    momentum: MomentumConfig = field(default_factory=MomentumConfig)
    delta: DeltaConfig = field(default_factory=DeltaConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EngineConfig':
        """
        Build and validate a config from a plain dict (e.g. YAML section).

        Missing keys take defaults; unknown keys are rejected.

        Raises:
            ConfigError: on unknown keys or invalid values
        """
        data = dict(data or {})
        sections = {
            'sessions': SessionConfig,
            'indicators': IndicatorConfig,
            'momentum': MomentumConfig,
            'delta': DeltaConfig,
            'risk': RiskConfig,
        }
        kwargs: Dict[str, Any] = {}
        for key, section_cls in sections.items():
            section = data.pop(key, None) or {}
            if key == 'sessions' and 'windows' in section:
                section = dict(section)
                section['windows'] = [_window_from_dict(w) for w in section['windows']]
            kwargs[key] = _build(section_cls, section, key)

        kwargs.update(_check_keys(cls, data, 'engine', exclude=set(sections)))
        config = cls(**kwargs)
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> 'EngineConfig':
        """Fail fast on any parameter that would produce wrong signals."""
        _validate(self)
        return self


def _window_from_dict(data: Any) -> WindowConfig:
    if isinstance(data, WindowConfig):
        return data
    if not isinstance(data, dict):
        raise ConfigError(f"Session window must be a mapping, got {data!r}")
    return _build(WindowConfig, data, 'sessions.windows')


def _check_keys(cls, data: Dict[str, Any], section: str, exclude=frozenset()) -> Dict[str, Any]:
    known = {f.name for f in fields(cls)} - set(exclude)
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown {section} config keys: {sorted(unknown)}")
    return data


def _build(cls, data: Dict[str, Any], section: str):
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping")
    try:
        return cls(**_check_keys(cls, data, section))
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' config: {e}") from e


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigError(message)


def _time(value: str, name: str) -> int:
    try:
        return parse_time_of_day(value)
    except ValueError as e:
        raise ConfigError(f"sessions.{name}: {e}") from e


def _require_numbers(section: str, params):
    for f in fields(params):
        value = getattr(params, f.name)
        _require(isinstance(value, (int, float)) and not isinstance(value, bool),
                 f"{section}.{f.name} must be a number, got {value!r}")


def _validate(config: EngineConfig):
    for section in ('indicators', 'momentum', 'delta', 'risk'):
        _require_numbers(section, getattr(config, section))

    _require(isinstance(config.trade_size, int) and config.trade_size > 0,
             f"trade_size must be a positive integer, got {config.trade_size}")
    _require(isinstance(config.max_history, int) and config.max_history >= 2,
             f"max_history must be an integer >= 2, got {config.max_history}")

    # Periods
    ind = config.indicators
    for name in ('fast_ema_period', 'slow_ema_period', 'slope_bars',
                 'volume_ma_period', 'atr_period', 'atr_15m_period'):
        value = getattr(ind, name)
        _require(isinstance(value, int) and value >= 1,
                 f"indicators.{name} must be an integer >= 1, got {value}")
    _require(ind.fast_ema_period < ind.slow_ema_period,
             "indicators.fast_ema_period must be shorter than slow_ema_period")
    _require(ind.volume_spike_multiplier > 0,
             f"indicators.volume_spike_multiplier must be > 0, got {ind.volume_spike_multiplier}")

    delta = config.delta
    for name in ('delta_period', 'smoothing_period', 'divergence_lookback',
                 'volume_average_period'):
        value = getattr(delta, name)
        _require(isinstance(value, int) and value >= 1,
                 f"delta.{name} must be an integer >= 1, got {value}")
    _require(0 <= delta.divergence_threshold < 1,
             f"delta.divergence_threshold must be in [0, 1), got {delta.divergence_threshold}")
    _require(delta.climax_multiplier > 0,
             f"delta.climax_multiplier must be > 0, got {delta.climax_multiplier}")

    # Look-backs must fit inside retained history
    for name, value in (('delta.delta_period', delta.delta_period),
                        ('delta.divergence_lookback', delta.divergence_lookback),
                        ('delta.volume_average_period', delta.volume_average_period),
                        ('indicators.atr_period', ind.atr_period),
                        ('indicators.volume_ma_period', ind.volume_ma_period),
                        ('indicators.atr_15m_period', ind.atr_15m_period)):
        _require(value < config.max_history,
                 f"{name} ({value}) must be smaller than max_history ({config.max_history})")

    mom = config.momentum
    _require(mom.slope_strength_threshold >= 0,
             f"momentum.slope_strength_threshold must be >= 0, got {mom.slope_strength_threshold}")
    _require(0 <= mom.min_momentum_for_catchup <= 1,
             f"momentum.min_momentum_for_catchup must be in [0, 1], got {mom.min_momentum_for_catchup}")

    risk = config.risk
    for f in fields(risk):
        value = getattr(risk, f.name)
        _require(value >= 0,
                 f"risk.{f.name} must be a non-negative number, got {value}")
    _require(risk.stop_multiplier > 0, "risk.stop_multiplier must be > 0")
    _require(risk.target1_multiplier > 0, "risk.target1_multiplier must be > 0")
    _require(risk.target2_multiplier >= risk.target1_multiplier,
             "risk.target2_multiplier must be >= target1_multiplier")
    _require(risk.zone_widening_factor >= 1,
             "risk.zone_widening_factor must be >= 1")

    # Sessions
    ses = config.sessions
    _require(isinstance(ses.timezone, str), f"sessions.timezone must be a string, got {ses.timezone!r}")
    try:
        pytz.timezone(ses.timezone)
    except pytz.UnknownTimeZoneError as e:
        raise ConfigError(f"Unknown timezone: {ses.timezone}") from e

    names = [w.name for w in ses.windows]
    _require(len(names) == len(set(names)), f"Duplicate session window names: {names}")
    for w in ses.windows:
        start = _time(w.start, f"windows.{w.name}.start")
        end = _time(w.end, f"windows.{w.name}.end")
        _require(start != end, f"Session window '{w.name}' has zero length")
    for name in ('opening_range_window', 'asia_window', 'london_window'):
        _require(getattr(ses, name) in names,
                 f"sessions.{name} '{getattr(ses, name)}' is not a configured window")

    _time(ses.pivot_time, 'pivot_time')
    session_open = _time(ses.session_open, 'session_open')
    session_close = _time(ses.session_close, 'session_close')
    entry_start = _time(ses.entry_start, 'entry_start')
    entry_end = _time(ses.entry_end, 'entry_end')
    time_exit = _time(ses.time_exit, 'time_exit')
    _require(session_open < session_close, "sessions.session_open must be before session_close")
    _require(session_open <= entry_start < entry_end <= session_close,
             "sessions entry window must lie inside the trading session")
    _require(entry_end <= time_exit <= session_close,
             "sessions.time_exit must lie between entry_end and session_close")


def load_yaml(path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """Load a YAML config file into a dict."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found at {config_path}")

    with open(config_path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")
    return data


def load_config(path: Union[str, Path, None] = None) -> EngineConfig:
    """Load and validate the `engine:` section of a YAML config file."""
    data = load_yaml(path)
    config = EngineConfig.from_dict(data.get('engine'))
    logger.info(f"Loaded engine config from {path or DEFAULT_CONFIG_PATH}")
    return config
