"""
Vectorised indicators for charting and offline analysis
"""
from .base import Indicator, SessionIndicator
from .moving_averages import EMA, VolumeMA, SessionVWAP, ATR
from .volume_delta import DeltaProxy, CumulativeDeltaProxy, DeltaDivergence, delta_ratio_series
from .manager import (
    IndicatorManager,
    INDICATOR_REGISTRY,
    list_available_indicators,
    create_indicator
)

__all__ = [
    'Indicator',
    'SessionIndicator',

    'EMA',
    'VolumeMA',
    'SessionVWAP',
    'ATR',

    'DeltaProxy',
    'CumulativeDeltaProxy',
    'DeltaDivergence',
    'delta_ratio_series',

    'IndicatorManager',
    'INDICATOR_REGISTRY',
    'list_available_indicators',
    'create_indicator',
]
