"""
Indicator Manager

Registry and management system for the vectorised indicators.
"""

import logging
from typing import Dict, Type, List, Optional, Any
import pandas as pd

from .base import Indicator
from .moving_averages import EMA, VolumeMA, SessionVWAP, ATR
from .volume_delta import DeltaProxy, CumulativeDeltaProxy, DeltaDivergence

logger = logging.getLogger(__name__)


INDICATOR_REGISTRY: Dict[str, Type[Indicator]] = {
    # Trend / volatility
    'ema': EMA,
    'vwap': SessionVWAP,
    'volume_ma': VolumeMA,
    'atr': ATR,

    # Delta proxy
    'delta': DeltaProxy,
    'cumulative_delta': CumulativeDeltaProxy,
    'cvd': CumulativeDeltaProxy,
    'delta_divergence': DeltaDivergence,
}


def list_available_indicators() -> List[Dict[str, Any]]:
    """Metadata for every registered indicator, built from default params."""
    return [
        {'key': key, **indicator_class().to_dict()}
        for key, indicator_class in INDICATOR_REGISTRY.items()
    ]


def create_indicator(indicator_type: str, **params) -> Indicator:
    """
    Create an indicator instance.

    Raises:
        ValueError: unknown indicator type

    Example:
        >>> ema = create_indicator('ema', period=21)
        >>> div = create_indicator('delta_divergence', lookback=10)
    """
    indicator_class = INDICATOR_REGISTRY.get(indicator_type.lower())
    if not indicator_class:
        raise ValueError(
            f"Unknown indicator type: {indicator_type} "
            f"(available: {sorted(INDICATOR_REGISTRY)})"
        )
    return indicator_class(**params)


class IndicatorManager:
    """Holds a set of active indicators and computes them over one frame."""

    def __init__(self):
        self.active_indicators: Dict[str, Indicator] = {}

    def add_indicator(self, indicator_type: str, params: Optional[Dict[str, Any]] = None,
                      indicator_id: Optional[str] = None) -> Indicator:
        indicator = create_indicator(indicator_type, **(params or {}))
        ind_id = indicator_id or indicator.id
        self.active_indicators[ind_id] = indicator
        logger.info(f"Added indicator: {indicator.get_display_name()} (ID: {ind_id})")
        return indicator

    def remove_indicator(self, indicator_id: str) -> bool:
        indicator = self.active_indicators.pop(indicator_id, None)
        if indicator is None:
            logger.warning(f"Indicator not found: {indicator_id}")
            return False
        logger.info(f"Removed indicator: {indicator.get_display_name()}")
        return True

    def calculate_all(self, df: pd.DataFrame) -> Dict[str, pd.DataFrame]:
        """Indicator id -> result frame. Failed indicators are logged and skipped."""
        results = {}
        for ind_id, indicator in self.active_indicators.items():
            result = indicator.calculate_safe(df)
            if result is None:
                logger.warning(f"Failed to calculate {indicator.get_display_name()}")
                continue
            results[ind_id] = result
            logger.debug(f"Calculated {indicator.get_display_name()}: {len(result)} rows")
        return results

    def calculate_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Input frame with every indicator's columns appended, prefixed by
        indicator id ('EMA_9_value', 'DeltaDivergence_10_5_bearish', ...).
        """
        out = df.copy()
        for ind_id, result in self.calculate_all(df).items():
            for col in result.columns:
                if col != 'time':
                    out[f"{ind_id}_{col}"] = result[col].values
        return out

    def list_active_indicators(self) -> List[Dict[str, Any]]:
        return [
            {**indicator.to_dict(), 'id': ind_id}
            for ind_id, indicator in self.active_indicators.items()
        ]

    def clear_all_indicators(self):
        count = len(self.active_indicators)
        self.active_indicators.clear()
        logger.info(f"Cleared {count} indicators")
