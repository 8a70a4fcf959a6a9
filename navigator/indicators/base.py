"""
Base Indicator Class

Vectorised (pandas) counterparts of the streaming calculations, used for
charting and offline analysis of a whole bar file at once.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import pandas as pd
import logging

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['time', 'open', 'high', 'low', 'close', 'volume']


class Indicator(ABC):
    """
    Base class for all vectorised indicators.

    Subclasses implement calculate(), returning a DataFrame with a 'time'
    column followed by one or more value columns, aligned row-for-row with
    the input.
    """

    pane = 'main'

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self.params = params or {}
        self.name = self.__class__.__name__
        self.id = f"{self.name}_{self._get_param_string()}".rstrip('_')

    def _get_param_string(self) -> str:
        key_params = [
            str(self.params[key])
            for key in ['period', 'lookback', 'smoothing']
            if key in self.params
        ]
        return "_".join(key_params)

    @abstractmethod
    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Args:
            df: OHLCV DataFrame (time in epoch seconds)

        Returns:
            DataFrame with 'time' and indicator value column(s)
        """

    def validate_dataframe(self, df: pd.DataFrame) -> bool:
        """
        Raises:
            ValueError: missing columns or empty frame
        """
        missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(f"DataFrame missing required columns: {missing}")
        if df.empty:
            raise ValueError("DataFrame is empty")
        return True

    def get_display_name(self) -> str:
        if 'period' in self.params:
            return f"{self.name}({self.params['period']})"
        return self.name

    def calculate_safe(self, df: pd.DataFrame) -> Optional[pd.DataFrame]:
        """calculate() with validation; logs and returns None on failure."""
        try:
            self.validate_dataframe(df)
            return self.calculate(df)
        except (ValueError, KeyError) as e:
            logger.error(f"Error calculating {self.name}: {e}")
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'id': self.id,
            'display_name': self.get_display_name(),
            'params': self.params,
            'pane': self.pane,
        }


class SessionIndicator(Indicator):
    """Indicator whose values reset at an exchange-local time of day."""

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        params = dict(params or {})
        params.setdefault('timezone', 'US/Eastern')
        super().__init__(params)

    def local_times(self, df: pd.DataFrame) -> pd.Series:
        """Epoch-second 'time' column as tz-aware exchange-local timestamps."""
        return (
            pd.to_datetime(df['time'], unit='s', utc=True)
            .dt.tz_convert(self.params['timezone'])
        )


def validate_period(period: int, min_period: int = 1) -> int:
    """Validate period parameter"""
    if not isinstance(period, int):
        raise ValueError(f"Period must be integer, got {type(period)}")

    if period < min_period:
        raise ValueError(f"Period must be >= {min_period}, got {period}")

    return period
