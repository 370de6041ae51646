"""
SIGNAL GATE — Base Indicator Interface
All indicators implement compute() on an OHLCV DataFrame and reset().
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import pandas as pd

from signal_gate.utils.errors import require_positive


class BaseIndicator(ABC):
    """Abstract base class for the technical indicators."""

    def __init__(self, name: str, params: Optional[Dict[str, Any]] = None):
        self.name = name
        self.params = params or {}
        self._last_result: Optional[pd.DataFrame] = None

    @abstractmethod
    def compute(self, data: pd.DataFrame) -> pd.DataFrame:
        """
        Calculate indicator values and add columns to a copy of the DataFrame.
        The input DataFrame has columns: open, high, low, close, volume
        """
        pass

    @property
    def warmup(self) -> int:
        """Minimum number of candles before the output is meaningful."""
        return 0

    def reset(self) -> None:
        """Reset any internal state."""
        self._last_result = None

    @property
    def last_result(self) -> Optional[pd.DataFrame]:
        return self._last_result

    def _validate_periods(self, **periods: int) -> None:
        for key, value in periods.items():
            require_positive(key, value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, params={self.params})"
