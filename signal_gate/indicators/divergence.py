"""
SIGNAL GATE — RSI Divergence Oscillator
Wilder RSI over the OHLC4 price with bullish/bearish divergence detection in
a short and a long lookback window.
"""
from collections.abc import Sequence
from typing import Iterator, List, Optional, Union

import numpy as np
import pandas as pd

from signal_gate.config.settings import OscillatorSettings
from signal_gate.data.models import RSIDivergenceResult
from signal_gate.indicators.base import BaseIndicator
from signal_gate.utils.errors import ValidationError


ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


def ohlc4(open_: ArrayLike, high: ArrayLike, low: ArrayLike, close: ArrayLike) -> np.ndarray:
    """Reference price: mean of open, high, low and close."""
    return (np.asarray(open_, dtype=float) + np.asarray(high, dtype=float)
            + np.asarray(low, dtype=float) + np.asarray(close, dtype=float)) / 4.0


class DivergenceSeries(Sequence):
    """
    Lazy, restartable, finite sequence of RSIDivergenceResult.

    Holds the computed arrays and builds result objects on demand; iterating
    twice yields equal results, len() equals the input length.
    """

    def __init__(self, rsi: np.ndarray, bull: np.ndarray, bear: np.ndarray,
                 bull_alert: np.ndarray, bear_alert: np.ndarray, warmup: int):
        self._rsi = rsi
        self._bull = bull
        self._bear = bear
        self._bull_alert = bull_alert
        self._bear_alert = bear_alert
        self._warmup = warmup

    def __len__(self) -> int:
        return len(self._rsi)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._build(i) for i in range(*index.indices(len(self)))]
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            raise IndexError("divergence series index out of range")
        return self._build(index)

    def __iter__(self) -> Iterator[RSIDivergenceResult]:
        for i in range(len(self)):
            yield self._build(i)

    def latest(self) -> Optional[RSIDivergenceResult]:
        return self._build(len(self) - 1) if len(self) else None

    def _build(self, i: int) -> RSIDivergenceResult:
        return RSIDivergenceResult(
            rsi=float(self._rsi[i]),
            bullish_divergence=bool(self._bull[i]),
            bearish_divergence=bool(self._bear[i]),
            bullish_divergence_alert=float(self._bull_alert[i]),
            bearish_divergence_alert=float(self._bear_alert[i]),
            is_warmup=i < self._warmup,
        )


class DivergenceOscillator(BaseIndicator):
    """
    RSI divergence detector.

    Regular Bearish: price makes a higher high, RSI makes a lower high -> reversal down
    Regular Bullish: price makes a lower low, RSI makes a higher low -> reversal up

    Each window (short, long) is scanned independently. The alert score of a
    window is the percentage of its bars that corroborate the divergence, so
    callers can pick their own sensitivity.
    """

    def __init__(
        self,
        period: int = 14,
        overbought: float = 70.0,
        oversold: float = 30.0,
        short_lookback: int = 5,
        long_lookback: int = 25,
    ):
        self._validate_periods(period=period, short_lookback=short_lookback,
                               long_lookback=long_lookback)
        if short_lookback >= long_lookback:
            raise ValidationError(
                f"short_lookback ({short_lookback}) must be below long_lookback ({long_lookback})",
                "short_lookback", short_lookback,
            )
        if not 0 <= oversold < overbought <= 100:
            raise ValidationError(
                f"thresholds must satisfy 0 <= oversold < overbought <= 100, "
                f"got {oversold}/{overbought}",
                "overbought", overbought,
            )
        self.period = period
        self.overbought = overbought
        self.oversold = oversold
        self.short_lookback = short_lookback
        self.long_lookback = long_lookback
        super().__init__(name="rsi_divergence", params={
            "period": period, "overbought": overbought, "oversold": oversold,
            "short_lookback": short_lookback, "long_lookback": long_lookback,
        })

    @classmethod
    def from_settings(cls, settings: OscillatorSettings) -> "DivergenceOscillator":
        return cls(
            period=settings.period,
            overbought=settings.overbought,
            oversold=settings.oversold,
            short_lookback=settings.short_lookback,
            long_lookback=settings.long_lookback,
        )

    @property
    def warmup(self) -> int:
        return self.period

    @property
    def full_warmup(self) -> int:
        """Candles needed before the long window scans only warmed-up bars."""
        return self.period + self.long_lookback

    def calculate(self, reference_price: ArrayLike, highs: ArrayLike,
                  lows: ArrayLike, closes: ArrayLike) -> DivergenceSeries:
        """One RSIDivergenceResult per input index, first `period` entries are warm-up."""
        ref = np.asarray(reference_price, dtype=float)
        high = np.asarray(highs, dtype=float)
        low = np.asarray(lows, dtype=float)
        close = np.asarray(closes, dtype=float)
        if not len(ref) == len(high) == len(low) == len(close):
            raise ValidationError(
                f"input lengths differ: reference={len(ref)} highs={len(high)} "
                f"lows={len(low)} closes={len(close)}",
                "reference_price",
            )

        rsi = self._rsi(ref)
        n = len(ref)
        bull = np.zeros(n, dtype=bool)
        bear = np.zeros(n, dtype=bool)
        bull_alert = np.zeros(n)
        bear_alert = np.zeros(n)

        for i in range(self.period, n):
            for window in (self.short_lookback, self.long_lookback):
                start = max(self.period, i - window)
                if start >= i:
                    continue
                b_flag, b_score = self._bearish(high, rsi, start, i)
                l_flag, l_score = self._bullish(low, rsi, start, i)
                bear[i] = bear[i] or b_flag
                bull[i] = bull[i] or l_flag
                bear_alert[i] = max(bear_alert[i], b_score)
                bull_alert[i] = max(bull_alert[i], l_score)

            # Outside bar: keep the better corroborated side
            if bull[i] and bear[i]:
                if bull_alert[i] > bear_alert[i]:
                    bear[i] = False
                elif bear_alert[i] > bull_alert[i]:
                    bull[i] = False
                else:
                    bull[i] = bear[i] = False

        return DivergenceSeries(rsi, bull, bear, bull_alert, bear_alert, self.period)

    def compute(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()
        ref = ohlc4(df["open"], df["high"], df["low"], df["close"])
        series = self.calculate(ref, df["high"], df["low"], df["close"])
        df["rsi_ref"] = ref
        df["rsi"] = series._rsi
        df["div_bull"] = series._bull.astype(int)
        df["div_bear"] = series._bear.astype(int)
        df["div_bull_alert"] = series._bull_alert
        df["div_bear_alert"] = series._bear_alert
        df["rsi_overbought"] = (df["rsi"] >= self.overbought).astype(int)
        df["rsi_oversold"] = (df["rsi"] <= self.oversold).astype(int)
        self._last_result = df
        return df

    def _rsi(self, ref: np.ndarray) -> np.ndarray:
        if len(ref) == 0:
            return np.zeros(0)
        delta = pd.Series(ref).diff()
        gain = delta.where(delta > 0, 0.0)
        loss = (-delta).where(delta < 0, 0.0)
        gain.iloc[0] = np.nan
        loss.iloc[0] = np.nan

        avg_gain = gain.ewm(alpha=1.0 / self.period, min_periods=self.period, adjust=False).mean()
        avg_loss = loss.ewm(alpha=1.0 / self.period, min_periods=self.period, adjust=False).mean()

        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100.0 - (100.0 / (1.0 + rs))
        # Zero average loss maps to 100 instead of propagating NaN
        rsi = rsi.where(~((avg_loss == 0) & avg_gain.notna()), 100.0)
        rsi = rsi.fillna(50.0).clip(0.0, 100.0).to_numpy()
        rsi[:self.period] = 50.0
        return rsi

    @staticmethod
    def _bearish(high: np.ndarray, rsi: np.ndarray, start: int, i: int):
        window_high = high[start:i]
        if not high[i] > window_high.max():
            return False, 0.0
        peak = start + int(np.argmax(window_high))
        flag = bool(rsi[i] < rsi[peak])
        corroborating = np.count_nonzero((window_high < high[i]) & (rsi[start:i] > rsi[i]))
        score = corroborating / len(window_high) * 100.0
        return flag, score

    @staticmethod
    def _bullish(low: np.ndarray, rsi: np.ndarray, start: int, i: int):
        window_low = low[start:i]
        if not low[i] < window_low.min():
            return False, 0.0
        trough = start + int(np.argmin(window_low))
        flag = bool(rsi[i] > rsi[trough])
        corroborating = np.count_nonzero((window_low > low[i]) & (rsi[start:i] < rsi[i]))
        score = corroborating / len(window_low) * 100.0
        return flag, score

    def to_results(self, data: pd.DataFrame) -> List[RSIDivergenceResult]:
        """Convenience: materialize the full series for an OHLCV DataFrame."""
        ref = ohlc4(data["open"], data["high"], data["low"], data["close"])
        return list(self.calculate(ref, data["high"], data["low"], data["close"]))
