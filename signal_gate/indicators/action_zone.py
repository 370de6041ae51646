"""
SIGNAL GATE — Action Zone Classifier
EMA spread (12, 26, 9) classified into seven ordered zones, normalized by ATR
so zone and strength do not depend on the symbol's price magnitude.
"""
import math
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from signal_gate.config.settings import ZoneSettings
from signal_gate.data.models import (
    ActionZone, ActionZoneResult, MarketCandle, TrendDirection, candles_to_frame,
)
from signal_gate.indicators.base import BaseIndicator
from signal_gate.utils.errors import InsufficientDataError, ValidationError
from signal_gate.utils.logger import get_logger

logger = get_logger("action_zone")


class ZoneClassifier(BaseIndicator):
    """
    Trend/zone classifier.

    distance   = EMA(close, fast) - EMA(close, slow)
    smoothed   = EMA(distance, smoothing)
    normalized = smoothed / ATR

    Zones (t1 < t2 < t3, in ATR units):
        normalized >= t3  -> GREEN       normalized <= -t3 -> RED
        normalized >= t2  -> BLUE        normalized <= -t2 -> ORANGE
        normalized >= t1  -> LIGHT_BLUE  normalized <= -t1 -> YELLOW
        otherwise         -> GRAY

    Trend follows the slope of the slow EMA over a short trailing window.
    A buy signal fires only on the row where the zone enters GREEN/BLUE from
    a non buy-favorable zone with a BULLISH trend (sell is symmetric), so a
    symbol resting inside a zone does not fire again. Rows before warm-up are
    forced to GRAY/NEUTRAL/0, which makes the first post-warm-up row a valid
    transition.
    """

    def __init__(
        self,
        fast_period: int = 12,
        slow_period: int = 26,
        smoothing_period: int = 9,
        atr_period: int = 14,
        trend_window: int = 5,
        trend_deadband_pct: float = 0.05,
        zone_thresholds: Sequence[float] = (0.25, 0.75, 1.5),
        strength_scale: float = 2.0,
        warmup_factor: float = 3.0,
    ):
        self._validate_periods(
            fast_period=fast_period,
            slow_period=slow_period,
            smoothing_period=smoothing_period,
            atr_period=atr_period,
            trend_window=trend_window,
            strength_scale=strength_scale,
            warmup_factor=warmup_factor,
        )
        if fast_period >= slow_period:
            raise ValidationError(
                f"fast_period ({fast_period}) must be below slow_period ({slow_period})",
                "fast_period", fast_period,
            )
        if trend_deadband_pct < 0:
            raise ValidationError("trend_deadband_pct must not be negative",
                                  "trend_deadband_pct", trend_deadband_pct)
        thresholds = tuple(float(t) for t in zone_thresholds)
        if len(thresholds) != 3 or not 0 < thresholds[0] < thresholds[1] < thresholds[2]:
            raise ValidationError(
                "zone_thresholds must be three strictly ascending positive values",
                "zone_thresholds", thresholds,
            )

        self.fast_period = fast_period
        self.slow_period = slow_period
        self.smoothing_period = smoothing_period
        self.atr_period = atr_period
        self.trend_window = trend_window
        self.trend_deadband_pct = trend_deadband_pct
        self.zone_thresholds: Tuple[float, float, float] = thresholds
        self.strength_scale = strength_scale
        self.warmup_factor = warmup_factor
        super().__init__(name="action_zone", params={
            "fast": fast_period, "slow": slow_period, "smoothing": smoothing_period,
            "atr": atr_period, "trend_window": trend_window,
        })

    @classmethod
    def from_settings(cls, settings: ZoneSettings) -> "ZoneClassifier":
        return cls(
            fast_period=settings.fast_period,
            slow_period=settings.slow_period,
            smoothing_period=settings.smoothing_period,
            atr_period=settings.atr_period,
            trend_window=settings.trend_window,
            trend_deadband_pct=settings.trend_deadband_pct,
            zone_thresholds=settings.zone_thresholds,
            strength_scale=settings.strength_scale,
            warmup_factor=settings.warmup_factor,
        )

    @property
    def warmup(self) -> int:
        return math.ceil(self.warmup_factor * self.slow_period)

    def compute(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()
        n = len(df)
        close = df["close"].astype(float)

        df["az_ema_fast"] = close.ewm(span=self.fast_period, adjust=False).mean()
        df["az_ema_slow"] = close.ewm(span=self.slow_period, adjust=False).mean()
        df["az_distance"] = df["az_ema_fast"] - df["az_ema_slow"]
        df["az_smoothed"] = df["az_distance"].ewm(span=self.smoothing_period, adjust=False).mean()

        # Wilder ATR as the volatility reference
        high_low = df["high"] - df["low"]
        high_close = (df["high"] - close.shift(1)).abs()
        low_close = (df["low"] - close.shift(1)).abs()
        true_range = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)
        df["az_atr"] = true_range.ewm(alpha=1.0 / self.atr_period, adjust=False).mean()
        df["az_atr_pct"] = (df["az_atr"] / close.replace(0, np.nan) * 100.0).fillna(0.0)

        normalized = (df["az_smoothed"] / df["az_atr"].replace(0, np.nan)).fillna(0.0)
        df["az_normalized"] = normalized

        # Slow EMA slope in % per bar
        slow_prev = df["az_ema_slow"].shift(self.trend_window)
        slope = (df["az_ema_slow"] - slow_prev) / slow_prev.replace(0, np.nan) * 100.0 / self.trend_window
        slope = slope.fillna(0.0)
        df["az_slope_pct"] = slope

        t1, t2, t3 = self.zone_thresholds
        zone = np.select(
            [normalized >= t3, normalized >= t2, normalized >= t1,
             normalized > -t1, normalized > -t2, normalized > -t3],
            [ActionZone.GREEN.value, ActionZone.BLUE.value, ActionZone.LIGHT_BLUE.value,
             ActionZone.GRAY.value, ActionZone.YELLOW.value, ActionZone.ORANGE.value],
            default=ActionZone.RED.value,
        )
        trend = np.select(
            [slope > self.trend_deadband_pct, slope < -self.trend_deadband_pct],
            [TrendDirection.BULLISH.value, TrendDirection.BEARISH.value],
            default=TrendDirection.NEUTRAL.value,
        )
        strength = np.clip(np.abs(normalized.to_numpy()) / self.strength_scale * 100.0, 0.0, 100.0)

        # Rows whose history is shorter than warm-up stay neutral
        valid = (np.arange(n) + 1) >= self.warmup
        zone = np.where(valid, zone, ActionZone.GRAY.value)
        trend = np.where(valid, trend, TrendDirection.NEUTRAL.value)
        strength = np.where(valid, strength, 0.0)

        zone_s = pd.Series(zone, index=df.index)
        prev_zone = zone_s.shift(1).fillna(ActionZone.GRAY.value)
        buy_fav = zone_s.isin([ActionZone.GREEN.value, ActionZone.BLUE.value])
        sell_fav = zone_s.isin([ActionZone.RED.value, ActionZone.ORANGE.value])
        prev_buy_fav = prev_zone.isin([ActionZone.GREEN.value, ActionZone.BLUE.value])
        prev_sell_fav = prev_zone.isin([ActionZone.RED.value, ActionZone.ORANGE.value])

        df["az_zone"] = zone
        df["az_trend"] = trend
        df["az_strength"] = strength
        df["az_buy_signal"] = (buy_fav & ~prev_buy_fav & (trend == TrendDirection.BULLISH.value) & valid).astype(int)
        df["az_sell_signal"] = (sell_fav & ~prev_sell_fav & (trend == TrendDirection.BEARISH.value) & valid).astype(int)

        self._last_result = df
        return df

    def analyze(self, candles: Sequence[MarketCandle], strict: bool = False) -> ActionZoneResult:
        """
        Classify the most recent candle of an ordered candle sequence.
        Below warm-up the neutral result is returned, or InsufficientDataError
        is raised when strict is set.
        """
        if len(candles) < self.warmup:
            if strict:
                raise InsufficientDataError(len(candles), self.warmup)
            logger.debug("action_zone_warmup", candles=len(candles), required=self.warmup)
            return ActionZoneResult()
        return self.analyze_frame(candles_to_frame(candles))

    def analyze_frame(self, data: pd.DataFrame) -> ActionZoneResult:
        if len(data) < self.warmup:
            return ActionZoneResult()
        return self.result_at(self.compute(data))

    def analyze_series(self, candles: Sequence[MarketCandle]) -> List[ActionZoneResult]:
        """One result per candle, each as if the history ended at that candle."""
        if not candles:
            return []
        df = self.compute(candles_to_frame(candles))
        return [self._row_result(row) for _, row in df.iterrows()]

    def result_at(self, computed: pd.DataFrame, index: int = -1) -> ActionZoneResult:
        """Result for one row of a DataFrame returned by compute()."""
        if computed.empty:
            return ActionZoneResult()
        return self._row_result(computed.iloc[index])

    @staticmethod
    def _row_result(row: pd.Series) -> ActionZoneResult:
        return ActionZoneResult(
            zone=ActionZone(row["az_zone"]),
            trend=TrendDirection(row["az_trend"]),
            strength=float(row["az_strength"]),
            is_buy_signal=bool(row["az_buy_signal"]),
            is_sell_signal=bool(row["az_sell_signal"]),
        )
