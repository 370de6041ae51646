"""
SIGNAL GATE — Data Models
Canonical data structures shared by the indicators, the signal hub and the
risk gate.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Sequence
from datetime import datetime, timezone
from enum import Enum
import pandas as pd

from signal_gate.utils.helpers import utc_now

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


class ActionZone(str, Enum):
    """Seven ordered zones, strongest buy first."""
    GREEN = "GREEN"
    BLUE = "BLUE"
    LIGHT_BLUE = "LIGHT_BLUE"
    GRAY = "GRAY"
    YELLOW = "YELLOW"
    ORANGE = "ORANGE"
    RED = "RED"

    @property
    def rank(self) -> int:
        """+3 for GREEN down to -3 for RED."""
        return 3 - ZONE_ORDER.index(self)

    @property
    def is_buy_side(self) -> bool:
        return self.rank > 0

    @property
    def is_sell_side(self) -> bool:
        return self.rank < 0

    @property
    def is_buy_favorable(self) -> bool:
        return self.rank >= 2

    @property
    def is_sell_favorable(self) -> bool:
        return self.rank <= -2


ZONE_ORDER = [
    ActionZone.GREEN, ActionZone.BLUE, ActionZone.LIGHT_BLUE, ActionZone.GRAY,
    ActionZone.YELLOW, ActionZone.ORANGE, ActionZone.RED,
]


class TrendDirection(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class SignalSource(str, Enum):
    ACTION_ZONE = "ACTION_ZONE"
    RSI_DIVERGENCE = "RSI_DIVERGENCE"
    COMBINED = "COMBINED"


class DataQuality(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class MarketCandle(BaseModel):
    """Single OHLCV candle for one symbol."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "MarketCandle":
        if self.high < self.low:
            raise ValueError(f"high {self.high} below low {self.low}")
        return self


class ActionZoneResult(BaseModel):
    """Trend/zone snapshot produced by the zone classifier."""
    model_config = ConfigDict(frozen=True)

    zone: ActionZone = ActionZone.GRAY
    trend: TrendDirection = TrendDirection.NEUTRAL
    strength: float = Field(default=0.0, ge=0, le=100)
    is_buy_signal: bool = False
    is_sell_signal: bool = False

    @model_validator(mode="after")
    def _exclusive_flags(self) -> "ActionZoneResult":
        if self.is_buy_signal and self.is_sell_signal:
            raise ValueError("buy and sell signal flags are mutually exclusive")
        return self


class RSIDivergenceResult(BaseModel):
    """Oscillator reading for one candle."""
    model_config = ConfigDict(frozen=True)

    rsi: float = Field(default=50.0, ge=0, le=100)
    bullish_divergence: bool = False
    bearish_divergence: bool = False
    bullish_divergence_alert: float = Field(default=0.0, ge=0, le=100)
    bearish_divergence_alert: float = Field(default=0.0, ge=0, le=100)
    is_warmup: bool = False

    @model_validator(mode="after")
    def _exclusive_divergence(self) -> "RSIDivergenceResult":
        if self.bullish_divergence and self.bearish_divergence:
            raise ValueError("bullish and bearish divergence cannot both be set")
        return self


class IndicatorSignal(BaseModel):
    """Actionable BUY/SELL/HOLD decision."""
    model_config = ConfigDict(frozen=True)

    type: SignalType
    strength: float = Field(ge=0, le=100)
    source: SignalSource = SignalSource.COMBINED
    message: str = ""
    reasons: List[str] = Field(default_factory=list)
    price: Optional[float] = Field(default=None, gt=0)
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TradeHistory(BaseModel):
    """A recorded trade outcome."""
    symbol: str
    side: str
    amount: float = Field(ge=0)
    entry_price: float = Field(gt=0)
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("side")
    @classmethod
    def _check_side(cls, value: str) -> str:
        side = value.lower()
        if side not in ("buy", "sell"):
            raise ValueError(f"side must be buy or sell, got {value!r}")
        return side

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    @property
    def is_win(self) -> Optional[bool]:
        if self.pnl is None:
            return None
        return self.pnl > 0


class OpenPosition(BaseModel):
    """Open position snapshot supplied by the caller."""
    symbol: str
    side: str = "buy"
    notional: float = Field(default=0.0, ge=0)


def candles_to_frame(candles: Sequence[MarketCandle]) -> pd.DataFrame:
    """Convert a candle sequence into an OHLCV DataFrame indexed by timestamp."""
    if not candles:
        return pd.DataFrame(columns=OHLCV_COLUMNS, dtype=float)
    df = pd.DataFrame(
        [[c.open, c.high, c.low, c.close, c.volume] for c in candles],
        columns=OHLCV_COLUMNS,
        index=pd.DatetimeIndex([c.timestamp for c in candles], name="timestamp"),
        dtype=float,
    )
    return df
