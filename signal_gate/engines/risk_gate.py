"""
SIGNAL GATE — Risk Gate
Approves or rejects a proposed trade, sizes it, recommends leverage and
exit levels, and keeps the rolling trade history behind the daily statistics.
"""
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, Field

from signal_gate.config.settings import RiskSettings
from signal_gate.data.models import IndicatorSignal, OpenPosition, SignalType, TradeHistory
from signal_gate.utils.errors import ValidationError, require_positive
from signal_gate.utils.helpers import clamp, normalize_symbol, safe_divide, utc_now
from signal_gate.utils.logger import get_logger

logger = get_logger("risk_gate")


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    EXTREME = "EXTREME"


class VolatilityLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# Sizing/leverage multiplier per tier; EXTREME means the loss budget is spent
TIER_MULTIPLIERS = {
    RiskLevel.LOW: 1.0,
    RiskLevel.MEDIUM: 0.75,
    RiskLevel.HIGH: 0.5,
    RiskLevel.CRITICAL: 0.25,
    RiskLevel.EXTREME: 0.0,
}

LEVERAGE_CAPS = {
    VolatilityLevel.LOW: 20,
    VolatilityLevel.MEDIUM: 10,
    VolatilityLevel.HIGH: 5,
}


class TradeRequest(BaseModel):
    """Caller-supplied account snapshot for one proposed trade."""
    symbol: str = Field(min_length=1)
    signal: IndicatorSignal
    account_balance: float = Field(gt=0)
    current_positions: List[OpenPosition] = Field(default_factory=list)
    daily_pnl: float = 0.0
    recent_trades: List[TradeHistory] = Field(default_factory=list)
    atr_pct: Optional[float] = Field(default=None, ge=0)


@dataclass
class RiskAssessment:
    approved: bool
    risk_level: RiskLevel
    recommended_position_size: float
    recommended_leverage: int
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    volatility: VolatilityLevel = VolatilityLevel.MEDIUM
    warnings: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["risk_level"] = self.risk_level.value
        d["volatility"] = self.volatility.value
        return d


@dataclass
class RiskStatistics:
    daily_pnl: float
    daily_trades: int
    win_rate: float  # percent of today's closed trades
    consecutive_losses: int
    risk_level: RiskLevel
    total_trades: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["risk_level"] = self.risk_level.value
        return d


class RiskGate:
    """
    Pre-trade risk gate.

    Risk tiers: the four thresholds (low > medium > high > critical) are lower
    bounds of daily loss headroom, i.e. the percentage of the daily loss
    budget (max_daily_loss_pct of balance) still unused:

        headroom >= low_risk       -> LOW
        headroom >= medium_risk    -> MEDIUM
        headroom >= high_risk      -> HIGH
        headroom >= critical_risk  -> CRITICAL
        otherwise                  -> EXTREME (rejected)

    Checks, each adding a warning on failure:
    - HOLD signals are never approved
    - Minimum signal strength
    - Daily loss limit
    - Consecutive losses on the symbol
    - Cooldown since the last recorded trade on the symbol
    - Maximum open positions
    - Symbol concentration
    - Minimum order size
    """

    def __init__(self, settings: Optional[RiskSettings] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.settings = settings or RiskSettings()
        self._validate(self.settings)
        self._clock = clock
        self._history: Dict[str, Deque[TradeHistory]] = {}
        self._last_trade_at: Dict[str, datetime] = {}
        self._last_balance: Optional[float] = None
        self._lock = threading.RLock()

    @staticmethod
    def _validate(s: RiskSettings) -> None:
        tiers = [s.low_risk, s.medium_risk, s.high_risk, s.critical_risk]
        if not all(a > b for a, b in zip(tiers, tiers[1:])):
            raise ValidationError(
                f"risk tiers must be strictly descending, got low={s.low_risk} "
                f"medium={s.medium_risk} high={s.high_risk} critical={s.critical_risk}",
                "low_risk", s.low_risk,
            )
        for name in ("critical_risk", "default_stop_loss_pct", "default_take_profit_pct",
                     "max_leverage", "min_order_size", "max_position_pct", "max_daily_loss_pct",
                     "max_symbol_concentration_pct", "max_open_positions",
                     "max_consecutive_losses", "reference_balance", "max_history",
                     "low_volatility_atr_pct", "high_volatility_atr_pct",
                     "volatility_stop_tightening"):
            require_positive(name, getattr(s, name))
        if s.cooldown_seconds < 0:
            raise ValidationError("cooldown_seconds must not be negative",
                                  "cooldown_seconds", s.cooldown_seconds)
        if s.low_volatility_atr_pct >= s.high_volatility_atr_pct:
            raise ValidationError("low_volatility_atr_pct must be below high_volatility_atr_pct",
                                  "low_volatility_atr_pct", s.low_volatility_atr_pct)
        if not 0 <= s.min_signal_strength <= 100:
            raise ValidationError("min_signal_strength must be within [0, 100]",
                                  "min_signal_strength", s.min_signal_strength)

    # ─── Assessment ───────────────────────────────────────────

    def assess_trade(self, request: Union[TradeRequest, Mapping[str, Any]]) -> RiskAssessment:
        """
        Assess one proposed trade. Policy rejections come back as
        approved=False with warnings; only a malformed request raises.
        """
        req = self._coerce(request)
        s = self.settings
        symbol = normalize_symbol(req.symbol)
        signal = req.signal
        balance = req.account_balance
        warnings: List[str] = []
        reasons: List[str] = []

        with self._lock:
            self._last_balance = balance
            consecutive = self._consecutive_losses(
                list(self._history.get(symbol, ())) + list(req.recent_trades)
            )
            last_trade_at = self._last_trade_at.get(symbol)

        risk_level = self._tier_for(req.daily_pnl, balance)
        multiplier = TIER_MULTIPLIERS[risk_level]
        volatility = self._volatility(req.atr_pct, signal)

        # 1. Direction
        if signal.type is SignalType.HOLD:
            warnings.append("HOLD signal is not tradable")

        # 2. Signal strength
        if signal.strength < s.min_signal_strength:
            warnings.append(
                f"Signal strength too low: {signal.strength:.1f}% (min: {s.min_signal_strength:.0f}%)"
            )
        else:
            reasons.append(f"Signal strength acceptable: {signal.strength:.1f}%")

        # 3. Daily loss limit
        loss_limit = balance * s.max_daily_loss_pct / 100.0
        if req.daily_pnl <= -loss_limit:
            warnings.append(
                f"Daily loss limit exceeded: {req.daily_pnl:.2f} (limit: -{loss_limit:.2f})"
            )
        elif risk_level is RiskLevel.EXTREME:
            warnings.append(f"Daily loss budget nearly exhausted: {req.daily_pnl:.2f}")
        else:
            reasons.append(f"Risk tier {risk_level.value} (size multiplier {multiplier:.2f})")

        # 4. Consecutive losses
        if consecutive >= s.max_consecutive_losses:
            warnings.append(f"Too many consecutive losses: {consecutive}")

        # 5. Cooldown
        if last_trade_at is not None and s.cooldown_seconds > 0:
            elapsed = (self._clock() - last_trade_at).total_seconds()
            if elapsed < s.cooldown_seconds:
                warnings.append(
                    f"Cooldown period active for {symbol}: {s.cooldown_seconds - elapsed:.0f}s remaining"
                )

        # 6. Open positions
        if len(req.current_positions) >= s.max_open_positions:
            warnings.append(f"Maximum open positions reached: {len(req.current_positions)}")

        # 7. Sizing and concentration
        size = balance * s.max_position_pct / 100.0 * signal.strength / 100.0 * multiplier
        size = round(min(size, balance), 8)
        existing = sum(p.notional for p in req.current_positions if normalize_symbol(p.symbol) == symbol)
        concentration = safe_divide(existing + size, balance) * 100.0
        if concentration > s.max_symbol_concentration_pct:
            warnings.append(
                f"Symbol concentration too high: {concentration:.1f}% "
                f"(max: {s.max_symbol_concentration_pct:.0f}%)"
            )
        if signal.type is not SignalType.HOLD and multiplier > 0 and size < s.min_order_size:
            warnings.append(f"Position size {size:.6f} below minimum order size {s.min_order_size}")

        leverage = self._leverage(volatility, signal.strength, multiplier)
        stop_loss, take_profit = self._exit_levels(signal, volatility)

        approved = not warnings
        if approved:
            reasons.append("All risk checks passed")
            reasons.append(f"Position size: {size:.2f}")
            reasons.append(f"Recommended leverage: {leverage}x ({volatility.value} volatility)")

        logger.info(
            "trade_assessed", symbol=symbol, approved=approved, signal=signal.type.value,
            strength=signal.strength, risk_level=risk_level.value, size=size,
            leverage=leverage, warnings=len(warnings),
        )
        return RiskAssessment(
            approved=approved,
            risk_level=risk_level,
            recommended_position_size=size,
            recommended_leverage=leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
            volatility=volatility,
            warnings=warnings,
            reasons=reasons,
        )

    # ─── History ──────────────────────────────────────────────

    def record_trade(self, trade: Union[TradeHistory, Mapping[str, Any]]) -> None:
        if not isinstance(trade, TradeHistory):
            try:
                trade = TradeHistory.model_validate(trade)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Malformed trade: {e.errors()[0]['msg']}", "trade") from e
        symbol = normalize_symbol(trade.symbol)
        with self._lock:
            history = self._history.setdefault(symbol, deque(maxlen=self.settings.max_history))
            history.append(trade)
            last = self._last_trade_at.get(symbol)
            if last is None or trade.timestamp >= last:
                self._last_trade_at[symbol] = trade.timestamp
        logger.debug("trade_recorded", symbol=symbol, side=trade.side, pnl=trade.pnl)

    def get_risk_statistics(self, account_balance: Optional[float] = None) -> RiskStatistics:
        """Statistics over today's UTC window, computed on demand."""
        if account_balance is not None:
            require_positive("account_balance", account_balance)
        now = self._clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)

        with self._lock:
            histories = [list(h) for h in self._history.values()]
            balance = account_balance or self._last_balance or self.settings.reference_balance

        today = [t for h in histories for t in h if day_start <= t.timestamp < day_end]
        closed = [t for t in today if t.pnl is not None]
        wins = sum(1 for t in closed if t.pnl > 0)
        daily_pnl = sum(t.pnl for t in closed)
        consecutive = max((self._consecutive_losses(h) for h in histories), default=0)

        return RiskStatistics(
            daily_pnl=round(daily_pnl, 8),
            daily_trades=len(today),
            win_rate=round(safe_divide(wins, len(today)) * 100.0, 2),
            consecutive_losses=consecutive,
            risk_level=self._tier_for(daily_pnl, balance),
            total_trades=sum(len(h) for h in histories),
        )

    @property
    def trade_history(self) -> List[TradeHistory]:
        with self._lock:
            trades = [t for h in self._history.values() for t in h]
        return sorted(trades, key=lambda t: t.timestamp)

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._last_trade_at.clear()
            self._last_balance = None
        logger.info("risk_gate_reset")

    # ─── Internals ────────────────────────────────────────────

    @staticmethod
    def _coerce(request: Union[TradeRequest, Mapping[str, Any]]) -> TradeRequest:
        if isinstance(request, TradeRequest):
            return request
        if not isinstance(request, Mapping):
            raise ValidationError(f"trade request must be a mapping, got {type(request).__name__}",
                                  "request")
        try:
            return TradeRequest.model_validate(request)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(p) for p in first["loc"])
            raise ValidationError(f"Malformed trade request: {field_name}: {first['msg']}",
                                  field_name) from e

    def daily_loss_headroom(self, daily_pnl: float, balance: float) -> float:
        """Percentage of the daily loss budget still unused, in [0, 100]."""
        budget = balance * self.settings.max_daily_loss_pct / 100.0
        loss = max(0.0, -daily_pnl)
        return clamp(100.0 * (1.0 - safe_divide(loss, budget, default=1.0)))

    def _tier_for(self, daily_pnl: float, balance: float) -> RiskLevel:
        s = self.settings
        headroom = self.daily_loss_headroom(daily_pnl, balance)
        if headroom >= s.low_risk:
            return RiskLevel.LOW
        if headroom >= s.medium_risk:
            return RiskLevel.MEDIUM
        if headroom >= s.high_risk:
            return RiskLevel.HIGH
        if headroom >= s.critical_risk:
            return RiskLevel.CRITICAL
        return RiskLevel.EXTREME

    def _volatility(self, atr_pct: Optional[float], signal: IndicatorSignal) -> VolatilityLevel:
        if atr_pct is None:
            atr_pct = signal.metadata.get("atr_pct")
        if atr_pct is None:
            return VolatilityLevel.MEDIUM
        if atr_pct < self.settings.low_volatility_atr_pct:
            return VolatilityLevel.LOW
        if atr_pct < self.settings.high_volatility_atr_pct:
            return VolatilityLevel.MEDIUM
        return VolatilityLevel.HIGH

    def _leverage(self, volatility: VolatilityLevel, strength: float, multiplier: float) -> int:
        max_leverage = self.settings.max_leverage
        cap = min(LEVERAGE_CAPS[volatility], max_leverage)
        leverage = round(1 + (cap - 1) * strength / 100.0 * multiplier)
        return int(max(1, min(max_leverage, leverage)))

    def _exit_levels(self, signal: IndicatorSignal, volatility: VolatilityLevel):
        if signal.price is None:
            return None, None
        stop_pct = self.settings.default_stop_loss_pct / 100.0
        take_pct = self.settings.default_take_profit_pct / 100.0
        if volatility is VolatilityLevel.HIGH:
            stop_pct *= self.settings.volatility_stop_tightening
        price = signal.price
        if signal.type is SignalType.SELL:
            return round(price * (1 + stop_pct), 8), round(price * (1 - take_pct), 8)
        return round(price * (1 - stop_pct), 8), round(price * (1 + take_pct), 8)

    @staticmethod
    def _consecutive_losses(trades: List[TradeHistory]) -> int:
        count = 0
        for trade in reversed(trades):
            if trade.is_win is False:
                count += 1
            elif trade.is_win is True:
                break
        return count
