"""
SIGNAL GATE — Trading Engine
Composition root wiring the indicators, the signal hub and the risk gate.
Instances are caller-owned; build one per process (or per test).
"""
from typing import Any, Dict, List, Optional

from signal_gate.config.settings import AppSettings
from signal_gate.data.models import OpenPosition, TradeHistory
from signal_gate.engines.risk_gate import RiskAssessment, RiskGate, TradeRequest
from signal_gate.engines.signal_combiner import SignalCombiner
from signal_gate.engines.signal_hub import SignalHub
from signal_gate.indicators.action_zone import ZoneClassifier
from signal_gate.indicators.divergence import DivergenceOscillator
from signal_gate.utils.errors import ValidationError
from signal_gate.utils.logger import get_logger

logger = get_logger("trading_engine")


class TradingEngine:
    """Signal hub plus risk gate behind one object."""

    def __init__(self, hub: SignalHub, risk_gate: RiskGate, settings: Optional[AppSettings] = None):
        self.hub = hub
        self.risk_gate = risk_gate
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Optional[AppSettings] = None) -> "TradingEngine":
        settings = settings or AppSettings()
        classifier = ZoneClassifier.from_settings(settings.zone)
        oscillator = DivergenceOscillator.from_settings(settings.oscillator)
        hub = SignalHub(
            classifier,
            oscillator,
            settings.hub,
            combiner=SignalCombiner.from_settings(settings.hub, settings.oscillator),
        )
        engine = cls(hub, RiskGate(settings.risk), settings)
        logger.info("trading_engine_created", warmup=classifier.warmup,
                    rsi_period=oscillator.period, max_candles=settings.hub.max_candles)
        return engine

    def evaluate(
        self,
        symbol: str,
        account_balance: float,
        current_positions: Optional[List[OpenPosition]] = None,
        daily_pnl: float = 0.0,
        recent_trades: Optional[List[TradeHistory]] = None,
    ) -> RiskAssessment:
        """Run the current combined signal for symbol through the risk gate."""
        state = self.hub.get_state(symbol)
        if state is None or state.combined_signal is None:
            raise ValidationError(f"No signal available for {symbol}", "symbol", symbol)
        request = TradeRequest(
            symbol=symbol,
            signal=state.combined_signal,
            account_balance=account_balance,
            current_positions=current_positions or [],
            daily_pnl=daily_pnl,
            recent_trades=recent_trades or [],
            atr_pct=state.metadata.get("atr_pct"),
        )
        return self.risk_gate.assess_trade(request)

    def get_status(self) -> Dict[str, Any]:
        return {
            "hub": self.hub.get_statistics(),
            "symbols": self.hub.symbols,
            "risk": self.risk_gate.get_risk_statistics().to_dict(),
        }

    def shutdown(self) -> None:
        self.hub.shutdown()
