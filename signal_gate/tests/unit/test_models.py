"""
SIGNAL GATE — Unit Tests for models, settings, errors and helpers
"""
from datetime import datetime, timezone

import pydantic
import pytest

from signal_gate.config.settings import AppSettings, HubSettings, RiskSettings, ZoneSettings
from signal_gate.data.models import (
    ZONE_ORDER, ActionZone, ActionZoneResult, IndicatorSignal, MarketCandle,
    RSIDivergenceResult, SignalType, TradeHistory, candles_to_frame,
)
from signal_gate.utils.errors import (
    ComputationError, InsufficientDataError, SignalGateError, ValidationError, require_positive,
)
from signal_gate.utils.helpers import clamp, normalize_symbol, pct_change, safe_divide
from signal_gate.tests.factories import make_candles, rising_closes


class TestActionZone:
    def test_order_and_rank(self):
        assert [z.rank for z in ZONE_ORDER] == [3, 2, 1, 0, -1, -2, -3]
        assert ActionZone.GREEN.is_buy_favorable and ActionZone.BLUE.is_buy_favorable
        assert not ActionZone.LIGHT_BLUE.is_buy_favorable
        assert ActionZone.LIGHT_BLUE.is_buy_side
        assert ActionZone.RED.is_sell_favorable
        assert not ActionZone.GRAY.is_buy_side and not ActionZone.GRAY.is_sell_side


class TestResults:
    def test_zone_result_flags_exclusive(self):
        with pytest.raises(pydantic.ValidationError):
            ActionZoneResult(is_buy_signal=True, is_sell_signal=True)

    def test_divergence_flags_exclusive(self):
        with pytest.raises(pydantic.ValidationError):
            RSIDivergenceResult(bullish_divergence=True, bearish_divergence=True)

    def test_strength_bounds(self):
        with pytest.raises(pydantic.ValidationError):
            ActionZoneResult(strength=101)
        with pytest.raises(pydantic.ValidationError):
            IndicatorSignal(type=SignalType.BUY, strength=-1)

    def test_results_are_frozen(self):
        result = ActionZoneResult()
        with pytest.raises(pydantic.ValidationError):
            result.strength = 50


class TestCandles:
    def test_high_below_low_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            MarketCandle(symbol="X", timestamp=datetime.now(timezone.utc),
                         open=1, high=1, low=2, close=1)

    def test_candles_to_frame(self):
        candles = make_candles(rising_closes(5))
        df = candles_to_frame(candles)
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]
        assert len(df) == 5
        assert df["close"].iloc[-1] == pytest.approx(candles[-1].close)

    def test_empty_frame(self):
        assert candles_to_frame([]).empty


class TestTradeHistory:
    def test_side_normalized(self):
        trade = TradeHistory(symbol="BTCUSDT", side="BUY", amount=1, entry_price=100, pnl=5)
        assert trade.side == "buy"
        assert trade.is_win is True

    def test_open_trade_has_no_outcome(self):
        assert TradeHistory(symbol="X", side="sell", amount=1, entry_price=10).is_win is None

    def test_naive_timestamp_becomes_utc(self):
        trade = TradeHistory(symbol="X", side="buy", amount=1, entry_price=10,
                             timestamp=datetime(2024, 1, 1, 12, 0))
        assert trade.timestamp.tzinfo is not None

    def test_invalid_side(self):
        with pytest.raises(pydantic.ValidationError):
            TradeHistory(symbol="X", side="hold", amount=1, entry_price=10)


class TestSettings:
    def test_defaults(self):
        settings = AppSettings()
        assert settings.zone.slow_period == 26
        assert settings.oscillator.long_lookback == 25
        assert settings.hub.max_candles == 500
        risk = settings.risk
        assert (risk.low_risk, risk.medium_risk, risk.high_risk, risk.critical_risk) == (50, 20, 10, 5)
        assert risk.max_leverage == 125
        assert risk.min_order_size == 0.001

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ZONE_SLOW_PERIOD", "30")
        monkeypatch.setenv("RISK_MAX_LEVERAGE", "50")
        assert ZoneSettings().slow_period == 30
        assert RiskSettings().max_leverage == 50

    def test_hub_weights(self):
        hub = HubSettings()
        assert hub.zone_weight + hub.divergence_weight == pytest.approx(1.0)


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(ValidationError, SignalGateError)
        assert issubclass(ValidationError, ValueError)
        assert issubclass(InsufficientDataError, SignalGateError)
        assert issubclass(ComputationError, SignalGateError)

    def test_to_dict(self):
        err = ValidationError("bad period", "period", 0)
        d = err.to_dict()
        assert d["error_code"] == "VALIDATION_ERROR"
        assert d["details"] == {"field": "period", "value": 0}

    def test_insufficient_data(self):
        err = InsufficientDataError(10, 78)
        assert "10/78" in str(err)

    @pytest.mark.parametrize("value", [0, -1, None])
    def test_require_positive(self, value):
        with pytest.raises(ValidationError):
            require_positive("period", value)


class TestHelpers:
    def test_clamp(self):
        assert clamp(150) == 100
        assert clamp(-5) == 0
        assert clamp(5, 0, 3) == 3

    def test_safe_divide(self):
        assert safe_divide(1, 0) == 0.0
        assert safe_divide(1, 0, default=1.0) == 1.0
        assert safe_divide(6, 3) == 2.0

    def test_pct_change(self):
        assert pct_change(100, 110) == pytest.approx(10.0)
        assert pct_change(-50, -25) == pytest.approx(50.0)
        assert pct_change(0, 5) == 0.0

    def test_normalize_symbol(self):
        assert normalize_symbol("btc/usdt") == "BTCUSDT"
        assert normalize_symbol("ETH-USDT") == "ETHUSDT"
