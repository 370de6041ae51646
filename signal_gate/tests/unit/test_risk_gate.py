"""
SIGNAL GATE — Unit Tests for the Risk Gate
"""
import threading
from datetime import timedelta

import pytest

from signal_gate.config.settings import RiskSettings
from signal_gate.data.models import IndicatorSignal, OpenPosition, SignalType, TradeHistory
from signal_gate.engines.risk_gate import RiskGate, RiskLevel, TradeRequest, VolatilityLevel
from signal_gate.utils.errors import ValidationError


def request(signal_type="BUY", strength=75.0, balance=10000.0, **kwargs):
    signal = kwargs.pop("signal", None) or {"type": signal_type, "strength": strength}
    return {
        "symbol": kwargs.pop("symbol", "BTCUSDT"),
        "signal": signal,
        "account_balance": balance,
        "current_positions": kwargs.pop("current_positions", []),
        "daily_pnl": kwargs.pop("daily_pnl", 0.0),
        "recent_trades": kwargs.pop("recent_trades", []),
        **kwargs,
    }


def trade(clock, pnl, symbol="BTCUSDT", seconds_ago=3600):
    return TradeHistory(symbol=symbol, side="buy", amount=0.1, entry_price=100.0, pnl=pnl,
                        timestamp=clock.datetime() - timedelta(seconds=seconds_ago))


class TestConstruction:
    def test_tiers_must_descend(self):
        with pytest.raises(ValidationError):
            RiskGate(RiskSettings(low_risk=20, medium_risk=50))

    def test_equal_tiers_rejected(self):
        with pytest.raises(ValidationError):
            RiskGate(RiskSettings(high_risk=10, critical_risk=10))

    @pytest.mark.parametrize("field", ["max_leverage", "min_order_size", "default_stop_loss_pct",
                                       "max_open_positions"])
    def test_non_positive_limits_rejected(self, field):
        with pytest.raises(ValidationError):
            RiskGate(RiskSettings(**{field: 0}))


class TestScenario:
    def test_reference_buy(self, risk_gate):
        result = risk_gate.assess_trade(request())
        assert result.approved
        assert 0 < result.recommended_position_size <= 10000
        assert 1 <= result.recommended_leverage <= 125
        assert result.recommended_position_size == pytest.approx(375.0)
        assert result.recommended_leverage == 8
        assert result.risk_level == RiskLevel.LOW
        assert result.warnings == []
        assert "All risk checks passed" in result.reasons

    def test_accepts_model(self, risk_gate):
        req = TradeRequest(symbol="BTCUSDT", account_balance=10000,
                           signal=IndicatorSignal(type=SignalType.BUY, strength=75))
        assert risk_gate.assess_trade(req).approved

    @pytest.mark.parametrize("kwargs", [
        {},
        {"strength": 100.0},
        {"balance": 1_000_000.0},
        {"daily_pnl": 500.0},
        {"current_positions": [{"symbol": "ETHUSDT", "notional": 10}]},
    ])
    def test_hold_never_approved(self, risk_gate, kwargs):
        result = risk_gate.assess_trade(request(signal_type="HOLD", **kwargs))
        assert not result.approved
        assert "HOLD signal is not tradable" in result.warnings


class TestPolicy:
    def test_weak_signal(self, risk_gate):
        result = risk_gate.assess_trade(request(strength=55))
        assert not result.approved
        assert any("Signal strength too low" in w for w in result.warnings)

    def test_daily_loss_limit(self, risk_gate):
        result = risk_gate.assess_trade(request(daily_pnl=-200.0))
        assert not result.approved
        assert result.risk_level == RiskLevel.EXTREME
        assert result.recommended_position_size == 0
        assert any("Daily loss limit exceeded" in w for w in result.warnings)

    @pytest.mark.parametrize("daily_pnl,level,multiplier", [
        (0.0, RiskLevel.LOW, 1.0),
        (-100.0, RiskLevel.LOW, 1.0),
        (-120.0, RiskLevel.MEDIUM, 0.75),
        (-170.0, RiskLevel.HIGH, 0.5),
        (-185.0, RiskLevel.CRITICAL, 0.25),
    ])
    def test_tiers_scale_size(self, risk_gate, daily_pnl, level, multiplier):
        result = risk_gate.assess_trade(request(strength=80, daily_pnl=daily_pnl))
        assert result.risk_level == level
        assert result.recommended_position_size == pytest.approx(10000 * 0.05 * 0.8 * multiplier)
        assert result.approved

    def test_budget_nearly_spent_rejected(self, risk_gate):
        result = risk_gate.assess_trade(request(daily_pnl=-195.0))
        assert result.risk_level == RiskLevel.EXTREME
        assert not result.approved

    def test_max_open_positions(self, risk_gate):
        positions = [{"symbol": s, "notional": 10} for s in ("ETHUSDT", "SOLUSDT", "XRPUSDT")]
        result = risk_gate.assess_trade(request(current_positions=positions))
        assert not result.approved
        assert any("Maximum open positions" in w for w in result.warnings)

    def test_symbol_concentration(self, risk_gate):
        result = risk_gate.assess_trade(request(current_positions=[{"symbol": "BTC/USDT", "notional": 2400}]))
        assert not result.approved
        assert any("concentration" in w for w in result.warnings)

    def test_other_symbol_not_concentrated(self, risk_gate):
        result = risk_gate.assess_trade(request(current_positions=[{"symbol": "ETHUSDT", "notional": 2400}]))
        assert result.approved

    def test_consecutive_losses_from_request(self, risk_gate, fake_clock):
        losses = [trade(fake_clock, -10, seconds_ago=3600 - i) for i in range(3)]
        result = risk_gate.assess_trade(request(recent_trades=losses))
        assert not result.approved
        assert any("consecutive losses: 3" in w for w in result.warnings)

    def test_win_resets_loss_streak(self, risk_gate, fake_clock):
        trades = [trade(fake_clock, -10), trade(fake_clock, -10), trade(fake_clock, 5), trade(fake_clock, -10)]
        assert risk_gate.assess_trade(request(recent_trades=trades)).approved

    def test_cooldown(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, 10, seconds_ago=60))
        result = risk_gate.assess_trade(request())
        assert not result.approved
        assert any("Cooldown" in w for w in result.warnings)
        fake_clock.advance(300)
        assert risk_gate.assess_trade(request()).approved

    def test_cooldown_is_per_symbol(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, 10, symbol="ETHUSDT", seconds_ago=10))
        assert risk_gate.assess_trade(request()).approved

    def test_min_order_size(self, fake_clock):
        gate = RiskGate(RiskSettings(min_order_size=1000), clock=fake_clock.datetime)
        result = gate.assess_trade(request())
        assert not result.approved
        assert any("minimum order size" in w for w in result.warnings)


class TestLeverageAndExits:
    def test_exit_levels_buy(self, risk_gate):
        signal = {"type": "BUY", "strength": 75, "price": 100.0}
        result = risk_gate.assess_trade(request(signal=signal))
        assert result.stop_loss == pytest.approx(95.0)
        assert result.take_profit == pytest.approx(110.0)

    def test_exit_levels_sell(self, risk_gate):
        signal = {"type": "SELL", "strength": 75, "price": 100.0}
        result = risk_gate.assess_trade(request(signal=signal))
        assert result.stop_loss == pytest.approx(105.0)
        assert result.take_profit == pytest.approx(90.0)

    def test_no_price_no_exits(self, risk_gate):
        result = risk_gate.assess_trade(request())
        assert result.stop_loss is None
        assert result.take_profit is None

    def test_high_volatility_tightens_stop_and_leverage(self, risk_gate):
        signal = {"type": "BUY", "strength": 75, "price": 100.0}
        result = risk_gate.assess_trade(request(signal=signal, atr_pct=5.0))
        assert result.volatility == VolatilityLevel.HIGH
        assert result.stop_loss == pytest.approx(97.0)
        assert result.recommended_leverage == 4

    def test_volatility_from_signal_metadata(self, risk_gate):
        signal = {"type": "BUY", "strength": 100, "metadata": {"atr_pct": 0.5}}
        result = risk_gate.assess_trade(request(signal=signal))
        assert result.volatility == VolatilityLevel.LOW
        assert result.recommended_leverage == 20

    def test_leverage_capped_by_max(self, fake_clock):
        gate = RiskGate(RiskSettings(max_leverage=3), clock=fake_clock.datetime)
        result = gate.assess_trade(request(strength=100))
        assert result.recommended_leverage == 3


class TestMalformedInput:
    @pytest.mark.parametrize("payload", [
        {"symbol": "BTCUSDT", "signal": {"type": "BUY", "strength": 75}},
        {"symbol": "BTCUSDT", "account_balance": 10000},
        {"symbol": "BTCUSDT", "signal": {"type": "BUY", "strength": 75}, "account_balance": -5},
        {"symbol": "BTCUSDT", "signal": {"type": "MAYBE", "strength": 75}, "account_balance": 100},
    ])
    def test_raises_validation_error(self, risk_gate, payload):
        with pytest.raises(ValidationError):
            risk_gate.assess_trade(payload)

    def test_non_mapping(self, risk_gate):
        with pytest.raises(ValidationError):
            risk_gate.assess_trade(["BTCUSDT"])

    def test_malformed_trade(self, risk_gate):
        with pytest.raises(ValidationError):
            risk_gate.record_trade({"symbol": "BTCUSDT", "side": "buy"})


class TestStatistics:
    def test_record_then_stats(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, 25.0, seconds_ago=0))
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 1
        assert stats.win_rate == 100.0
        assert stats.daily_pnl == 25.0
        risk_gate.record_trade(trade(fake_clock, -5.0, seconds_ago=0))
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 2
        assert stats.win_rate == 50.0
        assert stats.consecutive_losses == 1

    def test_empty(self, risk_gate):
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 0
        assert stats.win_rate == 0.0
        assert stats.risk_level == RiskLevel.LOW

    def test_only_todays_window(self, risk_gate, fake_clock):
        fake_clock.advance(12 * 3600)
        risk_gate.record_trade(trade(fake_clock, 10.0, seconds_ago=2 * 86400))
        risk_gate.record_trade(trade(fake_clock, 10.0, seconds_ago=0))
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 1
        assert stats.total_trades == 2

    def test_risk_level_from_daily_pnl(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, -150.0, seconds_ago=0))
        assert risk_gate.get_risk_statistics(account_balance=10000).risk_level == RiskLevel.MEDIUM
        assert risk_gate.get_risk_statistics(account_balance=1000).risk_level == RiskLevel.EXTREME

    def test_open_trade_counts_without_outcome(self, risk_gate, fake_clock):
        risk_gate.record_trade(TradeHistory(symbol="BTCUSDT", side="buy", amount=1, entry_price=100,
                                            timestamp=fake_clock.datetime()))
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 1
        assert stats.win_rate == 0.0

    def test_win_rate_counts_open_trades(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, 10.0, seconds_ago=0))
        risk_gate.record_trade(trade(fake_clock, None, symbol="ETHUSDT", seconds_ago=0))
        stats = risk_gate.get_risk_statistics()
        assert stats.daily_trades == 2
        assert stats.win_rate == 50.0
        assert stats.daily_pnl == 10.0

    def test_reset(self, risk_gate, fake_clock):
        risk_gate.record_trade(trade(fake_clock, 10.0, seconds_ago=0))
        risk_gate.reset()
        assert risk_gate.trade_history == []
        assert risk_gate.get_risk_statistics().daily_trades == 0

    def test_concurrent_recording(self, risk_gate, fake_clock):
        def worker():
            for _ in range(50):
                risk_gate.record_trade(trade(fake_clock, 1.0, seconds_ago=0))
                risk_gate.get_risk_statistics()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert risk_gate.get_risk_statistics().daily_trades == 200
