"""
SIGNAL GATE — Test Configuration & Fixtures
Shared fixtures for all test modules.
"""
import pytest
import numpy as np
from datetime import datetime, timedelta

from signal_gate.config.settings import HubSettings, RiskSettings
from signal_gate.engines.risk_gate import RiskGate
from signal_gate.engines.signal_hub import SignalHub
from signal_gate.indicators.action_zone import ZoneClassifier
from signal_gate.indicators.divergence import DivergenceOscillator

from signal_gate.tests.factories import START, make_candles, rising_closes


@pytest.fixture
def rising_candles():
    """60 candles, closes rising 1% per bar."""
    return make_candles(rising_closes(60))


@pytest.fixture
def falling_candles():
    """60 candles, closes falling 1% per bar."""
    return make_candles(rising_closes(60, step_pct=-1.0))


@pytest.fixture
def flat_candles():
    """60 candles with identical OHLC (zero variance)."""
    return make_candles([100.0] * 60, spread=0.0)


@pytest.fixture
def random_walk_candles():
    """300 candles of a seeded random walk."""
    np.random.seed(42)
    returns = np.random.normal(0.0002, 0.01, 300)
    closes = 100.0 * np.exp(np.cumsum(returns))
    return make_candles([float(c) for c in closes], spread=0.004)


@pytest.fixture
def fast_classifier():
    """Short periods so a 60 candle history leaves warm-up (warm-up 30)."""
    return ZoneClassifier(fast_period=5, slow_period=10, smoothing_period=4)


@pytest.fixture
def oscillator():
    return DivergenceOscillator()


@pytest.fixture
def hub_settings():
    return HubSettings(max_candles=200, default_interval_seconds=0.05)


@pytest.fixture
def hub(fast_classifier, oscillator, hub_settings):
    h = SignalHub(fast_classifier, oscillator, hub_settings)
    yield h
    h.shutdown()


class FakeClock:
    """Manually advanced clock usable for both monotonic seconds and datetimes."""

    def __init__(self, now: float = 0.0, start: datetime = START):
        self.now = now
        self.start = start

    def __call__(self) -> float:
        return self.now

    def datetime(self) -> datetime:
        return self.start + timedelta(seconds=self.now)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def risk_gate(fake_clock):
    return RiskGate(RiskSettings(), clock=fake_clock.datetime)
