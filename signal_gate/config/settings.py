"""
SIGNAL GATE — Central Configuration
All settings are loaded from environment variables with sensible defaults.
Settings only carry values; each engine component validates the values it
receives when it is constructed.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, Tuple


class ZoneSettings(BaseSettings):
    """Action zone classifier parameters."""
    fast_period: int = 12
    slow_period: int = 26
    smoothing_period: int = 9
    atr_period: int = 14
    trend_window: int = 5
    trend_deadband_pct: float = 0.05  # slow EMA slope, % per bar
    zone_thresholds: Tuple[float, float, float] = (0.25, 0.75, 1.5)  # in ATR units
    strength_scale: float = 2.0  # normalized distance mapped to strength 100
    warmup_factor: float = 3.0  # warm-up = warmup_factor * slow_period

    model_config = SettingsConfigDict(env_prefix="ZONE_", env_file=".env", extra="ignore")


class OscillatorSettings(BaseSettings):
    """RSI divergence oscillator parameters."""
    period: int = 14
    overbought: float = 70.0
    oversold: float = 30.0
    short_lookback: int = 5
    long_lookback: int = 25

    model_config = SettingsConfigDict(env_prefix="RSI_", env_file=".env", extra="ignore")


class HubSettings(BaseSettings):
    """Signal hub retention, refresh cadence, weighting and quality grading."""
    max_candles: int = 500
    default_interval_seconds: float = 5.0
    stale_factor: float = 3.0

    zone_weight: float = 0.6
    divergence_weight: float = 0.4
    fresh_signal_bonus: float = 15.0
    min_action_strength: float = 25.0
    disagreement_penalty: float = 0.5

    good_history_factor: float = 1.5
    excellent_history_factor: float = 2.0

    max_workers: int = 4

    model_config = SettingsConfigDict(env_prefix="HUB_", env_file=".env", extra="ignore")


class RiskSettings(BaseSettings):
    """Risk gate tiers, limits and exit defaults."""
    # Lower bounds of daily loss headroom (% of the daily loss budget unused)
    low_risk: float = 50.0
    medium_risk: float = 20.0
    high_risk: float = 10.0
    critical_risk: float = 5.0

    default_stop_loss_pct: float = 5.0
    default_take_profit_pct: float = 10.0
    max_leverage: int = 125
    min_order_size: float = 0.001

    max_position_pct: float = 5.0
    max_daily_loss_pct: float = 2.0
    max_symbol_concentration_pct: float = 25.0
    max_open_positions: int = 3
    min_signal_strength: float = 60.0
    max_consecutive_losses: int = 3
    cooldown_seconds: float = 300.0
    reference_balance: float = 10000.0

    low_volatility_atr_pct: float = 1.5
    high_volatility_atr_pct: float = 4.0
    volatility_stop_tightening: float = 0.6

    max_history: int = 1000

    model_config = SettingsConfigDict(env_prefix="RISK_", env_file=".env", extra="ignore")


class AppSettings(BaseSettings):
    """Top-level application settings."""
    app_name: str = "SIGNAL GATE"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    zone: ZoneSettings = Field(default_factory=ZoneSettings)
    oscillator: OscillatorSettings = Field(default_factory=OscillatorSettings)
    hub: HubSettings = Field(default_factory=HubSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Process-level settings for the entry point; engine components take theirs explicitly
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings
