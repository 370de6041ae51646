"""
SIGNAL GATE — Common Utility Functions
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return current UTC timestamp as ISO string."""
    return utc_now().isoformat()


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safe division avoiding ZeroDivisionError."""
    if denominator == 0:
        return default
    return numerator / denominator


def pct_change(old_val: float, new_val: float) -> float:
    """Percentage change between two values."""
    if old_val == 0:
        return 0.0
    return ((new_val - old_val) / abs(old_val)) * 100.0


def clamp(value: float, min_val: float = 0.0, max_val: float = 100.0) -> float:
    """Clamp a value between min and max."""
    return max(min_val, min(max_val, value))


def normalize_symbol(symbol: str) -> str:
    """Normalize symbol format: BTC/USDT -> BTCUSDT, btc-usdt -> BTCUSDT."""
    return symbol.replace("/", "").replace("-", "").strip().upper()

