"""
SIGNAL GATE — Error Types
Configuration and argument errors are fatal; data and computation errors are
captured per symbol by the signal hub.
"""
from typing import Any, Dict, Optional


class SignalGateError(Exception):
    """Base class for all engine errors."""

    error_code = "SIGNAL_GATE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SignalGateError, ValueError):
    """Malformed configuration or call arguments. Never silently defaulted."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_name: Optional[str] = None, field_value: Any = None):
        details = {"field": field_name} if field_name else {}
        if field_value is not None:
            details["value"] = field_value
        super().__init__(message, details)
        self.field_name = field_name
        self.field_value = field_value


class InsufficientDataError(SignalGateError):
    """Fewer candles than an indicator needs to leave its warm-up window."""

    error_code = "INSUFFICIENT_DATA"

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient data: {available}/{required} candles",
            {"available": available, "required": required},
        )
        self.available = available
        self.required = required


class ComputationError(SignalGateError):
    """Numeric failure while recomputing indicators for a symbol."""

    error_code = "COMPUTATION_ERROR"


def require_positive(name: str, value: float) -> None:
    """Raise ValidationError unless value is strictly positive."""
    if value is None or value <= 0:
        raise ValidationError(f"{name} must be positive, got {value!r}", name, value)
