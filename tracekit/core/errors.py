"""Shared error codes and exception taxonomy for the tracing SDK.

Only configuration errors are meant to reach application code at startup.
The remaining exceptions are raised inside the SDK and handled there,
except ``SpanAlreadyEnded`` which signals misuse by instrumentation code.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SPAN_ALREADY_ENDED = "SPAN_ALREADY_ENDED"
    PROPAGATION_DECODE_ERROR = "PROPAGATION_DECODE_ERROR"
    TRANSMISSION_ERROR = "TRANSMISSION_ERROR"
    SHUTDOWN_TIMEOUT = "SHUTDOWN_TIMEOUT"


class TraceKitError(Exception):
    """Base class for all SDK errors."""

    code: ErrorCode = ErrorCode.CONFIGURATION_ERROR

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class ConfigurationError(TraceKitError):
    """Missing or invalid required configuration. Fatal at startup."""

    code = ErrorCode.CONFIGURATION_ERROR


class SpanAlreadyEnded(TraceKitError):
    """A span was mutated or ended after it had already been ended."""

    code = ErrorCode.SPAN_ALREADY_ENDED

    def __init__(self, span_name: str, span_id: str = ""):
        super().__init__(f"Span '{span_name}' ({span_id}) has already ended")
        self.span_name = span_name
        self.span_id = span_id


class PropagationDecodeError(TraceKitError):
    """Inbound trace headers could not be decoded."""

    code = ErrorCode.PROPAGATION_DECODE_ERROR


class TransmissionError(TraceKitError):
    """A batch could not be delivered to the collector."""

    code = ErrorCode.TRANSMISSION_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ShutdownTimeout(TraceKitError):
    """The export flush did not finish before the shutdown deadline."""

    code = ErrorCode.SHUTDOWN_TIMEOUT

    def __init__(self, message: str, dropped: int = 0):
        super().__init__(message)
        self.dropped = dropped


__all__ = [
    "ErrorCode",
    "TraceKitError",
    "ConfigurationError",
    "SpanAlreadyEnded",
    "PropagationDecodeError",
    "TransmissionError",
    "ShutdownTimeout",
]
