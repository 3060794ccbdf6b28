"""
Shared error handling for the network gateway.

Exceptions defined here are internal signalling: transports raise them,
the gateway catches them and turns them into classified ``Failure`` values.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayException(Exception):
    """Base exception for gateway components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class TransportError(GatewayException):
    """Transport-level failure raised by a Transport implementation."""

    def __init__(self, message: str = "Transport error", details: Optional[Dict[str, Any]] = None,
                 code: str = "TRANSPORT_ERROR"):
        super().__init__(code, message, details)


class TransportTimeoutError(TransportError):
    """Connect, send or receive timeout."""

    PHASES = ("connect", "send", "receive")

    def __init__(self, phase: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        if phase not in self.PHASES:
            raise ValueError(f"Unknown timeout phase: {phase}")
        self.phase = phase
        super().__init__(
            message or f"{phase} timeout",
            {"phase": phase, **(details or {})},
            code=f"{phase.upper()}_TIMEOUT",
        )


class TransportConnectionError(TransportError):
    """Connection could not be established."""

    def __init__(self, message: str = "Connection could not be established",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CONNECTION_ERROR")


class TransportCancelledError(TransportError):
    """Transport call was cancelled explicitly."""

    def __init__(self, message: str = "Request cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CANCELLED")


class TransportStatusError(TransportError):
    """Non-success HTTP status surfaced as an exception."""

    def __init__(self, status_code: int, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__(
            message or f"Unexpected status {status_code}",
            {"status_code": status_code, **(details or {})},
            code=f"HTTP_{status_code}",
        )


class SchedulerClosedError(GatewayException):
    """Submission to a scheduler that has been shut down."""

    def __init__(self, message: str = "Batch scheduler is shut down", details: Optional[Dict[str, Any]] = None):
        super().__init__("SCHEDULER_CLOSED", message, details)


class FailureError(GatewayException):
    """Raised by ``Result.unwrap()`` when the result holds a failure."""

    def __init__(self, failure: Any):
        self.failure = failure
        super().__init__(
            f"FAILURE_{failure.kind.value.upper()}",
            failure.message,
            {"kind": failure.kind.value, "retryable": failure.retryable, "code": failure.code},
        )
