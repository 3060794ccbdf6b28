"""
Failure classification for transport outcomes.

``FailureClassifier.classify`` is total: every exception, response or status
code maps to exactly one ``FailureKind``. The mapping is:

    timeout (connect/send/receive)        -> TIMEOUT              retryable
    connection could not be established   -> NETWORK_UNAVAILABLE  retryable
    cancellation                          -> CANCELLED
    HTTP 400, 422                         -> VALIDATION
    HTTP 401                              -> AUTHENTICATION
    HTTP 403                              -> AUTHORIZATION
    HTTP 404                              -> NOT_FOUND
    HTTP 429                              -> RATE_LIMITED         retryable
    HTTP 5xx                              -> SERVER_ERROR         retryable
    anything else                         -> UNKNOWN
"""

import asyncio
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Union

import httpx

from shared.errors import (
    GatewayException,
    TransportCancelledError,
    TransportConnectionError,
    TransportStatusError,
    TransportTimeoutError,
)
from ..adapters.transport import RawResult
from ..clock import Clock, SystemClock
from .models import Failure, FailureKind

Outcome = Union[BaseException, RawResult, httpx.Response, int]

RETRYABLE_KINDS = frozenset({
    FailureKind.TIMEOUT,
    FailureKind.NETWORK_UNAVAILABLE,
    FailureKind.RATE_LIMITED,
    FailureKind.SERVER_ERROR,
})

STATUS_KINDS: Dict[int, FailureKind] = {
    400: FailureKind.VALIDATION,
    401: FailureKind.AUTHENTICATION,
    403: FailureKind.AUTHORIZATION,
    404: FailureKind.NOT_FOUND,
    422: FailureKind.VALIDATION,
    429: FailureKind.RATE_LIMITED,
}


def kind_for_status(status_code: int) -> FailureKind:
    """Map an HTTP status code to a failure kind."""
    if status_code in STATUS_KINDS:
        return STATUS_KINDS[status_code]
    if 500 <= status_code <= 599:
        return FailureKind.SERVER_ERROR
    return FailureKind.UNKNOWN


def parse_retry_after(value: Any, now: float) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if value is None or value == "":
        return None
    value = str(value).strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    return max(0.0, retry_at.timestamp() - now)


class FailureClassifier:
    """Converts raw transport outcomes into ``Failure`` values."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def classify(self, outcome: Outcome) -> Failure:
        """Classify an exception, response or status code."""
        now = self.clock.now()

        if isinstance(outcome, bool):
            return self._unknown(f"Unclassifiable outcome: {outcome!r}", now)
        if isinstance(outcome, int):
            return self._from_status(outcome, None, None, now)
        if isinstance(outcome, RawResult):
            return self._from_status(
                outcome.status_code,
                _describe_body(outcome.body),
                outcome.header("retry-after"),
                now,
            )
        if isinstance(outcome, httpx.Response):
            return self._from_status(
                outcome.status_code,
                outcome.reason_phrase or None,
                outcome.headers.get("retry-after"),
                now,
            )
        if isinstance(outcome, BaseException):
            return self._from_exception(outcome, now)
        return self._unknown(f"Unclassifiable outcome: {type(outcome).__name__}", now)

    __call__ = classify

    def _from_status(self, status_code: int, message: Optional[str], retry_after: Any,
                     now: float) -> Failure:
        kind = kind_for_status(status_code)
        details: Dict[str, Any] = {"status_code": status_code}
        if kind in (FailureKind.RATE_LIMITED, FailureKind.SERVER_ERROR):
            delay = parse_retry_after(retry_after, now)
            if delay is not None:
                details["retry_after"] = delay
        return self._build(
            kind,
            message or f"HTTP {status_code}",
            str(status_code),
            now,
            details,
        )

    def _from_exception(self, exc: BaseException, now: float) -> Failure:
        message = str(exc) or type(exc).__name__

        if isinstance(exc, TransportStatusError):
            return self._from_status(exc.status_code, message, exc.details.get("retry_after"), now)
        if isinstance(exc, httpx.HTTPStatusError):
            return self._from_status(
                exc.response.status_code,
                message,
                exc.response.headers.get("retry-after"),
                now,
            )

        if isinstance(exc, TransportTimeoutError):
            return self._build(FailureKind.TIMEOUT, message, exc.code, now, {"phase": exc.phase})
        if isinstance(exc, httpx.TimeoutException):
            return self._build(FailureKind.TIMEOUT, message, _httpx_timeout_code(exc), now,
                               {"phase": _httpx_timeout_phase(exc)})
        if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
            return self._build(FailureKind.TIMEOUT, message, "TIMEOUT", now)

        if isinstance(exc, (TransportCancelledError, asyncio.CancelledError)):
            return self._build(FailureKind.CANCELLED, str(exc) or "Request cancelled", "CANCELLED", now)

        if isinstance(exc, TransportConnectionError):
            return self._build(FailureKind.NETWORK_UNAVAILABLE, message, exc.code, now)
        if isinstance(exc, (httpx.ConnectError, ConnectionError)):
            return self._build(FailureKind.NETWORK_UNAVAILABLE, message, "CONNECTION_ERROR", now)

        code = exc.code if isinstance(exc, GatewayException) else type(exc).__name__
        return self._unknown(message, now, code=code)

    def _unknown(self, message: str, now: float, code: Optional[str] = None) -> Failure:
        return self._build(FailureKind.UNKNOWN, message, code, now)

    def _build(self, kind: FailureKind, message: str, code: Optional[str], now: float,
               details: Optional[Dict[str, Any]] = None) -> Failure:
        return Failure(
            kind=kind,
            message=message,
            code=code,
            retryable=kind in RETRYABLE_KINDS,
            timestamp=now,
            details=details or {},
        )


def _httpx_timeout_phase(exc: httpx.TimeoutException) -> str:
    if isinstance(exc, httpx.WriteTimeout):
        return "send"
    if isinstance(exc, httpx.ReadTimeout):
        return "receive"
    return "connect"


def _httpx_timeout_code(exc: httpx.TimeoutException) -> str:
    return f"{_httpx_timeout_phase(exc).upper()}_TIMEOUT"


def _describe_body(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if isinstance(body.get(key), str):
                return body[key]
        return None
    if isinstance(body, str) and body:
        return body[:200]
    return None


_default_classifier = FailureClassifier()


def classify(outcome: Outcome) -> Failure:
    """Classify with a wall-clock timestamp."""
    return _default_classifier.classify(outcome)
