"""
Failure taxonomy and result values returned across the gateway boundary.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from shared.errors import FailureError

V = TypeVar("V")


class FailureKind(str, Enum):
    """Closed set of failure categories callers branch on."""

    TIMEOUT = "timeout"
    NETWORK_UNAVAILABLE = "network_unavailable"
    CANCELLED = "cancelled"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class Failure(BaseModel):
    """Classified, immutable failure value."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str
    code: Optional[str] = None
    retryable: bool
    timestamp: float
    # Stored as a read-only view so details cannot change after construction
    details: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("details", mode="after")
    @classmethod
    def _freeze_details(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("details")
    def _serialize_details(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(value)

    @property
    def retry_after(self) -> Optional[float]:
        """Server-suggested delay in seconds, when one was supplied."""
        return self.details.get("retry_after")


class Result(Generic[V]):
    """Either a success value or a ``Failure``.

    Gateway operations return a Result instead of raising, so callers
    handle failures explicitly::

        result = await gateway.read("/users", {"page": 1})
        if result.ok:
            render(result.value)
        elif result.failure.retryable:
            schedule_retry()
    """

    __slots__ = ("_value", "_failure")

    def __init__(self, value: Optional[V] = None, failure: Optional[Failure] = None):
        self._value = value
        self._failure = failure

    @classmethod
    def success(cls, value: V) -> "Result[V]":
        return cls(value=value)

    @classmethod
    def from_failure(cls, failure: Failure) -> "Result[V]":
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self._failure is None

    @property
    def value(self) -> Optional[V]:
        return self._value

    @property
    def failure(self) -> Optional[Failure]:
        return self._failure

    def unwrap(self) -> V:
        """Return the value or raise ``FailureError`` carrying the failure."""
        if self._failure is not None:
            raise FailureError(self._failure)
        return self._value  # type: ignore[return-value]

    def value_or(self, default: V) -> V:
        return self._value if self._failure is None else default  # type: ignore[return-value]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        return self._value == other._value and self._failure == other._failure

    def __repr__(self) -> str:
        if self._failure is not None:
            return f"Result(failure={self._failure.kind.value!r})"
        return f"Result(value={self._value!r})"
