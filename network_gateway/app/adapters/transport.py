"""
Transport contract consumed by the gateway.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-phase timeouts in seconds."""

    connect: float = 10.0
    send: float = 10.0
    receive: float = 10.0

    @classmethod
    def from_config(cls, config) -> "TimeoutConfig":
        return cls(
            connect=config.connect_timeout_seconds,
            send=config.send_timeout_seconds,
            receive=config.receive_timeout_seconds,
        )


@dataclass(frozen=True)
class RawResult:
    """Response returned by a Transport, successful or not."""

    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@runtime_checkable
class Transport(Protocol):
    """The only component that performs network I/O.

    Implementations return a ``RawResult`` for any HTTP response and raise
    ``shared.errors.TransportError`` subclasses for transport failures.
    """

    async def perform(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        *,
        timeout: Optional[TimeoutConfig] = None,
    ) -> RawResult:
        ...

    async def aclose(self) -> None:
        ...
