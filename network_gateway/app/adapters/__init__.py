"""
Adapters package for the network gateway.

Contains the Transport contract and its httpx-backed implementation. An
adapter encapsulates:

- Base URLs and request shapes
- Per-phase timeouts
- Mapping of client-library exceptions onto shared transport errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .transport import Transport, RawResult, TimeoutConfig
from .http_transport import HttpTransport

__all__ = [
    "Transport",
    "RawResult",
    "TimeoutConfig",
    "HttpTransport",
]
