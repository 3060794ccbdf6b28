"""
Network access gateway with caching, request batching and failure classification.
"""

from .app.gateway import NetworkGateway, create_gateway
from .app.caching import BoundedTTLCache, make_cache_key
from .app.scheduling import BatchScheduler
from .app.failures import Failure, FailureKind, FailureClassifier, Result, classify
from .app.adapters import HttpTransport, RawResult, TimeoutConfig, Transport

__version__ = "1.0.0"

__all__ = [
    "NetworkGateway",
    "create_gateway",
    "BoundedTTLCache",
    "make_cache_key",
    "BatchScheduler",
    "Failure",
    "FailureKind",
    "FailureClassifier",
    "Result",
    "classify",
    "HttpTransport",
    "RawResult",
    "TimeoutConfig",
    "Transport",
]
