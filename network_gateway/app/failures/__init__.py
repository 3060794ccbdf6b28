"""
Failure taxonomy and classification.

Everything a transport can throw or return is converted here into a
``Failure`` with a ``FailureKind`` and a ``retryable`` flag; callers decide
retry and backoff from those two fields.
"""

from .models import Failure, FailureKind, Result
from .classifier import FailureClassifier, classify, kind_for_status, RETRYABLE_KINDS

__all__ = [
    "Failure",
    "FailureKind",
    "Result",
    "FailureClassifier",
    "classify",
    "kind_for_status",
    "RETRYABLE_KINDS",
]
