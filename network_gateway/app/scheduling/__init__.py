"""
Request scheduling for the gateway.
"""

from .batch_scheduler import BatchScheduler, PendingSubmission

__all__ = ["BatchScheduler", "PendingSubmission"]
