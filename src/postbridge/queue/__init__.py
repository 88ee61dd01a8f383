"""Delivery queue for Postbridge.

Holds delivery jobs, bounds concurrent publishing, retries transient
failures with exponential backoff and skips duplicate deliveries.
"""

from postbridge.queue.conflicts import ConflictCheckResult, ConflictResolver, ConflictStrategy
from postbridge.queue.manager import QueueManager
from postbridge.queue.models import (
    DeliveryJob,
    JobPriority,
    JobStatus,
    QueueStatusReport,
    RetryPolicy,
)
from postbridge.queue.retry import RetryStrategy, is_retryable
from postbridge.queue.storage import JobStorage

__all__ = [
    "ConflictCheckResult",
    "ConflictResolver",
    "ConflictStrategy",
    "DeliveryJob",
    "JobPriority",
    "JobStatus",
    "JobStorage",
    "QueueManager",
    "QueueStatusReport",
    "RetryPolicy",
    "RetryStrategy",
    "is_retryable",
]
