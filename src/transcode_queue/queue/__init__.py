"""Redis-backed job queue with retry, dead-letter and batch accounting."""

from .backends import QueueBackend
from .client import create_redis_client
from .lifecycle import JobLifecycleManager, backoff_delay, default_worker_id
from .models import BatchStats, Job, JobPayload, JobStatus, QueueStats
from .store import QueueStore

__all__ = [
    "QueueBackend",
    "create_redis_client",
    "JobLifecycleManager",
    "backoff_delay",
    "default_worker_id",
    "BatchStats",
    "Job",
    "JobPayload",
    "JobStatus",
    "QueueStats",
    "QueueStore",
]
