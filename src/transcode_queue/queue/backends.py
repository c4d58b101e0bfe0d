from __future__ import annotations

"""Abstract base class for the job queue.

This module defines the interface the worker loop and the submission side
depend on. The Redis implementation lives in ``lifecycle.py``; tests run the
same implementation against an in-process fake server.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .models import BatchStats, Job, JobPayload, QueueStats


class QueueBackend(ABC):
    """Abstract queue interface.

    Implementations must provide:
    - Exactly-one-claimant delivery of each queued job
    - Record and membership updates that move together
    - Retry with exponential backoff and a dead-letter queue
    - Batch accounting for bulk submissions
    """

    @abstractmethod
    def enqueue(self, payload: "JobPayload") -> str:
        """Create a job record and append it to the pending queue.

        Args:
            payload: What to process and where to report it

        Returns:
            The new job id
        """
        pass

    @abstractmethod
    def enqueue_batch(self, payloads: List["JobPayload"]) -> Tuple[str, List[str]]:
        """Enqueue many jobs under one batch id in a single round trip.

        Args:
            payloads: Job payloads; their batch_id is overwritten

        Returns:
            Tuple of (batch_id, job_ids in submission order)
        """
        pass

    @abstractmethod
    def claim_next(self, timeout: int = 5) -> Optional["Job"]:
        """Block up to ``timeout`` seconds for the next pending job.

        Args:
            timeout: Blocking timeout in seconds

        Returns:
            The claimed Job (status=processing, attempts incremented),
            or None when the queue stayed empty

        Implementation notes:
        - MUST deliver a given job to exactly one concurrent caller
        - Timeout is not an error
        """
        pass

    @abstractmethod
    def complete(self, job_id: str, result: Dict[str, Any]) -> bool:
        """Mark a claimed job completed and attach its result.

        Returns:
            False if the record is missing or the job is not currently claimed
        """
        pass

    @abstractmethod
    def fail(self, job_id: str, error: str) -> bool:
        """Record a failure and apply the retry policy.

        Returns:
            True if the job will be retried, False if it was dead-lettered
            (or the record is missing / not currently claimed)
        """
        pass

    @abstractmethod
    def promote_delayed(self) -> int:
        """Move retry entries whose ready time has passed back to pending.

        Returns:
            Count of promoted jobs
        """
        pass

    @abstractmethod
    def recover_stranded(self) -> int:
        """Requeue claimed ids whose claim never completed its record update.

        Returns:
            Count of requeued jobs
        """
        pass

    @abstractmethod
    def stats(self) -> "QueueStats":
        """Snapshot of queue counters."""
        pass

    @abstractmethod
    def batch_stats(self, batch_id: str) -> Optional["BatchStats"]:
        """Snapshot of one batch, or None if unknown."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional["Job"]:
        """Read a job record (for status commands)."""
        pass

    @abstractmethod
    def clear_all(self) -> None:
        """Destructive reset of every queue and counter (administrative)."""
        pass
