"""Redis implementation of QueueBackend.

This module provides the job state machine on top of QueueStore:
- BLMOVE pending → processing for exactly-one-claimant delivery
- WATCH/MULTI transactions so a record update, its list/zset membership
  change and the counters commit together
- Exponential backoff retry through a delayed sorted set
- Dead-letter queue for jobs that exhausted their attempts
- Batch accounting for bulk submissions
"""

import logging
import os
import socket
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models import QueueConfig
from .backends import QueueBackend
from .models import BatchStats, Job, JobPayload, JobStatus, QueueStats
from .store import (
    STATS_COMPLETED,
    STATS_FAILED,
    STATS_PENDING,
    STATS_PROCESSING,
    STATS_TOTAL,
    QueueStore,
    batch_key,
    job_key,
)

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}_{os.getpid()}"


def backoff_delay(attempts: int, base_s: int = 60) -> int:
    """Retry delay after the given attempt: 2^attempts * base."""
    return (2 ** attempts) * base_s


class JobLifecycleManager(QueueBackend):
    """Job queue with retry, dead-letter and batch semantics.

    Concurrency safety:
    - BLMOVE is the only claim primitive; Redis hands each id to one caller
    - complete/fail/promote WATCH the keys they read, so a concurrent writer
      forces a retry instead of a lost update
    - complete/fail act only on jobs whose record says ``processing``, which
      makes a second call on the same id a reported no-op
    """

    def __init__(
        self,
        store: QueueStore,
        config: Optional[QueueConfig] = None,
        worker_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the manager.

        Args:
            store: Key layout and record IO over a redis client
            config: Retry policy and TTLs (defaults if omitted)
            worker_id: Identity stamped on claimed jobs
            clock: Source of unix time, injectable for tests
        """
        self.store = store
        self.config = config or QueueConfig()
        self.worker_id = worker_id or default_worker_id()
        self._clock = clock

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def _now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _new_job(self, payload: JobPayload) -> Job:
        now = self._now()
        return Job(
            id=f"job_{uuid.uuid4().hex}",
            data=payload,
            status=JobStatus.PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )

    def enqueue(self, payload: JobPayload) -> str:
        """Create the record and append it to the pending queue."""
        job = self._new_job(payload)

        pipe = self.store.client.pipeline(transaction=True)
        QueueStore.write_job(pipe, job)
        pipe.rpush(self.store.queue_name, job.id)
        pipe.incr(STATS_TOTAL)
        pipe.incr(STATS_PENDING)
        pipe.execute()

        logger.info("Job added: %s (post_id=%s)", job.id, payload.post_id)
        return job.id

    def enqueue_batch(self, payloads: List[JobPayload]) -> Tuple[str, List[str]]:
        """Enqueue all payloads under a fresh batch id in one MULTI/EXEC."""
        if not payloads:
            raise ValueError("enqueue_batch requires at least one payload")

        batch_id = f"batch_{uuid.uuid4().hex}"
        job_ids: List[str] = []

        pipe = self.store.client.pipeline(transaction=True)
        for payload in payloads:
            tagged = payload.model_copy(update={"batch_id": batch_id})
            job = self._new_job(tagged)
            QueueStore.write_job(pipe, job)
            pipe.rpush(self.store.queue_name, job.id)
            job_ids.append(job.id)

        total = len(payloads)
        pipe.incrby(STATS_TOTAL, total)
        pipe.incrby(STATS_PENDING, total)
        pipe.hset(
            batch_key(batch_id),
            mapping={"total": total, "completed": 0, "failed": 0, "created_at": self._now()},
        )
        pipe.execute()

        logger.info("Bulk jobs added: %d jobs in batch %s", total, batch_id)
        return batch_id, job_ids

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim_next(self, timeout: int = 5) -> Optional[Job]:
        """Atomically move the head of the pending queue into processing.

        The BLMOVE hands the id to exactly one worker; the follow-up
        transaction stamps the record and moves the counters. If the stamp
        never lands (crash, lost connection) the record still says
        ``pending`` and :meth:`recover_stranded` puts the id back.
        """
        job_id = self.store.client.blmove(
            self.store.queue_name, self.store.processing_queue, timeout, "LEFT", "RIGHT"
        )
        if job_id is None:
            return None

        def stamp(pipe) -> Tuple[Optional[Job], bool]:
            job = QueueStore.read_job(pipe, job_id)
            if job is None:
                pipe.multi()
                pipe.lrem(self.store.processing_queue, 1, job_id)
                return None, False
            # Requeued by recovery, or already stamped by another claimant
            if job.status != JobStatus.PENDING or job_id not in pipe.lrange(
                self.store.processing_queue, 0, -1
            ):
                return job, False

            job.status = JobStatus.PROCESSING
            job.attempts += 1
            job.updated_at = self._now()
            job.worker_id = self.worker_id
            pipe.multi()
            QueueStore.write_job(pipe, job)
            pipe.decr(STATS_PENDING)
            pipe.incr(STATS_PROCESSING)
            return job, True

        job, claimed = self.store.transaction(stamp, job_key(job_id))
        if job is None:
            logger.error("Job data not found: %s (dropped from processing)", job_id)
            return None
        if not claimed:
            logger.warning("Job %s was taken back before it could be claimed", job_id)
            return None

        logger.info("Job started: %s (attempt %d/%d)", job.id, job.attempts, self.max_retries)
        return job

    def recover_stranded(self) -> int:
        """Requeue processing-list ids whose claim never stamped the record.

        A record that is still ``pending`` while its id sits in the
        processing list belongs to a claimant that died between BLMOVE and
        the stamp. The id goes back to the head of the pending queue;
        counters are untouched since the stamp never moved them. Ids whose
        record is gone are dropped.
        """
        now = self._now()

        def apply(pipe) -> Tuple[int, int]:
            claimed = pipe.lrange(self.store.processing_queue, 0, -1)
            if not claimed:
                return 0, 0

            pipe.watch(*[job_key(job_id) for job_id in claimed])
            stranded: List[Job] = []
            orphaned: List[str] = []
            for job_id in claimed:
                job = QueueStore.read_job(pipe, job_id)
                if job is None:
                    orphaned.append(job_id)
                elif job.status == JobStatus.PENDING:
                    stranded.append(job)
            if not stranded and not orphaned:
                return 0, 0

            pipe.multi()
            for job_id in orphaned:
                pipe.lrem(self.store.processing_queue, 1, job_id)
            for job in stranded:
                job.updated_at = now
                QueueStore.write_job(pipe, job)
                pipe.lrem(self.store.processing_queue, 1, job.id)
                pipe.lpush(self.store.queue_name, job.id)
            return len(stranded), len(orphaned)

        count, dropped = self.store.transaction(apply, self.store.processing_queue)
        if dropped:
            logger.error("Dropped %d processing ids with no job data", dropped)
        if count:
            logger.warning("Requeued %d stranded jobs from processing", count)
        return count

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _claimed_job(self, pipe, job_id: str, action: str) -> Optional[Job]:
        job = QueueStore.read_job(pipe, job_id)
        if job is None:
            logger.warning("Cannot %s %s: job record missing", action, job_id)
            return None
        if job.status != JobStatus.PROCESSING:
            logger.warning("Cannot %s %s: job is %s, not processing", action, job_id, job.status)
            return None
        return job

    def complete(self, job_id: str, result: Dict[str, Any]) -> bool:
        """Mark a claimed job completed and schedule its record for expiry."""

        def apply(pipe) -> Optional[Job]:
            job = self._claimed_job(pipe, job_id, "complete")
            if job is None:
                return None

            now = self._now()
            job.status = JobStatus.COMPLETED
            job.updated_at = now
            job.completed_at = now
            job.result = result
            job.duration = now - job.created_at

            pipe.multi()
            QueueStore.write_job(pipe, job)
            pipe.lrem(self.store.processing_queue, 1, job_id)
            pipe.decr(STATS_PROCESSING)
            pipe.incr(STATS_COMPLETED)
            if job.data.batch_id:
                pipe.hincrby(batch_key(job.data.batch_id), "completed", 1)
            pipe.expire(job_key(job_id), self.config.completed_ttl_s)
            return job

        job = self.store.transaction(apply, job_key(job_id))
        if job is None:
            return False

        logger.info("Job completed: %s (duration %ss)", job_id, job.duration)
        return True

    def fail(self, job_id: str, error: str) -> bool:
        """Retry with backoff while attempts remain, otherwise dead-letter.

        Returns:
            True if the job will be retried
        """

        def apply(pipe) -> Optional[Tuple[Job, int]]:
            job = self._claimed_job(pipe, job_id, "fail")
            if job is None:
                return None

            now = self._now()
            job.error = error
            job.updated_at = now

            if job.attempts < self.max_retries:
                delay = backoff_delay(job.attempts, self.config.backoff_base_s)
                job.status = JobStatus.RETRY

                pipe.multi()
                QueueStore.write_job(pipe, job)
                pipe.lrem(self.store.processing_queue, 1, job_id)
                pipe.zadd(self.store.delayed_queue, {job_id: now + delay})
                pipe.decr(STATS_PROCESSING)
                pipe.incr(STATS_PENDING)
                return job, delay

            job.status = JobStatus.FAILED
            job.failed_at = now

            pipe.multi()
            QueueStore.write_job(pipe, job)
            pipe.lrem(self.store.processing_queue, 1, job_id)
            pipe.rpush(self.store.dead_letter_queue, job_id)
            pipe.decr(STATS_PROCESSING)
            pipe.incr(STATS_FAILED)
            if job.data.batch_id:
                pipe.hincrby(batch_key(job.data.batch_id), "failed", 1)
            return job, 0

        outcome = self.store.transaction(apply, job_key(job_id))
        if outcome is None:
            return False

        job, delay = outcome
        if job.status == JobStatus.RETRY:
            logger.warning(
                "Job failed, will retry: %s (attempt %d/%d, retry_after=%ss): %s",
                job_id, job.attempts, self.max_retries, delay, error,
            )
            return True

        logger.error(
            "Job permanently failed: %s (attempts=%d): %s", job_id, job.attempts, error
        )
        return False

    # ------------------------------------------------------------------
    # Delayed promotion
    # ------------------------------------------------------------------

    def promote_delayed(self) -> int:
        """Move due retry entries back onto the pending queue.

        Runs under WATCH on the delayed set: if another worker promotes the
        same entries first, EXEC aborts and the re-read finds nothing due.
        """
        now = self._now()

        def apply(pipe) -> int:
            due = pipe.zrangebyscore(self.store.delayed_queue, 0, now)
            if not due:
                return 0

            jobs = [QueueStore.read_job(pipe, job_id) for job_id in due]
            live = [job for job in jobs if job is not None]

            pipe.multi()
            pipe.zrem(self.store.delayed_queue, *due)
            # Reaped records are dropped here, not handed to a claimant
            if len(live) < len(due):
                pipe.decrby(STATS_PENDING, len(due) - len(live))
            if live:
                pipe.rpush(self.store.queue_name, *[job.id for job in live])
            for job in live:
                job.status = JobStatus.PENDING
                job.updated_at = now
                QueueStore.write_job(pipe, job)
            return len(live)

        count = self.store.transaction(apply, self.store.delayed_queue)
        if count:
            logger.info("Moved %d delayed jobs to main queue", count)
        return count

    # ------------------------------------------------------------------
    # Views & admin
    # ------------------------------------------------------------------

    def stats(self) -> QueueStats:
        return self.store.stats()

    def batch_stats(self, batch_id: str) -> Optional[BatchStats]:
        return self.store.batch_stats(batch_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get_job(job_id)

    def clear_all(self) -> None:
        """Delete every queue and counter. Job and batch records are left alone."""
        self.store.client.delete(
            self.store.queue_name,
            self.store.processing_queue,
            self.store.dead_letter_queue,
            self.store.delayed_queue,
            STATS_TOTAL,
            STATS_PENDING,
            STATS_PROCESSING,
            STATS_COMPLETED,
            STATS_FAILED,
        )
        logger.warning("All queues cleared")
