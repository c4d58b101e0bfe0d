"""Redis key layout and record IO for the job queue.

Key layout:
    job:<id>               hash, field ``data`` = JSON job record
    <queue>                list of pending job ids (FIFO)
    <queue>:processing     list of claimed job ids
    <queue>:dead_letter    list of terminally failed job ids
    <queue>:delayed        zset of retrying job ids, score = ready-at unix time
    batch:<id>             hash: total, completed, failed, created_at
    stats:<name>           integer counters

The store knows nothing about state transitions; ``lifecycle.py`` composes
these helpers inside WATCH/MULTI transactions.
"""

import logging
from typing import Callable, Iterator, Optional

import redis

from .models import BatchStats, Job, QueueStats

logger = logging.getLogger(__name__)

STATS_TOTAL = "stats:total_jobs"
STATS_PENDING = "stats:pending"
STATS_PROCESSING = "stats:processing"
STATS_COMPLETED = "stats:completed"
STATS_FAILED = "stats:failed"

COUNTER_KEYS = (STATS_TOTAL, STATS_PENDING, STATS_PROCESSING, STATS_COMPLETED, STATS_FAILED)


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def batch_key(batch_id: str) -> str:
    return f"batch:{batch_id}"


class QueueStore:
    """Durable shared state for jobs, batches and counters."""

    def __init__(self, client: redis.Redis, queue_name: str = "video_compression_queue"):
        self.client = client
        self.queue_name = queue_name
        self.processing_queue = f"{queue_name}:processing"
        self.dead_letter_queue = f"{queue_name}:dead_letter"
        self.delayed_queue = f"{queue_name}:delayed"

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @staticmethod
    def read_job(conn, job_id: str) -> Optional[Job]:
        """Load a job through ``conn`` (client or watching pipeline)."""
        raw = conn.hget(job_key(job_id), "data")
        if not raw:
            return None
        return Job.model_validate_json(raw)

    @staticmethod
    def write_job(conn, job: Job) -> None:
        conn.hset(job_key(job.id), "data", job.model_dump_json())

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.read_job(self.client, job_id)

    def delete_job(self, job_id: str) -> None:
        self.client.delete(job_key(job_id))

    def scan_job_ids(self, count: int = 500) -> Iterator[str]:
        """Iterate job ids with SCAN (never KEYS) so large stores stay responsive."""
        for key in self.client.scan_iter(match="job:*", count=count):
            yield key[len("job:"):]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transaction(self, func: Callable, *watches: str):
        """Run ``func(pipe)`` under WATCH, retrying on concurrent modification.

        ``func`` reads through the pipe in immediate mode, calls ``pipe.multi()``
        and queues its writes; the return value of ``func`` is returned.
        """
        return self.client.transaction(func, *watches, value_from_callable=True)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def stats(self) -> QueueStats:
        pipe = self.client.pipeline(transaction=False)
        for key in COUNTER_KEYS:
            pipe.get(key)
        pipe.llen(self.queue_name)
        pipe.llen(self.processing_queue)
        pipe.zcard(self.delayed_queue)
        pipe.llen(self.dead_letter_queue)
        (total, pending, processing, completed, failed,
         queue_length, processing_count, delayed_count, dead_letter_count) = pipe.execute()

        return QueueStats(
            total=int(total or 0),
            pending=int(pending or 0),
            processing=int(processing or 0),
            completed=int(completed or 0),
            failed=int(failed or 0),
            queue_length=queue_length,
            processing_count=processing_count,
            delayed_count=delayed_count,
            dead_letter_count=dead_letter_count,
        )

    def batch_stats(self, batch_id: str) -> Optional[BatchStats]:
        data = self.client.hgetall(batch_key(batch_id))
        if not data:
            return None
        return BatchStats(
            batch_id=batch_id,
            total=int(data.get("total", 0)),
            completed=int(data.get("completed", 0)),
            failed=int(data.get("failed", 0)),
            created_at=int(data.get("created_at", 0)),
        )

    def delayed_length(self) -> int:
        return self.client.zcard(self.delayed_queue)

    def dead_letter_length(self) -> int:
        return self.client.llen(self.dead_letter_queue)

    def dead_letter_ids(self, start: int = 0, end: int = -1) -> list[str]:
        return self.client.lrange(self.dead_letter_queue, start, end)

    def ping(self) -> bool:
        return bool(self.client.ping())
