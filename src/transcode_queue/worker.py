"""Worker loop: claim → pipeline → webhook → complete/fail.

Each worker process runs one loop. Workers coordinate only through the
queue; a stop request is honoured between jobs, never in the middle of one.
"""

import logging
import signal
import threading
from typing import Any, Dict, Optional

from .pipeline import PipelineResult, PipelineStatus, ProcessingPipeline
from .queue.backends import QueueBackend
from .queue.models import Job
from .webhook import WebhookNotifier

logger = logging.getLogger(__name__)

WEBHOOK_FAILED_MESSAGE = "Webhook delivery failed after all retries"


class StopToken:
    """Cooperative stop flag shared between signal handlers and the loop."""

    def __init__(self):
        self._event = threading.Event()

    def stop(self) -> None:
        self._event.set()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early once stopped."""
        return self._event.wait(timeout)


def install_signal_handlers(token: StopToken) -> None:
    """Route SIGTERM/SIGINT to ``token.stop`` (main thread only)."""

    def _handler(signum, _frame):
        logger.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
        token.stop()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def build_webhook_payload(result: PipelineResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "post_id": result.post_id,
        "status": result.status.value,
        "thumbnails": result.thumbnails,
        "compressed_mp4s": result.compressed_mp4s,
        "hls_playlists": result.hls_playlists,
        "master_playlist": result.master_playlist,
    }
    if result.status == PipelineStatus.PARTIAL_SUCCESS:
        payload["warnings"] = list(result.warnings)
    payload["processing_time"] = result.processing_time
    return payload


class WorkerLoop:
    """Drives jobs from the queue through the pipeline."""

    def __init__(
        self,
        queue: QueueBackend,
        pipeline: ProcessingPipeline,
        notifier: WebhookNotifier,
        stop: Optional[StopToken] = None,
        claim_timeout_s: int = 5,
        error_sleep_s: float = 5.0,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.notifier = notifier
        self.stop = stop or StopToken()
        self.claim_timeout_s = claim_timeout_s
        self.error_sleep_s = error_sleep_s
        self.processed = 0

    def run(self) -> int:
        """Loop until the stop token is set.

        Returns:
            Number of jobs handled
        """
        logger.info("Worker started")
        while not self.stop.stopped:
            try:
                self.run_once()
            except Exception:
                logger.exception("Worker error, pausing %ss", self.error_sleep_s)
                self.stop.wait(self.error_sleep_s)

        logger.info("Worker stopped gracefully after %d jobs", self.processed)
        return self.processed

    def run_once(self) -> bool:
        """Claim and handle at most one job.

        Returns:
            True if a job was handled, False if the claim timed out
        """
        job = self.queue.claim_next(timeout=self.claim_timeout_s)
        if job is None:
            self.queue.promote_delayed()
            self.queue.recover_stranded()
            return False

        self.handle(job)
        self.processed += 1
        return True

    def handle(self, job: Job) -> None:
        data = job.data
        logger.info("Processing job %s for post %s", job.id, data.post_id)

        try:
            result = self.pipeline.run(data.video_url, data.thumbnail_url, data.post_id)
        except Exception as e:
            logger.exception("Exception processing post %s", data.post_id)
            self.queue.fail(job.id, str(e) or e.__class__.__name__)
            return

        if not result.succeeded:
            logger.error("Failed to process post %s: %s", data.post_id, result.error)
            self.queue.fail(job.id, result.error or "Processing failed")
            return

        logger.info(
            "Processed post %s (%s) in %ss", data.post_id, result.status.value, result.processing_time
        )

        if self.notifier.deliver(data.webhook_url, build_webhook_payload(result)):
            logger.info("Webhook delivered successfully for post %s", data.post_id)
            self.queue.complete(job.id, result.to_dict())
        else:
            logger.error("Webhook delivery failed for post %s", data.post_id)
            self.queue.fail(job.id, WEBHOOK_FAILED_MESSAGE)
