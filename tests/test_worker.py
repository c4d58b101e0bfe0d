"""Tests for the worker loop, wired to a fakeredis-backed queue."""

import signal
from unittest.mock import MagicMock, patch

import pytest
import redis

from transcode_queue.errors import ErrorKind, MediaError
from transcode_queue.pipeline import PipelineResult, PipelineStatus
from transcode_queue.queue import JobStatus
from transcode_queue.worker import (
    WEBHOOK_FAILED_MESSAGE,
    StopToken,
    WorkerLoop,
    build_webhook_payload,
    install_signal_handlers,
)


def _result(status=PipelineStatus.SUCCESS, warnings=(), error=None, post_id=42):
    result = PipelineResult(
        post_id=post_id,
        thumbnails={"original": "https://m/original.jpg", "webp": "https://m/thumbnail.webp"},
        compressed_mp4s={"480p": "https://m/compressed_480p.mp4"},
        hls_playlists={"480p": "https://m/480p.m3u8"},
        master_playlist="https://m/master.m3u8",
        processing_time=12.5,
    )
    for w in warnings:
        result.warnings.append(w)
    if error:
        result.fail(MediaError(ErrorKind.TRANSCODE, error))
    result.status = status
    return result


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.run.return_value = _result()
    return mock


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.deliver.return_value = True
    return mock


@pytest.fixture
def loop(manager, pipeline, notifier):
    return WorkerLoop(manager, pipeline, notifier, claim_timeout_s=1, error_sleep_s=0)


class TestHandle:
    """Test the per-job outcome rules."""

    def test_success_completes_job(self, loop, manager, make_payload, pipeline, notifier):
        job_id = manager.enqueue(make_payload(42))

        assert loop.run_once() is True

        pipeline.run.assert_called_once_with(
            "https://cdn.example.com/videos/42.mp4", "https://cdn.example.com/thumbs/42.jpg", 42
        )
        url, payload = notifier.deliver.call_args[0]
        assert url == "https://hooks.example.com/video"
        assert payload["status"] == "success"

        job = manager.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result["master_playlist"] == "https://m/master.m3u8"
        assert loop.processed == 1

    def test_webhook_failure_consumes_a_retry(self, loop, manager, make_payload, notifier):
        notifier.deliver.return_value = False
        job_id = manager.enqueue(make_payload())

        loop.run_once()

        job = manager.get_job(job_id)
        assert job.status == JobStatus.RETRY
        assert job.attempts == 1
        assert job.error == WEBHOOK_FAILED_MESSAGE

    def test_pipeline_error_fails_job(self, loop, manager, make_payload, pipeline, notifier):
        pipeline.run.return_value = _result(
            PipelineStatus.ERROR, error="All video compression attempts failed"
        )
        job_id = manager.enqueue(make_payload())

        loop.run_once()

        assert manager.get_job(job_id).error == "All video compression attempts failed"
        notifier.deliver.assert_not_called()

    def test_pipeline_exception_fails_job(self, loop, manager, make_payload, pipeline):
        pipeline.run.side_effect = RuntimeError("segfault in codec")
        job_id = manager.enqueue(make_payload())

        loop.run_once()

        job = manager.get_job(job_id)
        assert job.status == JobStatus.RETRY
        assert job.error == "segfault in codec"

    def test_last_attempt_dead_letters(self, loop, manager, make_payload, notifier, clock, store):
        notifier.deliver.return_value = False
        job_id = manager.enqueue(make_payload())

        for _ in range(manager.max_retries):
            loop.run_once()
            clock.advance(10_000)
            manager.promote_delayed()

        assert manager.get_job(job_id).status == JobStatus.FAILED
        assert store.dead_letter_ids() == [job_id]


class TestRunOnce:
    def test_empty_queue_promotes_due_retries(self, loop, manager, make_payload, clock):
        job_id = manager.enqueue(make_payload())
        manager.claim_next(timeout=1)
        manager.fail(job_id, "transient")
        clock.advance(120)

        assert loop.run_once() is False

        assert manager.stats().queue_length == 1
        assert manager.get_job(job_id).status == JobStatus.PENDING

    def test_empty_queue_recovers_lost_claims(self, loop, manager, make_payload, store):
        job_id = manager.enqueue(make_payload())
        with patch.object(store, "transaction", side_effect=redis.ConnectionError("lost")):
            with pytest.raises(redis.ConnectionError):
                manager.claim_next(timeout=1)

        assert loop.run_once() is False

        assert store.client.lrange(store.queue_name, 0, -1) == [job_id]
        assert loop.run_once() is True
        assert manager.get_job(job_id).status == JobStatus.COMPLETED


class TestRun:
    """Test the outer loop and shutdown."""

    def test_stop_is_honoured_between_jobs(self, loop, manager, make_payload, notifier):
        manager.enqueue(make_payload(1))
        manager.enqueue(make_payload(2))

        def deliver_then_stop(url, payload):
            loop.stop.stop()
            return True

        notifier.deliver.side_effect = deliver_then_stop

        assert loop.run() == 1
        # The in-flight job finished; the second is still queued
        stats = manager.stats()
        assert stats.completed == 1
        assert stats.queue_length == 1

    def test_loop_survives_errors(self, pipeline, notifier):
        stop = StopToken()
        queue = MagicMock()

        calls = []

        def claim(timeout):
            calls.append(timeout)
            if len(calls) == 1:
                raise RuntimeError("connection reset")
            stop.stop()
            return None

        queue.claim_next.side_effect = claim
        loop = WorkerLoop(queue, pipeline, notifier, stop=stop, error_sleep_s=0)

        with patch.object(stop, "wait", wraps=stop.wait) as wait:
            assert loop.run() == 0

        wait.assert_called_once_with(0)
        assert queue.claim_next.call_count == 2
        queue.promote_delayed.assert_called_once()
        queue.recover_stranded.assert_called_once()


class TestWebhookPayload:
    def test_success_payload(self):
        payload = build_webhook_payload(_result())

        assert payload == {
            "post_id": 42,
            "status": "success",
            "thumbnails": {"original": "https://m/original.jpg", "webp": "https://m/thumbnail.webp"},
            "compressed_mp4s": {"480p": "https://m/compressed_480p.mp4"},
            "hls_playlists": {"480p": "https://m/480p.m3u8"},
            "master_playlist": "https://m/master.m3u8",
            "processing_time": 12.5,
        }

    def test_partial_payload_lists_warnings(self):
        payload = build_webhook_payload(
            _result(PipelineStatus.PARTIAL_SUCCESS, warnings=["Thumbnail processing failed: 404"])
        )

        assert payload["status"] == "partial_success"
        assert payload["warnings"] == ["Thumbnail processing failed: 404"]


class TestStopToken:
    def test_stop_sets_flag(self):
        token = StopToken()
        assert not token.stopped
        token.stop()
        assert token.stopped
        assert token.wait(10) is True

    def test_signal_handlers_request_stop(self):
        token = StopToken()
        with patch("signal.signal") as mock_signal:
            install_signal_handlers(token)

        registered = {c[0][0] for c in mock_signal.call_args_list}
        assert registered == {signal.SIGTERM, signal.SIGINT}

        handler = mock_signal.call_args_list[0][0][1]
        handler(signal.SIGTERM, None)
        assert token.stopped
