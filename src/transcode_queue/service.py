"""Wiring between configuration and the queue, pipeline and worker.

This module provides the higher-level API the CLI (or any other front end)
calls, so that every process builds its components the same way.

Usage:
    cfg = config.resolve_config()

    # Submit jobs
    batch_id, job_ids = service.submit_jobs(raw_videos, cfg)

    # Run a worker until SIGTERM/SIGINT
    service.run_worker(cfg)

    # Inspect
    stats = service.get_queue_stats(cfg)
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import redis

from .downloader import Downloader
from .ffmpeg_runner import FfmpegProgress, FfmpegRunner
from .health import HealthReport, check_health
from .logging_config import setup_logging
from .maintenance import CleanupStats, MaintenanceSweep
from .models import TranscodeConfig
from .pipeline import ProcessingPipeline
from .queue import (
    BatchStats,
    JobLifecycleManager,
    QueueStats,
    QueueStore,
    create_redis_client,
    default_worker_id,
)
from .submission import build_payloads
from .webhook import WebhookNotifier
from .worker import StopToken, WorkerLoop, install_signal_handlers

logger = logging.getLogger(__name__)


def build_queue(
    cfg: TranscodeConfig,
    client: Optional[redis.Redis] = None,
    worker_id: Optional[str] = None,
) -> JobLifecycleManager:
    client = client or create_redis_client(cfg.redis)
    store = QueueStore(client, cfg.queue.queue_name)
    return JobLifecycleManager(store, cfg.queue, worker_id=worker_id or cfg.worker.worker_id)


def log_ffmpeg_progress(progress: FfmpegProgress) -> None:
    logger.debug(
        "ffmpeg progress: %.1fs encoded, frame %d, %.1f fps, %.2fx",
        progress.current_time_s, progress.frame, progress.fps, progress.speed,
    )


def build_pipeline(cfg: TranscodeConfig) -> ProcessingPipeline:
    return ProcessingPipeline(
        media=cfg.media,
        ffmpeg=cfg.ffmpeg,
        runner=FfmpegRunner.from_config(cfg.ffmpeg, progress_callback=log_ffmpeg_progress),
        downloader=Downloader.from_config(cfg.media),
    )


def build_worker_loop(
    cfg: TranscodeConfig,
    stop: Optional[StopToken] = None,
    client: Optional[redis.Redis] = None,
) -> WorkerLoop:
    worker_id = cfg.worker.worker_id or default_worker_id()
    return WorkerLoop(
        queue=build_queue(cfg, client=client, worker_id=worker_id),
        pipeline=build_pipeline(cfg),
        notifier=WebhookNotifier.from_config(cfg.webhook),
        stop=stop,
        claim_timeout_s=cfg.worker.claim_timeout_s,
        error_sleep_s=cfg.worker.error_sleep_s,
    )


def run_worker(cfg: TranscodeConfig) -> int:
    """Run one worker process until a stop signal arrives.

    Returns:
        Number of jobs handled
    """
    worker_id = cfg.worker.worker_id or default_worker_id()
    setup_logging(
        cfg.logging.log_file,
        level=logging.DEBUG if cfg.logging.debug else logging.INFO,
        worker_id=worker_id,
    )
    cfg = cfg.merge_cli_overrides({"worker_id": worker_id})

    stop = StopToken()
    install_signal_handlers(stop)

    loop = build_worker_loop(cfg, stop=stop)
    try:
        return loop.run()
    finally:
        loop.notifier.close()


def submit_jobs(
    raw_videos: List[Dict[str, Any]],
    cfg: TranscodeConfig,
    webhook_url: Optional[str] = None,
    queue: Optional[JobLifecycleManager] = None,
) -> Tuple[Optional[str], List[str]]:
    """Validate and enqueue jobs.

    A single job is enqueued on its own; several become one batch.

    Returns:
        Tuple of (batch_id or None, job_ids)
    """
    payloads = build_payloads(raw_videos, webhook_url or cfg.webhook.default_url)
    queue = queue or build_queue(cfg)

    if len(payloads) == 1:
        return None, [queue.enqueue(payloads[0])]
    return queue.enqueue_batch(payloads)


def get_queue_stats(cfg: TranscodeConfig, queue: Optional[JobLifecycleManager] = None) -> QueueStats:
    return (queue or build_queue(cfg)).stats()


def get_batch_stats(
    cfg: TranscodeConfig, batch_id: str, queue: Optional[JobLifecycleManager] = None
) -> Optional[BatchStats]:
    return (queue or build_queue(cfg)).batch_stats(batch_id)


def promote_delayed(cfg: TranscodeConfig, queue: Optional[JobLifecycleManager] = None) -> int:
    return (queue or build_queue(cfg)).promote_delayed()


def clear_queue(cfg: TranscodeConfig, queue: Optional[JobLifecycleManager] = None) -> None:
    (queue or build_queue(cfg)).clear_all()


def run_health_check(
    cfg: TranscodeConfig, client: Optional[redis.Redis] = None
) -> HealthReport:
    if client is None:
        client = create_redis_client(cfg.redis, ping=False)
    store = QueueStore(client, cfg.queue.queue_name)
    return check_health(
        store,
        cfg.media.media_base_path,
        runner=FfmpegRunner.from_config(cfg.ffmpeg),
        webhook_secret=cfg.webhook.secret,
    )


def run_cleanup(
    cfg: TranscodeConfig,
    max_age_days: int = 90,
    dry_run: bool = False,
    client: Optional[redis.Redis] = None,
) -> CleanupStats:
    log_dir = str(Path(cfg.logging.log_file).parent) if cfg.logging.log_file else None

    store = None
    try:
        store = QueueStore(client or create_redis_client(cfg.redis), cfg.queue.queue_name)
    except redis.RedisError as e:
        logger.error("Redis unavailable, skipping job record cleanup: %s", e)

    sweep = MaintenanceSweep(
        cfg.media.media_base_path,
        log_dir=log_dir,
        store=store,
        max_age_days=max_age_days,
        dry_run=dry_run,
    )
    return sweep.run()
