"""Health classification for monitoring probes.

Status levels:
    healthy    all checks pass
    degraded   system functional with warnings (deep queue, many dead
               letters, low disk, default secret)
    unhealthy  redis unreachable, ffmpeg unusable, or disk critically low
"""

import logging
import re
import time
from enum import Enum
from typing import Any, Dict, Optional

import redis
from pydantic import BaseModel, Field

from .errors import MediaError
from .ffmpeg_runner import FfmpegRunner
from .queue.store import QueueStore
from .storage import disk_usage

logger = logging.getLogger(__name__)

QUEUE_DEPTH_WARNING = 1000
DEAD_LETTER_WARNING = 50
DISK_CRITICAL_PERCENT = 10.0
DISK_WARNING_PERCENT = 20.0
DEFAULT_WEBHOOK_SECRET = "CHANGE_ME_TO_A_SECURE_SECRET"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


class HealthReport(BaseModel):
    """Overall status plus one entry per check."""

    status: HealthStatus = HealthStatus.HEALTHY
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    class Config:
        use_enum_values = True

    def escalate(self, status: HealthStatus) -> None:
        if _SEVERITY[status] > _SEVERITY[HealthStatus(self.status)]:
            self.status = status

    @property
    def exit_code(self) -> int:
        return _SEVERITY[HealthStatus(self.status)]


def _check_queue(store: QueueStore, report: HealthReport) -> None:
    try:
        store.ping()
        stats = store.stats()
    except redis.RedisError as e:
        report.checks["redis"] = {"status": "failed", "error": str(e)}
        report.escalate(HealthStatus.UNHEALTHY)
        return

    report.checks["redis"] = {"status": "ok", "connection": "connected"}

    queue: Dict[str, Any] = {
        "status": "ok",
        "pending_jobs": stats.queue_length,
        "processing_jobs": stats.processing_count,
        "delayed_jobs": stats.delayed_count,
        "dead_letter_jobs": stats.dead_letter_count,
        "stats": {
            "total_jobs": stats.total,
            "completed": stats.completed,
            "failed": stats.failed,
            "success_rate": (
                f"{round(stats.completed / stats.total * 100, 2)}%" if stats.total else "0%"
            ),
        },
    }
    if stats.queue_length > QUEUE_DEPTH_WARNING:
        queue["status"] = "warning"
        queue["warning"] = f"Queue depth exceeds {QUEUE_DEPTH_WARNING} jobs"
        report.escalate(HealthStatus.DEGRADED)
    if stats.dead_letter_count > DEAD_LETTER_WARNING:
        queue["status"] = "warning"
        queue["warning"] = f"Dead letter queue has {stats.dead_letter_count} failed jobs"
        report.escalate(HealthStatus.DEGRADED)
    report.checks["queue"] = queue


def _check_disk(media_base_path: str, report: HealthReport) -> None:
    try:
        usage = disk_usage(media_base_path)
    except MediaError as e:
        report.checks["disk_space"] = {"status": "unknown", "error": e.message}
        return

    percent = usage.free / usage.total * 100
    gb = 1024 ** 3
    disk: Dict[str, Any] = {
        "status": "ok",
        "path": media_base_path,
        "free_gb": round(usage.free / gb, 2),
        "used_gb": round((usage.total - usage.free) / gb, 2),
        "total_gb": round(usage.total / gb, 2),
        "free_percent": round(percent, 2),
    }
    if percent < DISK_CRITICAL_PERCENT:
        disk["status"] = "critical"
        disk["error"] = f"Critical: Less than {DISK_CRITICAL_PERCENT:g}% disk space remaining"
        report.escalate(HealthStatus.UNHEALTHY)
    elif percent < DISK_WARNING_PERCENT:
        disk["status"] = "warning"
        disk["warning"] = f"Warning: Less than {DISK_WARNING_PERCENT:g}% disk space remaining"
        report.escalate(HealthStatus.DEGRADED)
    report.checks["disk_space"] = disk


def _check_ffmpeg(runner: FfmpegRunner, report: HealthReport) -> None:
    version_line = runner.probe_version()
    if version_line is None:
        report.checks["ffmpeg"] = {"status": "failed", "error": "FFmpeg binary not usable"}
        report.escalate(HealthStatus.UNHEALTHY)
        return

    match = re.search(r"ffmpeg version (\S+)", version_line)
    report.checks["ffmpeg"] = {
        "status": "ok",
        "version": match.group(1) if match else "unknown",
    }


def check_health(
    store: QueueStore,
    media_base_path: str,
    runner: Optional[FfmpegRunner] = None,
    webhook_secret: Optional[str] = None,
) -> HealthReport:
    """Run every check and classify the system."""
    report = HealthReport()

    _check_queue(store, report)
    _check_disk(media_base_path, report)
    if runner is not None:
        _check_ffmpeg(runner, report)

    if webhook_secret is not None:
        configured = bool(webhook_secret) and webhook_secret != DEFAULT_WEBHOOK_SECRET
        report.checks["configuration"] = {
            "status": "ok" if configured else "warning",
            "webhook_secret_configured": configured,
        }
        if not configured:
            report.checks["configuration"]["warning"] = "Webhook secret not properly configured"
            report.escalate(HealthStatus.DEGRADED)

    logger.debug("Health: %s", report.status)
    return report
