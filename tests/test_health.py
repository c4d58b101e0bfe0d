"""Tests for health classification."""

import json
from unittest.mock import MagicMock, patch

import redis

from transcode_queue.health import (
    DEFAULT_WEBHOOK_SECRET,
    HealthStatus,
    check_health,
)


def _usage(free_percent, total=100 * 1024 ** 3):
    free = int(total * free_percent / 100)
    return MagicMock(total=total, used=total - free, free=free)


def _runner(version_line="ffmpeg version 6.1.1 Copyright (c) 2000-2023"):
    runner = MagicMock()
    runner.probe_version.return_value = version_line
    return runner


class TestCheckHealth:
    """Test status escalation across checks."""

    def test_healthy(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path), runner=_runner(), webhook_secret="real")

        assert report.status == HealthStatus.HEALTHY
        assert report.exit_code == 0
        assert report.checks["redis"]["status"] == "ok"
        assert report.checks["queue"]["pending_jobs"] == 0
        assert report.checks["disk_space"]["free_percent"] == 50.0
        assert report.checks["ffmpeg"] == {"status": "ok", "version": "6.1.1"}
        assert report.checks["configuration"]["webhook_secret_configured"] is True

    def test_success_rate(self, manager, make_payload, store, tmp_path):
        job_id = manager.enqueue(make_payload(1))
        manager.enqueue(make_payload(2))
        manager.claim_next(timeout=1)
        manager.complete(job_id, {})

        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path))

        assert report.checks["queue"]["stats"]["success_rate"] == "50.0%"
        assert report.checks["queue"]["pending_jobs"] == 1

    def test_deep_queue_degrades(self, store, tmp_path):
        store.client.rpush(store.queue_name, *[f"job_{i}" for i in range(1001)])

        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path))

        assert report.status == HealthStatus.DEGRADED
        assert report.exit_code == 1
        assert report.checks["queue"]["status"] == "warning"

    def test_many_dead_letters_degrade(self, store, tmp_path):
        store.client.rpush(store.dead_letter_queue, *[f"job_{i}" for i in range(51)])

        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path))

        assert report.status == HealthStatus.DEGRADED
        assert "51" in report.checks["queue"]["warning"]

    def test_low_disk_degrades(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(15)):
            report = check_health(store, str(tmp_path))

        assert report.status == HealthStatus.DEGRADED
        assert report.checks["disk_space"]["status"] == "warning"

    def test_critical_disk_is_unhealthy(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(5)):
            report = check_health(store, str(tmp_path))

        assert report.status == HealthStatus.UNHEALTHY
        assert report.exit_code == 2
        assert report.checks["disk_space"]["status"] == "critical"

    def test_missing_media_path_is_unknown(self, store, tmp_path):
        report = check_health(store, str(tmp_path / "missing"))

        assert report.checks["disk_space"]["status"] == "unknown"
        assert report.status == HealthStatus.HEALTHY

    def test_redis_down_is_unhealthy(self, tmp_path):
        store = MagicMock()
        store.ping.side_effect = redis.ConnectionError("Connection refused")

        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path))

        assert report.status == HealthStatus.UNHEALTHY
        assert report.checks["redis"] == {"status": "failed", "error": "Connection refused"}
        assert "queue" not in report.checks

    def test_ffmpeg_missing_is_unhealthy(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path), runner=_runner(None))

        assert report.status == HealthStatus.UNHEALTHY
        assert report.checks["ffmpeg"]["status"] == "failed"

    def test_default_secret_degrades(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path), webhook_secret=DEFAULT_WEBHOOK_SECRET)

        assert report.status == HealthStatus.DEGRADED
        assert report.checks["configuration"]["webhook_secret_configured"] is False

    def test_unhealthy_is_not_downgraded(self, tmp_path):
        store = MagicMock()
        store.ping.side_effect = redis.ConnectionError("down")

        with patch("shutil.disk_usage", return_value=_usage(15)):
            report = check_health(store, str(tmp_path), webhook_secret=DEFAULT_WEBHOOK_SECRET)

        assert report.status == HealthStatus.UNHEALTHY

    def test_report_serializes(self, store, tmp_path):
        with patch("shutil.disk_usage", return_value=_usage(50)):
            report = check_health(store, str(tmp_path))

        data = json.loads(report.model_dump_json())
        assert data["status"] == "healthy"
        assert "timestamp" in data
