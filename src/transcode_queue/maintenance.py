"""Periodic maintenance sweep.

Tasks:
1. Remove ``YYYY/MM/<post_id>`` media directories older than the cutoff
2. Remove month/year directories left empty
3. Remove stale temp files (failed downloads, thumbnail scratch files)
4. Rotate oversized log files
5. Delete completed job records older than a week

Intended for cron, e.g. ``0 2 * * * transcode-queue cleanup``.
"""

import logging
import os
import re
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import redis
from pydantic import ValidationError

from .queue.models import JobStatus
from .queue.store import QueueStore
from .storage import delete_tree, dir_size

logger = logging.getLogger(__name__)

TEMP_PATTERNS = ("temp_*", "thumb_*", "*.tmp", "*.part")
TEMP_MAX_AGE_S = 3600
LOG_MAX_BYTES = 100 * 1024 * 1024
LOG_BACKUPS = 5
COMPLETED_JOB_MAX_AGE_S = 7 * 24 * 3600

_YEAR_RE = re.compile(r"^\d{4}$")
_MONTH_RE = re.compile(r"^\d{2}$")


@dataclass
class CleanupStats:
    old_directories_removed: int = 0
    temp_files_removed: int = 0
    empty_directories_removed: int = 0
    log_files_rotated: int = 0
    completed_jobs_removed: int = 0
    space_freed_mb: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _bytes_to_mb(size: int) -> float:
    return round(size / (1024 * 1024), 2)


def _is_empty(path: Path) -> bool:
    with os.scandir(path) as entries:
        return next(entries, None) is None


class MaintenanceSweep:
    """Runs the cleanup tasks; ``dry_run`` reports without deleting."""

    def __init__(
        self,
        media_base_path: str,
        log_dir: Optional[str] = None,
        store: Optional[QueueStore] = None,
        max_age_days: int = 90,
        dry_run: bool = False,
        temp_dirs: Optional[List[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.media_base_path = Path(media_base_path)
        self.log_dir = Path(log_dir) if log_dir else None
        self.store = store
        self.max_age_days = max_age_days
        self.dry_run = dry_run
        self.temp_dirs = (
            [Path(d) for d in temp_dirs]
            if temp_dirs is not None
            else [Path(tempfile.gettempdir()), self.media_base_path]
        )
        self._clock = clock
        self.stats = CleanupStats()

    def run(self) -> CleanupStats:
        logger.info(
            "Cleanup started (max_age=%d days%s)", self.max_age_days,
            ", dry run" if self.dry_run else "",
        )
        self.remove_old_media()
        self.remove_temp_files()
        self.rotate_logs()
        if self.store is not None:
            try:
                self.remove_completed_jobs()
            except redis.RedisError as e:
                logger.error("Redis cleanup failed: %s", e)

        logger.info("Cleanup finished: %s", self.stats.to_dict())
        return self.stats

    def remove_old_media(self) -> None:
        if not self.media_base_path.is_dir():
            logger.warning("Media path not found: %s", self.media_base_path)
            return

        cutoff = self._clock() - self.max_age_days * 86400

        for year_dir in sorted(self.media_base_path.iterdir()):
            if not year_dir.is_dir() or not _YEAR_RE.match(year_dir.name):
                continue

            for month_dir in sorted(year_dir.iterdir()):
                if not month_dir.is_dir() or not _MONTH_RE.match(month_dir.name):
                    continue

                for post_dir in sorted(month_dir.iterdir()):
                    if not post_dir.is_dir() or post_dir.stat().st_mtime >= cutoff:
                        continue

                    size_mb = _bytes_to_mb(dir_size(post_dir))
                    logger.debug("Old directory: %s (%.2f MB)", post_dir, size_mb)
                    if not self.dry_run:
                        try:
                            delete_tree(post_dir)
                        except OSError as e:
                            logger.error("Failed to delete %s: %s", post_dir, e)
                            continue
                    self.stats.old_directories_removed += 1
                    self.stats.space_freed_mb += size_mb

                self._remove_if_empty(month_dir)
            self._remove_if_empty(year_dir)

    def _remove_if_empty(self, path: Path) -> None:
        if self.dry_run or not _is_empty(path):
            return
        path.rmdir()
        self.stats.empty_directories_removed += 1
        logger.debug("Removed empty directory: %s", path)

    def remove_temp_files(self) -> None:
        now = self._clock()
        for location in self.temp_dirs:
            if not location.is_dir():
                continue
            for pattern in TEMP_PATTERNS:
                for temp_file in location.glob(pattern):
                    if not temp_file.is_file():
                        continue
                    stat = temp_file.stat()
                    if now - stat.st_mtime <= TEMP_MAX_AGE_S:
                        continue

                    logger.debug("Temp file: %s", temp_file)
                    if not self.dry_run:
                        try:
                            temp_file.unlink()
                        except OSError as e:
                            logger.error("Failed to delete %s: %s", temp_file, e)
                            continue
                    self.stats.temp_files_removed += 1
                    self.stats.space_freed_mb += _bytes_to_mb(stat.st_size)

    def rotate_logs(self) -> None:
        """``x.log`` → ``x.log.1`` → … → ``x.log.5`` (oldest dropped)."""
        if self.log_dir is None or not self.log_dir.is_dir():
            return

        for log_file in sorted(self.log_dir.glob("*.log")):
            if not log_file.is_file() or log_file.stat().st_size <= LOG_MAX_BYTES:
                continue

            logger.debug("Rotating %s", log_file)
            if not self.dry_run:
                oldest = Path(f"{log_file}.{LOG_BACKUPS}")
                oldest.unlink(missing_ok=True)
                for i in range(LOG_BACKUPS - 1, 0, -1):
                    backup = Path(f"{log_file}.{i}")
                    if backup.exists():
                        backup.rename(f"{log_file}.{i + 1}")
                log_file.rename(f"{log_file}.1")
                log_file.touch(mode=0o644)
            self.stats.log_files_rotated += 1

    def remove_completed_jobs(self) -> None:
        """Delete completed records whose last update is older than a week.

        Only ``job:<id>`` hashes are touched; queue membership is left alone.
        """
        cutoff = self._clock() - COMPLETED_JOB_MAX_AGE_S
        for job_id in self.store.scan_job_ids():
            try:
                job = self.store.get_job(job_id)
            except ValidationError:
                logger.warning("Skipping unreadable job record: %s", job_id)
                continue
            if job is None or job.status != JobStatus.COMPLETED or job.updated_at >= cutoff:
                continue
            logger.debug("Old completed job: %s", job_id)
            if not self.dry_run:
                self.store.delete_job(job_id)
            self.stats.completed_jobs_removed += 1
