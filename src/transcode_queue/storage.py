"""Output directory provisioning and filesystem helpers.

Every job writes into ``<media_base_path>/<YYYY>/<MM>/<post_id>`` and is
served from the same relative path under ``media_base_url``.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .errors import ErrorKind, MediaError

logger = logging.getLogger(__name__)

OUTPUT_DIR_PATTERN = re.compile(r"/\d{4}/\d{2}/\d+/?$")


@dataclass
class OutputLocation:
    """Where a job's artifacts live on disk and on the web."""
    path: Path
    url: str
    year: str
    month: str

    def public_url(self, filename: str) -> str:
        return f"{self.url}/{filename}"


def disk_usage(path: str):
    """shutil.disk_usage with FILESYSTEM errors for unreadable volumes."""
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        raise MediaError(
            ErrorKind.FILESYSTEM, f"Cannot determine disk space for: {path}", {"error": str(e)}
        ) from e

    if usage.total <= 0:
        raise MediaError(ErrorKind.FILESYSTEM, f"Cannot determine disk space for: {path}")
    return usage


def check_disk_space(path: str, min_free_percent: float = 5.0) -> float:
    """Raise FILESYSTEM if free space on ``path`` is under ``min_free_percent``.

    Returns:
        The measured free percentage
    """
    usage = disk_usage(path)
    percent = usage.free / usage.total * 100
    if percent < min_free_percent:
        raise MediaError(
            ErrorKind.FILESYSTEM,
            f"Insufficient disk space: only {percent:.2f}% free. Processing halted.",
            {"disk_free_gb": round(usage.free / (1024 ** 3), 2), "path": path},
        )
    return percent


def verify_output_dir(path: Path) -> None:
    """Check shape ``.../YYYY/MM/<post_id>``, existence and writability."""
    if not OUTPUT_DIR_PATTERN.search(path.as_posix()):
        raise MediaError(ErrorKind.FILESYSTEM, f"Invalid directory structure: {path}")
    if not path.is_dir():
        raise MediaError(ErrorKind.FILESYSTEM, f"Directory does not exist: {path}")
    if not os.access(path, os.W_OK):
        raise MediaError(ErrorKind.FILESYSTEM, f"Directory not writable: {path}")


def provision_output_dir(
    media_base_path: str,
    media_base_url: str,
    post_id: int,
    min_free_percent: float = 5.0,
    now: Optional[Callable[[], datetime]] = None,
) -> OutputLocation:
    """Create the job's output directory after the disk gate passes.

    The disk check runs first so a full volume fails the job before any
    network or compute work.
    """
    check_disk_space(media_base_path, min_free_percent)

    stamp = (now or datetime.now)()
    year = stamp.strftime("%Y")
    month = stamp.strftime("%m")
    dir_path = Path(media_base_path) / year / month / str(post_id)

    try:
        dir_path.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise MediaError(
            ErrorKind.FILESYSTEM, f"Failed to create directory: {dir_path}", {"error": str(e)}
        ) from e

    try:
        verify_output_dir(dir_path)
    except MediaError as e:
        raise MediaError(
            ErrorKind.FILESYSTEM, f"Directory validation failed: {e.message}", e.context
        ) from e

    base_url = media_base_url.rstrip("/")
    return OutputLocation(
        path=dir_path,
        url=f"{base_url}/{year}/{month}/{post_id}",
        year=year,
        month=month,
    )


def dir_size(root: Path) -> int:
    """Total size of regular files under ``root`` (iterative, no recursion)."""
    total = 0
    stack = [Path(root)]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        stack.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False):
                        total += entry.stat(follow_symlinks=False).st_size
        except FileNotFoundError:
            continue
    return total


def delete_tree(root: Path) -> int:
    """Remove ``root`` and everything below it bottom-up with an explicit stack.

    Returns:
        Number of files removed
    """
    removed = 0
    root = Path(root)
    if not root.exists():
        return 0

    to_visit = [root]
    dirs_in_order = []
    while to_visit:
        current = to_visit.pop()
        dirs_in_order.append(current)
        with os.scandir(current) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    to_visit.append(Path(entry.path))
                else:
                    os.unlink(entry.path)
                    removed += 1

    # Children were appended after their parents
    for directory in reversed(dirs_in_order):
        os.rmdir(directory)
    return removed
