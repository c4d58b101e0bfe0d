"""Producer-side validation of job submissions.

Mirrors what the ingestion endpoints check before anything reaches the
queue, so the CLI and any HTTP front end reject the same inputs.
"""

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from .downloader import is_valid_url
from .queue.models import JobPayload

logger = logging.getLogger(__name__)

MAX_BULK_JOBS = 10000
ALLOWED_VIDEO_EXTENSIONS = ("mp4", "mov", "avi", "webm", "mkv")
ALLOWED_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")


class SubmissionError(ValueError):
    """Rejected submission; ``errors`` lists every problem found."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


def url_extension(url: str) -> str:
    return PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()


def _parse_post_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


def validate_job_payload(
    raw: Any, index: int, require_webhook: bool = False
) -> List[str]:
    """Every problem with one submitted job, as human-readable strings."""
    if not isinstance(raw, dict):
        return [f"Job at index {index} must be an object"]

    errors: List[str] = []

    if _parse_post_id(raw.get("post_id")) is None:
        errors.append(f"Invalid or missing post_id at index {index}")

    video_url = raw.get("video_url")
    if not isinstance(video_url, str) or not is_valid_url(video_url):
        errors.append(f"Invalid or missing video_url at index {index}")
    elif url_extension(video_url) not in ALLOWED_VIDEO_EXTENSIONS:
        errors.append(
            f"Invalid video format at index {index}. "
            f"Allowed: {', '.join(ALLOWED_VIDEO_EXTENSIONS)}"
        )

    thumbnail_url = raw.get("thumbnail_url")
    if not isinstance(thumbnail_url, str) or not is_valid_url(thumbnail_url):
        errors.append(f"Invalid or missing thumbnail_url at index {index}")
    elif url_extension(thumbnail_url) not in ALLOWED_IMAGE_EXTENSIONS:
        errors.append(
            f"Invalid thumbnail format at index {index}. "
            f"Allowed: {', '.join(ALLOWED_IMAGE_EXTENSIONS)}"
        )

    webhook_url = raw.get("webhook_url")
    if webhook_url is not None or require_webhook:
        if not isinstance(webhook_url, str) or not is_valid_url(webhook_url):
            errors.append(f"Invalid or missing webhook_url at index {index}")

    return errors


def build_payloads(
    raw_videos: Iterable[Any], webhook_url: Optional[str] = None
) -> List[JobPayload]:
    """Validate a submission and turn it into queue payloads.

    ``webhook_url`` is the default endpoint for jobs that do not name one.

    Raises:
        SubmissionError: empty, oversized, or invalid submission
    """
    videos = list(raw_videos)
    if not videos:
        raise SubmissionError("Empty videos array")
    if len(videos) > MAX_BULK_JOBS:
        raise SubmissionError(f"Maximum {MAX_BULK_JOBS:,} videos per request")

    all_errors: List[str] = []
    for index, raw in enumerate(videos):
        all_errors.extend(
            validate_job_payload(raw, index, require_webhook=webhook_url is None)
        )
    if all_errors:
        raise SubmissionError("Validation failed", all_errors)

    return [
        JobPayload(
            post_id=_parse_post_id(raw["post_id"]),
            video_url=raw["video_url"],
            thumbnail_url=raw["thumbnail_url"],
            webhook_url=raw.get("webhook_url") or webhook_url,
        )
        for raw in videos
    ]


def load_submission(path: Path) -> List[Dict[str, Any]]:
    """Read jobs from JSON: ``{"videos": [...]}``, a bare list, or one job object."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SubmissionError(f"Invalid JSON: {e}") from e

    if isinstance(data, dict) and "videos" in data:
        videos = data["videos"]
        if not isinstance(videos, list):
            raise SubmissionError('Missing or invalid "videos" array')
        return videos
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    raise SubmissionError('Missing or invalid "videos" array')
