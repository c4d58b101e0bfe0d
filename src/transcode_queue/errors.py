"""Error taxonomy shared by the pipeline, webhook and queue layers.

A single exception type carries a ``kind`` tag plus a structured ``context``
dict, so callers branch on ``err.kind`` instead of on a class hierarchy.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure categories.

    DOWNLOAD          remote asset could not be fetched or failed validation
    TRANSCODE         ffmpeg compression failed or produced no output
    SEGMENTATION      HLS segmentation failed for a rendition
    PLAYLIST          master playlist could not be assembled
    FILESYSTEM        insufficient space, permission or bad path shape
    WEBHOOK_DELIVERY  every delivery attempt was exhausted
    QUEUE             referenced job record missing or unknown
    """

    DOWNLOAD = "download"
    TRANSCODE = "transcode"
    SEGMENTATION = "segmentation"
    PLAYLIST = "playlist"
    FILESYSTEM = "filesystem"
    WEBHOOK_DELIVERY = "webhook_delivery"
    QUEUE = "queue"


class MediaError(Exception):
    """Tagged error with attached context."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"MediaError(kind={self.kind.value!r}, message={self.message!r})"
