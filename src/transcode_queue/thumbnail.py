"""Thumbnail handling: keep the original image, add a WebP rendition."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from PIL import Image, UnidentifiedImageError

from .downloader import Downloader
from .errors import ErrorKind, MediaError
from .ffmpeg_runner import FfmpegRunner
from .storage import OutputLocation

logger = logging.getLogger(__name__)

# Pillow format name -> file extension
FORMAT_EXTENSIONS = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
    "GIF": "gif",
}
DEFAULT_EXTENSION = "jpg"


def detect_image_extension(path: Path) -> str:
    """Extension for the image format found in the file's contents.

    Unknown or unreadable content falls back to ``jpg``.

    Raises:
        MediaError if the declared dimensions exceed Pillow's pixel limit
    """
    try:
        with Image.open(path) as img:
            fmt: Optional[str] = img.format
    except Image.DecompressionBombError as e:
        raise MediaError(ErrorKind.DOWNLOAD, f"Thumbnail image too large: {e}") from e
    except (UnidentifiedImageError, OSError):
        return DEFAULT_EXTENSION
    return FORMAT_EXTENSIONS.get(fmt or "", DEFAULT_EXTENSION)


def process_thumbnail(
    thumbnail_url: str,
    location: OutputLocation,
    downloader: Downloader,
    runner: FfmpegRunner,
    webp_quality: int = 87,
    webp_compression_level: int = 6,
) -> Dict[str, str]:
    """Download the thumbnail, store it as ``original.<ext>`` and convert to WebP.

    Returns:
        {"original": <url>, "webp": <url>}

    Raises:
        MediaError on any failure; the caller treats this stage as non-critical
    """
    fd, temp_name = tempfile.mkstemp(prefix="thumb_", dir=location.path)
    os.close(fd)
    temp_path = Path(temp_name)

    try:
        downloader.download(thumbnail_url, temp_path)
        extension = detect_image_extension(temp_path)
    except MediaError:
        temp_path.unlink(missing_ok=True)
        raise

    original_name = f"original.{extension}"
    original_path = location.path / original_name

    try:
        temp_path.replace(original_path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise MediaError(
            ErrorKind.FILESYSTEM, f"Failed to save thumbnail to: {original_path}"
        ) from e

    webp_path = location.path / "thumbnail.webp"
    result = runner.convert_to_webp(
        str(original_path), str(webp_path), webp_quality, webp_compression_level
    )
    if not result.success:
        raise MediaError(
            ErrorKind.TRANSCODE,
            f"Failed to convert thumbnail to WebP: {result.error_summary()}",
        )

    logger.info("Thumbnail stored as %s + thumbnail.webp", original_name)
    return {
        "original": location.public_url(original_name),
        "webp": location.public_url("thumbnail.webp"),
    }
