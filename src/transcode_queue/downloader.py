"""HTTP download of source assets.

Stable download:
- stream chunks into ``<dst>.part``
- validate status, size and (for videos) content type
- atomic rename onto ``dst``
- retry with a fixed delay schedule
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

import requests

from .errors import ErrorKind, MediaError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (VideoProcessor/3.0)"

VALID_VIDEO_CONTENT_TYPES = frozenset({
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "video/webm",
    "video/x-matroska",
    "application/octet-stream",
})


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class Downloader:
    """Streams remote files to disk with validation."""

    def __init__(
        self,
        timeout_s: float = 300,
        chunk_bytes: int = 1024 * 1024,
        min_bytes: int = 1024,
        retry_delays_s: Sequence[float] = (1, 5, 15),
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout_s = timeout_s
        self.chunk_bytes = chunk_bytes
        self.min_bytes = min_bytes
        self.retry_delays_s = list(retry_delays_s)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self._sleep = sleep

    @classmethod
    def from_config(cls, media_cfg, **kwargs) -> "Downloader":
        return cls(
            timeout_s=media_cfg.download_timeout_s,
            chunk_bytes=media_cfg.download_chunk_bytes,
            min_bytes=media_cfg.min_download_bytes,
            retry_delays_s=media_cfg.download_retry_delays_s,
            **kwargs,
        )

    def download(self, url: str, dst: Path, expect_video: bool = False) -> Path:
        """Download ``url`` to ``dst`` once.

        Raises:
            MediaError(DOWNLOAD) on a malformed URL, non-200 status, transport
            error, overall timeout, or a file that is empty or too small
        """
        if not is_valid_url(url):
            raise MediaError(ErrorKind.DOWNLOAD, f"Invalid URL format: {url}", {"url": url})

        dst = Path(dst)
        tmp = dst.with_name(dst.name + ".part")
        deadline = time.monotonic() + self.timeout_s

        try:
            with self.session.get(url, stream=True, timeout=(10, self.timeout_s)) as r:
                if r.status_code != 200:
                    raise MediaError(
                        ErrorKind.DOWNLOAD,
                        f"Failed to download from {url}. HTTP code: {r.status_code}",
                        {"http_code": r.status_code, "url": url},
                    )

                content_type = (r.headers.get("Content-Type") or "").split(";")[0].strip().lower()

                bytes_written = 0
                with open(tmp, "wb") as f:
                    for chunk in r.iter_content(chunk_size=self.chunk_bytes):
                        if time.monotonic() > deadline:
                            raise MediaError(
                                ErrorKind.DOWNLOAD,
                                f"Download exceeded {self.timeout_s}s: {url}",
                                {"url": url, "bytes": bytes_written},
                            )
                        if chunk:
                            f.write(chunk)
                            bytes_written += len(chunk)

        except requests.RequestException as e:
            tmp.unlink(missing_ok=True)
            raise MediaError(
                ErrorKind.DOWNLOAD,
                f"Failed to download from {url}. Error: {e}",
                {"url": url},
            ) from e
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise MediaError(
                ErrorKind.DOWNLOAD,
                f"Failed to write download to {tmp}: {e}",
                {"url": url},
            ) from e
        except MediaError:
            tmp.unlink(missing_ok=True)
            raise

        if bytes_written == 0:
            tmp.unlink(missing_ok=True)
            raise MediaError(ErrorKind.DOWNLOAD, f"Downloaded file is empty: {dst}", {"url": url})

        if bytes_written < self.min_bytes:
            tmp.unlink(missing_ok=True)
            raise MediaError(
                ErrorKind.DOWNLOAD,
                f"Downloaded file too small ({bytes_written} bytes): likely corrupt",
                {"file_size": bytes_written, "url": url},
            )

        if expect_video and content_type and content_type not in VALID_VIDEO_CONTENT_TYPES:
            logger.warning("Unexpected content type for video: %s", content_type)

        tmp.replace(dst)
        logger.info("Downloaded file: %s (%.2f MB)", dst.name, bytes_written / (1024 * 1024))
        return dst

    def download_with_retry(
        self,
        url: str,
        dst: Path,
        max_attempts: int = 3,
        expect_video: bool = True,
    ) -> Path:
        """Call ``download`` up to ``max_attempts`` times, sleeping between attempts."""
        last_error: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info("Download attempt %d/%d for: %s", attempt, max_attempts, url)
                return self.download(url, dst, expect_video=expect_video)
            except MediaError as e:
                last_error = e.message
                logger.warning("Download attempt %d failed: %s", attempt, last_error)

                if attempt < max_attempts:
                    delay = self.retry_delays_s[min(attempt - 1, len(self.retry_delays_s) - 1)]
                    logger.info("Retrying in %s seconds...", delay)
                    self._sleep(delay)

        raise MediaError(
            ErrorKind.DOWNLOAD,
            f"Failed to download after {max_attempts} attempts: {url}",
            {"url": url, "last_error": last_error},
        )
