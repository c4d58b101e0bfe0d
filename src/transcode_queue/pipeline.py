"""Per-job media pipeline with partial-success semantics.

Stages:
    1. Provision ``YYYY/MM/<post_id>`` output directory (disk gate first)
    2. Thumbnail: original + WebP (non-critical)
    3. Original video download with retries (critical)
    4. Compression into every quality tier (critical only if all tiers fail)
    5. HLS segmentation of each compressed tier (critical only if all fail)
    6. Master playlist over the renditions that exist (critical)

A ``PipelineResult`` is threaded through the stages: non-critical failures
append warnings, the first critical failure fills the error slot and stops
the run.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .downloader import Downloader
from .errors import ErrorKind, MediaError
from .ffmpeg_runner import FfmpegRunner
from .models import FfmpegConfig, MediaConfig
from .playlist import write_master_playlist
from .storage import OutputLocation, provision_output_dir
from .thumbnail import process_thumbnail

logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"


@dataclass
class PipelineResult:
    """Accumulator for one pipeline run."""
    post_id: int
    status: Optional[PipelineStatus] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    thumbnails: Optional[Dict[str, str]] = None
    compressed_mp4s: Optional[Dict[str, str]] = None
    hls_playlists: Optional[Dict[str, str]] = None
    master_playlist: Optional[str] = None
    processing_time: float = 0.0

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning("%s (continuing)", message)

    def fail(self, err: MediaError) -> None:
        self.status = PipelineStatus.ERROR
        self.error = err.message
        self.error_kind = err.kind

    def finish(self) -> None:
        if self.status != PipelineStatus.ERROR:
            self.status = (
                PipelineStatus.PARTIAL_SUCCESS if self.warnings else PipelineStatus.SUCCESS
            )

    @property
    def succeeded(self) -> bool:
        return self.status in (PipelineStatus.SUCCESS, PipelineStatus.PARTIAL_SUCCESS)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value if self.status else None,
            "post_id": self.post_id,
            "thumbnails": self.thumbnails,
            "compressed_mp4s": self.compressed_mp4s,
            "hls_playlists": self.hls_playlists,
            "master_playlist": self.master_playlist,
            "processing_time": self.processing_time,
        }
        if self.warnings:
            data["warnings"] = list(self.warnings)
        if self.error is not None:
            data["error"] = self.error
        return data


class ProcessingPipeline:
    """Turns (video URL, thumbnail URL, post id) into published renditions."""

    def __init__(
        self,
        media: MediaConfig,
        ffmpeg: FfmpegConfig,
        runner: FfmpegRunner,
        downloader: Downloader,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.media = media
        self.ffmpeg = ffmpeg
        self.runner = runner
        self.downloader = downloader
        self._now = now

    def run(self, video_url: str, thumbnail_url: str, post_id: int) -> PipelineResult:
        result = PipelineResult(post_id=post_id)
        started = time.monotonic()
        logger.info(
            "Processing post %s: video=%s, thumbnail=%s", post_id, video_url, thumbnail_url
        )

        try:
            location = provision_output_dir(
                self.media.media_base_path,
                self.media.media_base_url,
                post_id,
                self.media.min_free_disk_percent,
                now=self._now,
            )

            logger.info("Step 1/5: Processing thumbnail")
            self._thumbnail(thumbnail_url, location, result)

            logger.info("Step 2/5: Downloading original video")
            original = self.downloader.download_with_retry(
                video_url, location.path / "original.mp4"
            )

            logger.info("Step 3/5: Creating compressed MP4s")
            compressed = self._compress(str(original), location, result)

            logger.info("Step 4/5: Converting to HLS")
            segmented = self._segment(compressed, location, result)

            logger.info("Step 5/5: Creating master playlist")
            write_master_playlist(location.path, segmented, self.media.video_qualities)
            result.master_playlist = location.public_url("master.m3u8")

        except MediaError as e:
            logger.error("Error processing post %s: %s", post_id, e.message)
            result.fail(e)

        result.finish()
        result.processing_time = round(time.monotonic() - started, 2)

        if result.status == PipelineStatus.SUCCESS:
            logger.info("Processing completed successfully for post %s", post_id)
        elif result.status == PipelineStatus.PARTIAL_SUCCESS:
            logger.warning(
                "Processing completed with warnings for post %s: %s",
                post_id, ", ".join(result.warnings),
            )
        return result

    def _thumbnail(self, url: str, location: OutputLocation, result: PipelineResult) -> None:
        try:
            result.thumbnails = process_thumbnail(
                url,
                location,
                self.downloader,
                self.runner,
                self.media.thumbnail_webp_quality,
                self.media.thumbnail_webp_compression_level,
            )
        except (MediaError, OSError) as e:
            result.warn(f"Thumbnail processing failed: {e}")

    def _compress(
        self, original: str, location: OutputLocation, result: PipelineResult
    ) -> List[str]:
        done: Dict[str, str] = {}
        for name, tier in self.media.video_qualities.items():
            filename = f"compressed_{name}.mp4"
            try:
                outcome = self.runner.compress_rendition(
                    original,
                    str(location.path / filename),
                    tier,
                    self.ffmpeg.preset,
                    self.ffmpeg.gop_size,
                )
            except OSError as e:
                result.warn(f"Failed to create {name} MP4: {e}")
                continue

            if outcome.success:
                done[name] = location.public_url(filename)
            else:
                result.warn(f"Failed to create {name} MP4: {outcome.error_summary()}")

        if not done:
            raise MediaError(ErrorKind.TRANSCODE, "All video compression attempts failed")

        result.compressed_mp4s = done
        return list(done)

    def _segment(
        self, tiers: List[str], location: OutputLocation, result: PipelineResult
    ) -> List[str]:
        done: Dict[str, str] = {}
        for name in tiers:
            mp4 = location.path / f"compressed_{name}.mp4"
            if not mp4.exists():
                result.warn(f"Failed to create {name} HLS: MP4 file not found: {mp4}")
                continue
            try:
                outcome = self.runner.segment_hls(
                    str(mp4), name, str(location.path), self.media.hls_time
                )
            except OSError as e:
                result.warn(f"Failed to create {name} HLS: {e}")
                continue

            if outcome.success:
                done[name] = location.public_url(f"{name}.m3u8")
            else:
                result.warn(f"Failed to create {name} HLS: {outcome.error_summary()}")

        if not done:
            raise MediaError(ErrorKind.SEGMENTATION, "All HLS conversion attempts failed")

        result.hls_playlists = done
        return list(done)
