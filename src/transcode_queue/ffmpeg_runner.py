"""FFmpeg runner with process isolation, timeout enforcement, and progress monitoring.

This module wraps every ffmpeg invocation the pipeline makes (rendition
compression, HLS segmentation, WebP thumbnails) so that no call can hang a
worker or leave orphaned children behind.

Key Features:
- Process isolation with subprocess.Popen (argument lists, never a shell)
- Hard timeout with process tree cleanup via psutil
- Progress parsing from ffmpeg's ``-progress`` stream
- Error classification for diagnostics
- Artifact preservation on failure
"""

import logging
import os
import re
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import psutil

from .models import FfmpegConfig, QualityTier

logger = logging.getLogger(__name__)


class FfmpegErrorType(Enum):
    """FFmpeg error classification."""
    PERMANENT = "permanent"     # File not found, invalid format, codec error
    TRANSIENT = "transient"     # Network timeout, disk I/O stall
    TIMEOUT = "timeout"         # Hard timeout, process tree killed


@dataclass
class FfmpegProgress:
    """Real-time FFmpeg progress metrics."""
    current_time_s: float = 0.0
    fps: float = 0.0
    speed: float = 0.0
    frame: int = 0
    last_update: float = 0.0


@dataclass
class FfmpegResult:
    """Result of FFmpeg execution."""
    success: bool
    returncode: int
    stderr: str
    duration_s: float
    error_type: Optional[FfmpegErrorType] = None
    final_progress: Optional[FfmpegProgress] = None
    artifacts_saved: List[Path] = field(default_factory=list)

    def error_summary(self, max_lines: int = 5) -> str:
        """Last few stderr lines, for warnings and job error messages."""
        if self.error_type == FfmpegErrorType.TIMEOUT:
            return "ffmpeg timed out"
        lines = [
            line for line in self.stderr.splitlines()
            if line.strip() and "=" not in line.split(" ", 1)[0]
        ]
        tail = "; ".join(lines[-max_lines:])
        return tail or f"ffmpeg exited with code {self.returncode}"


class FfmpegRunner:
    """FFmpeg orchestration with timeout and zombie prevention.

    Example:
        >>> runner = FfmpegRunner.from_config(cfg.ffmpeg)
        >>> result = runner.compress_rendition("original.mp4", "compressed_480p.mp4", tier)
        >>> if not result.success:
        ...     print(result.error_summary())
    """

    def __init__(
        self,
        binary: Optional[str] = None,
        timeout_s: int = 600,
        kill_grace_period_s: int = 5,
        save_artifacts_on_failure: bool = True,
        ffmpeg_loglevel: str = "error",
        temp_dir: Optional[str] = None,
        progress_callback: Optional[Callable[[FfmpegProgress], None]] = None,
    ):
        """Initialize FFmpeg runner.

        Args:
            binary: ffmpeg executable (None = bundled imageio-ffmpeg binary)
            timeout_s: Maximum duration for any FFmpeg operation
            kill_grace_period_s: Grace period between SIGTERM and SIGKILL
            save_artifacts_on_failure: Save logs and commands on failure
            ffmpeg_loglevel: FFmpeg log level (error, warning, info, verbose)
            temp_dir: Directory for failure artifacts (None = system temp)
            progress_callback: Optional callback for progress updates
        """
        self.binary = binary
        self.timeout_s = timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.save_artifacts_on_failure = save_artifacts_on_failure
        self.ffmpeg_loglevel = ffmpeg_loglevel
        self.temp_dir = temp_dir
        self.progress_callback = progress_callback

        self._process: Optional[subprocess.Popen] = None
        self._progress = FfmpegProgress()

    @classmethod
    def from_config(cls, cfg: FfmpegConfig, **kwargs) -> "FfmpegRunner":
        return cls(
            binary=cfg.binary,
            timeout_s=cfg.timeout_s,
            kill_grace_period_s=cfg.kill_grace_period_s,
            save_artifacts_on_failure=cfg.save_artifacts_on_failure,
            ffmpeg_loglevel=cfg.loglevel,
            temp_dir=cfg.temp_dir,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_compress_command(
        self,
        input_path: str,
        output_path: str,
        tier: QualityTier,
        preset: str = "faster",
        gop_size: int = 30,
    ) -> List[str]:
        """H.264/AAC rendition with fixed GOP so HLS segments cut on keyframes."""
        return [
            self.get_ffmpeg_exe(),
            "-y",
            "-i", input_path,
            "-vf", f"scale={tier.scale}:flags=lanczos",
            "-c:v", "libx264",
            "-preset", preset,
            "-profile:v", tier.profile,
            "-level", tier.level,
            "-b:v", tier.bitrate,
            "-maxrate", tier.maxrate,
            "-bufsize", tier.bufsize,
            "-g", str(gop_size),
            "-keyint_min", str(gop_size),
            "-sc_threshold", "0",
            "-c:a", "aac",
            "-b:a", tier.audio_bitrate,
            "-ar", tier.audio_sample_rate,
            "-movflags", "+faststart",
            "-progress", "pipe:2",
            "-loglevel", self.ffmpeg_loglevel,
            output_path,
        ]

    def build_hls_command(
        self,
        mp4_path: str,
        tier_name: str,
        output_dir: str,
        hls_time: int = 10,
    ) -> List[str]:
        """Stream-copy an MP4 into a VOD playlist plus numbered segments."""
        out = Path(output_dir)
        return [
            self.get_ffmpeg_exe(),
            "-y",
            "-i", mp4_path,
            "-c", "copy",
            "-f", "hls",
            "-hls_time", str(hls_time),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(out / f"{tier_name}_%03d.ts"),
            "-progress", "pipe:2",
            "-loglevel", self.ffmpeg_loglevel,
            str(out / f"{tier_name}.m3u8"),
        ]

    def build_webp_command(
        self,
        input_path: str,
        output_path: str,
        quality: int = 87,
        compression_level: int = 6,
    ) -> List[str]:
        return [
            self.get_ffmpeg_exe(),
            "-y",
            "-i", input_path,
            "-c:v", "libwebp",
            "-quality", str(quality),
            "-compression_level", str(compression_level),
            "-loglevel", self.ffmpeg_loglevel,
            output_path,
        ]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def compress_rendition(
        self,
        input_path: str,
        output_path: str,
        tier: QualityTier,
        preset: str = "faster",
        gop_size: int = 30,
    ) -> FfmpegResult:
        """Encode one rendition of the quality ladder.

        Success requires exit code 0 and the output file on disk.
        """
        cmd = self.build_compress_command(input_path, output_path, tier, preset, gop_size)
        return self._checked(self._run_ffmpeg(cmd), output_path)

    def segment_hls(
        self,
        mp4_path: str,
        tier_name: str,
        output_dir: str,
        hls_time: int = 10,
    ) -> FfmpegResult:
        """Produce ``<tier>.m3u8`` and ``<tier>_NNN.ts`` in ``output_dir``."""
        cmd = self.build_hls_command(mp4_path, tier_name, output_dir, hls_time)
        playlist = str(Path(output_dir) / f"{tier_name}.m3u8")
        return self._checked(self._run_ffmpeg(cmd), playlist)

    def convert_to_webp(
        self,
        input_path: str,
        output_path: str,
        quality: int = 87,
        compression_level: int = 6,
    ) -> FfmpegResult:
        cmd = self.build_webp_command(input_path, output_path, quality, compression_level)
        return self._checked(self._run_ffmpeg(cmd), output_path)

    def probe_version(self) -> Optional[str]:
        """First line of ``ffmpeg -version``, or None if the binary is unusable."""
        try:
            completed = subprocess.run(
                [self.get_ffmpeg_exe(), "-version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                timeout=10,
            )
        except (OSError, RuntimeError, subprocess.TimeoutExpired) as e:
            logger.debug("ffmpeg probe failed: %s", e)
            return None

        if completed.returncode != 0:
            return None
        lines = completed.stdout.splitlines()
        return lines[0] if lines else ""

    @staticmethod
    def _checked(result: FfmpegResult, expected_output: str) -> FfmpegResult:
        if result.success and not Path(expected_output).exists():
            result.success = False
            result.error_type = FfmpegErrorType.PERMANENT
            result.stderr += f"\nExpected output not created: {expected_output}"
        return result

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------

    def _run_ffmpeg(self, cmd: List[str]) -> FfmpegResult:
        """Execute FFmpeg with timeout enforcement and progress monitoring.

        Args:
            cmd: FFmpeg command as list

        Returns:
            FfmpegResult with execution details
        """
        start_time = time.time()
        self._progress = FfmpegProgress()
        stderr_lines: List[str] = []

        logger.debug("Running: %s", " ".join(cmd))

        try:
            self._process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,  # Line buffered for real-time progress
            )

            monitor = threading.Thread(
                target=self._monitor_progress,
                args=(self._process.stderr, stderr_lines),
                daemon=True,
            )
            monitor.start()

            timed_out = False
            try:
                returncode = self._process.wait(timeout=self.timeout_s)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.warning("ffmpeg exceeded %ss, killing process tree", self.timeout_s)
                self._kill_process_tree()
                returncode = -1

            monitor.join(timeout=2)
            stderr = "".join(stderr_lines)
            duration = time.time() - start_time

            error_type = None
            if timed_out:
                error_type = FfmpegErrorType.TIMEOUT
            elif returncode != 0:
                error_type = self._classify_error(stderr)

            artifacts: List[Path] = []
            if returncode != 0 and self.save_artifacts_on_failure:
                artifacts = self._save_failure_artifacts(cmd, stderr)

            return FfmpegResult(
                success=(returncode == 0),
                returncode=returncode,
                stderr=stderr,
                duration_s=duration,
                error_type=error_type,
                final_progress=self._progress,
                artifacts_saved=artifacts,
            )

        except Exception:
            # Unexpected error - ensure cleanup
            self._kill_process_tree()
            raise

        finally:
            self._process = None

    def _monitor_progress(self, stderr_stream, sink: List[str]) -> None:
        """Collect stderr and parse ``-progress`` key=value lines.

        FFmpeg progress format:
            frame=123
            fps=25.00
            out_time=00:00:05.123456
            speed=2.5x
            progress=continue
        """
        last_callback = 0.0

        try:
            for line in stderr_stream:
                sink.append(line)

                if line.startswith("out_time="):
                    match = re.search(r'out_time=(\d+):(\d+):(\d+)\.(\d+)', line)
                    if match:
                        h, m, s, frac = match.groups()
                        self._progress.current_time_s = (
                            int(h) * 3600 + int(m) * 60 + int(s) + float(f"0.{frac}")
                        )
                        self._progress.last_update = time.time()
                elif line.startswith("frame="):
                    match = re.search(r'frame=\s*(\d+)', line)
                    if match:
                        self._progress.frame = int(match.group(1))
                elif line.startswith("fps="):
                    match = re.search(r'fps=\s*([\d.]+)', line)
                    if match:
                        self._progress.fps = float(match.group(1))
                elif line.startswith("speed="):
                    match = re.search(r'speed=\s*([\d.]+)x', line)
                    if match:
                        self._progress.speed = float(match.group(1))

                now = time.time()
                if self.progress_callback and now - last_callback >= 2.0:
                    last_callback = now
                    try:
                        self.progress_callback(self._progress)
                    except Exception as e:
                        logger.warning("Progress callback error: %s", e)
        except (OSError, ValueError) as e:
            # Stream closed underneath us after a kill
            logger.debug("Progress monitoring stopped: %s", e)

    def _kill_process_tree(self) -> None:
        """Kill FFmpeg process and all children.

        Kill sequence:
        1. SIGTERM to children and parent
        2. Wait grace period
        3. SIGKILL survivors
        """
        if not self._process:
            return

        try:
            parent = psutil.Process(self._process.pid)
        except psutil.NoSuchProcess:
            return

        try:
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        for proc in children + [parent]:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(children + [parent], timeout=self.kill_grace_period_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            self._process.wait(timeout=self.kill_grace_period_s)
        except subprocess.TimeoutExpired:
            logger.error("ffmpeg pid %s did not exit after SIGKILL", self._process.pid)

    def _classify_error(self, stderr: str) -> FfmpegErrorType:
        """Classify FFmpeg error from its stderr."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unknown encoder",
            "unsupported codec",
            "moov atom not found",
            "corrupt",
        ]
        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        return FfmpegErrorType.TRANSIENT

    def _save_failure_artifacts(self, cmd: List[str], stderr: str) -> List[Path]:
        """Save debugging artifacts on FFmpeg failure.

        Creates:
        - ffmpeg_error_{timestamp}.log: Command + stderr
        - ffmpeg_cmd_{timestamp}.sh: Reproducible command script
        """
        artifacts = []
        temp_dir = self._get_temp_dir()
        stamp = f"{int(time.time())}_{os.getpid()}"

        log_path = temp_dir / f"ffmpeg_error_{stamp}.log"
        try:
            with open(log_path, "w", encoding="utf-8") as f:
                f.write("=" * 80 + "\n")
                f.write("FFmpeg Error Log\n")
                f.write(f"Timestamp: {time.ctime()}\n")
                f.write(f"PID: {os.getpid()}\n")
                f.write("=" * 80 + "\n\n")
                f.write("COMMAND:\n")
                f.write(" ".join(cmd) + "\n\n")
                f.write("STDERR:\n")
                f.write(stderr or "(empty)\n")
            artifacts.append(log_path)
        except OSError as e:
            logger.warning("Failed to save error log: %s", e)

        script_path = temp_dir / f"ffmpeg_cmd_{stamp}.sh"
        try:
            with open(script_path, "w", encoding="utf-8") as f:
                f.write("#!/bin/bash\n")
                f.write("# Reproducible FFmpeg command\n")
                f.write("# Generated: " + time.ctime() + "\n\n")

                escaped_cmd = []
                for arg in cmd:
                    if " " in arg or any(c in arg for c in ["$", "`", '"', "\\", "%"]):
                        escaped_cmd.append(f"'{arg}'")
                    else:
                        escaped_cmd.append(arg)
                f.write(" \\\n  ".join(escaped_cmd) + "\n")

            script_path.chmod(0o755)
            artifacts.append(script_path)
        except OSError as e:
            logger.warning("Failed to save command script: %s", e)

        if artifacts:
            logger.info("ffmpeg failure artifacts: %s", ", ".join(str(p) for p in artifacts))
        return artifacts

    def _get_temp_dir(self) -> Path:
        temp_dir = Path(self.temp_dir) if self.temp_dir else Path(tempfile.gettempdir())
        temp_dir.mkdir(parents=True, exist_ok=True)
        return temp_dir

    def get_ffmpeg_exe(self) -> str:
        """Get FFmpeg executable path."""
        if self.binary:
            return self.binary
        import imageio_ffmpeg
        return imageio_ffmpeg.get_ffmpeg_exe()
