"""Pydantic models for configuration and data validation."""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class QualityTier(BaseModel):
    """One rendition of the compression ladder."""

    width: int = Field(..., gt=0, description="Output width in pixels")
    height: int = Field(..., gt=0, description="Output height in pixels")
    scale: str = Field(..., description="ffmpeg scale expression, e.g. '854:480'")
    bitrate: str = Field(..., description="Target video bitrate (e.g. '800k')")
    maxrate: str = Field(..., description="Video max rate for VBV")
    bufsize: str = Field(..., description="VBV buffer size")
    audio_bitrate: str = Field(default="96k", description="AAC bitrate")
    audio_sample_rate: str = Field(default="44100", description="AAC sample rate in Hz")
    profile: str = Field(default="main", description="H.264 profile (baseline, main, high)")
    level: str = Field(default="3.1", description="H.264 level")


def default_quality_tiers() -> Dict[str, QualityTier]:
    return {
        "480p": QualityTier(
            width=854, height=480, scale="854:480",
            bitrate="800k", maxrate="900k", bufsize="1600k",
            audio_bitrate="96k", profile="main", level="3.1",
        ),
        "360p": QualityTier(
            width=640, height=360, scale="640:360",
            bitrate="600k", maxrate="700k", bufsize="1200k",
            audio_bitrate="96k", profile="main", level="3.0",
        ),
        "240p": QualityTier(
            width=426, height=240, scale="426:240",
            bitrate="400k", maxrate="500k", bufsize="800k",
            audio_bitrate="64k", profile="baseline", level="3.0",
        ),
        "144p": QualityTier(
            width=256, height=144, scale="256:144",
            bitrate="200k", maxrate="250k", bufsize="400k",
            audio_bitrate="64k", audio_sample_rate="22050",
            profile="baseline", level="3.0",
        ),
    }


class RedisConfig(BaseModel):
    """Connection settings for the shared queue store."""

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, gt=0, description="Redis port")
    db: int = Field(default=0, ge=0, description="Redis logical database")
    password: Optional[str] = Field(default=None, description="Redis password")
    socket_timeout_s: float = Field(
        default=30.0, gt=0.0, description="Socket timeout; must exceed the claim timeout"
    )


class QueueConfig(BaseModel):
    """Queue naming and retry policy."""

    queue_name: str = Field(default="video_compression_queue", description="Pending list key")
    max_retries: int = Field(default=3, ge=1, description="Attempts before dead-lettering")
    backoff_base_s: int = Field(default=60, gt=0, description="Retry delay = 2^attempts * base")
    completed_ttl_s: int = Field(
        default=86400, gt=0, description="Expiry applied to completed job records"
    )


class MediaConfig(BaseModel):
    """Output location and pipeline knobs."""

    media_base_path: str = Field(default="/var/www/media/content", description="Output root")
    media_base_url: str = Field(
        default="https://media.example.com/content", description="Public URL of the output root"
    )
    min_free_disk_percent: float = Field(
        default=5.0, ge=0.0, le=100.0, description="Provisioning aborts below this free share"
    )
    download_timeout_s: int = Field(default=300, gt=0, description="Overall transfer timeout")
    download_chunk_bytes: int = Field(default=1024 * 1024, gt=0, description="Stream chunk size")
    download_retry_delays_s: list[float] = Field(
        default_factory=lambda: [1, 5, 15], description="Sleep between video download attempts"
    )
    min_download_bytes: int = Field(default=1024, ge=1, description="Smaller files are corrupt")
    thumbnail_webp_quality: int = Field(default=87, ge=0, le=100, description="libwebp quality")
    thumbnail_webp_compression_level: int = Field(
        default=6, ge=0, le=6, description="libwebp compression level"
    )
    hls_time: int = Field(default=10, gt=0, description="HLS segment duration in seconds")
    video_qualities: Dict[str, QualityTier] = Field(
        default_factory=default_quality_tiers, description="Rendition ladder, in output order"
    )

    @field_validator("video_qualities")
    @classmethod
    def at_least_one_tier(cls, v: Dict[str, QualityTier]) -> Dict[str, QualityTier]:
        if not v:
            raise ValueError("video_qualities must define at least one tier")
        return v


class FfmpegConfig(BaseModel):
    """Transcoding tool settings."""

    binary: Optional[str] = Field(
        default=None, description="ffmpeg executable (None = bundled imageio-ffmpeg binary)"
    )
    preset: str = Field(default="faster", description="x264 preset")
    gop_size: int = Field(default=30, gt=0, description="GOP size aligned to HLS segments")
    timeout_s: int = Field(default=600, gt=0, description="Hard limit for one ffmpeg invocation")
    kill_grace_period_s: int = Field(
        default=5, gt=0, description="Grace period between SIGTERM and SIGKILL"
    )
    save_artifacts_on_failure: bool = Field(
        default=True, description="Save ffmpeg logs and commands on failure for debugging"
    )
    loglevel: str = Field(default="error", description="ffmpeg -loglevel")
    temp_dir: Optional[str] = Field(default=None, description="Directory for failure artifacts")


class WebhookConfig(BaseModel):
    """Completion notification settings."""

    secret: str = Field(default="CHANGE_ME_TO_A_SECURE_SECRET", description="HMAC shared secret")
    default_url: Optional[str] = Field(
        default=None, description="Endpoint for submitted jobs that do not name one"
    )
    timeout_s: float = Field(default=30.0, gt=0.0, description="Per-attempt request timeout")
    retry_delays_s: list[float] = Field(
        default_factory=lambda: [1, 5, 30, 300, 1800],
        description="Sleep after each failed attempt",
    )
    max_attempts: int = Field(default=5, ge=1, description="Delivery attempts")
    signature_header: str = Field(default="X-Webhook-Signature", description="Signature header")
    user_agent: str = Field(default="Video-Processor-Worker/1.0", description="User-Agent")


class WorkerConfig(BaseModel):
    """Worker loop settings."""

    worker_id: Optional[str] = Field(default=None, description="None = hostname_pid")
    claim_timeout_s: int = Field(default=5, gt=0, description="Blocking claim timeout")
    error_sleep_s: float = Field(default=5.0, ge=0.0, description="Pause after a loop error")


class LoggingConfig(BaseModel):
    """Log destinations."""

    log_file: Optional[str] = Field(default="logs/worker.log", description="None = console only")
    debug: bool = Field(default=False, description="Enable DEBUG level")


class TranscodeConfig(BaseModel):
    """Complete application configuration with validation."""

    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    ffmpeg: FfmpegConfig = Field(default_factory=FfmpegConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "TranscodeConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "TranscodeConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("worker_id") is not None:
            config_dict["worker"]["worker_id"] = cli_args["worker_id"]
        if cli_args.get("claim_timeout") is not None:
            config_dict["worker"]["claim_timeout_s"] = cli_args["claim_timeout"]
        if cli_args.get("queue_name") is not None:
            config_dict["queue"]["queue_name"] = cli_args["queue_name"]
        if cli_args.get("media_base_path") is not None:
            config_dict["media"]["media_base_path"] = cli_args["media_base_path"]
        if cli_args.get("debug") is not None:
            config_dict["logging"]["debug"] = cli_args["debug"]

        return TranscodeConfig.from_dict(config_dict)
