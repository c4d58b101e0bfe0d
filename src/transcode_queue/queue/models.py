"""Pydantic models for job queue data structures.

This module defines the type-safe records stored in Redis. Job records are
serialized as JSON into the ``data`` field of the ``job:<id>`` hash.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Job processing states with explicit semantics.

    State transitions:
        pending → processing   (worker claims)
        processing → completed (pipeline + webhook succeeded)
        processing → retry     (failure with attempts < max_retries)
        retry → pending        (delayed entry promoted)
        processing → failed    (attempts == max_retries, dead-lettered)
    """

    PENDING = "pending"  # Queued, waiting for a worker
    PROCESSING = "processing"  # Claimed by a worker
    RETRY = "retry"  # Waiting in the delayed set
    COMPLETED = "completed"  # Terminal success
    FAILED = "failed"  # Terminal failure, in the dead-letter queue


class JobPayload(BaseModel):
    """What to process and where to report it."""

    post_id: int = Field(..., ge=0, description="Numeric content identifier")
    video_url: str = Field(..., description="Source video URL")
    thumbnail_url: str = Field(..., description="Source thumbnail URL")
    webhook_url: str = Field(..., description="Completion webhook endpoint")
    batch_id: Optional[str] = Field(default=None, description="Owning batch, if bulk-submitted")


class Job(BaseModel):
    """Canonical job record."""

    id: str = Field(..., description="Unique job identifier")
    data: JobPayload = Field(..., description="Submitted payload")
    status: JobStatus = Field(default=JobStatus.PENDING, description="Current job state")
    attempts: int = Field(default=0, ge=0, description="Number of claims so far")
    created_at: int = Field(..., description="Submission time (unix seconds)")
    updated_at: int = Field(..., description="Last transition time (unix seconds)")
    completed_at: Optional[int] = Field(default=None, description="Completion time")
    failed_at: Optional[int] = Field(default=None, description="Dead-letter time")
    error: Optional[str] = Field(default=None, description="Last error message")
    result: Optional[Dict[str, Any]] = Field(default=None, description="Pipeline result")
    duration: Optional[int] = Field(default=None, description="completed_at - created_at")
    worker_id: Optional[str] = Field(default=None, description="Worker that claimed the job")

    class Config:
        """Pydantic configuration."""

        use_enum_values = True  # Serialize enums as strings


class BatchStats(BaseModel):
    """Aggregate counters for one bulk submission."""

    batch_id: str
    total: int = 0
    completed: int = 0
    failed: int = 0
    created_at: int = 0


class QueueStats(BaseModel):
    """Snapshot of the stats counters plus live membership sizes."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    queue_length: int = 0
    processing_count: int = 0
    delayed_count: int = 0
    dead_letter_count: int = 0
