"""
Pydantic models for API request/response schemas.
"""
from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime


class JobStatus(str, Enum):
    """Job processing status."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of a single pipeline step."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class PipelineStep(str, Enum):
    """Pipeline steps, declared in execution order."""
    MEDIA_IDENTIFICATION = "media_identification"
    AUDIO_SEPARATION = "audio_separation"
    AUDIO_CLEANUP = "audio_cleanup"
    VOCAL_BOOST = "vocal_boost"
    TRANSCRIPTION = "transcription"
    QUALITY_CHECK = "quality_check"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class JobRequest(BaseModel):
    """Request to create a new transcription job."""
    file_id: str = Field(..., description="Identifier of the uploaded file")
    file_name: str = Field(..., description="Original file name")
    file_size: int = Field(..., ge=0, description="File size in bytes")
    duration_seconds: float = Field(..., description="Exact media duration in seconds")
    processing_days: Optional[int] = Field(default=None, description="Processing tier (3, 7, 14 or 21 days); service default if omitted")

    class Config:
        json_schema_extra = {
            "example": {
                "file_id": "file_1718000000000",
                "file_name": "interview.mp3",
                "file_size": 4194304,
                "duration_seconds": 125.4,
                "processing_days": 21
            }
        }


class StepStatusResponse(BaseModel):
    """State of one pipeline step."""
    status: StepStatus
    progress: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    """Response for job status query."""
    job_id: str
    file_id: str
    file_name: str
    file_size: int
    file_duration: float
    processing_days: int
    status: JobStatus
    progress: int = 0
    current_step: str = ""
    steps: dict[str, StepStatusResponse] = {}
    credits_required: int
    credits_used: int
    credits_deducted: bool = False
    base_minutes: int
    display_minutes: int
    transcription: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class QueueStatusResponse(BaseModel):
    """Queue status response."""
    queue_length: int
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    is_running: bool


class PriceQuoteResponse(BaseModel):
    """Price quote for a media file."""
    duration_seconds: float
    processing_days: int
    credits_per_minute: int
    credits: int
    display_minutes: int
    base_minutes: int
    formatted_duration: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    queue_length: int
    is_running: bool


class StatusUpdate(BaseModel):
    """Status-update notification sent to the persistence backend."""
    job_id: str
    file_name: str
    file_size: int
    status: JobStatus
    current_step: str
    transcription: Optional[str] = None
    credits_used: Optional[int] = None
    processing_days: Optional[int] = None
