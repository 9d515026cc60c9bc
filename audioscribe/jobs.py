"""
Processing job state and its transition rules.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import DuplicateOperationError, InvalidTransitionError
from .models import JobStatus, PipelineStep, StepStatus
from .pricing import base_minutes, display_minutes

logger = logging.getLogger(__name__)

STEP_ORDER = tuple(PipelineStep)

_TERMINAL = {JobStatus.COMPLETED, JobStatus.FAILED}

_ALLOWED = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

_STEP_ALLOWED = {
    StepStatus.PENDING: {StepStatus.PROCESSING},
    StepStatus.PROCESSING: {StepStatus.COMPLETED, StepStatus.ERROR},
    StepStatus.COMPLETED: set(),
    StepStatus.ERROR: set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_job_id(utc_offset_hours: int = 8) -> str:
    """
    Build a job id of the form ``job_<random>_<DDMMYYYY>``.

    The random part makes collisions practically impossible; it is not a
    cryptographic uniqueness guarantee.
    """
    local = datetime.now(timezone(timedelta(hours=utc_offset_hours)))
    return f"job_{uuid.uuid4().hex[:10]}_{local.strftime('%d%m%Y')}"


@dataclass
class StepState:
    """Progress of one pipeline step."""
    status: StepStatus = StepStatus.PENDING
    progress: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def advance(self, target: StepStatus) -> None:
        if target not in _STEP_ALLOWED[self.status]:
            raise InvalidTransitionError(f"Step cannot move from {self.status.value} to {target.value}")
        self.status = target


@dataclass
class ProcessingJob:
    """Represents one uploaded file moving through the transcription pipeline."""
    id: str
    file_id: str
    file_name: str
    file_size: int
    file_duration: float
    processing_days: int
    credits_required: int
    status: JobStatus = JobStatus.QUEUED
    current_step: str = "Queued for processing"
    progress: int = 0
    steps: dict[PipelineStep, StepState] = field(
        default_factory=lambda: {step: StepState() for step in STEP_ORDER}
    )
    credits_used: int = 0
    credits_deducted: bool = False
    transcription_result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        # Nothing has been charged yet; credits_used only drops to 0 on failure
        self.credits_used = self.credits_required

    @property
    def base_minutes(self) -> int:
        return base_minutes(self.file_duration)

    @property
    def display_minutes(self) -> int:
        return display_minutes(self.file_duration)

    @property
    def is_finished(self) -> bool:
        return self.status in _TERMINAL

    def transition(self, target: JobStatus) -> None:
        """
        Move the job forward to ``target``.

        Raises:
            InvalidTransitionError: If the move would regress or skip a state
        """
        if target not in _ALLOWED[self.status]:
            raise InvalidTransitionError(
                f"Job {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def start(self) -> None:
        self.transition(JobStatus.PROCESSING)
        self.started_at = utcnow()
        self.current_step = "Started processing"

    def complete(self, transcription: str) -> None:
        self.transition(JobStatus.COMPLETED)
        self.transcription_result = transcription
        self.completed_at = utcnow()
        self.progress = 100
        self.current_step = "Processing complete!"

    def fail(self, message: str) -> None:
        """Mark the job failed. Failed jobs are never billed."""
        self.transition(JobStatus.FAILED)
        self.error = message
        self.completed_at = utcnow()
        self.credits_used = 0
        self.current_step = f"Failed: {message}"

        for state in self.steps.values():
            if state.status == StepStatus.PROCESSING:
                state.advance(StepStatus.ERROR)
                state.error = message
                state.completed_at = self.completed_at

    def mark_credits_deducted(self) -> None:
        if self.credits_deducted:
            raise DuplicateOperationError(f"Credits for job {self.id} were already deducted")
        self.credits_deducted = True

    def estimate_progress(self) -> int:
        """Overall progress as the rounded mean of step progress."""
        total = sum(state.progress for state in self.steps.values())
        return round(total / len(self.steps))
