"""
Job tracker: creates jobs, answers lookups and reports queue statistics.
"""
import asyncio
import logging
from typing import Optional

from .config import Settings, settings as default_settings
from .errors import InvalidInputError, JobBusyError, JobNotFoundError
from .jobs import ProcessingJob, generate_job_id
from .models import JobStatus
from .pricing import PROCESSING_TIERS, calculate_credits, credits_per_minute, validate_duration
from .runner import JobRunner
from .store import JobStore

logger = logging.getLogger(__name__)


class JobTracker:
    """
    Front door for processing jobs.

    Creating a job prices it, stores it, appends it to the FIFO queue and
    wakes the runner if it is idle. The tracker is the only writer that
    inserts into the store; the runner only updates job state.
    """

    def __init__(self, store: JobStore, runner: JobRunner, settings: Optional[Settings] = None):
        self.store = store
        self.runner = runner
        self.settings = settings or default_settings

    def create(
        self,
        file_id: str,
        file_name: str,
        file_size: int,
        duration: float,
        processing_days: Optional[int] = None,
    ) -> ProcessingJob:
        """
        Create and enqueue a processing job.

        Args:
            file_id: Identifier of the uploaded file
            file_name: Name of the file being processed
            file_size: Size of the file in bytes
            duration: Exact media duration in seconds (decimals allowed)
            processing_days: Processing tier (3, 7, 14 or 21 days)

        Returns:
            The queued job, with its credit cost already computed

        Raises:
            InvalidInputError: If any argument is malformed; nothing is stored
            RuntimeError: If called outside a running event loop; nothing is stored
        """
        if processing_days is None:
            processing_days = self.settings.default_processing_days

        if not file_id or not isinstance(file_id, str):
            raise InvalidInputError("file_id is required")
        if not file_name or not isinstance(file_name, str):
            raise InvalidInputError("file_name is required")
        if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
            raise InvalidInputError(f"file_size must be a non-negative integer, got {file_size!r}")
        duration = validate_duration(duration)
        if processing_days not in PROCESSING_TIERS:
            raise InvalidInputError(
                f"processing_days must be one of {', '.join(str(d) for d in PROCESSING_TIERS)}, got {processing_days!r}"
            )

        # The runner is started on the running loop, so require one before storing anything
        asyncio.get_running_loop()

        job_id = generate_job_id(self.settings.job_id_utc_offset_hours)
        while job_id in self.store:
            job_id = generate_job_id(self.settings.job_id_utc_offset_hours)

        job = ProcessingJob(
            id=job_id,
            file_id=file_id,
            file_name=file_name,
            file_size=file_size,
            file_duration=duration,
            processing_days=processing_days,
            credits_required=calculate_credits(duration, processing_days),
        )

        logger.info(
            f"Creating job {job.id} for {file_name}: {duration}s "
            f"({job.base_minutes} base minutes), {processing_days} days at "
            f"{credits_per_minute(processing_days)} credits/min = {job.credits_required} credits"
        )

        self.store.add(job)
        self.store.enqueue(job.id)
        self.runner.kick()

        return job

    def get_by_id(self, job_id: str) -> Optional[ProcessingJob]:
        return self.store.get(job_id)

    def get_by_file_id(self, file_id: str) -> Optional[ProcessingJob]:
        return self.store.get_by_file_id(file_id)

    def list_all(self) -> list[ProcessingJob]:
        return self.store.list()

    def queue_status(self) -> dict:
        """Aggregate statistics over the queue and every known job."""
        return {
            "queue_length": self.store.queue_length,
            "total_jobs": len(self.store),
            "completed_jobs": self.store.count(JobStatus.COMPLETED),
            "failed_jobs": self.store.count(JobStatus.FAILED),
            "is_running": self.runner.is_running,
        }

    def evict(self, job_id: str) -> ProcessingJob:
        """
        Remove a job from the registry.

        Raises:
            JobNotFoundError: If the job does not exist
            JobBusyError: If the job is being processed right now
        """
        job = self.store.get(job_id)
        if not job:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.status == JobStatus.PROCESSING:
            raise JobBusyError(f"Job {job_id} is processing and cannot be removed")

        self.store.remove(job_id)
        logger.info(f"Evicted job {job_id} ({job.status.value})")
        return job
