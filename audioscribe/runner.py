"""
Sequential job runner that drives jobs through the transcription pipeline.
"""
import asyncio
import inspect
import logging
import time
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .config import Settings, settings as default_settings
from .errors import QualityCheckError, StepFailedError
from .jobs import STEP_ORDER, ProcessingJob, utcnow
from .models import JobStatus, PipelineStep, StepStatus
from .notifier import NullNotifier
from .steps import StepHandler, default_pipeline
from .store import JobStore

logger = logging.getLogger(__name__)

# Status line sent to the backend when each step starts
STEP_MESSAGES = {
    PipelineStep.MEDIA_IDENTIFICATION: "Identifying media...",
    PipelineStep.AUDIO_SEPARATION: "Separating audio...",
    PipelineStep.AUDIO_CLEANUP: "Cleaning audio...",
    PipelineStep.VOCAL_BOOST: "Boosting vocals...",
    PipelineStep.TRANSCRIPTION: "Transcribing...",
    PipelineStep.QUALITY_CHECK: "Quality check...",
}


class JobEventType(str, Enum):
    """Lifecycle events published by the runner."""
    JOB_STARTED = "job_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"


@dataclass
class JobEvent:
    """A state change pushed to subscribers."""
    type: JobEventType
    job: ProcessingJob
    step: Optional[PipelineStep] = None


Subscriber = Callable[[JobEvent], Any]


class JobRunner:
    """
    Drains the store's queue one job at a time, strictly FIFO.

    Only one drain loop may run at once; ``kick()`` is a no-op while the
    runner is busy, and new jobs simply wait at the tail of the queue.
    A failing job is marked failed and the loop moves on to the next one.
    """

    def __init__(
        self,
        store: JobStore,
        steps: Optional[Dict[PipelineStep, StepHandler]] = None,
        notifier=None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.steps = steps if steps is not None else default_pipeline(self.settings)
        self.notifier = notifier or NullNotifier()

        missing = [step.value for step in STEP_ORDER if step not in self.steps]
        if missing:
            raise ValueError(f"No handler for pipeline steps: {', '.join(missing)}")

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._subscribers: list[Subscriber] = []

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for job events.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _publish(self, event: JobEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Subscriber failed handling {event.type.value} for job {event.job.id}")

    # =========================================================================
    # Queue draining
    # =========================================================================

    def kick(self) -> None:
        """Start draining the queue if the runner is idle."""
        if self._running or self.store.queue_length == 0:
            return

        self._running = True
        self._idle.clear()
        self._task = asyncio.get_running_loop().create_task(self._drain())

    async def wait_idle(self) -> None:
        """Wait until the queue has been drained."""
        await self._idle.wait()

    async def _drain(self) -> None:
        try:
            while True:
                job_id = self.store.dequeue()
                if job_id is None:
                    break

                job = self.store.get(job_id)
                if not job:
                    logger.warning(f"Job {job_id} not found in store")
                    continue
                if job.status != JobStatus.QUEUED:
                    logger.warning(f"Skipping job {job_id} in state {job.status.value}")
                    continue

                await self.process(job)
        finally:
            self._running = False
            self._idle.set()

    async def stop(self) -> None:
        """Cancel the drain loop, if any. Used on service shutdown."""
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._running = False
        self._idle.set()

    # =========================================================================
    # Job processing
    # =========================================================================

    async def process(self, job: ProcessingJob) -> None:
        """Run every step of a single job, then apply the quality gate."""
        start_time = time.time()
        transcript: Optional[str] = None

        try:
            job.start()
            logger.info(
                f"Processing {job.file_name} (job {job.id}): {job.file_duration}s, "
                f"{job.processing_days} days, {job.credits_required} credits"
            )
            await self._notify(job, JobStatus.PROCESSING, "Started processing")
            await self._publish(JobEvent(JobEventType.JOB_STARTED, job))

            for step in STEP_ORDER:
                output = await self._run_step(job, step)
                if step == PipelineStep.TRANSCRIPTION:
                    transcript = output

            self._check_quality(transcript)

        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}")
            logger.debug(traceback.format_exc())
            await self._fail(job, str(e) or "Unknown processing error")
            return

        job.complete(transcript)
        elapsed = time.time() - start_time
        logger.info(
            f"Job {job.id} completed in {elapsed:.2f}s: {job.credits_used} credits, "
            f"{len(transcript)} characters transcribed"
        )

        await self._notify(
            job,
            JobStatus.COMPLETED,
            "Audio processing completed successfully",
            transcription=job.transcription_result,
            credits_used=job.credits_used,
            processing_days=job.processing_days,
        )
        await self._publish(JobEvent(JobEventType.JOB_COMPLETED, job))

    async def _run_step(self, job: ProcessingJob, step: PipelineStep) -> Optional[str]:
        state = job.steps[step]
        job.current_step = step.label
        state.advance(StepStatus.PROCESSING)
        state.started_at = utcnow()

        await self._notify(job, JobStatus.PROCESSING, STEP_MESSAGES[step])
        await self._publish(JobEvent(JobEventType.STEP_STARTED, job, step))

        # Simulated progress ticks
        increment = max(1, self.settings.progress_increment)
        for progress in range(0, 101, increment):
            state.progress = progress
            job.progress = job.estimate_progress()
            await asyncio.sleep(self.settings.progress_tick_seconds)

        try:
            output = await self.steps[step](job)
        except StepFailedError:
            raise
        except Exception as e:
            raise StepFailedError(step.value, str(e) or f"{step.label} failed") from e

        state.advance(StepStatus.COMPLETED)
        state.completed_at = utcnow()
        state.progress = 100
        job.progress = job.estimate_progress()
        await self._publish(JobEvent(JobEventType.STEP_COMPLETED, job, step))

        await asyncio.sleep(self.settings.step_settle_seconds)
        return output

    def _check_quality(self, transcript: Optional[str]) -> None:
        minimum = self.settings.min_transcription_length
        if not transcript or len(transcript.strip()) < minimum:
            raise QualityCheckError(
                PipelineStep.QUALITY_CHECK.value,
                f"Transcription quality check failed - text shorter than {minimum} characters",
            )

    async def _fail(self, job: ProcessingJob, message: str) -> None:
        job.fail(message)
        logger.info(f"Job {job.id} failed: {message}; credits charged: 0")

        await self._notify(
            job,
            JobStatus.FAILED,
            job.current_step,
            credits_used=0,
            processing_days=job.processing_days,
        )
        await self._publish(JobEvent(JobEventType.JOB_FAILED, job))

    async def _notify(self, job: ProcessingJob, status: JobStatus, current_step: str, **kwargs) -> None:
        try:
            await self.notifier.notify(job, status, current_step, **kwargs)
        except Exception:
            logger.exception(f"Status notification for job {job.id} failed")
