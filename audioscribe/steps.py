"""
Pipeline step handlers.

Each handler is an async callable taking the job being processed. The
defaults simulate the media work with awaited delays; swap in real
separation/transcription services by passing a different mapping to the
runner.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Dict, Optional

from .config import Settings, settings as default_settings
from .jobs import ProcessingJob
from .models import PipelineStep

logger = logging.getLogger(__name__)

# Handlers may return text; the transcription step returns the transcript
StepHandler = Callable[[ProcessingJob], Awaitable[Optional[str]]]

# Simulated work per step, in seconds
STEP_DELAYS = {
    PipelineStep.MEDIA_IDENTIFICATION: 1.5,
    PipelineStep.AUDIO_SEPARATION: 3.0,
    PipelineStep.AUDIO_CLEANUP: 2.5,
    PipelineStep.VOCAL_BOOST: 2.0,
    PipelineStep.TRANSCRIPTION: 4.0,
    PipelineStep.QUALITY_CHECK: 1.0,
}

SAMPLE_TRANSCRIPTIONS = [
    "Hello, this is a sample transcription of your audio file. The AI has successfully processed and converted your speech to text.",
    "Welcome to our advanced audio transcription system. Your file has been processed with high accuracy using state-of-the-art AI technology.",
    "This is a demonstration of how your transcribed text will appear after processing. The system has enhanced the audio quality and extracted clear speech patterns.",
    "Thank you for using our AI-powered transcription service! Your audio has been successfully converted to text with professional-grade accuracy.",
]


class SimulatedStep:
    """Stands in for real media work by sleeping for a fixed time."""

    def __init__(self, step: PipelineStep, delay: float):
        self.step = step
        self.delay = delay

    async def __call__(self, job: ProcessingJob) -> None:
        logger.debug(f"Job {job.id}: simulating {self.step.label} for {self.delay:.2f}s")
        await asyncio.sleep(self.delay)


class SimulatedTranscription(SimulatedStep):
    """Simulated transcription that picks one of the sample texts."""

    def __init__(self, delay: float, texts: Optional[list[str]] = None, rng: Optional[random.Random] = None):
        super().__init__(PipelineStep.TRANSCRIPTION, delay)
        self.texts = texts if texts is not None else SAMPLE_TRANSCRIPTIONS
        self._rng = rng or random.Random()

    async def __call__(self, job: ProcessingJob) -> str:
        await super().__call__(job)
        return self._rng.choice(self.texts)


def default_pipeline(settings: Optional[Settings] = None) -> Dict[PipelineStep, StepHandler]:
    """
    Build the default simulated handlers for every step.

    Args:
        settings: Settings providing ``step_delay_scale``

    Returns:
        Mapping of step to handler, in execution order
    """
    settings = settings or default_settings
    scale = settings.step_delay_scale
    handlers: Dict[PipelineStep, StepHandler] = {}
    for step, delay in STEP_DELAYS.items():
        if step == PipelineStep.TRANSCRIPTION:
            handlers[step] = SimulatedTranscription(delay * scale)
        else:
            handlers[step] = SimulatedStep(step, delay * scale)
    return handlers
