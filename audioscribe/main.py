"""
Audioscribe Processing API - FastAPI Application

Accepts transcription jobs, runs them through the pipeline one at a time
and bills the ledger backend for every completed job.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .billing import BillingCoordinator
from .config import Settings, settings as default_settings
from .errors import InvalidInputError, JobBusyError, JobNotFoundError
from .jobs import ProcessingJob
from .ledger import CreditLedgerClient
from .models import (
    HealthResponse,
    JobRequest,
    JobStatusResponse,
    PriceQuoteResponse,
    QueueStatusResponse,
    StepStatusResponse,
)
from .notifier import StatusNotifier
from .pricing import format_duration, quote
from .runner import JobRunner
from .store import JobStore
from .tracker import JobTracker

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if default_settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def job_response(job: ProcessingJob) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.id,
        file_id=job.file_id,
        file_name=job.file_name,
        file_size=job.file_size,
        file_duration=job.file_duration,
        processing_days=job.processing_days,
        status=job.status,
        progress=job.progress,
        current_step=job.current_step,
        steps={
            step.value: StepStatusResponse(
                status=state.status,
                progress=state.progress,
                started_at=state.started_at,
                completed_at=state.completed_at,
                error=state.error,
            )
            for step, state in job.steps.items()
        },
        credits_required=job.credits_required,
        credits_used=job.credits_used,
        credits_deducted=job.credits_deducted,
        base_minutes=job.base_minutes,
        display_minutes=job.display_minutes,
        transcription=job.transcription_result,
        error=job.error,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    notifier=None,
    ledger: Optional[CreditLedgerClient] = None,
    steps=None,
) -> FastAPI:
    """
    Build the processing API with its own store, runner and billing.

    Args:
        settings: Service settings; the global settings if omitted
        notifier: Status notifier; an HTTP notifier to the backend if omitted
        ledger: Ledger client; an HTTP client to the backend if omitted
        steps: Pipeline step handlers; the simulated pipeline if omitted
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting Audioscribe Processing Service")

        store = JobStore()
        runner = JobRunner(
            store,
            steps=steps,
            notifier=notifier or StatusNotifier(settings=settings),
            settings=settings,
        )
        billing = BillingCoordinator(ledger or CreditLedgerClient(settings=settings))
        runner.subscribe(billing.on_job_event)

        app.state.store = store
        app.state.runner = runner
        app.state.tracker = JobTracker(store, runner, settings=settings)
        app.state.billing = billing
        logger.info("Processing service ready")

        yield

        logger.info("Shutting down Audioscribe Processing Service")
        await runner.stop()

    app = FastAPI(
        title="Audioscribe Processing API",
        description="Transcription job tracking with pay-as-you-go credits",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Health & Status Endpoints
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint."""
        tracker: JobTracker = request.app.state.tracker
        status = tracker.queue_status()
        return HealthResponse(
            status="healthy",
            version=__version__,
            queue_length=status["queue_length"],
            is_running=status["is_running"],
        )

    @app.get("/queue/status", response_model=QueueStatusResponse, tags=["Queue"])
    async def queue_status(request: Request):
        """Get the current queue status."""
        return QueueStatusResponse(**request.app.state.tracker.queue_status())

    # =========================================================================
    # Pricing
    # =========================================================================

    @app.get("/pricing/quote", response_model=PriceQuoteResponse, tags=["Pricing"])
    async def price_quote(
        duration_seconds: float = Query(..., description="Exact media duration in seconds"),
        processing_days: int = Query(default=settings.default_processing_days),
    ):
        """Quote the credits a file will cost for a processing tier."""
        try:
            q = quote(duration_seconds, processing_days)
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return PriceQuoteResponse(
            duration_seconds=q.duration_seconds,
            processing_days=q.processing_days,
            credits_per_minute=q.credits_per_minute,
            credits=q.credits,
            display_minutes=q.display_minutes,
            base_minutes=q.base_minutes,
            formatted_duration=format_duration(q.duration_seconds),
        )

    # =========================================================================
    # Job Management Endpoints
    # =========================================================================

    @app.post("/jobs", response_model=JobStatusResponse, status_code=201, tags=["Jobs"])
    async def create_job(job_request: JobRequest, request: Request):
        """
        Submit a new transcription job.

        The job is priced, queued and processed asynchronously. Use the
        GET /jobs/{job_id} endpoint to follow its progress.
        """
        tracker: JobTracker = request.app.state.tracker
        try:
            job = tracker.create(
                file_id=job_request.file_id,
                file_name=job_request.file_name,
                file_size=job_request.file_size,
                duration=job_request.duration_seconds,
                processing_days=job_request.processing_days,
            )
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return job_response(job)

    @app.get("/jobs", response_model=list[JobStatusResponse], tags=["Jobs"])
    async def list_jobs(request: Request):
        """List all jobs in submission order."""
        return [job_response(job) for job in request.app.state.tracker.list_all()]

    @app.get("/jobs/{job_id}", response_model=JobStatusResponse, tags=["Jobs"])
    async def get_job(job_id: str, request: Request):
        """Get the status of a job."""
        job = request.app.state.tracker.get_by_id(job_id)
        if not job:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job_response(job)

    @app.get("/files/{file_id}/job", response_model=JobStatusResponse, tags=["Jobs"])
    async def get_job_for_file(file_id: str, request: Request):
        """Get the job created for an uploaded file."""
        job = request.app.state.tracker.get_by_file_id(file_id)
        if not job:
            raise HTTPException(status_code=404, detail=f"No job for file {file_id}")
        return job_response(job)

    @app.delete("/jobs/{job_id}", tags=["Jobs"])
    async def delete_job(job_id: str, request: Request):
        """Remove a job that is not currently processing."""
        try:
            request.app.state.tracker.evict(job_id)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return {"message": f"Job {job_id} deleted"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "audioscribe.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
