"""
Ledger Backend API

Keeps user credit balances and job status records. The processing service
calls it to deduct credits for completed jobs and to persist every job
status transition.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .. import __version__
from .auth import get_current_user
from .config import settings
from .database import Base, engine, get_db
from .ledger import (
    InsufficientCreditsError,
    JobOwnershipError,
    UserNotFoundError,
    add_credits,
    apply_status_update,
    deduct_credits,
)
from .models import AudioJob, CreditTransaction, JobStatus, User

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models (Request/Response)
# ============================================================================

class DeductCreditsRequest(BaseModel):
    """Credit deduction request."""
    amount: int = Field(..., ge=1)
    fileName: Optional[str] = None
    duration: Optional[int] = None
    processingDays: Optional[int] = None
    description: Optional[str] = None
    reference: Optional[str] = Field(default=None, description="Idempotency key, usually the job id")


class AddCreditsRequest(BaseModel):
    """Credit addition request."""
    amount: int = Field(..., ge=1)
    description: Optional[str] = None


class CreditsResponse(BaseModel):
    """Result of a balance change."""
    message: str
    newCredits: int
    replayed: bool = False


class StatusUpdateRequest(BaseModel):
    """Job status update from the processing service."""
    job_id: str
    file_name: str
    file_size: Optional[int] = None
    status: JobStatus
    current_step: str
    transcription: Optional[str] = None
    credits_used: Optional[int] = None
    processing_days: Optional[int] = None


class AudioJobResponse(BaseModel):
    """Persisted job status record."""
    job_id: str
    file_name: str
    file_size: Optional[int] = None
    status: str
    current_step: Optional[str] = None
    transcription: Optional[str] = None
    error: Optional[str] = None
    credits_used: Optional[int] = None
    processing_days: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class TransactionResponse(BaseModel):
    """Credit transaction history entry."""
    amount: int
    balance_after: int
    description: str
    reference: Optional[str] = None
    created_at: datetime


def _job_response(job: AudioJob) -> AudioJobResponse:
    return AudioJobResponse(
        job_id=job.job_id,
        file_name=job.file_name,
        file_size=job.file_size,
        status=job.status.value,
        current_step=job.current_step,
        transcription=job.transcription,
        error=job.error,
        credits_used=job.credits_used,
        processing_days=job.processing_days,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info("Ledger backend ready")
    yield
    logger.info("Ledger backend shutting down")


app = FastAPI(
    title="Audioscribe Ledger API",
    description="Credit ledger and job status records for the transcription service",
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


# ============================================================================
# Credit Management
# ============================================================================

@app.get("/credits", tags=["Credits"])
async def get_credits(current_user: User = Depends(get_current_user)):
    """Get the authenticated user's credits."""
    return {"credits": current_user.credits}


@app.post("/credits/deduct", response_model=CreditsResponse, tags=["Credits"])
async def deduct(
    request: DeductCreditsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Deduct credits from the authenticated user.

    The balance is re-read under a row lock, so concurrent deductions can
    never overdraw the account. Insufficient balance leaves it unchanged.
    """
    logger.info(
        f"Deduction request: user={current_user.id} amount={request.amount} "
        f"file={request.fileName} duration={request.duration} reference={request.reference}"
    )
    description = request.description or f"Credit deduction of {request.amount}"

    try:
        result = deduct_credits(db, current_user.id, request.amount, description, request.reference)
    except InsufficientCreditsError:
        raise HTTPException(status_code=400, detail="Insufficient credits")
    except UserNotFoundError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except Exception as e:
        logger.error(f"Error deducting credits for user {current_user.id}: {e}")
        raise HTTPException(status_code=500, detail="An error occurred during credit deduction")

    message = "Credits already deducted" if result.replayed else "Credits deducted successfully"
    return CreditsResponse(message=message, newCredits=result.new_balance, replayed=result.replayed)


@app.post("/credits/add", response_model=CreditsResponse, tags=["Credits"])
async def add(
    request: AddCreditsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add credits to the authenticated user."""
    logger.info(f"Add credits request: user={current_user.id} amount={request.amount}")
    description = request.description or "Credits added to account"

    try:
        result = add_credits(db, current_user.id, request.amount, description)
    except UserNotFoundError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except Exception as e:
        logger.error(f"Error adding credits for user {current_user.id}: {e}")
        raise HTTPException(status_code=500, detail="An error occurred during credit addition")

    return CreditsResponse(message="Credits added successfully", newCredits=result.new_balance)


@app.get("/credits/history", response_model=list[TransactionResponse], tags=["Credits"])
async def get_credit_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get credit transaction history."""
    transactions = db.query(CreditTransaction)\
        .filter(CreditTransaction.user_id == current_user.id)\
        .order_by(CreditTransaction.id.desc())\
        .limit(50)\
        .all()

    return [
        TransactionResponse(
            amount=t.amount,
            balance_after=t.balance_after,
            description=t.description,
            reference=t.reference,
            created_at=t.created_at,
        )
        for t in transactions
    ]


# ============================================================================
# Job Status Records
# ============================================================================

@app.post("/audio/update", tags=["Jobs"])
async def update_status(
    request: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create or update a job status record. Records of other users are reported as missing."""
    try:
        audio_job = apply_status_update(
            db,
            current_user.id,
            job_id=request.job_id,
            file_name=request.file_name,
            status=request.status.value,
            current_step=request.current_step,
            file_size=request.file_size,
            transcription=request.transcription,
            credits_used=request.credits_used,
            processing_days=request.processing_days,
        )
    except JobOwnershipError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "success": True,
        "job_id": audio_job.job_id,
        "status": audio_job.status.value,
        "current_step": audio_job.current_step,
        "message": "Job status updated successfully",
    }


@app.get("/audio/jobs", tags=["Jobs"])
async def list_jobs(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the user's job records, newest first."""
    jobs = db.query(AudioJob)\
        .filter(AudioJob.user_id == current_user.id)\
        .order_by(AudioJob.id.desc())\
        .all()
    processed = sum(1 for job in jobs if job.status == JobStatus.COMPLETED)

    return {
        "data": [_job_response(job) for job in jobs],
        "countFileProcessed": processed,
    }


def _get_user_job(db: Session, user: User, job_id: str) -> AudioJob:
    audio_job = db.query(AudioJob)\
        .filter(AudioJob.job_id == job_id, AudioJob.user_id == user.id)\
        .first()
    if not audio_job:
        raise HTTPException(status_code=404, detail="Job not found")
    return audio_job


@app.get("/audio/jobs/{job_id}", response_model=AudioJobResponse, tags=["Jobs"])
async def get_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get one job status record."""
    return _job_response(_get_user_job(db, current_user, job_id))


@app.delete("/audio/jobs/{job_id}", tags=["Jobs"])
async def delete_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a job status record."""
    audio_job = _get_user_job(db, current_user, job_id)
    db.delete(audio_job)
    db.commit()
    logger.info(f"Deleted job record {job_id}")
    return {"success": True, "message": "Job deleted successfully"}


@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "audioscribe.backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
