"""
Atomic credit operations and job status records.

Every balance change re-reads the user row under ``SELECT ... FOR UPDATE``,
checks it, writes the new balance plus a transaction row, and commits in a
single transaction. Anything that goes wrong rolls the whole thing back.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .models import AudioJob, CreditTransaction, JobStatus, User

logger = logging.getLogger(__name__)


class InsufficientCreditsError(Exception):
    """The user's balance does not cover the deduction."""


class UserNotFoundError(Exception):
    """The user row disappeared between authentication and locking."""


class JobOwnershipError(Exception):
    """The job record belongs to another user."""


@dataclass
class LedgerResult:
    """Outcome of a balance change."""
    new_balance: int
    replayed: bool = False


def _lock_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().populate_existing().first()
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found during locked credit update")
    return user


def deduct_credits(
    db: Session,
    user_id: int,
    amount: int,
    description: str,
    reference: Optional[str] = None,
) -> LedgerResult:
    """
    Deduct credits from a user in one locked transaction.

    A deduction whose ``reference`` was already recorded is not applied
    again; the current balance is returned instead.

    Raises:
        InsufficientCreditsError: If the balance is lower than ``amount``
    """
    try:
        user = _lock_user(db, user_id)

        if reference:
            existing = db.query(CreditTransaction).filter(
                CreditTransaction.user_id == user_id,
                CreditTransaction.reference == reference,
                CreditTransaction.amount < 0,
            ).first()
            if existing:
                db.rollback()
                logger.warning(f"Deduction {reference} for user {user_id} already applied; replaying result")
                return LedgerResult(new_balance=user.credits, replayed=True)

        if user.credits < amount:
            logger.warning(f"Insufficient credits for user {user_id}. Available: {user.credits}, Requested: {amount}")
            raise InsufficientCreditsError("Insufficient credits")

        user.credits -= amount
        db.add(CreditTransaction(
            user_id=user_id,
            amount=-amount,
            balance_after=user.credits,
            description=description,
            reference=reference,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Credits deducted successfully for user {user_id}. New balance: {user.credits}")
    return LedgerResult(new_balance=user.credits)


def add_credits(db: Session, user_id: int, amount: int, description: str, reference: Optional[str] = None) -> LedgerResult:
    """Add credits to a user in one locked transaction."""
    try:
        user = _lock_user(db, user_id)
        user.credits += amount
        db.add(CreditTransaction(
            user_id=user_id,
            amount=amount,
            balance_after=user.credits,
            description=description,
            reference=reference,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Credits added successfully for user {user_id}. New balance: {user.credits}")
    return LedgerResult(new_balance=user.credits)


def apply_status_update(
    db: Session,
    user_id: int,
    job_id: str,
    file_name: str,
    status: str,
    current_step: str,
    file_size: Optional[int] = None,
    transcription: Optional[str] = None,
    credits_used: Optional[int] = None,
    processing_days: Optional[int] = None,
) -> AudioJob:
    """
    Create or update the status record of a job.

    A failed status also stores ``current_step`` as the job's error.

    Raises:
        JobOwnershipError: If ``job_id`` is recorded for a different user
    """
    job_status = JobStatus(status)
    audio_job = db.query(AudioJob).filter(AudioJob.job_id == job_id).first()
    if audio_job is not None and audio_job.user_id != user_id:
        logger.warning(f"User {user_id} tried to update job {job_id} owned by user {audio_job.user_id}")
        raise JobOwnershipError(f"Job {job_id} not found")

    if audio_job is None:
        audio_job = AudioJob(
            user_id=user_id,
            job_id=job_id,
            file_name=file_name,
            file_path="unknown",
            mime_type="unknown",
            file_size=file_size,
            status=job_status,
            current_step=current_step,
            transcription=transcription,
            credits_used=credits_used,
            processing_days=processing_days,
        )
        if job_status == JobStatus.FAILED:
            audio_job.error = current_step
        db.add(audio_job)
        db.commit()
        db.refresh(audio_job)
        logger.info(f"Created job record {job_id} ({job_status.value})")
        return audio_job

    updated = {"status": job_status, "current_step": current_step}
    if transcription is not None:
        updated["transcription"] = transcription
    if credits_used is not None:
        updated["credits_used"] = credits_used
    if processing_days is not None:
        updated["processing_days"] = processing_days
    if job_status == JobStatus.FAILED:
        updated["error"] = current_step

    for key, value in updated.items():
        setattr(audio_job, key, value)
    db.commit()
    db.refresh(audio_job)

    logger.info(f"Updated job record {job_id}: {', '.join(updated)}")
    return audio_job
