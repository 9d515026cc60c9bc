"""
Billing for finished jobs.

Listens to runner events and deducts credits exactly once per completed
job. Failed jobs are never billed.
"""
import logging
from typing import Dict

from .errors import DuplicateOperationError, InsufficientCreditsError, LedgerError
from .jobs import ProcessingJob
from .ledger import CreditLedgerClient
from .models import JobStatus
from .runner import JobEvent, JobEventType

logger = logging.getLogger(__name__)


class BillingCoordinator:
    """Deducts credits for completed jobs and tracks what still needs billing."""

    def __init__(self, ledger: CreditLedgerClient):
        self.ledger = ledger
        self.pending_retry: Dict[str, ProcessingJob] = {}
        self.billing_failures: Dict[str, str] = {}

    async def on_job_event(self, event: JobEvent) -> None:
        if event.type == JobEventType.JOB_COMPLETED:
            await self.bill(event.job)
        elif event.type == JobEventType.JOB_FAILED:
            logger.info(f"Job {event.job.id} failed; no credits deducted")

    async def bill(self, job: ProcessingJob) -> bool:
        """
        Deduct the job's credits if that has not happened yet.

        Returns:
            True once the job is billed, False if billing did not go through
        """
        if job.status != JobStatus.COMPLETED:
            logger.warning(f"Refusing to bill job {job.id} in state {job.status.value}")
            return False
        if job.credits_deducted:
            return True

        if job.credits_used <= 0:
            job.mark_credits_deducted()
            logger.info(f"Job {job.id} costs 0 credits; nothing to deduct")
            return True

        try:
            await self.ledger.deduct(
                job.credits_used,
                key=job.id,
                file_name=job.file_name,
                duration=job.file_duration,
                processing_days=job.processing_days,
            )
        except DuplicateOperationError:
            logger.warning(f"Deduction for job {job.id} already in progress")
            return False
        except InsufficientCreditsError as e:
            logger.error(f"Cannot bill job {job.id}: {e}")
            self.pending_retry.pop(job.id, None)
            self.billing_failures[job.id] = str(e)
            return False
        except LedgerError as e:
            # credits_deducted stays False so the deduction can be retried
            logger.error(f"Billing job {job.id} failed, will retry: {e}")
            self.pending_retry[job.id] = job
            return False

        job.mark_credits_deducted()
        self.pending_retry.pop(job.id, None)
        return True

    async def retry_pending(self) -> int:
        """
        Retry deductions that failed transiently.

        Returns:
            Number of jobs billed by this pass
        """
        billed = 0
        for job in list(self.pending_retry.values()):
            if await self.bill(job):
                billed += 1
        return billed
