"""
Status-update notifications sent to the persistence backend.
"""
import logging
from typing import Optional

import httpx

from .config import Settings, settings as default_settings
from .jobs import ProcessingJob
from .models import JobStatus, StatusUpdate

logger = logging.getLogger(__name__)


class StatusNotifier:
    """
    Fire-and-forget client for the backend's job status endpoint.

    Delivery failures are logged and never raised; the runner keeps going
    whether or not the backend heard about a transition.
    """

    def __init__(
        self,
        base_url: str = None,
        token: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.base_url = base_url or settings.backend_url
        self.token = token if token is not None else settings.backend_token
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

        self._headers = {}
        if self.token:
            self._headers["Authorization"] = f"Bearer {self.token}"

    def _get_client(self) -> httpx.AsyncClient:
        """Get an async HTTP client with configured defaults."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def build_payload(
        job: ProcessingJob,
        status: JobStatus,
        current_step: str,
        transcription: Optional[str] = None,
        credits_used: Optional[int] = None,
        processing_days: Optional[int] = None,
    ) -> dict:
        update = StatusUpdate(
            job_id=job.id,
            file_name=job.file_name,
            file_size=job.file_size,
            status=status,
            current_step=current_step,
            transcription=transcription or None,
            credits_used=credits_used,
            processing_days=processing_days,
        )
        return update.model_dump(mode="json", exclude_none=True)

    async def notify(
        self,
        job: ProcessingJob,
        status: JobStatus,
        current_step: str,
        transcription: Optional[str] = None,
        credits_used: Optional[int] = None,
        processing_days: Optional[int] = None,
    ) -> bool:
        """
        Send one status update.

        Returns:
            True if the backend accepted the update, False otherwise
        """
        payload = self.build_payload(job, status, current_step, transcription, credits_used, processing_days)
        try:
            async with self._get_client() as client:
                response = await client.post("/audio/update", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to update job {job.id} in backend: {e}")
            return False

        logger.debug(f"Updated job {job.id} in backend - status: {status.value}")
        return True


class NullNotifier:
    """Notifier that records nothing and sends nothing."""

    async def notify(self, job: ProcessingJob, status: JobStatus, current_step: str, **kwargs) -> bool:
        return True
