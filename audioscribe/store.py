"""
In-memory job registry and FIFO queue.

A ``JobStore`` is owned explicitly and passed to the tracker and runner, so
tests and separate services each get their own isolated instance.
"""
import logging
from collections import deque
from typing import Dict, Optional

from .errors import JobNotFoundError
from .jobs import ProcessingJob
from .models import JobStatus

logger = logging.getLogger(__name__)


class JobStore:
    """Jobs keyed by id plus the queue of job ids waiting to run."""

    def __init__(self):
        self._jobs: Dict[str, ProcessingJob] = {}
        self._queue: deque[str] = deque()

    def add(self, job: ProcessingJob) -> None:
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} already exists")
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[ProcessingJob]:
        return self._jobs.get(job_id)

    def get_by_file_id(self, file_id: str) -> Optional[ProcessingJob]:
        """Return the first job registered for ``file_id``."""
        for job in self._jobs.values():
            if job.file_id == file_id:
                return job
        return None

    def list(self) -> list[ProcessingJob]:
        """All jobs in insertion order."""
        return list(self._jobs.values())

    def remove(self, job_id: str) -> ProcessingJob:
        try:
            job = self._jobs.pop(job_id)
        except KeyError:
            raise JobNotFoundError(f"Job {job_id} not found")
        try:
            self._queue.remove(job_id)
        except ValueError:
            pass  # Already dequeued
        return job

    def enqueue(self, job_id: str) -> None:
        self._queue.append(job_id)

    def dequeue(self) -> Optional[str]:
        if not self._queue:
            return None
        return self._queue.popleft()

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def count(self, status: JobStatus) -> int:
        return sum(1 for job in self._jobs.values() if job.status == status)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs
