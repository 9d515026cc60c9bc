"""
Exception taxonomy for the processing core.
"""


class AudioscribeError(Exception):
    """Base class for all processing and billing errors."""


class InvalidInputError(AudioscribeError, ValueError):
    """Malformed input rejected before any state mutation."""


class InvalidTransitionError(AudioscribeError):
    """A job or step was asked to move backwards or sideways."""


class JobNotFoundError(AudioscribeError, KeyError):
    """No job is registered under the requested id."""

    def __str__(self):
        return str(self.args[0]) if self.args else "Job not found"


class JobBusyError(AudioscribeError):
    """The job is currently being processed and cannot be touched."""


class StepFailedError(AudioscribeError):
    """A pipeline step raised while processing a job."""

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step


class QualityCheckError(StepFailedError):
    """The finished transcription did not pass the quality gate."""


class DuplicateOperationError(AudioscribeError):
    """A billing operation for the same key is already in flight or done."""


class LedgerError(AudioscribeError):
    """Transient ledger failure (network or server). Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InsufficientCreditsError(LedgerError):
    """The balance does not cover the requested deduction. Not retryable."""


class LedgerAuthError(LedgerError):
    """The ledger backend rejected our credentials."""
