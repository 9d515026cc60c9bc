"""
Credit ledger client for deducting and adding user credits.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from .config import Settings, settings as default_settings
from .errors import (
    DuplicateOperationError,
    InsufficientCreditsError,
    InvalidInputError,
    LedgerAuthError,
    LedgerError,
)
from .jobs import utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


@dataclass
class CreditTransaction:
    """Locally recorded ledger operation."""
    id: str
    type: str  # "deduction" or "addition"
    amount: int
    description: str
    balance_after: int
    file_name: Optional[str] = None
    duration: Optional[int] = None
    processing_days: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise InvalidInputError(f"Amount must be an integer >= 1, got {amount!r}")
    return amount


class CreditLedgerClient:
    """
    Client for the ledger backend's credit endpoints.

    The backend does the real work atomically under a row lock. This
    client only makes sure the same logical deduction is never sent twice
    at once: a second deduction for a key that is still in flight is
    rejected before any network call.
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

        self._in_flight: set[str] = set()
        self._history: list[CreditTransaction] = []

    def _get_client(self) -> httpx.AsyncClient:
        """Get an async HTTP client with configured defaults."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    # =========================================================================
    # Balance
    # =========================================================================

    async def get_balance(self) -> int:
        """Get the current credit balance."""
        data = await self._request("GET", "/credits")
        return data["credits"]

    # =========================================================================
    # Deduction & addition
    # =========================================================================

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def deduct(
        self,
        amount: int,
        *,
        key: str,
        file_name: Optional[str] = None,
        duration: Optional[float] = None,
        processing_days: Optional[int] = None,
        description: Optional[str] = None,
    ) -> int:
        """
        Deduct credits for one logical operation.

        Args:
            amount: Exact credits to deduct (already priced)
            key: Idempotency key of the operation, usually the job id
            file_name: Name of the processed file
            duration: Media duration in seconds
            processing_days: Processing tier, for the record
            description: Ledger description; built from the file if omitted

        Returns:
            The new balance confirmed by the backend

        Raises:
            DuplicateOperationError: A deduction for ``key`` is already in flight
            InsufficientCreditsError: The balance is too low (terminal)
            LedgerError: Network or server failure (retryable)
        """
        amount = _validate_amount(amount)
        if key in self._in_flight:
            logger.warning(f"Duplicate deduction attempt for {key} prevented")
            raise DuplicateOperationError(f"A deduction for {key} is already in progress")

        rounded_duration = round(duration) if duration is not None else None
        if description is None and file_name:
            minutes = math.ceil(duration / 60) if duration is not None else 0
            description = f"Transcription processing for {file_name} ({minutes} minutes"
            if processing_days is not None:
                description += f", {processing_days} days processing"
            description += ")"

        payload = {
            "amount": amount,
            "fileName": file_name,
            "duration": rounded_duration,
            "processingDays": processing_days,
            "description": description,
            "reference": key,
        }
        payload = {k: v for k, v in payload.items() if v is not None}

        self._in_flight.add(key)
        try:
            logger.info(f"Deducting {amount} credits for {key}")
            data = await self._request("POST", "/credits/deduct", json=payload)
        finally:
            self._in_flight.discard(key)

        new_balance = data["newCredits"]
        if data.get("replayed"):
            logger.info(f"Deduction for {key} was already applied. Balance: {new_balance}")
            return new_balance

        self._record(CreditTransaction(
            id=f"tx_{uuid.uuid4().hex[:12]}",
            type="deduction",
            amount=amount,
            description=description or "Credit deduction",
            balance_after=new_balance,
            file_name=file_name,
            duration=rounded_duration,
            processing_days=processing_days,
        ))
        logger.info(f"Credits deducted: {amount}. New balance: {new_balance}")
        return new_balance

    async def add(self, amount: int, *, description: Optional[str] = None) -> int:
        """
        Add credits to the account.

        Returns:
            The new balance confirmed by the backend
        """
        amount = _validate_amount(amount)
        description = description or "Credits added to account"

        data = await self._request("POST", "/credits/add", json={"amount": amount, "description": description})

        new_balance = data["newCredits"]
        self._record(CreditTransaction(
            id=f"tx_{uuid.uuid4().hex[:12]}",
            type="addition",
            amount=amount,
            description=description,
            balance_after=new_balance,
        ))
        logger.info(f"Credits added: {amount}. New balance: {new_balance}")
        return new_balance

    # =========================================================================
    # History
    # =========================================================================

    def history(self) -> list[CreditTransaction]:
        """Operations made through this client, newest first."""
        return list(self._history)

    def _record(self, transaction: CreditTransaction) -> None:
        self._history.insert(0, transaction)
        del self._history[HISTORY_LIMIT:]

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            async with self._get_client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            status_code = e.response.status_code
            if status_code == 400:
                logger.warning(f"Ledger rejected {method} {url}: {message}")
                raise InsufficientCreditsError(message, status_code) from e
            if status_code == 401:
                logger.error(f"Ledger authentication failed: {message}")
                raise LedgerAuthError(message, status_code) from e
            logger.error(f"Ledger error on {method} {url} ({status_code}): {message}")
            raise LedgerError(message, status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Ledger request {method} {url} failed: {e}")
            raise LedgerError(str(e) or "Ledger request failed") from e


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("message")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return f"HTTP {response.status_code}"
