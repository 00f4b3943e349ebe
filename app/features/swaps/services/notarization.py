"""
Notarization ledger client.

The ledger exposes a single operation: submit a transition record and get
back a confirmation id, or fail. Network failures, 5xx and 429 responses map
to NotarizationNetworkError; other rejections map to NotarizationRejectedError.
The engine retries both.
"""

import time
from datetime import datetime

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import settings
from app.features.swaps.domain import LedgerConfirmation, NotarizationRecord
from app.features.swaps.errors import ErrorCode
from app.features.swaps.services.retry import RetryPolicy, Sleep, call_with_retry
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class NotarizationError(Exception):
    """Base exception for ledger submissions."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotarizationNetworkError(NotarizationError):
    """Ledger unreachable or temporarily failing."""


class NotarizationRejectedError(NotarizationError):
    """Ledger refused the record."""


class LedgerReceipt(BaseModel):
    """Ledger response body."""

    model_config = ConfigDict(populate_by_name=True)

    confirmation_id: str = Field(alias="confirmationId", min_length=1)
    timestamp: datetime


class NotarizationClient:
    """HTTP client for the notarization ledger."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.NOTARIZATION_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.NOTARIZATION_API_KEY
        self.timeout = timeout or settings.NOTARIZATION_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def submit(self, record: NotarizationRecord) -> LedgerConfirmation:
        """
        Submit one transition record.

        Raises:
            NotarizationNetworkError: transport failure or transient status
            NotarizationRejectedError: ledger refused the record or replied garbage
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    "/records", json=record.to_payload(), headers=self._headers()
                )
        except httpx.RequestError as e:
            raise NotarizationNetworkError(f"Ledger request failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise NotarizationNetworkError(
                f"Ledger returned {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise NotarizationRejectedError(
                f"Ledger rejected record: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            receipt = LedgerReceipt.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise NotarizationRejectedError(f"Malformed ledger response: {e}") from e

        logger.debug(
            "Ledger record confirmed",
            proposal_id=record.proposal_id,
            transition=record.kind.value,
            confirmation_id=receipt.confirmation_id,
        )
        return LedgerConfirmation(
            confirmation_id=receipt.confirmation_id, timestamp=receipt.timestamp
        )

    async def health_check(self) -> dict:
        start_time = time.time()
        try:
            async with self._client() as client:
                response = await client.get("/health", headers=self._headers())
            healthy = response.status_code == 200
            return {
                "healthy": healthy,
                "service": "notarization_ledger",
                "status_code": response.status_code,
                "latency_ms": round((time.time() - start_time) * 1000, 1),
            }
        except httpx.RequestError as e:
            return {"healthy": False, "service": "notarization_ledger", "error": str(e)}


async def notarize_with_retry(
    client: NotarizationClient,
    record: NotarizationRecord,
    policy: RetryPolicy,
    *,
    sleep: Sleep | None = None,
) -> LedgerConfirmation:
    """
    Submit a record with bounded retry.

    Raises:
        ExternalDependencyError: NOTARIZATION_FAILED after exhausting attempts
    """
    kwargs = {"sleep": sleep} if sleep is not None else {}
    return await call_with_retry(
        lambda: client.submit(record),
        policy=policy,
        dependency="notarization_ledger",
        error_code=ErrorCode.NOTARIZATION_FAILED,
        operation_name=f"notarize_{record.kind.value}",
        retry_on=(NotarizationError,),
        **kwargs,
    )
