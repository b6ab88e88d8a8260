"""Clients for the billing account service.

The write path talks to the billing service through ``AccountServiceClient``.
Two transports are provided:

- ``HttpAccountServiceClient`` calls a billing service over HTTP with httpx
- ``LocalAccountServiceClient`` calls a ``BillingService`` living in the same process

Every failure surfaces as a ``CallError`` subclass. ``retryable`` tells the
caller whether another attempt can help; the clients never retry on their own.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx
from loguru import logger
from pydantic import ValidationError

from patient_hub.billing.models import AccountProvisionRequest, AccountProvisionResult
from patient_hub.billing.service import BillingRequestError, BillingService
from patient_hub.constants import BILLING_ACCOUNTS_PATH


class CallError(Exception):
    """Base class of account service call failures."""

    kind: ClassVar[str] = "UNKNOWN"
    retryable: ClassVar[bool] = False


class UnavailableError(CallError):
    """The service could not be reached (connection or transport failure)."""

    kind = "UNAVAILABLE"
    retryable = True


class DeadlineExceededError(CallError):
    """The call did not complete within its timeout."""

    kind = "DEADLINE_EXCEEDED"
    retryable = True


class InvalidArgumentError(CallError):
    """The service rejected the request as malformed; retrying cannot help."""

    kind = "INVALID_ARGUMENT"


class UnknownCallError(CallError):
    """Any other failure, including unreadable responses."""

    kind = "UNKNOWN"


class AccountServiceClient(ABC):
    """Capability to provision billing accounts on a remote service."""

    @abstractmethod
    async def provision_account(self, request: AccountProvisionRequest, timeout: float) -> AccountProvisionResult:
        """Open a billing account for the patient in ``request``.

        Args:
            request: Patient details for the account
            timeout: Seconds the call may take before it fails with ``DeadlineExceededError``

        Raises:
            CallError: On any failure
        """

    async def close(self) -> None:
        """Release transport resources."""


class HttpAccountServiceClient(AccountServiceClient):
    """Account service client speaking JSON over HTTP.

    One ``httpx.AsyncClient`` (and its connection pool) is shared by all
    concurrent calls made through this instance.

    Example:
        client = HttpAccountServiceClient("http://localhost:9001")
        result = await client.provision_account(request, timeout=2.0)
        await client.close()
    """

    def __init__(self, base_url: str, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "patient-hub/billing-client"},
        )
        logger.info(f"Billing service client targeting {self.base_url}")

    async def provision_account(self, request: AccountProvisionRequest, timeout: float) -> AccountProvisionResult:
        try:
            response = await self._client.post(
                BILLING_ACCOUNTS_PATH,
                json=request.model_dump(by_alias=True),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise DeadlineExceededError(f"Billing service did not answer within {timeout}s") from e
        except httpx.TransportError as e:
            raise UnavailableError(f"Billing service unreachable at {self.base_url}: {e}") from e
        except httpx.HTTPError as e:
            raise UnknownCallError(f"Billing service call failed: {e.__class__.__name__}: {e}") from e

        if response.status_code in (400, 422):
            raise InvalidArgumentError(f"Billing service rejected the request: {response.text}")
        if response.status_code == 504:
            raise DeadlineExceededError("Billing service gateway timed out")
        if response.status_code in (502, 503):
            raise UnavailableError(f"Billing service unavailable (HTTP {response.status_code})")
        if response.is_error:
            raise UnknownCallError(f"Billing service failed with HTTP {response.status_code}: {response.text}")

        try:
            result = AccountProvisionResult.model_validate_json(response.content)
        except ValidationError as e:
            raise UnknownCallError(f"Unreadable billing service response: {e.error_count()} error(s)") from e

        logger.info(f"Received billing account {result.account_id} ({result.status}) for patient {request.patient_id}")
        return result

    async def close(self) -> None:
        await self._client.aclose()


class LocalAccountServiceClient(AccountServiceClient):
    """Account service client calling an in-process ``BillingService``."""

    def __init__(self, service: BillingService):
        self.service = service

    async def provision_account(self, request: AccountProvisionRequest, timeout: float) -> AccountProvisionResult:
        try:
            result = await asyncio.wait_for(self.service.create_billing_account(request), timeout)
        except TimeoutError as e:
            raise DeadlineExceededError(f"Billing service did not answer within {timeout}s") from e
        except BillingRequestError as e:
            raise InvalidArgumentError(str(e)) from e

        logger.info(f"Received billing account {result.account_id} ({result.status}) for patient {request.patient_id}")
        return result
