"""Tests for the billing account service clients."""

import asyncio
import json

import httpx
import pytest

from patient_hub.billing import (
    AccountProvisionRequest,
    AccountStatus,
    BillingService,
    DeadlineExceededError,
    HttpAccountServiceClient,
    InvalidArgumentError,
    LocalAccountServiceClient,
    UnavailableError,
    UnknownCallError,
)

REQUEST = AccountProvisionRequest(patient_id="P1", name="Ada", email="ada@example.com")


def _client(handler) -> HttpAccountServiceClient:
    return HttpAccountServiceClient("http://billing:9001", transport=httpx.MockTransport(handler))


class TestHttpAccountServiceClient:
    @pytest.mark.asyncio
    async def test_posts_request_and_parses_account(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"accountId": "12345", "status": "ACTIVE"})

        client = _client(handler)
        result = await client.provision_account(REQUEST, timeout=1.0)
        await client.close()

        assert result.account_id == "12345"
        assert result.status == AccountStatus.ACTIVE
        assert seen[0].url.path == "/api/billing/accounts"
        assert json.loads(seen[0].content) == {"patientId": "P1", "name": "Ada", "email": "ada@example.com"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "error_type"),
        [
            (400, InvalidArgumentError),
            (422, InvalidArgumentError),
            (500, UnknownCallError),
            (502, UnavailableError),
            (503, UnavailableError),
            (504, DeadlineExceededError),
        ],
    )
    async def test_error_statuses_map_to_call_errors(self, status_code, error_type):
        client = _client(lambda request: httpx.Response(status_code, text="nope"))

        with pytest.raises(error_type):
            await client.provision_account(REQUEST, timeout=1.0)
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_failure_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(UnavailableError) as exc_info:
            await client.provision_account(REQUEST, timeout=1.0)
        await client.close()

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_timeout_is_deadline_exceeded(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(handler)
        with pytest.raises(DeadlineExceededError) as exc_info:
            await client.provision_account(REQUEST, timeout=0.1)
        await client.close()

        assert exc_info.value.kind == "DEADLINE_EXCEEDED"

    @pytest.mark.asyncio
    async def test_undecodable_body_is_unknown(self):
        client = _client(lambda request: httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip"))

        with pytest.raises(UnknownCallError) as exc_info:
            await client.provision_account(REQUEST, timeout=1.0)
        await client.close()

        assert exc_info.value.kind == "UNKNOWN"

    @pytest.mark.asyncio
    async def test_unreadable_response_is_unknown(self):
        client = _client(lambda request: httpx.Response(200, json={"unexpected": True}))

        with pytest.raises(UnknownCallError) as exc_info:
            await client.provision_account(REQUEST, timeout=1.0)
        await client.close()

        assert not exc_info.value.retryable


class SlowBillingService(BillingService):
    async def create_billing_account(self, request):
        await asyncio.sleep(1)
        return await super().create_billing_account(request)


class TestLocalAccountServiceClient:
    @pytest.mark.asyncio
    async def test_calls_service_in_process(self):
        service = BillingService()
        result = await LocalAccountServiceClient(service).provision_account(REQUEST, timeout=1.0)

        assert service.get_account("P1") == result

    @pytest.mark.asyncio
    async def test_slow_service_exceeds_deadline(self):
        with pytest.raises(DeadlineExceededError):
            await LocalAccountServiceClient(SlowBillingService()).provision_account(REQUEST, timeout=0.01)

    @pytest.mark.asyncio
    async def test_rejected_request_is_invalid_argument(self):
        request = AccountProvisionRequest(patient_id="P1", name="Ada", email="no-address")
        with pytest.raises(InvalidArgumentError) as exc_info:
            await LocalAccountServiceClient(BillingService()).provision_account(request, timeout=1.0)

        assert not exc_info.value.retryable
