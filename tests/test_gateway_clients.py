from decimal import Decimal

import httpx
import pytest

from application.dtos.gateway import PaymentResponse, PreviewResponse
from infrastructure.external.cache.stores import MemoryCacheStore
from infrastructure.external.clickpesa.base import SANDBOX_BASE_URL, LIVE_BASE_URL, bearer
from infrastructure.external.clickpesa.collections_client import AUTHENTICATION_FAILED, CollectionsClient
from infrastructure.external.clickpesa.exceptions import GatewayConfigurationError
from infrastructure.external.clickpesa.payouts_client import AUTHENTICATION_REQUIRED, PayoutsClient
from infrastructure.external.clickpesa.token_cache import PreviewCache, TokenCache


TOKEN_PATH = "/third-parties/generate-token"


class FakeGateway:
    """Route table for httpx.MockTransport that records every request."""

    def __init__(self):
        self.requests = []
        self.tokens = iter(["Bearer tok-1", "Bearer tok-2", "Bearer tok-3"])
        self.routes = {}

    def on(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            return httpx.Response(200, json={"success": True, "token": next(self.tokens)})
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "not found"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def make_collections(gateway, *, store=None, **kwargs):
    store = store or MemoryCacheStore()
    params = {
        "api_key": "key",
        "client_id": "client",
        "token_cache": TokenCache(store),
        "preview_cache": PreviewCache(store),
        "environment": "sandbox",
        "http_client": gateway.client(),
    }
    params.update(kwargs)
    return CollectionsClient(**params)


def test_bearer_prefix_added_once():
    assert bearer("abc") == "Bearer abc"
    assert bearer("Bearer abc") == "Bearer abc"


def test_environment_selects_base_url():
    gateway = FakeGateway()
    assert make_collections(gateway).base_url == SANDBOX_BASE_URL
    assert make_collections(gateway, environment="live").base_url == LIVE_BASE_URL
    with pytest.raises(GatewayConfigurationError):
        make_collections(gateway, environment="staging")


@pytest.mark.asyncio
async def test_authenticate_sends_credentials_and_caches_token():
    gateway = FakeGateway()
    gateway.on("GET", "/third-parties/payments/ORD-1", httpx.Response(200, json=[{"status": "SUCCESS"}]))
    client = make_collections(gateway)

    await client.query_payment_status("ORD-1")
    await client.query_payment_status("ORD-1")

    token_calls = gateway.calls(TOKEN_PATH)
    assert len(token_calls) == 1
    assert token_calls[0].headers["api-key"] == "key"
    assert token_calls[0].headers["client-id"] == "client"
    for request in gateway.calls("/third-parties/payments/ORD-1"):
        assert request.headers["Authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_authentication_failure_is_a_result():
    def handler(request):
        return httpx.Response(200, json={"success": False})

    client = make_collections(FakeGateway(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    result = await client.authenticate()
    assert not result.success
    assert result.message == AUTHENTICATION_FAILED

    payment = await client.initiate_ussd_push({"orderReference": "ORD-1"})
    assert not payment.success
    assert payment.message == AUTHENTICATION_FAILED


@pytest.mark.asyncio
async def test_missing_credentials_do_not_call_gateway():
    gateway = FakeGateway()
    client = make_collections(gateway, api_key=None)
    result = await client.authenticate()
    assert not result.success
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_unauthorized_retries_once_with_fresh_token():
    gateway = FakeGateway()
    gateway.on(
        "POST",
        "/third-parties/payments/initiate-ussd-push-request",
        httpx.Response(401, json={"message": "Unauthorized"}),
        httpx.Response(200, json={"id": "TX1", "status": "PROCESSING", "orderReference": "ORD-1"}),
    )
    client = make_collections(gateway)

    result = await client.initiate_ussd_push({"orderReference": "ORD-1", "amount": "1000"})

    assert result.success
    assert isinstance(result.data, PaymentResponse)
    assert result.data.is_processing()
    sent = gateway.calls("/third-parties/payments/initiate-ussd-push-request")
    assert [r.headers["Authorization"] for r in sent] == ["Bearer tok-1", "Bearer tok-2"]
    assert len(gateway.calls(TOKEN_PATH)) == 2


@pytest.mark.asyncio
async def test_second_unauthorized_is_returned_as_failure():
    gateway = FakeGateway()
    gateway.on("GET", "/third-parties/payments/ORD-1", httpx.Response(401, json={"message": "Token expired"}))
    client = make_collections(gateway)

    result = await client.query_payment_status("ORD-1")

    assert not result.success
    assert result.status_code == 401
    assert result.message == "Token expired"
    assert len(gateway.calls("/third-parties/payments/ORD-1")) == 2


@pytest.mark.asyncio
async def test_non_success_status_is_failure_with_body():
    gateway = FakeGateway()
    gateway.on(
        "POST",
        "/third-parties/payments/preview-ussd-push-request",
        httpx.Response(400, json={"message": "Invalid phone number"}),
    )
    client = make_collections(gateway)

    result = await client.preview_ussd_push({"orderReference": "ORD-1"})

    assert not result.success
    assert result.status_code == 400
    assert result.message == "Invalid phone number"
    assert result.body == {"message": "Invalid phone number"}
    assert result.to_dict() == {
        "success": False,
        "message": "Invalid phone number",
        "response": {"message": "Invalid phone number"},
    }


@pytest.mark.asyncio
async def test_transport_error_is_failure():
    gateway = FakeGateway()
    gateway.on(
        "GET",
        "/third-parties/payments/ORD-1",
        httpx.ConnectError("connection refused"),
    )
    client = make_collections(gateway)

    result = await client.query_payment_status("ORD-1")

    assert not result.success
    assert "connection refused" in result.message


@pytest.mark.asyncio
async def test_preview_is_served_from_cache():
    gateway = FakeGateway()
    body = {"activeMethods": [{"name": "M-PESA", "fee": 100}], "amount": 1000, "fee": 100}
    gateway.on("POST", "/third-parties/payments/preview-ussd-push-request", httpx.Response(200, json=body))
    client = make_collections(gateway)
    payload = {"orderReference": "ORD-1", "amount": "1000", "phoneNumber": "255700000000"}

    first = await client.preview_ussd_push(payload)
    second = await client.preview_ussd_push(payload)

    assert first.body == second.body == body
    assert isinstance(second.data, PreviewResponse)
    assert second.data.net_amount() == Decimal("900")
    assert second.data.preferred_method()["name"] == "M-PESA"
    assert len(gateway.calls("/third-parties/payments/preview-ussd-push-request")) == 1


@pytest.mark.asyncio
async def test_payment_status_returns_typed_list():
    gateway = FakeGateway()
    gateway.on(
        "GET",
        "/third-parties/payments/ORD-1",
        httpx.Response(200, json=[{"id": "TX1", "status": "SETTLED", "collectedAmount": "1000.00"}]),
    )
    client = make_collections(gateway)

    result = await client.query_payment_status("ORD-1")

    assert result.success
    assert len(result.data) == 1
    assert result.data[0].is_successful()
    assert result.data[0].collected_amount == Decimal("1000.00")


@pytest.mark.asyncio
async def test_payouts_without_token_fail_locally():
    gateway = FakeGateway()
    client = PayoutsClient(environment="sandbox", http_client=gateway.client())

    result = await client.create_mobile_money_payout({"orderReference": "PO-1"})

    assert not result.success
    assert result.message == AUTHENTICATION_REQUIRED
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_payouts_use_explicit_token():
    gateway = FakeGateway()
    gateway.on("GET", "/third-parties/payouts/PO-1", httpx.Response(200, json=[{"status": "AUTHORIZED"}]))
    client = PayoutsClient(environment="sandbox", http_client=gateway.client())
    client.set_token("raw-token")

    result = await client.query_payout_status("PO-1")

    assert result.success
    assert result.data[0].is_authorized()
    assert gateway.requests[0].headers["Authorization"] == "Bearer raw-token"


@pytest.mark.asyncio
async def test_payouts_share_collections_token_and_refresh_it():
    gateway = FakeGateway()
    gateway.on(
        "POST",
        "/third-parties/payouts/create-bank-payout",
        httpx.Response(401, json={"message": "Unauthorized"}),
        httpx.Response(200, json={"id": "P1", "status": "AUTHORIZED", "amount": 5000, "fee": 250}),
    )
    collections = make_collections(gateway)
    payouts = PayoutsClient(
        token_source=collections.get_token,
        token_invalidator=collections.invalidate_token,
        environment="sandbox",
        http_client=gateway.client(),
    )

    result = await payouts.create_bank_payout({"orderReference": "PO-1", "amount": 5000})

    assert result.success
    assert result.data.payout_amount() == Decimal("4750")
    sent = gateway.calls("/third-parties/payouts/create-bank-payout")
    assert [r.headers["Authorization"] for r in sent] == ["Bearer tok-1", "Bearer tok-2"]


@pytest.mark.asyncio
async def test_logging_switch_does_not_change_result():
    gateway = FakeGateway()
    gateway.on("GET", "/third-parties/payments/ORD-1", httpx.Response(200, json=[]))
    client = make_collections(gateway, logging_enabled=False)

    result = await client.query_payment_status("ORD-1")

    assert result.success
    assert result.data == []
