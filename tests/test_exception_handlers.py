import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from core.exceptions import business_code_to_http_status, register_exception_handlers
from domain.common.exceptions import TransactionNotFoundException
from shared.codes import BusinessCode


def build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/items")
    async def items(limit: int):
        return {"limit": limit}

    @app.get("/transactions/{order_reference}")
    async def transaction(order_reference: str):
        raise TransactionNotFoundException(order_reference)

    return app


@pytest_asyncio.fixture
async def client():
    transport = httpx.ASGITransport(app=build_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


def test_validation_code_maps_to_422():
    assert business_code_to_http_status(BusinessCode.PARAM_VALIDATION_ERROR) == 422
    assert business_code_to_http_status(123456) == 400


@pytest.mark.asyncio
async def test_validation_error_uses_envelope(client):
    response = await client.get("/items", params={"limit": "many"})

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == BusinessCode.PARAM_VALIDATION_ERROR
    assert body["error"]["type"] == "ValidationError"
    assert body["error"]["field"] == "limit"


@pytest.mark.asyncio
async def test_business_exception_maps_to_status(client):
    response = await client.get("/transactions/ORD-404")

    assert response.status_code == 404
    assert response.json()["error"]["details"] == {"order_reference": "ORD-404"}


@pytest.mark.asyncio
async def test_unknown_route_uses_envelope(client):
    response = await client.get("/nowhere")

    assert response.status_code == 404
    assert response.json()["code"] == BusinessCode.NOT_FOUND
