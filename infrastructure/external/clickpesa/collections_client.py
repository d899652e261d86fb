"""
ClickPesa collections client (USSD push and card payments).

Authenticates itself with the API key/client id and keeps the bearer token
in the shared token cache.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.dtos.gateway import (
    CardPaymentLink,
    GatewayResult,
    PaymentResponse,
    PreviewResponse,
    TokenResponse,
)
from application.ports.token_cache import TokenCachePort
from infrastructure.external.clickpesa.base import BaseGatewayClient
from infrastructure.external.clickpesa.middlewares import logged, preview_cached


TOKEN_ENDPOINT = "/third-parties/generate-token"
PREVIEW_USSD_PUSH_ENDPOINT = "/third-parties/payments/preview-ussd-push-request"
INITIATE_USSD_PUSH_ENDPOINT = "/third-parties/payments/initiate-ussd-push-request"
PREVIEW_CARD_ENDPOINT = "/third-parties/payments/preview-card-payment"
INITIATE_CARD_ENDPOINT = "/third-parties/payments/initiate-card-payment"
PAYMENT_STATUS_ENDPOINT = "/third-parties/payments/{order_reference}"

AUTHENTICATION_FAILED = "Failed to authenticate with ClickPesa"


class CollectionsClient(BaseGatewayClient):
    role = "collections"
    missing_token_message = AUTHENTICATION_FAILED

    def __init__(
        self,
        *,
        api_key: Optional[str],
        client_id: Optional[str],
        token_cache: TokenCachePort,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.client_id = client_id
        self.token_cache = token_cache

    @logged("generate_token")
    async def authenticate(self) -> GatewayResult:
        """Exchange the API credentials for a bearer token (no caching)."""
        if not self.api_key or not self.client_id:
            return GatewayResult.failure("ClickPesa API key and client id are required")

        headers = {
            "api-key": self.api_key,
            "client-id": self.client_id,
            "Accept": "application/json",
        }
        try:
            async with self.client() as http:
                response = await http.post(self.url(TOKEN_ENDPOINT), headers=headers)
        except httpx.HTTPError as exc:
            return GatewayResult.failure(str(exc) or exc.__class__.__name__)

        body = self._parse_body(response)
        if not response.is_success:
            return GatewayResult.failure(
                self._error_message(body, response.status_code),
                body=body,
                status_code=response.status_code,
            )
        result = self._success(body, TokenResponse, status_code=response.status_code)
        if result.data is None or not result.data.success or not result.data.token:
            return GatewayResult.failure(AUTHENTICATION_FAILED, body=body, status_code=response.status_code)
        return result

    async def generate_token(self) -> Optional[str]:
        result = await self.authenticate()
        return result.data.token if result.success else None

    async def get_token(self) -> Optional[str]:
        """Cached token for this environment, fetched at most once concurrently."""
        return await self.token_cache.get_or_fetch(self.environment, self.generate_token)

    async def invalidate_token(self) -> None:
        await self.token_cache.invalidate(self.environment)

    async def _authorization(self) -> Optional[str]:
        return await self.get_token()

    async def _on_token_rejected(self) -> None:
        await self.invalidate_token()

    @logged("preview_ussd_push")
    @preview_cached("preview_ussd_push", PreviewResponse)
    async def preview_ussd_push(self, payload: dict) -> GatewayResult:
        return await self._request("POST", PREVIEW_USSD_PUSH_ENDPOINT, payload=payload, model=PreviewResponse)

    @logged("initiate_ussd_push")
    async def initiate_ussd_push(self, payload: dict) -> GatewayResult:
        return await self._request("POST", INITIATE_USSD_PUSH_ENDPOINT, payload=payload, model=PaymentResponse)

    @logged("query_payment_status")
    async def query_payment_status(self, order_reference: str) -> GatewayResult:
        """Gateway returns a list of payments for the order reference."""
        return await self._request(
            "GET",
            PAYMENT_STATUS_ENDPOINT.format(order_reference=order_reference),
            model=PaymentResponse,
            many=True,
        )

    @logged("preview_card_payment")
    @preview_cached("preview_card_payment", PreviewResponse)
    async def preview_card_payment(self, payload: dict) -> GatewayResult:
        return await self._request("POST", PREVIEW_CARD_ENDPOINT, payload=payload, model=PreviewResponse)

    @logged("initiate_card_payment")
    async def initiate_card_payment(self, payload: dict) -> GatewayResult:
        return await self._request("POST", INITIATE_CARD_ENDPOINT, payload=payload, model=CardPaymentLink)
