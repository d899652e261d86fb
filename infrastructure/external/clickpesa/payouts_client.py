"""
ClickPesa payouts client (mobile money and bank transfers).

Does not authenticate on its own: the token is set explicitly or pulled
from a token source (normally the collections client).
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from application.dtos.gateway import GatewayResult, PayoutResponse, PreviewResponse
from infrastructure.external.clickpesa.base import BaseGatewayClient
from infrastructure.external.clickpesa.middlewares import logged, preview_cached


PREVIEW_MOBILE_MONEY_ENDPOINT = "/third-parties/payouts/preview-mobile-money-payout"
CREATE_MOBILE_MONEY_ENDPOINT = "/third-parties/payouts/create-mobile-money-payout"
PREVIEW_BANK_ENDPOINT = "/third-parties/payouts/preview-bank-payout"
CREATE_BANK_ENDPOINT = "/third-parties/payouts/create-bank-payout"
PAYOUT_STATUS_ENDPOINT = "/third-parties/payouts/{order_reference}"

AUTHENTICATION_REQUIRED = "Authentication required. Please set token first."


TokenSource = Callable[[], Awaitable[Optional[str]]]
TokenInvalidator = Callable[[], Awaitable[None]]


class PayoutsClient(BaseGatewayClient):
    role = "payouts"
    missing_token_message = AUTHENTICATION_REQUIRED

    def __init__(
        self,
        *,
        token_source: Optional[TokenSource] = None,
        token_invalidator: Optional[TokenInvalidator] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._token: Optional[str] = None
        self._token_source = token_source
        self._token_invalidator = token_invalidator

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    async def _authorization(self) -> Optional[str]:
        if self._token is not None:
            return self._token
        if self._token_source is not None:
            return await self._token_source()
        return None

    async def _on_token_rejected(self) -> None:
        # without a source an explicitly set token cannot be refreshed; the retry reuses it
        if self._token_source is None:
            return
        self._token = None
        if self._token_invalidator is not None:
            await self._token_invalidator()

    @logged("preview_mobile_money_payout")
    @preview_cached("preview_mobile_money_payout", PreviewResponse)
    async def preview_mobile_money_payout(self, payload: dict) -> GatewayResult:
        return await self._request("POST", PREVIEW_MOBILE_MONEY_ENDPOINT, payload=payload, model=PreviewResponse)

    @logged("create_mobile_money_payout")
    async def create_mobile_money_payout(self, payload: dict) -> GatewayResult:
        return await self._request("POST", CREATE_MOBILE_MONEY_ENDPOINT, payload=payload, model=PayoutResponse)

    @logged("preview_bank_payout")
    @preview_cached("preview_bank_payout", PreviewResponse)
    async def preview_bank_payout(self, payload: dict) -> GatewayResult:
        return await self._request("POST", PREVIEW_BANK_ENDPOINT, payload=payload, model=PreviewResponse)

    @logged("create_bank_payout")
    async def create_bank_payout(self, payload: dict) -> GatewayResult:
        return await self._request("POST", CREATE_BANK_ENDPOINT, payload=payload, model=PayoutResponse)

    @logged("query_payout_status")
    async def query_payout_status(self, order_reference: str) -> GatewayResult:
        return await self._request(
            "GET",
            PAYOUT_STATUS_ENDPOINT.format(order_reference=order_reference),
            model=PayoutResponse,
            many=True,
        )
