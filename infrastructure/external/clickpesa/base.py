"""
Base ClickPesa client implementing shared concerns: http, auth header, 401 retry, parsing.

Role clients (collections, payouts) subclass and supply the token.
"""
from __future__ import annotations

from typing import Any, Optional, Type
from contextlib import asynccontextmanager

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, stop_after_attempt, retry_if_exception_type

from application.dtos.gateway import GatewayResult
from core.logging_config import get_logger
from infrastructure.external.clickpesa.exceptions import GatewayConfigurationError
from infrastructure.external.clickpesa.token_cache import PreviewCache


LIVE_BASE_URL = "https://api.clickpesa.com"
SANDBOX_BASE_URL = "https://sandbox.clickpesa.com"

BASE_URLS = {
    "live": LIVE_BASE_URL,
    "sandbox": SANDBOX_BASE_URL,
}

DEFAULT_TIMEOUTS = {"connect": 5.0, "read": 30.0, "write": 30.0, "total": 30.0}


def base_url_for(environment: str) -> str:
    try:
        return BASE_URLS[environment]
    except KeyError:
        raise GatewayConfigurationError(
            f"Unknown ClickPesa environment: {environment}",
            details={"environment": environment, "allowed": sorted(BASE_URLS)},
        ) from None


def bearer(token: str) -> str:
    """The gateway issues tokens already prefixed with ``Bearer``; add it only when missing."""
    if token.lower().startswith("bearer "):
        return token
    return f"Bearer {token}"


class TokenRejected(Exception):
    """Raised internally on HTTP 401 to trigger the single re-authentication retry."""

    def __init__(self, result: GatewayResult) -> None:
        super().__init__(result.message)
        self.result = result


class BaseGatewayClient:
    role: str = "base"
    missing_token_message: str = "Authentication required"

    def __init__(
        self,
        *,
        environment: str = "sandbox",
        timeouts: Optional[dict[str, float]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        preview_cache: Optional[PreviewCache] = None,
        logging_enabled: bool = True,
        log_channel: str = "clickpesa",
    ) -> None:
        self.environment = environment
        self.base_url = base_url_for(environment)
        self._timeouts_cfg = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None
        self.preview_cache = preview_cache
        self.logging_enabled = logging_enabled
        self.logger = get_logger(log_channel)

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
            self._owns_client = True
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    def url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _authorization(self) -> Optional[str]:
        raise NotImplementedError

    async def _on_token_rejected(self) -> None:
        """Drop the rejected token so the next attempt authenticates again."""
        return None

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _error_message(body: Any, status_code: int) -> str:
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
            if message:
                return str(message)
        return f"HTTP {status_code}"

    def _success(
        self,
        body: Any,
        model: Optional[Type[BaseModel]],
        *,
        status_code: Optional[int],
        many: bool = False,
    ) -> GatewayResult:
        data: Any = None
        if model is not None and body is not None:
            try:
                if many:
                    items = body if isinstance(body, list) else [body]
                    data = [model.model_validate(item) for item in items]
                else:
                    data = model.model_validate(body)
            except ValidationError as exc:
                self.logger.warning(
                    "gateway_response_unparsed",
                    role=self.role,
                    model=model.__name__,
                    error=str(exc),
                )
        return GatewayResult(success=True, body=body, data=data, status_code=status_code)

    async def _send(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict],
        model: Optional[Type[BaseModel]],
        many: bool,
    ) -> GatewayResult:
        token = await self._authorization()
        if not token:
            return GatewayResult.failure(self.missing_token_message)

        headers = {
            "Authorization": bearer(token),
            "Accept": "application/json",
        }
        try:
            async with self.client() as http:
                response = await http.request(
                    method,
                    self.url(endpoint),
                    json=payload,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            self.logger.error(
                "gateway_transport_error",
                role=self.role,
                endpoint=endpoint,
                error=str(exc) or exc.__class__.__name__,
            )
            return GatewayResult.failure(str(exc) or exc.__class__.__name__)

        body = self._parse_body(response)
        if response.status_code == 401:
            raise TokenRejected(
                GatewayResult.failure(
                    self._error_message(body, 401), body=body, status_code=401
                )
            )
        if not response.is_success:
            return GatewayResult.failure(
                self._error_message(body, response.status_code),
                body=body,
                status_code=response.status_code,
            )
        return self._success(body, model, status_code=response.status_code, many=many)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Optional[dict] = None,
        model: Optional[Type[BaseModel]] = None,
        many: bool = False,
    ) -> GatewayResult:
        """Authenticated call; a 401 is retried exactly once with a fresh token."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(TokenRejected),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        self.logger.info("gateway_token_rejected", role=self.role, endpoint=endpoint)
                        await self._on_token_rejected()
                    return await self._send(method, endpoint, payload, model, many)
        except TokenRejected as exc:
            return exc.result
