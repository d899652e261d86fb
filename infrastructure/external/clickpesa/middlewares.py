"""
Cross-cutting decorators for gateway client operations.

``logged`` records each outbound request/response (redacted) and
``preview_cached`` serves repeated previews from the preview cache.
"""
from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from application.dtos.gateway import GatewayResult
from core.logging_config import redact


F = TypeVar("F", bound=Callable[..., Awaitable[GatewayResult]])


def _payload_of(args: tuple, kwargs: dict) -> Any:
    if "payload" in kwargs:
        return kwargs["payload"]
    if "order_reference" in kwargs:
        return {"orderReference": kwargs["order_reference"]}
    if args:
        first = args[0]
        return first if isinstance(first, dict) else {"orderReference": first}
    return None


def logged(operation: str) -> Callable[[F], F]:
    """Log request and response of a client operation under the client's channel.

    Successful responses are logged at info, failures at warning. Honors the
    client's ``logging_enabled`` switch.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            if not self.logging_enabled:
                return await func(self, *args, **kwargs)

            self.logger.info(
                "gateway_request",
                operation=operation,
                role=self.role,
                environment=self.environment,
                payload=redact(_payload_of(args, kwargs)),
            )
            result: GatewayResult = await func(self, *args, **kwargs)
            log = self.logger.info if result.success else self.logger.warning
            log(
                "gateway_response",
                operation=operation,
                role=self.role,
                environment=self.environment,
                success=result.success,
                status_code=result.status_code,
                message=result.message,
                response=redact(result.body),
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


def preview_cached(operation: str, model: Optional[Type[BaseModel]] = None) -> Callable[[F], F]:
    """Serve a preview from the client's preview cache; store successful previews."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self, payload: dict, *args, **kwargs):
            cache = self.preview_cache
            if cache is None or not cache.enabled:
                return await func(self, payload, *args, **kwargs)

            cached = await cache.get(operation, payload)
            if cached is not None:
                self.logger.debug("preview_cache_hit", operation=operation)
                return self._success(cached, model, status_code=None)

            result: GatewayResult = await func(self, payload, *args, **kwargs)
            if result.success and result.body is not None:
                await cache.put(operation, payload, result.body)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = ["logged", "preview_cached"]
