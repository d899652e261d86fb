"""
访问日志中间件

回调请求体里带着客户、账号等信息，写日志前一律经过 ``redact``；
默认不记录请求体，只有 ``X-Log-Body`` 显式要求或调试模式下开启默认开关时才记录。
"""
import json
import time
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger, redact


logger = get_logger(__name__)

_TRUTHY = {"true", "1", "yes"}
_FALSY = {"false", "0", "no"}
_BODY_METHODS = {"POST", "PUT", "PATCH"}


def _form_to_dict(text: str) -> dict:
    return {key: values if len(values) > 1 else values[0] for key, values in parse_qs(text).items()}


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求开始/结束各记一条；异常记录后继续抛出，交给全局异常处理器"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.body_log_default = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_bytes = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = await self._describe(request)
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **fields,
            )
            raise

        duration = time.perf_counter() - started
        self._log_completion(response, duration, fields)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _describe(self, request: Request) -> dict:
        fields: dict = {
            "query_params": redact(dict(request.query_params)),
        }
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            fields["user_agent"] = user_agent

        if request.method in _BODY_METHODS and self._body_logging_enabled(request):
            body = await self._redacted_body(request)
            if body is None:
                fields["has_body"] = True
            else:
                fields["body"] = body
        return fields

    def _body_logging_enabled(self, request: Request) -> bool:
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in _TRUTHY:
            return True
        if flag in _FALSY:
            return False
        return bool(self.body_log_default and settings.DEBUG)

    async def _redacted_body(self, request: Request) -> Optional[Any]:
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()

        if "application/json" in content_type:
            try:
                return redact(json.loads(text))
            except ValueError:
                # 截断后无法解析，整体不记录
                return None
        if "application/x-www-form-urlencoded" in content_type:
            return redact(_form_to_dict(text))
        return None

    @staticmethod
    def _log_completion(response: Response, duration: float, fields: dict) -> None:
        status_code = response.status_code
        if status_code >= 500:
            log, event = logger.error, "request_server_error"
        elif status_code >= 400:
            log, event = logger.warning, "request_client_error"
        else:
            log, event = logger.info, "request_completed"
        log(event, status_code=status_code, duration=duration, **fields)
