"""
业务码到 HTTP 状态的映射与全局异常处理器

除回调端点外，所有错误都以统一信封返回（见 core.response）。
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.gateway_codes import GatewayCode

from .response import error_response


logger = get_logger(__name__)


_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_CONTENT,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    GatewayCode.GATEWAY_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    GatewayCode.CONFIGURATION_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    GatewayCode.SIGNATURE_ERROR: http_status.HTTP_401_UNAUTHORIZED,
    GatewayCode.TIMEOUT: http_status.HTTP_504_GATEWAY_TIMEOUT,
    GatewayCode.AUTHENTICATION_FAILED: http_status.HTTP_502_BAD_GATEWAY,
    GatewayCode.ORDER_REFERENCE_MISSING: http_status.HTTP_400_BAD_REQUEST,
    GatewayCode.INVALID_WEBHOOK_PAYLOAD: http_status.HTTP_400_BAD_REQUEST,
    GatewayCode.RECONCILIATION_FAILED: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    GatewayCode.TRANSACTION_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
}

# 路由层 HTTPException 的状态码 -> 业务码
_BUSINESS_CODE_BY_HTTP_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """未登记的业务码按 400 处理"""
    return _HTTP_STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _envelope(status_code: int, response, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=response.to_content(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        response = error_response(
            exc.code,
            exc.message,
            exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=_request_id(request),
        )
        return _envelope(business_code_to_http_status(exc.code), response)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        response = error_response(
            BusinessCode.PARAM_VALIDATION_ERROR,
            f"Validation failed: {first.get('msg', 'unknown')}",
            "ValidationError",
            details={"errors": errors},
            field=".".join(str(part) for part in first.get("loc", [])[1:]),
            request_id=_request_id(request),
        )
        return _envelope(http_status.HTTP_422_UNPROCESSABLE_CONTENT, response)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """含路由层的 404/405"""
        response = error_response(
            _BUSINESS_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            str(exc.detail),
            "HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _envelope(exc.status_code, response, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)

        # 调试模式下把堆栈带回给调用方
        details = None
        if app.debug:
            details = {"exception": str(exc), "traceback": traceback.format_exc()}
        response = error_response(
            BusinessCode.SYSTEM_ERROR,
            "Internal server error",
            "SystemError",
            details=details,
            request_id=request_id,
        )
        return _envelope(http_status.HTTP_500_INTERNAL_SERVER_ERROR, response)
