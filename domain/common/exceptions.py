"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.gateway_codes import GatewayCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class SignatureRejectedException(BusinessException):
    """回调签名校验未通过（缺失或不匹配）。"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            code=GatewayCode.SIGNATURE_ERROR,
            message=reason,
            error_type="SignatureRejected",
        )


class InvalidWebhookPayloadException(BusinessException):
    def __init__(self, message: str = "Invalid payload"):
        super().__init__(
            code=GatewayCode.INVALID_WEBHOOK_PAYLOAD,
            message=message,
            error_type="InvalidWebhookPayload",
        )


class OrderReferenceMissingException(BusinessException):
    def __init__(self):
        super().__init__(
            code=GatewayCode.ORDER_REFERENCE_MISSING,
            message="Order reference required",
            error_type="OrderReferenceMissing",
            field="orderReference",
        )


class ReconciliationFailedException(BusinessException):
    """回调已落库但对账失败，失败原因已记录在回调记录上。"""

    def __init__(self, order_reference: str, error: str, delivery_id: Optional[int] = None):
        details = {"order_reference": order_reference, "error": error}
        if delivery_id is not None:
            details["delivery_id"] = delivery_id
        super().__init__(
            code=GatewayCode.RECONCILIATION_FAILED,
            message="Processing failed",
            error_type="ReconciliationFailed",
            details=details,
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, order_reference: str):
        super().__init__(
            code=GatewayCode.TRANSACTION_NOT_FOUND,
            message="Transaction not found",
            error_type="TransactionNotFound",
            details={"order_reference": order_reference},
        )
