"""
交易领域实体 - 以商户订单号为幂等键的交易聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException
from shared.codes.gateway_codes import GATEWAY_STATUS_TO_INTERNAL


class TransactionType(str, Enum):
    """交易类型"""
    PAYMENT = "payment"  # 收款
    PAYOUT = "payout"    # 付款


class TransactionStatus(str, Enum):
    """交易状态（闭集，网关状态入库前统一归一化）"""
    PENDING = "pending"
    PROCESSING = "processing"
    AUTHORIZED = "authorized"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    REVERSED = "reversed"


_PENDING_STATUSES = (
    TransactionStatus.PENDING,
    TransactionStatus.PROCESSING,
    TransactionStatus.AUTHORIZED,
)
_FAILED_STATUSES = (TransactionStatus.FAILED, TransactionStatus.REVERSED)

_AMOUNT_QUANT = Decimal("0.01")


def normalize_status(raw: Any) -> TransactionStatus:
    """把网关状态（SUCCESS/SETTLED/...）或内部状态归一化为 TransactionStatus。

    大小写不敏感且幂等：``normalize_status(normalize_status(x)) == normalize_status(x)``。
    未知或缺失的状态视为异常载荷。
    """
    if isinstance(raw, TransactionStatus):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise DomainValidationException("缺少交易状态", field="status")
    mapped = GATEWAY_STATUS_TO_INTERNAL.get(raw.strip().upper())
    if mapped is None:
        raise DomainValidationException(
            f"未知的交易状态: {raw}",
            field="status",
            details={"status": raw},
        )
    return TransactionStatus(mapped)


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """金额统一为两位小数的 Decimal；空值返回默认值。"""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value)).quantize(_AMOUNT_QUANT)
    except (InvalidOperation, ValueError) as exc:
        raise DomainValidationException(f"无效的金额: {value}", field="amount") from exc


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Transaction:
    """
    交易聚合根

    业务规则：
    1. order_reference 全局唯一、创建后不可变
    2. 金额不能为负数，货币代码为3位字母
    3. 状态只在闭集 TransactionStatus 内取值
    4. 网关回写状态时最后一次写入生效（重复窗口由回调对账负责）
    """

    id: Optional[int]
    order_reference: str
    type: TransactionType
    channel: str  # ussd_push, card, mobile_money, bank_transfer
    amount: Decimal
    currency: str  # ISO-4217
    status: TransactionStatus = TransactionStatus.PENDING

    reference: Optional[str] = None  # 网关交易ID
    description: Optional[str] = None
    channel_provider: Optional[str] = None
    account_details: Optional[dict] = None
    metadata: dict = field(default_factory=dict)

    fee: Optional[Decimal] = None
    fee_bearer: Optional[str] = None
    exchanged: bool = False
    exchange_details: Optional[dict] = None

    response_code: Optional[str] = None
    response_message: Optional[str] = None
    request_payload: Optional[dict] = None
    response_payload: Optional[Any] = None

    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        self._validate_order_reference()
        self.type = TransactionType(self.type)
        self.status = normalize_status(self.status)
        self.amount = to_decimal(self.amount)
        if self.amount < 0:
            raise DomainValidationException(
                f"交易金额不能为负数: {self.amount}",
                field="amount"
            )
        if self.fee is not None:
            self.fee = to_decimal(self.fee)
        self.currency = (self.currency or "").upper()
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency"
            )
        self.processed_at = _ensure_utc(self.processed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    def _validate_order_reference(self) -> None:
        if not isinstance(self.order_reference, str) or not self.order_reference.strip():
            raise DomainValidationException("订单号不能为空", field="order_reference")

    def apply_gateway_status(
        self,
        status: Any,
        payload: Any,
        processed_at: Optional[datetime] = None,
    ) -> None:
        """按网关回报覆盖状态、原始响应与处理时间（最后一次写入生效）。"""
        self.status = normalize_status(status)
        self.response_payload = payload
        self.processed_at = _ensure_utc(processed_at) or datetime.now(timezone.utc)
        self.updated_at = self.processed_at

    def is_successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESSFUL

    def is_pending(self) -> bool:
        return self.status in _PENDING_STATUSES

    def is_failed(self) -> bool:
        return self.status in _FAILED_STATUSES

    def is_payment(self) -> bool:
        return self.type == TransactionType.PAYMENT

    def is_payout(self) -> bool:
        return self.type == TransactionType.PAYOUT

    def total_amount(self) -> Decimal:
        """金额 + 手续费"""
        return self.amount + (self.fee or Decimal("0"))

    def exchange_rate(self) -> Optional[Decimal]:
        """换汇汇率，未换汇或无汇率明细时返回 None"""
        if not self.exchanged or not self.exchange_details:
            return None
        rate = self.exchange_details.get("rate")
        if rate is None:
            return None
        return Decimal(str(rate))
