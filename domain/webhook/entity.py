"""
回调投递实体 - 每一次网关回调（只要带订单号）都会落一条记录，永不删除
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.transaction.entity import _ensure_utc


DEFAULT_EVENT_TYPE = "callback"


@dataclass
class WebhookDelivery:
    """
    网关回调投递记录

    状态：processed_at 为空表示尚未应用到交易；
    processing_error / retry_count 记录对账失败。
    """

    id: Optional[int]
    order_reference: str
    payload: Any
    event_type: str = DEFAULT_EVENT_TYPE
    headers: dict = field(default_factory=dict)  # signature, user_agent, ip
    verified: bool = False
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    retry_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.order_reference, str) or not self.order_reference.strip():
            raise DomainValidationException("订单号不能为空", field="order_reference")
        if not self.event_type:
            self.event_type = DEFAULT_EVENT_TYPE
        if self.headers is None:
            self.headers = {}
        self.processed_at = _ensure_utc(self.processed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def mark_processed(self, at: Optional[datetime] = None) -> None:
        """标记已应用到交易"""
        self.processed_at = _ensure_utc(at) or datetime.now(timezone.utc)
        self.processing_error = None
        self.updated_at = self.processed_at

    def mark_verified(self) -> None:
        self.verified = True
        self.updated_at = datetime.now(timezone.utc)

    def record_failure(self, error: str) -> None:
        """记录一次对账失败"""
        self.processing_error = error
        self.retry_count += 1
        self.updated_at = datetime.now(timezone.utc)

    def is_processed(self) -> bool:
        return self.processed_at is not None

    def is_verified(self) -> bool:
        return self.verified
