"""
回调投递数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, Boolean,
    Index,
)
from datetime import datetime, timezone

from .base import Base


class WebhookDeliveryModel(Base):
    """
    回调投递数据库模型

    order_reference 仅做索引，不建外键（回调可能先于交易记录到达）
    """
    __tablename__ = "clickpesa_webhooks"

    id = Column(Integer, primary_key=True, index=True)

    order_reference = Column(String(100), nullable=False, index=True, comment="商户订单号")
    event_type = Column(String(100), nullable=False, default="callback", comment="事件类型")
    payload = Column(JSON, nullable=False, comment="原始回调载荷")
    headers = Column(JSON, nullable=True, comment="回调头信息: signature/user_agent/ip")

    verified = Column(Boolean, nullable=False, default=False, comment="签名是否校验通过")
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="应用到交易的时间，为空表示未处理")
    processing_error = Column(Text, nullable=True, comment="最近一次处理错误")
    retry_count = Column(Integer, nullable=False, default=0, comment="处理失败次数")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_clickpesa_webhooks_verified", "verified"),
        Index("ix_clickpesa_webhooks_processed_at", "processed_at"),
        Index("ix_clickpesa_webhooks_order_event", "order_reference", "event_type"),
    )

    def __repr__(self):
        return f"<WebhookDeliveryModel(id={self.id}, order_reference={self.order_reference}, processed_at={self.processed_at})>"
