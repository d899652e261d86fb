"""
交易数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index,
)
from datetime import datetime, timezone

from .base import Base


class TransactionModel(Base):
    """
    交易数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.transaction.entity.Transaction 中
    """
    __tablename__ = "clickpesa_transactions"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 订单与类型
    order_reference = Column(String(100), unique=True, index=True, nullable=False, comment="商户订单号（幂等键）")
    type = Column(String(20), nullable=False, index=True, comment="交易类型: payment/payout")
    channel = Column(String(50), nullable=False, comment="渠道: ussd_push/card/mobile_money/bank_transfer")
    channel_provider = Column(String(100), nullable=True, comment="渠道提供方")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=18, scale=2), nullable=False, comment="交易金额")
    currency = Column(String(3), nullable=False, default="TZS", comment="货币代码 ISO-4217")
    fee = Column(Numeric(precision=18, scale=2), nullable=True, comment="手续费")
    fee_bearer = Column(String(50), nullable=True, comment="手续费承担方")
    exchanged = Column(Boolean, nullable=False, default=False, comment="是否换汇")
    exchange_details = Column(JSON, nullable=True, comment="换汇明细")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="交易状态: pending/processing/authorized/successful/failed/reversed"
    )

    # 网关信息
    reference = Column(String(200), nullable=True, index=True, comment="网关交易ID")
    description = Column(Text, nullable=True, comment="描述")
    account_details = Column(JSON, nullable=True, comment="收/付款账户信息")
    response_code = Column(String(50), nullable=True, comment="网关响应码")
    response_message = Column(Text, nullable=True, comment="网关响应信息")
    request_payload = Column(JSON, nullable=True, comment="请求载荷（已脱敏）")
    response_payload = Column(JSON, nullable=True, comment="网关原始响应/回调载荷")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 时间戳
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次状态回写时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
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
        Index("ix_clickpesa_transactions_type_status", "type", "status"),
    )

    def __repr__(self):
        return f"<TransactionModel(id={self.id}, order_reference={self.order_reference}, status={self.status})>"
