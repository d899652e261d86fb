"""
交易仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import DomainValidationException
from domain.transaction.entity import Transaction, TransactionStatus, TransactionType
from domain.transaction.repository import TransactionRepository
from infrastructure.models.transaction import TransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        """将数据库模型转换为领域实体"""
        return Transaction(
            id=model.id,
            order_reference=model.order_reference,
            type=TransactionType(model.type),
            channel=model.channel,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=TransactionStatus(model.status),
            reference=model.reference,
            description=model.description,
            channel_provider=model.channel_provider,
            account_details=model.account_details,
            metadata=model.extra_metadata or {},
            fee=Decimal(str(model.fee)) if model.fee is not None else None,
            fee_bearer=model.fee_bearer,
            exchanged=bool(model.exchanged),
            exchange_details=model.exchange_details,
            response_code=model.response_code,
            response_message=model.response_message,
            request_payload=model.request_payload,
            response_payload=model.response_payload,
            processed_at=model.processed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Transaction) -> TransactionModel:
        """将领域实体转换为数据库模型"""
        model = TransactionModel(
            id=entity.id,
            order_reference=entity.order_reference,
            type=entity.type.value,
            channel=entity.channel,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            reference=entity.reference,
            description=entity.description,
            channel_provider=entity.channel_provider,
            account_details=entity.account_details,
            extra_metadata=entity.metadata,
            fee=entity.fee,
            fee_bearer=entity.fee_bearer,
            exchanged=entity.exchanged,
            exchange_details=entity.exchange_details,
            response_code=entity.response_code,
            response_message=entity.response_message,
            request_payload=entity.request_payload,
            response_payload=entity.response_payload,
            processed_at=entity.processed_at,
        )
        if entity.created_at is not None:
            model.created_at = entity.created_at
        return model

    async def create(self, transaction: Transaction) -> Transaction:
        """创建交易记录"""
        try:
            db_txn = self._to_model(transaction)
            self.session.add(db_txn)
            await self.session.flush()
            await self.session.refresh(db_txn)
        except IntegrityError as e:
            if "order_reference" in str(e).lower():
                logger.warning(
                    "transaction_create_conflict",
                    order_reference=transaction.order_reference
                )
                raise DomainValidationException(
                    f"订单号已存在: {transaction.order_reference}",
                    field="order_reference",
                ) from e
            raise
        logger.info(
            "transaction_created",
            transaction_id=db_txn.id,
            order_reference=db_txn.order_reference,
            type=db_txn.type,
            status=db_txn.status,
        )
        return self._to_entity(db_txn)

    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        """根据ID获取交易"""
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction_id)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def get_by_order_reference(self, order_reference: str) -> Optional[Transaction]:
        """根据商户订单号获取交易"""
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.order_reference == order_reference)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def update(self, transaction: Transaction) -> Transaction:
        """更新交易记录（order_reference/type 不可变，不更新）"""
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction.id)
        )
        db_txn = result.scalar_one_or_none()

        if not db_txn:
            raise ValueError(f"Transaction with id {transaction.id} not found")

        db_txn.status = transaction.status.value
        db_txn.reference = transaction.reference
        db_txn.channel_provider = transaction.channel_provider
        db_txn.fee = transaction.fee
        db_txn.fee_bearer = transaction.fee_bearer
        db_txn.exchanged = transaction.exchanged
        db_txn.exchange_details = transaction.exchange_details
        db_txn.response_code = transaction.response_code
        db_txn.response_message = transaction.response_message
        db_txn.request_payload = transaction.request_payload
        db_txn.response_payload = transaction.response_payload
        db_txn.processed_at = transaction.processed_at
        db_txn.extra_metadata = transaction.metadata

        await self.session.flush()
        await self.session.refresh(db_txn)

        logger.info(
            "transaction_updated",
            transaction_id=db_txn.id,
            order_reference=db_txn.order_reference,
            status=db_txn.status
        )

        return self._to_entity(db_txn)

    async def list_by_type(
        self,
        type: TransactionType,
        skip: int = 0,
        limit: int = 100
    ) -> List[Transaction]:
        """按类型获取交易列表"""
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.type == TransactionType(type).value)
            .order_by(TransactionModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(t) for t in result.scalars().all()]

    async def list_by_status(
        self,
        status: TransactionStatus,
        skip: int = 0,
        limit: int = 100
    ) -> List[Transaction]:
        """根据状态获取交易列表"""
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.status == TransactionStatus(status).value)
            .order_by(TransactionModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(t) for t in result.scalars().all()]

    async def exists_by_order_reference(self, order_reference: str) -> bool:
        """检查订单号是否已有交易记录"""
        result = await self.session.execute(
            select(func.count(TransactionModel.id)).where(
                TransactionModel.order_reference == order_reference
            )
        )
        return (result.scalar() or 0) > 0
