"""
回调投递仓储实现
"""
from datetime import datetime
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.webhook.entity import WebhookDelivery
from domain.webhook.repository import WebhookRepository
from infrastructure.models.webhook import WebhookDeliveryModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyWebhookRepository(WebhookRepository):
    """回调投递仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookDeliveryModel) -> WebhookDelivery:
        """将数据库模型转换为领域实体"""
        return WebhookDelivery(
            id=model.id,
            order_reference=model.order_reference,
            event_type=model.event_type,
            payload=model.payload,
            headers=model.headers or {},
            verified=bool(model.verified),
            processed_at=model.processed_at,
            processing_error=model.processing_error,
            retry_count=model.retry_count or 0,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: WebhookDelivery) -> WebhookDeliveryModel:
        """将领域实体转换为数据库模型"""
        model = WebhookDeliveryModel(
            id=entity.id,
            order_reference=entity.order_reference,
            event_type=entity.event_type,
            payload=entity.payload,
            headers=entity.headers,
            verified=entity.verified,
            processed_at=entity.processed_at,
            processing_error=entity.processing_error,
            retry_count=entity.retry_count,
        )
        if entity.created_at is not None:
            model.created_at = entity.created_at
        return model

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """创建投递记录"""
        db_delivery = self._to_model(delivery)
        self.session.add(db_delivery)
        await self.session.flush()
        await self.session.refresh(db_delivery)
        logger.info(
            "webhook_delivery_stored",
            delivery_id=db_delivery.id,
            order_reference=db_delivery.order_reference,
            event_type=db_delivery.event_type,
            verified=db_delivery.verified,
        )
        return self._to_entity(db_delivery)

    async def get_by_id(self, delivery_id: int) -> Optional[WebhookDelivery]:
        """根据ID获取投递记录"""
        result = await self.session.execute(
            select(WebhookDeliveryModel).where(WebhookDeliveryModel.id == delivery_id)
        )
        db_delivery = result.scalar_one_or_none()
        return self._to_entity(db_delivery) if db_delivery else None

    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """更新投递记录"""
        result = await self.session.execute(
            select(WebhookDeliveryModel).where(WebhookDeliveryModel.id == delivery.id)
        )
        db_delivery = result.scalar_one_or_none()

        if not db_delivery:
            raise ValueError(f"Webhook delivery with id {delivery.id} not found")

        db_delivery.verified = delivery.verified
        db_delivery.processed_at = delivery.processed_at
        db_delivery.processing_error = delivery.processing_error
        db_delivery.retry_count = delivery.retry_count

        await self.session.flush()
        await self.session.refresh(db_delivery)
        return self._to_entity(db_delivery)

    async def find_recent_processed(
        self,
        order_reference: str,
        *,
        exclude_id: Optional[int],
        since: datetime,
    ) -> Optional[WebhookDelivery]:
        """查找窗口内已处理的同订单投递"""
        query = select(WebhookDeliveryModel).where(
            WebhookDeliveryModel.order_reference == order_reference,
            WebhookDeliveryModel.processed_at.is_not(None),
            WebhookDeliveryModel.created_at >= since,
        )
        if exclude_id is not None:
            query = query.where(WebhookDeliveryModel.id != exclude_id)
        query = query.order_by(WebhookDeliveryModel.created_at.desc()).limit(1)

        result = await self.session.execute(query)
        db_delivery = result.scalars().first()
        return self._to_entity(db_delivery) if db_delivery else None

    async def list_by_order_reference(
        self,
        order_reference: str,
        skip: int = 0,
        limit: int = 100
    ) -> List[WebhookDelivery]:
        """按订单号获取投递记录"""
        result = await self.session.execute(
            select(WebhookDeliveryModel)
            .where(WebhookDeliveryModel.order_reference == order_reference)
            .order_by(WebhookDeliveryModel.created_at.asc(), WebhookDeliveryModel.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(d) for d in result.scalars().all()]

    async def list_unprocessed(self, skip: int = 0, limit: int = 100) -> List[WebhookDelivery]:
        """获取尚未应用的投递记录"""
        result = await self.session.execute(
            select(WebhookDeliveryModel)
            .where(WebhookDeliveryModel.processed_at.is_(None))
            .order_by(WebhookDeliveryModel.created_at.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(d) for d in result.scalars().all()]
