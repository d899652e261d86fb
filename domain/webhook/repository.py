"""
回调投递仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import WebhookDelivery


class WebhookRepository(ABC):
    """回调投递仓储抽象接口"""

    @abstractmethod
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """创建投递记录"""
        pass

    @abstractmethod
    async def get_by_id(self, delivery_id: int) -> Optional[WebhookDelivery]:
        """根据ID获取投递记录"""
        pass

    @abstractmethod
    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """更新投递记录（处理时间、错误信息、重试次数）"""
        pass

    @abstractmethod
    async def find_recent_processed(
        self,
        order_reference: str,
        *,
        exclude_id: Optional[int],
        since: datetime,
    ) -> Optional[WebhookDelivery]:
        """查找同一订单号、非当前记录、已处理且 created_at >= since 的投递"""
        pass

    @abstractmethod
    async def list_by_order_reference(
        self,
        order_reference: str,
        skip: int = 0,
        limit: int = 100
    ) -> List[WebhookDelivery]:
        """按订单号获取投递记录（按创建时间升序）"""
        pass

    @abstractmethod
    async def list_unprocessed(self, skip: int = 0, limit: int = 100) -> List[WebhookDelivery]:
        """获取尚未应用的投递记录"""
        pass
