"""
交易仓储接口 - 定义交易数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Transaction, TransactionStatus, TransactionType


class TransactionRepository(ABC):
    """交易仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        """创建交易记录（order_reference 冲突时抛出 DomainValidationException）"""
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        """根据ID获取交易"""
        pass

    @abstractmethod
    async def get_by_order_reference(self, order_reference: str) -> Optional[Transaction]:
        """根据商户订单号获取交易"""
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        """更新交易记录"""
        pass

    @abstractmethod
    async def list_by_type(
        self,
        type: TransactionType,
        skip: int = 0,
        limit: int = 100
    ) -> List[Transaction]:
        """按类型（收款/付款）获取交易列表"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: TransactionStatus,
        skip: int = 0,
        limit: int = 100
    ) -> List[Transaction]:
        """根据状态获取交易列表"""
        pass

    @abstractmethod
    async def exists_by_order_reference(self, order_reference: str) -> bool:
        """检查订单号是否已有交易记录"""
        pass
