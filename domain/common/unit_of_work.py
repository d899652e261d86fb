"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.transaction.repository import TransactionRepository
from domain.webhook.repository import WebhookRepository


class AbstractUnitOfWork(ABC):
    """
    一次对账/一次网关调用记录对应一个事务边界。

    - 正常退出且未显式提交：自动提交（只读模式除外）
    - 异常退出：回滚
    """

    transaction_repository: TransactionRepository
    webhook_repository: WebhookRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._readonly = readonly
        self._committed = False

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        self._committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
        elif not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...
