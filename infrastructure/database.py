"""
数据库引擎与会话工厂

生产使用 PostgreSQL (asyncpg)，测试与本地开发可用 SQLite (aiosqlite)。
"""
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """未显式指定驱动时补齐异步驱动，例如 ``postgresql://`` -> ``postgresql+asyncpg://``"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    driver = _ASYNC_DRIVERS.get(url.drivername)
    if driver is None:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新 DATABASE__URL")
    return url.set(drivername=driver).render_as_string(hide_password=False)


def build_engine(database_url: str, *, echo: bool = False, **kwargs) -> AsyncEngine:
    async_url = _build_async_url(database_url)
    if async_url.startswith("sqlite"):
        # aiosqlite 连接在线程间传递
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_async_engine(async_url, echo=echo, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # 提交后实体仍需读取（交易/回调记录在 commit 后返回给调用方）
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = build_engine(settings.database.url, echo=settings.database.echo)
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: Optional[AsyncEngine] = None) -> None:
    """创建 clickpesa_transactions / clickpesa_webhooks"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: Optional[AsyncEngine] = None) -> None:
    """删除所有表，仅用于测试"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
