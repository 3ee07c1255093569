"""
数据库配置和连接管理

引擎与会话工厂在首次使用时创建，导入本模块不会建立连接。
"""
from functools import lru_cache
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def create_engine(database_url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """按URL创建异步引擎（sqlite 不支持连接池参数）"""
    url = _build_async_url(database_url or settings.database.url)
    kwargs = {"echo": settings.database.echo if echo is None else echo}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.database.pool_size
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """进程级默认引擎"""
    return create_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return create_session_factory(get_engine())


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（不自动提交，由调用方控制事务）"""
    async with get_session_factory()() as session:
        yield session


async def create_tables(engine: Optional[AsyncEngine] = None):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: Optional[AsyncEngine] = None):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine() -> None:
    """关闭默认引擎的连接池"""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
        get_engine.cache_clear()
        get_session_factory.cache_clear()
