import logging

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from menubill.common.model import MappedBase
from menubill.core.conf import settings

logger = logging.getLogger(__name__)


def create_database_url(url: str | None = None) -> URL:
    """
    创建数据库链接

    :param url: SQLAlchemy async URL, defaults to ``DATABASE_URL``
    :return:
    """
    return make_url(url or settings.DATABASE_URL)


def create_async_engine_and_session(
    url: str | URL,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    创建数据库引擎和 Session

    :param url: 数据库连接 URL
    :return:
    """
    try:
        # 数据库引擎
        engine = create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            future=True,
            pool_pre_ping=settings.DATABASE_POOL_PRE_PING,
        )
    except Exception as e:
        logger.error(f'❌ 数据库链接失败 {e}')
        raise
    else:
        db_session = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autoflush=False,  # 禁用自动刷新
            expire_on_commit=False,  # 禁用提交时过期
        )
        return engine, db_session


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话"""
    async with request.app.state.db_session() as session:
        yield session


async def create_tables(engine: AsyncEngine) -> None:
    """创建数据库表"""
    # Import models so every table is registered on the metadata
    import menubill.src.billing.model  # noqa: F401

    async with engine.begin() as coon:
        await coon.run_sync(MappedBase.metadata.create_all)


async def drop_tables(engine: AsyncEngine) -> None:
    """删除数据库表"""
    async with engine.begin() as conn:
        await conn.run_sync(MappedBase.metadata.drop_all)


SQLALCHEMY_DATABASE_URL = create_database_url()

# Session Annotated
CurrentSession = Annotated[AsyncSession, Depends(get_db)]
