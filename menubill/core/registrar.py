import logging

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from menubill.core.conf import settings
from menubill.core.exception_handlers import register_exception
from menubill.database.db import SQLALCHEMY_DATABASE_URL, create_async_engine_and_session, create_tables
from menubill.src.billing.checkout_links.sweep import create_scheduler, shutdown_scheduler, start_scheduler
from menubill.src.billing.container import build_container
from menubill.src.billing.endpoints import billing_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def register_init(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    启动初始化

    :param app: FastAPI 应用实例
    :return:
    """
    engine, db_session = create_async_engine_and_session(SQLALCHEMY_DATABASE_URL)
    if settings.DATABASE_CREATE_TABLES:
        # 创建数据库表
        await create_tables(engine)

    http = httpx.AsyncClient(timeout=settings.PIPEDRIVE_TIMEOUT_SECONDS)
    app.state.db_session = db_session
    app.state.billing = build_container(settings, db_session, http)

    scheduler = None
    if settings.CHECKOUT_LINK_SWEEP_ENABLED:
        scheduler = create_scheduler(app.state.billing.links, settings.CHECKOUT_LINK_SWEEP_INTERVAL_SECONDS)
        start_scheduler(scheduler)

    yield

    if scheduler is not None:
        shutdown_scheduler(scheduler)
    await http.aclose()
    await engine.dispose()


def register_logger() -> None:
    """
    日志

    :return:
    """
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format=settings.LOG_FORMAT)
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


def register_middleware(app: FastAPI) -> None:
    """
    中间件, 执行顺序从下往上

    :param app:
    :return:
    """
    if settings.MIDDLEWARE_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=['*'],
            allow_headers=['*'],
        )


def register_router(app: FastAPI) -> None:
    """
    路由

    :param app: FastAPI
    :return:
    """
    app.include_router(billing_router, prefix=settings.FASTAPI_API_V1_PATH)


def register_app() -> FastAPI:
    """注册 FastAPI 应用"""
    register_logger()

    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=register_init,
    )

    register_middleware(app)
    register_router(app)
    register_exception(app)

    return app
