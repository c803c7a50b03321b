"""Declarative base and shared column types for all billing tables."""

import uuid

from datetime import datetime
from typing import Annotated

import sqlalchemy as sa

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, MappedAsDataclass, declared_attr, mapped_column

from menubill.utils.timezone import UTC, timezone


def uuid4_str() -> str:
    """数据库引擎 UUID 类型兼容性解决方案"""
    return str(uuid.uuid4())


# 通用 Mapped 类型主键, 需手动添加，参考以下使用方式
# MappedBase -> id: Mapped[id_key]
# DataClassBase && Base -> id: Mapped[id_key] = mapped_column(init=False)
id_key = Annotated[
    str,
    mapped_column(
        sa.String(64),
        primary_key=True,
        index=True,
        insert_default=uuid4_str,
        sort_order=-999,
        comment='主键 ID',
    ),
]


class TimeZone(sa.TypeDecorator[datetime]):
    """
    Timezone-aware datetime column.

    Values are stored as UTC. Backends without native timezone support
    (SQLite) hand back naive values, which are re-tagged as UTC on load.
    """

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    @property
    def python_type(self) -> type[datetime]:
        return datetime

    def process_bind_param(self, value: datetime | None, dialect: sa.Dialect) -> datetime | None:
        if value is None:
            return None
        return timezone.from_datetime(value)

    def process_result_value(self, value: datetime | None, dialect: sa.Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class DateTimeMixin(MappedAsDataclass):
    """日期时间 Mixin 数据类"""

    created_at: Mapped[datetime] = mapped_column(
        TimeZone,
        init=False,
        default_factory=timezone.now,
        sort_order=999,
        comment='创建时间',
    )
    updated_at: Mapped[datetime] = mapped_column(
        TimeZone,
        init=False,
        default_factory=timezone.now,
        onupdate=timezone.now,
        sort_order=999,
        comment='更新时间',
    )


class MappedBase(AsyncAttrs, DeclarativeBase):
    """
    声明式基类, 作为所有基类或数据模型类的父类而存在

    `AsyncAttrs <https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html#sqlalchemy.ext.asyncio.AsyncAttrs>`__
    `DeclarativeBase <https://docs.sqlalchemy.org/en/20/orm/declarative_config.html>`__
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


class DataClassBase(MappedAsDataclass, MappedBase):
    """声明性数据类基类, 带有数据类集成, 允许使用更高级配置, 但你必须注意它的一些特性, 尤其是和 DeclarativeBase 一起使用时"""

    __abstract__ = True


class Base(DataClassBase, DateTimeMixin):
    """声明性数据类基类, 带有数据类集成, 并包含 MiXin 数据类基础表结构"""

    __abstract__ = True
