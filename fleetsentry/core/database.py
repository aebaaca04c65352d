"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式创建数据库引擎和会话管理，为 FleetSentry 提供数据持久化支持。
采集写入与外部读取并发进行：PostgreSQL 依赖 MVCC，SQLite 部署在连接时切换到 WAL 日志模式。

Creates the database engine and session management on SQLAlchemy 2.0 async mode.
Collection writes and external reads run concurrently: PostgreSQL relies on MVCC,
SQLite deployments are switched to WAL journal mode on connect.
"""
from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from fleetsentry.core.config import settings


def create_engine(url: str) -> AsyncEngine:
    """创建异步引擎；SQLite 连接启用 WAL 和外部读并发。"""
    engine = create_async_engine(
        url,
        echo=False  # 关闭 SQL 日志输出 (Disable SQL logging)
    )
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()
    return engine


# 创建异步数据库引擎 (Create Async Database Engine)
engine = create_engine(settings.database_url)

# 创建异步会话工厂 (Create Async Session Factory)
# 提交后不过期对象，采集结果在会话关闭后仍可读取
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """
    ORM 模型基类 (ORM Model Base Class)

    SQLAlchemy 2.0 的声明式基类，所有数据模型都继承此类。

    SQLAlchemy 2.0 declarative base class that all data models inherit from.
    """
    pass


async def init_db(bind: AsyncEngine = engine) -> None:
    """创建所有数据表（幂等）。 (Create all tables, idempotent.)"""
    # 导入模型以确保表注册 (Import models so tables are registered)
    import fleetsentry.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）。"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite 读回的时间不带时区，统一补为 UTC。"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
