"""
FleetSentry 测试基础配置

每个测试使用 tmp_path 下独立的 SQLite 文件数据库（WAL 模式，与单机部署一致），
远程执行由 FakeExecutor 按命令前缀返回预设输出或抛出预设异常，通知由 RecordingNotifier 记录。
"""
import inspect
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# 必须在导入 fleetsentry 之前设置环境变量，避免连接真实 PostgreSQL
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite:///:memory:"
os.environ["HEALING_ENABLED"] = "true"
os.environ["BACKUP_ALERT_HOST"] = ""

from fleetsentry.core.database import create_engine, init_db
from fleetsentry.core.exceptions import CommandFailure
from fleetsentry.models.alert import AlertRule
from fleetsentry.models.host import Host
from fleetsentry.schemas.host import HostTarget


# ── 测试替身 ──────────────────────────────────────────────────────────

class FakeExecutor:
    """按 (主机名, 命令前缀) 路由的执行器替身。

    结果可以是字符串、异常实例，或接收 (host, command) 的可调用对象（可返回协程）。
    主机名 "*" 匹配任意主机。未匹配的命令抛出 CommandFailure。
    """

    def __init__(self):
        self.routes: list[tuple[str, str, object]] = []
        self.calls: list[dict] = []

    def on(self, host: str, prefix: str, result) -> "FakeExecutor":
        # 后注册的路由优先
        self.routes.insert(0, (host, prefix, result))
        return self

    def commands_for(self, host: str) -> list[str]:
        return [c["command"] for c in self.calls if c["host"] == host]

    async def execute(self, host, command, timeout_ms, env=None):
        self.calls.append({"host": host.name, "command": command, "timeout_ms": timeout_ms, "env": env})
        for route_host, prefix, result in self.routes:
            if route_host in ("*", host.name) and command.startswith(prefix):
                if callable(result) and not isinstance(result, BaseException):
                    result = result(host, command)
                    if inspect.isawaitable(result):
                        result = await result
                if isinstance(result, BaseException):
                    raise result
                return result
        raise CommandFailure(f"no route for {command[:30]!r} on {host.name}", host=host.name, exit_code=127)


class RecordingNotifier:
    """记录所有通知事件。"""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def notify(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> list[dict]:
        return [p for e, p in self.events if e == event]


class FakeClock:
    """可手动推进的时钟，用于冷却窗口测试。"""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """每个测试一个独立的 SQLite 文件库，建表后交给测试，结束时释放连接。"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


async def add_host(session_factory, name: str, kind: str = "local", **kwargs) -> HostTarget:
    """写入一台主机并返回对应的 HostTarget。"""
    async with session_factory() as db:
        if kind == "remote":
            kwargs.setdefault("address", f"{name}.example.net")
        host = Host(name=name, kind=kind, **kwargs)
        db.add(host)
        await db.commit()
        return HostTarget.model_validate(host)


async def add_rule(session_factory, metric: str, operator: str = ">", threshold: float = 0.0, **kwargs) -> AlertRule:
    async with session_factory() as db:
        rule = AlertRule(
            name=kwargs.pop("name", f"{metric} rule"),
            metric=metric,
            operator=operator,
            threshold=threshold,
            severity=kwargs.pop("severity", "warning"),
            **kwargs,
        )
        db.add(rule)
        await db.commit()
        return rule


async def fetch_all(session_factory, stmt) -> list:
    """在新会话中查询，避免读到其他会话缓存的旧对象。"""
    async with session_factory() as db:
        return list((await db.execute(stmt)).scalars().all())


async def fetch_model(session_factory, model, *where) -> list:
    return await fetch_all(session_factory, select(model).where(*where).order_by(model.id))
