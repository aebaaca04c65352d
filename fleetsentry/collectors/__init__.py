"""
采集器包。

gather_settled() 是每个采集周期的 扇出 / 汇合 原语：并发执行所有主机的任务，等待全部结束，
为每个任务返回一个 TaskOutcome（值或异常），任何一个任务失败都不会取消其他任务。
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from fleetsentry.models.host import Host
from fleetsentry.schemas.host import HostTarget

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """单个并发任务的结果：value 或 error 二选一。"""
    key: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(tasks: dict[str, Awaitable]) -> list[TaskOutcome]:
    """并发等待所有任务，逐个收集结果，不向上抛出任务异常（取消除外）。"""
    keys = list(tasks)
    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    outcomes = []
    for key, result in zip(keys, results):
        if isinstance(result, Exception):
            logger.error("Task %s failed", key, exc_info=result)
            outcomes.append(TaskOutcome(key=key, error=result))
        elif isinstance(result, BaseException):
            raise result
        else:
            outcomes.append(TaskOutcome(key=key, value=result))
    return outcomes


async def load_enabled_hosts(session_factory: async_sessionmaker) -> list[HostTarget]:
    """读取所有已启用主机，转换为脱离会话的 HostTarget。"""
    async with session_factory() as db:
        result = await db.execute(select(Host).where(Host.enabled == True).order_by(Host.id))  # noqa: E712
        return [HostTarget.model_validate(h) for h in result.scalars().all()]


def summarize(outcomes: list[TaskOutcome], describe: Callable[[Any], str] = str) -> str:
    """把一个周期的结果汇总为单行日志文本。"""
    parts = []
    for outcome in outcomes:
        if outcome.ok:
            parts.append(f"{outcome.key}: {describe(outcome.value)}")
        else:
            parts.append(f"{outcome.key}: ERR {outcome.error}")
    return ", ".join(parts) or "no hosts"
