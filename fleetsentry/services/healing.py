"""
容器自愈引擎。

输入为某主机本周期的容器记录。auto_restart 开启且状态恰为 exited / dead 的容器视为可修复；
restarting / paused / created 属于过渡状态，不处理。同一主机内逐个顺序重启，避免与容器自身的
状态切换竞争。每次尝试都写入 healing_log 并通知观察者；失败不在本周期内重试，
下个周期若容器仍处于停止状态会再次检测。
"""
from __future__ import annotations

import logging
import shlex
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetsentry.core.config import settings
from fleetsentry.core.database import utcnow
from fleetsentry.core.exceptions import ExecutionError
from fleetsentry.models.healing_log import HealingLogEntry
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.collection import ContainerRecord, HealingOutcome
from fleetsentry.schemas.host import HostTarget
from fleetsentry.services.event_bus import Notifier, NullNotifier

logger = logging.getLogger(__name__)

HEALABLE_STATUSES = ("exited", "dead")


def is_eligible(container: ContainerRecord) -> bool:
    """auto_restart 开启且状态为 exited / dead。"""
    return container.auto_restart and container.status in HEALABLE_STATUSES


class HealingEngine:
    """对崩溃容器执行 docker start 并记录审计日志。"""

    def __init__(
        self,
        executor: RemoteExecutor,
        session_factory: async_sessionmaker,
        notifier: Optional[Notifier] = None,
        timeout_ms: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.executor = executor
        self.session_factory = session_factory
        self.notifier = notifier or NullNotifier()
        self.timeout_ms = timeout_ms or settings.heal_timeout_ms
        self.enabled = settings.healing_enabled if enabled is None else enabled
        self.clock = clock

    async def heal(self, host: HostTarget, containers: list[ContainerRecord]) -> list[HealingOutcome]:
        """处理一台主机的可修复容器，返回每次尝试的结果。"""
        if not self.enabled:
            return []
        candidates = [c for c in containers if is_eligible(c)]
        if not candidates:
            return []

        outcomes = []
        async with self.session_factory() as db:
            for container in candidates:
                outcome = await self._restart(host, container)
                db.add(HealingLogEntry(
                    host_id=host.id,
                    container_name=container.name,
                    container_id=container.container_id or None,
                    action="restart",
                    reason=f'Container status was "{container.status}"',
                    result=outcome.result,
                    error_message=outcome.error_message,
                    executed_at=outcome.executed_at,
                ))
                # 每条审计记录单独提交，后续失败不影响已写入的记录
                await db.commit()
                self.notifier.notify("healing", outcome.to_event())
                outcomes.append(outcome)
        return outcomes

    async def _restart(self, host: HostTarget, container: ContainerRecord) -> HealingOutcome:
        logger.info(
            "[healing] Attempting restart of %r on %s (status: %s)", container.name, host.name, container.status
        )
        result = "success"
        error_message = None
        try:
            await self.executor.execute(host, f"docker start {shlex.quote(container.name)}", self.timeout_ms)
            logger.info("[healing] Restarted %r on %s", container.name, host.name)
        except ExecutionError as e:
            result = "failed"
            error_message = str(e)
            logger.error("[healing] Failed to restart %r on %s: %s", container.name, host.name, e)
        return HealingOutcome(
            host_id=host.id,
            host_name=host.name,
            container_name=container.name,
            container_id=container.container_id or None,
            result=result,
            error_message=error_message,
            executed_at=self.clock(),
        )


async def healing_summary(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    """自愈动作汇总：总数、最近 24 小时数量、按结果分组计数。"""
    now = now or utcnow()
    total = (await db.execute(select(func.count(HealingLogEntry.id)))).scalar_one()
    last_24h = (await db.execute(
        select(func.count(HealingLogEntry.id)).where(HealingLogEntry.executed_at > now - timedelta(days=1))
    )).scalar_one()
    by_result = (await db.execute(
        select(HealingLogEntry.result, func.count(HealingLogEntry.id))
        .group_by(HealingLogEntry.result)
        .order_by(HealingLogEntry.result)
    )).all()
    return {
        "total": total,
        "last_24h": last_24h,
        "by_result": {result: count for result, count in by_result},
    }
