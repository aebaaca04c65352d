"""
采集调度任务模块。

两个后台循环：指标 + 容器采集（默认 60 秒），备份检查（默认 300 秒，restic 较重）。
每个循环等待本周期完成后才开始计时下一周期，周期之间不会重叠；启动时立即执行第一轮。
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from fleetsentry.collectors import TaskOutcome
from fleetsentry.collectors.backups import BackupStatusChecker
from fleetsentry.collectors.containers import ContainerCollector
from fleetsentry.collectors.metrics import MetricCollector
from fleetsentry.core.config import settings
from fleetsentry.core.database import async_session
from fleetsentry.core.fleet_config import FleetConfig
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.collection import BackupCheckOutcome
from fleetsentry.services.alert_engine import AlertEngine
from fleetsentry.services.event_bus import Notifier, event_broadcaster
from fleetsentry.services.healing import HealingEngine

logger = logging.getLogger(__name__)


@dataclass
class Monitor:
    """一组共享执行器、告警引擎和通知器的采集组件。"""
    metrics: MetricCollector
    containers: ContainerCollector
    backups: BackupStatusChecker


def build_monitor(
    session_factory: async_sessionmaker = async_session,
    notifier: Optional[Notifier] = None,
    executor: Optional[RemoteExecutor] = None,
) -> Monitor:
    """按当前配置装配采集器、告警引擎和自愈引擎。"""
    notifier = notifier or event_broadcaster
    executor = executor or RemoteExecutor()
    alert_engine = AlertEngine(notifier)
    healing_engine = HealingEngine(executor, session_factory, notifier)
    return Monitor(
        metrics=MetricCollector(executor, session_factory, alert_engine, notifier),
        containers=ContainerCollector(executor, session_factory, alert_engine, healing_engine, notifier),
        backups=BackupStatusChecker(executor, session_factory, alert_engine, notifier),
    )


async def run_collection_cycle(monitor: Monitor) -> dict[str, list[TaskOutcome]]:
    """执行一轮指标和容器采集（两者并发），返回每台主机的结果。"""
    metrics, containers = await asyncio.gather(
        monitor.metrics.collect_all(),
        monitor.containers.collect_all(),
    )
    return {"metrics": metrics, "containers": containers}


async def run_backup_cycle(monitor: Monitor, fleet: FleetConfig) -> list[BackupCheckOutcome]:
    """执行一轮备份检查。"""
    results = await monitor.backups.check_all(fleet)
    if results:
        logger.info("Backup check: %s", ", ".join(f"{r.name}={r.status}" for r in results))
    return results


async def collection_loop(monitor: Monitor, interval: Optional[int] = None):
    """指标 + 容器采集后台循环。"""
    interval = interval or settings.collect_interval_seconds
    logger.info("Collection loop started (every %ss)", interval)
    while True:
        try:
            await run_collection_cycle(monitor)
        except Exception:
            logger.exception("Error in collection cycle")
        await asyncio.sleep(interval)


async def backup_loop(monitor: Monitor, fleet: FleetConfig, interval: Optional[int] = None):
    """备份检查后台循环，未配置备份目标时直接返回。"""
    if not fleet.backups:
        logger.info("No backup targets configured, backup loop disabled")
        return
    interval = interval or settings.backup_interval_seconds
    logger.info("Backup loop started for %d target(s) (every %ss)", len(fleet.backups), interval)
    while True:
        try:
            await run_backup_cycle(monitor, fleet)
        except Exception:
            logger.exception("Error in backup cycle")
        await asyncio.sleep(interval)
