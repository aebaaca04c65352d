"""
Docker 容器采集模块。

每台主机执行 docker ps -a 获取全部容器（含已停止），再执行 docker stats 获取资源占用；
stats 失败（例如没有运行中的容器）只记录警告，不影响清单。清单写入快照表和最新状态索引后
评估 container_down 规则，最后交给自愈引擎处理崩溃容器。
"""
import logging
import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetsentry.collectors import TaskOutcome, gather_settled, load_enabled_hosts, summarize
from fleetsentry.core.config import settings
from fleetsentry.core.database import utcnow
from fleetsentry.core.exceptions import ExecutionError, NotFoundError
from fleetsentry.models.container import ContainerSetting, ContainerSnapshot
from fleetsentry.models.host import Host
from fleetsentry.models.latest_state import KIND_CONTAINER
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.collection import ContainerRecord
from fleetsentry.schemas.host import HostTarget
from fleetsentry.services.alert_engine import AlertEngine
from fleetsentry.services.event_bus import Notifier, NullNotifier
from fleetsentry.services.healing import HealingEngine
from fleetsentry.services.latest_state import record_latest

logger = logging.getLogger(__name__)

DOCKER_PS_CMD = "docker ps -a --format '{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Status}}'"
DOCKER_STATS_CMD = "docker stats --no-stream --format '{{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}'"

# docker ps 状态文本前缀 → 归一化状态
STATUS_PREFIXES = (
    ("Exited", "exited"),
    ("Restarting", "restarting"),
    ("Paused", "paused"),
    ("Created", "created"),
    ("Dead", "dead"),
    ("Removing", "removing"),
)

# 内存单位 → MB 系数（docker 的 kB/MB/GB 实际按二进制换算）
MEMORY_UNITS = {
    "b": 1 / 1024 / 1024,
    "kib": 1 / 1024,
    "kb": 1 / 1024,
    "mib": 1,
    "mb": 1,
    "gib": 1024,
    "gb": 1024,
    "tib": 1024 * 1024,
    "tb": 1024 * 1024,
}

_MEMORY_RE = re.compile(r"([\d.]+)\s*([a-z]+)", re.IGNORECASE)
_HEALTH_SUFFIX_RE = re.compile(r"\s*\(.*\)\s*$")


def normalize_status(raw: str) -> tuple[str, Optional[str]]:
    """docker 状态文本 → (状态, 运行时长)。

    >>> normalize_status("Up 3 days (healthy)")
    ('running', '3 days')
    >>> normalize_status("Exited (0) 5 minutes ago")
    ('exited', None)
    """
    text = raw.strip()
    if text == "Up" or text.startswith("Up "):
        uptime = _HEALTH_SUFFIX_RE.sub("", text[2:].strip()).strip()
        return "running", uptime or None
    for prefix, status in STATUS_PREFIXES:
        if text.startswith(prefix):
            return status, None
    return text.lower(), None


def parse_memory(text: str) -> Optional[float]:
    """解析 "128.5MiB / 7.77GiB" 中已用部分，换算为 MB（保留两位小数），无法识别时返回 None。"""
    used = text.split("/")[0].strip()
    match = _MEMORY_RE.match(used)
    if not match:
        return None
    factor = MEMORY_UNITS.get(match.group(2).lower())
    if factor is None:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    return round(value * factor, 2)


def parse_cpu(text: str) -> Optional[float]:
    try:
        return float(text.strip().rstrip("%"))
    except ValueError:
        return None


def parse_ps_output(output: str) -> list[ContainerRecord]:
    """解析 docker ps 输出，字段不足 4 个的行跳过。"""
    containers = []
    for line in (output or "").splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 4:
            continue
        container_id, name, image, raw_status = parts[:4]
        status, uptime = normalize_status(raw_status)
        containers.append(ContainerRecord(
            container_id=container_id.strip(),
            name=name.strip(),
            image=image.strip(),
            status=status,
            uptime=uptime,
        ))
    return containers


def parse_stats_output(output: str) -> dict[str, tuple[Optional[float], Optional[float]]]:
    """解析 docker stats 输出：容器名 → (cpu_percent, memory_mb)。"""
    stats = {}
    for line in (output or "").splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        name, cpu_text, mem_text = parts[:3]
        stats[name.strip()] = (parse_cpu(cpu_text), parse_memory(mem_text))
    return stats


def merge_stats(containers: list[ContainerRecord], stats: dict) -> None:
    """按容器名精确匹配合并资源占用，无统计的容器保持 None。"""
    for container in containers:
        if container.name in stats:
            container.cpu_percent, container.memory_mb = stats[container.name]


async def load_auto_restart_flags(db: AsyncSession, host_id: int) -> dict[str, bool]:
    result = await db.execute(
        select(ContainerSetting.container_name, ContainerSetting.auto_restart)
        .where(ContainerSetting.host_id == host_id)
    )
    return {name: flag for name, flag in result.all()}


async def set_auto_restart(db: AsyncSession, host_name: str, container_name: str, enabled: bool) -> ContainerSetting:
    """设置某主机某容器的 auto_restart 开关（跨采集周期保持），主机不存在时抛出 NotFoundError。"""
    host = (await db.execute(select(Host).where(Host.name == host_name))).scalar_one_or_none()
    if host is None:
        raise NotFoundError(f"Host {host_name!r} not found")

    result = await db.execute(
        select(ContainerSetting).where(
            ContainerSetting.host_id == host.id,
            ContainerSetting.container_name == container_name,
        )
    )
    setting = result.scalar_one_or_none()
    if setting is None:
        setting = ContainerSetting(host_id=host.id, container_name=container_name, auto_restart=enabled)
        db.add(setting)
    else:
        setting.auto_restart = enabled
        setting.updated_at = utcnow()
    await db.commit()
    logger.info("auto_restart %s for %s on %s", "enabled" if enabled else "disabled", container_name, host_name)
    return setting


class ContainerCollector:
    """并发采集所有主机的容器清单，随后执行告警检测和自愈。"""

    def __init__(
        self,
        executor: RemoteExecutor,
        session_factory: async_sessionmaker,
        alert_engine: AlertEngine,
        healing_engine: Optional[HealingEngine] = None,
        notifier: Optional[Notifier] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.executor = executor
        self.session_factory = session_factory
        self.alert_engine = alert_engine
        self.healing_engine = healing_engine
        self.notifier = notifier or NullNotifier()
        self.timeout_ms = timeout_ms or settings.docker_timeout_ms

    async def collect_host(self, host: HostTarget) -> Optional[list[ContainerRecord]]:
        """采集单台主机：清单 → 统计 → 合并 → 持久化 → 告警 → 自愈。清单获取失败返回 None。"""
        try:
            ps_output = await self.executor.execute(host, DOCKER_PS_CMD, self.timeout_ms)
        except ExecutionError as e:
            logger.error("[docker] Failed to list containers on %s: %s", host.name, e)
            return None

        containers = parse_ps_output(ps_output)
        if not containers:
            return []

        try:
            stats_output = await self.executor.execute(host, DOCKER_STATS_CMD, self.timeout_ms)
        except ExecutionError as e:
            logger.warning("[docker] Failed to get stats on %s: %s", host.name, e)
            stats_output = ""
        merge_stats(containers, parse_stats_output(stats_output))

        collected_at = utcnow()
        async with self.session_factory() as db:
            flags = await load_auto_restart_flags(db, host.id)
            snapshots = []
            for container in containers:
                container.auto_restart = flags.get(container.name, False)
                snapshot = ContainerSnapshot(host_id=host.id, collected_at=collected_at, **container.model_dump())
                db.add(snapshot)
                snapshots.append(snapshot)
            await db.flush()
            for snapshot in snapshots:
                await record_latest(db, KIND_CONTAINER, host.id, snapshot.name, snapshot.id, collected_at)
            await self.alert_engine.evaluate_container_rules(db, host, containers)
            await db.commit()

        self.notifier.notify("containers", {
            "host_id": host.id,
            "host_name": host.name,
            "collected_at": collected_at.isoformat(),
            "containers": [c.model_dump() for c in containers],
        })

        if self.healing_engine is not None:
            await self.healing_engine.heal(host, containers)
        return containers

    async def collect_all(self) -> list[TaskOutcome]:
        hosts = await load_enabled_hosts(self.session_factory)
        outcomes = await gather_settled({h.name: self.collect_host(h) for h in hosts})
        logger.info(
            "[docker] %s",
            summarize(outcomes, lambda cs: "failed" if cs is None else f"{len(cs)} containers"),
        )
        return outcomes
