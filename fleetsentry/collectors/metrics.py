"""
主机指标采集模块。

在每台已启用主机上执行 METRICS_SCRIPT（仅依赖 POSIX shell 和 /proc），脚本输出一行
以 | 分隔的 11 个字段。本机 10 秒、远程 15 秒预算。采集成功写入样本并评估数值告警规则，
失败（连接/超时/输出无法解析）不写样本，改为触发该主机的 service_down。
"""
import logging
import math
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from fleetsentry.collectors import TaskOutcome, gather_settled, load_enabled_hosts, summarize
from fleetsentry.core.config import settings
from fleetsentry.core.database import utcnow
from fleetsentry.core.exceptions import ExecutionError, ParseError
from fleetsentry.models.latest_state import KIND_METRIC
from fleetsentry.models.metric import MetricSample
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.collection import MetricReading
from fleetsentry.schemas.host import HostTarget
from fleetsentry.services.alert_engine import AlertEngine
from fleetsentry.services.event_bus import Notifier, NullNotifier
from fleetsentry.services.latest_state import record_latest

logger = logging.getLogger(__name__)

# 输出：cpu 万分比|内存万分比|已用内存KB|总内存KB|磁盘%|已用GB|总GB|load1|load5|load15|uptime秒
METRICS_SCRIPT = """
read -r _ a1 b1 c1 d1 _ < /proc/stat
sleep 1
read -r _ a2 b2 c2 d2 _ < /proc/stat
idle=$(( d2 - d1 ))
total=$(( (a2+b2+c2+d2) - (a1+b1+c1+d1) ))
if [ "$total" -gt 0 ]; then cpu=$(( (total - idle) * 10000 / total )); else cpu=0; fi

mem_total=$(awk '/^MemTotal:/{print $2}' /proc/meminfo)
mem_avail=$(awk '/^MemAvailable:/{print $2}' /proc/meminfo)
mem_used=$(( mem_total - mem_avail ))
if [ "$mem_total" -gt 0 ]; then mem_pct=$(( mem_used * 10000 / mem_total )); else mem_pct=0; fi

disk_line=$(df -BG / | tail -1)
disk_total=$(echo "$disk_line" | awk '{gsub("G",""); print $2}')
disk_used=$(echo "$disk_line" | awk '{gsub("G",""); print $3}')
disk_pct=$(echo "$disk_line" | awk '{gsub("%",""); print $5}')

read -r l1 l5 l15 _ < /proc/loadavg
uptime_s=$(awk '{printf "%d", $1}' /proc/uptime)

echo "${cpu}|${mem_pct}|${mem_used}|${mem_total}|${disk_pct}|${disk_used}|${disk_total}|${l1}|${l5}|${l15}|${uptime_s}"
""".strip()

METRIC_FIELD_COUNT = 11


def _to_float(text: str) -> Optional[float]:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return None if math.isnan(value) or math.isinf(value) else value


def _to_int(text: str) -> Optional[int]:
    value = _to_float(text)
    return None if value is None else int(value)


def _centipercent(text: str) -> Optional[float]:
    value = _to_int(text)
    return None if value is None else round(value / 100, 2)


def _kb_to_mb(text: str) -> Optional[int]:
    value = _to_int(text)
    # 四舍五入，.5 向上取整
    return None if value is None else math.floor(value / 1024 + 0.5)


def parse_metrics_output(stdout: str) -> Optional[MetricReading]:
    """解析脚本输出的最后一个非空行，字段不足 11 个或输出为空时返回 None。

    单个字段无法解析时该字段为 None，其余字段照常返回。
    """
    lines = [line.strip() for line in (stdout or "").splitlines() if line.strip()]
    if not lines:
        return None
    parts = lines[-1].split("|")
    if len(parts) < METRIC_FIELD_COUNT:
        return None

    return MetricReading(
        cpu_percent=_centipercent(parts[0]),
        memory_percent=_centipercent(parts[1]),
        memory_used_mb=_kb_to_mb(parts[2]),
        memory_total_mb=_kb_to_mb(parts[3]),
        disk_percent=_to_float(parts[4]),
        disk_used_gb=_to_float(parts[5]),
        disk_total_gb=_to_float(parts[6]),
        load_1m=_to_float(parts[7]),
        load_5m=_to_float(parts[8]),
        load_15m=_to_float(parts[9]),
        uptime_seconds=_to_int(parts[10]),
    )


class MetricCollector:
    """并发采集所有主机的系统指标。"""

    def __init__(
        self,
        executor: RemoteExecutor,
        session_factory: async_sessionmaker,
        alert_engine: AlertEngine,
        notifier: Optional[Notifier] = None,
        local_timeout_ms: Optional[int] = None,
        remote_timeout_ms: Optional[int] = None,
    ) -> None:
        self.executor = executor
        self.session_factory = session_factory
        self.alert_engine = alert_engine
        self.notifier = notifier or NullNotifier()
        self.local_timeout_ms = local_timeout_ms or settings.metrics_local_timeout_ms
        self.remote_timeout_ms = remote_timeout_ms or settings.metrics_remote_timeout_ms

    def timeout_for(self, host: HostTarget) -> int:
        return self.local_timeout_ms if host.is_local else self.remote_timeout_ms

    async def collect_host(self, host: HostTarget) -> Optional[MetricReading]:
        """采集单台主机。失败时触发 service_down 并返回 None，不向上抛出执行错误。"""
        try:
            stdout = await self.executor.execute(host, METRICS_SCRIPT, self.timeout_for(host))
            reading = parse_metrics_output(stdout)
            if reading is None:
                raise ParseError(f"Unparsable metrics output from {host.name}", detail=stdout.strip()[-500:])
        except (ExecutionError, ParseError) as e:
            logger.error("[metrics] %s: collection failed: %s", host.name, e)
            async with self.session_factory() as db:
                await self.alert_engine.fire_service_down(db, host, reason=str(e))
                await db.commit()
            return None

        collected_at = utcnow()
        async with self.session_factory() as db:
            sample = MetricSample(host_id=host.id, collected_at=collected_at, **reading.model_dump())
            db.add(sample)
            await db.flush()
            await record_latest(db, KIND_METRIC, host.id, "", sample.id, collected_at)
            await self.alert_engine.evaluate_metric_rules(db, host, reading)
            await self.alert_engine.resolve_service_down(db, host)
            await db.commit()

        logger.info(
            "[metrics] %s: CPU=%s%% MEM=%s%% DISK=%s%% LOAD=%s",
            host.name, reading.cpu_percent, reading.memory_percent, reading.disk_percent, reading.load_1m,
        )
        self.notifier.notify("metrics", {
            "host_id": host.id,
            "host_name": host.name,
            **reading.model_dump(),
            "collected_at": collected_at.isoformat(),
        })
        return reading

    async def collect_all(self) -> list[TaskOutcome]:
        """一个采集周期：所有已启用主机并发采集，单主机失败互不影响。"""
        hosts = await load_enabled_hosts(self.session_factory)
        outcomes = await gather_settled({h.name: self.collect_host(h) for h in hosts})
        logger.info(
            "[metrics] %s",
            summarize(outcomes, lambda reading: "ok" if reading is not None else "failed"),
        )
        return outcomes
