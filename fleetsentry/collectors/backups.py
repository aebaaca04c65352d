"""
restic 备份新鲜度检查模块。

对每个配置的 restic 仓库执行 `restic snapshots --json --latest 1`（在 check_host 上，未配置时在本机），
根据最新快照时间与过期阈值推导 ok / stale / error 状态。逐个目标顺序检查（restic 开销大），
单个目标失败不影响其他目标。仓库密码等密钥只在单次调用中注入，不落库、不记录日志。
"""
import json
import logging
import re
import shlex
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetsentry.core.config import settings
from fleetsentry.core.database import utcnow
from fleetsentry.core.exceptions import ExecutionError, ParseError
from fleetsentry.core.fleet_config import BackupConfig, FleetConfig
from fleetsentry.models.backup import BackupCheckResult, BackupTarget
from fleetsentry.models.host import Host
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.collection import BackupCheckOutcome
from fleetsentry.schemas.host import HostTarget
from fleetsentry.services.alert_engine import AlertEngine
from fleetsentry.services.event_bus import Notifier, NullNotifier

logger = logging.getLogger(__name__)

NO_SNAPSHOTS = "No snapshots found in repository"

# 没有可用主机时备份告警挂靠的哨兵主机 ID
PLACEHOLDER_HOST_ID = 0

# restic 时间戳：纳秒精度小数、Z 或 ±hh:mm 时区
_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})(?:\.(\d+))?(.*)$")
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def restic_command(repo: str) -> str:
    return f"restic snapshots --repo {shlex.quote(repo)} --json --latest 1"


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    """解析 RFC 3339 时间戳（小数部分截断到微秒），无法解析时返回 None。"""
    if not isinstance(text, str) or not text:
        return None
    match = _TIMESTAMP_RE.match(text.strip())
    if not match:
        return None
    base, fraction, zone = match.groups()
    zone = zone.strip()
    if zone in ("Z", "z"):
        zone = "+00:00"
    normalized = base.replace(" ", "T")
    if fraction:
        normalized += "." + (fraction + "000000")[:6]
    try:
        value = datetime.fromisoformat(normalized + zone)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_snapshots(stdout: str) -> tuple[Optional[str], str]:
    """解析 restic JSON 输出，返回 (最新快照时间文本, 详情)。

    取时间最新的一条快照；空数组表示仓库中还没有快照，返回 (None, NO_SNAPSHOTS)。

    Raises:
        ParseError: 输出不是合法 JSON 或结构不符。
    """
    try:
        data = json.loads(stdout)
    except ValueError as e:
        raise ParseError(f"Failed to parse restic output: {e}") from e
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ParseError("Failed to parse restic output: expected a JSON array")
    if not data:
        return None, NO_SNAPSHOTS

    if not all(isinstance(s, dict) for s in data):
        raise ParseError("Failed to parse restic output: snapshot entry is not an object")

    # 每个 host/paths 分组各返回一条，数组不保证按时间排序
    latest = max(data, key=lambda s: parse_timestamp(s.get("time")) or _OLDEST)
    hostname = latest.get("hostname") or "unknown"
    paths = ", ".join(str(p) for p in latest.get("paths") or [])
    return latest.get("time"), f"host={hostname} paths={paths}"


def compute_status(
    last_success: Union[datetime, str, None], stale_hours: float, now: Optional[datetime] = None
) -> str:
    """error：缺失或无法解析；stale：距今严格大于 stale_hours；否则 ok。"""
    if isinstance(last_success, str):
        last_success = parse_timestamp(last_success)
    if last_success is None:
        return "error"
    if last_success.tzinfo is None:
        last_success = last_success.replace(tzinfo=timezone.utc)
    age = (now or utcnow()) - last_success
    return "stale" if age > timedelta(hours=stale_hours) else "ok"


class BackupStatusChecker:
    """检查所有 restic 备份目标，记录状态并驱动 backup_stale 告警。"""

    def __init__(
        self,
        executor: RemoteExecutor,
        session_factory: async_sessionmaker,
        alert_engine: AlertEngine,
        notifier: Optional[Notifier] = None,
        timeout_ms: Optional[int] = None,
        alert_host: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.executor = executor
        self.session_factory = session_factory
        self.alert_engine = alert_engine
        self.notifier = notifier or NullNotifier()
        self.timeout_ms = timeout_ms or settings.backup_timeout_ms
        self.alert_host = settings.backup_alert_host if alert_host is None else alert_host
        self.clock = clock

    async def placeholder_host(self, db: AsyncSession) -> HostTarget:
        """备份告警挂靠的主机：配置指定的主机 → 第一台本机 → 哨兵 ID 0。"""
        if self.alert_host:
            host = (await db.execute(select(Host).where(Host.name == self.alert_host))).scalar_one_or_none()
            if host is not None:
                return HostTarget.model_validate(host)
            logger.warning("Backup alert host %r not found, falling back", self.alert_host)
        result = await db.execute(select(Host).where(Host.kind == "local").order_by(Host.id).limit(1))
        host = result.scalar_one_or_none()
        if host is not None:
            return HostTarget.model_validate(host)
        return HostTarget(id=PLACEHOLDER_HOST_ID, name="backups", kind="local")

    async def check_target(self, backup: BackupConfig, hosts: dict[str, HostTarget]) -> BackupCheckOutcome:
        """检查单个仓库，所有预期内的失败都转换为 error 结果。"""
        last_success = None
        try:
            if backup.check_host:
                host = hosts.get(backup.check_host)
                if host is None:
                    raise ExecutionError(f"Check host {backup.check_host!r} not found", host=backup.check_host)
            else:
                host = HostTarget(name="localhost", kind="local")
            stdout = await self.executor.execute(
                host, restic_command(backup.repo), self.timeout_ms, env=backup.secret_env()
            )
            time_text, details = parse_snapshots(stdout)
            if time_text is not None:
                last_success = parse_timestamp(time_text)
                if last_success is None:
                    details = f"Unparsable snapshot time {time_text!r}; {details}"
            now = self.clock()
            status = compute_status(last_success, backup.stale_hours, now)
        except (ExecutionError, ParseError) as e:
            logger.error("[backup] %s: check failed: %s", backup.name, e)
            now = self.clock()
            status = "error"
            details = str(e)

        return BackupCheckOutcome(
            name=backup.name,
            status=status,
            last_success=last_success,
            last_check=now,
            stale_hours=backup.stale_hours,
            details=details,
        )

    async def record(self, outcome: BackupCheckOutcome, placeholder: HostTarget) -> None:
        """更新 backups 当前状态、追加 backup_history、评估告警并通知观察者。"""
        async with self.session_factory() as db:
            target = (
                await db.execute(select(BackupTarget).where(BackupTarget.name == outcome.name))
            ).scalar_one_or_none()
            if target is None:
                target = BackupTarget(name=outcome.name)
                db.add(target)
            target.stale_hours = outcome.stale_hours
            target.last_check = outcome.last_check
            target.last_success = outcome.last_success
            target.status = outcome.status
            target.details = outcome.details
            await db.flush()

            db.add(BackupCheckResult(
                backup_id=target.id,
                backup_name=outcome.name,
                checked_at=outcome.last_check,
                last_success=outcome.last_success,
                status=outcome.status,
                details=outcome.details,
            ))
            await self.alert_engine.evaluate_backup_rules(db, outcome, placeholder)
            await db.commit()
        self.notifier.notify("backup", outcome.to_event())

    async def check_all(self, fleet: FleetConfig) -> list[BackupCheckOutcome]:
        """顺序检查全部 restic 目标，返回每个目标的结果。"""
        async with self.session_factory() as db:
            rows = (await db.execute(select(Host))).scalars().all()
            hosts = {h.name: HostTarget.model_validate(h) for h in rows}
            placeholder = await self.placeholder_host(db)

        outcomes = []
        for backup in fleet.backups:
            if backup.type != "restic":
                logger.warning("[backup] %s: unsupported type %r, skipped", backup.name, backup.type)
                continue
            try:
                outcome = await self.check_target(backup, hosts)
                await self.record(outcome, placeholder)
            except Exception:
                logger.exception("[backup] %s: unexpected error", backup.name)
                continue
            logger.info("[backup] %s: %s (%s)", outcome.name, outcome.status, outcome.details)
            outcomes.append(outcome)
        return outcomes
