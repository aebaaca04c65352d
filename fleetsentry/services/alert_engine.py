"""
告警引擎模块。

接收采集器的输出，评估已启用的告警规则，管理 触发 / 冷却 / 自动恢复 生命周期。
每个 (规则, 主机, 实体) 只有两种状态：inactive（无未解决事件）和 active（恰好一条未解决事件）。

- 条件成立且冷却窗口内无未解决事件 → 插入新事件并通知观察者；
  窗口外残留的未解决事件以 superseded 关闭，保证至多一条未解决事件。
- 条件成立且冷却窗口内已有未解决事件 → 抑制重复触发。
- 条件不成立 → 关闭该键下所有未解决事件（已是 inactive 时为空操作）。

数值规则（cpu_percent 等）按阈值比较；service_down / container_down / backup_stale
由采集器事件驱动，只在对应采集器下次成功时恢复。
"""
import logging
import operator as op
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsentry.core.database import as_utc, utcnow
from fleetsentry.models.alert import METRIC_ALERT_TYPES, AlertEvent, AlertRule
from fleetsentry.schemas.collection import BackupCheckOutcome, ContainerRecord, MetricReading
from fleetsentry.schemas.host import HostTarget
from fleetsentry.services.event_bus import Notifier, NullNotifier

logger = logging.getLogger(__name__)

# 支持的比较运算符映射：> 和 < 为严格比较，== 为精确相等（阈值通常是整数）
OPERATORS = {
    ">": op.gt,
    "<": op.lt,
    "==": op.eq,
}


def compare(value: float, operator: str, threshold: float) -> bool:
    """按规则的操作符比较指标值与阈值，未知操作符视为不成立。"""
    cmp_fn = OPERATORS.get(operator)
    if cmp_fn is None:
        return False
    return cmp_fn(value, threshold)


class AlertEngine:
    """告警规则评估与生命周期管理。调用方负责提交事务。"""

    def __init__(self, notifier: Optional[Notifier] = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    # ── 规则与事件查询 ────────────────────────────────────────────

    async def rules_for(self, db: AsyncSession, host_id: int, metrics: Iterable[str]) -> list[AlertRule]:
        """查询适用于该主机（全局规则或限定到该主机）的已启用规则。"""
        result = await db.execute(
            select(AlertRule)
            .where(
                AlertRule.enabled == True,  # noqa: E712
                AlertRule.metric.in_(list(metrics)),
                or_(AlertRule.host_id.is_(None), AlertRule.host_id == host_id),
            )
            .order_by(AlertRule.id)
        )
        return list(result.scalars().all())

    async def open_events(self, db: AsyncSession, rule_id: int, host_id: int, entity: str = "") -> list[AlertEvent]:
        result = await db.execute(
            select(AlertEvent)
            .where(
                AlertEvent.rule_id == rule_id,
                AlertEvent.host_id == host_id,
                AlertEvent.entity == entity,
                AlertEvent.resolved_at.is_(None),
            )
            .order_by(AlertEvent.fired_at.desc())
        )
        return list(result.scalars().all())

    # ── 状态迁移 ──────────────────────────────────────────────────

    async def fire(
        self,
        db: AsyncSession,
        rule: AlertRule,
        host: HostTarget,
        value: float,
        message: str,
        entity: str = "",
        extra: Optional[dict] = None,
    ) -> Optional[AlertEvent]:
        """inactive → active。冷却窗口内已有未解决事件时返回 None（抑制）。"""
        now = self.clock()
        cutoff = now - timedelta(minutes=rule.cooldown_minutes)
        existing = await self.open_events(db, rule.id, host.id, entity)
        if any(as_utc(e.fired_at) > cutoff for e in existing):
            logger.debug("Alert suppressed by cooldown: rule=%s host=%s entity=%r", rule.id, host.name, entity)
            return None

        # 冷却窗口外仍未解决的旧事件由新事件取代
        for stale in existing:
            stale.resolved_at = now
            stale.resolution = "superseded"

        event = AlertEvent(
            rule_id=rule.id,
            host_id=host.id,
            entity=entity,
            fired_at=now,
            metric_value=value,
            message=message,
        )
        db.add(event)
        await db.flush()  # 刷新以获取 event.id
        logger.info("[alert] %s: %s", rule.severity, message)

        payload = {
            "alert_id": event.id,
            "rule_id": rule.id,
            "host_id": host.id,
            "host_name": host.name,
            "severity": rule.severity,
            "metric": rule.metric,
            "metric_value": value,
            "operator": rule.operator,
            "threshold": rule.threshold,
            "entity": entity,
            "message": message,
            "fired_at": now.isoformat(),
        }
        if extra:
            payload.update(extra)
        self.notifier.notify("alert", payload)
        return event

    async def resolve(self, db: AsyncSession, rule: AlertRule, host: HostTarget, entity: str = "") -> int:
        """active → inactive：关闭该键下所有未解决事件，返回关闭数量。"""
        events = await self.open_events(db, rule.id, host.id, entity)
        if not events:
            return 0
        now = self.clock()
        for event in events:
            event.resolved_at = now
            event.resolution = "auto"
        await db.flush()
        logger.info("[alert] Auto-resolved %d alert(s) for rule %s on %s", len(events), rule.id, host.name)
        self.notifier.notify("alert_resolved", {
            "rule_id": rule.id,
            "host_id": host.id,
            "host_name": host.name,
            "metric": rule.metric,
            "entity": entity,
            "count": len(events),
            "resolved_at": now.isoformat(),
        })
        return len(events)

    # ── 数值指标规则 ──────────────────────────────────────────────

    async def evaluate_metric_rules(self, db: AsyncSession, host: HostTarget, reading: MetricReading) -> list[AlertEvent]:
        """采集成功后调用：逐条评估数值规则，触发或自动恢复。指标值为空的规则跳过。"""
        fired = []
        for rule in await self.rules_for(db, host.id, METRIC_ALERT_TYPES):
            value = reading.value_of(rule.metric)
            if value is None:
                continue
            if compare(value, rule.operator, rule.threshold):
                message = (
                    f"{rule.metric} is {value:g} on {host.name} "
                    f"(threshold: {rule.operator} {rule.threshold:g})"
                )
                event = await self.fire(db, rule, host, value, message)
                if event is not None:
                    fired.append(event)
            else:
                await self.resolve(db, rule, host)
        return fired

    # ── 主机不可达 ────────────────────────────────────────────────

    async def fire_service_down(self, db: AsyncSession, host: HostTarget, reason: str = "") -> list[AlertEvent]:
        """指标采集失败（连接/超时/解析失败）时调用。"""
        fired = []
        message = f'Host "{host.name}" is unreachable (metric collection failed)'
        for rule in await self.rules_for(db, host.id, ("service_down",)):
            event = await self.fire(db, rule, host, 1.0, message, extra={"reason": reason} if reason else None)
            if event is not None:
                fired.append(event)
        return fired

    async def resolve_service_down(self, db: AsyncSession, host: HostTarget) -> int:
        """指标采集成功时调用：主机已恢复可达。"""
        closed = 0
        for rule in await self.rules_for(db, host.id, ("service_down",)):
            closed += await self.resolve(db, rule, host)
        return closed

    # ── 容器停止 ──────────────────────────────────────────────────

    async def evaluate_container_rules(
        self, db: AsyncSession, host: HostTarget, containers: list[ContainerRecord]
    ) -> list[AlertEvent]:
        """每个非 running 容器按规则触发，running 容器恢复对应的未解决告警。"""
        rules = await self.rules_for(db, host.id, ("container_down",))
        if not rules:
            return []
        fired = []
        for container in containers:
            for rule in rules:
                if container.is_running:
                    await self.resolve(db, rule, host, entity=container.name)
                    continue
                message = f'Container "{container.name}" is {container.status} on {host.name}'
                event = await self.fire(
                    db, rule, host, 1.0, message,
                    entity=container.name,
                    extra={"container": container.name, "status": container.status},
                )
                if event is not None:
                    fired.append(event)
        return fired

    # ── 备份过期 ──────────────────────────────────────────────────

    async def evaluate_backup_rules(
        self, db: AsyncSession, outcome: BackupCheckOutcome, placeholder: HostTarget
    ) -> list[AlertEvent]:
        """stale / error 时触发，ok 时恢复。备份告警不属于某台被监控主机，使用占位主机。"""
        rules = await self.rules_for(db, placeholder.id, ("backup_stale",))
        fired = []
        for rule in rules:
            if outcome.status == "ok":
                await self.resolve(db, rule, placeholder, entity=outcome.name)
                continue
            age = outcome.age_hours()
            if outcome.status == "stale":
                message = (
                    f'Backup "{outcome.name}" is stale: last success {age:.1f}h ago '
                    f"(threshold: {outcome.stale_hours:g}h)"
                )
            else:
                message = f'Backup "{outcome.name}" check failed: {outcome.details or "error reading repository"}'
            event = await self.fire(
                db, rule, placeholder, round(age, 1) if age is not None else 0.0, message,
                entity=outcome.name,
                extra={"backup": outcome.name, "status": outcome.status},
            )
            if event is not None:
                fired.append(event)
        return fired
