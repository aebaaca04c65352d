"""
告警模型 (Alert Model)

定义告警规则和告警事件（历史）的表结构。
同一 (规则, 主机, 实体) 任一时刻至多有一条 resolved_at 为空的事件：触发前检查冷却窗口，
冷却窗口外的旧事件以 superseded 关闭后再插入新事件；条件恢复时关闭该键下所有未解决事件。

Defines alert rules and the alert event history. For a given (rule, host, entity) at
most one event has resolved_at NULL: firing checks the cooldown window first, an open
event older than the window is closed as superseded before the new one is inserted,
and recovery closes every open event for the key.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, Boolean, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow

# 由阈值比较驱动的数值指标 (Numeric Metrics Evaluated by Threshold)
METRIC_ALERT_TYPES = ("cpu_percent", "memory_percent", "disk_percent", "load_1m", "load_5m", "load_15m")


class AlertRule(Base):
    """
    告警规则表 (Alert Rule Table)

    指标 + 比较操作符 + 阈值 + 严重程度，可限定到单台主机（host_id 为空表示所有主机），
    冷却窗口以分钟计。

    Metric, operator, threshold and severity, optionally scoped to one host
    (NULL host_id applies to all hosts), with a cooldown window in minutes.
    """
    __tablename__ = "alert_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")  # 规则名称 (Rule Name)
    metric: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # 指标名称 (Metric Name)
    operator: Mapped[str] = mapped_column(String(5), nullable=False, default=">")  # 比较操作符：>, <, == (Operator)
    threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # 触发阈值 (Threshold)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="warning")  # info/warning/critical
    host_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)  # 限定主机 (Host Scope)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # 是否启用 (Enabled)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)  # 冷却分钟数 (Cooldown Minutes)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )  # 创建时间 (Creation Time)


class AlertEvent(Base):
    """
    告警事件表 (Alert Event Table)

    每次触发一行。entity 为容器名或备份名，主机级告警为空串；冷却与恢复都按
    (rule_id, host_id, entity) 精确匹配，不依赖消息文本。

    One row per firing. entity is the container or backup name ("" for host-level
    alerts); cooldown and resolution match on (rule_id, host_id, entity) exactly.
    """
    __tablename__ = "alert_history"
    __table_args__ = (
        Index("ix_alert_history_open_key", "rule_id", "host_id", "entity", "resolved_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    rule_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 告警规则 ID (Alert Rule ID)
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    entity: Mapped[str] = mapped_column(String(255), nullable=False, default="")  # 容器/备份名 (Container/Backup Name)
    fired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )  # 触发时间 (Fired Time)
    metric_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 触发时的指标值 (Observed Value)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")  # 告警消息 (Rendered Message)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 解决时间 (Resolved Time)
    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # auto / superseded
