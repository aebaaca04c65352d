"""
采集结果的 Pydantic 数据模型。

用于采集器、告警引擎和自愈引擎之间传递，与 SQLAlchemy ORM 模型互补；
to_event() 生成可 JSON 序列化的通知负载。
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MetricReading(BaseModel):
    """一次指标脚本输出解析后的结果，字段解析失败时为 None。"""
    cpu_percent: Optional[float] = None
    memory_percent: Optional[float] = None
    memory_used_mb: Optional[int] = None
    memory_total_mb: Optional[int] = None
    disk_percent: Optional[float] = None
    disk_used_gb: Optional[float] = None
    disk_total_gb: Optional[float] = None
    load_1m: Optional[float] = None
    load_5m: Optional[float] = None
    load_15m: Optional[float] = None
    uptime_seconds: Optional[int] = None

    def value_of(self, metric: str) -> Optional[float]:
        value = getattr(self, metric, None)
        return None if value is None else float(value)


class ContainerRecord(BaseModel):
    """docker ps 一行，合并 docker stats 之后的容器记录。"""
    container_id: str
    name: str
    image: str = ""
    status: str
    uptime: Optional[str] = None
    cpu_percent: Optional[float] = None
    memory_mb: Optional[float] = None
    auto_restart: bool = False

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class BackupCheckOutcome(BaseModel):
    """单个备份目标的检查结果。"""
    name: str
    status: str  # ok / stale / error
    last_success: Optional[datetime] = None
    last_check: datetime
    stale_hours: float
    details: str = ""

    def age_hours(self) -> Optional[float]:
        if self.last_success is None:
            return None
        return (self.last_check - self.last_success).total_seconds() / 3600

    def to_event(self) -> dict:
        return self.model_dump(mode="json")


class HealingOutcome(BaseModel):
    """一次容器重启尝试的结果。"""
    host_id: int
    host_name: str
    container_name: str
    container_id: Optional[str] = None
    action: str = "restart"
    result: str  # success / failed
    error_message: Optional[str] = None
    executed_at: datetime

    def to_event(self) -> dict:
        return self.model_dump(mode="json")
