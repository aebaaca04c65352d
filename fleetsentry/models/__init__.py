"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型。表结构即持久化契约：
hosts, metrics, containers, container_settings, latest_state, alert_rules,
alert_history, backups, backup_history, healing_log。
"""
from fleetsentry.models.host import Host
from fleetsentry.models.metric import MetricSample
from fleetsentry.models.container import ContainerSnapshot, ContainerSetting
from fleetsentry.models.latest_state import LatestState
from fleetsentry.models.alert import AlertRule, AlertEvent
from fleetsentry.models.backup import BackupTarget, BackupCheckResult
from fleetsentry.models.healing_log import HealingLogEntry

__all__ = [
    "Host", "MetricSample", "ContainerSnapshot", "ContainerSetting", "LatestState",
    "AlertRule", "AlertEvent", "BackupTarget", "BackupCheckResult", "HealingLogEntry",
]
