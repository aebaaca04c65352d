"""
配置种子数据模块 (Configuration Seed Data Module)

把 YAML 清单中的主机、备份目标和告警规则写入数据库。可重复执行：
主机和备份目标按名称去重；告警规则只在规则表为空时写入，之后以数据库中的规则为准，
清单未声明规则时使用 DEFAULT_ALERT_RULES。

Writes hosts, backup targets and alert rules from the YAML inventory into the
database. Idempotent: hosts and backups are keyed by name; rules are only seeded
into an empty rules table, falling back to DEFAULT_ALERT_RULES.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsentry.core.fleet_config import FleetConfig
from fleetsentry.models.alert import AlertRule
from fleetsentry.models.backup import BackupTarget
from fleetsentry.models.host import Host

logger = logging.getLogger(__name__)

# 默认告警规则 (Default Alert Rules)，全部作用于所有主机
DEFAULT_ALERT_RULES = [
    {"name": "CPU usage high", "metric": "cpu_percent", "operator": ">", "threshold": 90.0, "severity": "warning"},
    {"name": "Memory usage high", "metric": "memory_percent", "operator": ">", "threshold": 90.0, "severity": "warning"},
    {"name": "Disk usage high", "metric": "disk_percent", "operator": ">", "threshold": 90.0, "severity": "critical"},
    {"name": "Host unreachable", "metric": "service_down", "operator": "==", "threshold": 1.0, "severity": "critical"},
    {"name": "Container down", "metric": "container_down", "operator": "==", "threshold": 1.0, "severity": "warning"},
    {"name": "Backup stale", "metric": "backup_stale", "operator": "==", "threshold": 1.0, "severity": "warning"},
]


async def seed_from_config(session: AsyncSession, fleet: FleetConfig) -> dict:
    """
    清单种入器 (Inventory Seeder)

    Args:
        session: 异步数据库会话
        fleet: 已校验的清单配置

    Returns:
        本次新增的主机、备份目标和告警规则数量
    """
    # 1. 主机：按名称插入缺失项 (Hosts: insert missing by name)
    result = await session.execute(select(Host))
    hosts = {h.name: h for h in result.scalars().all()}
    new_hosts = 0
    for cfg in fleet.hosts:
        if cfg.name in hosts:
            continue
        host = Host(
            name=cfg.name,
            kind=cfg.kind,
            address=cfg.address or None,
            ssh_user=cfg.user if cfg.kind == "remote" else None,
            ssh_port=cfg.port,
            ssh_key_path=cfg.key_path,
            enabled=cfg.enabled,
        )
        session.add(host)
        hosts[cfg.name] = host
        new_hosts += 1
    await session.flush()  # 获取新主机 ID，规则的 host 映射需要

    # 2. 备份目标：按名称插入，已存在时同步阈值 (Backups: insert by name, sync threshold)
    result = await session.execute(select(BackupTarget))
    backups = {b.name: b for b in result.scalars().all()}
    new_backups = 0
    for cfg in fleet.backups:
        target = backups.get(cfg.name)
        if target is None:
            session.add(BackupTarget(name=cfg.name, stale_hours=cfg.stale_hours))
            new_backups += 1
        else:
            target.stale_hours = cfg.stale_hours

    # 3. 告警规则：仅规则表为空时写入 (Rules: only into an empty table)
    new_rules = 0
    rule_count = (await session.execute(select(func.count(AlertRule.id)))).scalar_one()
    if rule_count == 0:
        if fleet.alert_rules:
            for cfg in fleet.alert_rules:
                session.add(AlertRule(
                    name=cfg.name,
                    metric=cfg.metric,
                    operator=cfg.operator,
                    threshold=cfg.threshold,
                    severity=cfg.severity,
                    host_id=hosts[cfg.host].id if cfg.host else None,
                    enabled=cfg.enabled,
                    cooldown_minutes=cfg.cooldown_minutes,
                ))
                new_rules += 1
        else:
            for rule_data in DEFAULT_ALERT_RULES:
                session.add(AlertRule(**rule_data))
                new_rules += 1

    await session.commit()
    logger.info("Seeded %d host(s), %d backup target(s), %d alert rule(s)", new_hosts, new_backups, new_rules)
    return {"hosts": new_hosts, "backups": new_backups, "alert_rules": new_rules}
