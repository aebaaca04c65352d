"""
主机清单配置加载模块。

定义主机、备份目标和告警规则的配置数据类，并从 YAML 文件加载。
支持时间间隔简写（如 '30s'、'5m'），备份仓库密钥只从环境变量或密码文件读取，不写入数据库。

示例::

    hosts:
      - name: web-01
        type: local
      - name: db-01
        type: remote
        address: 10.0.0.12
        user: root
        key_path: /root/.ssh/id_ed25519
    backups:
      - name: nightly
        repo: sftp:backup@nas:/srv/restic
        stale_hours: 26
        check_host: db-01
    alert_rules:
      - metric: cpu_percent
        operator: ">"
        threshold: 90
        severity: warning
        cooldown: 30m
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from fleetsentry.core.exceptions import ConfigError

HOST_KINDS = {"local", "remote"}
ALERT_METRICS = {
    "cpu_percent", "memory_percent", "disk_percent",
    "load_1m", "load_5m", "load_15m",
    "service_down", "container_down", "backup_stale",
}
ALERT_OPERATORS = {">", "<", "=="}
SEVERITIES = {"info", "warning", "critical"}


@dataclass
class HostConfig:
    """被监控主机配置。"""
    name: str = ""
    kind: str = "remote"  # local / remote
    address: str = ""
    user: str = "root"
    port: int = 22
    key_path: Optional[str] = None
    enabled: bool = True


@dataclass
class BackupConfig:
    """restic 备份目标配置。"""
    name: str = ""
    type: str = "restic"
    repo: str = ""
    stale_hours: float = 24
    check_host: Optional[str] = None  # 仓库只能从某台主机访问时设置
    password_file: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    def secret_env(self) -> dict:
        """构造单次检查使用的环境变量（仓库密码、云存储凭据）。"""
        env = {}
        env_key = "RESTIC_PASSWORD_" + self.name.upper().replace("-", "_")
        if os.environ.get(env_key):
            env["RESTIC_PASSWORD"] = os.environ[env_key]
        elif self.password_file:
            env["RESTIC_PASSWORD_FILE"] = self.password_file
        if self.aws_access_key_id:
            env["AWS_ACCESS_KEY_ID"] = self.aws_access_key_id
        if self.aws_secret_access_key:
            env["AWS_SECRET_ACCESS_KEY"] = self.aws_secret_access_key
        return env


@dataclass
class AlertRuleConfig:
    """告警规则配置。"""
    metric: str = ""
    operator: str = ">"
    threshold: float = 0.0
    severity: str = "warning"
    name: str = ""
    host: Optional[str] = None  # None 表示适用于所有主机
    cooldown_minutes: int = 30
    enabled: bool = True


@dataclass
class FleetConfig:
    """清单主配置，聚合主机、备份和告警规则。"""
    hosts: List[HostConfig] = field(default_factory=list)
    backups: List[BackupConfig] = field(default_factory=list)
    alert_rules: List[AlertRuleConfig] = field(default_factory=list)

    def host_names(self) -> set:
        return {h.name for h in self.hosts}


def _parse_interval(val) -> int:
    """解析时间间隔（秒），支持 '15s'、'1m'、'2h' 等简写格式。"""
    if isinstance(val, int):
        return val
    s = str(val).strip().lower()
    if s.endswith("s"):
        return int(s[:-1])
    if s.endswith("m"):
        return int(s[:-1]) * 60
    if s.endswith("h"):
        return int(s[:-1]) * 3600
    return int(s)


def _number(value, cast, what: str):
    """数值字段转换，失败时抛出指明条目的 ConfigError。"""
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {what}: {value!r}") from None


def _parse_cooldown_minutes(rule: dict) -> int:
    if "cooldown_minutes" in rule:
        return _number(rule["cooldown_minutes"], int, f"cooldown_minutes for alert rule '{rule.get('metric', '')}'")
    if "cooldown" in rule:
        return _number(rule["cooldown"], _parse_interval, f"cooldown for alert rule '{rule.get('metric', '')}'") // 60
    return AlertRuleConfig.cooldown_minutes


def parse_fleet_config(data: dict) -> FleetConfig:
    """将 YAML 解析结果转换为 FleetConfig 并校验。

    Raises:
        ConfigError: 主机类型、指标、操作符或严重程度无效，或引用了未知主机。
    """
    cfg = FleetConfig()

    # 解析主机配置
    for h in data.get("hosts") or []:
        name = str(h.get("name", "")).strip()
        kind = h.get("type", h.get("kind", "remote"))
        if kind == "ssh":
            kind = "remote"
        if kind not in HOST_KINDS:
            raise ConfigError(f"Unknown host type '{kind}' for host '{h.get('name', '')}'")
        host = HostConfig(
            name=name,
            kind=kind,
            address=h.get("address", h.get("ssh_host", "")) or "",
            user=h.get("user", h.get("ssh_user", "root")) or "root",
            port=_number(h.get("port", 22), int, f"port for host '{name}'"),
            key_path=h.get("key_path", h.get("ssh_key_path")),
            enabled=bool(h.get("enabled", True)),
        )
        if not host.name:
            raise ConfigError("Host entry without a name")
        if host.kind == "remote" and not host.address:
            raise ConfigError(f"Remote host '{host.name}' has no address")
        cfg.hosts.append(host)

    names = cfg.host_names()
    if len(names) != len(cfg.hosts):
        raise ConfigError("Duplicate host names in fleet config")

    # 解析备份目标
    for b in data.get("backups") or []:
        name = str(b.get("name", "")).strip()
        backup = BackupConfig(
            name=name,
            type=b.get("type", "restic"),
            repo=b.get("repo", b.get("repo_path", "")),
            stale_hours=_number(b.get("stale_hours", 24), float, f"stale_hours for backup '{name}'"),
            check_host=b.get("check_host"),
            password_file=b.get("password_file"),
            aws_access_key_id=b.get("aws_access_key_id"),
            aws_secret_access_key=b.get("aws_secret_access_key"),
        )
        if not backup.name:
            raise ConfigError("Backup entry without a name")
        if backup.check_host and backup.check_host not in names:
            raise ConfigError(f"Backup '{backup.name}' references unknown check_host '{backup.check_host}'")
        cfg.backups.append(backup)

    # 解析告警规则
    for r in data.get("alert_rules") or []:
        rule = AlertRuleConfig(
            metric=r.get("metric", ""),
            operator=str(r.get("operator", ">")),
            threshold=_number(r.get("threshold", 0), float, f"threshold for alert rule '{r.get('metric', '')}'"),
            severity=r.get("severity", "warning"),
            name=r.get("name", ""),
            host=r.get("host"),
            cooldown_minutes=_parse_cooldown_minutes(r),
            enabled=bool(r.get("enabled", True)),
        )
        if rule.metric not in ALERT_METRICS:
            raise ConfigError(f"Unknown alert metric '{rule.metric}'")
        if rule.operator not in ALERT_OPERATORS:
            raise ConfigError(f"Unknown alert operator '{rule.operator}'")
        if rule.severity not in SEVERITIES:
            raise ConfigError(f"Unknown alert severity '{rule.severity}'")
        if rule.host and rule.host not in names:
            raise ConfigError(f"Alert rule '{rule.metric}' references unknown host '{rule.host}'")
        if not rule.name:
            rule.name = f"{rule.metric} {rule.operator} {rule.threshold:g}"
        cfg.alert_rules.append(rule)

    return cfg


def load_fleet_config(path: str) -> FleetConfig:
    """从 YAML 文件加载主机清单。

    Args:
        path: 配置文件路径。

    Returns:
        解析后的 FleetConfig 实例。

    Raises:
        FileNotFoundError: 配置文件不存在时抛出。
        ConfigError: 配置内容无效时抛出。
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(p) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Fleet config must be a mapping: {path}")

    return parse_fleet_config(data)
