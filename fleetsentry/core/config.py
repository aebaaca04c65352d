"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 FleetSentry 守护进程的运行参数，支持从 .env 文件和环境变量读取。
涵盖数据库连接、采集周期、远程执行超时、SSH 客户端和自愈开关等配置。

Uses Pydantic Settings to manage the runtime parameters of the FleetSentry daemon,
supporting .env files and environment variables. Covers database connection,
collection intervals, remote execution timeouts, SSH client and healing switches.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    守护进程全局配置类 (Daemon Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。
    主机清单、备份目标和告警规则属于静态清单，由 YAML 文件描述（见 fleet_config）。

    Field names map to same-named environment variables (case insensitive).
    The host inventory, backup targets and alert rules live in the YAML fleet file.
    """

    # 数据库配置 (Database Configuration)
    database_url_override: str = ""  # 完整连接串，设置后忽略 POSTGRES_* (Full URL, overrides POSTGRES_*)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "fleetsentry"  # 数据库名称 (Database Name)
    postgres_user: str = "fleetsentry"  # 数据库用户名 (Database Username)
    postgres_password: str = "fleetsentry_dev_password"  # 数据库密码 (Database Password)

    # 主机清单 (Fleet Inventory)
    fleet_config: str = "/etc/fleetsentry/fleet.yaml"  # YAML 清单路径 (Fleet YAML Path)

    # 采集周期 (Collection Intervals)
    collect_interval_seconds: int = 60  # 指标 + 容器采集间隔 (Metrics + Container Interval)
    backup_interval_seconds: int = 300  # 备份检查间隔，restic 较重 (Backup Check Interval)

    # 远程执行超时，单位毫秒 (Remote Execution Timeouts, Milliseconds)
    metrics_local_timeout_ms: int = 10_000  # 本机指标脚本 (Local Metrics Script)
    metrics_remote_timeout_ms: int = 15_000  # 远程指标脚本 (Remote Metrics Script)
    docker_timeout_ms: int = 10_000  # docker ps / docker stats
    heal_timeout_ms: int = 15_000  # docker start
    backup_timeout_ms: int = 30_000  # restic snapshots

    # SSH 客户端 (SSH Client)
    ssh_binary: str = "ssh"  # OpenSSH 客户端路径 (OpenSSH Client Binary)
    ssh_connect_timeout: int = 10  # ConnectTimeout 选项，秒 (ConnectTimeout Option, Seconds)

    # 备份告警占位主机 (Placeholder Host for Backup Alerts)
    backup_alert_host: str = ""  # 为空时取第一台本机类型主机 (Empty: first local host)

    # 自愈 (Healing)
    healing_enabled: bool = True  # 是否自动重启崩溃容器 (Restart Crashed Containers)

    # 最新指标视图 (Latest Metrics View)
    latest_metrics_max_age_seconds: int = 180  # 超过此时长的主机视为不可见 (Hide Hosts Older Than This)

    @property
    def database_url(self) -> str:
        """
        构造异步数据库连接 URL (Build Async Database Connection URL)

        优先使用 DATABASE_URL_OVERRIDE（例如 sqlite+aiosqlite 单机部署），
        否则根据 POSTGRES_* 参数生成 asyncpg 连接串。
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Auto-load .env)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()
