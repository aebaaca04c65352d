"""
容器模型 (Container Models)

ContainerSnapshot 是只追加的容器清单时间序列；ContainerSetting 保存每个 (主机, 容器名)
的 auto_restart 开关。docker ps 不报告该开关，因此采集器每个周期从设置表读取并复制进快照，
自愈引擎也从设置表读取，历史快照无需回写。

ContainerSnapshot is the append-only container inventory series. ContainerSetting
holds the auto_restart flag per (host, container name); the collector copies it into
each new snapshot and the healing engine reads it from here.
"""
from datetime import datetime

from sqlalchemy import String, Integer, Float, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow


class ContainerSnapshot(Base):
    """
    容器快照表 (Container Snapshot Table)

    某主机某周期的一个容器：标识、镜像、归一化状态、运行时长（仅 running）和资源占用。

    One container on one host in one cycle: identity, image, normalized status,
    uptime (running only) and resource usage.
    """
    __tablename__ = "containers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )  # 采集时间 (Collection Time)
    container_id: Mapped[str] = mapped_column(String(64), nullable=False)  # 容器 ID (Container ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # 容器名称 (Container Name)
    image: Mapped[str | None] = mapped_column(String(500), nullable=True)  # 镜像 (Image)
    status: Mapped[str] = mapped_column(String(50), nullable=False)  # 归一化状态 (Normalized Status)
    uptime: Mapped[str | None] = mapped_column(String(100), nullable=True)  # 运行时长文本 (Human Uptime)
    cpu_percent: Mapped[float | None] = mapped_column(Float, nullable=True)  # CPU 占用 (CPU %)
    memory_mb: Mapped[float | None] = mapped_column(Float, nullable=True)  # 内存占用 MB (Memory MB)
    auto_restart: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 自动重启开关 (Auto-restart Flag)


class ContainerSetting(Base):
    """
    容器设置表 (Container Setting Table)

    (主机, 容器名) → auto_restart，自愈开关的权威来源。

    (host, container name) → auto_restart, the authoritative source of the flag.
    """
    __tablename__ = "container_settings"
    __table_args__ = (UniqueConstraint("host_id", "container_name", name="uq_container_settings_host_name"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    container_name: Mapped[str] = mapped_column(String(255), nullable=False)  # 容器名称 (Container Name)
    auto_restart: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)  # 自动重启开关 (Auto-restart Flag)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )  # 更新时间 (Update Time)
