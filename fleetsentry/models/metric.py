"""
主机指标模型 (Host Metric Model)

定义主机性能指标的时间序列表，每个采集周期每台主机至多一行，只追加不修改。
采集失败的周期不写入任何行（不会写入全零的占位样本）。

Defines the append-only time series of host metrics: at most one row per host per
cycle. Failed cycles write nothing (no zero-filled placeholder sample).
"""
from datetime import datetime

from sqlalchemy import Integer, Float, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow


class MetricSample(Base):
    """
    主机指标表 (Host Metric Table)

    CPU/内存/磁盘百分比、内存与磁盘绝对用量、1/5/15 分钟负载和运行时长。
    任一字段解析失败时为 NULL，其余字段照常写入。

    Percentages, absolute memory/disk usage, load averages and uptime. A field that
    failed to parse is NULL while the rest of the row is kept.
    """
    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )  # 采集时间 (Collection Time)
    # CPU 与内存 (CPU and Memory)
    cpu_percent: Mapped[float | None] = mapped_column(Float, nullable=True)  # CPU 使用率 (CPU Usage %)
    memory_percent: Mapped[float | None] = mapped_column(Float, nullable=True)  # 内存使用率 (Memory Usage %)
    memory_used_mb: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 已用内存 MB (Used Memory MB)
    memory_total_mb: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 总内存 MB (Total Memory MB)
    # 根分区磁盘 (Root Filesystem)
    disk_percent: Mapped[float | None] = mapped_column(Float, nullable=True)  # 磁盘使用率 (Disk Usage %)
    disk_used_gb: Mapped[float | None] = mapped_column(Float, nullable=True)  # 已用磁盘 GB (Used Disk GB)
    disk_total_gb: Mapped[float | None] = mapped_column(Float, nullable=True)  # 磁盘总量 GB (Total Disk GB)
    # 负载 (Load Averages)
    load_1m: Mapped[float | None] = mapped_column(Float, nullable=True)  # 1 分钟负载 (1-minute Load)
    load_5m: Mapped[float | None] = mapped_column(Float, nullable=True)  # 5 分钟负载 (5-minute Load)
    load_15m: Mapped[float | None] = mapped_column(Float, nullable=True)  # 15 分钟负载 (15-minute Load)
    uptime_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 运行时长秒 (Uptime Seconds)
