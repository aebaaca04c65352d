"""
备份模型 (Backup Models)

BackupTarget 保存每个备份目标的当前状态，状态由每次检查重新推导，不是权威数据；
BackupCheckResult 追加记录每次检查结果，用于趋势分析。

BackupTarget holds the current, derived status of each backup target, recomputed on
every check. BackupCheckResult is the append-only log of check outcomes.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow


class BackupTarget(Base):
    """备份目标表 (Backup Target Table)"""
    __tablename__ = "backups"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)  # 目标名称 (Target Name)
    stale_hours: Mapped[float] = mapped_column(Float, nullable=False, default=24.0)  # 过期阈值小时 (Staleness Hours)
    last_check: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近检查 (Last Check)
    last_success: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近成功快照 (Last Snapshot)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # ok/stale/error
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 检查详情 (Details)


class BackupCheckResult(Base):
    """备份检查历史表 (Backup Check History Table)"""
    __tablename__ = "backup_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    backup_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 备份目标 ID (Backup Target ID)
    backup_name: Mapped[str] = mapped_column(String(255), nullable=False)  # 备份目标名称 (Backup Target Name)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )  # 检查时间 (Check Time)
    last_success: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近成功快照 (Last Snapshot)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # ok/stale/error
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 检查详情 (Details)
