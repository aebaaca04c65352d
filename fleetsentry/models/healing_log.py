"""
自愈日志模型 (Healing Log Model)

记录每次容器自动重启的审计轨迹，成功与失败都记录，写入后不再修改。

Append-only audit trail of every automated container restart, successful or not.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow


class HealingLogEntry(Base):
    """自愈日志表 (Healing Log Table)"""
    __tablename__ = "healing_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    container_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # 容器名称 (Container Name)
    container_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # 容器 ID (Container ID)
    action: Mapped[str] = mapped_column(String(20), nullable=False, default="restart")  # 动作 (Action)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 触发原因 (Reason)
    result: Mapped[str] = mapped_column(String(20), nullable=False)  # success/failed
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 错误详情 (Error Detail)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )  # 执行时间 (Executed Time)
