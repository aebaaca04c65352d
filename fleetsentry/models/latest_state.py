"""
最新状态索引模型 (Latest State Index Model)

显式记录 (类型, 主机, 实体) → 最新一行记录 ID，与插入在同一事务内更新，
查询"当前状态"时无需对时间序列表做 max(collected_at) 聚合扫描。

Explicit (kind, host, entity) → latest record id, updated in the same transaction
as each insert so "current state" reads never scan the time series.
"""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fleetsentry.core.database import Base, utcnow

KIND_METRIC = "metric"
KIND_CONTAINER = "container"


class LatestState(Base):
    """最新状态索引表 (Latest State Index Table)"""
    __tablename__ = "latest_state"
    __table_args__ = (UniqueConstraint("kind", "host_id", "entity", name="uq_latest_state_key"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # metric / container
    host_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 主机 ID (Host ID)
    entity: Mapped[str] = mapped_column(String(255), nullable=False, default="")  # 容器名，指标为空串 (Container Name or "")
    record_id: Mapped[int] = mapped_column(Integer, nullable=False)  # 最新记录 ID (Latest Record ID)
    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )  # 最新记录采集时间 (Latest Collection Time)
