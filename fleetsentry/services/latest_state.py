"""
最新状态索引服务。

record_latest() 与时间序列插入在同一事务内调用；读取"当前"指标/容器时经索引直接定位，
不做 max(collected_at) 聚合扫描。写入只按 (kind, host_id, entity) 键进行，不同主机并发互不影响。
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsentry.core.database import as_utc, utcnow
from fleetsentry.models.container import ContainerSnapshot
from fleetsentry.models.host import Host
from fleetsentry.models.latest_state import KIND_CONTAINER, KIND_METRIC, LatestState
from fleetsentry.models.metric import MetricSample


async def record_latest(
    db: AsyncSession, kind: str, host_id: int, entity: str, record_id: int, collected_at: datetime
) -> None:
    """更新 (kind, host_id, entity) 的最新记录指针，不存在则插入。"""
    result = await db.execute(
        select(LatestState).where(
            LatestState.kind == kind,
            LatestState.host_id == host_id,
            LatestState.entity == entity,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        db.add(LatestState(
            kind=kind, host_id=host_id, entity=entity,
            record_id=record_id, collected_at=collected_at,
        ))
    else:
        row.record_id = record_id
        row.collected_at = collected_at


async def latest_metrics(
    db: AsyncSession, max_age: Optional[timedelta] = None, now: Optional[datetime] = None
) -> list[tuple[Host, MetricSample]]:
    """每台主机的最新指标样本。

    设置 max_age 时，最新样本早于 now - max_age 的主机（持续采集失败）不出现在结果中。
    """
    stmt = (
        select(Host, MetricSample)
        .join(LatestState, LatestState.host_id == Host.id)
        .join(MetricSample, MetricSample.id == LatestState.record_id)
        .where(LatestState.kind == KIND_METRIC, LatestState.entity == "")
        .order_by(Host.name)
    )
    rows = (await db.execute(stmt)).all()
    if max_age is None:
        return [(h, m) for h, m in rows]
    cutoff = (now or utcnow()) - max_age
    return [(h, m) for h, m in rows if as_utc(m.collected_at) >= cutoff]


async def latest_containers(db: AsyncSession, host_id: int) -> list[ContainerSnapshot]:
    """某主机每个容器的最新快照。"""
    stmt = (
        select(ContainerSnapshot)
        .join(LatestState, LatestState.record_id == ContainerSnapshot.id)
        .where(LatestState.kind == KIND_CONTAINER, LatestState.host_id == host_id)
        .order_by(ContainerSnapshot.name)
    )
    return list((await db.execute(stmt)).scalars().all())
