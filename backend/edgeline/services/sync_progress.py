import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import upsert_insert
from edgeline.models.sync_progress import SyncProgress


async def completed_partitions(db: AsyncSession, sync_type: str) -> set[str]:
    rows = await db.execute(select(SyncProgress.partition_key).where(SyncProgress.sync_type == sync_type))
    return set(rows.scalars().all())


async def mark_partition_complete(
    db: AsyncSession,
    *,
    sync_type: str,
    partition_key: str,
    games_matched: int,
    games_total: int,
) -> None:
    """Record a finished partition. Commits; call only after its data is committed."""
    now = datetime.now(UTC)
    stmt = upsert_insert(db, SyncProgress).values(
        id=uuid.uuid4(),
        sync_type=sync_type,
        partition_key=partition_key,
        games_matched=games_matched,
        games_total=games_total,
        completed_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SyncProgress.sync_type, SyncProgress.partition_key],
        set_={
            "games_matched": stmt.excluded.games_matched,
            "games_total": stmt.excluded.games_total,
            "completed_at": stmt.excluded.completed_at,
        },
    )
    await db.execute(stmt)
    await db.commit()
