import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from edgeline.models.base import Base


class SyncProgress(Base):
    """Durable marker that a sync partition finished and was committed."""

    __tablename__ = "sync_progress"
    __table_args__ = (
        UniqueConstraint("sync_type", "partition_key", name="uq_sync_progress_type_partition"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sync_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    partition_key: Mapped[str] = mapped_column(String(32), nullable=False)
    games_matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    games_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
