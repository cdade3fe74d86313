import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from edgeline.models.base import Base


class ClvRecord(Base):
    __tablename__ = "clv_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    edge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("edges.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    game_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    market: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    bet_line: Mapped[float] = mapped_column(Float, nullable=False)
    close_line: Mapped[float] = mapped_column(Float, nullable=False)
    clv_points: Mapped[float] = mapped_column(Float, nullable=False)
    clv_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[str | None] = mapped_column(String(10), nullable=True)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
