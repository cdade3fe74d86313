import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from edgeline.models.base import Base

RATING_SOURCE_ELO = "elo"
RATING_SOURCE_SP = "sp"
RATING_SOURCE_PPA = "ppa"


class RatingSnapshot(Base):
    """Team rating as known before any game of ``week`` was played.

    Append-only: a (team, season, week, source) row is never rewritten.
    """

    __tablename__ = "rating_snapshots"
    __table_args__ = (
        UniqueConstraint("team_id", "season", "week", "source", name="uq_rating_snapshots_team_season_week_source"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    season: Mapped[int] = mapped_column(Integer, nullable=False)
    week: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    offense: Mapped[float | None] = mapped_column(Float, nullable=True)
    defense: Mapped[float | None] = mapped_column(Float, nullable=True)
    games_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
