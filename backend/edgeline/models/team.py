import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from edgeline.models.base import Base, TimestampMixin


class Team(Base, TimestampMixin):
    __tablename__ = "teams"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)
    conference: Mapped[str | None] = mapped_column(String(80), nullable=True)


class TeamAlias(Base):
    """Provider-specific spelling of a team name (e.g. ``Miami (OH) RedHawks``)."""

    __tablename__ = "team_aliases"
    __table_args__ = (UniqueConstraint("source", "alias", name="uq_team_aliases_source_alias"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    alias: Mapped[str] = mapped_column(String(160), nullable=False)


class TeamNameMapping(Base):
    """Explicit override applied when the provider alias table has no entry."""

    __tablename__ = "team_name_mappings"
    __table_args__ = (
        UniqueConstraint("source_type", "source_name", name="uq_team_name_mappings_source_type_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source_name: Mapped[str] = mapped_column(String(160), nullable=False)
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )


class UnmatchedTeamName(Base):
    __tablename__ = "unmatched_team_names"
    __table_args__ = (UniqueConstraint("source", "team_name", name="uq_unmatched_team_names_source_name"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_name: Mapped[str] = mapped_column(String(160), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    context: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
