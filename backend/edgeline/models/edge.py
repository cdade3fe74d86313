import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from edgeline.models.base import Base, TimestampMixin


class Edge(Base, TimestampMixin):
    __tablename__ = "edges"
    __table_args__ = (UniqueConstraint("game_id", "provider", "market", name="uq_edges_game_provider_market"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    game_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    market: Mapped[str] = mapped_column(String(20), nullable=False)
    market_line: Mapped[float] = mapped_column(Float, nullable=False)
    market_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model_line: Mapped[float] = mapped_column(Float, nullable=False)
    edge: Mapped[float] = mapped_column(Float, nullable=False)
    recommended_side: Mapped[str | None] = mapped_column(String(10), nullable=True)
    win_probability: Mapped[float] = mapped_column(Float, nullable=False)
    expected_value: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_tier: Mapped[str] = mapped_column(String(16), nullable=False)
    qualifies: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disqualified_reason: Mapped[str | None] = mapped_column(String(120), nullable=True)
    low_confidence: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    model_disagreement: Mapped[float | None] = mapped_column(Float, nullable=True)
    rank_abs_edge: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model_version: Mapped[str] = mapped_column(String(40), nullable=False)
    market_captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
