"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("conference", sa.String(length=80), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_teams_name", "teams", ["name"], unique=True)

    op.create_table(
        "team_aliases",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("alias", sa.String(length=160), nullable=False),
        sa.UniqueConstraint("source", "alias", name="uq_team_aliases_source_alias"),
    )
    op.create_index("ix_team_aliases_team_id", "team_aliases", ["team_id"], unique=False)

    op.create_table(
        "team_name_mappings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("source_type", sa.String(length=64), nullable=False),
        sa.Column("source_name", sa.String(length=160), nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("source_type", "source_name", name="uq_team_name_mappings_source_type_name"),
    )
    op.create_index("ix_team_name_mappings_team_id", "team_name_mappings", ["team_id"], unique=False)

    op.create_table(
        "unmatched_team_names",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_name", sa.String(length=160), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("context", sa.String(length=255), nullable=True),
        sa.Column("occurrences", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("source", "team_name", name="uq_unmatched_team_names_source_name"),
    )
    op.create_index("ix_unmatched_team_names_source", "unmatched_team_names", ["source"], unique=False)

    op.create_table(
        "games",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("season", sa.Integer(), nullable=False),
        sa.Column("week", sa.Integer(), nullable=False),
        sa.Column("commence_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("home_team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("away_team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("neutral_site", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("provider_event_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_games_external_id", "games", ["external_id"], unique=True)
    op.create_index("ix_games_season", "games", ["season"], unique=False)
    op.create_index("ix_games_commence_time", "games", ["commence_time"], unique=False)
    op.create_index("ix_games_home_team_id", "games", ["home_team_id"], unique=False)
    op.create_index("ix_games_away_team_id", "games", ["away_team_id"], unique=False)
    op.create_index("ix_games_status", "games", ["status"], unique=False)
    op.create_index("ix_games_provider_event_id", "games", ["provider_event_id"], unique=False)
    op.create_index("ix_games_season_week", "games", ["season", "week"], unique=False)

    op.create_table(
        "game_results",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("game_id", sa.Uuid(), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("home_score", sa.Integer(), nullable=False),
        sa.Column("away_score", sa.Integer(), nullable=False),
        sa.Column("home_ppa", sa.Float(), nullable=True),
        sa.Column("away_ppa", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_game_results_game_id", "game_results", ["game_id"], unique=True)

    op.create_table(
        "odds_ticks",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("game_id", sa.Uuid(), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("market", sa.String(length=20), nullable=False),
        sa.Column("side", sa.String(length=10), nullable=False),
        sa.Column("line", sa.Float(), nullable=True),
        sa.Column("price", sa.Integer(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_odds_ticks_content_hash", "odds_ticks", ["content_hash"], unique=True)
    op.create_index("ix_odds_ticks_game_id", "odds_ticks", ["game_id"], unique=False)
    op.create_index("ix_odds_ticks_provider", "odds_ticks", ["provider"], unique=False)
    op.create_index("ix_odds_ticks_captured_at", "odds_ticks", ["captured_at"], unique=False)
    op.create_index(
        "ix_odds_ticks_game_provider_market_side_captured",
        "odds_ticks",
        ["game_id", "provider", "market", "side", "captured_at"],
        unique=False,
    )

    op.create_table(
        "rating_snapshots",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("season", sa.Integer(), nullable=False),
        sa.Column("week", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("offense", sa.Float(), nullable=True),
        sa.Column("defense", sa.Float(), nullable=True),
        sa.Column("games_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "team_id", "season", "week", "source", name="uq_rating_snapshots_team_season_week_source"
        ),
    )
    op.create_index("ix_rating_snapshots_team_id", "rating_snapshots", ["team_id"], unique=False)

    op.create_table(
        "edges",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("game_id", sa.Uuid(), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("market", sa.String(length=20), nullable=False),
        sa.Column("market_line", sa.Float(), nullable=False),
        sa.Column("market_price", sa.Integer(), nullable=True),
        sa.Column("model_line", sa.Float(), nullable=False),
        sa.Column("edge", sa.Float(), nullable=False),
        sa.Column("recommended_side", sa.String(length=10), nullable=True),
        sa.Column("win_probability", sa.Float(), nullable=False),
        sa.Column("expected_value", sa.Float(), nullable=False),
        sa.Column("confidence_tier", sa.String(length=16), nullable=False),
        sa.Column("qualifies", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("disqualified_reason", sa.String(length=120), nullable=True),
        sa.Column("low_confidence", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("model_disagreement", sa.Float(), nullable=True),
        sa.Column("rank_abs_edge", sa.Integer(), nullable=True),
        sa.Column("model_version", sa.String(length=40), nullable=False),
        sa.Column("market_captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("game_id", "provider", "market", name="uq_edges_game_provider_market"),
    )
    op.create_index("ix_edges_game_id", "edges", ["game_id"], unique=False)
    op.create_index("ix_edges_as_of", "edges", ["as_of"], unique=False)

    op.create_table(
        "clv_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("edge_id", sa.Uuid(), sa.ForeignKey("edges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("game_id", sa.Uuid(), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("market", sa.String(length=20), nullable=False),
        sa.Column("side", sa.String(length=10), nullable=False),
        sa.Column("bet_line", sa.Float(), nullable=False),
        sa.Column("close_line", sa.Float(), nullable=False),
        sa.Column("clv_points", sa.Float(), nullable=False),
        sa.Column("clv_cents", sa.Integer(), nullable=False),
        sa.Column("result", sa.String(length=10), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_clv_records_edge_id", "clv_records", ["edge_id"], unique=True)
    op.create_index("ix_clv_records_game_id", "clv_records", ["game_id"], unique=False)
    op.create_index("ix_clv_records_computed_at", "clv_records", ["computed_at"], unique=False)

    op.create_table(
        "sync_progress",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("sync_type", sa.String(length=64), nullable=False),
        sa.Column("partition_key", sa.String(length=32), nullable=False),
        sa.Column("games_matched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("games_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("sync_type", "partition_key", name="uq_sync_progress_type_partition"),
    )
    op.create_index("ix_sync_progress_sync_type", "sync_progress", ["sync_type"], unique=False)


def downgrade() -> None:
    op.drop_table("sync_progress")
    op.drop_table("clv_records")
    op.drop_table("edges")
    op.drop_table("rating_snapshots")
    op.drop_table("odds_ticks")
    op.drop_table("game_results")
    op.drop_table("games")
    op.drop_table("unmatched_team_names")
    op.drop_table("team_name_mappings")
    op.drop_table("team_aliases")
    op.drop_table("teams")
