import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import as_utc, upsert_insert
from edgeline.core.frozen_config import FrozenModelConfig, RatingUpdateConstants
from edgeline.models.game import GAME_STATUS_FINAL, Game, GameResult
from edgeline.models.rating_snapshot import (
    RATING_SOURCE_ELO,
    RATING_SOURCE_PPA,
    RATING_SOURCE_SP,
    RatingSnapshot,
)
from edgeline.services.projection import TeamRatings, TeamScoring
from edgeline.services.team_lookup import UnmatchedNameLedger, build_team_lookup_cache, lookup_team

logger = logging.getLogger(__name__)

SNAPSHOT_CHUNK_SIZE = 200


@dataclass(frozen=True)
class RatingUpdate:
    home_update: float
    away_update: float
    win_term: float
    performance_term: float


@dataclass(frozen=True)
class CompletedGame:
    game_id: uuid.UUID
    week: int
    commence_time: datetime
    home_team_id: uuid.UUID
    away_team_id: uuid.UUID
    home_score: int
    away_score: int
    home_ppa: float | None = None
    away_ppa: float | None = None
    neutral_site: bool = False


@dataclass(frozen=True)
class RatingSnapshotRecord:
    team_id: uuid.UUID
    season: int
    week: int
    source: str
    rating: float | None
    offense: float | None = None
    defense: float | None = None
    games_played: int = 0


def _clamp(value: float, cap: float) -> float:
    return max(-cap, min(cap, value))


def expected_win_probability(rating_a: float, rating_b: float) -> float:
    return 1.0 / (1.0 + 10 ** ((rating_b - rating_a) / 400.0))


def season_start_rating(previous: float | None, constants: RatingUpdateConstants) -> float:
    if previous is None:
        return constants.base_rating
    carry = constants.season_carryover
    return carry * previous + (1.0 - carry) * constants.base_rating


def calculate_rating_update(
    *,
    home_rating: float,
    away_rating: float,
    home_score: int,
    away_score: int,
    config: FrozenModelConfig,
    home_efficiency: float | None = None,
    away_efficiency: float | None = None,
    neutral_site: bool = False,
) -> RatingUpdate:
    """Blend a win-expectation term with a performance term.

    The performance term uses the capped net efficiency differential when
    both teams have one, otherwise the capped scoring margin. Each term is
    capped, and so is the blended total. Updates are zero-sum.
    """
    constants = config.rating_update
    hfa_rating = 0.0 if neutral_site else config.spread.home_field_advantage * config.spread.elo_to_spread_divisor
    expected = expected_win_probability(home_rating + hfa_rating, away_rating)

    margin = home_score - away_score
    actual = 1.0 if margin > 0 else 0.0 if margin < 0 else 0.5
    win_term = _clamp(constants.k_factor * (actual - expected), constants.k_factor)

    if home_efficiency is not None and away_efficiency is not None:
        efficiency_diff = _clamp(home_efficiency - away_efficiency, constants.efficiency_diff_cap)
        performance_term = efficiency_diff * constants.efficiency_scale
    else:
        performance_term = _clamp(margin, constants.margin_cap) * constants.margin_point_value

    total = constants.efficiency_weight * performance_term + constants.win_weight * win_term
    final = _clamp(total, constants.max_update)
    return RatingUpdate(home_update=final, away_update=-final, win_term=win_term, performance_term=performance_term)


class _EfficiencyTotals:
    __slots__ = ("offense_sum", "allowed_sum", "games")

    def __init__(self) -> None:
        self.offense_sum = 0.0
        self.allowed_sum = 0.0
        self.games = 0

    def add(self, offense: float, allowed: float) -> None:
        self.offense_sum += offense
        self.allowed_sum += allowed
        self.games += 1

    @property
    def offense(self) -> float | None:
        return self.offense_sum / self.games if self.games else None

    @property
    def defense(self) -> float | None:
        # Negated so that larger is better on both sides of the ball.
        return -(self.allowed_sum / self.games) if self.games else None


def build_weekly_snapshots(
    games: Iterable[CompletedGame],
    *,
    season: int,
    config: FrozenModelConfig,
    prior_ratings: Mapping[uuid.UUID, float] | None = None,
    weeks: Iterable[int] | None = None,
) -> list[RatingSnapshotRecord]:
    """Replay a season in kickoff order and snapshot ratings per week.

    The snapshot for week ``w`` reflects only games with ``week < w``.
    Without explicit ``weeks`` every played week plus the following one is
    snapshotted.
    """
    ordered = sorted(games, key=lambda g: (g.week, as_utc(g.commence_time), str(g.game_id)))
    prior = prior_ratings or {}
    constants = config.rating_update

    team_ids: set[uuid.UUID] = set(prior)
    for game in ordered:
        team_ids.add(game.home_team_id)
        team_ids.add(game.away_team_id)

    if weeks is None:
        played = {game.week for game in ordered}
        snapshot_weeks = sorted(played | ({max(played) + 1} if played else set()))
    else:
        snapshot_weeks = sorted(set(weeks))

    elo = {team_id: season_start_rating(prior.get(team_id), constants) for team_id in team_ids}
    games_played: dict[uuid.UUID, int] = defaultdict(int)
    efficiency: dict[uuid.UUID, _EfficiencyTotals] = defaultdict(_EfficiencyTotals)

    records: list[RatingSnapshotRecord] = []
    cursor = 0
    for week in snapshot_weeks:
        while cursor < len(ordered) and ordered[cursor].week < week:
            game = ordered[cursor]
            cursor += 1
            has_efficiency = game.home_ppa is not None and game.away_ppa is not None
            update = calculate_rating_update(
                home_rating=elo[game.home_team_id],
                away_rating=elo[game.away_team_id],
                home_score=game.home_score,
                away_score=game.away_score,
                config=config,
                home_efficiency=(game.home_ppa - game.away_ppa) if has_efficiency else None,
                away_efficiency=(game.away_ppa - game.home_ppa) if has_efficiency else None,
                neutral_site=game.neutral_site,
            )
            elo[game.home_team_id] += update.home_update
            elo[game.away_team_id] += update.away_update
            games_played[game.home_team_id] += 1
            games_played[game.away_team_id] += 1
            if has_efficiency:
                efficiency[game.home_team_id].add(game.home_ppa, game.away_ppa)
                efficiency[game.away_team_id].add(game.away_ppa, game.home_ppa)

        for team_id in sorted(team_ids, key=str):
            records.append(
                RatingSnapshotRecord(
                    team_id=team_id,
                    season=season,
                    week=week,
                    source=RATING_SOURCE_ELO,
                    rating=elo[team_id],
                    games_played=games_played[team_id],
                )
            )
            totals = efficiency.get(team_id)
            if totals is not None and totals.games:
                records.append(
                    RatingSnapshotRecord(
                        team_id=team_id,
                        season=season,
                        week=week,
                        source=RATING_SOURCE_PPA,
                        rating=totals.offense + totals.defense,
                        offense=totals.offense,
                        defense=totals.defense,
                        games_played=totals.games,
                    )
                )
    return records


async def persist_rating_snapshots(db: AsyncSession, records: Sequence[RatingSnapshotRecord]) -> int:
    """Append snapshots; rows that already exist are left untouched."""
    inserted = 0
    for start in range(0, len(records), SNAPSHOT_CHUNK_SIZE):
        chunk = records[start : start + SNAPSHOT_CHUNK_SIZE]
        rows = [
            {
                "id": uuid.uuid4(),
                "team_id": record.team_id,
                "season": record.season,
                "week": record.week,
                "source": record.source,
                "rating": record.rating,
                "offense": record.offense,
                "defense": record.defense,
                "games_played": record.games_played,
            }
            for record in chunk
        ]
        stmt = (
            upsert_insert(db, RatingSnapshot)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=[
                    RatingSnapshot.team_id,
                    RatingSnapshot.season,
                    RatingSnapshot.week,
                    RatingSnapshot.source,
                ]
            )
            .returning(RatingSnapshot.id)
        )
        inserted += len((await db.execute(stmt)).scalars().all())
        await db.commit()
    return inserted


async def load_completed_games(db: AsyncSession, season: int) -> list[CompletedGame]:
    stmt = (
        select(Game, GameResult)
        .join(GameResult, GameResult.game_id == Game.id)
        .where(Game.season == season, Game.status == GAME_STATUS_FINAL)
    )
    rows = (await db.execute(stmt)).all()
    return [
        CompletedGame(
            game_id=game.id,
            week=game.week,
            commence_time=as_utc(game.commence_time),
            home_team_id=game.home_team_id,
            away_team_id=game.away_team_id,
            home_score=result.home_score,
            away_score=result.away_score,
            home_ppa=result.home_ppa,
            away_ppa=result.away_ppa,
            neutral_site=game.neutral_site,
        )
        for game, result in rows
    ]


async def final_elo_ratings(db: AsyncSession, season: int) -> dict[uuid.UUID, float]:
    latest_week = (
        select(RatingSnapshot.team_id, func.max(RatingSnapshot.week).label("week"))
        .where(RatingSnapshot.season == season, RatingSnapshot.source == RATING_SOURCE_ELO)
        .group_by(RatingSnapshot.team_id)
        .subquery()
    )
    stmt = select(RatingSnapshot.team_id, RatingSnapshot.rating).join(
        latest_week,
        (RatingSnapshot.team_id == latest_week.c.team_id) & (RatingSnapshot.week == latest_week.c.week),
    ).where(RatingSnapshot.season == season, RatingSnapshot.source == RATING_SOURCE_ELO)
    rows = (await db.execute(stmt)).all()
    return {row.team_id: row.rating for row in rows if row.rating is not None}


async def update_season_ratings(
    db: AsyncSession,
    *,
    season: int,
    config: FrozenModelConfig,
    weeks: Iterable[int] | None = None,
) -> dict[str, int]:
    games = await load_completed_games(db, season)
    prior = await final_elo_ratings(db, season - 1)
    records = build_weekly_snapshots(games, season=season, config=config, prior_ratings=prior, weeks=weeks)
    inserted = await persist_rating_snapshots(db, records)
    summary = {
        "season": season,
        "games_replayed": len(games),
        "teams_with_prior": len(prior),
        "snapshots_built": len(records),
        "snapshots_inserted": inserted,
    }
    logger.info("Season ratings updated", extra=summary)
    return summary


async def import_external_ratings(
    db: AsyncSession,
    entries: Iterable[Mapping[str, object]],
    *,
    source: str = RATING_SOURCE_SP,
) -> dict[str, int]:
    """Load third-party team ratings (e.g. SP+) as point-in-time snapshots.

    Each entry carries ``team``, ``season``, ``week`` and ``rating``; team
    names go through the identity resolver under ``source``.
    """
    cache = await build_team_lookup_cache(db, source)
    ledger = UnmatchedNameLedger(source=source)
    records: list[RatingSnapshotRecord] = []
    invalid = 0
    for entry in entries:
        team_name = entry.get("team")
        try:
            season = int(entry["season"])
            week = int(entry["week"])
            rating = float(entry["rating"])
        except (KeyError, TypeError, ValueError):
            invalid += 1
            continue
        if not isinstance(team_name, str) or not team_name.strip():
            invalid += 1
            continue
        match = lookup_team(team_name, cache)
        if match is None:
            await ledger.record(db, team_name, context=f"{source} ratings {season} week {week}")
            continue
        records.append(
            RatingSnapshotRecord(team_id=match.team_id, season=season, week=week, source=source, rating=rating)
        )

    await db.commit()
    try:
        inserted = await persist_rating_snapshots(db, records)
    except SQLAlchemyError:
        await db.rollback()
        raise
    summary = {
        "entries_matched": len(records),
        "entries_invalid": invalid,
        "unmatched_occurrences": ledger.occurrences,
        "snapshots_inserted": inserted,
    }
    logger.info("External ratings imported", extra={"source": source, **summary})
    return summary


async def ratings_as_of(
    db: AsyncSession,
    team_ids: Iterable[uuid.UUID],
    *,
    season: int,
    week: int,
) -> dict[uuid.UUID, TeamRatings]:
    """Most recent snapshot per team and source with ``snapshot.week <= week``."""
    ids = list(set(team_ids))
    if not ids:
        return {}
    stmt = (
        select(RatingSnapshot)
        .where(
            RatingSnapshot.team_id.in_(ids),
            RatingSnapshot.season == season,
            RatingSnapshot.week <= week,
        )
        .order_by(RatingSnapshot.week.asc())
    )
    latest: dict[tuple[uuid.UUID, str], RatingSnapshot] = {}
    for snapshot in (await db.execute(stmt)).scalars():
        latest[(snapshot.team_id, snapshot.source)] = snapshot

    ratings: dict[uuid.UUID, TeamRatings] = {}
    for team_id in ids:
        elo = latest.get((team_id, RATING_SOURCE_ELO))
        sp = latest.get((team_id, RATING_SOURCE_SP))
        ppa = latest.get((team_id, RATING_SOURCE_PPA))
        ratings[team_id] = TeamRatings(
            elo=elo.rating if elo is not None else None,
            sp=sp.rating if sp is not None else None,
            ppa_offense=ppa.offense if ppa is not None else None,
            ppa_defense=ppa.defense if ppa is not None else None,
        )
    return ratings


async def team_scoring_as_of(
    db: AsyncSession,
    team_ids: Iterable[uuid.UUID],
    *,
    season: int,
    week: int,
) -> dict[uuid.UUID, TeamScoring]:
    """Points for/against averages from final games played before ``week``."""
    ids = set(team_ids)
    if not ids:
        return {}
    stmt = (
        select(Game.home_team_id, Game.away_team_id, GameResult.home_score, GameResult.away_score)
        .join(GameResult, GameResult.game_id == Game.id)
        .where(
            Game.season == season,
            Game.week < week,
            Game.status == GAME_STATUS_FINAL,
            (Game.home_team_id.in_(ids)) | (Game.away_team_id.in_(ids)),
        )
    )
    scored: dict[uuid.UUID, list[int]] = defaultdict(lambda: [0, 0, 0])
    for row in (await db.execute(stmt)).all():
        for team_id, points_for, points_against in (
            (row.home_team_id, row.home_score, row.away_score),
            (row.away_team_id, row.away_score, row.home_score),
        ):
            if team_id not in ids:
                continue
            totals = scored[team_id]
            totals[0] += points_for
            totals[1] += points_against
            totals[2] += 1

    return {
        team_id: TeamScoring(points_for=pf / games, points_against=pa / games, games=games)
        for team_id, (pf, pa, games) in scored.items()
        if games
    }
