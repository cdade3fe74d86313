"""Historical odds sync: fetch, resolve and persist, one date partition at a time.

Partitions are processed in ascending order. A partition is marked
complete only after all of its ticks are committed, so an interrupted or
failed run resumes at the first unmarked date.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime, time as dt_time, timedelta

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.config import Settings, get_settings
from edgeline.core.dialect import as_utc
from edgeline.core.errors import ConfigurationError, OddsApiError
from edgeline.models.game import Game
from edgeline.services.odds_api import (
    HistoricalSnapshot,
    OddsApiClient,
    snapshot_timestamp_for_partition,
)
from edgeline.services.sync_progress import completed_partitions, mark_partition_complete
from edgeline.services.team_lookup import (
    TeamLookupCache,
    UnmatchedNameLedger,
    build_team_lookup_cache,
    lookup_team,
)
from edgeline.services.tick_store import TickRecord, missing_quote_count, persist_ticks, ticks_from_event

logger = logging.getLogger(__name__)

DEFAULT_SYNC_TYPE = "odds_history"
IDENTITY_SOURCE = "odds_api"


@dataclass(frozen=True)
class SyncConfig:
    start: date
    end: date
    sport_key: str = "americanfootball_ncaaf"
    provider: str = "draftkings"
    markets: tuple[str, ...] = ("spreads", "totals")
    regions: str | None = None
    sync_type: str = DEFAULT_SYNC_TYPE


@dataclass
class SyncSummary:
    partitions_total: int = 0
    partitions_processed: int = 0
    partitions_skipped: int = 0
    partitions_failed: int = 0
    partitions_no_data: int = 0
    partitions_incomplete: int = 0
    partitions_without_games: int = 0
    events_seen: int = 0
    events_invalid: int = 0
    events_unresolved: int = 0
    events_without_game: int = 0
    events_without_lines: int = 0
    swapped_matchups: int = 0
    swapped_matchups_rejected: int = 0
    games_total: int = 0
    games_matched: int = 0
    ticks_submitted: int = 0
    ticks_created: int = 0
    ticks_duplicate: int = 0
    ticks_failed: int = 0
    ticks_lookahead_dropped: int = 0
    quotes_missing: int = 0
    unmatched_name_occurrences: int = 0
    unmatched_names_distinct: int = 0
    api_calls: int = 0
    credits_used: int = 0
    requests_remaining: int | None = None
    failed_partitions: list[str] = field(default_factory=list)

    @property
    def coverage_pct(self) -> float:
        if not self.games_total:
            return 0.0
        return round(100.0 * self.games_matched / self.games_total, 2)

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["coverage_pct"] = self.coverage_pct
        return payload


@dataclass
class _PartitionOutcome:
    games_total: int = 0
    games_matched: int = 0
    ticks: list[TickRecord] = field(default_factory=list)


def _iter_partitions(start: date, end: date) -> list[date]:
    days = (end - start).days
    return [start + timedelta(days=offset) for offset in range(days + 1)]


def _validate(config: SyncConfig, settings: Settings) -> None:
    if config.end < config.start:
        raise ConfigurationError("sync end date precedes start date")
    if not config.markets:
        raise ConfigurationError("at least one market is required")
    if not config.provider.strip():
        raise ConfigurationError("a provider (bookmaker key) is required")
    if settings.sync_min_call_interval_seconds < 0:
        raise ConfigurationError("SYNC_MIN_CALL_INTERVAL_SECONDS must not be negative")


async def _games_for_partition(db: AsyncSession, partition: date) -> list[Game]:
    day_start = datetime.combine(partition, dt_time.min, tzinfo=UTC)
    stmt = (
        select(Game)
        .where(Game.commence_time >= day_start, Game.commence_time < day_start + timedelta(days=1))
        .order_by(Game.commence_time.asc(), Game.id.asc())
    )
    return list((await db.execute(stmt)).scalars())


def _find_game(
    games_by_pair: dict[tuple[uuid.UUID, uuid.UUID], list[Game]],
    home_id: uuid.UUID,
    away_id: uuid.UUID,
    commence_time: datetime,
    window: timedelta,
) -> Game | None:
    for game in games_by_pair.get((home_id, away_id), []):
        if abs(as_utc(game.commence_time) - commence_time) <= window:
            return game
    return None


async def _reconcile_events(
    db: AsyncSession,
    *,
    snapshot: HistoricalSnapshot,
    games: list[Game],
    config: SyncConfig,
    settings: Settings,
    cache: TeamLookupCache,
    ledger: UnmatchedNameLedger,
    summary: SyncSummary,
    partition_key: str,
) -> _PartitionOutcome:
    outcome = _PartitionOutcome(games_total=len(games))
    games_by_pair: dict[tuple[uuid.UUID, uuid.UUID], list[Game]] = {}
    for game in games:
        games_by_pair.setdefault((game.home_team_id, game.away_team_id), []).append(game)

    window = timedelta(hours=settings.sync_event_match_window_hours)
    captured_at = as_utc(snapshot.snapshot_timestamp or snapshot.requested_at)
    matched: set[uuid.UUID] = set()

    for event in snapshot.events:
        summary.events_seen += 1
        home = lookup_team(event.home_team, cache)
        away = lookup_team(event.away_team, cache)
        if home is None or away is None:
            summary.events_unresolved += 1
            for name, match in ((event.home_team, home), (event.away_team, away)):
                if match is None:
                    await ledger.record(db, name, context=f"{config.sport_key} {partition_key} event {event.id}")
            continue

        swapped = False
        game = _find_game(games_by_pair, home.team_id, away.team_id, event.commence_time, window)
        if game is None:
            reversed_game = _find_game(games_by_pair, away.team_id, home.team_id, event.commence_time, window)
            if reversed_game is not None:
                if not settings.sync_allow_home_away_swap:
                    summary.swapped_matchups_rejected += 1
                    logger.warning(
                        "Provider lists matchup with home/away reversed; skipping",
                        extra={"event_id": event.id, "game_id": str(reversed_game.id), "partition": partition_key},
                    )
                    continue
                summary.swapped_matchups += 1
                game, swapped = reversed_game, True

        if game is None:
            summary.events_without_game += 1
            logger.info(
                "No stored game for provider event",
                extra={
                    "event_id": event.id,
                    "home_team": event.home_team,
                    "away_team": event.away_team,
                    "partition": partition_key,
                },
            )
            continue

        if game.id in matched:
            continue

        ticks = ticks_from_event(
            event, game_id=game.id, provider=config.provider, captured_at=captured_at, swapped=swapped
        )
        summary.quotes_missing += missing_quote_count(ticks, config.markets)
        if not ticks:
            summary.events_without_lines += 1
            logger.info(
                "Provider quotes no usable lines for event",
                extra={
                    "event_id": event.id,
                    "game_id": str(game.id),
                    "provider": config.provider,
                    "partition": partition_key,
                },
            )
            continue
        if as_utc(game.commence_time) <= captured_at:
            summary.ticks_lookahead_dropped += len(ticks)
            logger.warning(
                "Dropping quotes captured at or after kickoff",
                extra={"game_id": str(game.id), "captured_at": captured_at.isoformat(), "partition": partition_key},
            )
            continue
        matched.add(game.id)
        if game.provider_event_id is None:
            game.provider_event_id = event.id
        outcome.ticks.extend(ticks)

    outcome.games_matched = len(matched)
    return outcome


async def run_odds_sync(
    db: AsyncSession,
    *,
    config: SyncConfig,
    client: OddsApiClient | None = None,
    settings: Settings | None = None,
    redis: Redis | None = None,
) -> SyncSummary:
    settings = settings or get_settings()
    _validate(config, settings)
    if client is None:
        client = OddsApiClient(settings)

    summary = SyncSummary()
    partitions = _iter_partitions(config.start, config.end)
    summary.partitions_total = len(partitions)

    done = await completed_partitions(db, config.sync_type)
    cache = await build_team_lookup_cache(db, IDENTITY_SOURCE)
    ledger = UnmatchedNameLedger(source=IDENTITY_SOURCE)
    markets = ",".join(config.markets)
    min_interval = settings.sync_min_call_interval_seconds
    last_call: float | None = None

    logger.info(
        "Odds sync started",
        extra={
            "sync_type": config.sync_type,
            "sport_key": config.sport_key,
            "provider": config.provider,
            "start": config.start.isoformat(),
            "end": config.end.isoformat(),
            "partitions_total": summary.partitions_total,
            "partitions_already_done": len(done),
        },
    )

    for partition in partitions:
        partition_key = partition.isoformat()
        if partition_key in done:
            summary.partitions_skipped += 1
            continue

        games = await _games_for_partition(db, partition)
        if not games:
            await mark_partition_complete(
                db,
                sync_type=config.sync_type,
                partition_key=partition_key,
                games_matched=0,
                games_total=0,
            )
            summary.partitions_without_games += 1
            summary.partitions_processed += 1
            logger.info("No stored games for partition; skipping fetch", extra={"partition": partition_key})
            continue

        if last_call is not None:
            elapsed = time.monotonic() - last_call
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)

        requested_at = snapshot_timestamp_for_partition(
            partition,
            hour_utc=settings.sync_snapshot_hour_utc,
            lead_hours=settings.sync_snapshot_lead_hours,
        )
        try:
            snapshot = await client.fetch_historical_odds(
                config.sport_key,
                requested_at,
                markets=markets,
                regions=config.regions,
                bookmakers=config.provider,
            )
        except OddsApiError as exc:
            summary.partitions_failed += 1
            summary.failed_partitions.append(partition_key)
            logger.error(
                "Odds fetch failed for partition; leaving it for the next run",
                extra={"partition": partition_key, "reason": exc.reason},
            )
            continue
        finally:
            last_call = time.monotonic()
            if client.budget.should_report():
                logger.info("Odds API budget", extra={"partition": partition_key, **client.budget.as_dict()})
                client.budget.mark_reported()

        summary.games_total += len(games)
        summary.events_invalid += snapshot.skipped_events

        if snapshot.status == "no_data":
            summary.partitions_no_data += 1
            await mark_partition_complete(
                db,
                sync_type=config.sync_type,
                partition_key=partition_key,
                games_matched=0,
                games_total=len(games),
            )
            summary.partitions_processed += 1
            continue

        outcome = await _reconcile_events(
            db,
            snapshot=snapshot,
            games=games,
            config=config,
            settings=settings,
            cache=cache,
            ledger=ledger,
            summary=summary,
            partition_key=partition_key,
        )
        summary.games_matched += outcome.games_matched
        await db.commit()

        persisted = await persist_ticks(
            db,
            outcome.ticks,
            chunk_size=settings.tick_chunk_size,
            retry_attempts=settings.tick_chunk_retry_attempts,
            redis=redis,
            cache_ttl_seconds=settings.tick_dedupe_ttl_seconds,
        )
        summary.ticks_submitted += persisted.submitted
        summary.ticks_created += persisted.inserted
        summary.ticks_duplicate += persisted.duplicates
        summary.ticks_failed += persisted.failed_rows

        if persisted.failed_chunks:
            summary.partitions_incomplete += 1
            summary.failed_partitions.append(partition_key)
            logger.error(
                "Partition has failed tick chunks; not marking complete",
                extra={"partition": partition_key, **persisted.as_dict()},
            )
            continue

        await mark_partition_complete(
            db,
            sync_type=config.sync_type,
            partition_key=partition_key,
            games_matched=outcome.games_matched,
            games_total=outcome.games_total,
        )
        summary.partitions_processed += 1
        logger.info(
            "Partition synced",
            extra={
                "partition": partition_key,
                "games_total": outcome.games_total,
                "games_matched": outcome.games_matched,
                **persisted.as_dict(),
            },
        )

    summary.unmatched_name_occurrences = ledger.occurrences
    summary.unmatched_names_distinct = ledger.distinct
    summary.api_calls = client.budget.calls
    summary.credits_used = client.budget.credits_used
    summary.requests_remaining = client.budget.requests_remaining
    logger.info("Odds sync finished", extra=summary.as_dict())
    return summary
