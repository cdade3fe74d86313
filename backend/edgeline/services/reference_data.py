"""Loading of teams, schedules and final results from an external feed."""

import logging
import uuid
from collections.abc import Iterable, Mapping

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import upsert_insert
from edgeline.models.game import GAME_STATUS_FINAL, GAME_STATUS_SCHEDULED, Game, GameResult
from edgeline.models.team import Team, TeamAlias, TeamNameMapping
from edgeline.services.odds_payload import parse_iso_datetime
from edgeline.services.team_lookup import UnmatchedNameLedger, build_team_lookup_cache, lookup_team

logger = logging.getLogger(__name__)

SCHEDULE_SOURCE = "schedule"


def _optional_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _names_by_source(raw: object) -> list[tuple[str, str]]:
    if not isinstance(raw, dict):
        return []
    pairs: list[tuple[str, str]] = []
    for source, names in raw.items():
        if not isinstance(names, list):
            continue
        pairs.extend((str(source), name.strip()) for name in names if isinstance(name, str) and name.strip())
    return pairs


async def import_teams(db: AsyncSession, entries: Iterable[Mapping[str, object]]) -> dict[str, int]:
    """Upsert canonical teams and add their aliases and explicit name mappings.

    ``aliases`` and ``mappings`` are objects keyed by source, each holding a
    list of names. An alias or mapping already owned by a different team is
    left alone and counted as a conflict.
    """
    metrics = {"teams": 0, "aliases": 0, "mappings": 0, "conflicts": 0, "invalid": 0}
    for entry in entries:
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            metrics["invalid"] += 1
            continue
        conference = entry.get("conference")
        stmt = upsert_insert(db, Team).values(
            id=uuid.uuid4(),
            name=name.strip(),
            conference=conference if isinstance(conference, str) else None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Team.name],
            set_={"conference": stmt.excluded.conference},
        ).returning(Team.id)
        team_id = (await db.execute(stmt)).scalar_one()
        metrics["teams"] += 1

        for source, alias in _names_by_source(entry.get("aliases")):
            alias_stmt = upsert_insert(db, TeamAlias).values(id=uuid.uuid4(), team_id=team_id, source=source, alias=alias)
            await db.execute(alias_stmt.on_conflict_do_nothing(index_elements=[TeamAlias.source, TeamAlias.alias]))
            stored = select(TeamAlias.team_id).where(TeamAlias.source == source, TeamAlias.alias == alias)
            if (await db.execute(stored)).scalar_one() == team_id:
                metrics["aliases"] += 1
            else:
                metrics["conflicts"] += 1
                logger.warning(
                    "Alias already belongs to another team; keeping the stored owner",
                    extra={"source": source, "alias": alias, "team": name.strip()},
                )

        for source, source_name in _names_by_source(entry.get("mappings")):
            mapping_stmt = upsert_insert(db, TeamNameMapping).values(
                id=uuid.uuid4(), team_id=team_id, source_type=source, source_name=source_name
            )
            await db.execute(
                mapping_stmt.on_conflict_do_nothing(
                    index_elements=[TeamNameMapping.source_type, TeamNameMapping.source_name]
                )
            )
            stored = select(TeamNameMapping.team_id).where(
                TeamNameMapping.source_type == source, TeamNameMapping.source_name == source_name
            )
            if (await db.execute(stored)).scalar_one() == team_id:
                metrics["mappings"] += 1
            else:
                metrics["conflicts"] += 1
                logger.warning(
                    "Name mapping already points at another team; keeping the stored owner",
                    extra={"source": source, "source_name": source_name, "team": name.strip()},
                )

    await db.commit()
    logger.info("Teams imported", extra=metrics)
    return metrics


async def import_games(
    db: AsyncSession,
    entries: Iterable[Mapping[str, object]],
    *,
    source: str = SCHEDULE_SOURCE,
) -> dict[str, int]:
    """Upsert scheduled games and, where scores are present, final results.

    A game that is already final is never moved back to scheduled.
    """
    cache = await build_team_lookup_cache(db, source)
    ledger = UnmatchedNameLedger(source=source)
    metrics = {"games": 0, "results": 0, "invalid": 0, "unresolved": 0}

    for entry in entries:
        external_id = entry.get("external_id")
        commence_time = parse_iso_datetime(entry.get("commence_time"))
        home_name = entry.get("home_team")
        away_name = entry.get("away_team")
        try:
            season = int(entry["season"])
            week = int(entry["week"])
        except (KeyError, TypeError, ValueError):
            metrics["invalid"] += 1
            continue
        if (
            external_id is None
            or commence_time is None
            or not isinstance(home_name, str)
            or not isinstance(away_name, str)
        ):
            metrics["invalid"] += 1
            continue

        home = lookup_team(home_name, cache)
        away = lookup_team(away_name, cache)
        if home is None or away is None:
            metrics["unresolved"] += 1
            for name, match in ((home_name, home), (away_name, away)):
                if match is None:
                    await ledger.record(db, name, context=f"game {external_id}")
            continue

        home_score = entry.get("home_score")
        away_score = entry.get("away_score")
        is_final = isinstance(home_score, int) and isinstance(away_score, int)

        stmt = upsert_insert(db, Game).values(
            id=uuid.uuid4(),
            external_id=str(external_id),
            season=season,
            week=week,
            commence_time=commence_time,
            home_team_id=home.team_id,
            away_team_id=away.team_id,
            neutral_site=bool(entry.get("neutral_site", False)),
            status=GAME_STATUS_FINAL if is_final else GAME_STATUS_SCHEDULED,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Game.external_id],
            set_={
                "season": stmt.excluded.season,
                "week": stmt.excluded.week,
                "commence_time": stmt.excluded.commence_time,
                "neutral_site": stmt.excluded.neutral_site,
                "status": case(
                    (Game.status == GAME_STATUS_FINAL, GAME_STATUS_FINAL),
                    else_=stmt.excluded.status,
                ),
            },
        ).returning(Game.id)
        game_id = (await db.execute(stmt)).scalar_one()
        metrics["games"] += 1

        if is_final:
            result_stmt = upsert_insert(db, GameResult).values(
                id=uuid.uuid4(),
                game_id=game_id,
                home_score=home_score,
                away_score=away_score,
                home_ppa=_optional_float(entry.get("home_ppa")),
                away_ppa=_optional_float(entry.get("away_ppa")),
            )
            result_stmt = result_stmt.on_conflict_do_update(
                index_elements=[GameResult.game_id],
                set_={
                    "home_score": result_stmt.excluded.home_score,
                    "away_score": result_stmt.excluded.away_score,
                    "home_ppa": result_stmt.excluded.home_ppa,
                    "away_ppa": result_stmt.excluded.away_ppa,
                },
            )
            await db.execute(result_stmt)
            metrics["results"] += 1

    await db.commit()
    logger.info("Games imported", extra={"source": source, "unmatched_names": ledger.distinct, **metrics})
    return metrics

