import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import as_utc, upsert_insert
from edgeline.core.frozen_config import FrozenModelConfig
from edgeline.models.edge import Edge
from edgeline.models.game import GAME_STATUS_SCHEDULED, Game
from edgeline.models.odds_tick import OddsTick
from edgeline.services.calibration import (
    STANDARD_ODDS,
    CalibrationTable,
    calculate_expected_value,
    get_confidence_tier,
    get_win_probability,
)
from edgeline.services.projection import TeamRatings, project_spread, project_total
from edgeline.services.ratings import ratings_as_of, team_scoring_as_of
from edgeline.services.tick_store import (
    MARKET_SPREAD,
    MARKET_TOTAL,
    SIDE_AWAY,
    SIDE_HOME,
    SIDE_OVER,
    SIDE_UNDER,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketQuoteAt:
    line: float
    price: int | None
    captured_at: datetime


@dataclass(frozen=True)
class EdgeScore:
    market: str
    market_line: float
    model_line: float
    edge: float
    recommended_side: str | None
    win_probability: float
    expected_value: float
    confidence_tier: str
    qualifies: bool
    disqualified_reason: str | None
    low_confidence: bool
    model_disagreement: float | None

    @property
    def abs_edge(self) -> float:
        return abs(self.edge)


def compute_edge(market_line: float, model_line: float) -> float:
    """``market - model``; positive means the market undervalues the home side."""
    return market_line - model_line


def recommended_side(market: str, edge: float) -> str | None:
    if edge == 0:
        return None
    if market == MARKET_SPREAD:
        return SIDE_HOME if edge > 0 else SIDE_AWAY
    if market == MARKET_TOTAL:
        return SIDE_UNDER if edge > 0 else SIDE_OVER
    raise ValueError(f"Unsupported market: {market}")


def score_edge(
    *,
    market: str,
    market_line: float,
    model_line: float,
    config: FrozenModelConfig,
    calibration: CalibrationTable,
    low_confidence: bool = False,
    model_disagreement: float | None = None,
) -> EdgeScore:
    edge = compute_edge(market_line, model_line)
    abs_edge = abs(edge)
    side = recommended_side(market, edge)
    win_probability = get_win_probability(edge, calibration)
    expected_value = calculate_expected_value(win_probability, STANDARD_ODDS)
    tier = get_confidence_tier(edge, win_probability, config.confidence_tiers)

    reason: str | None = None
    if side is None:
        reason = "no edge"
    elif low_confidence:
        reason = f"model disagreement {model_disagreement or 0.0:.1f} exceeds {config.spread.max_model_disagreement:g} pts"
    elif abs_edge < config.edge_filter.min_edge:
        reason = f"edge {abs_edge:.1f} below minimum {config.edge_filter.min_edge:g} pts"
    elif abs_edge >= config.edge_filter.max_edge:
        reason = f"edge {abs_edge:.1f} at or above maximum {config.edge_filter.max_edge:g} pts"

    return EdgeScore(
        market=market,
        market_line=market_line,
        model_line=model_line,
        edge=edge,
        recommended_side=side,
        win_probability=win_probability,
        expected_value=expected_value,
        confidence_tier=tier,
        qualifies=reason is None,
        disqualified_reason=reason,
        low_confidence=low_confidence,
        model_disagreement=model_disagreement,
    )


async def latest_market_quote(
    db: AsyncSession,
    *,
    game: Game,
    provider: str,
    market: str,
    as_of: datetime,
) -> MarketQuoteAt | None:
    """Newest quote captured at or before ``as_of`` and strictly before kickoff.

    Spreads are returned from the home side's perspective and totals as the
    posted total.
    """
    cutoff = min(as_utc(as_of), as_utc(game.commence_time))
    stmt = (
        select(OddsTick)
        .where(
            OddsTick.game_id == game.id,
            OddsTick.provider == provider,
            OddsTick.market == market,
            OddsTick.captured_at <= cutoff,
            OddsTick.captured_at < as_utc(game.commence_time),
            OddsTick.line.is_not(None),
        )
        .order_by(OddsTick.captured_at.desc())
        .limit(4)
    )
    preferred, fallback = (SIDE_HOME, SIDE_AWAY) if market == MARKET_SPREAD else (SIDE_OVER, SIDE_UNDER)
    ticks = list((await db.execute(stmt)).scalars())
    if not ticks:
        return None
    newest = as_utc(ticks[0].captured_at)
    same_instant = [tick for tick in ticks if as_utc(tick.captured_at) == newest]
    for tick in same_instant:
        if tick.side == preferred:
            return MarketQuoteAt(line=tick.line, price=tick.price, captured_at=newest)
    for tick in same_instant:
        if tick.side == fallback:
            line = -tick.line if market == MARKET_SPREAD else tick.line
            return MarketQuoteAt(line=line, price=None, captured_at=newest)
    return None


async def materialize_edges(
    db: AsyncSession,
    *,
    as_of: datetime,
    provider: str,
    config: FrozenModelConfig,
    calibration: CalibrationTable,
    lookahead_days: int = 8,
    markets: tuple[str, ...] = (MARKET_SPREAD, MARKET_TOTAL),
) -> dict[str, int]:
    """Score every upcoming game and upsert one edge per (game, provider, market).

    Only scheduled games that have not kicked off by ``as_of`` are touched,
    so edges of finished games stay frozen.
    """
    as_of = as_utc(as_of)
    games = list(
        (
            await db.execute(
                select(Game)
                .where(
                    Game.status == GAME_STATUS_SCHEDULED,
                    Game.commence_time > as_of,
                    Game.commence_time <= as_of + timedelta(days=lookahead_days),
                )
                .order_by(Game.commence_time.asc(), Game.id.asc())
            )
        ).scalars()
    )

    metrics = {
        "games_considered": len(games),
        "edges_written": 0,
        "qualifying": 0,
        "low_confidence": 0,
        "skipped_no_line": 0,
        "skipped_no_projection": 0,
    }
    scored: list[tuple[Game, EdgeScore, MarketQuoteAt]] = []

    for game in games:
        team_ids = (game.home_team_id, game.away_team_id)
        ratings = await ratings_as_of(db, team_ids, season=game.season, week=game.week)
        home_ratings = ratings.get(game.home_team_id, TeamRatings())
        away_ratings = ratings.get(game.away_team_id, TeamRatings())

        for market in markets:
            quote = await latest_market_quote(db, game=game, provider=provider, market=market, as_of=as_of)
            if quote is None:
                metrics["skipped_no_line"] += 1
                continue

            if market == MARKET_SPREAD:
                projection = project_spread(home_ratings, away_ratings, config, neutral_site=game.neutral_site)
                if projection is None:
                    metrics["skipped_no_projection"] += 1
                    continue
                score = score_edge(
                    market=market,
                    market_line=quote.line,
                    model_line=projection.model_spread,
                    config=config,
                    calibration=calibration,
                    low_confidence=projection.low_confidence,
                    model_disagreement=projection.model_disagreement,
                )
            else:
                scoring = await team_scoring_as_of(db, team_ids, season=game.season, week=game.week)
                model_total = project_total(scoring.get(game.home_team_id), scoring.get(game.away_team_id), config)
                score = score_edge(
                    market=market,
                    market_line=quote.line,
                    model_line=model_total,
                    config=config,
                    calibration=calibration,
                )
            scored.append((game, score, quote))

    ranks: dict[tuple[uuid.UUID, str], int] = {}
    for market in markets:
        in_market = [(game, score) for game, score, _quote in scored if score.market == market]
        in_market.sort(key=lambda item: (-item[1].abs_edge, as_utc(item[0].commence_time), str(item[0].id)))
        for rank, (game, _score) in enumerate(in_market, start=1):
            ranks[(game.id, market)] = rank

    for game, score, quote in scored:
        values = {
            "id": uuid.uuid4(),
            "game_id": game.id,
            "provider": provider,
            "market": score.market,
            "market_line": score.market_line,
            "market_price": quote.price,
            "model_line": score.model_line,
            "edge": score.edge,
            "recommended_side": score.recommended_side,
            "win_probability": score.win_probability,
            "expected_value": score.expected_value,
            "confidence_tier": score.confidence_tier,
            "qualifies": score.qualifies,
            "disqualified_reason": score.disqualified_reason,
            "low_confidence": score.low_confidence,
            "model_disagreement": score.model_disagreement,
            "rank_abs_edge": ranks.get((game.id, score.market)),
            "model_version": config.version,
            "market_captured_at": quote.captured_at,
            "as_of": as_of,
            "created_at": as_of,
            "updated_at": as_of,
        }
        stmt = upsert_insert(db, Edge).values(**values)
        update_columns = {
            key: getattr(stmt.excluded, key) for key in values if key not in {"id", "game_id", "provider", "market", "created_at"}
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[Edge.game_id, Edge.provider, Edge.market],
            set_=update_columns,
        )
        await db.execute(stmt)
        metrics["edges_written"] += 1
        if score.qualifies:
            metrics["qualifying"] += 1
        if score.low_confidence:
            metrics["low_confidence"] += 1

    await db.commit()
    logger.info("Edges materialized", extra={"provider": provider, "as_of": as_of.isoformat(), **metrics})
    return metrics
