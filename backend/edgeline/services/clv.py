import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import upsert_insert
from edgeline.models.clv_record import ClvRecord
from edgeline.models.edge import Edge
from edgeline.models.game import GAME_STATUS_FINAL, Game, GameResult
from edgeline.services.calibration import grade_pick
from edgeline.services.edges import latest_market_quote
from edgeline.services.tick_store import MARKET_SPREAD, SIDE_HOME, SIDE_OVER

logger = logging.getLogger(__name__)


def calculate_clv(*, market: str, side: str, bet_line: float, close_line: float) -> float:
    """Points of closing line value for a pick.

    Lines are home spreads for spread picks and posted totals for total
    picks; a positive result means the pick beat the close.
    """
    movement = close_line - bet_line
    if market == MARKET_SPREAD:
        return -movement if side == SIDE_HOME else movement
    return movement if side == SIDE_OVER else -movement


def clv_points_to_cents(points: float) -> int:
    return int(round(points * 20))


async def compute_and_persist_clv(db: AsyncSession, *, provider: str | None = None) -> dict[str, int]:
    stmt = (
        select(Edge, Game, GameResult)
        .join(Game, Game.id == Edge.game_id)
        .outerjoin(GameResult, GameResult.game_id == Game.id)
        .outerjoin(ClvRecord, ClvRecord.edge_id == Edge.id)
        .where(
            Game.status == GAME_STATUS_FINAL,
            Edge.recommended_side.is_not(None),
            ClvRecord.id.is_(None),
        )
    )
    if provider is not None:
        stmt = stmt.where(Edge.provider == provider)

    metrics = {"edges_considered": 0, "records_written": 0, "skipped_no_close": 0}
    for edge, game, result in (await db.execute(stmt)).all():
        metrics["edges_considered"] += 1
        close = await latest_market_quote(
            db, game=game, provider=edge.provider, market=edge.market, as_of=game.commence_time
        )
        if close is None:
            metrics["skipped_no_close"] += 1
            continue

        clv_points = calculate_clv(
            market=edge.market,
            side=edge.recommended_side,
            bet_line=edge.market_line,
            close_line=close.line,
        )
        outcome = None
        if result is not None:
            outcome = grade_pick(
                market=edge.market,
                side=edge.recommended_side,
                line=edge.market_line,
                home_score=result.home_score,
                away_score=result.away_score,
            )

        insert_stmt = (
            upsert_insert(db, ClvRecord)
            .values(
                id=uuid.uuid4(),
                edge_id=edge.id,
                game_id=game.id,
                market=edge.market,
                side=edge.recommended_side,
                bet_line=edge.market_line,
                close_line=close.line,
                clv_points=clv_points,
                clv_cents=clv_points_to_cents(clv_points),
                result=outcome,
                computed_at=datetime.now(UTC),
            )
            .on_conflict_do_nothing(index_elements=[ClvRecord.edge_id])
        )
        await db.execute(insert_stmt)
        metrics["records_written"] += 1

    await db.commit()
    logger.info("CLV computed", extra=metrics)
    return metrics
