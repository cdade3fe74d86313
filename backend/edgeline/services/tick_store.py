import hashlib
import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import as_utc, upsert_insert
from edgeline.models.odds_tick import OddsTick
from edgeline.services.odds_payload import MARKET_SPREADS, MARKET_TOTALS, MarketEvent

logger = logging.getLogger(__name__)

MARKET_SPREAD = "spread"
MARKET_TOTAL = "total"

SIDE_HOME = "home"
SIDE_AWAY = "away"
SIDE_OVER = "over"
SIDE_UNDER = "under"

TICK_HASH_CACHE_PREFIX = "edgeline:tick:"

QUOTED_SIDES = {
    MARKET_SPREADS: (SIDE_HOME, SIDE_AWAY),
    MARKET_TOTALS: (SIDE_OVER, SIDE_UNDER),
}


@dataclass(frozen=True)
class TickRecord:
    game_id: uuid.UUID
    provider: str
    market: str
    side: str
    line: float | None
    price: int | None
    captured_at: datetime

    @property
    def content_hash(self) -> str:
        line = "" if self.line is None else f"{self.line:.2f}"
        price = "" if self.price is None else str(self.price)
        captured = as_utc(self.captured_at).strftime("%Y-%m-%dT%H:%M:%SZ")
        raw = "|".join((str(self.game_id), self.provider, self.market, self.side, line, price, captured))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def as_row(self) -> dict:
        return {
            "id": uuid.uuid4(),
            "content_hash": self.content_hash,
            "game_id": self.game_id,
            "provider": self.provider,
            "market": self.market,
            "side": self.side,
            "line": self.line,
            "price": self.price,
            "captured_at": as_utc(self.captured_at),
        }


@dataclass
class TickPersistResult:
    submitted: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed_chunks: int = 0
    failed_rows: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "failed_chunks": self.failed_chunks,
            "failed_rows": self.failed_rows,
        }


def ticks_from_event(
    event: MarketEvent,
    *,
    game_id: uuid.UUID,
    provider: str,
    captured_at: datetime,
    swapped: bool = False,
) -> list[TickRecord]:
    """Spread and total ticks quoted by ``provider`` for one event.

    ``swapped`` means the provider lists the matchup with home and away
    reversed relative to the stored game; per-side lines are reassigned so
    ``home``/``away`` always refer to the stored game.
    """
    bookmaker = event.bookmaker(provider)
    if bookmaker is None:
        return []

    ticks: list[TickRecord] = []
    spreads = bookmaker.market(MARKET_SPREADS)
    if spreads is not None:
        provider_home = spreads.outcome(event.home_team)
        provider_away = spreads.outcome(event.away_team)
        home_quote, away_quote = (provider_away, provider_home) if swapped else (provider_home, provider_away)
        for side, quote in ((SIDE_HOME, home_quote), (SIDE_AWAY, away_quote)):
            if quote is None or quote.point is None:
                continue
            ticks.append(
                TickRecord(
                    game_id=game_id,
                    provider=provider,
                    market=MARKET_SPREAD,
                    side=side,
                    line=quote.point,
                    price=quote.price,
                    captured_at=captured_at,
                )
            )

    totals = bookmaker.market(MARKET_TOTALS)
    if totals is not None:
        for side in (SIDE_OVER, SIDE_UNDER):
            quote = totals.outcome_named(side)
            if quote is None or quote.point is None:
                continue
            ticks.append(
                TickRecord(
                    game_id=game_id,
                    provider=provider,
                    market=MARKET_TOTAL,
                    side=side,
                    line=quote.point,
                    price=quote.price,
                    captured_at=captured_at,
                )
            )
    return ticks


def missing_quote_count(ticks: Sequence[TickRecord], markets: Iterable[str]) -> int:
    """Requested market sides that produced no tick."""
    expected = sum(len(QUOTED_SIDES.get(market, ())) for market in set(markets))
    return max(expected - len(ticks), 0)


def _chunked(items: Sequence[TickRecord], size: int) -> Iterable[Sequence[TickRecord]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def _cached_hashes(redis: Redis | None, hashes: list[str]) -> set[str]:
    if redis is None or not hashes:
        return set()
    try:
        values = await redis.mget([f"{TICK_HASH_CACHE_PREFIX}{value}" for value in hashes])
    except Exception:
        logger.exception("Redis tick cache lookup failed; continuing without cache")
        return set()
    return {value for value, cached in zip(hashes, values) if cached is not None}


async def _remember_hashes(redis: Redis | None, hashes: list[str], ttl_seconds: int) -> None:
    if redis is None or not hashes:
        return
    try:
        async with redis.pipeline(transaction=False) as pipe:
            for value in hashes:
                pipe.set(f"{TICK_HASH_CACHE_PREFIX}{value}", "1", ex=ttl_seconds)
            await pipe.execute()
    except Exception:
        logger.exception("Redis tick cache update failed")


async def persist_ticks(
    db: AsyncSession,
    ticks: Sequence[TickRecord],
    *,
    chunk_size: int = 50,
    retry_attempts: int = 2,
    redis: Redis | None = None,
    cache_ttl_seconds: int = 86400,
) -> TickPersistResult:
    """Insert ticks keyed by content hash, one committed chunk at a time.

    Existing hashes are skipped by the unique constraint, so replaying the
    same input inserts nothing. A chunk that keeps failing is rolled back
    and counted; later chunks still run.
    """
    result = TickPersistResult(submitted=len(ticks))
    unique: dict[str, TickRecord] = {}
    for tick in ticks:
        unique.setdefault(tick.content_hash, tick)
    result.duplicates += len(ticks) - len(unique)

    cached = await _cached_hashes(redis, list(unique))
    result.duplicates += len(cached)
    candidates = [tick for content_hash, tick in unique.items() if content_hash not in cached]

    attempts = max(1, retry_attempts)
    for chunk_index, chunk in enumerate(_chunked(candidates, max(1, chunk_size))):
        rows = [tick.as_row() for tick in chunk]
        for attempt in range(1, attempts + 1):
            try:
                stmt = (
                    upsert_insert(db, OddsTick)
                    .values(rows)
                    .on_conflict_do_nothing(index_elements=[OddsTick.content_hash])
                    .returning(OddsTick.content_hash)
                )
                inserted_hashes = list((await db.execute(stmt)).scalars().all())
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                logger.exception(
                    "Tick chunk write failed",
                    extra={"chunk_index": chunk_index, "chunk_rows": len(rows), "attempt": attempt},
                )
                if attempt >= attempts:
                    result.failed_chunks += 1
                    result.failed_rows += len(rows)
                continue

            result.inserted += len(inserted_hashes)
            result.duplicates += len(rows) - len(inserted_hashes)
            await _remember_hashes(redis, [row["content_hash"] for row in rows], cache_ttl_seconds)
            break

    return result
