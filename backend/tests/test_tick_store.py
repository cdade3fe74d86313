import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.models.game import Game
from edgeline.models.odds_tick import OddsTick
from edgeline.services.odds_payload import parse_market_event
from edgeline.services.tick_store import (
    MARKET_SPREAD,
    MARKET_TOTAL,
    SIDE_AWAY,
    SIDE_HOME,
    TickRecord,
    persist_ticks,
    ticks_from_event,
)
from factories import event_payload, make_game, make_team

CAPTURED_AT = datetime(2024, 9, 6, 16, 55, tzinfo=UTC)


async def _game(db: AsyncSession) -> Game:
    home = await make_team(db, "Texas")
    away = await make_team(db, "Michigan")
    return await make_game(db, home=home, away=away, commence_time=datetime(2024, 9, 7, 16, 0, tzinfo=UTC))


def _spread_ticks(game_id: uuid.UUID, count: int) -> list[TickRecord]:
    return [
        TickRecord(
            game_id=game_id,
            provider="draftkings",
            market=MARKET_SPREAD,
            side=SIDE_HOME,
            line=-3.5,
            price=-110,
            captured_at=CAPTURED_AT + timedelta(minutes=index),
        )
        for index in range(count)
    ]


async def _tick_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(OddsTick))).scalar_one()


def test_content_hash_ignores_timezone_representation_but_not_line() -> None:
    game_id = uuid.uuid4()
    tick = _spread_ticks(game_id, 1)[0]
    naive_same_instant = TickRecord(
        game_id=game_id,
        provider="draftkings",
        market=MARKET_SPREAD,
        side=SIDE_HOME,
        line=-3.5,
        price=-110,
        captured_at=CAPTURED_AT.replace(tzinfo=None),
    )
    moved = TickRecord(
        game_id=game_id,
        provider="draftkings",
        market=MARKET_SPREAD,
        side=SIDE_HOME,
        line=-4.0,
        price=-110,
        captured_at=CAPTURED_AT,
    )

    assert tick.content_hash == naive_same_instant.content_hash
    assert tick.content_hash != moved.content_hash
    assert len(tick.content_hash) == 64


def test_ticks_from_event_keeps_provider_orientation_and_swaps_when_asked() -> None:
    event = parse_market_event(
        event_payload(
            "evt-1",
            home_team="Texas Longhorns",
            away_team="Michigan Wolverines",
            commence_time="2024-09-07T16:00:00Z",
            home_point=7.5,
        )
    )
    assert event is not None
    game_id = uuid.uuid4()

    ticks = ticks_from_event(event, game_id=game_id, provider="draftkings", captured_at=CAPTURED_AT)
    spread = {tick.side: tick.line for tick in ticks if tick.market == MARKET_SPREAD}
    totals = {tick.side: tick.line for tick in ticks if tick.market == MARKET_TOTAL}
    assert spread == {SIDE_HOME: 7.5, SIDE_AWAY: -7.5}
    assert totals == {"over": 51.5, "under": 51.5}

    swapped = ticks_from_event(event, game_id=game_id, provider="draftkings", captured_at=CAPTURED_AT, swapped=True)
    swapped_spread = {tick.side: tick.line for tick in swapped if tick.market == MARKET_SPREAD}
    assert swapped_spread == {SIDE_HOME: -7.5, SIDE_AWAY: 7.5}

    assert ticks_from_event(event, game_id=game_id, provider="fanduel", captured_at=CAPTURED_AT) == []


async def test_persist_is_idempotent(db_session: AsyncSession) -> None:
    game = await _game(db_session)
    ticks = _spread_ticks(game.id, 5)

    first = await persist_ticks(db_session, ticks)
    second = await persist_ticks(db_session, ticks)

    assert first.inserted == 5
    assert first.duplicates == 0
    assert second.inserted == 0
    assert second.duplicates == 5
    assert await _tick_count(db_session) == 5


async def test_duplicates_inside_one_batch_are_collapsed(db_session: AsyncSession) -> None:
    game = await _game(db_session)
    tick = _spread_ticks(game.id, 1)[0]

    result = await persist_ticks(db_session, [tick, tick, tick])

    assert result.submitted == 3
    assert result.inserted == 1
    assert result.duplicates == 2


async def test_failed_chunk_does_not_block_later_chunks(db_session: AsyncSession, monkeypatch) -> None:
    game = await _game(db_session)
    ticks = _spread_ticks(game.id, 7)
    real_execute = db_session.execute
    calls = {"count": 0}

    async def flaky_execute(statement, *args, **kwargs):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT INTO odds_ticks", {}, Exception("database is locked"))
        return await real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", flaky_execute)

    result = await persist_ticks(db_session, ticks, chunk_size=3, retry_attempts=1)

    assert result.failed_chunks == 1
    assert result.failed_rows == 3
    assert result.inserted == 4
    monkeypatch.undo()
    assert await _tick_count(db_session) == 4


async def test_chunk_is_retried_before_being_counted_as_failed(db_session: AsyncSession, monkeypatch) -> None:
    game = await _game(db_session)
    ticks = _spread_ticks(game.id, 2)
    real_execute = db_session.execute
    calls = {"count": 0}

    async def flaky_execute(statement, *args, **kwargs):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT INTO odds_ticks", {}, Exception("deadlock detected"))
        return await real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", flaky_execute)

    result = await persist_ticks(db_session, ticks, retry_attempts=2)

    assert result.failed_chunks == 0
    assert result.inserted == 2


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def mget(self, keys):  # type: ignore[no-untyped-def]
        return [self.store.get(key) for key in keys]

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.pending: list[tuple[str, str, int]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:  # type: ignore[no-untyped-def]
        return None

    def set(self, key: str, value: str, ex: int) -> "FakePipeline":
        self.pending.append((key, value, ex))
        return self

    async def execute(self) -> list[bool]:
        for key, value, ex in self.pending:
            self.redis.store[key] = value
            self.redis.expiries[key] = ex
        return [True] * len(self.pending)


async def test_redis_cache_short_circuits_known_hashes(db_session: AsyncSession) -> None:
    game = await _game(db_session)
    ticks = _spread_ticks(game.id, 3)
    redis = FakeRedis()

    first = await persist_ticks(db_session, ticks, redis=redis, cache_ttl_seconds=120)
    assert first.inserted == 3
    assert len(redis.store) == 3
    assert set(redis.expiries.values()) == {120}

    second = await persist_ticks(db_session, ticks, redis=redis)
    assert second.inserted == 0
    assert second.duplicates == 3
