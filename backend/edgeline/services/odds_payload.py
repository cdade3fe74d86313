"""Typed view over provider odds JSON.

Every level of the provider payload is optional: a bookmaker may not quote
a market, a market may not carry a point, an outcome may not carry a price.
Parsing turns each level into a frozen dataclass where absent pieces are
``None``; callers go through the lookup helpers instead of chaining
``dict.get`` calls.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

MARKET_SPREADS = "spreads"
MARKET_TOTALS = "totals"


def parse_iso_datetime(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    parsed_value = value.strip()
    if not parsed_value:
        return None
    if parsed_value.endswith("Z"):
        parsed_value = parsed_value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(parsed_value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_float(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: object) -> int | None:
    as_float = _as_float(value)
    if as_float is None:
        return None
    return int(round(as_float))


@dataclass(frozen=True)
class OutcomeQuote:
    name: str
    price: int | None
    point: float | None


@dataclass(frozen=True)
class MarketQuote:
    key: str
    outcomes: tuple[OutcomeQuote, ...]
    last_update: datetime | None = None

    def outcome(self, name: str) -> OutcomeQuote | None:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None

    def outcome_named(self, label: str) -> OutcomeQuote | None:
        lowered = label.lower()
        for outcome in self.outcomes:
            if outcome.name.lower() == lowered:
                return outcome
        return None


@dataclass(frozen=True)
class BookmakerQuote:
    key: str
    markets: tuple[MarketQuote, ...]
    last_update: datetime | None = None

    def market(self, key: str) -> MarketQuote | None:
        for market in self.markets:
            if market.key == key:
                return market
        return None


@dataclass(frozen=True)
class MarketEvent:
    id: str
    sport_key: str | None
    commence_time: datetime
    home_team: str
    away_team: str
    bookmakers: tuple[BookmakerQuote, ...]

    def bookmaker(self, key: str) -> BookmakerQuote | None:
        for bookmaker in self.bookmakers:
            if bookmaker.key == key:
                return bookmaker
        return None


def parse_outcome(raw: object) -> OutcomeQuote | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    return OutcomeQuote(name=name.strip(), price=_as_int(raw.get("price")), point=_as_float(raw.get("point")))


def parse_market(raw: object) -> MarketQuote | None:
    if not isinstance(raw, dict):
        return None
    key = raw.get("key")
    if not isinstance(key, str) or not key:
        return None
    raw_outcomes = raw.get("outcomes")
    outcomes: list[OutcomeQuote] = []
    if isinstance(raw_outcomes, list):
        for item in raw_outcomes:
            outcome = parse_outcome(item)
            if outcome is not None:
                outcomes.append(outcome)
    return MarketQuote(key=key, outcomes=tuple(outcomes), last_update=parse_iso_datetime(raw.get("last_update")))


def parse_bookmaker(raw: object) -> BookmakerQuote | None:
    if not isinstance(raw, dict):
        return None
    key = raw.get("key")
    if not isinstance(key, str) or not key:
        return None
    raw_markets = raw.get("markets")
    markets: list[MarketQuote] = []
    if isinstance(raw_markets, list):
        for item in raw_markets:
            market = parse_market(item)
            if market is not None:
                markets.append(market)
    return BookmakerQuote(key=key, markets=tuple(markets), last_update=parse_iso_datetime(raw.get("last_update")))


def parse_market_event(raw: object) -> MarketEvent | None:
    if not isinstance(raw, dict):
        return None
    event_id = raw.get("id")
    home_team = raw.get("home_team")
    away_team = raw.get("away_team")
    commence_time = parse_iso_datetime(raw.get("commence_time"))
    if not isinstance(event_id, str) or not event_id:
        return None
    if not isinstance(home_team, str) or not isinstance(away_team, str) or commence_time is None:
        return None

    bookmakers: list[BookmakerQuote] = []
    raw_bookmakers = raw.get("bookmakers")
    if isinstance(raw_bookmakers, list):
        for item in raw_bookmakers:
            bookmaker = parse_bookmaker(item)
            if bookmaker is not None:
                bookmakers.append(bookmaker)

    sport_key = raw.get("sport_key")
    return MarketEvent(
        id=event_id,
        sport_key=sport_key if isinstance(sport_key, str) else None,
        commence_time=commence_time,
        home_team=home_team.strip(),
        away_team=away_team.strip(),
        bookmakers=tuple(bookmakers),
    )


@dataclass(frozen=True)
class HistoryPayload:
    events: tuple[MarketEvent, ...]
    skipped_events: int
    snapshot_timestamp: datetime | None
    previous_timestamp: datetime | None
    next_timestamp: datetime | None


def extract_history_payload(payload: object) -> HistoryPayload:
    raw_events: list[object] = []
    snapshot_timestamp: datetime | None = None
    previous_timestamp: datetime | None = None
    next_timestamp: datetime | None = None

    if isinstance(payload, list):
        raw_events = list(payload)
    elif isinstance(payload, dict):
        if isinstance(payload.get("data"), list):
            raw_events = list(payload["data"])
        elif payload.get("id") and isinstance(payload.get("bookmakers"), list):
            raw_events = [payload]
        snapshot_timestamp = parse_iso_datetime(payload.get("timestamp"))
        previous_timestamp = parse_iso_datetime(payload.get("previous_timestamp"))
        next_timestamp = parse_iso_datetime(payload.get("next_timestamp"))
    else:
        logger.warning("Unexpected history payload type", extra={"type": str(type(payload))})

    events: list[MarketEvent] = []
    skipped = 0
    for raw in raw_events:
        event = parse_market_event(raw)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    return HistoryPayload(
        events=tuple(events),
        skipped_events=skipped,
        snapshot_timestamp=snapshot_timestamp,
        previous_timestamp=previous_timestamp,
        next_timestamp=next_timestamp,
    )
