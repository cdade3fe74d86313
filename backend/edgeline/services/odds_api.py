import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import Literal

import httpx

from edgeline.core.config import Settings, get_settings
from edgeline.core.errors import OddsApiHttpError, OddsApiRetriesExhausted
from edgeline.services.odds_payload import MarketEvent, extract_history_payload

logger = logging.getLogger(__name__)

SnapshotStatus = Literal["ok", "no_data"]


@dataclass
class RateLimitBudget:
    credits_per_call: int = 10
    report_every: int = 25
    calls: int = 0
    credits_used: int = 0
    requests_remaining: int | None = None
    requests_used: int | None = None
    requests_last: int | None = None
    last_reported_calls: int = 0

    def record_attempt(self) -> None:
        self.calls += 1
        self.credits_used += self.credits_per_call

    def update_from_headers(self, headers: httpx.Headers) -> None:
        remaining = _parse_header_int(headers, "x-requests-remaining")
        used = _parse_header_int(headers, "x-requests-used")
        last = _parse_header_int(headers, "x-requests-last")
        if remaining is not None:
            self.requests_remaining = remaining
        if used is not None:
            self.requests_used = used
        if last is not None:
            self.requests_last = last

    def should_report(self) -> bool:
        return self.report_every > 0 and self.calls - self.last_reported_calls >= self.report_every

    def mark_reported(self) -> None:
        self.last_reported_calls = self.calls

    def as_dict(self) -> dict[str, int | None]:
        return {
            "api_calls": self.calls,
            "credits_used": self.credits_used,
            "requests_remaining": self.requests_remaining,
            "requests_used": self.requests_used,
            "requests_last": self.requests_last,
        }


@dataclass
class HistoricalSnapshot:
    status: SnapshotStatus
    requested_at: datetime
    events: list[MarketEvent] = field(default_factory=list)
    skipped_events: int = 0
    snapshot_timestamp: datetime | None = None
    previous_timestamp: datetime | None = None
    next_timestamp: datetime | None = None
    attempts: int = 0


def _parse_header_int(headers: httpx.Headers, key: str) -> int | None:
    raw = headers.get(key)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return None


def _retry_after_seconds(headers: httpx.Headers, default: float) -> float:
    raw = headers.get("retry-after")
    if raw is None:
        return default
    try:
        seconds = float(raw.strip())
    except (TypeError, ValueError):
        return default
    if seconds < 0:
        return default
    return seconds


def _to_iso_z(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    else:
        value = value.astimezone(UTC)
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def snapshot_timestamp_for_partition(partition: date, *, hour_utc: int = 17, lead_hours: int = 24) -> datetime:
    """Instant at which a date partition's board is queried.

    With the defaults this is 17:00 UTC on the previous day, i.e. a
    day-ahead line rather than a closing line.
    """
    anchor = datetime.combine(partition, time(hour=hour_utc), tzinfo=UTC)
    return anchor - timedelta(hours=lead_hours)


class OddsApiClient:
    def __init__(self, settings: Settings | None = None, budget: RateLimitBudget | None = None) -> None:
        self.settings = settings or get_settings()
        self.api_key = self.settings.require_odds_api_key()
        self.budget = budget or RateLimitBudget(
            credits_per_call=self.settings.odds_api_credits_per_call,
            report_every=self.settings.odds_api_budget_report_every,
        )

    def _history_url(self, sport_key: str) -> str:
        return f"{self.settings.odds_api_base_url}/historical/sports/{sport_key}/odds"

    def _history_params(
        self,
        *,
        timestamp: datetime,
        markets: str | None,
        regions: str | None,
        bookmakers: str | None,
    ) -> dict[str, str]:
        params: dict[str, str] = {
            "apiKey": self.api_key,
            "regions": regions if regions is not None else self.settings.odds_api_regions,
            "markets": markets if markets is not None else self.settings.odds_api_markets,
            "oddsFormat": "american",
            "dateFormat": "iso",
            "date": _to_iso_z(timestamp),
        }
        configured_books = bookmakers if bookmakers is not None else self.settings.odds_api_bookmakers
        if configured_books.strip():
            params["bookmakers"] = configured_books
        return params

    async def fetch_historical_odds(
        self,
        sport_key: str,
        timestamp: datetime,
        *,
        markets: str | None = None,
        regions: str | None = None,
        bookmakers: str | None = None,
    ) -> HistoricalSnapshot:
        """Return the events the provider had on its board at ``timestamp``.

        HTTP 422 and an empty board both yield ``status="no_data"``. 429 and
        transport failures are retried within ``odds_api_retry_attempts``;
        any other non-2xx raises ``OddsApiHttpError`` immediately.
        """
        url = self._history_url(sport_key)
        params = self._history_params(timestamp=timestamp, markets=markets, regions=regions, bookmakers=bookmakers)
        attempts = max(1, self.settings.odds_api_retry_attempts)
        retry_delay = max(0.0, self.settings.odds_api_retry_delay_seconds)
        default_retry_after = max(0.0, self.settings.odds_api_default_retry_after_seconds)
        last_reason = "no attempt made"

        for attempt in range(1, attempts + 1):
            self.budget.record_attempt()
            try:
                async with httpx.AsyncClient(timeout=self.settings.odds_api_timeout_seconds) as client:
                    response = await client.get(url, params=params)
            except httpx.TransportError as exc:
                last_reason = f"transport error: {exc.__class__.__name__}"
                logger.warning(
                    "Odds API history attempt failed",
                    extra={
                        "sport_key": sport_key,
                        "requested_at": _to_iso_z(timestamp),
                        "attempt": attempt,
                        "attempts_total": attempts,
                        "reason": last_reason,
                    },
                )
                if attempt < attempts:
                    await asyncio.sleep(retry_delay)
                continue

            self.budget.update_from_headers(response.headers)

            if response.status_code == 429:
                wait_seconds = _retry_after_seconds(response.headers, default_retry_after)
                last_reason = "rate limited (HTTP 429)"
                logger.warning(
                    "Odds API rate limited",
                    extra={
                        "sport_key": sport_key,
                        "requested_at": _to_iso_z(timestamp),
                        "attempt": attempt,
                        "attempts_total": attempts,
                        "retry_after_seconds": wait_seconds,
                    },
                )
                if attempt < attempts:
                    await asyncio.sleep(wait_seconds)
                continue

            if response.status_code == 422:
                logger.info(
                    "Odds API has no snapshot for timestamp",
                    extra={"sport_key": sport_key, "requested_at": _to_iso_z(timestamp)},
                )
                return HistoricalSnapshot(status="no_data", requested_at=timestamp, attempts=attempt)

            if response.status_code < 200 or response.status_code >= 300:
                raise OddsApiHttpError(sport_key, timestamp, response.status_code, response.text[:200])

            try:
                payload = response.json()
            except ValueError:
                last_reason = "invalid JSON body"
                logger.warning(
                    "Odds API returned unparseable body",
                    extra={"sport_key": sport_key, "attempt": attempt, "attempts_total": attempts},
                )
                if attempt < attempts:
                    await asyncio.sleep(retry_delay)
                continue

            history = extract_history_payload(payload)
            status: SnapshotStatus = "ok" if history.events else "no_data"
            logger.info(
                "Odds API history response received",
                extra={
                    "sport_key": sport_key,
                    "requested_at": _to_iso_z(timestamp),
                    "events_seen": len(history.events),
                    "events_skipped": history.skipped_events,
                    "requests_remaining": self.budget.requests_remaining,
                    "requests_last": self.budget.requests_last,
                },
            )
            return HistoricalSnapshot(
                status=status,
                requested_at=timestamp,
                events=list(history.events),
                skipped_events=history.skipped_events,
                snapshot_timestamp=history.snapshot_timestamp,
                previous_timestamp=history.previous_timestamp,
                next_timestamp=history.next_timestamp,
                attempts=attempt,
            )

        raise OddsApiRetriesExhausted(sport_key, timestamp, attempts, last_reason)
