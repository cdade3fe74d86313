from datetime import UTC, date, datetime

import httpx
import pytest

from edgeline.core.config import Settings
from edgeline.core.errors import ConfigurationError, OddsApiHttpError, OddsApiRetriesExhausted
from edgeline.services import odds_api
from edgeline.services.odds_api import OddsApiClient, RateLimitBudget, snapshot_timestamp_for_partition
from factories import event_payload

REQUESTED_AT = datetime(2024, 9, 6, 17, 0, tzinfo=UTC)


def _history_body(*events: dict) -> dict:
    return {
        "timestamp": "2024-09-06T16:55:39Z",
        "previous_timestamp": "2024-09-06T16:45:39Z",
        "next_timestamp": "2024-09-06T17:05:39Z",
        "data": list(events),
    }


def _patch_sleep(monkeypatch) -> list[float]:  # type: ignore[no-untyped-def]
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    monkeypatch.setattr(odds_api.asyncio, "sleep", fake_sleep)
    return sleeps


def test_snapshot_timestamp_is_previous_day_at_configured_hour() -> None:
    assert snapshot_timestamp_for_partition(date(2024, 9, 7)) == datetime(2024, 9, 6, 17, 0, tzinfo=UTC)
    assert snapshot_timestamp_for_partition(date(2024, 9, 7), hour_utc=12, lead_hours=0) == datetime(
        2024, 9, 7, 12, 0, tzinfo=UTC
    )


def test_client_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        OddsApiClient(Settings(_env_file=None, odds_api_key="  "))


async def test_history_request_parameters_and_payload(monkeypatch, settings: Settings) -> None:
    captured: dict = {}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        captured["url"] = url
        captured["params"] = params
        return httpx.Response(
            200,
            json=_history_body(
                event_payload("evt-1", home_team="Alabama Crimson Tide", away_team="Auburn Tigers", commence_time="2024-09-07T19:30:00Z"),
                {"id": "broken"},
            ),
            headers={"x-requests-remaining": "4980", "x-requests-used": "20", "x-requests-last": "10"},
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    client = OddsApiClient(settings)

    snapshot = await client.fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT, markets="spreads,totals")

    assert captured["url"].endswith("/historical/sports/americanfootball_ncaaf/odds")
    assert captured["params"]["date"] == "2024-09-06T17:00:00Z"
    assert captured["params"]["markets"] == "spreads,totals"
    assert captured["params"]["bookmakers"] == "draftkings"
    assert captured["params"]["apiKey"] == "test-key"

    assert snapshot.status == "ok"
    assert snapshot.attempts == 1
    assert [event.id for event in snapshot.events] == ["evt-1"]
    assert snapshot.skipped_events == 1
    assert snapshot.snapshot_timestamp == datetime(2024, 9, 6, 16, 55, 39, tzinfo=UTC)

    assert client.budget.calls == 1
    assert client.budget.credits_used == settings.odds_api_credits_per_call
    assert client.budget.requests_remaining == 4980
    assert client.budget.requests_last == 10


async def test_rate_limit_waits_for_retry_after_header(monkeypatch, settings: Settings) -> None:
    calls = {"count": 0}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "5"}, request=httpx.Request("GET", url))
        return httpx.Response(200, json=_history_body(), request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    sleeps = _patch_sleep(monkeypatch)

    snapshot = await OddsApiClient(settings).fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert calls["count"] == 2
    assert sleeps == [5.0]
    assert snapshot.attempts == 2
    # An empty board is not an error.
    assert snapshot.status == "no_data"


async def test_rate_limit_without_header_uses_default_wait(monkeypatch, settings: Settings) -> None:
    calls = {"count": 0}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, request=httpx.Request("GET", url))
        return httpx.Response(200, json=_history_body(), request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    sleeps = _patch_sleep(monkeypatch)

    await OddsApiClient(settings).fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert sleeps == [60.0]


async def test_unprocessable_timestamp_is_no_data(monkeypatch, settings: Settings) -> None:
    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        return httpx.Response(422, json={"message": "invalid date"}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    sleeps = _patch_sleep(monkeypatch)

    snapshot = await OddsApiClient(settings).fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert snapshot.status == "no_data"
    assert snapshot.events == []
    assert sleeps == []


async def test_transport_error_retries_with_fixed_delay(monkeypatch, settings: Settings) -> None:
    calls = {"count": 0}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        if calls["count"] < 3:
            raise httpx.ConnectError("temporary failure", request=httpx.Request("GET", url))
        return httpx.Response(
            200,
            json=_history_body(
                event_payload("evt-2", home_team="Utah Utes", away_team="Baylor Bears", commence_time="2024-09-07T23:00:00Z")
            ),
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    sleeps = _patch_sleep(monkeypatch)

    snapshot = await OddsApiClient(settings).fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert calls["count"] == 3
    assert sleeps == [0.5, 0.5]
    assert snapshot.status == "ok"


async def test_other_http_errors_raise_without_retry(monkeypatch, settings: Settings) -> None:
    calls = {"count": 0}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        return httpx.Response(500, text="upstream exploded", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    _patch_sleep(monkeypatch)

    with pytest.raises(OddsApiHttpError) as excinfo:
        await OddsApiClient(settings).fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert calls["count"] == 1
    assert excinfo.value.status_code == 500
    assert excinfo.value.body_preview == "upstream exploded"


async def test_retries_are_bounded(monkeypatch, settings: Settings) -> None:
    calls = {"count": 0}

    async def fake_get(self, url, params=None):  # type: ignore[no-untyped-def]
        calls["count"] += 1
        return httpx.Response(429, headers={"Retry-After": "1"}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    sleeps = _patch_sleep(monkeypatch)

    client = OddsApiClient(settings)
    with pytest.raises(OddsApiRetriesExhausted) as excinfo:
        await client.fetch_historical_odds("americanfootball_ncaaf", REQUESTED_AT)

    assert calls["count"] == settings.odds_api_retry_attempts
    assert excinfo.value.attempts == settings.odds_api_retry_attempts
    assert "429" in excinfo.value.last_reason
    # No wait after the final attempt.
    assert sleeps == [1.0] * (settings.odds_api_retry_attempts - 1)
    assert client.budget.calls == settings.odds_api_retry_attempts


def test_budget_report_fires_when_retries_step_past_the_interval() -> None:
    budget = RateLimitBudget(report_every=25)
    for _ in range(24):
        budget.record_attempt()
    assert budget.should_report() is False

    # A retrying partition jumps from 24 to 26 calls.
    budget.record_attempt()
    budget.record_attempt()
    assert budget.should_report() is True
    budget.mark_reported()
    assert budget.should_report() is False

    for _ in range(25):
        budget.record_attempt()
    assert budget.should_report() is True
