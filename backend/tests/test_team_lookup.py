import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.models.team import TeamNameMapping, UnmatchedTeamName
from edgeline.services.team_lookup import (
    TeamLookupCache,
    UnmatchedNameLedger,
    build_team_lookup_cache,
    lookup_team,
    normalize_team_name,
)
from factories import make_team


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("St. Mary's", "saint marys"),
        ("St Bonaventure", "saint bonaventure"),
        ("Florida Int'l Golden Panthers", "florida international"),
        ("Marquette Golden Eagles", "marquette"),
        ("Miami (OH) RedHawks", "miami"),
        ("UT-Arlington Mavericks", "ut arlington"),
        ("  Penn   State Nittany Lions ", "penn state"),
        ("Texas A&M Aggies", "texas a&m"),
    ],
)
def test_normalize_team_name(raw: str, expected: str) -> None:
    assert normalize_team_name(raw) == expected


def test_lookup_cascade_prefers_alias_then_mapping_then_normalized() -> None:
    alabama, auburn, ohio_state = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    cache = TeamLookupCache.build(
        source="odds_api",
        teams=[(alabama, "Alabama"), (auburn, "Auburn"), (ohio_state, "Ohio State")],
        aliases=[("Bama Crimson Tide", alabama), ("Ohio St", auburn)],
        mappings=[("Ohio St", ohio_state), ("The Ohio State", ohio_state)],
    )

    by_alias = lookup_team("Bama Crimson Tide", cache)
    assert by_alias is not None
    assert by_alias.team_id == alabama
    assert by_alias.match_source == "alias"

    # Alias beats mapping for the same raw name.
    contested = lookup_team("Ohio St", cache)
    assert contested is not None
    assert contested.team_id == auburn
    assert contested.match_source == "alias"

    by_mapping = lookup_team("The Ohio State", cache)
    assert by_mapping is not None
    assert by_mapping.match_source == "mapping"

    by_normalized = lookup_team("Ohio State Buckeyes", cache)
    assert by_normalized is not None
    assert by_normalized.team_id == ohio_state
    assert by_normalized.match_source == "normalized"

    assert lookup_team("Ohio", cache) is None


def test_ambiguous_normalized_name_fails_closed() -> None:
    miami_fl, miami_oh = uuid.uuid4(), uuid.uuid4()
    cache = TeamLookupCache.build(
        source="odds_api",
        teams=[(miami_fl, "Miami (FL)"), (miami_oh, "Miami (OH)")],
        aliases=[("Miami Hurricanes", miami_fl)],
    )

    assert "miami" in cache.ambiguous
    assert lookup_team("Miami RedHawks", cache) is None
    match = lookup_team("Miami Hurricanes", cache)
    assert match is not None
    assert match.team_id == miami_fl


def test_cache_is_deterministic_regardless_of_input_order() -> None:
    teams = [(uuid.uuid4(), name) for name in ("Kent State", "Kent St.", "Georgia", "Georgia Tech")]
    forward = TeamLookupCache.build(source="odds_api", teams=teams)
    backward = TeamLookupCache.build(source="odds_api", teams=list(reversed(teams)))

    for name in ("Georgia Bulldogs", "Georgia Tech", "Kent State Golden Flashes"):
        assert lookup_team(name, forward) == lookup_team(name, backward)


def test_cache_cannot_be_mutated() -> None:
    cache = TeamLookupCache.build(source="odds_api", teams=[(uuid.uuid4(), "Utah")])
    with pytest.raises(TypeError):
        cache.by_normalized["utah"] = None  # type: ignore[index]


async def test_build_cache_from_database(db_session: AsyncSession) -> None:
    unlv = await make_team(db_session, "UNLV", aliases={"odds_api": ["UNLV Rebels"], "other": ["Vegas"]})
    nevada = await make_team(db_session, "Nevada")
    db_session.add(TeamNameMapping(id=uuid.uuid4(), source_type="odds_api", source_name="Nevada Wolf Pack", team_id=nevada.id))
    await db_session.commit()

    cache = await build_team_lookup_cache(db_session, "odds_api")

    assert lookup_team("UNLV Rebels", cache).team_id == unlv.id
    assert lookup_team("Vegas", cache) is None
    assert lookup_team("Nevada Wolf Pack", cache).match_source == "mapping"


async def test_unmatched_ledger_dedupes_per_run_and_across_runs(db_session: AsyncSession) -> None:
    ledger = UnmatchedNameLedger(source="odds_api")
    await ledger.record(db_session, "Mystery U", context="2024-09-07")
    await ledger.record(db_session, "Mystery U", context="2024-09-07")
    await ledger.record(db_session, "Nowhere State")
    await db_session.commit()

    assert ledger.occurrences == 3
    assert ledger.distinct == 2

    next_run = UnmatchedNameLedger(source="odds_api")
    await next_run.record(db_session, "Mystery U")
    await db_session.commit()

    rows = (
        await db_session.execute(select(UnmatchedTeamName).where(UnmatchedTeamName.team_name == "Mystery U"))
    ).scalars().all()
    assert len(rows) == 1
    assert rows[0].occurrences == 2
    assert rows[0].resolved is False

    cache = await build_team_lookup_cache(db_session, "odds_api")
    assert cache.known_unmatched == frozenset({"Mystery U", "Nowhere State"})
