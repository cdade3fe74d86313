"""Deterministic provider-name to canonical-team resolution.

Resolution is a strict cascade: provider alias, then explicit name mapping,
then normalized canonical name. There is no fuzzy matching. A normalized
key claimed by more than one team is ambiguous and never resolves; the
miss goes to the unmatched-name ledger like any other.
"""

import logging
import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Literal, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.dialect import upsert_insert
from edgeline.models.team import Team, TeamAlias, TeamNameMapping, UnmatchedTeamName

logger = logging.getLogger(__name__)

MatchSource = Literal["alias", "mapping", "normalized"]

MASCOT_SUFFIXES: tuple[str, ...] = (
    "wildcats", "tigers", "bulldogs", "eagles", "bears", "lions", "panthers",
    "hawks", "owls", "cardinals", "cougars", "huskies", "warriors", "knights",
    "spartans", "trojans", "rebels", "wolverines", "gators", "aggies", "longhorns",
    "mountaineers", "volunteers", "commodores", "hurricanes", "cavaliers", "hokies",
    "demon deacons", "blue devils", "tar heels", "seminoles", "orange", "wolfpack",
    "crimson tide", "razorbacks", "jayhawks", "sooners", "cyclones", "horned frogs",
    "red raiders", "golden eagles", "fighting irish", "golden gophers", "buckeyes",
    "nittany lions", "badgers", "hawkeyes", "cornhuskers", "boilermakers", "hoosiers",
    "illini", "terrapins", "scarlet knights", "rainbow warriors", "redhawks", "mavericks",
    "jaguars", "tommies", "royals", "dolphins", "grizzlies", "fighting camels",
    "great danes", "broncs", "broncos", "49ers", "golden panthers", "utes",
)

# Longest first so "golden eagles" wins over "eagles".
_MASCOT_PATTERN = re.compile(
    r"\s+(?:" + "|".join(re.escape(m) for m in sorted(MASCOT_SUFFIXES, key=len, reverse=True)) + r")$"
)
_SAINT_ABBREV = re.compile(r"\bst\.\s*|\bst\s+")
_INTERNATIONAL_ABBREV = re.compile(r"\bint['’]?l\b")
_APOSTROPHES = re.compile(r"['‘’`]")
_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*")
_PUNCTUATION = re.compile(r"[.\-]")
_WHITESPACE = re.compile(r"\s+")


def normalize_team_name(name: str) -> str:
    normalized = name.lower()
    normalized = _INTERNATIONAL_ABBREV.sub("international", normalized)
    normalized = _APOSTROPHES.sub("", normalized)
    normalized = _SAINT_ABBREV.sub("saint ", normalized)
    normalized = _MASCOT_PATTERN.sub("", normalized.strip())
    normalized = _PARENTHETICAL.sub(" ", normalized)
    normalized = _PUNCTUATION.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


@dataclass(frozen=True)
class TeamMatch:
    team_id: uuid.UUID
    team_name: str
    match_source: MatchSource


@dataclass(frozen=True)
class TeamLookupCache:
    source: str
    by_alias: Mapping[str, TeamMatch]
    by_mapping: Mapping[str, TeamMatch]
    by_normalized: Mapping[str, TeamMatch]
    ambiguous: frozenset[str]
    known_unmatched: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        *,
        source: str,
        teams: Iterable[tuple[uuid.UUID, str]],
        aliases: Iterable[tuple[str, uuid.UUID]] = (),
        mappings: Iterable[tuple[str, uuid.UUID]] = (),
        known_unmatched: Iterable[str] = (),
    ) -> "TeamLookupCache":
        names: dict[uuid.UUID, str] = {}
        by_normalized: dict[str, TeamMatch] = {}
        ambiguous: set[str] = set()

        for team_id, team_name in sorted(teams, key=lambda item: (item[1], str(item[0]))):
            names[team_id] = team_name
            key = normalize_team_name(team_name)
            if not key or key in ambiguous:
                continue
            existing = by_normalized.get(key)
            if existing is not None and existing.team_id != team_id:
                ambiguous.add(key)
                del by_normalized[key]
                continue
            by_normalized[key] = TeamMatch(team_id=team_id, team_name=team_name, match_source="normalized")

        by_alias = {
            alias: TeamMatch(team_id=team_id, team_name=names.get(team_id, alias), match_source="alias")
            for alias, team_id in aliases
        }
        by_mapping = {
            source_name: TeamMatch(team_id=team_id, team_name=names.get(team_id, source_name), match_source="mapping")
            for source_name, team_id in mappings
        }

        if ambiguous:
            logger.warning(
                "Ambiguous normalized team names excluded from lookup",
                extra={"source": source, "ambiguous_keys": sorted(ambiguous)},
            )

        return cls(
            source=source,
            by_alias=MappingProxyType(by_alias),
            by_mapping=MappingProxyType(by_mapping),
            by_normalized=MappingProxyType(by_normalized),
            ambiguous=frozenset(ambiguous),
            known_unmatched=frozenset(known_unmatched),
        )

    def stats(self) -> dict[str, int]:
        return {
            "aliases": len(self.by_alias),
            "mappings": len(self.by_mapping),
            "normalized": len(self.by_normalized),
            "ambiguous": len(self.ambiguous),
            "known_unmatched": len(self.known_unmatched),
        }


def lookup_team(name: str, cache: TeamLookupCache) -> TeamMatch | None:
    match = cache.by_alias.get(name)
    if match is not None:
        return match
    match = cache.by_mapping.get(name)
    if match is not None:
        return match
    key = normalize_team_name(name)
    if key in cache.ambiguous:
        return None
    return cache.by_normalized.get(key)


async def build_team_lookup_cache(db: AsyncSession, source: str) -> TeamLookupCache:
    teams = (await db.execute(select(Team.id, Team.name))).all()
    aliases = (
        await db.execute(select(TeamAlias.alias, TeamAlias.team_id).where(TeamAlias.source == source))
    ).all()
    mappings = (
        await db.execute(
            select(TeamNameMapping.source_name, TeamNameMapping.team_id).where(TeamNameMapping.source_type == source)
        )
    ).all()
    unmatched = (
        await db.execute(
            select(UnmatchedTeamName.team_name).where(
                UnmatchedTeamName.source == source,
                UnmatchedTeamName.resolved.is_(False),
            )
        )
    ).scalars()

    cache = TeamLookupCache.build(
        source=source,
        teams=[(row.id, row.name) for row in teams],
        aliases=[(row.alias, row.team_id) for row in aliases],
        mappings=[(row.source_name, row.team_id) for row in mappings],
        known_unmatched=list(unmatched),
    )
    logger.info("Team lookup cache built", extra={"source": source, **cache.stats()})
    return cache


@dataclass
class UnmatchedNameLedger:
    """Per-run record of names the resolver could not place.

    Every occurrence is counted; each distinct name is written to the
    ledger once per run. Writes are flushed, not committed, so they land
    with the caller's partition commit.
    """

    source: str
    occurrences: int = 0
    names: set[str] = field(default_factory=set)

    async def record(self, db: AsyncSession, name: str, *, context: str | None = None) -> None:
        self.occurrences += 1
        if name in self.names:
            return
        self.names.add(name)
        now = datetime.now(UTC)
        stmt = upsert_insert(db, UnmatchedTeamName).values(
            id=uuid.uuid4(),
            team_name=name,
            source=self.source,
            context=context[:255] if context else None,
            occurrences=1,
            resolved=False,
            first_seen_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UnmatchedTeamName.source, UnmatchedTeamName.team_name],
            set_={
                "occurrences": UnmatchedTeamName.occurrences + 1,
                "last_seen_at": stmt.excluded.last_seen_at,
                "context": stmt.excluded.context,
            },
        )
        await db.execute(stmt)
        await db.flush()
        logger.warning(
            "Unmatched team name",
            extra={"source": self.source, "team_name": name, "context": context},
        )

    @property
    def distinct(self) -> int:
        return len(self.names)
