"""Ensemble spread and totals projection.

Spreads are quoted from the home team's perspective: negative means the
home team is favored.
"""

from dataclasses import dataclass, field

from edgeline.core.frozen_config import FrozenModelConfig


@dataclass(frozen=True)
class TeamRatings:
    elo: float | None = None
    sp: float | None = None
    ppa_offense: float | None = None
    ppa_defense: float | None = None

    @property
    def has_ppa(self) -> bool:
        return self.ppa_offense is not None and self.ppa_defense is not None


@dataclass(frozen=True)
class TeamScoring:
    points_for: float
    points_against: float
    games: int


@dataclass(frozen=True)
class Projection:
    model_spread: float
    components: dict[str, float] = field(default_factory=dict)
    model_disagreement: float = 0.0
    low_confidence: bool = False

    @property
    def sources(self) -> tuple[str, ...]:
        return tuple(sorted(self.components))


def component_spreads(
    home: TeamRatings,
    away: TeamRatings,
    config: FrozenModelConfig,
    *,
    neutral_site: bool = False,
) -> dict[str, float]:
    constants = config.spread
    hfa = 0.0 if neutral_site else constants.home_field_advantage
    components: dict[str, float] = {}

    if home.elo is not None and away.elo is not None:
        components["elo"] = -((home.elo - away.elo) / constants.elo_to_spread_divisor) - hfa

    if home.sp is not None and away.sp is not None:
        components["sp"] = -(home.sp - away.sp) - hfa

    if home.has_ppa and away.has_ppa:
        ppa_diff = (home.ppa_offense - away.ppa_defense) - (away.ppa_offense - home.ppa_defense)
        components["ppa"] = -(ppa_diff * constants.ppa_to_spread_multiplier) - hfa

    return components


def project_spread(
    home: TeamRatings,
    away: TeamRatings,
    config: FrozenModelConfig,
    *,
    neutral_site: bool = False,
) -> Projection | None:
    """Weighted average of the available component spreads.

    Weights are renormalized over the sources that have ratings for both
    teams. Returns ``None`` when no source covers the matchup.
    """
    components = component_spreads(home, away, config, neutral_site=neutral_site)
    if not components:
        return None

    weights = config.ensemble_weights.as_dict()
    total_weight = sum(weights[source] for source in components)
    if total_weight <= 0:
        return None

    model_spread = sum(spread * weights[source] for source, spread in components.items()) / total_weight
    values = list(components.values())
    disagreement = max(values) - min(values)
    return Projection(
        model_spread=model_spread,
        components=components,
        model_disagreement=disagreement,
        low_confidence=disagreement > config.spread.max_model_disagreement,
    )


def project_total(
    home: TeamScoring | None,
    away: TeamScoring | None,
    config: FrozenModelConfig,
) -> float:
    league_average = config.totals.league_average_points

    def _for(scoring: TeamScoring | None) -> float:
        return scoring.points_for if scoring is not None and scoring.games > 0 else league_average

    def _against(scoring: TeamScoring | None) -> float:
        return scoring.points_against if scoring is not None and scoring.games > 0 else league_average

    home_expected = (_for(home) + _against(away)) / 2
    away_expected = (_for(away) + _against(home)) / 2
    return home_expected + away_expected
