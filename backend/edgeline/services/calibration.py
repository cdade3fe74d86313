"""Edge-size to win-probability calibration.

A calibration table holds graded historical picks bucketed by absolute
edge. Buckets with too few samples fall back to the cumulative win rate of
every pick at or above the bucket's lower threshold.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edgeline.core.errors import CalibrationError
from edgeline.core.frozen_config import CalibrationSection, ConfidenceTierRule
from edgeline.models.edge import Edge
from edgeline.models.game import GAME_STATUS_FINAL, Game, GameResult

logger = logging.getLogger(__name__)

DEFAULT_EDGE_BUCKETS: tuple[float, ...] = (0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0, 7.0, 10.0)
DEFAULT_MIN_SAMPLES = 30
STANDARD_ODDS = -110

PickResult = Literal["win", "loss", "push"]


@dataclass(frozen=True)
class CalibrationResult:
    edge: float
    result: PickResult


@dataclass(frozen=True)
class CalibrationPoint:
    edge_min: float
    edge_max: float | None
    wins: int
    losses: int
    pushes: int

    @property
    def sample_size(self) -> int:
        return self.wins + self.losses + self.pushes

    @property
    def decided(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float | None:
        return self.wins / self.decided if self.decided else None

    @property
    def roi(self) -> float | None:
        if not self.decided:
            return None
        return (self.wins * 100 - self.losses * 110) / (self.decided * 110) * 100

    def contains(self, abs_edge: float) -> bool:
        return abs_edge >= self.edge_min and (self.edge_max is None or abs_edge < self.edge_max)


@dataclass(frozen=True)
class CalibrationTable:
    points: tuple[CalibrationPoint, ...]
    min_samples: int = DEFAULT_MIN_SAMPLES

    def __post_init__(self) -> None:
        if not self.points:
            raise CalibrationError("calibration table has no buckets")
        if sum(point.decided for point in self.points) == 0:
            raise CalibrationError("calibration table has no decided results")

    @classmethod
    def from_config(cls, section: CalibrationSection) -> "CalibrationTable":
        points = tuple(
            CalibrationPoint(
                edge_min=bucket.edge_min,
                edge_max=bucket.edge_max,
                wins=bucket.wins,
                losses=bucket.losses,
                pushes=bucket.pushes,
            )
            for bucket in sorted(section.buckets, key=lambda b: b.edge_min)
        )
        return cls(points=points, min_samples=section.min_samples)

    @property
    def overall_win_rate(self) -> float:
        wins = sum(point.wins for point in self.points)
        decided = sum(point.decided for point in self.points)
        return wins / decided

    @property
    def total_picks(self) -> int:
        return sum(point.sample_size for point in self.points)

    def cumulative_win_rate(self, threshold: float) -> float | None:
        """Win rate over every bucket whose lower bound is at or above ``threshold``."""
        above = [point for point in self.points if point.edge_min >= threshold]
        decided = sum(point.decided for point in above)
        if not decided:
            return None
        return sum(point.wins for point in above) / decided

    def bucket_for(self, abs_edge: float) -> CalibrationPoint | None:
        for point in self.points:
            if point.contains(abs_edge):
                return point
        return None


def build_calibration_table(
    results: Iterable[CalibrationResult],
    *,
    buckets: Sequence[float] = DEFAULT_EDGE_BUCKETS,
    min_samples: int = DEFAULT_MIN_SAMPLES,
) -> CalibrationTable:
    thresholds = sorted(buckets)
    counts = [[0, 0, 0] for _ in thresholds]
    for item in results:
        abs_edge = abs(item.edge)
        for index in range(len(thresholds) - 1, -1, -1):
            if abs_edge >= thresholds[index]:
                slot = {"win": 0, "loss": 1, "push": 2}[item.result]
                counts[index][slot] += 1
                break

    points = tuple(
        CalibrationPoint(
            edge_min=threshold,
            edge_max=thresholds[index + 1] if index + 1 < len(thresholds) else None,
            wins=counts[index][0],
            losses=counts[index][1],
            pushes=counts[index][2],
        )
        for index, threshold in enumerate(thresholds)
    )
    return CalibrationTable(points=points, min_samples=min_samples)


def get_win_probability(edge: float, table: CalibrationTable) -> float:
    """Calibrated probability that a pick with this edge covers.

    A thin bucket uses the cumulative rate at its threshold; when nothing at
    or above that threshold was decided, lower thresholds are tried in turn,
    ending at the overall rate.
    """
    abs_edge = abs(edge)
    point = table.bucket_for(abs_edge)
    if point is None:
        return table.overall_win_rate

    if point.sample_size >= table.min_samples and point.win_rate is not None:
        return point.win_rate

    thresholds = sorted({p.edge_min for p in table.points if p.edge_min <= point.edge_min}, reverse=True)
    for threshold in thresholds:
        rate = table.cumulative_win_rate(threshold)
        if rate is not None:
            return rate
    return table.overall_win_rate


def calculate_expected_value(win_probability: float, odds: int = STANDARD_ODDS) -> float:
    """Expected profit per 100 units staked at American ``odds``."""
    payout = 100 / abs(odds) if odds < 0 else odds / 100
    ev = win_probability * payout * 100 - (1 - win_probability) * 100
    return round(ev, 2)


def get_confidence_tier(edge: float, win_probability: float, rules: Sequence[ConfidenceTierRule]) -> str:
    abs_edge = abs(edge)
    for rule in rules:
        if abs_edge >= rule.min_edge and win_probability >= rule.min_win_probability:
            return rule.name
    return "skip"


def grade_pick(
    *,
    market: str,
    side: str,
    line: float,
    home_score: int,
    away_score: int,
) -> PickResult:
    """Grade one pick.

    For spreads ``line`` is the home team's spread; for totals it is the
    posted total.
    """
    if market == "spread":
        home_result = (home_score - away_score) + line
        result = home_result if side == "home" else -home_result
    elif market == "total":
        combined = home_score + away_score
        result = combined - line if side == "over" else line - combined
    else:
        raise ValueError(f"Unsupported market: {market}")

    if result > 0:
        return "win"
    if result < 0:
        return "loss"
    return "push"


async def calibration_results_from_history(
    db: AsyncSession,
    *,
    market: str = "spread",
    provider: str | None = None,
    seasons: Sequence[int] | None = None,
) -> list[CalibrationResult]:
    """Grade materialized edges of finished games for re-calibration."""
    stmt = (
        select(Edge, GameResult)
        .join(Game, Game.id == Edge.game_id)
        .join(GameResult, GameResult.game_id == Game.id)
        .where(Game.status == GAME_STATUS_FINAL, Edge.market == market, Edge.recommended_side.is_not(None))
    )
    if provider is not None:
        stmt = stmt.where(Edge.provider == provider)
    if seasons:
        stmt = stmt.where(Game.season.in_(list(seasons)))

    results: list[CalibrationResult] = []
    for edge, game_result in (await db.execute(stmt)).all():
        outcome = grade_pick(
            market=edge.market,
            side=edge.recommended_side,
            line=edge.market_line,
            home_score=game_result.home_score,
            away_score=game_result.away_score,
        )
        results.append(CalibrationResult(edge=edge.edge, result=outcome))
    logger.info("Graded historical edges", extra={"market": market, "graded": len(results)})
    return results


def format_calibration_report(table: CalibrationTable) -> str:
    lines = [
        "## Calibration Report",
        "",
        f"Total picks analyzed: {table.total_picks}",
        f"Overall win rate: {table.overall_win_rate * 100:.1f}%",
        "",
        "| Edge Range | Picks | W-L-P | Win Rate | ROI |",
        "|------------|-------|-------|----------|-----|",
    ]
    for point in table.points:
        if point.sample_size == 0:
            continue
        label = f"{point.edge_min:g}+" if point.edge_max is None else f"{point.edge_min:g}-{point.edge_max:g}"
        win_rate = "n/a" if point.win_rate is None else f"{point.win_rate * 100:.1f}%"
        roi = "n/a" if point.roi is None else f"{point.roi:.1f}%"
        lines.append(
            f"| {label} pts | {point.sample_size} | {point.wins}-{point.losses}-{point.pushes} | {win_rate} | {roi} |"
        )
    return "\n".join(lines) + "\n"
