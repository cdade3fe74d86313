import pytest

from edgeline.core.errors import CalibrationError
from edgeline.core.frozen_config import FrozenModelConfig
from edgeline.services.calibration import (
    CalibrationResult,
    CalibrationTable,
    build_calibration_table,
    calculate_expected_value,
    format_calibration_report,
    get_confidence_tier,
    get_win_probability,
    grade_pick,
)


def test_well_sampled_bucket_uses_its_own_rate(calibration_table: CalibrationTable) -> None:
    assert get_win_probability(2.7, calibration_table) == pytest.approx(120 / 212)
    assert get_win_probability(-2.7, calibration_table) == pytest.approx(120 / 212)


def test_thin_bucket_falls_back_to_cumulative_rate(calibration_table: CalibrationTable) -> None:
    # 7-10 has 22 picks; 7+ pools 7-10 and 10+.
    assert get_win_probability(8.0, calibration_table) == pytest.approx(16 / 31)
    assert get_win_probability(12.0, calibration_table) == pytest.approx(4 / 9)


def test_empty_upper_buckets_walk_down_to_a_decided_threshold() -> None:
    results = [CalibrationResult(edge=1.0, result="win")] * 25 + [CalibrationResult(edge=1.2, result="loss")] * 15
    table = build_calibration_table(results, min_samples=30)

    assert table.bucket_for(1.2).sample_size == 40
    assert get_win_probability(1.3, table) == pytest.approx(0.625)
    assert get_win_probability(6.0, table) == pytest.approx(0.625)


def test_table_without_decided_results_is_rejected() -> None:
    with pytest.raises(CalibrationError):
        build_calibration_table([CalibrationResult(edge=3.0, result="push")])


def test_expected_value_at_standard_and_plus_odds() -> None:
    assert calculate_expected_value(0.55) == pytest.approx(5.0)
    assert calculate_expected_value(0.5, 150) == pytest.approx(25.0)
    assert calculate_expected_value(0.5) == pytest.approx(-4.55)


@pytest.mark.parametrize(
    ("edge", "probability", "tier"),
    [
        (3.2, 0.60, "very-high"),
        (3.2, 0.56, "high"),
        (-2.1, 0.555, "high"),
        (1.2, 0.54, "medium"),
        (0.6, 0.52, "low"),
        (0.3, 0.60, "skip"),
        (4.0, 0.50, "skip"),
    ],
)
def test_confidence_tiers(frozen_config: FrozenModelConfig, edge: float, probability: float, tier: str) -> None:
    assert get_confidence_tier(edge, probability, frozen_config.confidence_tiers) == tier


def test_grade_pick_for_spreads_and_totals() -> None:
    assert grade_pick(market="spread", side="home", line=-3.0, home_score=28, away_score=21) == "win"
    assert grade_pick(market="spread", side="away", line=-3.0, home_score=28, away_score=21) == "loss"
    assert grade_pick(market="spread", side="home", line=-3.0, home_score=24, away_score=21) == "push"
    assert grade_pick(market="spread", side="away", line=7.5, home_score=20, away_score=24) == "loss"
    assert grade_pick(market="total", side="over", line=45.5, home_score=24, away_score=21) == "loss"
    assert grade_pick(market="total", side="under", line=45.5, home_score=24, away_score=21) == "win"
    with pytest.raises(ValueError):
        grade_pick(market="moneyline", side="home", line=0.0, home_score=1, away_score=0)


def test_report_lists_populated_buckets(calibration_table: CalibrationTable) -> None:
    report = format_calibration_report(calibration_table)

    assert report.startswith("## Calibration Report")
    assert f"Total picks analyzed: {calibration_table.total_picks}" in report
    assert "| 10+ pts | 9 | 4-5-0 |" in report
    assert "| 2.5-3 pts | 215 | 120-92-3 | 56.6% |" in report
