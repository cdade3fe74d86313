"""Frozen model parameters.

Weights, conversion constants, filters and the calibration table are
validated offline and shipped as a versioned JSON document. The pipeline
only reads them; nothing here is tuned at runtime.
"""

import json
import math
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from edgeline.core.errors import ConfigurationError


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class EnsembleWeights(_Frozen):
    elo: float = Field(ge=0)
    sp: float = Field(ge=0)
    ppa: float = Field(ge=0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "EnsembleWeights":
        if not math.isclose(self.elo + self.sp + self.ppa, 1.0, abs_tol=1e-6):
            raise ValueError("ensemble weights must sum to 1.0")
        return self

    def as_dict(self) -> dict[str, float]:
        return {"elo": self.elo, "sp": self.sp, "ppa": self.ppa}


class SpreadConstants(_Frozen):
    home_field_advantage: float
    elo_to_spread_divisor: float = Field(gt=0)
    ppa_to_spread_multiplier: float
    max_model_disagreement: float = Field(gt=0)


class RatingUpdateConstants(_Frozen):
    base_rating: float
    k_factor: float = Field(gt=0)
    margin_cap: float = Field(gt=0)
    margin_point_value: float
    efficiency_scale: float
    efficiency_diff_cap: float = Field(gt=0)
    max_update: float = Field(gt=0)
    efficiency_weight: float = Field(ge=0, le=1)
    win_weight: float = Field(ge=0, le=1)
    season_carryover: float = Field(ge=0, le=1)


class TotalsConstants(_Frozen):
    league_average_points: float = Field(gt=0)


class EdgeFilter(_Frozen):
    min_edge: float = Field(ge=0)
    max_edge: float = Field(gt=0)

    @model_validator(mode="after")
    def _ordered(self) -> "EdgeFilter":
        if self.max_edge <= self.min_edge:
            raise ValueError("max_edge must exceed min_edge")
        return self


class ConfidenceTierRule(_Frozen):
    name: str
    min_edge: float
    min_win_probability: float


class CalibrationBucketCounts(_Frozen):
    edge_min: float
    edge_max: float | None = None
    wins: int = Field(ge=0)
    losses: int = Field(ge=0)
    pushes: int = Field(ge=0, default=0)


class CalibrationSection(_Frozen):
    min_samples: int = Field(ge=1)
    buckets: tuple[CalibrationBucketCounts, ...]

    @model_validator(mode="after")
    def _has_decided_results(self) -> "CalibrationSection":
        if not self.buckets:
            raise ValueError("calibration table has no buckets")
        if sum(bucket.wins + bucket.losses for bucket in self.buckets) == 0:
            raise ValueError("calibration table has no decided results")
        return self


class FrozenModelConfig(_Frozen):
    version: str
    validated_on: str | None = None
    ensemble_weights: EnsembleWeights
    spread: SpreadConstants
    rating_update: RatingUpdateConstants
    totals: TotalsConstants
    edge_filter: EdgeFilter
    confidence_tiers: tuple[ConfidenceTierRule, ...]
    calibration: CalibrationSection


def parse_frozen_model_config(payload: object, *, source: str = "<memory>") -> FrozenModelConfig:
    try:
        return FrozenModelConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid frozen model config {source}: {exc}") from exc


def load_frozen_model_config(path: str | Path) -> FrozenModelConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Frozen model config not readable: {config_path}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Frozen model config is not valid JSON: {config_path}") from exc
    return parse_frozen_model_config(payload, source=str(config_path))


@lru_cache
def get_frozen_model_config(path: str) -> FrozenModelConfig:
    return load_frozen_model_config(path)
