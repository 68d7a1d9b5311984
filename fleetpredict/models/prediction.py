"""
Prediction result models.

These models represent the output of the algorithm predictors and of the
hybrid combiner. Every result is produced fresh per call and never
persisted by the engine.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from fleetpredict.models.artifact import AlgorithmFamily


class OutcomeKind(str, Enum):
    """Meaning of the scalar outcome of a PredictionResult."""

    HEALTH_SCORE = "health_score"
    FAILURE_PROBABILITY = "failure_probability"


class HealthLabel(str, Enum):
    """Categorical health of a unit."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class PredictionStatus(str, Enum):
    """States of one hybrid prediction call."""

    IDLE = "idle"
    RESOLVING_MODELS = "resolving_models"
    FETCHING_TELEMETRY = "fetching_telemetry"
    PREDICTING = "predicting"
    COMBINED = "combined"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class FeatureContribution(BaseModel):
    """Relative importance of one feature in a tabular model."""

    feature: str
    importance: float = Field(..., ge=0.0, le=1.0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PredictionResult(BaseModel):
    """
    Output of one algorithm predictor.

    `outcome` is a health score (1.0 = fully healthy) for the random
    forest and a failure probability for the LSTM; `condition_score`
    maps both onto the same scale.
    """

    model_config = {"protected_namespaces": ()}

    equipment_id: str
    algorithm: AlgorithmFamily
    outcome_kind: OutcomeKind
    outcome: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    model_version: str
    generated_at: datetime = Field(default_factory=_utcnow)
    label: Optional[HealthLabel] = None
    days_to_failure: Optional[int] = Field(default=None, ge=0)
    contributing_features: List[FeatureContribution] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @property
    def condition_score(self) -> float:
        """Outcome on the common [0, 1] condition scale, 1.0 = healthy."""
        if self.outcome_kind == OutcomeKind.HEALTH_SCORE:
            return self.outcome
        return 1.0 - self.outcome

    @property
    def failure_probability(self) -> float:
        return 1.0 - self.condition_score

    @property
    def predicted_failure_date(self) -> Optional[datetime]:
        if self.days_to_failure is None:
            return None
        return self.generated_at + timedelta(days=self.days_to_failure)


class HybridPrediction(BaseModel):
    """
    Composite prediction for one equipment unit.

    Carries up to one result per algorithm family. `degraded` is set when
    one family was unavailable; `unavailable` names which.
    """

    equipment_id: str
    random_forest: Optional[PredictionResult] = None
    lstm: Optional[PredictionResult] = None
    condition_score: float = Field(..., ge=0.0, le=1.0)
    combined_confidence: float = Field(..., ge=0.0, lt=1.0)
    degraded: bool
    unavailable: List[AlgorithmFamily] = Field(default_factory=list)
    status: PredictionStatus
    remaining_days: Optional[int] = Field(default=None, ge=0)
    recommendations: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_composition(self) -> "HybridPrediction":
        """A hybrid prediction always carries at least one result and a terminal status."""
        results = [r for r in (self.random_forest, self.lstm) if r is not None]
        if not results:
            raise ValueError("A hybrid prediction needs at least one sub-result")
        if self.degraded != (len(results) == 1):
            raise ValueError("degraded must be set exactly when one sub-result is missing")
        if self.status not in (PredictionStatus.COMBINED, PredictionStatus.DEGRADED):
            raise ValueError(f"Invalid terminal status: {self.status.value}")
        return self

    @property
    def failure_probability(self) -> float:
        return 1.0 - self.condition_score

    @property
    def health_score(self) -> int:
        """Condition as a 0-100 score for dashboards."""
        return int(round(self.condition_score * 100))

    @property
    def results(self) -> List[PredictionResult]:
        """Available sub-results in fixed order (random forest, lstm)."""
        return [r for r in (self.random_forest, self.lstm) if r is not None]

    @property
    def predicted_failure_date(self) -> Optional[datetime]:
        if self.remaining_days is None:
            return None
        return self.generated_at + timedelta(days=self.remaining_days)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "equipment_id": self.equipment_id,
            "status": self.status.value,
            "degraded": self.degraded,
            "unavailable": [a.value for a in self.unavailable],
            "condition_score": self.condition_score,
            "failure_probability": self.failure_probability,
            "combined_confidence": self.combined_confidence,
            "remaining_days": self.remaining_days,
            "model_versions": {r.algorithm.value: r.model_version for r in self.results},
        }
