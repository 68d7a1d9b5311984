"""
Model artifact metadata.

An artifact is one trained model version produced by the training
pipeline. The inference path only ever reads artifacts; they are frozen
so a cached model can be keyed safely by its org and version.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleetpredict.config import settings


class AlgorithmFamily(str, Enum):
    """Algorithm families known to the engine. One predictor exists per member."""

    RANDOM_FOREST = "random_forest"
    LSTM = "lstm"


class ArtifactStatus(str, Enum):
    """Lifecycle state of an artifact. Superseded versions are archived, never deleted."""

    ACTIVE = "active"
    ARCHIVED = "archived"


SUMMARY_STATISTICS: Tuple[str, ...] = ("mean", "max", "min", "std")


class FeatureSchema(BaseModel):
    """
    Feature policy fixed at training time.

    The random-forest predictor reads `sensors`, `aggregation` and
    `min_records`; the LSTM predictor reads the sequence fields.
    """

    model_config = ConfigDict(frozen=True)

    sensors: Tuple[str, ...] = Field(
        ...,
        description="Sensor names the model expects, in training order",
        min_length=1,
    )
    aggregation: Literal["latest", "summary"] = Field(
        default="summary",
        description="How a window is reduced to a feature vector",
    )
    min_records: int = Field(
        default=1,
        description="Minimum number of telemetry records in the window",
        ge=1,
    )
    sequence_length: int = Field(
        default=24,
        description="LSTM lookback length in resampled steps",
        ge=1,
    )
    sample_interval_minutes: int = Field(
        default=60,
        description="Resampling step of the LSTM sequence",
        ge=1,
    )
    max_gap_steps: int = Field(
        default=2,
        description="Longest run of missing steps that is linearly interpolated",
        ge=0,
    )
    horizon_days: int = Field(
        default=30,
        description="Forecast horizon of the failure probability",
        ge=1,
    )

    @property
    def feature_names(self) -> List[str]:
        """Column order of the flat feature vector for tabular models."""
        if self.aggregation == "latest":
            return list(self.sensors)
        return [f"{sensor}_{stat}" for sensor in self.sensors for stat in SUMMARY_STATISTICS]

    @property
    def lookback_minutes(self) -> int:
        """Span of telemetry the sequence covers."""
        return self.sequence_length * self.sample_interval_minutes


class ModelArtifact(BaseModel):
    """
    One trained model version.

    Within an (org_id, equipment_type, algorithm) group, artifacts are
    ordered by validation score and then by creation time.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    org_id: str = Field(..., description="Owning organization", min_length=1)
    equipment_type: Optional[str] = Field(
        default=None,
        description="Equipment category the model was trained for; None for fleet-wide models",
    )
    algorithm: AlgorithmFamily = Field(..., description="Algorithm family")
    version: str = Field(..., description="Unique version identifier", min_length=1)
    validation_score: float = Field(..., description="Validation score, higher is better", allow_inf_nan=False)
    storage_location: str = Field(..., description="Path of the persisted model")
    created_at: datetime = Field(..., description="Creation timestamp")
    status: ArtifactStatus = Field(default=ArtifactStatus.ACTIVE)
    feature_schema: FeatureSchema = Field(..., description="Feature policy carried with the artifact")

    @field_validator("equipment_type")
    @classmethod
    def normalize_equipment_type(cls, v: Optional[str]) -> Optional[str]:
        """Equipment types are matched case-insensitively."""
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so artifacts stay comparable."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def cache_key(self) -> Tuple[str, str, str]:
        """Key of the loaded model in the model cache; versions are only unique within an org."""
        return (self.org_id, self.algorithm.value, self.version)

    @property
    def is_active(self) -> bool:
        return self.status == ArtifactStatus.ACTIVE

    @property
    def rank_key(self) -> Tuple[float, datetime]:
        """Sort key: best artifact has the largest key."""
        return (self.validation_score, self.created_at)

    def resolve_path(self) -> Path:
        """Absolute location of the artifact, relative paths resolved against MODEL_ROOT."""
        path = Path(self.storage_location)
        if not path.is_absolute():
            path = Path(settings.MODEL_ROOT) / path
        return path
