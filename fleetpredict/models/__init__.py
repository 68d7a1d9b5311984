"""Data models and schemas."""

from fleetpredict.models.artifact import AlgorithmFamily, ArtifactStatus, FeatureSchema, ModelArtifact
from fleetpredict.models.telemetry import TelemetryRecord, TelemetryWindow
from fleetpredict.models.prediction import (
    FeatureContribution,
    HealthLabel,
    HybridPrediction,
    OutcomeKind,
    PredictionResult,
    PredictionStatus,
)

__all__ = [
    "AlgorithmFamily",
    "ArtifactStatus",
    "FeatureSchema",
    "ModelArtifact",
    "TelemetryRecord",
    "TelemetryWindow",
    "FeatureContribution",
    "HealthLabel",
    "HybridPrediction",
    "OutcomeKind",
    "PredictionResult",
    "PredictionStatus",
]
