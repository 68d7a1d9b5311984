"""
Pytest fixtures shared across all tests.

Provides in-memory storage, synthetic telemetry, a small trained
random forest persisted with joblib, and mock sequence models.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, List, Optional, Sequence

import joblib
import numpy as np
import pandas as pd
import pytest
from sklearn.ensemble import RandomForestClassifier

from fleetpredict.inference.model_loader import MockModelLoader, MockSequenceModel
from fleetpredict.models.artifact import AlgorithmFamily, ArtifactStatus, FeatureSchema, ModelArtifact
from fleetpredict.models.telemetry import TelemetryRecord, TelemetryWindow
from fleetpredict.service import PredictionEngine
from fleetpredict.storage import Equipment, InMemoryStorage

ORG_ID = "org-1"
SENSORS = ("temperature", "vibration")
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_records(
    equipment_id: str,
    end: datetime,
    days: int = 60,
    interval_minutes: int = 60,
    sensors: Sequence[str] = SENSORS,
    seed: int = 0,
) -> List[TelemetryRecord]:
    """Regularly sampled readings ending at `end`."""
    rng = np.random.default_rng(seed)
    steps = days * 24 * 60 // interval_minutes
    records = []
    for i in range(steps):
        timestamp = end - timedelta(minutes=interval_minutes * (steps - 1 - i))
        readings = {
            sensor: float(50.0 + 10.0 * k + rng.normal(0.0, 1.0))
            for k, sensor in enumerate(sensors)
        }
        records.append(TelemetryRecord(equipment_id=equipment_id, timestamp=timestamp, readings=readings))
    return records


def make_window(
    records: List[TelemetryRecord],
    equipment_id: str = "eq-1",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> TelemetryWindow:
    """Wrap records in a window spanning them (or the given bounds)."""
    if start is None:
        start = records[0].timestamp if records else NOW - timedelta(days=30)
    if end is None:
        end = records[-1].timestamp if records else NOW
    return TelemetryWindow(equipment_id=equipment_id, start=start, end=end, records=records)


def make_artifact(
    version: str,
    algorithm: AlgorithmFamily = AlgorithmFamily.RANDOM_FOREST,
    validation_score: float = 0.9,
    created_at: datetime = NOW - timedelta(days=10),
    equipment_type: Optional[str] = "engine",
    org_id: str = ORG_ID,
    status: ArtifactStatus = ArtifactStatus.ACTIVE,
    storage_location: str = "unused",
    feature_schema: Optional[FeatureSchema] = None,
) -> ModelArtifact:
    """Build an artifact with sensible defaults."""
    return ModelArtifact(
        org_id=org_id,
        equipment_type=equipment_type,
        algorithm=algorithm,
        version=version,
        validation_score=validation_score,
        storage_location=storage_location,
        created_at=created_at,
        status=status,
        feature_schema=feature_schema or FeatureSchema(sensors=SENSORS),
    )


@pytest.fixture
def summary_schema() -> FeatureSchema:
    """Provide the default random-forest schema (summary statistics)."""
    return FeatureSchema(sensors=SENSORS, aggregation="summary")


@pytest.fixture
def sequence_schema() -> FeatureSchema:
    """Provide an hourly LSTM schema with a one-day lookback."""
    return FeatureSchema(
        sensors=SENSORS,
        sequence_length=24,
        sample_interval_minutes=60,
        max_gap_steps=2,
        horizon_days=30,
    )


@pytest.fixture
def rf_classifier(summary_schema: FeatureSchema) -> RandomForestClassifier:
    """Provide a small forest trained on summary features with health labels."""
    rng = np.random.default_rng(7)
    n = 300
    temperature_mean = rng.uniform(40.0, 80.0, n)
    X = pd.DataFrame({name: rng.normal(10.0, 3.0, n) for name in summary_schema.feature_names})
    X["temperature_mean"] = temperature_mean
    y = np.where(
        temperature_mean < 55.0, "healthy",
        np.where(temperature_mean < 65.0, "warning", "critical"),
    )
    model = RandomForestClassifier(n_estimators=15, max_depth=4, random_state=0)
    model.fit(X, y)
    return model


@pytest.fixture
def rf_model_path(tmp_path: Path, rf_classifier: RandomForestClassifier) -> Path:
    """Persist the forest with joblib the way the training pipeline does."""
    path = tmp_path / "rf-v1" / "model.joblib"
    path.parent.mkdir(parents=True)
    joblib.dump(rf_classifier, path)
    return path


@pytest.fixture
def make_lstm_loader() -> Callable[..., MockModelLoader]:
    """Provide a factory of mock LSTM loaders returning a fixed curve for every version."""
    def factory(curve: Sequence[float] = (0.05, 0.1, 0.15), delay_s: float = 0.0) -> MockModelLoader:
        return MockModelLoader(
            factory=lambda artifact: MockSequenceModel(artifact.feature_schema.sensors, curve),
            delay_s=delay_s,
        )
    return factory


@pytest.fixture
def storage() -> InMemoryStorage:
    """Provide storage with two engines and a pump, telemetry up to now."""
    storage = InMemoryStorage()
    storage.add_equipment(Equipment(id="engine-1", org_id=ORG_ID, type="engine", name="Engine-1"))
    storage.add_equipment(Equipment(id="engine-2", org_id=ORG_ID, type="engine", name="Engine-2"))
    storage.add_equipment(Equipment(id="pump-2", org_id=ORG_ID, type="pump", name="Pump-2"))

    end = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    storage.add_telemetry(ORG_ID, make_records("engine-1", end, days=60))
    storage.add_telemetry(ORG_ID, make_records("engine-2", end, days=60, seed=1))
    storage.add_telemetry(ORG_ID, make_records("pump-2", end, days=60, seed=2))
    return storage


@pytest.fixture
def engine(make_lstm_loader: Callable[..., MockModelLoader]) -> Generator[PredictionEngine, None, None]:
    """Provide an engine with the joblib forest loader and a mock LSTM loader."""
    engine = PredictionEngine(lstm_loader=make_lstm_loader())
    yield engine
    engine.shutdown()


@pytest.fixture
def engine_artifacts(rf_model_path: Path, sequence_schema: FeatureSchema) -> List[ModelArtifact]:
    """Provide the Engine-1 artifacts: forest scored 0.95, LSTM scored 0.88."""
    return [
        make_artifact(
            "rf-v1",
            AlgorithmFamily.RANDOM_FOREST,
            validation_score=0.95,
            storage_location=str(rf_model_path),
        ),
        make_artifact(
            "lstm-v1",
            AlgorithmFamily.LSTM,
            validation_score=0.88,
            feature_schema=sequence_schema,
        ),
    ]
