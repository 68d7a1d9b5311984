"""
Time-Series (LSTM) Predictor - Failure probability over a fixed horizon.

Sequence construction
─────────────────────
1. The window is resampled onto a regular grid of
   `sample_interval_minutes`, anchored at the latest reading, taking the
   mean of the readings in each step. A latest reading older than
   `max_gap_steps + 1` steps before the window end makes the window
   insufficient; a stale unit gets no current probability.
2. Interior gaps of at most `max_gap_steps` consecutive steps are filled
   by linear interpolation. Longer gaps are left missing; leading and
   trailing gaps are never filled.
3. The last `sequence_length` steps form the model input. If there are
   fewer steps, or any value in them is still missing, the window is
   insufficient and no probability is produced.

Confidence
──────────
    margin          = |p - 0.5| * 2
    dispersion      = std of the per-step probabilities
    horizon_factor  = 1 / (1 + LSTM_HORIZON_DECAY * horizon_days / 30)
    confidence      = (0.5 + 0.5 * margin) * (1 - dispersion) * horizon_factor

so the same curve is always trusted less over a longer horizon.
"""

from typing import Any, List, Optional

import numpy as np
import numpy.typing as npt
import pandas as pd

from fleetpredict.config import settings
from fleetpredict.core.predictor import AlgorithmPredictor, clip_unit, label_for_risk
from fleetpredict.exceptions import InsufficientDataError, PredictorRuntimeError
from fleetpredict.inference.model_loader import ModelCache, ModelLoaderInterface
from fleetpredict.inference.onnx_runtime import ONNXModelLoader
from fleetpredict.logging_config import get_logger
from fleetpredict.models.artifact import AlgorithmFamily, FeatureSchema, ModelArtifact
from fleetpredict.models.prediction import OutcomeKind, PredictionResult
from fleetpredict.models.telemetry import TelemetryWindow

logger = get_logger(__name__)


def _long_gaps(column: pd.Series, max_gap_steps: int) -> pd.Series:
    """Mask of missing values belonging to a run longer than `max_gap_steps`."""
    missing = column.isna()
    run_id = (~missing).cumsum()
    run_length = missing.groupby(run_id).transform("sum")
    return missing & (run_length > max_gap_steps)


def build_sequence(window: TelemetryWindow, schema: FeatureSchema) -> npt.NDArray[np.float64]:
    """
    Turn a window into the (sequence_length, n_sensors) model input.

    Raises:
        InsufficientDataError: If the window is shorter than the lookback,
            lacks a sensor, or has a gap beyond the interpolation bound.
    """
    sensors = list(schema.sensors)
    frame = window.to_dataframe()

    absent = [s for s in sensors if s not in frame.columns or frame[s].isna().all()]
    if absent:
        raise InsufficientDataError(f"No readings for sensors {absent} in window of {window.equipment_id}")

    step = pd.Timedelta(minutes=schema.sample_interval_minutes)
    silence = pd.Timestamp(window.end) - frame.index.max()
    if silence > step * (schema.max_gap_steps + 1):
        raise InsufficientDataError(
            f"Latest reading of {window.equipment_id} is {silence} before the window end, "
            f"beyond the {schema.max_gap_steps}-step interpolation bound",
            required=schema.sequence_length,
            available=0,
        )

    grid = frame[sensors].resample(step, origin="end", closed="right", label="right").mean()

    if len(grid) < schema.sequence_length:
        raise InsufficientDataError(
            f"Window of {window.equipment_id} spans {len(grid)} steps, "
            f"lookback needs {schema.sequence_length}",
            required=schema.sequence_length,
            available=len(grid),
        )

    filled = grid.interpolate(method="linear", limit_area="inside")
    for sensor in sensors:
        filled[sensor] = filled[sensor].mask(_long_gaps(grid[sensor], schema.max_gap_steps))

    sequence = filled.iloc[-schema.sequence_length:]
    if sequence.isna().to_numpy().any():
        missing_steps = int(sequence.isna().any(axis=1).sum())
        raise InsufficientDataError(
            f"Lookback of {window.equipment_id} has {missing_steps} steps missing "
            f"beyond the {schema.max_gap_steps}-step interpolation bound",
            required=schema.sequence_length,
            available=schema.sequence_length - missing_steps,
        )

    interpolated = int(grid.iloc[-schema.sequence_length:].isna().any(axis=1).sum())
    if interpolated:
        logger.debug(
            "Interpolated short telemetry gaps",
            extra={"equipment_id": window.equipment_id, "steps": interpolated},
        )
    return sequence.to_numpy(dtype=np.float64)


def horizon_confidence_factor(horizon_days: int) -> float:
    """Discount applied to confidence for a forecast `horizon_days` ahead."""
    return 1.0 / (1.0 + settings.LSTM_HORIZON_DECAY * horizon_days / 30.0)


def confidence_from_curve(curve: npt.NDArray[np.float64], horizon_days: int) -> float:
    """Confidence of a failure-probability curve, see module docstring."""
    probability = float(curve[-1])
    margin = abs(probability - 0.5) * 2.0
    dispersion = float(np.std(curve)) if curve.size > 1 else 0.0
    return clip_unit(
        (0.5 + 0.5 * margin) * (1.0 - dispersion) * horizon_confidence_factor(horizon_days)
    )


class TimeSeriesPredictor(AlgorithmPredictor):
    """
    Failure predictor for LSTM artifacts.

    The loaded model exposes `feature_names` and
    `predict_horizon(sequence) -> per-step failure probabilities`.

    Example:
        predictor = TimeSeriesPredictor(ModelCache())
        result = predictor.predict_failure(window, artifact)
        print(result.outcome)  # failure probability within the horizon
    """

    algorithm = AlgorithmFamily.LSTM

    def __init__(
        self,
        cache: ModelCache,
        loader: Optional[ModelLoaderInterface] = None,
    ) -> None:
        super().__init__(cache, loader or ONNXModelLoader())

    def predict_failure(self, window: TelemetryWindow, artifact: ModelArtifact) -> PredictionResult:
        """Predict the failure probability of the unit behind `window`."""
        return self.predict(window, artifact)

    def check_window(self, window: TelemetryWindow, artifact: ModelArtifact) -> None:
        build_sequence(window, artifact.feature_schema)

    def _predict(self, window: TelemetryWindow, artifact: ModelArtifact, model: Any) -> PredictionResult:
        schema = artifact.feature_schema
        if list(model.feature_names) != list(schema.sensors):
            raise PredictorRuntimeError(
                f"Model {artifact.version} expects {list(model.feature_names)}, "
                f"schema lists {list(schema.sensors)}"
            )

        sequence = build_sequence(window, schema)[np.newaxis, ...]
        curve = np.asarray(model.predict_horizon(sequence), dtype=np.float64).reshape(-1)
        if curve.size == 0 or not np.all(np.isfinite(curve)):
            raise PredictorRuntimeError(f"Model {artifact.version} returned an invalid forecast")
        curve = np.clip(curve, 0.0, 1.0)

        probability = float(curve[-1])
        days_to_failure = None
        if probability > 0.5:
            days_to_failure = int(round(schema.horizon_days * (1.0 - probability)))

        return PredictionResult(
            equipment_id=window.equipment_id,
            algorithm=self.algorithm,
            outcome_kind=OutcomeKind.FAILURE_PROBABILITY,
            outcome=probability,
            confidence=confidence_from_curve(curve, schema.horizon_days),
            model_version=artifact.version,
            label=label_for_risk(probability),
            days_to_failure=days_to_failure,
            recommendations=self._recommendations(probability),
        )

    @staticmethod
    def _recommendations(probability: float) -> List[str]:
        if probability > 0.7:
            return ["Critical: Schedule immediate inspection", "Prepare for possible equipment replacement"]
        if probability > 0.5:
            return ["Schedule maintenance within 7 days", "Monitor telemetry closely"]
        if probability > 0.3:
            return ["Increase monitoring frequency", "Review maintenance schedule"]
        return []
