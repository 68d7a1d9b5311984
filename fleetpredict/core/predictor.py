"""
Common interface of the algorithm predictors.

Each AlgorithmFamily member has exactly one predictor. A predictor checks
the window against the artifact's feature schema, fetches the model from
the shared ModelCache, and turns its output into a PredictionResult.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

from fleetpredict.exceptions import InsufficientDataError, PredictorRuntimeError
from fleetpredict.inference.model_loader import ModelCache, ModelLoaderInterface
from fleetpredict.logging_config import event_logger
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact
from fleetpredict.models.prediction import HealthLabel, PredictionResult
from fleetpredict.models.telemetry import TelemetryWindow

# Failure-risk thresholds shared by both families
CRITICAL_RISK: float = 0.7
WARNING_RISK: float = 0.5


def label_for_risk(risk: float) -> HealthLabel:
    """Map a failure risk in [0, 1] to a health label."""
    if risk > CRITICAL_RISK:
        return HealthLabel.CRITICAL
    if risk > WARNING_RISK:
        return HealthLabel.WARNING
    return HealthLabel.HEALTHY


def clip_unit(value: float) -> float:
    """Clamp to [0, 1]."""
    return float(min(1.0, max(0.0, value)))


class AlgorithmPredictor(ABC):
    """
    Base class of the per-family predictors.

    Subclasses set `algorithm` and implement `check_window` and
    `_predict`. Errors other than InsufficientDataError are reported as
    PredictorRuntimeError so callers only need to handle two failures.
    """

    algorithm: AlgorithmFamily

    def __init__(self, cache: ModelCache, loader: ModelLoaderInterface) -> None:
        self._cache = cache
        self._loader = loader

    def predict(self, window: TelemetryWindow, artifact: ModelArtifact) -> PredictionResult:
        """
        Run the model of `artifact` on `window`.

        Raises:
            InsufficientDataError: If the window cannot feed the model.
            PredictorRuntimeError: If loading or inference failed.
        """
        if artifact.algorithm != self.algorithm:
            raise ValueError(
                f"{type(self).__name__} cannot run a {artifact.algorithm.value} artifact"
            )

        self.check_window(window, artifact)
        model = self._cache.get_or_load(artifact, self._loader)

        start = time.perf_counter()
        try:
            result = self._predict(window, artifact, model)
        except (InsufficientDataError, PredictorRuntimeError):
            raise
        except Exception as e:
            raise PredictorRuntimeError(
                f"{self.algorithm.value} inference failed for {window.equipment_id}: {e}"
            ) from e

        event_logger.inference_completed(
            equipment_id=window.equipment_id,
            algorithm=self.algorithm.value,
            model_version=artifact.version,
            outcome=result.outcome,
            confidence=result.confidence,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return result

    @abstractmethod
    def check_window(self, window: TelemetryWindow, artifact: ModelArtifact) -> None:
        """
        Validate the window before any model is loaded.

        Raises:
            InsufficientDataError: If the window is too short or sparse.
        """
        pass

    @abstractmethod
    def _predict(self, window: TelemetryWindow, artifact: ModelArtifact, model: Any) -> PredictionResult:
        pass
