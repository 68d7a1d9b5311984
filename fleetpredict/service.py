"""
Public prediction API.

Each function accepts an optional `engine`; by default the process-wide
PredictionEngine is used so that every caller shares one model cache and
one worker pool.

Usage:
    from fleetpredict import predict_with_hybrid_model

    prediction = predict_with_hybrid_model(storage, "eq-1", "org-1")
    if prediction is None:
        print("Not yet available")
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Optional, Sequence, Union

from fleetpredict.config import settings
from fleetpredict.core.hybrid import HybridPredictor
from fleetpredict.core.predictor import AlgorithmPredictor
from fleetpredict.core.random_forest import RandomForestPredictor
from fleetpredict.core.time_series import TimeSeriesPredictor
from fleetpredict.exceptions import NoModelFoundError
from fleetpredict.inference.model_loader import ModelCache, ModelLoaderInterface
from fleetpredict.logging_config import LoggerAdapter, event_logger, get_logger
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact
from fleetpredict.models.prediction import HybridPrediction, PredictionResult
from fleetpredict.storage import StorageProtocol

logger = get_logger(__name__)


class PredictionEngine:
    """
    Owns the shared state of the engine: the model cache and the worker pool.

    Example:
        engine = PredictionEngine()
        result = engine.predict_single(storage, "eq-1", "org-1", AlgorithmFamily.LSTM)
        engine.shutdown()
    """

    def __init__(
        self,
        random_forest_loader: Optional[ModelLoaderInterface] = None,
        lstm_loader: Optional[ModelLoaderInterface] = None,
        max_workers: Optional[int] = None,
        include_fleet_wide: Optional[bool] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            random_forest_loader: Loader for random-forest artifacts (joblib by default).
            lstm_loader: Loader for LSTM artifacts (ONNX by default).
            max_workers: Size of the worker pool. Defaults to config.
            include_fleet_wide: Also consider fleet-wide artifacts. Defaults to config.
        """
        self.cache = ModelCache()
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.MAX_WORKERS,
            thread_name_prefix="fleetpredict",
        )
        self.predictors: Dict[AlgorithmFamily, AlgorithmPredictor] = {
            AlgorithmFamily.RANDOM_FOREST: RandomForestPredictor(self.cache, random_forest_loader),
            AlgorithmFamily.LSTM: TimeSeriesPredictor(self.cache, lstm_loader),
        }
        self.hybrid = HybridPredictor(self.predictors, self.executor, include_fleet_wide)

    def resolve_best_model(
        self,
        storage: StorageProtocol,
        org_id: str,
        equipment_type: str,
        algorithm: Union[AlgorithmFamily, str],
    ) -> Optional[ModelArtifact]:
        return self.hybrid.registry(storage).resolve_best_model(org_id, equipment_type, algorithm)

    def predict_single(
        self,
        storage: StorageProtocol,
        equipment_id: str,
        org_id: str,
        algorithm: Union[AlgorithmFamily, str],
        now: Optional[datetime] = None,
    ) -> Optional[PredictionResult]:
        """
        Run one algorithm family for one unit.

        Returns:
            The result, or None when the unit is unknown, no artifact
            exists, or the predictor could not produce a result.

        Raises:
            StorageError: If the storage collaborator fails.
        """
        algorithm = AlgorithmFamily(algorithm)
        equipment = self.hybrid.find_equipment(storage, equipment_id, org_id)
        if equipment is None:
            event_logger.prediction_unavailable(equipment_id, reason="unknown equipment")
            return None

        try:
            artifact = self.hybrid.registry(storage).require_best_model(org_id, equipment.type, algorithm)
        except NoModelFoundError as e:
            event_logger.prediction_unavailable(equipment_id, reason=str(e))
            return None

        window = self.hybrid.fetch(storage, equipment_id, org_id, [artifact], now)
        if window is None:
            event_logger.prediction_unavailable(equipment_id, reason="telemetry fetch timed out")
            return None

        log = LoggerAdapter(logger, {"equipment_id": equipment_id, "org_id": org_id})
        result = self.hybrid.run_predictors(window, {algorithm: artifact}, log).get(algorithm)
        if result is None:
            event_logger.prediction_unavailable(equipment_id, reason=f"{algorithm.value} predictor produced no result")
        return result

    def predict_hybrid(
        self,
        storage: StorageProtocol,
        equipment_id: str,
        org_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[HybridPrediction]:
        return self.hybrid.predict(storage, equipment_id, org_id, now)

    def predict_fleet(
        self,
        storage: StorageProtocol,
        org_id: str,
        equipment_ids: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Optional[HybridPrediction]]:
        return self.hybrid.predict_fleet(storage, org_id, equipment_ids, now)

    def shutdown(self) -> None:
        """Stop the worker pool. Loaded models are dropped with the engine."""
        self.executor.shutdown(wait=True)


_default_engine: Optional[PredictionEngine] = None
_default_engine_lock = threading.Lock()


def get_default_engine() -> PredictionEngine:
    """Return the process-wide engine, creating it on first use."""
    global _default_engine
    with _default_engine_lock:
        if _default_engine is None:
            _default_engine = PredictionEngine()
        return _default_engine


def resolve_best_model(
    storage: StorageProtocol,
    org_id: str,
    equipment_type: str,
    algorithm: Union[AlgorithmFamily, str],
    engine: Optional[PredictionEngine] = None,
) -> Optional[ModelArtifact]:
    """
    Best active artifact for (organization, equipment type, algorithm).

    Returns:
        The highest-scoring artifact (most recent on ties), or None.
    """
    return (engine or get_default_engine()).resolve_best_model(storage, org_id, equipment_type, algorithm)


def predict_health_with_random_forest(
    storage: StorageProtocol,
    equipment_id: str,
    org_id: str,
    engine: Optional[PredictionEngine] = None,
) -> Optional[PredictionResult]:
    """Health score of one unit from its best random-forest model, or None."""
    return (engine or get_default_engine()).predict_single(
        storage, equipment_id, org_id, AlgorithmFamily.RANDOM_FOREST
    )


def predict_failure_with_lstm(
    storage: StorageProtocol,
    equipment_id: str,
    org_id: str,
    engine: Optional[PredictionEngine] = None,
) -> Optional[PredictionResult]:
    """Failure probability of one unit from its best LSTM model, or None."""
    return (engine or get_default_engine()).predict_single(
        storage, equipment_id, org_id, AlgorithmFamily.LSTM
    )


def predict_with_hybrid_model(
    storage: StorageProtocol,
    equipment_id: str,
    org_id: str,
    engine: Optional[PredictionEngine] = None,
) -> Optional[HybridPrediction]:
    """
    Composite prediction of one unit.

    Returns:
        A combined or degraded HybridPrediction, or None when neither
        algorithm family produced a result.

    Raises:
        StorageError: If the storage collaborator fails.
    """
    return (engine or get_default_engine()).predict_hybrid(storage, equipment_id, org_id)
