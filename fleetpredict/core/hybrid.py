"""
Hybrid Combiner - One composite prediction per equipment unit.

Degradation policy
──────────────────
    both predictors succeed   → combined, confidence-weighted condition
    exactly one succeeds      → degraded, confidence × DEGRADATION_FACTOR
    none succeeds             → None

A predictor that has no artifact, not enough telemetry, fails at load or
inference time, or times out counts as "did not succeed". The inference
timeout runs from the moment a worker picks the predictor up; time spent
queued behind other units is bounded separately by QUEUE_TIMEOUT_S.
Only storage failures are raised to the caller.

Combination
───────────
    wᵢ          = baseᵢ · confᵢ        (base weights if every confᵢ is 0)
    condition   = Σ wᵢ · cᵢ / Σ wᵢ
    confidence  = min(Σ baseᵢ · confᵢ / Σ baseᵢ, MAX_COMBINED_CONFIDENCE)

where cᵢ is the condition score of predictor i (health score, or
1 - failure probability).
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from fleetpredict.config import settings
from fleetpredict.core.predictor import AlgorithmPredictor
from fleetpredict.core.registry import ModelRegistry
from fleetpredict.core.windowing import fetch_window, slice_for, window_range
from fleetpredict.exceptions import InsufficientDataError, PredictorRuntimeError
from fleetpredict.logging_config import LoggerAdapter, event_logger, get_logger
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact
from fleetpredict.models.prediction import HybridPrediction, PredictionResult, PredictionStatus
from fleetpredict.models.telemetry import TelemetryWindow
from fleetpredict.storage import Equipment, StorageProtocol, call_storage

logger = get_logger(__name__)

# Join order of the predictors
FAMILY_ORDER: Tuple[AlgorithmFamily, ...] = (AlgorithmFamily.RANDOM_FOREST, AlgorithmFamily.LSTM)

MAX_RECOMMENDATIONS = 5


def base_weight(algorithm: AlgorithmFamily) -> float:
    """Configured base weight of an algorithm family."""
    if algorithm == AlgorithmFamily.RANDOM_FOREST:
        return settings.RF_WEIGHT
    return settings.LSTM_WEIGHT


def combine_results(results: Sequence[PredictionResult]) -> Tuple[float, float]:
    """
    Combine two or more predictor results.

    Returns:
        (condition score, combined confidence)
    """
    bases = [base_weight(r.algorithm) for r in results]
    weights = [b * r.confidence for b, r in zip(bases, results)]
    if sum(weights) <= 0.0:
        weights = bases

    condition = sum(w * r.condition_score for w, r in zip(weights, results)) / sum(weights)
    confidence = sum(b * r.confidence for b, r in zip(bases, results)) / sum(bases)
    return (
        min(1.0, max(0.0, condition)),
        min(confidence, settings.MAX_COMBINED_CONFIDENCE),
    )


def degraded_confidence(result: PredictionResult) -> float:
    """Confidence of a composite carrying only `result`."""
    return min(result.confidence * settings.DEGRADATION_FACTOR, settings.MAX_COMBINED_CONFIDENCE)


def merge_recommendations(results: Iterable[PredictionResult]) -> List[str]:
    """Deduplicated recommendations, time-series first, at most five."""
    ordered = sorted(results, key=lambda r: r.algorithm != AlgorithmFamily.LSTM)
    merged: List[str] = []
    for result in ordered:
        for recommendation in result.recommendations:
            if recommendation not in merged:
                merged.append(recommendation)
    return merged[:MAX_RECOMMENDATIONS]


def weighted_remaining_days(results: Sequence[PredictionResult]) -> Optional[int]:
    """Base-weighted average of the days-to-failure estimates that exist."""
    estimates = [(base_weight(r.algorithm), r.days_to_failure) for r in results if r.days_to_failure is not None]
    if not estimates:
        return None
    total = sum(w for w, _ in estimates)
    return int(round(sum(w * d for w, d in estimates) / total))


class StartSignal:
    """Records when a worker picks up a submitted task."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.started_at = 0.0

    def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        self.started_at = time.monotonic()
        self._event.set()
        return fn(*args)

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def is_set(self) -> bool:
        return self._event.is_set()


class HybridPredictor:
    """
    Runs every algorithm family for one unit and merges the results.

    Telemetry is fetched once for the union of the lookbacks. The
    predictors run concurrently on `executor` and are joined in the fixed
    order of FAMILY_ORDER, so results never depend on completion order.

    Example:
        hybrid = HybridPredictor(predictors, executor)
        prediction = hybrid.predict(storage, "eq-1", "org-1")
        if prediction is None:
            print("Not yet available")
    """

    def __init__(
        self,
        predictors: Mapping[AlgorithmFamily, AlgorithmPredictor],
        executor: Executor,
        include_fleet_wide: Optional[bool] = None,
    ) -> None:
        """
        Initialize the combiner.

        Args:
            predictors: One predictor per algorithm family.
            executor: Pool running telemetry fetches and inference.
            include_fleet_wide: Passed to the model registry.
        """
        missing = [f.value for f in FAMILY_ORDER if f not in predictors]
        if missing:
            raise ValueError(f"No predictor configured for {missing}")
        self._predictors = dict(predictors)
        self._executor = executor
        self._include_fleet_wide = include_fleet_wide

    def registry(self, storage: StorageProtocol) -> ModelRegistry:
        return ModelRegistry(storage, include_fleet_wide=self._include_fleet_wide)

    def find_equipment(self, storage: StorageProtocol, equipment_id: str, org_id: str) -> Optional[Equipment]:
        """
        Look up one unit in the organization's registry.

        Raises:
            StorageError: If the storage collaborator fails.
        """
        registry = call_storage("get_equipment_registry", storage.get_equipment_registry, org_id)
        return next((e for e in registry if e.id == equipment_id), None)

    def fetch(
        self,
        storage: StorageProtocol,
        equipment_id: str,
        org_id: str,
        artifacts: Sequence[ModelArtifact],
        now: Optional[datetime] = None,
    ) -> Optional[TelemetryWindow]:
        """
        Fetch the window covering every artifact's lookback.

        Returns:
            The window, or None if the fetch timed out.

        Raises:
            StorageError: If the storage collaborator fails.
        """
        start, end = window_range(artifacts, now)
        future = self._executor.submit(fetch_window, storage, equipment_id, org_id, start, end)
        try:
            return future.result(timeout=settings.TELEMETRY_FETCH_TIMEOUT_S)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(
                "Telemetry fetch timed out",
                extra={
                    "equipment_id": equipment_id,
                    "timeout_s": settings.TELEMETRY_FETCH_TIMEOUT_S,
                },
            )
            return None

    def run_predictors(
        self,
        window: TelemetryWindow,
        artifacts: Mapping[AlgorithmFamily, ModelArtifact],
        log: logging.LoggerAdapter,
    ) -> Dict[AlgorithmFamily, PredictionResult]:
        """
        Run the predictors of `artifacts` concurrently on their slices of `window`.

        Failed, starved or timed-out predictors are left out of the result.
        """
        tasks: Dict[AlgorithmFamily, Tuple[StartSignal, Future]] = {}
        for family in FAMILY_ORDER:
            artifact = artifacts.get(family)
            if artifact is None:
                continue
            signal = StartSignal()
            tasks[family] = (
                signal,
                self._executor.submit(
                    signal.run, self._predictors[family].predict, slice_for(window, artifact), artifact
                ),
            )

        queue_deadline = time.monotonic() + settings.QUEUE_TIMEOUT_S
        results: Dict[AlgorithmFamily, PredictionResult] = {}
        for family, (signal, future) in tasks.items():
            try:
                if not signal.wait(max(0.0, queue_deadline - time.monotonic())):
                    raise FuturesTimeoutError()
                remaining = signal.started_at + settings.INFERENCE_TIMEOUT_S - time.monotonic()
                results[family] = future.result(timeout=max(0.0, remaining))
            except FuturesTimeoutError:
                future.cancel()
                log.warning(
                    "Predictor timed out",
                    extra={
                        "algorithm": family.value,
                        "started": signal.is_set(),
                        "timeout_s": settings.INFERENCE_TIMEOUT_S,
                    },
                )
            except InsufficientDataError as e:
                log.info(
                    "Insufficient telemetry for predictor",
                    extra={
                        "algorithm": family.value,
                        "required": e.required,
                        "available": e.available,
                        "reason": str(e),
                    },
                )
            except PredictorRuntimeError as e:
                log.error(
                    "Predictor failed",
                    extra={"algorithm": family.value, "error": str(e)},
                    exc_info=True,
                )
        return results

    def predict(
        self,
        storage: StorageProtocol,
        equipment_id: str,
        org_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[HybridPrediction]:
        """
        Produce the composite prediction of one unit.

        Args:
            storage: Storage collaborator.
            equipment_id: Unit to predict.
            org_id: Organization owning the unit.
            now: End of the telemetry window; defaults to the current time.

        Returns:
            A combined or degraded HybridPrediction, or None when no
            algorithm family could produce a result.

        Raises:
            StorageError: If the storage collaborator fails.
        """
        log = LoggerAdapter(logger, {"equipment_id": equipment_id, "org_id": org_id})
        status = PredictionStatus.IDLE

        def advance(to: PredictionStatus) -> None:
            nonlocal status
            log.debug("Prediction state changed", extra={"from": status.value, "to": to.value})
            status = to

        advance(PredictionStatus.RESOLVING_MODELS)
        equipment = self.find_equipment(storage, equipment_id, org_id)
        if equipment is None:
            advance(PredictionStatus.UNAVAILABLE)
            event_logger.prediction_unavailable(equipment_id, reason="unknown equipment")
            return None

        registry = self.registry(storage)
        artifacts: Dict[AlgorithmFamily, ModelArtifact] = {}
        for family in FAMILY_ORDER:
            artifact = registry.resolve_best_model(org_id, equipment.type, family)
            if artifact is not None:
                artifacts[family] = artifact
        if not artifacts:
            advance(PredictionStatus.UNAVAILABLE)
            event_logger.prediction_unavailable(equipment_id, reason="no model artifacts")
            return None

        advance(PredictionStatus.FETCHING_TELEMETRY)
        window = self.fetch(storage, equipment_id, org_id, list(artifacts.values()), now)
        if window is None:
            advance(PredictionStatus.UNAVAILABLE)
            event_logger.prediction_unavailable(equipment_id, reason="telemetry fetch timed out")
            return None

        advance(PredictionStatus.PREDICTING)
        results = self.run_predictors(window, artifacts, log)
        if not results:
            advance(PredictionStatus.UNAVAILABLE)
            event_logger.prediction_unavailable(equipment_id, reason="no predictor produced a result")
            return None

        ordered = [results[f] for f in FAMILY_ORDER if f in results]
        unavailable = [f for f in FAMILY_ORDER if f not in results]

        if unavailable:
            advance(PredictionStatus.DEGRADED)
            condition = ordered[0].condition_score
            confidence = degraded_confidence(ordered[0])
            event_logger.prediction_degraded(
                equipment_id,
                available=ordered[0].algorithm.value,
                unavailable=",".join(f.value for f in unavailable),
                combined_confidence=confidence,
            )
        else:
            advance(PredictionStatus.COMBINED)
            condition, confidence = combine_results(ordered)

        prediction = HybridPrediction(
            equipment_id=equipment_id,
            random_forest=results.get(AlgorithmFamily.RANDOM_FOREST),
            lstm=results.get(AlgorithmFamily.LSTM),
            condition_score=condition,
            combined_confidence=confidence,
            degraded=bool(unavailable),
            unavailable=unavailable,
            status=status,
            remaining_days=weighted_remaining_days(ordered),
            recommendations=merge_recommendations(ordered),
        )
        log.info("Hybrid prediction completed", extra=prediction.to_dict())
        return prediction

    def predict_fleet(
        self,
        storage: StorageProtocol,
        org_id: str,
        equipment_ids: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Optional[HybridPrediction]]:
        """
        Predict many units of one organization concurrently.

        Args:
            storage: Storage collaborator.
            org_id: Organization.
            equipment_ids: Units to predict; defaults to the whole registry.
            now: End of the telemetry windows.

        Returns:
            Mapping of equipment id to its prediction (None if unavailable),
            in the order the ids were given.

        Raises:
            StorageError: If the storage collaborator fails for any unit.
        """
        if equipment_ids is None:
            registry = call_storage("get_equipment_registry", storage.get_equipment_registry, org_id)
            equipment_ids = [e.id for e in registry]

        # Units run on their own pool; their fetches and inference use self._executor
        with ThreadPoolExecutor(max_workers=settings.MAX_WORKERS) as pool:
            futures = {
                equipment_id: pool.submit(self.predict, storage, equipment_id, org_id, now)
                for equipment_id in equipment_ids
            }
            predictions = {equipment_id: future.result() for equipment_id, future in futures.items()}

        logger.info(
            "Fleet prediction completed",
            extra={
                "org_id": org_id,
                "units": len(predictions),
                "available": sum(p is not None for p in predictions.values()),
            },
        )
        return predictions
