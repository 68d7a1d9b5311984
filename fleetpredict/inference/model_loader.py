"""
Model Loader Interface, Implementations and the Model Cache.

Defines the interface for loading the model behind an artifact and
provides the joblib implementation used for scikit-learn forests.

Follows the Dependency Injection pattern - predictors depend on the
interface, not the concrete implementation.
"""

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import joblib
import numpy as np
import numpy.typing as npt

from fleetpredict.exceptions import PredictorRuntimeError
from fleetpredict.logging_config import event_logger, get_logger
from fleetpredict.models.artifact import ModelArtifact

logger = get_logger(__name__)


class ModelLoaderInterface(ABC):
    """
    Abstract interface for model loaders.

    Implementations turn an artifact's storage location into a ready
    model object. This allows swapping between joblib, ONNX, or mock
    implementations.
    """

    @abstractmethod
    def load(self, artifact: ModelArtifact) -> Any:
        """
        Load the model persisted for `artifact`.

        Returns:
            The loaded model object.

        Raises:
            PredictorRuntimeError: If the model cannot be loaded.
        """
        pass

    @abstractmethod
    def is_available(self, artifact: ModelArtifact) -> bool:
        """
        Check if the files of `artifact` exist.

        Returns:
            True if the model can be loaded, False otherwise.
        """
        pass


class JoblibModelLoader(ModelLoaderInterface):
    """
    Loader for joblib-persisted scikit-learn estimators.

    The storage location is either the dumped file itself or a directory
    containing `model.joblib`.

    Example:
        loader = JoblibModelLoader()
        if loader.is_available(artifact):
            forest = loader.load(artifact)
    """

    FILENAME = "model.joblib"

    def _model_path(self, artifact: ModelArtifact) -> Path:
        path = artifact.resolve_path()
        if path.is_dir():
            path = path / self.FILENAME
        return path

    def load(self, artifact: ModelArtifact) -> Any:
        """
        Load the estimator from disk.

        Raises:
            PredictorRuntimeError: If the file is missing or unreadable.
        """
        path = self._model_path(artifact)
        if not path.exists():
            raise PredictorRuntimeError(f"Model not found: {path}")

        try:
            logger.info(
                "Loading model",
                extra={"path": str(path), "model_version": artifact.version},
            )
            return joblib.load(path)
        except Exception as e:
            logger.error(
                "Failed to load model",
                extra={"path": str(path), "error": str(e)},
            )
            raise PredictorRuntimeError(f"Failed to load model {artifact.version}: {e}") from e

    def is_available(self, artifact: ModelArtifact) -> bool:
        """Check if the model file exists."""
        return self._model_path(artifact).exists()


class ModelCache:
    """
    Process-scoped cache of loaded models keyed by (org, algorithm, version).

    `get_or_load` is single-flight: concurrent callers asking for the same
    version wait on the one in-flight load instead of loading again.
    Successful loads are kept for the lifetime of the cache because
    artifacts are immutable. A failed load is not kept; its waiters see
    the same error and the next call retries.

    Example:
        cache = ModelCache()
        forest = cache.get_or_load(artifact, JoblibModelLoader())
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str, str], Future] = {}

    def get_or_load(self, artifact: ModelArtifact, loader: ModelLoaderInterface) -> Any:
        """
        Return the loaded model of `artifact`, loading it at most once.

        Raises:
            PredictorRuntimeError: If the load failed.
        """
        key = artifact.cache_key
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if not owner:
            logger.debug("Returning cached model", extra={"model_version": artifact.version})
            return future.result()

        start = time.perf_counter()
        try:
            model = loader.load(artifact)
        except PredictorRuntimeError as e:
            self._discard(key, future, e)
            raise
        except Exception as e:
            error = PredictorRuntimeError(f"Failed to load model {artifact.version}: {e}")
            self._discard(key, future, error)
            raise error from e

        future.set_result(model)
        event_logger.model_loaded(
            algorithm=artifact.algorithm.value,
            model_version=artifact.version,
            path=str(artifact.resolve_path()),
            load_time_ms=(time.perf_counter() - start) * 1000,
        )
        return model

    def _discard(self, key: Tuple[str, str, str], future: Future, error: Exception) -> None:
        with self._lock:
            self._entries.pop(key, None)
        future.set_exception(error)

    def __contains__(self, artifact: ModelArtifact) -> bool:
        with self._lock:
            future = self._entries.get(artifact.cache_key)
        return future is not None and future.done() and future.exception() is None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Drop every entry (useful for testing)."""
        with self._lock:
            self._entries.clear()


class MockSequenceModel:
    """
    Mock sequence model for testing purposes.

    Returns a fixed failure-probability curve over the horizon without
    needing an exported ONNX graph.
    """

    def __init__(
        self,
        feature_names: Sequence[str],
        horizon_probabilities: Sequence[float] = (0.2,),
    ) -> None:
        """
        Initialize the mock model.

        Args:
            feature_names: Sensors the model consumes, in order.
            horizon_probabilities: Cumulative failure probability per horizon step.
        """
        self.feature_names = list(feature_names)
        self._curve = np.asarray(horizon_probabilities, dtype=np.float64)
        self.calls = 0

    def predict_horizon(self, sequence: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Generate the mock forecast.

        Args:
            sequence: Raw sequence of shape (1, sequence_length, n_features).

        Returns:
            Failure probabilities of shape (horizon_steps,).
        """
        if sequence.ndim != 3 or sequence.shape[2] != len(self.feature_names):
            raise ValueError(f"Unexpected input shape {sequence.shape}")
        self.calls += 1
        return self._curve.copy()


class MockModelLoader(ModelLoaderInterface):
    """
    Mock model loader for testing.

    Hands out prebuilt models by artifact version and counts loads, so
    caching behaviour can be asserted without file system access.

    Example:
        loader = MockModelLoader({"lstm-v1": MockSequenceModel(["temperature"])})
        model = loader.load(artifact)
    """

    def __init__(
        self,
        models: Optional[Dict[str, Any]] = None,
        delay_s: float = 0.0,
        factory: Optional[Callable[[ModelArtifact], Any]] = None,
    ) -> None:
        """
        Initialize the mock loader.

        Args:
            models: Model object per artifact version.
            delay_s: Simulated deserialization time.
            factory: Builds a model for versions missing from `models`.
        """
        self._models = dict(models or {})
        self._delay_s = delay_s
        self._factory = factory
        self._lock = threading.Lock()
        self.load_count = 0

    def load(self, artifact: ModelArtifact) -> Any:
        """Return the prepared model, after the simulated delay."""
        with self._lock:
            self.load_count += 1
        if self._delay_s:
            time.sleep(self._delay_s)
        if artifact.version in self._models:
            return self._models[artifact.version]
        if self._factory is not None:
            return self._factory(artifact)
        raise PredictorRuntimeError(f"No mock model for {artifact.version}")

    def is_available(self, artifact: ModelArtifact) -> bool:
        return artifact.version in self._models or self._factory is not None
