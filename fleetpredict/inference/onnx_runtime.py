"""
ONNX Runtime Model Loader.

Sequence models are exported from the training pipeline to ONNX and
executed with ONNX Runtime. An artifact directory holds:

    model.onnx      exported graph, input (batch, sequence_length, n_features)
    metadata.json   {"feature_names": [...],
                     "normalization": {"mean": [...], "std": [...]}}

The graph outputs cumulative failure probabilities per horizon step.
"""

import json
from typing import List, Sequence

import numpy as np
import numpy.typing as npt
import onnxruntime as ort

from fleetpredict.exceptions import PredictorRuntimeError
from fleetpredict.inference.model_loader import ModelLoaderInterface
from fleetpredict.logging_config import get_logger
from fleetpredict.models.artifact import ModelArtifact

logger = get_logger(__name__)


class ONNXSequenceModel:
    """
    Wrapper around an ONNX sequence model.

    Applies the z-score normalization recorded at training time before
    running the session, so callers pass raw sensor values.
    """

    def __init__(
        self,
        session: "ort.InferenceSession",
        feature_names: Sequence[str],
        mean: Sequence[float],
        std: Sequence[float],
    ) -> None:
        """
        Initialize the wrapper.

        Args:
            session: ONNX Runtime inference session.
            feature_names: Sensors in the order the graph expects.
            mean: Per-feature training mean.
            std: Per-feature training standard deviation.
        """
        if not len(feature_names) == len(mean) == len(std):
            raise ValueError("feature_names, mean and std must have equal length")

        self._session = session
        self._input_name = session.get_inputs()[0].name
        self.feature_names: List[str] = list(feature_names)
        self._mean = np.asarray(mean, dtype=np.float64)
        std_arr = np.asarray(std, dtype=np.float64)
        # Constant features were trained with unit scale
        self._std = np.where(std_arr == 0.0, 1.0, std_arr)

    def predict_horizon(self, sequence: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Forecast failure probabilities over the horizon.

        Args:
            sequence: Raw sequence of shape (1, sequence_length, n_features).

        Returns:
            Cumulative failure probability per horizon step, shape (steps,).
        """
        normalized = ((sequence - self._mean) / self._std).astype(np.float32)
        outputs = self._session.run(None, {self._input_name: normalized})
        return np.asarray(outputs[0], dtype=np.float64).reshape(-1)


class ONNXModelLoader(ModelLoaderInterface):
    """
    Loader for ONNX-format sequence models.

    Example:
        loader = ONNXModelLoader()
        if loader.is_available(artifact):
            model = loader.load(artifact)
    """

    MODEL_FILENAME = "model.onnx"
    METADATA_FILENAME = "metadata.json"

    def __init__(self, providers: Sequence[str] = ("CPUExecutionProvider",)) -> None:
        self._providers = list(providers)

    def load(self, artifact: ModelArtifact) -> ONNXSequenceModel:
        """
        Load the ONNX graph and its normalization metadata.

        Raises:
            PredictorRuntimeError: If files are missing or invalid.
        """
        directory = artifact.resolve_path()
        model_path = directory / self.MODEL_FILENAME
        metadata_path = directory / self.METADATA_FILENAME

        if not model_path.exists():
            raise PredictorRuntimeError(f"ONNX model not found: {model_path}")
        if not metadata_path.exists():
            raise PredictorRuntimeError(f"Model metadata not found: {metadata_path}")

        try:
            logger.info(
                "Loading ONNX model",
                extra={"path": str(model_path), "model_version": artifact.version},
            )
            metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
            session = ort.InferenceSession(str(model_path), providers=self._providers)
            return ONNXSequenceModel(
                session=session,
                feature_names=metadata["feature_names"],
                mean=metadata["normalization"]["mean"],
                std=metadata["normalization"]["std"],
            )
        except Exception as e:
            logger.error(
                "Failed to load ONNX model",
                extra={"path": str(model_path), "error": str(e)},
            )
            raise PredictorRuntimeError(f"Failed to load ONNX model {artifact.version}: {e}") from e

    def is_available(self, artifact: ModelArtifact) -> bool:
        """Check if the graph and its metadata exist."""
        directory = artifact.resolve_path()
        return (directory / self.MODEL_FILENAME).exists() and (directory / self.METADATA_FILENAME).exists()
