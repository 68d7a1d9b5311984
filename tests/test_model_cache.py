"""
Unit tests for the ModelCache and the model loaders.

Tests single-flight loading and error handling without real inference.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from sklearn.ensemble import RandomForestClassifier

from fleetpredict.exceptions import PredictorRuntimeError
from fleetpredict.inference.model_loader import (
    JoblibModelLoader,
    MockModelLoader,
    MockSequenceModel,
    ModelCache,
)
from fleetpredict.inference.onnx_runtime import ONNXModelLoader, ONNXSequenceModel
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact

from tests.conftest import SENSORS, make_artifact


class FlakyLoader(MockModelLoader):
    """Fails the first load, succeeds afterwards."""

    def load(self, artifact: ModelArtifact) -> Any:
        model = super().load(artifact)
        if self.load_count == 1:
            raise PredictorRuntimeError("corrupt download")
        return model


class TestModelCache:
    """Tests for ModelCache.get_or_load."""

    def test_concurrent_loads_of_one_version_load_once(self) -> None:
        """Test that simultaneous callers share one in-flight load."""
        cache = ModelCache()
        model = MockSequenceModel(SENSORS)
        loader = MockModelLoader({"lstm-v1": model}, delay_s=0.2)
        artifact = make_artifact("lstm-v1", AlgorithmFamily.LSTM)
        barrier = threading.Barrier(8)

        def load() -> Any:
            barrier.wait()
            return cache.get_or_load(artifact, loader)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: load(), range(8)))

        assert loader.load_count == 1
        assert all(r is model for r in results)

    def test_loaded_model_is_reused(self) -> None:
        """Test that later calls never reload a version."""
        cache = ModelCache()
        loader = MockModelLoader({"rf-v1": object()})
        artifact = make_artifact("rf-v1")

        first = cache.get_or_load(artifact, loader)
        second = cache.get_or_load(artifact, loader)

        assert first is second
        assert loader.load_count == 1
        assert artifact in cache

    def test_versions_are_cached_separately(self) -> None:
        """Test that each (algorithm, version) pair has its own entry."""
        cache = ModelCache()
        loader = MockModelLoader({"v1": "forest", "v2": "other"})

        cache.get_or_load(make_artifact("v1"), loader)
        cache.get_or_load(make_artifact("v2"), loader)
        cache.get_or_load(make_artifact("v1", AlgorithmFamily.LSTM), loader)

        assert len(cache) == 3
        assert loader.load_count == 3

    def test_same_version_in_two_orgs_is_cached_separately(self) -> None:
        """Test that one organization never receives another's model."""
        cache = ModelCache()
        loader = MockModelLoader(factory=lambda artifact: artifact.storage_location)
        org_a = make_artifact("v1", AlgorithmFamily.LSTM, org_id="org-a", storage_location="org-a/lstm")
        org_b = make_artifact("v1", AlgorithmFamily.LSTM, org_id="org-b", storage_location="org-b/lstm")

        assert cache.get_or_load(org_a, loader) == "org-a/lstm"
        assert cache.get_or_load(org_b, loader) == "org-b/lstm"
        assert loader.load_count == 2
        assert org_a.cache_key != org_b.cache_key

    def test_failed_load_is_not_cached(self) -> None:
        """Test that a failed load raises and the next call retries."""
        cache = ModelCache()
        loader = FlakyLoader({"rf-v1": "forest"})
        artifact = make_artifact("rf-v1")

        with pytest.raises(PredictorRuntimeError):
            cache.get_or_load(artifact, loader)
        assert artifact not in cache

        assert cache.get_or_load(artifact, loader) == "forest"
        assert loader.load_count == 2

    def test_unexpected_loader_error_is_wrapped(self) -> None:
        """Test that arbitrary loader exceptions surface as PredictorRuntimeError."""
        def explode(artifact: ModelArtifact) -> Any:
            raise MemoryError("out of memory")

        cache = ModelCache()
        loader = MockModelLoader(factory=explode)

        with pytest.raises(PredictorRuntimeError) as exc_info:
            cache.get_or_load(make_artifact("rf-v1"), loader)

        assert isinstance(exc_info.value.__cause__, MemoryError)
        assert len(cache) == 0


class TestJoblibModelLoader:
    """Tests for the joblib loader."""

    def test_loads_dumped_forest_from_directory(
        self,
        rf_model_path: Path,
        rf_classifier: RandomForestClassifier,
    ) -> None:
        """Test that a directory location resolves to model.joblib inside it."""
        artifact = make_artifact("rf-v1", storage_location=str(rf_model_path.parent))
        loader = JoblibModelLoader()

        model = loader.load(artifact)

        assert loader.is_available(artifact)
        assert list(model.classes_) == list(rf_classifier.classes_)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Test that a missing model is a runtime failure."""
        artifact = make_artifact("rf-v1", storage_location=str(tmp_path / "nope.joblib"))
        loader = JoblibModelLoader()

        assert not loader.is_available(artifact)
        with pytest.raises(PredictorRuntimeError):
            loader.load(artifact)

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        """Test that an unreadable dump is a runtime failure."""
        path = tmp_path / "model.joblib"
        path.write_bytes(b"not a pickle")
        artifact = make_artifact("rf-v1", storage_location=str(path))

        with pytest.raises(PredictorRuntimeError):
            JoblibModelLoader().load(artifact)


class FakeInput:
    name = "sequence"


class FakeSession:
    """Stands in for an onnxruntime InferenceSession."""

    def __init__(self) -> None:
        self.fed = None

    def get_inputs(self) -> list:
        return [FakeInput()]

    def run(self, output_names: Any, feed: dict) -> list:
        self.fed = feed["sequence"]
        return [np.array([[0.1, 0.3, 0.6]], dtype=np.float32)]


class TestONNXSequenceModel:
    """Tests for the ONNX wrapper and loader."""

    def test_normalizes_input_and_flattens_output(self) -> None:
        """Test that the graph receives z-scored float32 input."""
        session = FakeSession()
        model = ONNXSequenceModel(session, ["temperature", "vibration"], mean=[50.0, 60.0], std=[2.0, 0.0])
        sequence = np.array([[[52.0, 61.0], [48.0, 59.0]]])

        curve = model.predict_horizon(sequence)

        assert session.fed.dtype == np.float32
        np.testing.assert_allclose(session.fed[0], [[1.0, 1.0], [-1.0, -1.0]])
        np.testing.assert_allclose(curve, [0.1, 0.3, 0.6], rtol=1e-6)

    def test_mismatched_metadata_rejected(self) -> None:
        """Test that normalization vectors must match the feature list."""
        with pytest.raises(ValueError):
            ONNXSequenceModel(FakeSession(), ["temperature"], mean=[0.0, 0.0], std=[1.0])

    def test_missing_graph_raises(self, tmp_path: Path) -> None:
        """Test that an artifact directory without model.onnx is a runtime failure."""
        artifact = make_artifact("lstm-v1", AlgorithmFamily.LSTM, storage_location=str(tmp_path))
        loader = ONNXModelLoader()

        assert not loader.is_available(artifact)
        with pytest.raises(PredictorRuntimeError):
            loader.load(artifact)

    def test_invalid_graph_raises(self, tmp_path: Path) -> None:
        """Test that a corrupt graph is reported as a runtime failure."""
        (tmp_path / "model.onnx").write_bytes(b"garbage")
        (tmp_path / "metadata.json").write_text(
            '{"feature_names": ["temperature"], "normalization": {"mean": [0], "std": [1]}}'
        )
        artifact = make_artifact("lstm-v1", AlgorithmFamily.LSTM, storage_location=str(tmp_path))

        with pytest.raises(PredictorRuntimeError):
            ONNXModelLoader().load(artifact)
