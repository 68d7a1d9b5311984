"""Model loading and caching components."""

from fleetpredict.inference.model_loader import (
    JoblibModelLoader,
    ModelCache,
    ModelLoaderInterface,
)
from fleetpredict.inference.onnx_runtime import ONNXModelLoader, ONNXSequenceModel

__all__ = [
    "JoblibModelLoader",
    "ModelCache",
    "ModelLoaderInterface",
    "ONNXModelLoader",
    "ONNXSequenceModel",
]
