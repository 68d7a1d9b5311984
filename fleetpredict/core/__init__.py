"""Core business logic components."""

from fleetpredict.core.registry import ModelRegistry
from fleetpredict.core.predictor import AlgorithmPredictor
from fleetpredict.core.random_forest import RandomForestPredictor
from fleetpredict.core.time_series import TimeSeriesPredictor
from fleetpredict.core.hybrid import HybridPredictor

__all__ = [
    "ModelRegistry",
    "AlgorithmPredictor",
    "RandomForestPredictor",
    "TimeSeriesPredictor",
    "HybridPredictor",
]
