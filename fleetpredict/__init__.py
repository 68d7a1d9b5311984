"""
Fleet Predict - Predictive maintenance engine

Selects the best trained model per equipment type and combines a
random-forest health score with an LSTM failure forecast:
- Model registry with score/recency ranking
- Single-flight model cache
- Degraded results instead of errors when models or data are missing
- Pydantic configuration and structured logging
"""

from fleetpredict.service import (
    PredictionEngine,
    get_default_engine,
    predict_failure_with_lstm,
    predict_health_with_random_forest,
    predict_with_hybrid_model,
    resolve_best_model,
)

__version__ = "1.0.0"

__all__ = [
    "PredictionEngine",
    "get_default_engine",
    "predict_failure_with_lstm",
    "predict_health_with_random_forest",
    "predict_with_hybrid_model",
    "resolve_best_model",
]
