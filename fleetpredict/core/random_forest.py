"""
Random-Forest Predictor - Health scoring from aggregated telemetry.

The window is reduced to one fixed-width feature vector following the
artifact's feature schema:

    latest   last reading of every sensor
    summary  mean, max, min and population std of every sensor

The vector is fed to a scikit-learn estimator persisted with joblib.
Classifiers over health labels are mapped to a failure risk with
CLASS_RISK_WEIGHTS and the health score is 1 - risk. Regressors
predict the health score directly.
"""

from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt
import pandas as pd

from fleetpredict.config import settings
from fleetpredict.core.predictor import AlgorithmPredictor, clip_unit, label_for_risk
from fleetpredict.exceptions import InsufficientDataError, PredictorRuntimeError
from fleetpredict.inference.model_loader import JoblibModelLoader, ModelCache, ModelLoaderInterface
from fleetpredict.logging_config import get_logger
from fleetpredict.models.artifact import AlgorithmFamily, FeatureSchema, ModelArtifact
from fleetpredict.models.prediction import (
    FeatureContribution,
    HealthLabel,
    OutcomeKind,
    PredictionResult,
)
from fleetpredict.models.telemetry import TelemetryWindow

logger = get_logger(__name__)

DAYS_TO_FAILURE = {
    HealthLabel.CRITICAL: 7,
    HealthLabel.WARNING: 30,
}
TOP_FEATURES = 5


def extract_features(window: TelemetryWindow, schema: FeatureSchema) -> pd.DataFrame:
    """
    Aggregate a window into a one-row feature frame.

    Columns follow `schema.feature_names`. Callers must have checked that
    every sensor has at least one reading.
    """
    frame = window.to_dataframe()
    values: List[float] = []
    for sensor in schema.sensors:
        series = frame[sensor].dropna()
        if schema.aggregation == "latest":
            values.append(float(series.iloc[-1]))
        else:
            values.extend([
                float(series.mean()),
                float(series.max()),
                float(series.min()),
                float(series.std(ddof=0)),
            ])
    return pd.DataFrame([values], columns=schema.feature_names)


class RandomForestPredictor(AlgorithmPredictor):
    """
    Health predictor for random-forest artifacts.

    Example:
        predictor = RandomForestPredictor(ModelCache())
        result = predictor.predict_health(window, artifact)
        print(result.outcome)  # 1.0 = fully healthy
    """

    algorithm = AlgorithmFamily.RANDOM_FOREST

    def __init__(
        self,
        cache: ModelCache,
        loader: Optional[ModelLoaderInterface] = None,
    ) -> None:
        super().__init__(cache, loader or JoblibModelLoader())

    def predict_health(self, window: TelemetryWindow, artifact: ModelArtifact) -> PredictionResult:
        """Predict the normalized health score of the unit behind `window`."""
        return self.predict(window, artifact)

    def check_window(self, window: TelemetryWindow, artifact: ModelArtifact) -> None:
        schema = artifact.feature_schema
        if len(window) < schema.min_records:
            raise InsufficientDataError(
                f"Window of {window.equipment_id} has {len(window)} records, "
                f"model {artifact.version} needs {schema.min_records}",
                required=schema.min_records,
                available=len(window),
            )

        missing = [s for s in schema.sensors if window.count_readings(s) == 0]
        if missing:
            raise InsufficientDataError(
                f"No readings for sensors {missing} in window of {window.equipment_id}"
            )

    def _predict(self, window: TelemetryWindow, artifact: ModelArtifact, model: Any) -> PredictionResult:
        schema = artifact.feature_schema
        features = extract_features(window, schema)
        logger.debug(
            "Feature vector extracted",
            extra={
                "equipment_id": window.equipment_id,
                "aggregation": schema.aggregation,
                "features": features.iloc[0].round(4).to_dict(),
            },
        )
        X = self._model_input(model, features)

        if hasattr(model, "predict_proba"):
            labels = [str(c).lower() for c in model.classes_]
            weights = self._risk_weights(labels)
            probabilities = np.asarray(model.predict_proba(X), dtype=np.float64)[0]
            risk = float(probabilities @ weights)
            label = self._majority_label(labels, probabilities, risk)
            confidence = self._classifier_confidence(model, X, weights, probabilities)
        else:
            health = clip_unit(float(np.asarray(model.predict(X)).reshape(-1)[0]))
            risk = 1.0 - health
            label = label_for_risk(risk)
            confidence = self._regressor_confidence(model, X)

        contributions = self._contributions(model, schema.feature_names)
        health = clip_unit(1.0 - risk)

        return PredictionResult(
            equipment_id=window.equipment_id,
            algorithm=self.algorithm,
            outcome_kind=OutcomeKind.HEALTH_SCORE,
            outcome=health,
            confidence=confidence,
            model_version=artifact.version,
            label=label,
            days_to_failure=DAYS_TO_FAILURE.get(label),
            contributing_features=contributions,
            recommendations=self._recommendations(label, contributions),
        )

    @staticmethod
    def _model_input(model: Any, features: pd.DataFrame) -> Any:
        expected = getattr(model, "n_features_in_", features.shape[1])
        if expected != features.shape[1]:
            raise PredictorRuntimeError(
                f"Model expects {expected} features, schema provides {features.shape[1]}"
            )

        trained_names = getattr(model, "feature_names_in_", None)
        if trained_names is None:
            return features.to_numpy(dtype=np.float64)
        missing = set(trained_names) - set(features.columns)
        if missing:
            raise PredictorRuntimeError(f"Schema lacks features the model was trained on: {sorted(missing)}")
        return features[list(trained_names)]

    @staticmethod
    def _risk_weights(labels: Sequence[str]) -> npt.NDArray[np.float64]:
        unknown = [label for label in labels if label not in settings.CLASS_RISK_WEIGHTS]
        if unknown:
            raise PredictorRuntimeError(f"No risk weight configured for classes {unknown}")
        return np.array([settings.CLASS_RISK_WEIGHTS[label] for label in labels], dtype=np.float64)

    @staticmethod
    def _majority_label(
        labels: Sequence[str],
        probabilities: npt.NDArray[np.float64],
        risk: float,
    ) -> HealthLabel:
        majority = labels[int(np.argmax(probabilities))]
        if majority in {member.value for member in HealthLabel}:
            return HealthLabel(majority)
        return label_for_risk(risk)

    @staticmethod
    def _tree_inputs(model: Any, X: Any) -> Tuple[List[Any], Any]:
        # Trees inside a fitted forest are trained on plain arrays
        trees = getattr(model, "estimators_", None)
        trees = [] if trees is None else list(trees)
        if not all(hasattr(t, "predict") for t in trees):
            trees = []
        values = X.to_numpy(dtype=np.float64) if isinstance(X, pd.DataFrame) else X
        return trees, values

    def _classifier_confidence(
        self,
        model: Any,
        X: Any,
        weights: npt.NDArray[np.float64],
        probabilities: npt.NDArray[np.float64],
    ) -> float:
        """Agreement of the trees on the risk, else the majority vote share."""
        trees, values = self._tree_inputs(model, X)
        if trees:
            risks = [float(np.asarray(t.predict_proba(values), dtype=np.float64)[0] @ weights) for t in trees]
            return clip_unit(1.0 - 2.0 * float(np.std(risks)))
        return clip_unit(float(np.max(probabilities)))

    def _regressor_confidence(self, model: Any, X: Any) -> float:
        trees, values = self._tree_inputs(model, X)
        if trees:
            outputs = [float(np.asarray(t.predict(values)).reshape(-1)[0]) for t in trees]
            return clip_unit(1.0 - 2.0 * float(np.std(outputs)))
        return settings.RF_DEFAULT_CONFIDENCE

    @staticmethod
    def _contributions(model: Any, feature_names: Sequence[str]) -> List[FeatureContribution]:
        importances = getattr(model, "feature_importances_", None)
        if importances is None:
            return []
        importances = np.asarray(importances, dtype=np.float64)
        total = float(importances.sum())
        if total <= 0.0 or len(importances) != len(feature_names):
            return []

        ranked = sorted(zip(feature_names, importances / total), key=lambda p: p[1], reverse=True)
        return [
            FeatureContribution(feature=name, importance=clip_unit(float(share)))
            for name, share in ranked[:TOP_FEATURES]
        ]

    @staticmethod
    def _recommendations(label: HealthLabel, contributions: List[FeatureContribution]) -> List[str]:
        top = ", ".join(c.feature for c in contributions[:2])
        if label == HealthLabel.CRITICAL:
            recommendations = ["Critical health status detected", "Schedule immediate maintenance"]
            if top:
                recommendations.append(f"Top contributing factors: {top}")
        elif label == HealthLabel.WARNING:
            recommendations = ["Warning: Equipment health degrading", "Schedule preventive maintenance"]
            if top:
                recommendations.append(f"Monitor: {top}")
        else:
            recommendations = ["Equipment health is good", "Continue routine monitoring"]
        return recommendations
