"""
Model Registry - Resolves the best trained artifact for a unit.

The registry indexes artifacts by (organization, equipment type,
algorithm family) and picks the highest validation score, breaking ties
by recency. Finding nothing is a normal state ("no model trained yet"):
`resolve_best_model` reports it as None, `require_best_model` raises
NoModelFoundError for callers that cannot proceed without a model.
"""

from typing import List, Optional, Protocol, Union

from fleetpredict.config import settings
from fleetpredict.exceptions import NoModelFoundError
from fleetpredict.logging_config import event_logger, get_logger
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact
from fleetpredict.storage import call_storage

logger = get_logger(__name__)


class ArtifactSource(Protocol):
    """Anything that can list an organization's artifacts, typically the storage collaborator."""

    def get_model_artifacts(self, org_id: str) -> List[ModelArtifact]:
        ...


class ModelRegistry:
    """
    Read-only view over the artifacts of an artifact source.

    Example:
        registry = ModelRegistry(storage)
        artifact = registry.resolve_best_model("org-1", "engine", AlgorithmFamily.LSTM)
        if artifact is None:
            print("No model trained yet")
    """

    def __init__(
        self,
        source: ArtifactSource,
        include_fleet_wide: Optional[bool] = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            source: Provider of model artifacts.
            include_fleet_wide: Also consider artifacts without an equipment
                type, ranked after type-specific ones. Defaults to config.
        """
        self._source = source
        self._include_fleet_wide = (
            settings.INCLUDE_FLEET_WIDE_MODELS if include_fleet_wide is None else include_fleet_wide
        )

    def list_candidates(
        self,
        org_id: str,
        equipment_type: str,
        algorithm: Union[AlgorithmFamily, str],
    ) -> List[ModelArtifact]:
        """
        Rank every active artifact eligible for the triple, best first.

        Args:
            org_id: Organization id.
            equipment_type: Equipment category.
            algorithm: Algorithm family (enum member or its value).

        Returns:
            Candidates ordered by (type-specific first, score, recency) descending.
        """
        algorithm = AlgorithmFamily(algorithm)
        equipment_type = equipment_type.strip().lower()

        candidates = [
            a for a in call_storage("get_model_artifacts", self._source.get_model_artifacts, org_id)
            if a.org_id == org_id
            and a.algorithm == algorithm
            and a.is_active
            and (
                a.equipment_type == equipment_type
                or (self._include_fleet_wide and a.equipment_type is None)
            )
        ]
        candidates.sort(
            key=lambda a: (a.equipment_type is not None, *a.rank_key),
            reverse=True,
        )
        logger.debug(
            "Ranked model candidates",
            extra={
                "org_id": org_id,
                "equipment_type": equipment_type,
                "algorithm": algorithm.value,
                "candidates": [a.version for a in candidates],
            },
        )
        return candidates

    def resolve_best_model(
        self,
        org_id: str,
        equipment_type: str,
        algorithm: Union[AlgorithmFamily, str],
    ) -> Optional[ModelArtifact]:
        """
        Select the single best artifact for the triple.

        Returns:
            The artifact with the highest validation score (most recent on
            ties), or None when no artifact exists.
        """
        candidates = self.list_candidates(org_id, equipment_type, algorithm)
        best = candidates[0] if candidates else None

        event_logger.model_resolved(
            org_id=org_id,
            equipment_type=equipment_type,
            algorithm=AlgorithmFamily(algorithm).value,
            model_version=best.version if best else None,
            validation_score=best.validation_score if best else None,
        )
        return best

    def require_best_model(
        self,
        org_id: str,
        equipment_type: str,
        algorithm: Union[AlgorithmFamily, str],
    ) -> ModelArtifact:
        """
        Select the best artifact for the triple, which must exist.

        Raises:
            NoModelFoundError: If no active artifact is eligible.
        """
        best = self.resolve_best_model(org_id, equipment_type, algorithm)
        if best is None:
            raise NoModelFoundError(org_id, equipment_type, AlgorithmFamily(algorithm).value)
        return best
