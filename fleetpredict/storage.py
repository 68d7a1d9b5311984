"""
Storage collaborator interface.

The engine never talks to a database directly. Callers inject an object
satisfying StorageProtocol; InMemoryStorage is the implementation used
in development and tests.
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from fleetpredict.exceptions import StorageError
from fleetpredict.logging_config import get_logger
from fleetpredict.models.artifact import ModelArtifact
from fleetpredict.models.telemetry import TelemetryRecord, as_utc

logger = get_logger(__name__)

T = TypeVar("T")


class Equipment(BaseModel):
    """An equipment unit as listed in an organization's registry."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    org_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="Equipment category, e.g. 'engine'")
    name: Optional[str] = None


class StorageProtocol(Protocol):
    """Operations the engine consumes from the storage collaborator."""

    def get_equipment_registry(self, org_id: str) -> List[Equipment]:
        """List the equipment of an organization."""
        ...

    def get_telemetry_by_equipment_and_date_range(
        self,
        equipment_id: str,
        start: datetime,
        end: datetime,
        org_id: str,
    ) -> List[TelemetryRecord]:
        """Return time-ordered telemetry of one unit within [start, end]."""
        ...

    def get_model_artifacts(self, org_id: str) -> List[ModelArtifact]:
        """List every trained model artifact of an organization."""
        ...


class InMemoryStorage:
    """
    Dictionary-backed storage for development and testing.

    Example:
        storage = InMemoryStorage()
        storage.add_equipment(Equipment(id="eq-1", org_id="org", type="engine"))
        storage.add_telemetry("org", records)
        storage.add_artifact(artifact)
    """

    def __init__(self) -> None:
        self._equipment: Dict[str, List[Equipment]] = defaultdict(list)
        self._telemetry: Dict[tuple, List[TelemetryRecord]] = defaultdict(list)
        self._artifacts: Dict[str, List[ModelArtifact]] = defaultdict(list)

    def add_equipment(self, equipment: Equipment) -> None:
        self._equipment[equipment.org_id].append(equipment)

    def add_telemetry(self, org_id: str, records: Iterable[TelemetryRecord]) -> None:
        for record in records:
            self._telemetry[(org_id, record.equipment_id)].append(record)

    def add_artifact(self, artifact: ModelArtifact) -> None:
        self._artifacts[artifact.org_id].append(artifact)

    def get_equipment_registry(self, org_id: str) -> List[Equipment]:
        return list(self._equipment.get(org_id, []))

    def get_telemetry_by_equipment_and_date_range(
        self,
        equipment_id: str,
        start: datetime,
        end: datetime,
        org_id: str,
    ) -> List[TelemetryRecord]:
        start, end = as_utc(start), as_utc(end)
        records = self._telemetry.get((org_id, equipment_id), [])
        return sorted(
            (r for r in records if start <= r.timestamp <= end),
            key=lambda r: r.timestamp,
        )

    def get_model_artifacts(self, org_id: str) -> List[ModelArtifact]:
        return list(self._artifacts.get(org_id, []))


def call_storage(operation: str, func: Callable[..., T], *args: Any) -> T:
    """
    Invoke a storage operation, surfacing any failure as StorageError.

    Args:
        operation: Name used in the error message and log line.
        func: Bound storage method.
        *args: Positional arguments for `func`.

    Raises:
        StorageError: If the collaborator raised.
    """
    try:
        return func(*args)
    except StorageError:
        raise
    except Exception as e:
        logger.error(
            "Storage operation failed",
            extra={"operation": operation, "error": str(e)},
        )
        raise StorageError(f"{operation} failed: {e}") from e
