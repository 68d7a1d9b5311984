"""
Exception hierarchy for the prediction engine.

Only StorageError crosses the public boundary. The other errors describe
model or data availability and are folded into degraded or empty results
by the hybrid combiner.
"""

from typing import Optional


class FleetPredictError(Exception):
    """Base class for all errors raised by fleetpredict."""


class NoModelFoundError(FleetPredictError):
    """No trained artifact exists for an (organization, equipment type, algorithm) triple."""

    def __init__(self, org_id: str, equipment_type: str, algorithm: str) -> None:
        self.org_id = org_id
        self.equipment_type = equipment_type
        self.algorithm = algorithm
        super().__init__(
            f"No {algorithm} model for equipment type '{equipment_type}' in org {org_id}"
        )


class InsufficientDataError(FleetPredictError):
    """The telemetry window is too short or too sparse for the model."""

    def __init__(self, message: str, required: Optional[int] = None, available: Optional[int] = None) -> None:
        self.required = required
        self.available = available
        super().__init__(message)


class PredictorRuntimeError(FleetPredictError):
    """Loading a model or running inference failed."""


class StorageError(FleetPredictError):
    """The storage collaborator failed; this is an environment problem and is propagated."""
