"""
Telemetry windowing - how much history each predictor needs.

A hybrid call fetches the union of the predictors' lookback ranges once
and hands each predictor its own slice.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from fleetpredict.config import settings
from fleetpredict.logging_config import get_logger
from fleetpredict.models.artifact import AlgorithmFamily, ModelArtifact
from fleetpredict.models.telemetry import TelemetryWindow, as_utc
from fleetpredict.storage import StorageProtocol, call_storage

logger = get_logger(__name__)


def required_lookback(artifact: ModelArtifact) -> timedelta:
    """
    History a predictor needs for `artifact`.

    The random forest aggregates a fixed number of days. The LSTM needs at
    least its full sequence plus one sampling step, and never less than
    the configured window.
    """
    if artifact.algorithm == AlgorithmFamily.RANDOM_FOREST:
        return timedelta(days=settings.RF_WINDOW_DAYS)

    schema = artifact.feature_schema
    sequence_span = timedelta(minutes=schema.lookback_minutes + schema.sample_interval_minutes)
    return max(timedelta(days=settings.LSTM_WINDOW_DAYS), sequence_span)


def window_range(
    artifacts: Iterable[ModelArtifact],
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Smallest range covering every artifact's lookback, ending at `now`.

    Raises:
        ValueError: If no artifact is given.
    """
    end = as_utc(now) if now is not None else datetime.now(timezone.utc)
    lookbacks = [required_lookback(a) for a in artifacts]
    if not lookbacks:
        raise ValueError("At least one artifact is required to size a window")
    return end - max(lookbacks), end


def slice_for(window: TelemetryWindow, artifact: ModelArtifact) -> TelemetryWindow:
    """Narrow a (union) window to the range `artifact` needs."""
    return window.slice(window.end - required_lookback(artifact), window.end)


def fetch_window(
    storage: StorageProtocol,
    equipment_id: str,
    org_id: str,
    start: datetime,
    end: datetime,
) -> TelemetryWindow:
    """
    Fetch telemetry for [start, end] and wrap it in a validated window.

    Records of another unit or outside the range are dropped with a
    warning rather than failing the whole window.

    Raises:
        StorageError: If the storage collaborator fails.
    """
    start, end = as_utc(start), as_utc(end)
    records = call_storage(
        "get_telemetry_by_equipment_and_date_range",
        storage.get_telemetry_by_equipment_and_date_range,
        equipment_id,
        start,
        end,
        org_id,
    )

    kept = [
        r for r in records
        if r.equipment_id == equipment_id and start <= r.timestamp <= end
    ]
    if len(kept) != len(records):
        logger.warning(
            "Dropped telemetry outside the requested window",
            extra={
                "equipment_id": equipment_id,
                "dropped": len(records) - len(kept),
            },
        )

    window = TelemetryWindow(equipment_id=equipment_id, start=start, end=end, records=kept)
    logger.debug(
        "Telemetry window fetched",
        extra={
            "equipment_id": equipment_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "records": len(window),
        },
    )
    return window
