"""
Telemetry data models with Pydantic validation.

These models ensure that all telemetry data is validated before
it reaches the predictors, preventing garbage-in-garbage-out.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List

import pandas as pd
from pydantic import BaseModel, Field, field_validator, model_validator


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TelemetryRecord(BaseModel):
    """
    A single telemetry record from one equipment unit.

    Carries every sensor sampled at `timestamp`. Non-finite readings
    are rejected so that a NaN never reaches a model.
    """

    equipment_id: str = Field(
        ...,
        description="Equipment the readings belong to",
        min_length=1,
    )
    timestamp: datetime = Field(
        ...,
        description="UTC timestamp of the reading",
    )
    readings: Dict[str, float] = Field(
        default_factory=dict,
        description="Sensor name to numeric value",
    )

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store all timestamps in UTC."""
        return as_utc(v)

    @field_validator("readings")
    @classmethod
    def validate_readings(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Validate every reading is a finite number."""
        for sensor, value in v.items():
            if not math.isfinite(value):
                raise ValueError(f"Reading for sensor '{sensor}' is not finite: {value}")
        return v


class TelemetryWindow(BaseModel):
    """
    Time-ordered telemetry of a single equipment unit over [start, end].

    An empty window is valid; predictors decide whether it is enough.
    """

    equipment_id: str = Field(..., min_length=1)
    start: datetime
    end: datetime
    records: List[TelemetryRecord] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def normalize_bounds(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def validate_window(self) -> "TelemetryWindow":
        """Validate ordering, ownership and range of the records."""
        if self.end < self.start:
            raise ValueError("Window end must not precede its start")

        for record in self.records:
            if record.equipment_id != self.equipment_id:
                raise ValueError(
                    f"Record for {record.equipment_id} in window of {self.equipment_id}"
                )
            if not self.start <= record.timestamp <= self.end:
                raise ValueError(
                    f"Record at {record.timestamp.isoformat()} outside window "
                    f"[{self.start.isoformat()}, {self.end.isoformat()}]"
                )

        # sorted() is stable, so readings sharing a timestamp keep fetch order
        self.records = sorted(self.records, key=lambda r: r.timestamp)
        return self

    def __len__(self) -> int:
        return len(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def sensors(self) -> List[str]:
        """Sensor names present anywhere in the window."""
        names = set()
        for record in self.records:
            names.update(record.readings)
        return sorted(names)

    def count_readings(self, sensor: str) -> int:
        """Number of records carrying a reading for `sensor`."""
        return sum(1 for record in self.records if sensor in record.readings)

    def slice(self, start: datetime, end: datetime) -> "TelemetryWindow":
        """
        Narrow the window to [start, end].

        Args:
            start: New start; clamped to the current start.
            end: New end; clamped to the current end.

        Returns:
            TelemetryWindow: A new window over the intersection.
        """
        start = max(as_utc(start), self.start)
        end = min(as_utc(end), self.end)
        if end < start:
            end = start
        return TelemetryWindow(
            equipment_id=self.equipment_id,
            start=start,
            end=end,
            records=[r for r in self.records if start <= r.timestamp <= end],
        )

    def to_dataframe(self) -> pd.DataFrame:
        """
        Convert the window to a wide pandas DataFrame.

        Returns:
            pd.DataFrame: One row per record indexed by timestamp, one
            column per sensor. Missing readings are NaN.
        """
        if not self.records:
            return pd.DataFrame(index=pd.DatetimeIndex([], tz="UTC", name="timestamp"))

        frame = pd.DataFrame(
            [record.readings for record in self.records],
            index=pd.DatetimeIndex([record.timestamp for record in self.records], name="timestamp"),
        )
        return frame.sort_index(kind="stable").astype(float)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        equipment_id: str,
        start: datetime,
        end: datetime,
    ) -> "TelemetryWindow":
        """
        Create a TelemetryWindow from a long-format DataFrame.

        Args:
            df: DataFrame with columns timestamp, sensor_type, value
                (one row per reading, as exported by the telemetry store).
            equipment_id: Equipment the readings belong to.
            start: Window start.
            end: Window end.

        Returns:
            TelemetryWindow: Validated window.

        Raises:
            ValidationError: If any record fails validation.
        """
        records = []
        grouped = df.assign(timestamp=pd.to_datetime(df["timestamp"], utc=True)).groupby("timestamp", sort=True)
        for ts, rows in grouped:
            records.append(TelemetryRecord(
                equipment_id=equipment_id,
                timestamp=ts.to_pydatetime(),
                readings={row.sensor_type: float(row.value) for row in rows.itertuples()},
            ))
        return cls(equipment_id=equipment_id, start=start, end=end, records=records)
