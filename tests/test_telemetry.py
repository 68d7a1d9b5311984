"""
Unit tests for telemetry models and windowing.
"""

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest
from pydantic import ValidationError

from fleetpredict.core.windowing import fetch_window, required_lookback, slice_for, window_range
from fleetpredict.exceptions import StorageError
from fleetpredict.models.artifact import AlgorithmFamily, FeatureSchema
from fleetpredict.models.telemetry import TelemetryRecord, TelemetryWindow
from fleetpredict.storage import InMemoryStorage

from tests.conftest import NOW, ORG_ID, make_artifact, make_records, make_window


class TestTelemetryRecord:
    """Tests for record validation."""

    def test_naive_timestamp_taken_as_utc(self) -> None:
        """Test that naive timestamps are normalized to UTC."""
        record = TelemetryRecord(equipment_id="eq-1", timestamp=datetime(2026, 1, 1), readings={"t": 1.0})

        assert record.timestamp.tzinfo == timezone.utc

    def test_non_finite_reading_rejected(self) -> None:
        """Test that NaN readings never reach a model."""
        with pytest.raises(ValidationError):
            TelemetryRecord(equipment_id="eq-1", timestamp=NOW, readings={"t": float("nan")})


class TestTelemetryWindow:
    """Tests for window construction and conversion."""

    def test_records_sorted_on_construction(self) -> None:
        """Test that out-of-order records are time-ordered."""
        records = make_records("eq-1", NOW, days=1)
        window = make_window(list(reversed(records)), start=records[0].timestamp, end=NOW)

        timestamps = [r.timestamp for r in window.records]
        assert timestamps == sorted(timestamps)

    def test_foreign_equipment_rejected(self) -> None:
        """Test that a window belongs to exactly one unit."""
        records = make_records("eq-2", NOW, days=1)

        with pytest.raises(ValidationError):
            make_window(records, equipment_id="eq-1")

    def test_record_outside_range_rejected(self) -> None:
        """Test that records must lie within [start, end]."""
        records = make_records("eq-1", NOW, days=1)

        with pytest.raises(ValidationError):
            make_window(records, start=NOW - timedelta(hours=2), end=NOW)

    def test_empty_window_is_valid(self) -> None:
        """Test that an empty window converts to an empty frame."""
        window = make_window([])

        assert window.is_empty
        assert window.to_dataframe().empty

    def test_slice_clamps_to_window(self) -> None:
        """Test that slicing keeps only records in the intersection."""
        window = make_window(make_records("eq-1", NOW, days=2))

        sliced = window.slice(NOW - timedelta(hours=5), NOW + timedelta(days=1))

        assert sliced.end == window.end
        assert len(sliced) == 6

    def test_to_dataframe_is_wide(self) -> None:
        """Test that the frame has one column per sensor."""
        window = make_window(make_records("eq-1", NOW, days=1))

        frame = window.to_dataframe()

        assert list(frame.columns) == ["temperature", "vibration"]
        assert len(frame) == 24
        assert str(frame.index.tz) == "UTC"

    def test_from_long_dataframe(self) -> None:
        """Test that long-format exports are grouped into records."""
        df = pd.DataFrame({
            "timestamp": [NOW, NOW, NOW - timedelta(hours=1)],
            "sensor_type": ["temperature", "vibration", "temperature"],
            "value": [51.0, 60.5, 50.0],
        })

        window = TelemetryWindow.from_dataframe(df, "eq-1", NOW - timedelta(days=1), NOW)

        assert len(window) == 2
        assert window.records[-1].readings == {"temperature": 51.0, "vibration": 60.5}


class TestWindowing:
    """Tests for lookback sizing and fetching."""

    def test_random_forest_uses_configured_days(self) -> None:
        """Test that the forest lookback is RF_WINDOW_DAYS."""
        artifact = make_artifact("rf-v1")

        assert required_lookback(artifact) == timedelta(days=30)

    def test_lstm_lookback_covers_long_sequences(self) -> None:
        """Test that a sequence longer than the configured window extends the lookback."""
        schema = FeatureSchema(sensors=("t",), sequence_length=24 * 45, sample_interval_minutes=60)
        artifact = make_artifact("lstm-v1", AlgorithmFamily.LSTM, feature_schema=schema)

        assert required_lookback(artifact) == timedelta(hours=24 * 45 + 1)

    def test_union_range_is_the_longest_lookback(self) -> None:
        """Test that one fetch covers every predictor."""
        schema = FeatureSchema(sensors=("t",), sequence_length=24 * 45)
        artifacts = [
            make_artifact("rf-v1"),
            make_artifact("lstm-v1", AlgorithmFamily.LSTM, feature_schema=schema),
        ]

        start, end = window_range(artifacts, now=NOW)

        assert end == NOW
        assert end - start == timedelta(hours=24 * 45 + 1)

    def test_slice_for_narrows_to_artifact_lookback(self) -> None:
        """Test that each predictor sees only its own lookback."""
        window = make_window(make_records("eq-1", NOW, days=60), end=NOW)

        sliced = slice_for(window, make_artifact("rf-v1"))

        assert sliced.start == NOW - timedelta(days=30)
        assert all(r.timestamp >= sliced.start for r in sliced.records)

    def test_fetch_window_filters_range(self) -> None:
        """Test that the fetched window holds only records in the requested range."""
        storage = InMemoryStorage()
        storage.add_telemetry(ORG_ID, make_records("eq-1", NOW, days=10))

        window = fetch_window(storage, "eq-1", ORG_ID, NOW - timedelta(days=1), NOW)

        assert len(window) == 25
        assert window.equipment_id == "eq-1"

    def test_fetch_window_wraps_storage_errors(self) -> None:
        """Test that collaborator failures surface as StorageError."""
        class BrokenStorage(InMemoryStorage):
            def get_telemetry_by_equipment_and_date_range(self, *args, **kwargs):
                raise TimeoutError("socket timeout")

        with pytest.raises(StorageError):
            fetch_window(BrokenStorage(), "eq-1", ORG_ID, NOW - timedelta(days=1), NOW)
