"""
Unit tests for configuration and structured logging.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from fleetpredict.config import AppConfig, get_settings, settings
from fleetpredict.logging_config import EventLogger, JSONFormatter, LoggerAdapter, TextFormatter


class TestAppConfig:
    """Tests for AppConfig defaults and validation."""

    def test_defaults(self) -> None:
        """Test the documented default policy."""
        config = AppConfig()

        assert config.RF_WEIGHT == 0.4
        assert config.LSTM_WEIGHT == 0.6
        assert config.DEGRADATION_FACTOR == 0.8
        assert config.MAX_COMBINED_CONFIDENCE == 0.99
        assert config.CLASS_RISK_WEIGHTS["critical"] == 1.0
        assert config.INCLUDE_FLEET_WIDE_MODELS is False
        assert config.INFERENCE_TIMEOUT_S < config.QUEUE_TIMEOUT_S

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that prefixed environment variables override defaults."""
        monkeypatch.setenv("FLEETPREDICT_DEGRADATION_FACTOR", "0.7")
        monkeypatch.setenv("FLEETPREDICT_LOG_LEVEL", "debug")

        config = AppConfig()

        assert config.DEGRADATION_FACTOR == 0.7
        assert config.LOG_LEVEL == "DEBUG"

    @pytest.mark.parametrize("factor", [0.0, 1.0, 1.5])
    def test_degradation_factor_must_penalize(self, factor: float) -> None:
        """Test that a degraded result can never keep its full confidence."""
        with pytest.raises(ValidationError):
            AppConfig(DEGRADATION_FACTOR=factor)

    def test_confidence_cap_below_one(self) -> None:
        """Test that the combined confidence cap stays below certainty."""
        with pytest.raises(ValidationError):
            AppConfig(MAX_COMBINED_CONFIDENCE=1.0)

    def test_invalid_log_format(self) -> None:
        """Test that unknown log formats are rejected."""
        with pytest.raises(ValidationError):
            AppConfig(LOG_FORMAT="xml")

    def test_class_weights_normalized(self) -> None:
        """Test that class labels are lowercased and weights bounded."""
        config = AppConfig(CLASS_RISK_WEIGHTS={"Healthy": 0.0, "CRITICAL": 1.0})

        assert config.CLASS_RISK_WEIGHTS == {"healthy": 0.0, "critical": 1.0}
        with pytest.raises(ValidationError):
            AppConfig(CLASS_RISK_WEIGHTS={"critical": 2.0})

    def test_get_settings_returns_singleton(self) -> None:
        """Test that get_settings exposes the shared instance."""
        assert get_settings() is settings


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("fleetpredict.test", logging.INFO, __file__, 1, "Model loaded", None, None)
    record.__dict__.update(extra)
    return record


class TestLogging:
    """Tests for formatters and event helpers."""

    def test_json_formatter_carries_context(self) -> None:
        """Test that extra fields land under 'context'."""
        output = json.loads(JSONFormatter().format(make_record(model_version="rf-v1")))

        assert output["message"] == "Model loaded"
        assert output["context"] == {"model_version": "rf-v1"}
        assert output["app"]["name"] == settings.APP_NAME

    def test_text_formatter_appends_context(self) -> None:
        """Test that extra fields are appended as key=value."""
        output = TextFormatter().format(make_record(algorithm="lstm"))

        assert "Model loaded" in output
        assert "algorithm=lstm" in output

    def test_adapter_binds_context(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that adapter context reaches every record."""
        logger = LoggerAdapter(logging.getLogger("fleetpredict.test"), {"equipment_id": "eq-1"})

        with caplog.at_level(logging.INFO, logger="fleetpredict.test"):
            logger.info("Predicting", extra={"algorithm": "lstm"})

        record = caplog.records[-1]
        assert record.equipment_id == "eq-1"
        assert record.algorithm == "lstm"

    def test_degraded_event_is_a_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that degraded predictions are visible at WARNING."""
        events = EventLogger(logging.getLogger("fleetpredict.test.events"))

        with caplog.at_level(logging.INFO, logger="fleetpredict.test.events"):
            events.prediction_degraded("eq-1", available="random_forest", unavailable="lstm", combined_confidence=0.5)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.event == "prediction_degraded"
