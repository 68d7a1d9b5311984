"""
Configuration management using Pydantic BaseSettings.

All tunable constants of the prediction engine are externalized here.
Values can be overridden via environment variables
(e.g., FLEETPREDICT_DEGRADATION_FACTOR=0.7).

Usage:
    from fleetpredict.config import settings

    confidence = raw_confidence * settings.DEGRADATION_FACTOR
"""

from typing import Dict
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Main application configuration.

    All values can be overridden via environment variables prefixed with
    'FLEETPREDICT_'. Example: FLEETPREDICT_RF_WINDOW_DAYS=14
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETPREDICT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telemetry Windows
    RF_WINDOW_DAYS: int = Field(
        default=30,
        description="Days of telemetry aggregated into the random-forest feature vector",
        ge=1,
        le=365,
    )
    LSTM_WINDOW_DAYS: int = Field(
        default=30,
        description="Minimum days of telemetry fetched for the LSTM sequence",
        ge=1,
        le=365,
    )

    # Hybrid Combination
    RF_WEIGHT: float = Field(
        default=0.4,
        description="Base weight of the random-forest health score in the hybrid combination",
        gt=0.0,
        le=1.0,
    )
    LSTM_WEIGHT: float = Field(
        default=0.6,
        description="Base weight of the LSTM failure forecast in the hybrid combination",
        gt=0.0,
        le=1.0,
    )
    DEGRADATION_FACTOR: float = Field(
        default=0.8,
        description="Confidence multiplier applied when only one model is available",
        gt=0.0,
        lt=1.0,
    )
    MAX_COMBINED_CONFIDENCE: float = Field(
        default=0.99,
        description="Upper cap on the combined confidence of a hybrid prediction",
        gt=0.0,
        lt=1.0,
    )

    # Predictor Settings
    RF_DEFAULT_CONFIDENCE: float = Field(
        default=0.5,
        description="Confidence used when the forest exposes neither votes nor probabilities",
        ge=0.0,
        le=1.0,
    )
    LSTM_HORIZON_DECAY: float = Field(
        default=0.1,
        description="Confidence decay per 30 days of forecast horizon",
        ge=0.0,
        le=10.0,
    )
    CLASS_RISK_WEIGHTS: Dict[str, float] = Field(
        default={
            "healthy": 0.1,
            "warning": 0.6,
            "critical": 1.0,
            "failure": 1.0,
        },
        description="Failure risk contributed by each health class of a classifier",
    )

    # Model Selection
    MODEL_ROOT: str = Field(
        default="models",
        description="Base directory for relative artifact storage locations",
    )
    INCLUDE_FLEET_WIDE_MODELS: bool = Field(
        default=False,
        description="Consider artifacts trained without an equipment type as fallbacks",
    )

    # Concurrency and Timeouts
    MAX_WORKERS: int = Field(
        default=4,
        description="Worker threads for telemetry fetches and inference",
        ge=1,
        le=64,
    )
    TELEMETRY_FETCH_TIMEOUT_S: float = Field(
        default=30.0,
        description="Seconds to wait for the telemetry fetch before giving up",
        gt=0.0,
    )
    INFERENCE_TIMEOUT_S: float = Field(
        default=10.0,
        description="Seconds a predictor may run, counted from when a worker picks it up",
        gt=0.0,
    )
    QUEUE_TIMEOUT_S: float = Field(
        default=60.0,
        description="Seconds a predictor may wait for a free worker before treating it as unavailable",
        gt=0.0,
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG|INFO|WARNING|ERROR|CRITICAL",
    )
    LOG_FORMAT: str = Field(
        default="json",
        description="Log format: json|text",
    )

    # Application Settings
    APP_NAME: str = Field(
        default="Fleet Predict",
        description="Application name for logging",
    )
    APP_VERSION: str = Field(
        default="1.0.0",
        description="Application version",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return upper_v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is supported."""
        valid_formats = {"json", "text"}
        lower_v = v.lower()
        if lower_v not in valid_formats:
            raise ValueError(f"LOG_FORMAT must be one of {valid_formats}")
        return lower_v

    @field_validator("CLASS_RISK_WEIGHTS")
    @classmethod
    def validate_class_risk_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Risk weights are probabilities of failure and must lie in [0, 1]."""
        for label, weight in v.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"Risk weight for '{label}' must be in [0, 1], got {weight}")
        return {label.lower(): weight for label, weight in v.items()}


# Singleton instance - import this in other modules
settings = AppConfig()


def get_settings() -> AppConfig:
    """
    Get the application settings instance.

    This function is useful for dependency injection patterns.

    Returns:
        AppConfig: The application configuration instance.
    """
    return settings
