"""Operator settings passed explicitly to the reconciliation engine."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from network_operator.exceptions import ConfigurationError
from network_operator.logging_config import LEVEL_NAMES

DEFAULT_RESYNC_PERIOD = 180.0


class OperatorSettings(BaseModel):
    """Operator settings."""

    resync_period: float = DEFAULT_RESYNC_PERIOD
    manifest_root: str = "./bindata"
    field_manager: str = "operconfig"
    cycle_timeout: float = 120.0
    probe_timeout: float = 120.0
    feature_gates: dict[str, bool] = Field(default_factory=dict)
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("resync_period", "cycle_timeout", "probe_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError(f"duration must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level names a logging level."""
        if v.upper() not in LEVEL_NAMES:
            raise ValueError(f"log_level must be one of {LEVEL_NAMES}, got '{v}'")
        return v.upper()

    @field_validator("field_manager")
    @classmethod
    def validate_field_manager(cls, v: str) -> str:
        """Validate field_manager is not empty."""
        if not v:
            raise ValueError("field_manager cannot be empty")
        return v

    def save(self, path: str | Path) -> None:
        """Save settings to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "OperatorSettings":
        """Load settings from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Settings file not found: {path}") from e
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid settings file {path}: {e}",
                "See OperatorSettings for the accepted keys",
            ) from e
