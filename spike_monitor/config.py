"""
Configuration module for spike monitors.

Provides Pydantic models for YAML configuration parsing and validation.
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from spike_monitor.errors import ErrorMode


class PlaybackConfig(BaseModel):
    """Configuration for frame playback."""

    fps: float = Field(default=5.0, gt=0.0)
    step_frames: bool = False
    show_frame_number: bool = True
    # None plays the full stimulus
    frames: list[int] | None = None

    @field_validator("frames")
    @classmethod
    def validate_frames(cls, v):
        if v is not None:
            for frame in v:
                if frame < 1:
                    raise ValueError(f"Frame numbers start at 1, got {frame}")
        return v


class MonitorConfig(BaseModel):
    """Root configuration for a group monitor."""

    name: str = Field(min_length=1)
    results_folder: str = ""
    error_mode: ErrorMode = ErrorMode.STANDARD

    spike_file_prefix: str = "spk"
    spike_file_suffix: str = ".dat"

    plot_type: Literal["default", "heatmap", "raster"] = "default"
    bin_size_ms: float = Field(default=1000.0, gt=0.0)
    grid: tuple[int, int, int] | None = None

    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)

    @field_validator("grid")
    @classmethod
    def validate_grid(cls, v):
        if v is not None and any(d < 1 for d in v):
            raise ValueError(f"Grid dimensions must be positive, got {v}")
        return v


def read_config_data(config_path: str | Path) -> dict:
    """Read the raw YAML mapping of a monitor configuration file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        ValueError: If the file is empty or not a mapping
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return _parse_yaml(config_path.read_text(), str(config_path))


def load_config(config_path: str | Path) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML file."""
    return MonitorConfig.model_validate(read_config_data(config_path))


def load_config_from_string(config_string: str) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML string."""
    return MonitorConfig.model_validate(
        _parse_yaml(config_string, "configuration string")
    )


def _parse_yaml(text: str, origin: str) -> dict:
    data = yaml.safe_load(text)
    if data is None:
        raise ValueError(f"Empty configuration in {origin}")
    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration in {origin} must be a mapping, got {type(data).__name__}"
        )
    return data
