import json
import os
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger(__name__)

CONFIG_ENV_VAR = "LINETRACK_CONFIG"


class MatchingConfig(BaseModel):
    """
    Empirical thresholds of the matching cascade.
    Documents made of many short, similar lines (dialogue scripts) are the most sensitive to these.
    """

    nearby_window: int = Field(3, ge=0, description="Lines before/after the target searched first.")
    nearby_threshold: float = Field(0.7, ge=0, le=1, description="Minimum similarity for a nearby match.")
    global_threshold: float = Field(0.6, ge=0, le=1, description="Minimum similarity anywhere in the document.")
    early_exit_threshold: float = Field(0.9, ge=0, le=1, description="Similarity that stops the search.")
    position_tolerance: int = Field(3, ge=0, description="Max offset for the positional fallback.")
    position_threshold: float = Field(0.3, ge=0, le=1, description="Similarity a positional match must exceed.")


class TrackerConfig(BaseModel):
    max_init_attempts: int = Field(5, ge=1, description="Readiness checks before initializing best effort.")
    init_retry_delay: float = Field(0.2, ge=0, description="Base delay in seconds, multiplied by the attempt number.")


class LineTrackConfig(BaseModel):
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)


def load_config(path: Optional[Union[str, Path]] = None) -> LineTrackConfig:
    """
    Loads settings from a JSON file. Without a path, falls back to $LINETRACK_CONFIG,
    then to the defaults.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return LineTrackConfig()

    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = LineTrackConfig.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        raise ValueError(f"Invalid configuration file {config_path}: {e}") from e

    logger.info(f"Loaded configuration from {config_path}")
    return config
