"""
Configuration for robust calibration fits.

Loaded from a YAML file with a top-level ``calibration`` section:

    calibration:
      inlier_threshold: 40.0
      max_samples: 150
      huber_delta: 35.0
      irls_passes: 1
      model_type: homography   # omit to choose by pair count
      tps_lambda: 1.0          # omit to leave TPS disabled
      seed: 42                 # omit for nondeterministic sampling
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from snap2map.robust import (
    DEFAULT_HUBER_DELTA,
    DEFAULT_INLIER_THRESHOLD,
    DEFAULT_IRLS_PASSES,
    DEFAULT_MAX_SAMPLES,
)
from snap2map.transforms import ModelType

logger = logging.getLogger(__name__)

CONFIG_SECTION = "calibration"

# Refinement slider range; the midpoint maps to lambda = 1
SLIDER_MIN = 0
SLIDER_MAX = 100


def lambda_from_slider(position: float) -> float:
    """
    Map a 0..100 smoothing slider position to a TPS lambda.

    lambda = 10 ** ((position - 50) / 10), so 0 -> 1e-5, 50 -> 1, 100 -> 1e5.

    Raises:
        ValueError: If position is outside [0, 100]
    """
    if not SLIDER_MIN <= position <= SLIDER_MAX:
        raise ValueError(
            f"Slider position {position} outside valid range [{SLIDER_MIN}, {SLIDER_MAX}]"
        )
    return 10.0 ** ((position - 50.0) / 10.0)


@dataclass
class CalibrationConfig:
    """Scalars controlling a robust fit and the optional TPS refinement.

    Attributes:
        inlier_threshold: RANSAC consensus threshold, in local meters
        max_samples: RANSAC sample budget
        huber_delta: Huber transition point for IRLS, in local meters
        irls_passes: Number of Huber reweighting passes
        model_type: Requested model class, or None to choose by pair count
        tps_lambda: TPS regularization, or None to skip refinement
        seed: Seed for RANSAC sampling, or None for a fresh generator
    """
    inlier_threshold: float = DEFAULT_INLIER_THRESHOLD
    max_samples: int = DEFAULT_MAX_SAMPLES
    huber_delta: float = DEFAULT_HUBER_DELTA
    irls_passes: int = DEFAULT_IRLS_PASSES
    model_type: Optional[ModelType] = None
    tps_lambda: Optional[float] = None
    seed: Optional[int] = None

    def __post_init__(self):
        if self.model_type is not None:
            self.model_type = ModelType.parse(self.model_type)
        self.validate()

    def validate(self) -> None:
        """Check every field.

        Raises:
            ValueError: Naming the first invalid field
        """
        if not self.inlier_threshold > 0:
            raise ValueError(f"inlier_threshold must be positive, got {self.inlier_threshold}")
        if int(self.max_samples) != self.max_samples or self.max_samples < 1:
            raise ValueError(f"max_samples must be a positive integer, got {self.max_samples}")
        if not self.huber_delta > 0:
            raise ValueError(f"huber_delta must be positive, got {self.huber_delta}")
        if int(self.irls_passes) != self.irls_passes or self.irls_passes < 0:
            raise ValueError(f"irls_passes must be a non-negative integer, got {self.irls_passes}")
        if self.tps_lambda is not None and self.tps_lambda < 0:
            raise ValueError(f"tps_lambda must be >= 0, got {self.tps_lambda}")

    @classmethod
    def from_yaml(cls, path: str) -> 'CalibrationConfig':
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is empty, malformed, missing the
                ``calibration`` section, or holds invalid values
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}\n"
                f"Please create a configuration file or use get_default_config()"
            )

        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse YAML configuration file: {e}") from e

        if not data:
            raise ValueError(
                f"Configuration file is empty: {path}\n"
                f"Expected a '{CONFIG_SECTION}' section"
            )
        if CONFIG_SECTION not in data:
            raise ValueError(
                f"Configuration file missing '{CONFIG_SECTION}' section: {path}\n"
                f"Expected structure: {CONFIG_SECTION}:\n  inlier_threshold: ...\n  ..."
            )

        config = cls.from_dict(data[CONFIG_SECTION] or {})
        logger.info(f"Loaded calibration configuration from {path}")
        return config

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'CalibrationConfig':
        """Create configuration from a dictionary; missing keys take defaults.

        Raises:
            ValueError: If ``config`` is not a dict, has unknown keys, or
                holds invalid values
        """
        if not isinstance(config, dict):
            raise ValueError(f"Configuration must be a dictionary, got {type(config)}")

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(config) - known)
        if unknown:
            raise ValueError(
                f"Unknown calibration configuration keys: {', '.join(unknown)}. "
                f"Valid keys: {', '.join(sorted(known))}"
            )

        kwargs: Dict[str, Any] = {}
        for key in ("inlier_threshold", "huber_delta", "tps_lambda"):
            if config.get(key) is not None:
                kwargs[key] = _as_number(key, config[key], float)
        for key in ("max_samples", "irls_passes", "seed"):
            if config.get(key) is not None:
                kwargs[key] = _as_number(key, config[key], int)
        if config.get("model_type") is not None:
            kwargs["model_type"] = ModelType.parse(config["model_type"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["model_type"] = self.model_type.value if self.model_type else None
        return data

    def save_to_yaml(self, path: str) -> None:
        """Write the configuration under a ``calibration`` section."""
        with open(path, 'w') as f:
            yaml.safe_dump({CONFIG_SECTION: self.to_dict()}, f, sort_keys=False)
        logger.info(f"Saved calibration configuration to {path}")


def _as_number(key: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {type(value).__name__}")
    if kind is int and int(value) != value:
        raise ValueError(f"'{key}' must be an integer, got {value}")
    return kind(value)


def get_default_config() -> CalibrationConfig:
    """Return the default calibration configuration."""
    return CalibrationConfig()
