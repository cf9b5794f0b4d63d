"""
Error taxonomy for calibration and projection.

Every error derives from CalibrationError and from the builtin exception
that plain Python code would raise for the same situation, so callers that
already catch ValueError or RuntimeError keep working.

    CalibrationError
    ├── InsufficientPairsError (ValueError)
    ├── DegenerateConfigurationError (ValueError)
    ├── UnknownModelTypeError (ValueError)
    ├── RansacFailedError (RuntimeError)
    ├── ModelNotFittedError (RuntimeError)
    └── OriginNotSetError (RuntimeError)
"""


class CalibrationError(Exception):
    """Base class for all snap2map calibration errors."""


class InsufficientPairsError(CalibrationError, ValueError):
    """Fewer correspondences than the selected or requested model requires."""

    def __init__(self, required: int, available: int, model_type: str | None = None):
        self.required = required
        self.available = available
        self.model_type = model_type
        target = f"{model_type} model" if model_type else "calibration"
        super().__init__(
            f"Insufficient pairs: {target} needs at least {required}, got {available}"
        )


# Older name used by the calibration orchestrator.
InsufficientCorrespondencesError = InsufficientPairsError


class DegenerateConfigurationError(CalibrationError, ValueError):
    """Collinear or coincident points produced a singular system."""


class UnknownModelTypeError(CalibrationError, ValueError):
    """A model tag outside {similarity, affine, homography} was requested."""

    def __init__(self, model_type: object):
        self.model_type = model_type
        super().__init__(
            f"Unknown model type {model_type!r}. "
            f"Must be one of: similarity, affine, homography"
        )


class RansacFailedError(CalibrationError, RuntimeError):
    """Every RANSAC sample in the budget was degenerate."""


class ModelNotFittedError(CalibrationError, RuntimeError):
    """Projection attempted before a successful fit."""


class OriginNotSetError(CalibrationError, RuntimeError):
    """Projection attempted before the tangent-plane origin was fixed."""
