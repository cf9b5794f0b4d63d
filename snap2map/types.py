"""
Unit type annotations for type-safe numeric parameters.

This module defines NewType aliases for the physical units used across the
snap2map codebase. They are zero-overhead type hints that help catch unit
mismatches at static analysis time while remaining transparent at runtime.

Usage Example:
    >>> from snap2map.types import Degrees, Meters, PixelsFloat
    >>>
    >>> def radius_px(sigma: Meters, pixels_per_meter: float) -> PixelsFloat:
    ...     return PixelsFloat(sigma * pixels_per_meter)
"""

from typing import NewType

# Angular units
Degrees = NewType('Degrees', float)
"""Angle in degrees (latitude, longitude)"""

# Distance/position units
Meters = NewType('Meters', float)
"""Distance or position in meters (ENU x/y, GPS accuracy radius, residuals)"""

# Image coordinate units
PixelsFloat = NewType('PixelsFloat', float)
"""Floating-point image coordinates in pixels (y-down)"""

# Dimensionless quantities
Unitless = NewType('Unitless', float)
"""Dimensionless scalar (pixels-per-meter scale, Huber weight, regularization lambda)"""
