"""
Live position projection onto a calibrated map photo.

A location source delivers fixes (lat, lon, accuracy radius). Each fix is
projected to a pixel through the calibration's inverse path, and its
reported accuracy is combined with the calibration's local error:

    sigma_total = sqrt(accuracy² + sigma_map²)

The marker radius on screen is sigma_total converted to pixels with the
calibration's scale.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from snap2map.calibration_model import CalibrationModel
from snap2map.correspondence import GeodeticPoint
from snap2map.exceptions import CalibrationError, ModelNotFittedError
from snap2map.pixel_point import PixelPoint
from snap2map.types import Degrees, Meters, PixelsFloat

logger = logging.getLogger(__name__)

# Display tiers for the accuracy badge (meters)
GREEN_MAX_ACCURACY = 15.0
YELLOW_MAX_ACCURACY = 30.0
LOW_ACCURACY_THRESHOLD = YELLOW_MAX_ACCURACY


def accuracy_tier(sigma_total: float) -> str:
    """Return "green" (<= 15 m), "yellow" (<= 30 m) or "orange"."""
    if sigma_total <= GREEN_MAX_ACCURACY:
        return "green"
    if sigma_total <= YELLOW_MAX_ACCURACY:
        return "yellow"
    return "orange"


@dataclass(frozen=True)
class PositionFix:
    """One fix from a location source.

    Attributes:
        lat: Latitude in decimal degrees
        lon: Longitude in decimal degrees
        accuracy: Reported horizontal accuracy radius in meters
        timestamp: Source timestamp in seconds, if known
    """
    lat: Degrees
    lon: Degrees
    accuracy: Meters = Meters(0.0)
    timestamp: Optional[float] = None

    def __post_init__(self):
        if not (math.isfinite(self.accuracy) and self.accuracy >= 0):
            raise ValueError(f"accuracy must be a finite non-negative number, got {self.accuracy}")

    @property
    def geodetic(self) -> GeodeticPoint:
        return GeodeticPoint(self.lat, self.lon)


@dataclass(frozen=True)
class ProjectedPosition:
    """A fix placed on the map photo.

    Attributes:
        fix: The source fix
        pixel: Pixel position on the photo
        sigma_map_m: Calibration local RMSE at the pixel (meters)
        sigma_total_m: Combined uncertainty (meters)
        radius_px: sigma_total_m in pixels
        tier: Accuracy display tier
        low_accuracy: True when sigma_total_m exceeds 30 m
    """
    fix: PositionFix
    pixel: PixelPoint
    sigma_map_m: Meters
    sigma_total_m: Meters
    radius_px: PixelsFloat
    tier: str
    low_accuracy: bool


class PositionProjector:
    """Projects fixes through a calibration; the calibration can be swapped."""

    def __init__(self, calibration: Optional[CalibrationModel] = None):
        self.calibration = calibration

    def set_calibration(self, calibration: Optional[CalibrationModel]) -> None:
        self.calibration = calibration

    def to_pixel(self, fix: PositionFix) -> ProjectedPosition:
        """
        Project one fix.

        Raises:
            ModelNotFittedError: If no fitted calibration is set
        """
        if self.calibration is None:
            raise ModelNotFittedError("No calibration set on the projector")

        pixel = self.calibration.project_inverse(fix.geodetic)
        estimate = self.calibration.estimate_accuracy(pixel, fix.accuracy)
        sigma_total = estimate.sigma_total
        low_accuracy = sigma_total > LOW_ACCURACY_THRESHOLD
        if low_accuracy:
            logger.warning(
                f"Low accuracy fix: sigma_total={sigma_total:.1f} m "
                f"(gps {fix.accuracy:.1f} m, map {estimate.sigma_map:.1f} m)"
            )

        return ProjectedPosition(
            fix=fix,
            pixel=pixel,
            sigma_map_m=estimate.sigma_map,
            sigma_total_m=sigma_total,
            radius_px=PixelsFloat(sigma_total * self.calibration.get_scale()),
            tier=accuracy_tier(sigma_total),
            low_accuracy=low_accuracy,
        )


PositionCallback = Callable[[ProjectedPosition], None]
ErrorCallback = Callable[[Exception], None]


class PositionWatch:
    """
    Subscription that projects fixes pushed by a location source.

    The location source calls ``push`` for each fix while the watch is
    running. Projection failures are handed to ``on_error`` (or logged when
    there is none); they never propagate back into the source.

    Usage:
        >>> watch = PositionWatch(PositionProjector(calibration))
        >>> watch.start(lambda pos: draw_marker(pos.pixel, pos.radius_px))
        True
        >>> watch.push(PositionFix(39.6405, -0.2302, accuracy=8.0))
        >>> watch.stop()
    """

    def __init__(self, projector: PositionProjector):
        self.projector = projector
        self._on_position: Optional[PositionCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    @property
    def is_watching(self) -> bool:
        return self._on_position is not None

    def start(
        self, on_position: PositionCallback, on_error: Optional[ErrorCallback] = None
    ) -> bool:
        """Begin watching. Returns False if a watch is already running."""
        if self.is_watching:
            logger.warning("Position watching is already active")
            return False
        self._on_position = on_position
        self._on_error = on_error
        logger.info("Started watching position")
        return True

    def stop(self) -> None:
        if self.is_watching:
            logger.info("Stopped watching position")
        self._on_position = None
        self._on_error = None

    def push(self, fix: PositionFix) -> Optional[ProjectedPosition]:
        """
        Project one fix and dispatch it.

        Returns:
            The projected position, or None when not watching or when the
            projection failed
        """
        if not self.is_watching:
            logger.debug("Fix ignored: not watching")
            return None
        try:
            projected = self.projector.to_pixel(fix)
        except (CalibrationError, ValueError) as e:
            if self._on_error is not None:
                self._on_error(e)
            else:
                logger.error(f"Could not project fix ({fix.lat:.6f}, {fix.lon:.6f}): {e}")
            return None
        self._on_position(projected)
        return projected

    @staticmethod
    def first_accurate(
        fixes: Iterable[PositionFix],
        accuracy_target: float = 10.0,
        timeout_fixes: Optional[int] = None,
    ) -> Optional[PositionFix]:
        """
        Pick a single fix from a stream.

        Returns the first fix whose accuracy is at or below
        ``accuracy_target``. If none arrives within ``timeout_fixes`` fixes
        (or before the stream ends), the most accurate fix seen is returned
        with a warning; None if the stream was empty.
        """
        best: Optional[PositionFix] = None
        for count, fix in enumerate(fixes, start=1):
            if fix.accuracy <= accuracy_target:
                logger.info(f"Got position with sufficient accuracy: {fix.accuracy:.1f} m")
                return fix
            if best is None or fix.accuracy < best.accuracy:
                best = fix
            if timeout_fixes is not None and count >= timeout_fixes:
                break
        if best is not None:
            logger.warning(
                f"Best accuracy {best.accuracy:.1f} m is worse than target {accuracy_target:.1f} m"
            )
        return best
