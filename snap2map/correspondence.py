"""Correspondence pairs linking a map-photo pixel to a geodetic location."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from snap2map.pixel_point import PixelPoint
from snap2map.types import Degrees, Meters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeodeticPoint:
    """WGS84 geodetic position.

    Attributes:
        lat: Latitude in decimal degrees.
        lon: Longitude in decimal degrees.
        alt: Ellipsoidal height in meters (0 for points on the map plane).
    """

    lat: Degrees
    lon: Degrees
    alt: Meters = Meters(0.0)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeodeticPoint:
        return cls(
            lat=Degrees(float(data["lat"])),
            lon=Degrees(float(data["lon"])),
            alt=Meters(float(data.get("alt", 0.0))),
        )


@dataclass(frozen=True)
class LocalPoint:
    """Position on the local East-North tangent plane.

    Attributes:
        x: Meters east of the origin.
        y: Meters north of the origin.
    """

    x: Meters
    y: Meters

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


def _new_pair_id() -> str:
    return uuid.uuid4().hex


def _parse_active(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"'active' must be a boolean, got {value!r}")


@dataclass(frozen=True)
class CorrespondencePair:
    """One human-confirmed link between a pixel and a geodetic location.

    The geodetic position is the source of truth. Local tangent-plane
    coordinates are always derived from it and the calibration's current
    origin (see ``snap2map.coordinate_converter.to_local``); they are never
    stored on the pair.

    Attributes:
        pixel: Pixel location on the map photo (y-down).
        geodetic: WGS84 location of the same feature.
        pair_id: Stable identifier used by the storage collaborator.
        active: Inactive pairs are kept but excluded from fitting.
    """

    pixel: PixelPoint
    geodetic: GeodeticPoint
    pair_id: str = field(default_factory=_new_pair_id)
    active: bool = True

    def with_active(self, active: bool) -> CorrespondencePair:
        """Return a copy with the active flag changed."""
        return replace(self, active=active)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored pair record shape.

        Returns:
            Dictionary with pair_id, pixel, wgs84 and active keys.
        """
        return {
            "pair_id": self.pair_id,
            "pixel": {"x": self.pixel.x, "y": self.pixel.y},
            "wgs84": self.geodetic.to_dict(),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CorrespondencePair:
        """Create a pair from a stored record.

        Accepts either ``wgs84`` or ``geodetic`` for the geodetic side. Any
        ``enu``/``local`` entry in the record is ignored because it depends
        on an origin the record does not own.

        ``active`` must be a boolean or the string "true"/"false".

        Raises:
            KeyError: If the pixel or geodetic side is missing.
            ValueError: If coordinates are not numeric or ``active`` is not a boolean.
        """
        geo = data["wgs84"] if "wgs84" in data else data["geodetic"]
        pixel = data["pixel"]
        kwargs: dict[str, Any] = {
            "pixel": PixelPoint(float(pixel["x"]), float(pixel["y"])),
            "geodetic": GeodeticPoint.from_dict(geo),
            "active": _parse_active(data.get("active", True)),
        }
        pair_id = data.get("pair_id") or data.get("pairId")
        if pair_id:
            kwargs["pair_id"] = str(pair_id)
        return cls(**kwargs)


class PairDraft:
    """A pair under construction while the user clicks both sides.

    The pixel side and the geodetic side can be set in either order. Only a
    complete draft can be committed into a CorrespondencePair, so the
    calibration never sees a half-formed pair.

    Usage:
        >>> draft = PairDraft()
        >>> draft.set_pixel(PixelPoint(120.0, 85.5))
        >>> draft.set_geodetic(GeodeticPoint(39.6405, -0.2302))
        >>> pair = draft.commit()
    """

    def __init__(self):
        self.pixel: PixelPoint | None = None
        self.geodetic: GeodeticPoint | None = None

    def set_pixel(self, pixel: PixelPoint) -> None:
        self.pixel = pixel
        logger.debug(f"Draft pair pixel set: ({pixel.x:.1f}, {pixel.y:.1f})")

    def set_geodetic(self, geodetic: GeodeticPoint) -> None:
        self.geodetic = geodetic
        logger.debug(f"Draft pair geodetic set: ({geodetic.lat:.6f}, {geodetic.lon:.6f})")

    @property
    def is_complete(self) -> bool:
        return self.pixel is not None and self.geodetic is not None

    def commit(self) -> CorrespondencePair:
        """Turn the draft into a pair and reset it.

        Raises:
            ValueError: If either side has not been set.
        """
        if self.pixel is None or self.geodetic is None:
            missing = "pixel" if self.pixel is None else "geodetic"
            raise ValueError(f"Pair not complete: {missing} side is missing")
        pair = CorrespondencePair(pixel=self.pixel, geodetic=self.geodetic)
        self.reset()
        return pair

    def reset(self) -> None:
        self.pixel = None
        self.geodetic = None
