#!/usr/bin/env python3
"""
Geodetic and local tangent-plane coordinate conversion.

This module converts WGS84 geodetic coordinates (latitude/longitude) to a
local East-North-Up (ENU) tangent plane anchored at an origin, and back:

    geodetic (lat, lon, h) -> ECEF (X, Y, Z) -> ENU (e, n, u)

Only the horizontal (east, north) components are exposed to the rest of the
calibration code; the map photo is treated as a plane.

Coordinate System Convention:
    - X axis: East-West direction (positive = East)
    - Y axis: North-South direction (positive = North)
    - Origin: (0, 0) exactly at the origin's geodetic position

WGS84 Ellipsoid:
    - Semi-major axis a = 6378137.0 m
    - Flattening f = 1/298.257223563

Accuracy Notes:
    - Forward projection is exact algebra (no approximation beyond float64)
    - The inverse uses a fixed 5-iteration geodetic latitude solve, which
      converges to ~1e-9 degrees for terrestrial heights
    - Round-trip agreement is far better than 1e-4 degrees for points within
      a few hundred kilometers of the origin
"""

import math
from typing import Optional, Tuple

from snap2map.correspondence import GeodeticPoint, LocalPoint
from snap2map.exceptions import OriginNotSetError
from snap2map.types import Degrees, Meters

# WGS84 ellipsoid parameters
WGS84_A = 6378137.0
WGS84_F = 1.0 / 298.257223563
WGS84_B = WGS84_A * (1.0 - WGS84_F)
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)

# Fixed iteration count for the ECEF -> geodetic latitude solve
GEODETIC_ITERATIONS = 5


def geodetic_to_ecef(lat: float, lon: float, alt: float = 0.0) -> Tuple[float, float, float]:
    """
    Convert geodetic coordinates to Earth-Centered Earth-Fixed coordinates.

    Args:
        lat: Latitude in decimal degrees
        lon: Longitude in decimal degrees
        alt: Ellipsoidal height in meters (default: 0)

    Returns:
        Tuple of (X, Y, Z) in meters
    """
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    sin_lat = math.sin(lat_rad)
    cos_lat = math.cos(lat_rad)

    # Prime vertical radius of curvature
    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)

    x = (n + alt) * cos_lat * math.cos(lon_rad)
    y = (n + alt) * cos_lat * math.sin(lon_rad)
    z = ((WGS84_B * WGS84_B) / (WGS84_A * WGS84_A) * n + alt) * sin_lat
    return x, y, z


def ecef_to_geodetic(x: float, y: float, z: float) -> Tuple[float, float, float]:
    """
    Convert ECEF coordinates to geodetic coordinates.

    Uses a fixed number of fixed-point iterations on the geodetic latitude.
    Not valid exactly at the poles (p == 0).

    Args:
        x, y, z: ECEF coordinates in meters

    Returns:
        Tuple of (latitude, longitude, altitude) in (degrees, degrees, meters)
    """
    p = math.hypot(x, y)
    lon = math.atan2(y, x)

    lat = math.atan2(z, p * (1.0 - WGS84_E2))
    alt = 0.0
    for _ in range(GEODETIC_ITERATIONS):
        sin_lat = math.sin(lat)
        n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
        alt = p / math.cos(lat) - n
        lat = math.atan2(z, p * (1.0 - WGS84_E2 * n / (n + alt)))

    return math.degrees(lat), math.degrees(lon), alt


def _enu_basis(lat: float, lon: float) -> Tuple[float, float, float, float]:
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    return math.sin(lat_rad), math.cos(lat_rad), math.sin(lon_rad), math.cos(lon_rad)


def ecef_to_enu(
    x: float, y: float, z: float, origin: GeodeticPoint
) -> Tuple[float, float, float]:
    """
    Rotate an ECEF position into the ENU frame of ``origin``.

    Returns:
        Tuple of (east, north, up) in meters
    """
    ox, oy, oz = geodetic_to_ecef(origin.lat, origin.lon, origin.alt)
    dx = x - ox
    dy = y - oy
    dz = z - oz

    sin_lat, cos_lat, sin_lon, cos_lon = _enu_basis(origin.lat, origin.lon)

    e = -sin_lon * dx + cos_lon * dy
    n = -sin_lat * cos_lon * dx - sin_lat * sin_lon * dy + cos_lat * dz
    u = cos_lat * cos_lon * dx + cos_lat * sin_lon * dy + sin_lat * dz
    return e, n, u


def enu_to_ecef(
    e: float, n: float, u: float, origin: GeodeticPoint
) -> Tuple[float, float, float]:
    """
    Inverse of ecef_to_enu (the ENU rotation is orthonormal, so its
    transpose is its inverse).

    Returns:
        Tuple of (X, Y, Z) in meters
    """
    ox, oy, oz = geodetic_to_ecef(origin.lat, origin.lon, origin.alt)
    sin_lat, cos_lat, sin_lon, cos_lon = _enu_basis(origin.lat, origin.lon)

    dx = -sin_lon * e - sin_lat * cos_lon * n + cos_lat * cos_lon * u
    dy = cos_lon * e - sin_lat * sin_lon * n + cos_lat * sin_lon * u
    dz = cos_lat * n + sin_lat * u
    return ox + dx, oy + dy, oz + dz


def to_local(point: GeodeticPoint, origin: GeodeticPoint) -> LocalPoint:
    """
    Project a geodetic point onto the tangent plane anchored at ``origin``.

    Args:
        point: Geodetic point to project
        origin: Tangent-plane origin

    Returns:
        LocalPoint with x = meters East, y = meters North. Exactly (0, 0)
        when ``point`` equals ``origin``.

    Example:
        >>> origin = GeodeticPoint(39.640472, -0.230194)
        >>> p = to_local(GeodeticPoint(39.640444, -0.230111), origin)
        >>> print(f"Point is {p.x:.2f}m East and {p.y:.2f}m North of origin")
    """
    x, y, z = geodetic_to_ecef(point.lat, point.lon, point.alt)
    e, n, _ = ecef_to_enu(x, y, z, origin)
    return LocalPoint(Meters(e), Meters(n))


def from_local(point: LocalPoint, origin: GeodeticPoint) -> GeodeticPoint:
    """
    Un-project a tangent-plane point back to geodetic coordinates.

    The point is assumed to lie on the plane (up = 0).

    Args:
        point: Local point in meters East/North of ``origin``
        origin: Tangent-plane origin

    Returns:
        GeodeticPoint (latitude, longitude; altitude discarded)
    """
    x, y, z = enu_to_ecef(point.x, point.y, 0.0, origin)
    lat, lon, _ = ecef_to_geodetic(x, y, z)
    return GeodeticPoint(Degrees(lat), Degrees(lon))


class ENUConverter:
    """
    Tangent-plane converter bound to a single origin.

    The origin is fixed once and is immutable afterwards: every derived local
    coordinate depends on it, so changing it would silently invalidate them.

    Usage:
        >>> converter = ENUConverter()
        >>> converter.set_origin(GeodeticPoint(39.640472, -0.230194))
        >>> local = converter.to_local(GeodeticPoint(39.640500, -0.230100))
        >>> geo = converter.from_local(LocalPoint(10.0, -5.0))
    """

    def __init__(self, origin: Optional[GeodeticPoint] = None):
        self._origin = origin

    @property
    def origin(self) -> Optional[GeodeticPoint]:
        return self._origin

    def set_origin(self, origin: GeodeticPoint) -> None:
        """
        Fix the tangent-plane origin.

        Raises:
            ValueError: If a different origin has already been set
        """
        if self._origin is not None and self._origin != origin:
            raise ValueError(
                f"Origin already set to ({self._origin.lat:.6f}, {self._origin.lon:.6f}); "
                f"create a new converter to use a different origin"
            )
        self._origin = origin

    def _require_origin(self) -> GeodeticPoint:
        if self._origin is None:
            raise OriginNotSetError("Origin not set. Call set_origin() first.")
        return self._origin

    def to_local(self, point: GeodeticPoint) -> LocalPoint:
        return to_local(point, self._require_origin())

    def from_local(self, point: LocalPoint) -> GeodeticPoint:
        return from_local(point, self._require_origin())
