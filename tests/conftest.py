"""Shared fixtures: a synthetic map photo with known pixel -> local geometry."""

import pytest

from snap2map.calibration_model import CalibrationModel
from snap2map.coordinate_converter import from_local
from snap2map.correspondence import CorrespondencePair, GeodeticPoint, LocalPoint
from snap2map.pixel_point import PixelPoint

ORIGIN = GeodeticPoint(39.64, -0.23)

# Pixel -> local truth: 0.5 m per pixel, y-down photo, north-up plane.
# X = 0.5·px - 100, Y = -0.5·py + 80, so pixel (200, 160) sits on the origin.
PIXELS = [(200.0, 160.0), (600.0, 160.0), (200.0, 500.0), (600.0, 500.0), (400.0, 330.0)]
PIXELS_PER_METER = 2.0


def true_local(px: float, py: float) -> tuple:
    return (0.5 * px - 100.0, -0.5 * py + 80.0)


def make_pair(px: float, py: float, local=None) -> CorrespondencePair:
    x, y = local if local is not None else true_local(px, py)
    return CorrespondencePair(
        pixel=PixelPoint(px, py),
        geodetic=from_local(LocalPoint(x, y), ORIGIN),
    )


def make_synthetic_pairs():
    return [make_pair(px, py) for px, py in PIXELS]


@pytest.fixture
def synthetic_pairs():
    return make_synthetic_pairs()


@pytest.fixture(scope="module")
def fitted_calibration():
    return CalibrationModel().set_pairs(make_synthetic_pairs()).fit(rng=lambda: 0.0)
