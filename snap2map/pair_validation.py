"""
Validation for correspondence pairs before they reach the fitter.

Out-of-range coordinates are rejected. Duplicates are only reported: two
clicks on the same feature are redundant but not wrong, and RANSAC copes
with them.
"""

import logging
import math
from typing import List, Sequence, Tuple

from snap2map.correspondence import CorrespondencePair

logger = logging.getLogger(__name__)

GPS_EPSILON = 1e-6  # degrees
PIXEL_EPSILON = 0.5  # pixels
MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0


def validate_pair(pair: CorrespondencePair, index: int = 0) -> None:
    """Validate one pair's geodetic range and pixel finiteness.

    Args:
        pair: Pair to check
        index: Position in the list (for error messages)

    Raises:
        ValueError: If a coordinate is out of range or not finite
    """
    lat = pair.geodetic.lat
    lon = pair.geodetic.lon
    if not math.isfinite(lat) or lat < MIN_LATITUDE or lat > MAX_LATITUDE:
        raise ValueError(
            f"Pair at index {index}: latitude {lat} outside valid range "
            f"[{MIN_LATITUDE}, {MAX_LATITUDE}]"
        )
    if not math.isfinite(lon) or lon < MIN_LONGITUDE or lon > MAX_LONGITUDE:
        raise ValueError(
            f"Pair at index {index}: longitude {lon} outside valid range "
            f"[{MIN_LONGITUDE}, {MAX_LONGITUDE}]"
        )
    if not (math.isfinite(pair.pixel.x) and math.isfinite(pair.pixel.y)):
        raise ValueError(
            f"Pair at index {index}: pixel ({pair.pixel.x}, {pair.pixel.y}) is not finite"
        )


def detect_duplicate_pairs(
    pairs: Sequence[CorrespondencePair],
    gps_epsilon: float = GPS_EPSILON,
    pixel_epsilon: float = PIXEL_EPSILON,
) -> List[Tuple[int, int]]:
    """Find pairs sharing a pixel position or a geodetic position.

    Returns:
        List of (i, j) index pairs, i < j, that duplicate each other on
        either side
    """
    duplicates = []
    for i in range(len(pairs)):
        for j in range(i + 1, len(pairs)):
            a, b = pairs[i], pairs[j]
            same_gps = (
                abs(a.geodetic.lat - b.geodetic.lat) < gps_epsilon and
                abs(a.geodetic.lon - b.geodetic.lon) < gps_epsilon
            )
            same_pixel = (
                abs(a.pixel.x - b.pixel.x) < pixel_epsilon and
                abs(a.pixel.y - b.pixel.y) < pixel_epsilon
            )
            if same_gps or same_pixel:
                duplicates.append((i, j))
    return duplicates


def validate_pairs(pairs: Sequence[CorrespondencePair]) -> List[CorrespondencePair]:
    """Validate every pair and warn about duplicates.

    Returns:
        The pairs, as a list

    Raises:
        ValueError: From the first invalid pair
    """
    pair_list = list(pairs)
    for i, pair in enumerate(pair_list):
        validate_pair(pair, i)

    for i, j in detect_duplicate_pairs(pair_list):
        logger.warning(
            f"Pairs {i} and {j} share a pixel or geodetic position "
            f"({pair_list[i].pair_id} / {pair_list[j].pair_id})"
        )

    logger.debug(f"Validated {len(pair_list)} correspondence pairs")
    return pair_list
