"""Pixel coordinate representation."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PixelPoint:
    """Pixel coordinates in a map photo.

    Attributes:
        x: Pixel x coordinate (column, increasing right).
        y: Pixel y coordinate (row, increasing down).
    """

    x: float
    y: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)
