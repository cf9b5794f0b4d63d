"""
Calibration error metrics.

Global RMSE summarizes a fit with one number. Local RMSE weights every
correspondence's residual by its proximity to a query point, which turns the
residual set into a spatial confidence map: areas dense with well-fitting
correspondences show low expected error, areas far from any correspondence
show an error closer to the overall average.

    localRMSE(q) = sqrt( Σ wᵢ·rᵢ² / Σ wᵢ ),   wᵢ = 1 / (1 + |q - model(srcᵢ)|)

Distances are measured in the model's target space, so the query point must
be expressed in target units (local meters for a pixel -> local model).
"""

from typing import Any, Sequence

import numpy as np

from snap2map.transforms import TransformModel, as_points, apply_transform


def global_rmse(residuals: Sequence[float]) -> float:
    """
    Root mean square of residuals.

    Returns:
        sqrt(mean(r²)), or 0.0 for an empty sequence
    """
    r = np.asarray(residuals, dtype=np.float64)
    if r.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(r ** 2)))


class ErrorMetrics:
    """
    Residual-based error metrics for one projection of a correspondence set.

    Built from the projected source points and the observed targets, so any
    projection path (a bare model, or a model behind a warp) can be scored.
    Residuals are computed once at construction; queries only redo the
    distance weighting.

    Usage:
        >>> metrics = ErrorMetrics.for_model(model, pixels, local_xy)
        >>> print(f"RMSE {metrics.rmse:.2f} m, "
        ...       f"near (10, 5): {metrics.local_rmse((10.0, 5.0)):.2f} m")
    """

    def __init__(self, projected: Any, observed: Any):
        self._projected = as_points(projected)
        observed = as_points(observed)
        if len(self._projected) != len(observed):
            raise ValueError(
                f"Projected and observed point counts differ: "
                f"{len(self._projected)} vs {len(observed)}"
            )
        self._residuals = np.linalg.norm(self._projected - observed, axis=1)

    @classmethod
    def for_model(cls, model: TransformModel, src: Any, dst: Any) -> "ErrorMetrics":
        """Score ``model`` on (src, dst) correspondences."""
        return cls(apply_transform(model, src), dst)

    @property
    def residuals(self) -> np.ndarray:
        return self._residuals.copy()

    @property
    def rmse(self) -> float:
        return global_rmse(self._residuals)

    def local_rmse(self, query: Any) -> float:
        """
        Inverse-distance-weighted RMSE around ``query``.

        Args:
            query: (x, y) in the model's target space

        Returns:
            Weighted RMSE, or 0.0 if there are no correspondences
        """
        if len(self._residuals) == 0:
            return 0.0
        q = np.asarray(query, dtype=np.float64).reshape(2)
        distances = np.linalg.norm(self._projected - q, axis=1)
        weights = 1.0 / (1.0 + distances)
        return float(np.sqrt(np.sum(weights * self._residuals ** 2) / np.sum(weights)))

    def heatmap(self, samples: Any) -> np.ndarray:
        """Local RMSE for each sample point, in input order."""
        pts = as_points(samples)
        return np.array([self.local_rmse(p) for p in pts], dtype=np.float64)


def local_rmse(query: Any, model: TransformModel, src: Any, dst: Any) -> float:
    """Functional form of ErrorMetrics.local_rmse."""
    return ErrorMetrics.for_model(model, src, dst).local_rmse(query)
