"""
Thin-plate-spline refinement for a fitted calibration.

A global transform cannot follow the local distortions of a hand-held
photograph of a paper map. The thin-plate spline adds a smooth non-linear
correction in pixel space: control points are the pixel locations of the
inlier pairs, targets are where the base model says those pixels *should*
be (the inverse base model applied to each pair's local coordinates).

For n control points pᵢ the warp is

    f(q) = a₀ + a₁·qx + a₂·qy + Σ wᵢ · U(|q - pᵢ|),    U(r) = r² ln r, U(0) = 0

and the coefficients solve the (n+3) x (n+3) system

    | K + λI   P | | w |   | t |
    | Pᵀ       0 | | a | = | 0 |

with K[i, j] = U(|pᵢ - pⱼ|) and P[i] = [1, xᵢ, yᵢ]. Larger λ gives a
smoother warp that no longer interpolates the targets exactly.
"""

import logging
from typing import Any, Optional

import numpy as np
from scipy import linalg
from scipy.spatial.distance import cdist

from snap2map.transforms import as_points

logger = logging.getLogger(__name__)

MIN_CONTROL_POINTS = 3


def radial_basis(r: np.ndarray) -> np.ndarray:
    """U(r) = r² ln r, with U(0) = 0."""
    r = np.asarray(r, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        u = r * r * np.log(r)
    return np.where(r > 0, u, 0.0)


class ThinPlateSpline:
    """
    Fitted 2D thin-plate spline.

    Construct with ``ThinPlateSpline.fit``; the constructor takes already
    solved coefficients.

    Attributes:
        control_points: (n, 2) control points
        weights: (n, 2) radial weights, x column then y column
        affine: (3, 2) affine coefficients [a₀, a₁, a₂] per output axis
        lam: Regularization used for the fit
    """

    def __init__(
        self,
        control_points: np.ndarray,
        weights: np.ndarray,
        affine: np.ndarray,
        lam: float,
    ):
        self.control_points = control_points
        self.weights = weights
        self.affine = affine
        self.lam = lam

    @classmethod
    def fit(cls, control: Any, target: Any, lam: float = 0.0) -> Optional["ThinPlateSpline"]:
        """
        Solve the spline through ``control`` -> ``target``.

        Args:
            control: (n, 2) control points
            target: (n, 2) target points
            lam: Ridge term added to the kernel diagonal (>= 0)

        Returns:
            ThinPlateSpline, or None when fewer than 3 control points are
            given or the system is singular
        """
        control = as_points(control)
        target = as_points(target)
        n = len(control)
        if n != len(target):
            raise ValueError(f"Control and target counts differ: {n} vs {len(target)}")
        if lam < 0:
            raise ValueError(f"lambda must be >= 0, got {lam}")
        if n < MIN_CONTROL_POINTS:
            logger.warning(f"TPS needs at least {MIN_CONTROL_POINTS} control points, got {n}")
            return None

        K = radial_basis(cdist(control, control)) + lam * np.eye(n)
        P = np.hstack([np.ones((n, 1)), control])

        L = np.zeros((n + 3, n + 3))
        L[:n, :n] = K
        L[:n, n:] = P
        L[n:, :n] = P.T

        rhs = np.zeros((n + 3, 2))
        rhs[:n] = target

        try:
            solution = linalg.solve(L, rhs)
        except linalg.LinAlgError as e:
            logger.warning(f"TPS system is singular ({e}); refinement disabled")
            return None
        if not np.all(np.isfinite(solution)):
            logger.warning("TPS solve produced non-finite coefficients; refinement disabled")
            return None

        logger.debug(f"TPS fitted with {n} control points, lambda={lam:g}")
        return cls(control, solution[:n], solution[n:], float(lam))

    def warp(self, points: Any) -> np.ndarray:
        """Evaluate the warp at one point or an (N, 2) array; returns (N, 2)."""
        pts = as_points(points)
        U = radial_basis(cdist(pts, self.control_points))
        return self.affine[0] + pts @ self.affine[1:] + U @ self.weights

    def warp_point(self, x: float, y: float) -> tuple:
        wx, wy = self.warp([[x, y]])[0]
        return float(wx), float(wy)
