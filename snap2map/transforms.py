"""
Closed-form 2D transform estimators and evaluators.

Three model classes map source points to target points (in the calibration,
map-photo pixels to local tangent-plane meters):

    similarity  [X]   [s·cosθ  -s·sinθ] [x]   [tx]      4 DOF, >= 2 pairs
                [Y] = [s·sinθ   s·cosθ] [y] + [ty]

    affine      X = a·x + b·y + tx                         6 DOF, >= 3 pairs
                Y = c·x + d·y + ty

    homography  X = (h1·x + h2·y + h3) / (h7·x + h8·y + 1)  8 DOF, >= 4 pairs
                Y = (h4·x + h5·y + h6) / (h7·x + h8·y + 1)

Similarity and affine are solved by (weighted) linear least squares. The
homography is solved with the normalized Direct Linear Transform (DLT):
both point sets are moved to zero centroid and mean distance √2, the
2n×9 constraint matrix is built, and the right singular vector of the
smallest singular value gives the normalized matrix, which is then
de-normalized.

Every fitter accepts optional per-pair weights. A weight scales that pair's
contribution to the normal equations (rows are multiplied by √w), which is
what the IRLS refinement in snap2map.robust relies on.

Models are immutable dataclasses. The set of model classes is closed:
evaluation dispatches over exactly these three and raises
UnknownModelTypeError for anything else.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from snap2map.exceptions import (
    DegenerateConfigurationError,
    InsufficientPairsError,
    UnknownModelTypeError,
)

logger = logging.getLogger(__name__)

# Relative singular value below which a design matrix is treated as rank deficient
RANK_TOLERANCE = 1e-10

# |h9| below this cannot be normalized to 1
HOMOGRAPHY_SCALE_EPSILON = 1e-12


class ModelType(Enum):
    """Closed set of transform model classes."""

    SIMILARITY = "similarity"
    AFFINE = "affine"
    HOMOGRAPHY = "homography"

    @property
    def min_pairs(self) -> int:
        """Minimum number of correspondences that determine the model."""
        return _MIN_PAIRS[self]

    @classmethod
    def parse(cls, value: Union[str, ModelType]) -> ModelType:
        """Parse a model tag.

        Raises:
            UnknownModelTypeError: If ``value`` is not one of the three tags
        """
        if isinstance(value, ModelType):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnknownModelTypeError(value) from None


_MIN_PAIRS = {
    ModelType.SIMILARITY: 2,
    ModelType.AFFINE: 3,
    ModelType.HOMOGRAPHY: 4,
}


@dataclass(frozen=True)
class SimilarityModel:
    """Uniform scale + rotation + translation.

    Attributes:
        scale: Uniform scale factor (target units per source unit)
        angle: Counter-clockwise rotation in radians
        tx, ty: Translation in target units
    """

    scale: float
    angle: float
    tx: float
    ty: float

    model_type = ModelType.SIMILARITY

    def to_matrix(self) -> np.ndarray:
        a = self.scale * math.cos(self.angle)
        b = self.scale * math.sin(self.angle)
        return np.array([[a, -b, self.tx], [b, a, self.ty], [0.0, 0.0, 1.0]])


@dataclass(frozen=True)
class AffineModel:
    """General 6-parameter affine transform."""

    a: float
    b: float
    c: float
    d: float
    tx: float
    ty: float

    model_type = ModelType.AFFINE

    def to_matrix(self) -> np.ndarray:
        return np.array(
            [[self.a, self.b, self.tx], [self.c, self.d, self.ty], [0.0, 0.0, 1.0]]
        )


@dataclass(frozen=True)
class HomographyModel:
    """Projective transform with h9 normalized to 1.

    Attributes:
        h: Row-major (h1, ..., h9) coefficients, h[8] == 1.0
    """

    h: Tuple[float, ...]

    model_type = ModelType.HOMOGRAPHY

    def __post_init__(self):
        if len(self.h) != 9:
            raise ValueError(f"Homography needs 9 coefficients, got {len(self.h)}")

    @classmethod
    def from_matrix(cls, H: np.ndarray) -> HomographyModel:
        """Build from a 3x3 matrix, normalizing so that H[2, 2] == 1.

        Raises:
            DegenerateConfigurationError: If H[2, 2] is (numerically) zero
        """
        H = np.asarray(H, dtype=np.float64)
        if abs(H[2, 2]) < HOMOGRAPHY_SCALE_EPSILON:
            raise DegenerateConfigurationError(
                "Homography cannot be normalized: H[2,2] is zero"
            )
        H = H / H[2, 2]
        return cls(h=tuple(float(v) for v in H.ravel()))

    def to_matrix(self) -> np.ndarray:
        return np.array(self.h, dtype=np.float64).reshape(3, 3)


TransformModel = Union[SimilarityModel, AffineModel, HomographyModel]


# ============================================================================
# Helpers
# ============================================================================

def as_points(points: Any) -> np.ndarray:
    """Coerce a sequence of (x, y) into an (N, 2) float64 array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected points with shape (N, 2), got {arr.shape}")
    return arr


def _prepare(
    src: Any, dst: Any, weights: Optional[Any], model_type: ModelType
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    src = as_points(src)
    dst = as_points(dst)
    if len(src) != len(dst):
        raise ValueError(
            f"Source and target point counts differ: {len(src)} vs {len(dst)}"
        )
    if len(src) < model_type.min_pairs:
        raise InsufficientPairsError(model_type.min_pairs, len(src), model_type.value)

    if weights is None:
        w = np.ones(len(src))
    else:
        w = np.asarray(weights, dtype=np.float64).ravel()
        if len(w) != len(src):
            raise ValueError(f"Expected {len(src)} weights, got {len(w)}")
        if np.any(w < 0) or not np.all(np.isfinite(w)):
            raise ValueError("Weights must be finite and non-negative")
    return src, dst, w


def _weighted_lstsq(A: np.ndarray, b: np.ndarray, row_weights: np.ndarray) -> np.ndarray:
    """Solve min ||√W (A x - b)||² and reject rank-deficient systems."""
    sw = np.sqrt(row_weights)
    Aw = A * sw[:, None]
    bw = b * sw
    try:
        sol, _, rank, sv = np.linalg.lstsq(Aw, bw, rcond=None)
    except np.linalg.LinAlgError as e:
        raise DegenerateConfigurationError(f"Least-squares solve failed: {e}") from e

    n_params = A.shape[1]
    if rank < n_params or sv[0] == 0 or sv[-1] / sv[0] < RANK_TOLERANCE:
        raise DegenerateConfigurationError(
            f"Degenerate point configuration (rank {rank} < {n_params})"
        )
    return sol


def normalize_points(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Hartley normalization: zero centroid, mean distance √2.

    Args:
        points: (N, 2) array

    Returns:
        Tuple of (normalized (N, 2) points, 3x3 normalization matrix T)

    Raises:
        DegenerateConfigurationError: If all points coincide
    """
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    if mean_dist < 1e-12:
        raise DegenerateConfigurationError("All points coincide; cannot normalize")

    s = math.sqrt(2.0) / mean_dist
    T = np.array(
        [
            [s, 0.0, -s * centroid[0]],
            [0.0, s, -s * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )
    normalized = (points - centroid) * s
    return normalized, T


# ============================================================================
# Fitters
# ============================================================================

def fit_similarity(src: Any, dst: Any, weights: Optional[Any] = None) -> SimilarityModel:
    """
    Fit a similarity transform by linear least squares.

    Each pair contributes two rows of the 4-parameter linear form:
        [x, -y, 1, 0] · [a, b, tx, ty] = X
        [y,  x, 0, 1] · [a, b, tx, ty] = Y
    with a = s·cosθ and b = s·sinθ.

    Args:
        src: (N, 2) source points
        dst: (N, 2) target points
        weights: Optional per-pair weights (length N)

    Returns:
        SimilarityModel

    Raises:
        InsufficientPairsError: If fewer than 2 pairs
        DegenerateConfigurationError: If source points coincide
    """
    src, dst, w = _prepare(src, dst, weights, ModelType.SIMILARITY)
    n = len(src)
    x, y = src[:, 0], src[:, 1]

    A = np.zeros((2 * n, 4))
    A[0::2] = np.column_stack([x, -y, np.ones(n), np.zeros(n)])
    A[1::2] = np.column_stack([y, x, np.zeros(n), np.ones(n)])
    b = dst.reshape(-1)

    a_, b_, tx, ty = _weighted_lstsq(A, b, np.repeat(w, 2))
    return SimilarityModel(
        scale=float(math.hypot(a_, b_)),
        angle=float(math.atan2(b_, a_)),
        tx=float(tx),
        ty=float(ty),
    )


def fit_affine(src: Any, dst: Any, weights: Optional[Any] = None) -> AffineModel:
    """
    Fit a 6-parameter affine transform by linear least squares.

    The X and Y rows are independent, so the system is solved as two 3-unknown
    problems sharing the design matrix [x, y, 1].

    Raises:
        InsufficientPairsError: If fewer than 3 pairs
        DegenerateConfigurationError: If source points are collinear
    """
    src, dst, w = _prepare(src, dst, weights, ModelType.AFFINE)
    A = np.column_stack([src[:, 0], src[:, 1], np.ones(len(src))])

    a, b, tx = _weighted_lstsq(A, dst[:, 0], w)
    c, d, ty = _weighted_lstsq(A, dst[:, 1], w)
    return AffineModel(
        a=float(a), b=float(b), c=float(c), d=float(d), tx=float(tx), ty=float(ty)
    )


def fit_homography(src: Any, dst: Any, weights: Optional[Any] = None) -> HomographyModel:
    """
    Fit a homography with the normalized Direct Linear Transform.

    Steps:
        1. Normalize src and dst (zero centroid, mean distance √2)
        2. Build the 2n×9 constraint matrix, rows scaled by √w
        3. Take the right singular vector of the smallest singular value
        4. Reshape to 3x3 and de-normalize: H = T_dst⁻¹ · Hn · T_src
        5. Scale so that h9 = 1

    Raises:
        InsufficientPairsError: If fewer than 4 pairs
        DegenerateConfigurationError: If the constraint matrix has rank < 8
            (e.g. three collinear points in a minimal sample)
    """
    src, dst, w = _prepare(src, dst, weights, ModelType.HOMOGRAPHY)
    norm_src, T_src = normalize_points(src)
    norm_dst, T_dst = normalize_points(dst)

    n = len(src)
    x, y = norm_src[:, 0], norm_src[:, 1]
    xp, yp = norm_dst[:, 0], norm_dst[:, 1]
    zeros = np.zeros(n)
    ones = np.ones(n)

    A = np.zeros((2 * n, 9))
    A[0::2] = np.column_stack([-x, -y, -ones, zeros, zeros, zeros, x * xp, y * xp, xp])
    A[1::2] = np.column_stack([zeros, zeros, zeros, -x, -y, -ones, x * yp, y * yp, yp])
    A *= np.sqrt(np.repeat(w, 2))[:, None]

    try:
        _, sv, vt = np.linalg.svd(A)
    except np.linalg.LinAlgError as e:
        raise DegenerateConfigurationError(f"DLT SVD failed: {e}") from e

    # The solution is unique (up to scale) only if rank(A) >= 8
    if sv[0] == 0 or sv[7] / sv[0] < RANK_TOLERANCE:
        raise DegenerateConfigurationError("Degenerate configuration for homography DLT")

    H_norm = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T_dst) @ H_norm @ T_src
    return HomographyModel.from_matrix(H)


_FITTERS = {
    ModelType.SIMILARITY: fit_similarity,
    ModelType.AFFINE: fit_affine,
    ModelType.HOMOGRAPHY: fit_homography,
}


def fit_model(
    model_type: Union[str, ModelType],
    src: Any,
    dst: Any,
    weights: Optional[Any] = None,
) -> TransformModel:
    """Fit the requested model class.

    Raises:
        UnknownModelTypeError: If ``model_type`` is not a known tag
    """
    return _FITTERS[ModelType.parse(model_type)](src, dst, weights)


def compute_transform(src: Any, dst: Any, weights: Optional[Any] = None) -> TransformModel:
    """
    Fit a model whose class is chosen by the number of pairs.

    Exactly 2 pairs -> similarity, exactly 3 -> affine, 4 or more -> homography.

    Raises:
        InsufficientPairsError: If fewer than 2 pairs
    """
    n = len(as_points(src))
    if n == 2:
        return fit_similarity(src, dst, weights)
    if n == 3:
        return fit_affine(src, dst, weights)
    if n >= 4:
        return fit_homography(src, dst, weights)
    raise InsufficientPairsError(ModelType.SIMILARITY.min_pairs, n)


# ============================================================================
# Evaluation
# ============================================================================

def _check_model(model: object) -> None:
    if not isinstance(model, (SimilarityModel, AffineModel, HomographyModel)):
        raise UnknownModelTypeError(getattr(model, "model_type", type(model).__name__))


def apply_transform(model: TransformModel, points: Any) -> np.ndarray:
    """
    Evaluate a model on an (N, 2) array of points.

    Similarity and affine models are evaluated directly; homographies use the
    perspective divide. Points on the homography's line at infinity map to
    inf.

    Returns:
        (N, 2) array of transformed points

    Raises:
        UnknownModelTypeError: If ``model`` is not one of the three model classes
    """
    pts = as_points(points)
    if isinstance(model, SimilarityModel):
        c = model.scale * math.cos(model.angle)
        s = model.scale * math.sin(model.angle)
        X = c * pts[:, 0] - s * pts[:, 1] + model.tx
        Y = s * pts[:, 0] + c * pts[:, 1] + model.ty
    elif isinstance(model, AffineModel):
        X = model.a * pts[:, 0] + model.b * pts[:, 1] + model.tx
        Y = model.c * pts[:, 0] + model.d * pts[:, 1] + model.ty
    elif isinstance(model, HomographyModel):
        h = model.h
        den = h[6] * pts[:, 0] + h[7] * pts[:, 1] + h[8]
        with np.errstate(divide="ignore", invalid="ignore"):
            X = (h[0] * pts[:, 0] + h[1] * pts[:, 1] + h[2]) / den
            Y = (h[3] * pts[:, 0] + h[4] * pts[:, 1] + h[5]) / den
        X = np.where(den == 0, np.inf, X)
        Y = np.where(den == 0, np.inf, Y)
    else:
        raise UnknownModelTypeError(getattr(model, "model_type", type(model).__name__))
    return np.column_stack([X, Y])


def apply_point(model: TransformModel, x: float, y: float) -> Tuple[float, float]:
    """Evaluate a model on a single point."""
    X, Y = apply_transform(model, [[x, y]])[0]
    return float(X), float(Y)


def compute_residuals(model: TransformModel, src: Any, dst: Any) -> np.ndarray:
    """Euclidean distance between model(src[i]) and dst[i], in input order."""
    projected = apply_transform(model, src)
    return np.linalg.norm(projected - as_points(dst), axis=1)


def invert_model(model: TransformModel) -> TransformModel:
    """
    Return the inverse transform, of the same model class.

    Raises:
        DegenerateConfigurationError: If the model is singular
        UnknownModelTypeError: For anything but the three model classes
    """
    _check_model(model)
    if isinstance(model, SimilarityModel):
        if model.scale == 0:
            raise DegenerateConfigurationError("Similarity with zero scale is not invertible")
        inv_scale = 1.0 / model.scale
        c = math.cos(-model.angle)
        s = math.sin(-model.angle)
        tx = -inv_scale * (c * model.tx - s * model.ty)
        ty = -inv_scale * (s * model.tx + c * model.ty)
        return SimilarityModel(scale=inv_scale, angle=-model.angle, tx=tx, ty=ty)

    M = model.to_matrix()
    try:
        M_inv = np.linalg.inv(M)
    except np.linalg.LinAlgError as e:
        raise DegenerateConfigurationError(f"{model.model_type.value} model is singular") from e

    if isinstance(model, AffineModel):
        return AffineModel(
            a=float(M_inv[0, 0]), b=float(M_inv[0, 1]),
            c=float(M_inv[1, 0]), d=float(M_inv[1, 1]),
            tx=float(M_inv[0, 2]), ty=float(M_inv[1, 2]),
        )
    return HomographyModel.from_matrix(M_inv)


# ============================================================================
# Serialization
# ============================================================================

def model_to_dict(model: TransformModel) -> Dict[str, Any]:
    """Convert a model to its stored shape, tagged by ``type``."""
    _check_model(model)
    if isinstance(model, SimilarityModel):
        return {
            "type": "similarity",
            "scale": model.scale,
            "angle": model.angle,
            "tx": model.tx,
            "ty": model.ty,
        }
    if isinstance(model, AffineModel):
        return {
            "type": "affine",
            "a": model.a, "b": model.b, "c": model.c, "d": model.d,
            "tx": model.tx, "ty": model.ty,
        }
    return {"type": "homography", "h": list(model.h)}


def model_from_dict(data: Dict[str, Any]) -> TransformModel:
    """
    Rebuild a model from its stored shape.

    Raises:
        UnknownModelTypeError: If ``type`` is missing or unrecognized
        KeyError: If a coefficient is missing
        ValueError: If ``data`` is not a mapping
    """
    if not isinstance(data, dict):
        raise ValueError(f"Model must be a mapping, got {type(data).__name__}")
    model_type = ModelType.parse(data.get("type"))
    if model_type is ModelType.SIMILARITY:
        return SimilarityModel(
            scale=float(data["scale"]),
            angle=float(data["angle"]),
            tx=float(data["tx"]),
            ty=float(data["ty"]),
        )
    if model_type is ModelType.AFFINE:
        return AffineModel(**{k: float(data[k]) for k in ("a", "b", "c", "d", "tx", "ty")})
    return HomographyModel.from_matrix(np.asarray(data["h"], dtype=np.float64).reshape(3, 3))
