#!/usr/bin/env python3
"""
Robust transform estimation: RANSAC consensus followed by Huber IRLS.

Correspondences are clicked by hand, so some of them are wrong. Fitting
happens in two stages:

1. RANSAC: for a fixed sample budget, draw a random minimal subset without
   replacement, fit a candidate, and count inliers among *all* pairs
   (residual < inlier_threshold). The candidate with the most inliers wins;
   ties keep the first one found. The winner is then re-fitted on all of its
   inliers (unweighted).

2. IRLS: on the RANSAC inlier set, compute residuals, assign Huber weights

       wᵢ = 1               if |rᵢ| <= δ
       wᵢ = δ / |rᵢ|         otherwise

   and re-fit with those weights. The number of reweighting passes is a
   parameter (default 1). Every pass is run; there is no early stop. If a
   weighted re-fit fails, the model from before that pass is kept.

Residuals are then reported for every input pair against the final model,
so callers can flag individual pairs as likely outliers.

Randomness is injectable: ``rng`` is any zero-argument callable returning a
uniform float in [0, 1). ``make_rng(seed)`` builds a reproducible one.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

import numpy as np

from snap2map.error_metrics import global_rmse
from snap2map.exceptions import (
    CalibrationError,
    DegenerateConfigurationError,
    InsufficientPairsError,
    RansacFailedError,
)
from snap2map.transforms import (
    ModelType,
    TransformModel,
    as_points,
    compute_residuals,
    fit_model,
)

logger = logging.getLogger(__name__)

RandomSource = Callable[[], float]

DEFAULT_INLIER_THRESHOLD = 40.0
DEFAULT_MAX_SAMPLES = 150
DEFAULT_HUBER_DELTA = 35.0
DEFAULT_IRLS_PASSES = 1


def make_rng(seed: Optional[int] = None) -> RandomSource:
    """Return a uniform [0, 1) source backed by numpy's default generator."""
    generator = np.random.default_rng(seed)
    return lambda: float(generator.random())


def sample_indices(n: int, k: int, rng: RandomSource) -> List[int]:
    """
    Draw ``k`` distinct indices from range(n).

    Each draw picks position floor(rng() * remaining) from the pool of
    indices not yet taken, so a constant rng still yields distinct indices
    (rng() == 0.0 always returns [0, 1, ..., k-1]).

    Raises:
        ValueError: If k > n
    """
    if k > n:
        raise ValueError(f"Cannot sample {k} indices from {n}")
    pool = list(range(n))
    chosen = []
    for _ in range(k):
        j = min(int(rng() * len(pool)), len(pool) - 1)
        chosen.append(pool.pop(j))
    return chosen


def select_model_type(
    num_pairs: int, requested: Union[str, ModelType, None] = None
) -> ModelType:
    """
    Pick the model class for a robust fit.

    An explicit request is honored (and must be satisfiable). Otherwise:
    4+ pairs -> homography, exactly 3 -> affine, else similarity.

    Raises:
        InsufficientPairsError: If fewer than 2 pairs, or fewer than the
            requested model's minimum
        UnknownModelTypeError: If ``requested`` is not a known tag
    """
    if num_pairs < ModelType.SIMILARITY.min_pairs:
        raise InsufficientPairsError(ModelType.SIMILARITY.min_pairs, num_pairs)

    if requested is not None:
        model_type = ModelType.parse(requested)
        if num_pairs < model_type.min_pairs:
            raise InsufficientPairsError(model_type.min_pairs, num_pairs, model_type.value)
        return model_type

    if num_pairs >= 4:
        return ModelType.HOMOGRAPHY
    if num_pairs == 3:
        return ModelType.AFFINE
    return ModelType.SIMILARITY


@dataclass(frozen=True, eq=False)
class RansacResult:
    """
    Best RANSAC consensus.

    Attributes:
        model: Winning model, re-fitted on its inliers when possible
        inlier_mask: Boolean mask over the input pairs
        num_valid_samples: Samples that produced a model
        num_degenerate_samples: Samples skipped as degenerate
    """

    model: TransformModel
    inlier_mask: np.ndarray
    num_valid_samples: int
    num_degenerate_samples: int

    @property
    def num_inliers(self) -> int:
        return int(np.sum(self.inlier_mask))


def ransac(
    model_type: Union[str, ModelType],
    src: Any,
    dst: Any,
    inlier_threshold: float = DEFAULT_INLIER_THRESHOLD,
    max_samples: int = DEFAULT_MAX_SAMPLES,
    rng: Optional[RandomSource] = None,
) -> RansacResult:
    """
    Find the model with the largest consensus set.

    Args:
        model_type: Model class to fit
        src: (N, 2) source points
        dst: (N, 2) target points
        inlier_threshold: Residual below which a pair counts as an inlier,
            in target units
        max_samples: Number of minimal subsets to draw
        rng: Uniform [0, 1) source; defaults to an unseeded generator

    Returns:
        RansacResult

    Raises:
        InsufficientPairsError: If fewer pairs than the model's minimum
        RansacFailedError: If no sample produced a valid model
    """
    model_type = ModelType.parse(model_type)
    src = as_points(src)
    dst = as_points(dst)
    n = len(src)
    k = model_type.min_pairs
    if n < k:
        raise InsufficientPairsError(k, n, model_type.value)
    if rng is None:
        rng = make_rng()

    best_model: Optional[TransformModel] = None
    best_mask = np.zeros(n, dtype=bool)
    best_count = -1
    valid = 0
    degenerate = 0

    for i in range(max_samples):
        idx = sample_indices(n, k, rng)
        try:
            candidate = fit_model(model_type, src[idx], dst[idx])
        except DegenerateConfigurationError:
            degenerate += 1
            continue
        valid += 1

        mask = compute_residuals(candidate, src, dst) < inlier_threshold
        count = int(np.sum(mask))
        if count > best_count:
            best_model, best_mask, best_count = candidate, mask, count
            logger.debug(f"RANSAC sample {i}: new best with {count}/{n} inliers")
            if count == n:
                # Nothing can beat a full consensus, and ties keep the first
                break

    if best_model is None:
        raise RansacFailedError(
            f"RANSAC failed: all {max_samples} {model_type.value} samples were degenerate"
        )
    if degenerate:
        logger.debug(f"RANSAC skipped {degenerate} degenerate samples")

    if best_count >= k:
        try:
            best_model = fit_model(model_type, src[best_mask], dst[best_mask])
        except DegenerateConfigurationError as e:
            logger.warning(f"RANSAC inlier re-fit failed ({e}); keeping sample model")

    return RansacResult(
        model=best_model,
        inlier_mask=best_mask,
        num_valid_samples=valid,
        num_degenerate_samples=degenerate,
    )


def huber_weights(residuals: Any, delta: float = DEFAULT_HUBER_DELTA) -> np.ndarray:
    """
    Huber IRLS weights: 1 inside ``delta``, delta/|r| outside.

    Raises:
        ValueError: If delta is not positive
    """
    if delta <= 0:
        raise ValueError(f"huber_delta must be positive, got {delta}")
    r = np.abs(np.asarray(residuals, dtype=np.float64))
    with np.errstate(divide="ignore"):
        return np.where(r <= delta, 1.0, delta / r)


def irls(
    model_type: Union[str, ModelType],
    src: Any,
    dst: Any,
    initial_model: TransformModel,
    huber_delta: float = DEFAULT_HUBER_DELTA,
    passes: int = DEFAULT_IRLS_PASSES,
) -> TransformModel:
    """
    Refine a model with Huber-weighted least squares.

    Runs exactly ``passes`` reweighting passes. A pass whose weighted re-fit
    fails stops the refinement and the previous model is returned.

    Args:
        model_type: Model class to re-fit
        src, dst: Correspondences to refine on (normally the RANSAC inliers)
        initial_model: Starting model
        huber_delta: Huber transition point, in target units
        passes: Number of reweighting passes (>= 0)

    Returns:
        Refined model (``initial_model`` if no pass succeeded)
    """
    if passes < 0:
        raise ValueError(f"passes must be >= 0, got {passes}")
    model = initial_model
    for p in range(passes):
        weights = huber_weights(compute_residuals(model, src, dst), huber_delta)
        try:
            model = fit_model(model_type, src, dst, weights)
        except CalibrationError as e:
            logger.warning(f"IRLS pass {p + 1} failed ({e}); keeping previous model")
            break
    return model


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Output of a robust fit.

    Attributes:
        model: Final refined model
        model_type: Model class that was fitted
        inlier_mask: RANSAC consensus set over the input pairs
        residuals: |model(src[i]) - dst[i]| for every input pair, in input order
        rmse: Global RMSE over all residuals
        max_residual: Largest residual
    """

    model: TransformModel
    model_type: ModelType
    inlier_mask: np.ndarray
    residuals: np.ndarray
    rmse: float
    max_residual: float

    @property
    def inliers(self) -> List[int]:
        """Indices of inlier pairs."""
        return [int(i) for i in np.flatnonzero(self.inlier_mask)]

    @property
    def num_inliers(self) -> int:
        return int(np.sum(self.inlier_mask))

    @property
    def inlier_rmse(self) -> float:
        return global_rmse(self.residuals[self.inlier_mask])


def calibrate(
    src: Any,
    dst: Any,
    model_type: Union[str, ModelType, None] = None,
    inlier_threshold: float = DEFAULT_INLIER_THRESHOLD,
    max_samples: int = DEFAULT_MAX_SAMPLES,
    huber_delta: float = DEFAULT_HUBER_DELTA,
    irls_passes: int = DEFAULT_IRLS_PASSES,
    rng: Optional[RandomSource] = None,
) -> FitResult:
    """
    Robustly fit a transform from src to dst.

    Example:
        >>> result = calibrate(pixels, local_xy, rng=make_rng(42))
        >>> print(f"{result.model_type.value}: RMSE {result.rmse:.2f}, "
        ...       f"{result.num_inliers}/{len(pixels)} inliers")

    Raises:
        InsufficientPairsError: If fewer than 2 pairs, or fewer than the
            requested model's minimum
        RansacFailedError: If every RANSAC sample was degenerate
    """
    src = as_points(src)
    dst = as_points(dst)
    if len(src) != len(dst):
        raise ValueError(f"Source and target point counts differ: {len(src)} vs {len(dst)}")

    selected = select_model_type(len(src), model_type)
    consensus = ransac(selected, src, dst, inlier_threshold, max_samples, rng)

    model = consensus.model
    mask = consensus.inlier_mask
    if consensus.num_inliers >= selected.min_pairs:
        model = irls(selected, src[mask], dst[mask], model, huber_delta, irls_passes)

    residuals = compute_residuals(model, src, dst)
    rmse = global_rmse(residuals)
    max_residual = float(np.max(residuals))

    logger.info(
        f"Robust {selected.value} fit: {consensus.num_inliers}/{len(src)} inliers, "
        f"RMSE={rmse:.3f}, max residual={max_residual:.3f}"
    )
    return FitResult(
        model=model,
        model_type=selected,
        inlier_mask=mask,
        residuals=residuals,
        rmse=rmse,
        max_residual=max_residual,
    )
