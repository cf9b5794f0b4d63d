#!/usr/bin/env python3
"""
Calibration state machine for one photographed map.

A CalibrationModel owns the correspondence pairs, the tangent-plane origin,
the fitted base transform and an optional thin-plate-spline refinement.
It is immutable: every transition returns a new instance, so callers can
keep the previous state around and tests can assert on each step.

States:
    NO_PAIRS         no fitted model (there may be pairs waiting for a fit)
    FITTED           base transform fitted
    FITTED_WITH_TPS  base transform plus TPS refinement

    add_pair / set_pairs / set_pair_active / remove_pair   -> NO_PAIRS
    fit / fit_robust                                       -> FITTED
    enable_tps (FITTED or FITTED_WITH_TPS)                 -> FITTED_WITH_TPS
                                                              (FITTED on failure)
    disable_tps                                            -> FITTED

Projection directions:
    forward:  pixel -> [TPS warp] -> base model -> local ENU -> geodetic
    inverse:  geodetic -> local ENU -> inverse base model -> pixel

The inverse path never goes through the TPS warp, which has no closed-form
inverse. Forward and inverse therefore only agree exactly while TPS is off.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from snap2map.calibration_config import CalibrationConfig, get_default_config
from snap2map.coordinate_converter import from_local, to_local
from snap2map.correspondence import CorrespondencePair, GeodeticPoint, LocalPoint
from snap2map.error_metrics import ErrorMetrics
from snap2map.exceptions import (
    InsufficientCorrespondencesError,
    ModelNotFittedError,
    OriginNotSetError,
)
from snap2map.pair_validation import validate_pair
from snap2map.pixel_point import PixelPoint
from snap2map.robust import FitResult, RandomSource, calibrate, make_rng
from snap2map.tps import MIN_CONTROL_POINTS, ThinPlateSpline
from snap2map.transforms import (
    ModelType,
    TransformModel,
    apply_transform,
    as_points,
    invert_model,
)
from snap2map.types import Meters, Unitless

logger = logging.getLogger(__name__)

MIN_ACTIVE_PAIRS = 2


class CalibrationState(Enum):
    NO_PAIRS = "no_pairs"
    FITTED = "fitted"
    FITTED_WITH_TPS = "fitted_with_tps"


@dataclass(frozen=True)
class AccuracyEstimate:
    """
    Expected position error at a pixel.

    Attributes:
        sigma_map: Local RMSE of the calibration around the pixel (meters)
        sigma_total: sqrt(gps_accuracy² + sigma_map²) (meters)
    """
    sigma_map: Meters
    sigma_total: Meters


@dataclass(frozen=True, eq=False)
class CalibrationModel:
    """
    Immutable calibration aggregate.

    Attributes:
        pairs: All correspondence pairs, active or not, in insertion order
        origin: Tangent-plane origin, fixed by the first pair
        fit_result: Robust fit over the active pairs, or None
        tps: Thin-plate-spline refinement, or None
        rmse: RMSE of the current forward path over the fitted pairs (meters)

    Example:
        >>> model = CalibrationModel()
        >>> for pair in pairs:
        ...     model = model.add_pair(pair)
        >>> model = model.fit_robust(CalibrationConfig(seed=7))
        >>> geo = model.project_forward(PixelPoint(640.0, 480.0))
        >>> px = model.project_inverse(geo)
    """

    pairs: Tuple[CorrespondencePair, ...] = ()
    origin: Optional[GeodeticPoint] = None
    fit_result: Optional[FitResult] = None
    tps: Optional[ThinPlateSpline] = None
    rmse: Optional[float] = None

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalibrationState:
        if self.fit_result is None:
            return CalibrationState.NO_PAIRS
        if self.tps is None:
            return CalibrationState.FITTED
        return CalibrationState.FITTED_WITH_TPS

    @property
    def base_model(self) -> Optional[TransformModel]:
        return self.fit_result.model if self.fit_result is not None else None

    @property
    def model_type(self) -> Optional[ModelType]:
        return self.fit_result.model_type if self.fit_result is not None else None

    @property
    def active_pairs(self) -> List[CorrespondencePair]:
        return [p for p in self.pairs if p.active]

    @property
    def inlier_pairs(self) -> List[CorrespondencePair]:
        if self.fit_result is None:
            return []
        active = self.active_pairs
        return [active[i] for i in self.fit_result.inliers]

    def local_points(self, pairs: Sequence[CorrespondencePair]) -> np.ndarray:
        """(N, 2) local coordinates of ``pairs``, derived from the current origin."""
        origin = self._require_origin()
        return np.array(
            [to_local(p.geodetic, origin).as_tuple() for p in pairs], dtype=np.float64
        ).reshape(-1, 2)

    @staticmethod
    def pixel_points(pairs: Sequence[CorrespondencePair]) -> np.ndarray:
        return np.array(
            [p.pixel.as_tuple() for p in pairs], dtype=np.float64
        ).reshape(-1, 2)

    # ------------------------------------------------------------------
    # Pair transitions (all discard any fit)
    # ------------------------------------------------------------------

    def _with_pairs(self, pairs: Tuple[CorrespondencePair, ...]) -> "CalibrationModel":
        for i, pair in enumerate(pairs):
            validate_pair(pair, i)
        origin = self.origin
        if origin is None and pairs:
            origin = pairs[0].geodetic
            logger.info(f"Calibration origin set to ({origin.lat:.6f}, {origin.lon:.6f})")
        return CalibrationModel(pairs=pairs, origin=origin)

    def add_pair(self, pair: CorrespondencePair) -> "CalibrationModel":
        """
        Append a pair; the first pair ever added fixes the origin.

        Raises:
            ValueError: If the pair has out-of-range or non-finite coordinates
        """
        return self._with_pairs(self.pairs + (pair,))

    def set_pairs(self, pairs: Sequence[CorrespondencePair]) -> "CalibrationModel":
        """
        Replace the pair list. An origin that is already set is kept.

        Raises:
            ValueError: If any pair has out-of-range or non-finite coordinates
        """
        return self._with_pairs(tuple(pairs))

    def _index_of(self, pair_id: str) -> int:
        for i, pair in enumerate(self.pairs):
            if pair.pair_id == pair_id:
                return i
        raise KeyError(f"No pair with id {pair_id!r}")

    def set_pair_active(self, pair_id: str, active: bool) -> "CalibrationModel":
        """
        Include or exclude a pair from fitting.

        Raises:
            KeyError: If no pair has ``pair_id``
        """
        i = self._index_of(pair_id)
        pairs = list(self.pairs)
        pairs[i] = pairs[i].with_active(active)
        return self._with_pairs(tuple(pairs))

    def remove_pair(self, pair_id: str) -> "CalibrationModel":
        """
        Delete a pair. The origin is kept even if it came from this pair.

        Raises:
            KeyError: If no pair has ``pair_id``
        """
        i = self._index_of(pair_id)
        return self._with_pairs(self.pairs[:i] + self.pairs[i + 1:])

    # ------------------------------------------------------------------
    # Fitting transitions
    # ------------------------------------------------------------------

    def fit(self, rng: Optional[RandomSource] = None) -> "CalibrationModel":
        """Robust fit with the default configuration."""
        return self.fit_robust(get_default_config(), rng)

    def fit_robust(
        self,
        config: Optional[CalibrationConfig] = None,
        rng: Optional[RandomSource] = None,
    ) -> "CalibrationModel":
        """
        Fit the base transform from pixel to local meters over active pairs.

        If ``config.tps_lambda`` is set the TPS refinement is enabled on the
        result as well.

        Args:
            config: Fit configuration (defaults if None)
            rng: Uniform [0, 1) source; overrides ``config.seed``

        Returns:
            New model in FITTED (or FITTED_WITH_TPS) state

        Raises:
            InsufficientCorrespondencesError: If fewer than 2 active pairs
            RansacFailedError: If every RANSAC sample was degenerate
        """
        if config is None:
            config = get_default_config()
        active = self.active_pairs
        if len(active) < MIN_ACTIVE_PAIRS:
            raise InsufficientCorrespondencesError(MIN_ACTIVE_PAIRS, len(active))
        if rng is None:
            rng = make_rng(config.seed)

        result = calibrate(
            self.pixel_points(active),
            self.local_points(active),
            model_type=config.model_type,
            inlier_threshold=config.inlier_threshold,
            max_samples=config.max_samples,
            huber_delta=config.huber_delta,
            irls_passes=config.irls_passes,
            rng=rng,
        )
        fitted = replace(self, fit_result=result, tps=None, rmse=result.rmse)
        logger.info(
            f"Calibration fitted: {result.model_type.value}, "
            f"{result.num_inliers}/{len(active)} inliers, RMSE={result.rmse:.2f} m"
        )

        if config.tps_lambda is not None:
            fitted = fitted.enable_tps(config.tps_lambda)
        return fitted

    def enable_tps(self, lam: float) -> "CalibrationModel":
        """
        Layer a thin-plate-spline warp on the fitted base model.

        Control points are the inlier pixels; targets are the pixels the
        inverse base model assigns to the inliers' local coordinates. When
        the spline cannot be fitted (fewer than 3 inliers, singular system)
        the result is the base fit without TPS.

        Args:
            lam: Regularization added to the kernel diagonal (>= 0)

        Raises:
            ModelNotFittedError: If there is no base fit
        """
        base = self._require_model()
        inliers = self.inlier_pairs
        if len(inliers) < MIN_CONTROL_POINTS:
            logger.warning(
                f"TPS needs {MIN_CONTROL_POINTS} inliers, have {len(inliers)}; "
                f"keeping base model only"
            )
            return self.disable_tps()

        control = self.pixel_points(inliers)
        targets = apply_transform(invert_model(base), self.local_points(inliers))
        spline = ThinPlateSpline.fit(control, targets, lam)
        if spline is None:
            return self.disable_tps()

        refined = replace(self, tps=spline)
        refined = replace(refined, rmse=refined._current_rmse())
        logger.info(f"TPS enabled (lambda={lam:g}): RMSE={refined.rmse:.2f} m")
        return refined

    def disable_tps(self) -> "CalibrationModel":
        """
        Drop the TPS refinement, keeping the base model.

        Raises:
            ModelNotFittedError: If there is no base fit
        """
        self._require_model()
        plain = replace(self, tps=None)
        return replace(plain, rmse=plain._current_rmse())

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _require_model(self) -> TransformModel:
        if self.fit_result is None:
            raise ModelNotFittedError("Calibration has no fitted model. Call fit() first.")
        return self.fit_result.model

    def _require_origin(self) -> GeodeticPoint:
        if self.origin is None:
            raise OriginNotSetError("Calibration has no origin. Add a pair first.")
        return self.origin

    def forward_local_array(self, pixels: Any) -> np.ndarray:
        """Forward-project an (N, 2) pixel array to (N, 2) local meters."""
        base = self._require_model()
        pts = as_points(pixels)
        if self.tps is not None:
            pts = self.tps.warp(pts)
        return apply_transform(base, pts)

    def project_forward_local(self, pixel: PixelPoint) -> LocalPoint:
        """
        Pixel -> local meters, through the TPS warp when enabled.

        Raises:
            ModelNotFittedError: If there is no base fit
        """
        x, y = self.forward_local_array([[pixel.x, pixel.y]])[0]
        return LocalPoint(Meters(float(x)), Meters(float(y)))

    def project_forward(self, pixel: PixelPoint) -> GeodeticPoint:
        """
        Pixel -> geodetic.

        Raises:
            ModelNotFittedError: If there is no base fit
        """
        local = self.project_forward_local(pixel)
        return from_local(local, self._require_origin())

    def project_inverse(self, geodetic: GeodeticPoint) -> PixelPoint:
        """
        Geodetic -> pixel through the inverse base model (TPS not applied).

        Raises:
            ModelNotFittedError: If there is no base fit
            DegenerateConfigurationError: If the base model is singular
        """
        base = self._require_model()
        local = to_local(geodetic, self._require_origin())
        x, y = apply_transform(invert_model(base), [local.as_tuple()])[0]
        return PixelPoint(float(x), float(y))

    def get_scale(self) -> Unitless:
        """
        Approximate pixels per local meter.

        Frobenius norm of the leading 2x2 block of the inverse base model
        (normalized so its [2, 2] entry is 1), divided by √2 so a pure
        similarity returns exactly its scale.
        """
        M = invert_model(self._require_model()).to_matrix()
        M = M / M[2, 2]
        return Unitless(float(np.linalg.norm(M[:2, :2], "fro") / math.sqrt(2.0)))

    # ------------------------------------------------------------------
    # Error metrics
    # ------------------------------------------------------------------

    def error_metrics(self) -> ErrorMetrics:
        """Metrics of the current forward path over the fitted pairs."""
        active = self.active_pairs
        return ErrorMetrics(
            self.forward_local_array(self.pixel_points(active)),
            self.local_points(active),
        )

    def _current_rmse(self) -> float:
        return self.error_metrics().rmse

    def local_rmse(self, pixel: PixelPoint) -> Meters:
        """Local RMSE around the forward projection of ``pixel`` (meters)."""
        query = self.project_forward_local(pixel).as_tuple()
        return Meters(self.error_metrics().local_rmse(query))

    def heatmap(self, pixels: Any) -> np.ndarray:
        """Local RMSE (meters) at each pixel sample, in input order."""
        metrics = self.error_metrics()
        return metrics.heatmap(self.forward_local_array(pixels))

    def estimate_accuracy(
        self, pixel: PixelPoint, gps_accuracy: float = 0.0
    ) -> AccuracyEstimate:
        """
        Combine the calibration's local error with a fix's reported accuracy.

        Args:
            pixel: Pixel where the fix lands
            gps_accuracy: Reported accuracy radius of the fix (meters)

        Returns:
            AccuracyEstimate with sigma_total = sqrt(gps_accuracy² + sigma_map²)
        """
        if gps_accuracy < 0:
            raise ValueError(f"gps_accuracy must be >= 0, got {gps_accuracy}")
        sigma_map = self.local_rmse(pixel)
        return AccuracyEstimate(
            sigma_map=sigma_map,
            sigma_total=Meters(math.hypot(gps_accuracy, sigma_map)),
        )

    def pair_diagnostics(self) -> List[Dict[str, Any]]:
        """
        Stored pair records annotated with the current fit.

        Every pair gets ``local`` (from the current origin). Fitted active
        pairs also get ``residual_meters`` and ``is_inlier``; inactive pairs,
        and every pair before a fit, get None for both.
        """
        residuals: Dict[str, float] = {}
        inlier_ids = set()
        if self.fit_result is not None:
            active = self.active_pairs
            residuals = dict(zip(
                (p.pair_id for p in active), self.error_metrics().residuals.tolist()
            ))
            inlier_ids = {p.pair_id for p in self.inlier_pairs}

        records = []
        for pair in self.pairs:
            record = pair.to_dict()
            if self.origin is not None:
                local = to_local(pair.geodetic, self.origin)
                record["local"] = {"x": local.x, "y": local.y}
            fitted = pair.pair_id in residuals
            record["residual_meters"] = residuals[pair.pair_id] if fitted else None
            record["is_inlier"] = (pair.pair_id in inlier_ids) if fitted else None
            records.append(record)
        return records
