"""
Snap2Map calibration core.

Maps pixels on a hand-photographed map to WGS84 coordinates and back, so a
live GPS fix can be drawn at the right spot on the photo with an honest
uncertainty radius.

Pipeline:
    pixel <-> local ENU meters <-> geodetic

    - Geodetic projection: WGS84 -> ECEF -> ENU tangent plane at an origin
    - Transform models: similarity, affine, homography (pixel -> local)
    - Robust fitter: RANSAC consensus, then Huber IRLS refinement
    - Error metrics: global RMSE and inverse-distance-weighted local RMSE
    - Optional thin-plate-spline refinement of the forward path
    - Position projector: GPS fix -> pixel, sigma_total and marker radius

Example Usage:
    >>> from snap2map import (
    ...     CalibrationModel, CorrespondencePair, GeodeticPoint, PixelPoint,
    ...     PositionFix, PositionProjector,
    ... )
    >>>
    >>> model = CalibrationModel().set_pairs([
    ...     CorrespondencePair(PixelPoint(102, 388), GeodeticPoint(39.64052, -0.23031)),
    ...     CorrespondencePair(PixelPoint(913, 402), GeodeticPoint(39.64049, -0.22935)),
    ...     CorrespondencePair(PixelPoint(498, 77), GeodeticPoint(39.64121, -0.22980)),
    ...     CorrespondencePair(PixelPoint(530, 745), GeodeticPoint(39.63990, -0.22978)),
    ... ])
    >>> model = model.fit()
    >>> position = PositionProjector(model).to_pixel(PositionFix(39.6405, -0.2300, 6.0))
    >>> print(position.pixel, position.radius_px, position.tier)
"""

from snap2map.calibration_config import CalibrationConfig, get_default_config, lambda_from_slider
from snap2map.calibration_model import AccuracyEstimate, CalibrationModel, CalibrationState
from snap2map.coordinate_converter import ENUConverter, from_local, to_local
from snap2map.correspondence import CorrespondencePair, GeodeticPoint, LocalPoint, PairDraft
from snap2map.error_metrics import ErrorMetrics, global_rmse, local_rmse
from snap2map.exceptions import (
    CalibrationError,
    DegenerateConfigurationError,
    InsufficientCorrespondencesError,
    InsufficientPairsError,
    ModelNotFittedError,
    OriginNotSetError,
    RansacFailedError,
    UnknownModelTypeError,
)
from snap2map.pixel_point import PixelPoint
from snap2map.position_projector import (
    PositionFix,
    PositionProjector,
    PositionWatch,
    ProjectedPosition,
    accuracy_tier,
)
from snap2map.robust import FitResult, calibrate, make_rng
from snap2map.tps import ThinPlateSpline
from snap2map.transforms import (
    AffineModel,
    HomographyModel,
    ModelType,
    SimilarityModel,
    apply_transform,
    compute_transform,
    fit_model,
    invert_model,
    model_from_dict,
    model_to_dict,
)

__version__ = "0.1.0"

__all__ = [
    # Calibration
    'CalibrationModel',
    'CalibrationState',
    'CalibrationConfig',
    'AccuracyEstimate',
    'get_default_config',
    'lambda_from_slider',
    # Data model
    'CorrespondencePair',
    'PairDraft',
    'GeodeticPoint',
    'LocalPoint',
    'PixelPoint',
    # Geodetic projection
    'ENUConverter',
    'to_local',
    'from_local',
    # Transforms
    'ModelType',
    'SimilarityModel',
    'AffineModel',
    'HomographyModel',
    'fit_model',
    'compute_transform',
    'apply_transform',
    'invert_model',
    'model_to_dict',
    'model_from_dict',
    # Robust fitting
    'FitResult',
    'calibrate',
    'make_rng',
    # Metrics and refinement
    'ErrorMetrics',
    'global_rmse',
    'local_rmse',
    'ThinPlateSpline',
    # Live positions
    'PositionFix',
    'ProjectedPosition',
    'PositionProjector',
    'PositionWatch',
    'accuracy_tier',
    # Errors
    'CalibrationError',
    'InsufficientPairsError',
    'InsufficientCorrespondencesError',
    'DegenerateConfigurationError',
    'UnknownModelTypeError',
    'RansacFailedError',
    'ModelNotFittedError',
    'OriginNotSetError',
]
