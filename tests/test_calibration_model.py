#!/usr/bin/env python3
"""
Tests for the CalibrationModel state machine.

The synthetic photo (see conftest.py) maps pixels to local meters with
0.5 m per pixel and a y-down flip, so every fit should be exact.
"""

import numpy as np
import pytest

from conftest import ORIGIN, PIXELS, PIXELS_PER_METER, make_pair, true_local
from snap2map.calibration_config import CalibrationConfig
from snap2map.calibration_model import CalibrationModel, CalibrationState
from snap2map.correspondence import CorrespondencePair, GeodeticPoint
from snap2map.exceptions import (
    InsufficientCorrespondencesError,
    InsufficientPairsError,
    ModelNotFittedError,
)
from snap2map.pixel_point import PixelPoint
from snap2map.transforms import ModelType

ALWAYS_FIRST = lambda: 0.0  # noqa: E731


# ============================================================================
# Pair transitions
# ============================================================================

class TestPairTransitions:

    def test_empty_model(self):
        model = CalibrationModel()
        assert model.state is CalibrationState.NO_PAIRS
        assert model.origin is None
        assert model.pairs == ()

    def test_first_pair_fixes_origin(self, synthetic_pairs):
        model = CalibrationModel().add_pair(synthetic_pairs[0])
        assert model.origin == synthetic_pairs[0].geodetic
        model = model.add_pair(synthetic_pairs[1])
        assert model.origin == synthetic_pairs[0].geodetic

    def test_transitions_do_not_mutate(self, synthetic_pairs):
        empty = CalibrationModel()
        one = empty.add_pair(synthetic_pairs[0])
        assert empty.pairs == ()
        assert len(one.pairs) == 1

    def test_set_pairs_keeps_existing_origin(self, synthetic_pairs):
        model = CalibrationModel().add_pair(synthetic_pairs[2])
        model = model.set_pairs(synthetic_pairs)
        assert model.origin == synthetic_pairs[2].geodetic

    def test_first_pair_maps_to_local_zero(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        np.testing.assert_allclose(model.local_points(synthetic_pairs[:1]), [[0.0, 0.0]], atol=1e-9)

    def test_local_points_recomputed_from_geodetic(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        expected = [true_local(px, py) for px, py in PIXELS]
        np.testing.assert_allclose(model.local_points(synthetic_pairs), expected, atol=1e-6)

    def test_set_pair_active_drops_fit(self, synthetic_pairs):
        fitted = CalibrationModel().set_pairs(synthetic_pairs).fit(rng=ALWAYS_FIRST)
        changed = fitted.set_pair_active(synthetic_pairs[4].pair_id, False)
        assert changed.state is CalibrationState.NO_PAIRS
        assert len(changed.active_pairs) == 4
        assert fitted.state is CalibrationState.FITTED

    def test_remove_pair_keeps_origin(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        removed = model.remove_pair(synthetic_pairs[0].pair_id)
        assert len(removed.pairs) == 4
        assert removed.origin == synthetic_pairs[0].geodetic

    def test_non_finite_first_pair_is_rejected(self, synthetic_pairs):
        bad = CorrespondencePair(PixelPoint(10.0, 10.0), GeodeticPoint(float("nan"), -0.23))
        with pytest.raises(ValueError, match="latitude"):
            CalibrationModel().set_pairs([bad] + synthetic_pairs[1:3])
        with pytest.raises(ValueError, match="latitude"):
            CalibrationModel().add_pair(bad)

    def test_non_finite_later_pair_is_rejected(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs[:2])
        bad = CorrespondencePair(PixelPoint(float("inf"), 10.0), ORIGIN)
        with pytest.raises(ValueError, match="pixel"):
            model.add_pair(bad)
        assert len(model.pairs) == 2

    def test_unknown_pair_id(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        with pytest.raises(KeyError):
            model.remove_pair("missing")
        with pytest.raises(KeyError):
            model.set_pair_active("missing", False)


# ============================================================================
# Fitting
# ============================================================================

class TestFit:

    def test_fewer_than_two_active_pairs(self, synthetic_pairs):
        model = CalibrationModel().add_pair(synthetic_pairs[0])
        with pytest.raises(InsufficientCorrespondencesError):
            model.fit()

    def test_inactive_pairs_do_not_count(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs[:3])
        model = model.set_pair_active(synthetic_pairs[1].pair_id, False)
        model = model.set_pair_active(synthetic_pairs[2].pair_id, False)
        with pytest.raises(InsufficientCorrespondencesError):
            model.fit()

    def test_fit_selects_model_by_count(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs[:3]).fit(rng=ALWAYS_FIRST)
        assert model.model_type is ModelType.AFFINE
        model = CalibrationModel().set_pairs(synthetic_pairs).fit(rng=ALWAYS_FIRST)
        assert model.model_type is ModelType.HOMOGRAPHY

    def test_requested_model_type_must_be_satisfiable(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs[:3])
        with pytest.raises(InsufficientPairsError):
            model.fit_robust(CalibrationConfig(model_type="homography"))

    def test_exact_data_fits_exactly(self, fitted_calibration):
        assert fitted_calibration.state is CalibrationState.FITTED
        assert fitted_calibration.rmse < 1e-3
        assert fitted_calibration.fit_result.num_inliers == 5

    def test_seeded_fit_is_reproducible(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        a = model.fit_robust(CalibrationConfig(seed=9, model_type="affine"))
        b = model.fit_robust(CalibrationConfig(seed=9, model_type="affine"))
        assert a.base_model == b.base_model

    def test_outlier_flagged_in_diagnostics(self):
        pairs = [make_pair(px, py) for px, py in PIXELS[:4]]
        pairs.append(make_pair(400.0, 330.0, local=(150.0, 60.0)))
        model = CalibrationModel().set_pairs(pairs)
        model = model.fit_robust(CalibrationConfig(model_type="affine", seed=3))

        records = model.pair_diagnostics()
        assert [r["is_inlier"] for r in records] == [True, True, True, True, False]
        assert all(r["residual_meters"] < 1e-3 for r in records[:4])
        assert records[4]["residual_meters"] > 100.0
        assert records[4]["pair_id"] == pairs[4].pair_id

    def test_diagnostics_before_fit_and_for_inactive_pairs(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        assert all(r["residual_meters"] is None for r in model.pair_diagnostics())

        model = model.set_pair_active(synthetic_pairs[4].pair_id, False).fit(rng=ALWAYS_FIRST)
        records = model.pair_diagnostics()
        assert records[4]["active"] is False
        assert records[4]["is_inlier"] is None
        assert records[0]["local"] == pytest.approx({"x": 0.0, "y": 0.0}, abs=1e-9)


# ============================================================================
# Projection
# ============================================================================

class TestProjection:

    def test_projection_requires_fit(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        with pytest.raises(ModelNotFittedError):
            model.project_forward(PixelPoint(0.0, 0.0))
        with pytest.raises(ModelNotFittedError):
            model.project_inverse(ORIGIN)
        with pytest.raises(ModelNotFittedError):
            model.get_scale()

    def test_forward_reaches_pair_geodetic(self, fitted_calibration):
        for pair in fitted_calibration.pairs:
            geo = fitted_calibration.project_forward(pair.pixel)
            assert geo.lat == pytest.approx(pair.geodetic.lat, abs=1e-8)
            assert geo.lon == pytest.approx(pair.geodetic.lon, abs=1e-8)

    def test_inverse_reaches_pair_pixel(self, fitted_calibration):
        for pair in fitted_calibration.pairs:
            pixel = fitted_calibration.project_inverse(pair.geodetic)
            assert pixel.x == pytest.approx(pair.pixel.x, abs=1e-3)
            assert pixel.y == pytest.approx(pair.pixel.y, abs=1e-3)

    def test_forward_inverse_round_trip(self, fitted_calibration):
        pixel = PixelPoint(731.0, 42.5)
        back = fitted_calibration.project_inverse(fitted_calibration.project_forward(pixel))
        assert back.x == pytest.approx(pixel.x, abs=1e-3)
        assert back.y == pytest.approx(pixel.y, abs=1e-3)

    def test_forward_local(self, fitted_calibration):
        local = fitted_calibration.project_forward_local(PixelPoint(300.0, 260.0))
        assert local.as_tuple() == pytest.approx(true_local(300.0, 260.0), abs=1e-6)

    def test_scale_is_pixels_per_meter(self, fitted_calibration):
        assert fitted_calibration.get_scale() == pytest.approx(PIXELS_PER_METER, rel=1e-6)

    def test_estimate_accuracy(self, fitted_calibration):
        estimate = fitted_calibration.estimate_accuracy(PixelPoint(400.0, 330.0), 8.0)
        assert estimate.sigma_map < 1e-3
        assert estimate.sigma_total == pytest.approx(8.0, abs=1e-3)
        assert estimate.sigma_total >= estimate.sigma_map

    def test_heatmap_shape(self, fitted_calibration):
        heat = fitted_calibration.heatmap([(0.0, 0.0), (200.0, 160.0), (900.0, 700.0)])
        assert heat.shape == (3,)
        assert np.all(heat < 1e-3)


# ============================================================================
# Thin-plate-spline refinement
# ============================================================================

class TestTPS:

    def test_enable_and_disable(self, fitted_calibration):
        refined = fitted_calibration.enable_tps(1.0)
        assert refined.state is CalibrationState.FITTED_WITH_TPS
        assert refined.base_model is fitted_calibration.base_model
        assert refined.rmse < 1e-3

        plain = refined.disable_tps()
        assert plain.state is CalibrationState.FITTED
        assert plain.tps is None
        assert plain.base_model is fitted_calibration.base_model

    def test_inverse_ignores_tps(self):
        pairs = [make_pair(px, py) for px, py in PIXELS[:4]]
        # Center pair is 2 m off the global model: an inlier the TPS bends toward
        pairs.append(make_pair(400.0, 330.0, local=(102.0, -85.0)))
        fitted = CalibrationModel().set_pairs(pairs).fit(rng=ALWAYS_FIRST)
        refined = fitted.enable_tps(0.0)

        geo = pairs[4].geodetic
        assert refined.project_inverse(geo) == fitted.project_inverse(geo)
        assert refined.rmse < fitted.rmse

    def test_too_few_inliers_falls_back(self, synthetic_pairs):
        fitted = CalibrationModel().set_pairs(synthetic_pairs[:2]).fit(rng=ALWAYS_FIRST)
        result = fitted.enable_tps(1.0)
        assert result.state is CalibrationState.FITTED

    def test_requires_fit(self, synthetic_pairs):
        with pytest.raises(ModelNotFittedError):
            CalibrationModel().set_pairs(synthetic_pairs).enable_tps(1.0)

    def test_config_lambda_enables_tps(self, synthetic_pairs):
        model = CalibrationModel().set_pairs(synthetic_pairs)
        fitted = model.fit_robust(CalibrationConfig(tps_lambda=1.0), rng=ALWAYS_FIRST)
        assert fitted.state is CalibrationState.FITTED_WITH_TPS
