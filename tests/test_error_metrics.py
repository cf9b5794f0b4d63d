"""Tests for global and inverse-distance-weighted local RMSE."""

import math

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from snap2map.error_metrics import ErrorMetrics, global_rmse, local_rmse
from snap2map.transforms import AffineModel

IDENTITY = AffineModel(a=1.0, b=0.0, c=0.0, d=1.0, tx=0.0, ty=0.0)


class TestGlobalRMSE:

    def test_known_value(self):
        assert global_rmse([3.0, 4.0]) == pytest.approx(math.sqrt(12.5))

    def test_empty_is_zero(self):
        assert global_rmse([]) == 0.0

    @given(st.lists(st.floats(min_value=0.0, max_value=1e3, allow_nan=False), min_size=1))
    @settings(max_examples=100)
    def test_bounded_by_max_residual(self, residuals):
        assert global_rmse(residuals) <= max(residuals) * (1 + 1e-12) + 1e-12


class TestLocalRMSE:

    def test_no_pairs_is_zero(self):
        assert local_rmse((0.0, 0.0), IDENTITY, [], []) == 0.0

    def test_equal_residuals_give_that_residual_everywhere(self):
        src = [(0.0, 0.0), (100.0, 0.0), (0.0, 100.0)]
        dst = [(3.0, 4.0), (103.0, 4.0), (3.0, 104.0)]
        metrics = ErrorMetrics.for_model(IDENTITY, src, dst)
        for query in [(0.0, 0.0), (50.0, 50.0), (1e4, -1e4)]:
            assert metrics.local_rmse(query) == pytest.approx(5.0)

    def test_weighting_formula(self):
        projected = [(0.0, 0.0), (10.0, 0.0)]
        observed = [(0.0, 2.0), (10.0, 0.0)]
        metrics = ErrorMetrics(projected, observed)
        w0, w1 = 1.0 / (1.0 + 0.0), 1.0 / (1.0 + 10.0)
        expected = math.sqrt((w0 * 4.0 + w1 * 0.0) / (w0 + w1))
        assert metrics.local_rmse((0.0, 0.0)) == pytest.approx(expected)

    def test_query_near_bad_pair_sees_more_error(self):
        projected = [(0.0, 0.0), (100.0, 0.0)]
        observed = [(0.0, 10.0), (100.0, 0.0)]
        metrics = ErrorMetrics(projected, observed)
        assert metrics.local_rmse((0.0, 0.0)) > metrics.local_rmse((100.0, 0.0))

    def test_adding_outlier_raises_nearby_local_rmse(self):
        src = [(0.0, 0.0), (50.0, 0.0), (0.0, 50.0), (50.0, 50.0)]
        clean = local_rmse((25.0, 25.0), IDENTITY, src, src)
        noisy = local_rmse(
            (25.0, 25.0), IDENTITY, src + [(30.0, 30.0)], src + [(60.0, -10.0)]
        )
        assert clean == 0.0
        assert noisy > clean

    def test_heatmap_preserves_order(self):
        projected = [(0.0, 0.0), (100.0, 0.0)]
        observed = [(0.0, 10.0), (100.0, 0.0)]
        metrics = ErrorMetrics(projected, observed)
        samples = [(100.0, 0.0), (0.0, 0.0), (50.0, 0.0)]
        heat = metrics.heatmap(samples)
        assert heat.shape == (3,)
        assert heat[0] == pytest.approx(metrics.local_rmse(samples[0]))
        assert heat[1] == pytest.approx(metrics.local_rmse(samples[1]))
        assert heat[0] < heat[2] < heat[1]

    def test_residuals_and_rmse(self):
        metrics = ErrorMetrics([(0.0, 0.0), (1.0, 1.0)], [(3.0, 4.0), (1.0, 1.0)])
        np.testing.assert_allclose(metrics.residuals, [5.0, 0.0])
        assert metrics.rmse == pytest.approx(math.sqrt(12.5))

    def test_count_mismatch(self):
        with pytest.raises(ValueError, match="differ"):
            ErrorMetrics([(0.0, 0.0)], [(0.0, 0.0), (1.0, 1.0)])
