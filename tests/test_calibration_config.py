"""Tests for CalibrationConfig YAML loading and validation."""

import pytest
import yaml

from snap2map.calibration_config import (
    CalibrationConfig,
    get_default_config,
    lambda_from_slider,
)
from snap2map.exceptions import UnknownModelTypeError
from snap2map.transforms import ModelType


class TestDefaults:

    def test_default_values(self):
        config = get_default_config()
        assert config.inlier_threshold == 40.0
        assert config.max_samples == 150
        assert config.huber_delta == 35.0
        assert config.irls_passes == 1
        assert config.model_type is None
        assert config.tps_lambda is None
        assert config.seed is None


class TestFromDict:

    def test_partial_dict_keeps_defaults(self):
        config = CalibrationConfig.from_dict({"inlier_threshold": 25, "model_type": "affine"})
        assert config.inlier_threshold == 25.0
        assert config.model_type is ModelType.AFFINE
        assert config.max_samples == 150

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="inlier_treshold"):
            CalibrationConfig.from_dict({"inlier_treshold": 10})

    @pytest.mark.parametrize("key,value", [
        ("inlier_threshold", 0),
        ("inlier_threshold", "forty"),
        ("max_samples", 2.5),
        ("max_samples", 0),
        ("huber_delta", -1.0),
        ("irls_passes", -1),
        ("tps_lambda", -0.5),
        ("seed", True),
    ])
    def test_invalid_values_name_the_field(self, key, value):
        with pytest.raises(ValueError, match=key):
            CalibrationConfig.from_dict({key: value})

    def test_unknown_model_type(self):
        with pytest.raises(UnknownModelTypeError):
            CalibrationConfig.from_dict({"model_type": "spline"})

    def test_not_a_dict(self):
        with pytest.raises(ValueError):
            CalibrationConfig.from_dict(["inlier_threshold", 40])

    def test_model_type_string_in_constructor(self):
        assert CalibrationConfig(model_type="homography").model_type is ModelType.HOMOGRAPHY


class TestYaml:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "calibration.yaml"
        config = CalibrationConfig(inlier_threshold=12.5, model_type="affine", tps_lambda=0.1, seed=4)
        config.save_to_yaml(str(path))

        raw = yaml.safe_load(path.read_text())
        assert raw["calibration"]["model_type"] == "affine"

        loaded = CalibrationConfig.from_yaml(str(path))
        assert loaded == config

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CalibrationConfig.from_yaml(str(tmp_path / "nope.yaml"))

    def test_missing_section(self, tmp_path):
        path = tmp_path / "calibration.yaml"
        path.write_text("homography:\n  approach: affine\n")
        with pytest.raises(ValueError, match="calibration"):
            CalibrationConfig.from_yaml(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "calibration.yaml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            CalibrationConfig.from_yaml(str(path))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "calibration.yaml"
        path.write_text("calibration: [unclosed\n")
        with pytest.raises(ValueError, match="parse"):
            CalibrationConfig.from_yaml(str(path))


class TestSlider:

    @pytest.mark.parametrize("position,expected", [
        (0, 1e-5),
        (40, 0.1),
        (50, 1.0),
        (60, 10.0),
        (100, 1e5),
    ])
    def test_mapping(self, position, expected):
        assert lambda_from_slider(position) == pytest.approx(expected)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            lambda_from_slider(101)
