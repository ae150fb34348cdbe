"""Tests for configuration loading and validation."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from icp_registration.utils.config import load_config, AppConfig, RegistrationConfig


def test_default_config_registration_settings():
    """Test that default.yaml matches the engine defaults."""
    cfg = load_config(None)

    assert cfg.registration.max_iterations == 100
    assert cfg.registration.transformation_epsilon == 1e-8
    assert cfg.registration.corr_dist_threshold == 1.0
    assert cfg.registration.inlier_threshold == 0.05
    assert cfg.registration.min_number_correspondences == 3
    assert cfg.registration.estimator == "point_to_point"
    assert cfg.registration.rejection.method == "ransac"
    assert cfg.registration.rejection.max_iterations == 1000
    assert cfg.registration.rejection.seed is None
    assert cfg.coarse.enabled is False
    assert cfg.logging.level == "INFO"


def test_yaml_defaults_match_model_defaults():
    assert load_config(None).model_dump() == AppConfig().model_dump()


def test_partial_yaml_overrides(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text(
        "registration:\n"
        "  max_iterations: 25\n"
        "  rejection:\n"
        "    method: none\n"
        "    seed: 7\n"
        "coarse:\n"
        "  enabled: true\n"
        "  method: pca\n",
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.registration.max_iterations == 25
    assert cfg.registration.rejection.method == "none"
    assert cfg.registration.rejection.seed == 7
    # Untouched values keep their defaults
    assert cfg.registration.corr_dist_threshold == 1.0
    assert cfg.coarse.method == "pca"


@pytest.mark.parametrize(
    "body",
    [
        "registration:\n  max_iterations: 0\n",
        "registration:\n  transformation_epsilon: -1.0\n",
        "registration:\n  estimator: point_to_line\n",
        "registration:\n  rejection:\n    probability: 1.5\n",
    ],
)
def test_invalid_values_raise_value_error(tmp_path, body):
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path)


def test_missing_file_handling(tmp_path):
    missing = tmp_path / "does_not_exist.yaml"

    assert isinstance(load_config(missing), AppConfig)
    with pytest.raises(FileNotFoundError):
        load_config(missing, allow_missing=False)


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path).registration == RegistrationConfig()
