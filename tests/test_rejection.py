"""
Tests for RANSAC correspondence rejection.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from icp_registration.alignment.correspondence import Correspondences
from icp_registration.alignment.estimation import estimate_rigid_transform
from icp_registration.alignment.rejection import NullRejector, RANSACRejector
from icp_registration.utils.point_cloud import PointCloud
from icp_registration.utils.transforms import apply_transformation, make_transform, rotation_about_axis


def _pairs(src: np.ndarray, tgt: np.ndarray, target_indices: np.ndarray) -> Correspondences:
    diff = src - tgt[target_indices]
    return Correspondences(
        source_indices=np.arange(len(src)),
        target_indices=target_indices,
        squared_distances=np.einsum("ij,ij->i", diff, diff),
    )


def _contaminated_problem(n: int = 200, outlier_fraction: float = 0.35, seed: int = 0):
    rng = np.random.default_rng(seed)
    src = rng.uniform(-5.0, 5.0, size=(n, 3))
    T_true = make_transform(
        rotation_about_axis(np.array([0.3, -0.2, 1.0]), np.deg2rad(20.0)),
        [1.0, -2.0, 0.5],
    )
    tgt = apply_transformation(src, T_true)

    target_indices = np.arange(n)
    n_out = int(outlier_fraction * n)
    outliers = rng.choice(n, n_out, replace=False)
    # Point each outlier at the target of a different source point
    target_indices[outliers] = (outliers + n // 2) % n
    inliers = np.setdiff1d(np.arange(n), outliers)
    return PointCloud(src), PointCloud(tgt), _pairs(src, tgt, target_indices), inliers, T_true


def _transform_error(T: np.ndarray, T_true: np.ndarray) -> float:
    return float(np.sum(np.abs(T - T_true)))


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_ransac_excludes_gross_mismatches(seed):
    source, target, corr, inliers, T_true = _contaminated_problem(seed=seed)
    rejector = RANSACRejector(inlier_threshold=0.05, seed=seed)

    kept = rejector.reject(source, target, corr)

    assert set(kept.source_indices.tolist()) == set(inliers.tolist())
    assert np.array_equal(kept.target_indices, corr.target_indices[kept.source_indices])

    robust = estimate_rigid_transform(kept.source_points(source), kept.target_points(target))
    naive = estimate_rigid_transform(corr.source_points(source), corr.target_points(target))
    assert _transform_error(robust, T_true) < _transform_error(naive, T_true)
    assert np.allclose(robust, T_true, atol=1e-6)


def test_ransac_keeps_everything_on_clean_data():
    rng = np.random.default_rng(10)
    src = rng.uniform(-1.0, 1.0, size=(50, 3))
    tgt = apply_transformation(src, make_transform(np.eye(3), [0.1, 0.0, 0.0]))
    corr = _pairs(src, tgt, np.arange(50))

    kept = RANSACRejector(inlier_threshold=0.01, seed=0).reject(PointCloud(src), PointCloud(tgt), corr)

    assert len(kept) == 50


def test_too_few_correspondences_returns_original_set():
    src = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    corr = _pairs(src, src, np.arange(2))

    kept = RANSACRejector(seed=0).reject(PointCloud(src), PointCloud(src), corr)

    assert kept is corr
    assert len(kept) == 2


def test_colinear_correspondences_return_original_set():
    t = np.linspace(0.0, 1.0, 12)[:, None]
    src = t * np.array([[1.0, 2.0, 3.0]])
    tgt = src + np.array([0.5, 0.0, 0.0])
    corr = _pairs(src, tgt, np.arange(12))

    rejector = RANSACRejector(max_iterations=50, seed=0)
    kept = rejector.reject(PointCloud(src), PointCloud(tgt), corr)

    assert kept is corr
    assert np.array_equal(kept.source_indices, np.arange(12))
    assert np.array_equal(kept.target_indices, np.arange(12))
    assert rejector.model_ is None


def test_no_inliers_returns_original_set():
    rng = np.random.default_rng(11)
    src = rng.uniform(-1.0, 1.0, size=(20, 3))
    corr = _pairs(src, src, np.arange(20))

    # A zero threshold admits no residual, so no model beats the trivial one
    kept = RANSACRejector(inlier_threshold=0.0, max_iterations=20, seed=0).reject(
        PointCloud(src), PointCloud(src), corr
    )

    assert kept is corr


def test_seeded_rejection_is_reproducible():
    source, target, corr, _, _ = _contaminated_problem(n=120, outlier_fraction=0.5, seed=7)
    noisy = PointCloud(target.points + np.random.default_rng(0).normal(scale=0.02, size=target.points.shape))

    a = RANSACRejector(inlier_threshold=0.05, seed=123).reject(source, noisy, corr)
    b = RANSACRejector(inlier_threshold=0.05, seed=123).reject(source, noisy, corr)

    assert np.array_equal(a.source_indices, b.source_indices)
    assert np.array_equal(a.target_indices, b.target_indices)


def test_null_rejector_passes_through():
    src = np.eye(3)
    corr = _pairs(src, src, np.arange(3))
    assert NullRejector().reject(PointCloud(src), PointCloud(src), corr) is corr


@pytest.mark.parametrize(
    "kwargs",
    [
        {"inlier_threshold": -1.0},
        {"max_iterations": 0},
        {"probability": 1.0},
        {"sample_size": 2},
    ],
)
def test_invalid_parameters_raise(kwargs):
    with pytest.raises(ValueError):
        RANSACRejector(**kwargs)
