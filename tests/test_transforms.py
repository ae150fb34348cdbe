"""
Tests for rigid transformation helpers.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from icp_registration.utils.transforms import (
    apply_transformation,
    is_rigid_transform,
    load_transform_matrix,
    make_transform,
    rotation_about_axis,
    rotation_from_vector,
    save_transform_matrix,
    transformation_delta,
)


def test_rotation_about_z_quarter_turn():
    R = rotation_about_axis(np.array([0.0, 0.0, 2.0]), np.pi / 2)
    assert np.allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
    assert np.allclose(R @ [0.0, 0.0, 1.0], [0.0, 0.0, 1.0])


def test_rotation_from_zero_vector_is_identity():
    assert np.array_equal(rotation_from_vector(np.zeros(3)), np.eye(3))


def test_apply_transformation_matches_homogeneous_product():
    rng = np.random.default_rng(0)
    pts = rng.normal(size=(20, 3))
    T = make_transform(rotation_about_axis(np.array([1.0, 2.0, 3.0]), 0.3), [1.0, 2.0, 3.0])

    homog = np.column_stack([pts, np.ones(len(pts))])
    expected = (T @ homog.T).T[:, :3]

    assert np.allclose(apply_transformation(pts, T), expected)
    assert apply_transformation(np.empty((0, 3)), T).shape == (0, 3)


def test_is_rigid_transform():
    T = make_transform(rotation_about_axis(np.array([0.0, 1.0, 0.0]), 1.2), [4.0, 5.0, 6.0])
    assert is_rigid_transform(T)
    assert is_rigid_transform(T @ T @ T)

    scaled = T.copy()
    scaled[:3, :3] *= 1.1
    assert not is_rigid_transform(scaled)

    reflected = np.diag([1.0, 1.0, -1.0, 1.0])
    assert not is_rigid_transform(reflected)
    assert not is_rigid_transform(np.eye(3))


def test_transformation_delta_sums_absolute_differences():
    a = np.eye(4)
    b = np.eye(4)
    b[0, 3] = 0.5
    b[1, 3] = -0.25
    assert transformation_delta(a, b) == pytest.approx(0.75)
    assert transformation_delta(a, a) == 0.0


def test_save_and_load_transform(tmp_path):
    T = make_transform(rotation_about_axis(np.array([1.0, 0.0, 0.0]), 0.5), [1.0, -2.0, 3.0])
    path = tmp_path / "nested" / "transform.txt"

    save_transform_matrix(T, path)
    loaded = load_transform_matrix(path)

    assert np.allclose(loaded, T)


def test_save_rejects_wrong_shape(tmp_path):
    with pytest.raises(ValueError):
        save_transform_matrix(np.eye(3), tmp_path / "bad.txt")


def test_load_rejects_wrong_shape(tmp_path):
    path = tmp_path / "bad.txt"
    np.savetxt(path, np.eye(3))
    with pytest.raises(ValueError):
        load_transform_matrix(path)
