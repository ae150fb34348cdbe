"""
Rigid Transformation Helpers

Small utilities around 4x4 homogeneous rigid transforms: construction,
application to point arrays, validity checks, the convergence delta used by
the ICP loop, and plain-text persistence of a matrix.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

from .logging import setup_logger

logger = setup_logger(__name__)


def make_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Build a 4x4 homogeneous matrix from a 3x3 rotation and a translation."""
    T = np.eye(4)
    T[:3, :3] = np.asarray(rotation, dtype=float)
    T[:3, 3] = np.asarray(translation, dtype=float).reshape(3)
    return T


def rotation_about_axis(axis: np.ndarray, angle: float) -> np.ndarray:
    """
    Rotation matrix for a right-handed rotation of `angle` radians about `axis`.

    Uses the Rodrigues formula; a zero-length axis yields the identity.
    """
    axis = np.asarray(axis, dtype=float).reshape(3)
    norm = float(np.linalg.norm(axis))
    if norm < 1e-12 or angle == 0.0:
        return np.eye(3)
    k = axis / norm
    K = np.array(
        [
            [0.0, -k[2], k[1]],
            [k[2], 0.0, -k[0]],
            [-k[1], k[0], 0.0],
        ]
    )
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def rotation_from_vector(rotation_vector: np.ndarray) -> np.ndarray:
    """Rotation matrix from an axis-angle vector (direction = axis, norm = angle)."""
    rotation_vector = np.asarray(rotation_vector, dtype=float).reshape(3)
    return rotation_about_axis(rotation_vector, float(np.linalg.norm(rotation_vector)))


def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point array (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed points (N x 3).
    """
    if points.size == 0:
        return points
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def is_rigid_transform(transform: np.ndarray, atol: float = 1e-6) -> bool:
    """
    Check that a 4x4 matrix is a proper rigid motion.

    The rotation block must be orthonormal with determinant +1 and the last
    row must be [0, 0, 0, 1].
    """
    T = np.asarray(transform, dtype=float)
    if T.shape != (4, 4) or not np.all(np.isfinite(T)):
        return False
    R = T[:3, :3]
    if not np.allclose(R.T @ R, np.eye(3), atol=atol):
        return False
    if abs(float(np.linalg.det(R)) - 1.0) > atol:
        return False
    return bool(np.allclose(T[3], [0.0, 0.0, 0.0, 1.0], atol=atol))


def transformation_delta(current: np.ndarray, previous: np.ndarray) -> float:
    """Sum of absolute elementwise differences between two transforms."""
    return float(np.sum(np.abs(np.asarray(current) - np.asarray(previous))))


def check_transform_shape(transform: np.ndarray, name: str = "transform") -> np.ndarray:
    """Return `transform` as a float 4x4 array or raise ValueError."""
    T = np.asarray(transform, dtype=float)
    if T.shape != (4, 4):
        raise ValueError(f"{name} must be a 4x4 matrix, got shape {T.shape}")
    return T


def save_transform_matrix(transform: np.ndarray, output_file: Union[str, Path]) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: 4x4 transformation matrix
        output_file: Path to output file
    """
    T = check_transform_shape(transform)
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(output_path, T, fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_path}")


def load_transform_matrix(input_file: Union[str, Path]) -> np.ndarray:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        4x4 transformation matrix
    """
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return transform
