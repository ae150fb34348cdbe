"""
Transformation Estimation

Strategies that turn a set of correspondences into the rigid transform
that best aligns the source points onto their target partners. The ICP loop
only depends on the `TransformationEstimator` protocol, so point-to-point,
robustly weighted and point-to-plane variants are interchangeable.
"""

from __future__ import annotations

from typing import Optional, Protocol

import numpy as np

from ..utils.logging import setup_logger
from ..utils.point_cloud import PointCloud
from ..utils.transforms import make_transform, rotation_from_vector
from .correspondence import Correspondences

logger = setup_logger(__name__)


class TransformationEstimator(Protocol):
    """Computes a 4x4 rigid transform from correspondences."""

    def estimate(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> np.ndarray:
        ...


def estimate_rigid_transform(
    source_points: np.ndarray,
    target_points: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Estimate optimal rigid transformation between paired point sets.

    Closed-form least squares via SVD of the cross-covariance matrix, with a
    reflection fix so the result is always a proper rotation.

    Args:
        source_points: Source points (N x 3).
        target_points: Corresponding target points (N x 3).
        weights: Optional non-negative per-pair weights (N,).

    Returns:
        Transformation matrix (4 x 4).
    """
    if weights is None:
        source_centroid = np.mean(source_points, axis=0)
        target_centroid = np.mean(target_points, axis=0)
    else:
        source_centroid = np.average(source_points, axis=0, weights=weights)
        target_centroid = np.average(target_points, axis=0, weights=weights)

    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Cross-covariance matrix
    if weights is None:
        H = source_centered.T @ target_centered
    else:
        H = (source_centered * weights[:, None]).T @ target_centered

    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Ensure proper rotation (det(R) should be 1)
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid
    return make_transform(R, t)


class PointToPointEstimator:
    """Unweighted point-to-point least squares (SVD closed form)."""

    def estimate(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> np.ndarray:
        return estimate_rigid_transform(
            correspondences.source_points(source),
            correspondences.target_points(target),
        )


class WeightedPointToPointEstimator:
    """
    Point-to-point least squares with robust weights on the residuals.

    Weights are derived from the correspondence distances:
    - huber: 1 inside `loss_param`, `loss_param / r` outside
    - tukey: (1 - (r / loss_param)^2)^2 inside `loss_param`, 0 outside

    When every weight vanishes the unweighted solution is used instead.
    """

    def __init__(self, loss: str = "huber", loss_param: float = 1.0):
        if loss not in ("huber", "tukey"):
            raise ValueError(f"Unsupported loss function: {loss}")
        if loss_param <= 0:
            raise ValueError("loss_param must be positive")
        self.loss = loss
        self.loss_param = float(loss_param)

    def weights(self, residuals: np.ndarray) -> np.ndarray:
        c = self.loss_param
        if self.loss == "huber":
            safe = np.maximum(residuals, 1e-12)
            return np.where(residuals <= c, 1.0, c / safe)
        return np.where(residuals <= c, (1.0 - (residuals / c) ** 2) ** 2, 0.0)

    def estimate(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> np.ndarray:
        src = correspondences.source_points(source)
        tgt = correspondences.target_points(target)
        w = self.weights(np.sqrt(correspondences.squared_distances))
        if float(np.sum(w)) <= 0.0:
            logger.warning("All robust weights are zero; using unweighted estimate.")
            return estimate_rigid_transform(src, tgt)
        return estimate_rigid_transform(src, tgt, weights=w)


class PointToPlaneEstimator:
    """
    Linearised point-to-plane least squares.

    Minimises sum(((R p + t - q) . n_q)^2) under the small-angle approximation
    R ~ I + [w]x, solving for (w, t) with a linear least-squares solve and
    rebuilding an exact rotation from w. Needs normals on the target cloud.
    """

    requires_target_normals = True

    def estimate(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> np.ndarray:
        if target.normals is None:
            raise ValueError(
                "PointToPlaneEstimator requires target normals; "
                "use PointCloud.with_normals() on the target first"
            )
        src = correspondences.source_points(source)
        tgt = correspondences.target_points(target)
        normals = target.normals[correspondences.target_indices]

        A = np.empty((len(src), 6))
        A[:, :3] = np.cross(src, normals)
        A[:, 3:] = normals
        b = np.sum((tgt - src) * normals, axis=1)

        x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
        if rank < 6:
            logger.debug("Point-to-plane system is rank deficient (rank=%d).", rank)

        R = rotation_from_vector(x[:3])
        return make_transform(R, x[3:])
