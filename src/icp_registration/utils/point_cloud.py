"""
Point Cloud Container

A light container for the point sets consumed by the registration engine.
Only positions are required; normals are carried along when present so that
point-to-plane estimation can use them. Width and height describe how the
points are organised (row-major grid or unstructured list) and are kept for
callers, the algorithms never look at them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, TYPE_CHECKING, Union

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .logging import setup_logger
from .transforms import apply_transformation

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = setup_logger(__name__)


@dataclass(eq=False)
class PointCloud:
    """Ordered sequence of 3D points with optional per-point normals.

    Attributes:
        points: N x 3 array of positions
        normals: Optional N x 3 array of unit normals
        width: Number of points per row (N for unorganised clouds)
        height: Number of rows (1 for unorganised clouds)

    Example:
        >>> cloud = PointCloud(np.zeros((4, 3)))
        >>> len(cloud), cloud.width, cloud.height
        (4, 4, 1)
    """

    points: "NDArray[np.floating]"
    normals: Optional["NDArray[np.floating]"] = None
    width: int = field(default=-1)
    height: int = field(default=1)

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float64)
        if points.ndim == 1 and points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] < 3:
            raise ValueError(f"Expected Nx3 array of points, got shape {points.shape}")
        self.points = points[:, :3]

        if self.normals is not None:
            normals = np.asarray(self.normals, dtype=np.float64)
            if normals.shape != self.points.shape:
                raise ValueError(
                    f"Normals shape {normals.shape} does not match points shape {self.points.shape}"
                )
            self.normals = normals

        if self.width < 0:
            self.width = len(self.points)
            self.height = 1
        if self.width * self.height != len(self.points):
            raise ValueError(
                f"width*height ({self.width}*{self.height}) does not match point count {len(self.points)}"
            )

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_organized(self) -> bool:
        return self.height > 1

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    def copy(self) -> "PointCloud":
        return PointCloud(
            points=self.points.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            width=self.width,
            height=self.height,
        )

    def select(self, indices: Optional[Sequence[int]]) -> "PointCloud":
        """Return a new unorganised cloud holding the points at `indices` in order."""
        if indices is None:
            return self.copy()
        idx = validate_indices(indices, len(self))
        return PointCloud(
            points=self.points[idx].copy(),
            normals=None if self.normals is None else self.normals[idx].copy(),
        )

    def transformed(self, transform: np.ndarray) -> "PointCloud":
        """Return a copy with positions transformed and normals rotated."""
        normals = None
        if self.normals is not None:
            normals = self.normals @ transform[:3, :3].T
        return PointCloud(
            points=apply_transformation(self.points, transform),
            normals=normals,
            width=self.width,
            height=self.height,
        )

    def with_normals(self, k: int = 10) -> "PointCloud":
        """Return a copy carrying normals estimated from the k nearest neighbours."""
        cloud = self.copy()
        cloud.normals = estimate_normals(cloud.points, k=k)
        return cloud


def as_point_cloud(data: Union[PointCloud, np.ndarray]) -> PointCloud:
    """Accept either a PointCloud or an N x 3 array."""
    if isinstance(data, PointCloud):
        return data
    return PointCloud(np.asarray(data, dtype=np.float64))


def validate_indices(indices: Sequence[int], n_points: int) -> np.ndarray:
    """
    Validate an index subset against a cloud of `n_points` points.

    Args:
        indices: Ordered indices selecting active points
        n_points: Size of the indexed cloud

    Returns:
        Indices as a 1-D int64 array

    Raises:
        ValueError: If the indices are not a 1-D integer sequence, are more
            numerous than the cloud, or fall outside [0, n_points).
    """
    idx = np.asarray(indices)
    if idx.size == 0:
        return np.empty(0, dtype=np.int64)
    if idx.ndim != 1:
        raise ValueError(f"Index subset must be one-dimensional, got shape {idx.shape}")
    if not np.issubdtype(idx.dtype, np.integer):
        raise ValueError(f"Index subset must contain integers, got dtype {idx.dtype}")
    if len(idx) > n_points:
        raise ValueError(
            f"Index subset has {len(idx)} entries but the cloud only has {n_points} points"
        )
    if idx.min() < 0 or idx.max() >= n_points:
        raise ValueError(
            f"Index subset references points outside [0, {n_points}): "
            f"min={int(idx.min())}, max={int(idx.max())}"
        )
    return idx.astype(np.int64)


def estimate_normals(points: np.ndarray, k: int = 10) -> np.ndarray:
    """
    Estimate surface normals using PCA on each point's k nearest neighbours.

    The normal is the eigenvector of the local covariance with the smallest
    eigenvalue. Orientation is not made consistent across the cloud, which is
    fine for point-to-plane residuals since they only use the normal line.

    Args:
        points: N x 3 array of point coordinates
        k: Number of neighbours (including the point itself)

    Returns:
        N x 3 array of unit normals
    """
    points = np.asarray(points, dtype=np.float64)
    n_points = len(points)
    if n_points == 0:
        return np.empty((0, 3), dtype=np.float64)
    if n_points < 3:
        logger.warning(
            "estimate_normals called with %d points; at least 3 are needed, returning zeros.",
            n_points,
        )
        return np.zeros((n_points, 3), dtype=np.float64)

    k = max(3, min(k, n_points))
    nbrs = NearestNeighbors(n_neighbors=k, algorithm="kd_tree").fit(points)
    _, idx = nbrs.kneighbors(points)

    neighbors = points[idx]  # (N, k, 3)
    centered = neighbors - neighbors.mean(axis=1, keepdims=True)
    cov = np.einsum("nki,nkj->nij", centered, centered)
    # eigh returns ascending eigenvalues; first column is the normal direction
    _, vecs = np.linalg.eigh(cov)
    normals = vecs[:, :, 0]

    norms = np.linalg.norm(normals, axis=1, keepdims=True)
    norms[norms < 1e-12] = 1.0
    return normals / norms
