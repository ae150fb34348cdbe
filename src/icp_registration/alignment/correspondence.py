"""
Correspondence Search

Nearest-neighbour correspondences between the working source cloud and the
fixed target. The spatial index is a collaborator behind the small
`NeighborSearch` contract; `KDTreeSearch` is the scikit-learn backed default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger
from ..utils.point_cloud import PointCloud
from .errors import NeighborSearchFailed

logger = setup_logger(__name__)


class NeighborSearch(Protocol):
    """Single nearest-neighbour lookup over a fitted target point set."""

    def fit(self, points: np.ndarray) -> "NeighborSearch":
        ...

    def nearest(self, query: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Return (indices, squared_distances, found) for each query point.

        `found[i]` is False when no neighbour exists for query i; the
        corresponding index and distance are then meaningless.
        """
        ...


class KDTreeSearch:
    """
    Nearest-neighbour search over a k-d tree built once per target cloud.

    Queries with non-finite coordinates, or any query against an empty
    target, report "not found" instead of raising.
    """

    def __init__(self, leaf_size: int = 30):
        self.leaf_size = leaf_size
        self._nbrs: Optional[NearestNeighbors] = None
        self.n_points_ = 0

    def fit(self, points: np.ndarray) -> "KDTreeSearch":
        points = np.asarray(points, dtype=np.float64)
        self.n_points_ = len(points)
        if self.n_points_ == 0:
            logger.warning("KDTreeSearch fitted on an empty target; every query will miss.")
            self._nbrs = None
            return self
        self._nbrs = NearestNeighbors(
            n_neighbors=1,
            algorithm="kd_tree",
            leaf_size=self.leaf_size,
        ).fit(points)
        return self

    def nearest(self, query: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        query = np.asarray(query, dtype=np.float64)
        n = len(query)
        indices = np.full(n, -1, dtype=np.int64)
        squared = np.full(n, np.inf, dtype=np.float64)
        found = np.zeros(n, dtype=bool)

        if self._nbrs is None or n == 0:
            return indices, squared, found

        finite = np.all(np.isfinite(query), axis=1)
        if np.any(finite):
            distances, idx = self._nbrs.kneighbors(query[finite])
            indices[finite] = idx.ravel()
            squared[finite] = distances.ravel() ** 2
            found[finite] = True
        return indices, squared, found


@dataclass(eq=False)
class Correspondences:
    """
    Source/target index pairs with the squared distance at query time.

    `source_indices` are positions in the working (active) source cloud,
    `target_indices` positions in the target cloud.
    """

    source_indices: np.ndarray
    target_indices: np.ndarray
    squared_distances: np.ndarray

    def __post_init__(self) -> None:
        self.source_indices = np.asarray(self.source_indices, dtype=np.int64).reshape(-1)
        self.target_indices = np.asarray(self.target_indices, dtype=np.int64).reshape(-1)
        self.squared_distances = np.asarray(self.squared_distances, dtype=np.float64).reshape(-1)
        n = len(self.source_indices)
        if len(self.target_indices) != n or len(self.squared_distances) != n:
            raise ValueError(
                "Correspondence arrays must have equal length "
                f"(source={n}, target={len(self.target_indices)}, "
                f"distances={len(self.squared_distances)})"
            )

    def __len__(self) -> int:
        return len(self.source_indices)

    @classmethod
    def empty(cls) -> "Correspondences":
        return cls(
            np.empty(0, dtype=np.int64),
            np.empty(0, dtype=np.int64),
            np.empty(0, dtype=np.float64),
        )

    def select(self, selection: Union[np.ndarray, list]) -> "Correspondences":
        """Subset by boolean mask or positions, keeping each pair intact."""
        return Correspondences(
            self.source_indices[selection],
            self.target_indices[selection],
            self.squared_distances[selection],
        )

    def within(self, max_squared_distance: float) -> "Correspondences":
        """Keep pairs whose squared distance is strictly below the threshold."""
        return self.select(self.squared_distances < max_squared_distance)

    def source_points(self, source: PointCloud) -> np.ndarray:
        return source.points[self.source_indices]

    def target_points(self, target: PointCloud) -> np.ndarray:
        return target.points[self.target_indices]


def find_correspondences(
    source: PointCloud,
    search: NeighborSearch,
    indices: Optional[np.ndarray] = None,
) -> Correspondences:
    """
    Find the nearest target point for every point of the working cloud.

    All points are queried before any filtering decision is made, and the
    result keeps the working-cloud order.

    Args:
        source: Working source cloud (the active points only).
        search: Nearest-neighbour structure fitted on the target.
        indices: Original cloud index of each working point, used when
            reporting a miss. Defaults to the working positions.

    Returns:
        Correspondences for all working points.

    Raises:
        NeighborSearchFailed: If any point has no neighbour in the target.
    """
    target_indices, squared, found = search.nearest(source.points)

    if not np.all(found):
        first_miss = int(np.flatnonzero(~found)[0])
        point_index = int(indices[first_miss]) if indices is not None else first_miss
        raise NeighborSearchFailed(point_index)

    return Correspondences(
        source_indices=np.arange(len(source), dtype=np.int64),
        target_indices=target_indices,
        squared_distances=squared,
    )
