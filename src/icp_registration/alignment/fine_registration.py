"""
ICP Registration Implementation

This module implements the Iterative Closest Point (ICP) loop that aligns a
source point cloud to a fixed target. Each iteration:
1. Finds the nearest target point for every active source point
2. Drops pairs farther apart than the correspondence distance threshold
3. Rejects outlier pairs with a robust (RANSAC) rigid model
4. Estimates the rigid increment from the surviving pairs
5. Moves the working cloud and composes the increment into the total
6. Checks convergence
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TYPE_CHECKING, Union
import time

import numpy as np

from ..utils.logging import setup_logger
from ..utils.point_cloud import PointCloud, as_point_cloud, validate_indices
from ..utils.transforms import check_transform_shape, transformation_delta
from .correspondence import KDTreeSearch, NeighborSearch, find_correspondences
from .errors import InsufficientCorrespondences, RegistrationError
from .estimation import (
    PointToPlaneEstimator,
    PointToPointEstimator,
    TransformationEstimator,
    WeightedPointToPointEstimator,
)
from .rejection import CorrespondenceRejector, NullRejector, RANSACRejector

if TYPE_CHECKING:
    from ..utils.config import RegistrationConfig

logger = setup_logger(__name__)

CloudLike = Union[PointCloud, np.ndarray]


@dataclass
class RegistrationState:
    """
    Iteration state of one registration call.

    `transformation` is the increment estimated in the current iteration,
    `previous_transformation` the one from the iteration before, and
    `final_transformation` the cumulative transform from the original source
    frame. `working` is the active source cloud after the committed
    iterations.
    """

    nr_iterations: int = 0
    converged: bool = False
    transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    previous_transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    final_transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    deltas: List[float] = field(default_factory=list)
    working: Optional[PointCloud] = field(default=None, repr=False)

    @classmethod
    def start(
        cls, working: PointCloud, guess: Optional[np.ndarray] = None
    ) -> "RegistrationState":
        state = cls(working=working)
        if guess is not None:
            state.final_transformation = guess.copy()
        return state


@dataclass
class RegistrationResult:
    """Outcome of `ICPRegistration.align`."""

    aligned: PointCloud
    transformation: np.ndarray
    nr_iterations: int
    converged: bool
    fitness_score: float
    error: Optional[RegistrationError] = None
    deltas: List[float] = field(default_factory=list)
    state: Optional[RegistrationState] = field(default=None, repr=False)


class ICPRegistration:
    """
    Iterative Closest Point registration with robust correspondence rejection.

    The loop stops when the iteration count reaches `max_iterations` or when
    the sum of absolute differences between two consecutive increments drops
    below `transformation_epsilon`. Both cases report `converged=True`; compare
    `nr_iterations` with `max_iterations` to tell them apart.

    A call aborts with `converged=False` when a source point has no neighbour
    in the target or when fewer than `min_number_correspondences` pairs
    survive filtering. The failure is logged and returned in `result.error`.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        transformation_epsilon: float = 1e-8,
        corr_dist_threshold: float = 1.0,
        inlier_threshold: float = 0.05,
        min_number_correspondences: int = 3,
        estimator: Optional[TransformationEstimator] = None,
        rejector: Optional[CorrespondenceRejector] = None,
        seed: Optional[int] = None,
        normals_k: int = 10,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations (positive).
            transformation_epsilon: Convergence threshold on the sum of absolute
                differences between consecutive increments.
            corr_dist_threshold: Maximum distance between a source point and its
                nearest target point for the pair to be used.
            inlier_threshold: Inlier distance of the default RANSAC rejector.
            min_number_correspondences: Minimum pairs needed to estimate a transform.
            estimator: Transformation estimation strategy (point-to-point by default).
            rejector: Correspondence rejection strategy (RANSAC by default).
            seed: Seed for the default RANSAC rejector.
            normals_k: Neighbours used to estimate target normals when the
                estimator needs them and the target has none.
        """
        if max_iterations <= 0:
            raise ValueError("max_iterations must be a positive integer")
        if transformation_epsilon < 0:
            raise ValueError("transformation_epsilon must be non-negative")
        if corr_dist_threshold < 0:
            raise ValueError("corr_dist_threshold must be non-negative")
        if min_number_correspondences <= 0:
            raise ValueError("min_number_correspondences must be a positive integer")

        self.max_iterations = int(max_iterations)
        self.transformation_epsilon = float(transformation_epsilon)
        self.corr_dist_threshold = float(corr_dist_threshold)
        self.inlier_threshold = float(inlier_threshold)
        self.min_number_correspondences = int(min_number_correspondences)
        self.normals_k = int(normals_k)
        self.estimator: TransformationEstimator = estimator or PointToPointEstimator()
        self.rejector: CorrespondenceRejector = rejector or RANSACRejector(
            inlier_threshold=inlier_threshold,
            seed=seed,
        )

    @classmethod
    def from_config(cls, cfg: "RegistrationConfig") -> "ICPRegistration":
        """Build an engine from the `registration` section of the app config."""
        if cfg.estimator == "point_to_plane":
            estimator: TransformationEstimator = PointToPlaneEstimator()
        elif cfg.estimator == "weighted_point_to_point":
            estimator = WeightedPointToPointEstimator(
                loss=cfg.weighting.loss,
                loss_param=cfg.weighting.loss_param,
            )
        else:
            estimator = PointToPointEstimator()

        if cfg.rejection.method == "none":
            rejector: CorrespondenceRejector = NullRejector()
        else:
            rejector = RANSACRejector(
                inlier_threshold=cfg.inlier_threshold,
                max_iterations=cfg.rejection.max_iterations,
                probability=cfg.rejection.probability,
                seed=cfg.rejection.seed,
            )

        return cls(
            max_iterations=cfg.max_iterations,
            transformation_epsilon=cfg.transformation_epsilon,
            corr_dist_threshold=cfg.corr_dist_threshold,
            inlier_threshold=cfg.inlier_threshold,
            min_number_correspondences=cfg.min_number_correspondences,
            estimator=estimator,
            rejector=rejector,
            normals_k=cfg.normals_k,
        )

    def align(
        self,
        source: CloudLike,
        target: CloudLike,
        indices: Optional[Sequence[int]] = None,
        initial_transform: Optional[np.ndarray] = None,
        search: Optional[NeighborSearch] = None,
    ) -> RegistrationResult:
        """
        Align source point cloud to target using ICP.

        Args:
            source: Source point cloud (PointCloud or N x 3 array).
            target: Target point cloud (PointCloud or M x 3 array).
            indices: Optional index subset selecting the active source points.
            initial_transform: Optional 4 x 4 initial guess applied before the
                first correspondence search.
            search: Optional nearest-neighbour structure already fitted on the
                target; a k-d tree is built when omitted.

        Returns:
            RegistrationResult with the aligned active points, the cumulative
            transform, iteration count and convergence flag.
        """
        source = as_point_cloud(source)
        target = as_point_cloud(target)

        if getattr(self.estimator, "requires_target_normals", False) and not target.has_normals:
            logger.info("Estimating target normals (k=%d) for %s.", self.normals_k, type(self.estimator).__name__)
            target = target.with_normals(self.normals_k)

        if indices is None:
            active = np.arange(len(source), dtype=np.int64)
            working = source.copy()
        else:
            active = validate_indices(indices, len(source))
            working = source.select(active)

        guess = None
        if initial_transform is not None:
            guess = check_transform_shape(initial_transform, "initial_transform")
            if np.array_equal(guess, np.eye(4)):
                guess = None

        if guess is not None:
            working = working.transformed(guess)
        state = RegistrationState.start(working, guess)

        logger.info(
            "Starting ICP alignment with %d active source points and %d target points.",
            len(working),
            len(target),
        )

        if search is None:
            build_start = time.time()
            search = KDTreeSearch().fit(target.points)
            logger.debug(
                "Nearest-neighbor structure built in %.4f s.",
                time.time() - build_start,
            )

        icp_start = time.time()
        error: Optional[RegistrationError] = None
        try:
            self._run(state, target, search, active)
        except RegistrationError as e:
            error = e
            state.converged = False
            logger.error(
                "ICP aborted in %s after %d iterations: %s",
                e.stage,
                state.nr_iterations,
                e,
            )

        fitness = self.compute_fitness_score(state.working, target, search=search)
        logger.info(
            "ICP finished in %.4f s (%d iterations, converged=%s). Fitness score: %.6f",
            time.time() - icp_start,
            state.nr_iterations,
            state.converged,
            fitness,
        )

        return RegistrationResult(
            aligned=state.working,
            transformation=state.final_transformation.copy(),
            nr_iterations=state.nr_iterations,
            converged=state.converged,
            fitness_score=fitness,
            error=error,
            deltas=list(state.deltas),
            state=state,
        )

    def _run(
        self,
        state: RegistrationState,
        target: PointCloud,
        search: NeighborSearch,
        active: np.ndarray,
    ) -> None:
        dist_threshold = self.corr_dist_threshold * self.corr_dist_threshold

        while not state.converged:
            state.previous_transformation = state.transformation
            working = state.working

            correspondences = find_correspondences(working, search, active)
            candidates = correspondences.within(dist_threshold)
            good = self.rejector.reject(working, target, candidates)

            cnt = len(good)
            if cnt < self.min_number_correspondences:
                raise InsufficientCorrespondences(cnt, self.min_number_correspondences)

            logger.debug(
                "Number of correspondences %d [%.2f%%] out of %d points, rejected as outliers: %d.",
                cnt,
                cnt * 100.0 / max(1, len(working)),
                len(working),
                len(candidates) - cnt,
            )

            state.transformation = self.estimator.estimate(working, target, good)
            state.working = working.transformed(state.transformation)
            # Increments act on the already-moved cloud, so they compose on the left
            state.final_transformation = state.transformation @ state.final_transformation
            state.nr_iterations += 1

            delta = transformation_delta(state.transformation, state.previous_transformation)
            state.deltas.append(delta)
            logger.debug("Iteration %d: transformation delta=%.6e", state.nr_iterations, delta)

            if state.nr_iterations >= self.max_iterations or delta < self.transformation_epsilon:
                state.converged = True
                logger.info(
                    "ICP convergence reached after %d of %d iterations (delta=%.3e).",
                    state.nr_iterations,
                    self.max_iterations,
                    delta,
                )

    def compute_fitness_score(
        self,
        aligned: CloudLike,
        target: CloudLike,
        max_range: float = float("inf"),
        search: Optional[NeighborSearch] = None,
    ) -> float:
        """
        Mean squared nearest-neighbour distance from aligned source to target.

        Only pairs with squared distance <= `max_range` contribute.

        Args:
            aligned: Aligned source cloud.
            target: Target cloud.
            max_range: Maximum squared distance for a pair to be counted.
            search: Optional pre-built neighbour structure for the target.

        Returns:
            Fitness score, or inf when no pair qualifies.
        """
        aligned = as_point_cloud(aligned)
        target = as_point_cloud(target)
        if len(aligned) == 0 or len(target) == 0:
            logger.warning(
                "compute_fitness_score called with empty source or target "
                "(source=%d, target=%d); returning infinite score.",
                len(aligned),
                len(target),
            )
            return float("inf")

        if search is None:
            search = KDTreeSearch().fit(target.points)
        _, squared, found = search.nearest(aligned.points)
        valid = found & (squared <= max_range)
        if not np.any(valid):
            logger.warning("No valid correspondences found for fitness computation.")
            return float("inf")
        return float(np.mean(squared[valid]))

    def compute_registration_error(
        self,
        aligned: CloudLike,
        target: CloudLike,
        search: Optional[NeighborSearch] = None,
    ) -> float:
        """
        Registration error (RMSE) over pairs closer than the correspondence threshold.

        Args:
            aligned: Aligned source cloud.
            target: Target cloud.
            search: Optional pre-built neighbour structure for the target.

        Returns:
            Registration error as RMSE, or inf when no pair qualifies.
        """
        score = self.compute_fitness_score(
            aligned,
            target,
            max_range=self.corr_dist_threshold ** 2,
            search=search,
        )
        return float(np.sqrt(score))
