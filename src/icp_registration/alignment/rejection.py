"""
Correspondence Rejection

Robust removal of gross outliers from a correspondence set before the
transform is estimated. `RANSACRejector` runs random sample consensus over a
rigid-motion model; `NullRejector` passes everything through.
"""

from __future__ import annotations

import math
from typing import Optional, Protocol, Tuple

import numpy as np

from ..utils.logging import setup_logger
from ..utils.point_cloud import PointCloud
from .correspondence import Correspondences
from .errors import DegenerateRobustFit
from .estimation import estimate_rigid_transform

logger = setup_logger(__name__)

# Samples whose triangle has sin(angle) below this are treated as colinear
_COLINEAR_SIN_TOLERANCE = 1e-6


class CorrespondenceRejector(Protocol):
    """Selects a consistent subset of correspondences."""

    def reject(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> Correspondences:
        ...


class NullRejector:
    """Keeps every correspondence."""

    def reject(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> Correspondences:
        return correspondences


def _is_degenerate_triplet(points: np.ndarray) -> bool:
    e1 = points[1] - points[0]
    e2 = points[2] - points[0]
    n1 = float(np.linalg.norm(e1))
    n2 = float(np.linalg.norm(e2))
    if n1 < 1e-12 or n2 < 1e-12:
        return True
    if float(np.linalg.norm(points[2] - points[1])) < 1e-12:
        return True
    sin_angle = float(np.linalg.norm(np.cross(e1, e2))) / (n1 * n2)
    return sin_angle < _COLINEAR_SIN_TOLERANCE


class RANSACRejector:
    """
    Random sample consensus over a rigid registration model.

    Each trial draws a minimal sample of correspondences, fits a rigid
    transform to it, and counts the pairs whose transformed source point lies
    within `inlier_threshold` of its target partner. The sample with the most
    inliers wins (the first one found on ties). The number of trials is capped
    by `max_iterations` and may stop earlier once the adaptive RANSAC bound
    for the requested `probability` is reached.

    When no model better than the trivial one can be fitted (too few
    correspondences, only degenerate samples, or no inliers at all) the
    original correspondence set is returned unchanged.

    Args:
        inlier_threshold: Maximum residual distance for a pair to count as inlier.
        max_iterations: Hard cap on the number of trials.
        probability: Desired probability of drawing at least one outlier-free sample.
        sample_size: Correspondences per minimal sample (3 for a rigid motion).
        seed: Seed for the sampler; None draws fresh entropy.
    """

    def __init__(
        self,
        inlier_threshold: float = 0.05,
        max_iterations: int = 1000,
        probability: float = 0.99,
        sample_size: int = 3,
        seed: Optional[int] = None,
    ):
        if inlier_threshold < 0:
            raise ValueError("inlier_threshold must be non-negative")
        if max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if not 0.0 < probability < 1.0:
            raise ValueError("probability must lie in (0, 1)")
        if sample_size < 3:
            raise ValueError("A rigid model needs at least 3 correspondences per sample")
        self.inlier_threshold = float(inlier_threshold)
        self.max_iterations = int(max_iterations)
        self.probability = float(probability)
        self.sample_size = int(sample_size)
        self.seed = seed
        self.rng = np.random.default_rng(seed)
        # Diagnostics from the most recent call
        self.model_: Optional[np.ndarray] = None
        self.n_trials_ = 0

    def reject(
        self,
        source: PointCloud,
        target: PointCloud,
        correspondences: Correspondences,
    ) -> Correspondences:
        src = correspondences.source_points(source)
        tgt = correspondences.target_points(target)
        try:
            model, inliers = self._compute_model(src, tgt)
        except DegenerateRobustFit as e:
            logger.debug("%s; keeping all %d correspondences.", e, len(correspondences))
            self.model_ = None
            return correspondences

        self.model_ = model
        kept = correspondences.select(inliers)
        logger.debug(
            "RANSAC kept %d of %d correspondences after %d trials.",
            len(kept),
            len(correspondences),
            self.n_trials_,
        )
        return kept

    def _compute_model(self, src: np.ndarray, tgt: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n = len(src)
        self.n_trials_ = 0
        if n < self.sample_size:
            raise DegenerateRobustFit(
                f"{n} correspondences, fewer than the minimal sample size {self.sample_size}"
            )

        threshold_sq = self.inlier_threshold ** 2
        best_model: Optional[np.ndarray] = None
        best_inliers: Optional[np.ndarray] = None
        best_count = 0

        k = float(self.max_iterations)
        max_skip = self.max_iterations * 10
        skipped = 0
        trials = 0

        while trials < min(k, self.max_iterations) and skipped < max_skip:
            sample = self.rng.choice(n, self.sample_size, replace=False)
            if _is_degenerate_triplet(src[sample[:3]]) or _is_degenerate_triplet(tgt[sample[:3]]):
                skipped += 1
                continue

            model = estimate_rigid_transform(src[sample], tgt[sample])
            residuals = src @ model[:3, :3].T + model[:3, 3] - tgt
            inliers = np.einsum("ij,ij->i", residuals, residuals) < threshold_sq
            count = int(np.count_nonzero(inliers))

            if count > best_count:
                best_count = count
                best_model = model
                best_inliers = inliers

                w = best_count / n
                p_no_outliers = 1.0 - w ** self.sample_size
                eps = np.finfo(float).eps
                p_no_outliers = min(max(p_no_outliers, eps), 1.0 - eps)
                k = math.log(1.0 - self.probability) / math.log(p_no_outliers)

            trials += 1

        self.n_trials_ = trials
        if best_model is None:
            if skipped >= max_skip:
                raise DegenerateRobustFit(f"all {skipped} drawn samples were degenerate")
            raise DegenerateRobustFit("no model with at least one inlier")
        return best_model, best_inliers
