"""
Coarse Registration Methods

Initial-guess providers for the ICP loop. ICP only finds the nearest local
minimum, so a source that is offset from the target by a large fraction of
its own extent benefits from a rough pre-alignment.

Methods implemented:
- centroid: translation-only alignment by centroids
- pca: rigid alignment by principal axes, then centroid translation
- none: identity

All methods return a 4x4 transform suitable for `ICPRegistration.align(initial_transform=...)`.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..utils.logging import setup_logger
from ..utils.point_cloud import as_point_cloud
from ..utils.transforms import apply_transformation, make_transform
from .correspondence import KDTreeSearch

logger = setup_logger(__name__)


@dataclass
class CoarseRegistration:
    method: str = "centroid"  # centroid | pca | none

    def compute_initial_transform(self, source, target) -> np.ndarray:
        """
        Compute a coarse initial transform aligning source -> target.

        Args:
            source: PointCloud or Nx3 array
            target: PointCloud or Mx3 array

        Returns:
            4x4 transform matrix
        """
        method = self.method.lower()
        if method == "none":
            return np.eye(4)

        src = as_point_cloud(source).points
        dst = as_point_cloud(target).points
        if src.size == 0 or dst.size == 0:
            logger.warning("CoarseRegistration: empty inputs; returning identity transform.")
            return np.eye(4)

        if method == "centroid":
            return self._centroid_transform(src, dst)
        if method == "pca":
            T = self._pca_transform(src, dst)
            return self._validate_or_fallback(src, dst, T)

        raise ValueError(f"Unknown coarse registration method '{self.method}'")

    # ------------------------ Methods ------------------------
    def _centroid_transform(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        T = np.eye(4)
        T[:3, 3] = np.mean(dst, axis=0) - np.mean(src, axis=0)
        return T

    def _pca_transform(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        c_src = np.mean(src, axis=0)
        c_dst = np.mean(dst, axis=0)
        A = src - c_src
        B = dst - c_dst

        # Small regularisation keeps eigh stable on flat or linear clouds
        C_A = (A.T @ A) / max(1, len(A)) + 1e-12 * np.eye(3)
        C_B = (B.T @ B) / max(1, len(B)) + 1e-12 * np.eye(3)

        wA, VA = np.linalg.eigh(C_A)
        wB, VB = np.linalg.eigh(C_B)
        VA = VA[:, np.argsort(wA)[::-1]]
        VB = VB[:, np.argsort(wB)[::-1]]

        R = VB @ VA.T
        if np.linalg.det(R) < 0:
            VB[:, -1] *= -1
            R = VB @ VA.T

        return make_transform(R, c_dst - R @ c_src)

    # ------------------------ Helpers ------------------------
    def _validate_or_fallback(
        self,
        src: np.ndarray,
        dst: np.ndarray,
        T: np.ndarray,
        *,
        threshold: float = 1.1,
    ) -> np.ndarray:
        """Fall back to the centroid transform if the candidate scores clearly worse."""
        rmse_T = self._score_rmse(src, dst, T)
        T_cent = self._centroid_transform(src, dst)
        rmse_C = self._score_rmse(src, dst, T_cent)
        if not np.isfinite(rmse_T) or rmse_T > threshold * rmse_C:
            logger.warning(
                "CoarseRegistration: candidate transform worse than centroid (rmse %.3f vs %.3f). Using centroid.",
                rmse_T,
                rmse_C,
            )
            return T_cent
        return T

    def _score_rmse(self, src: np.ndarray, dst: np.ndarray, T: np.ndarray, *, max_pairs: int = 3000) -> float:
        rng = np.random.default_rng(0)
        idx_s = rng.choice(len(src), max_pairs, replace=False) if len(src) > max_pairs else np.arange(len(src))
        moved = apply_transformation(src[idx_s], T)
        search = KDTreeSearch().fit(dst)
        _, squared, found = search.nearest(moved)
        if not np.any(found):
            return float("inf")
        return float(np.sqrt(np.mean(squared[found])))
