"""
Spatial Alignment Module

This module provides the ICP registration loop together with its
collaborators: nearest-neighbour correspondence search, RANSAC
correspondence rejection, rigid transformation estimators and coarse
initial-guess providers.
"""

from .fine_registration import ICPRegistration, RegistrationResult, RegistrationState
from .coarse_registration import CoarseRegistration
from .correspondence import Correspondences, KDTreeSearch, NeighborSearch, find_correspondences
from .rejection import CorrespondenceRejector, NullRejector, RANSACRejector
from .estimation import (
    PointToPlaneEstimator,
    PointToPointEstimator,
    TransformationEstimator,
    WeightedPointToPointEstimator,
    estimate_rigid_transform,
)
from .errors import (
    DegenerateRobustFit,
    InsufficientCorrespondences,
    NeighborSearchFailed,
    RegistrationError,
)

__all__ = [
    "ICPRegistration",
    "RegistrationResult",
    "RegistrationState",
    "CoarseRegistration",
    "Correspondences",
    "KDTreeSearch",
    "NeighborSearch",
    "find_correspondences",
    "CorrespondenceRejector",
    "NullRejector",
    "RANSACRejector",
    "TransformationEstimator",
    "PointToPointEstimator",
    "WeightedPointToPointEstimator",
    "PointToPlaneEstimator",
    "estimate_rigid_transform",
    "RegistrationError",
    "NeighborSearchFailed",
    "InsufficientCorrespondences",
    "DegenerateRobustFit",
]
