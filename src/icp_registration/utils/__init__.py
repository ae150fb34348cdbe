"""
Utility Functions Module

This module provides common utility functions used across the project.
- Logging setup
- Configuration loading
- Point cloud container and normal estimation
- Rigid transformation helpers
"""

from .logging import setup_logger
from .config import AppConfig, load_config
from .point_cloud import PointCloud, as_point_cloud, estimate_normals, validate_indices
from .transforms import (
    apply_transformation,
    is_rigid_transform,
    load_transform_matrix,
    make_transform,
    rotation_about_axis,
    save_transform_matrix,
    transformation_delta,
)

__all__ = [
    "setup_logger",
    "AppConfig",
    "load_config",
    "PointCloud",
    "as_point_cloud",
    "estimate_normals",
    "validate_indices",
    "apply_transformation",
    "is_rigid_transform",
    "load_transform_matrix",
    "make_transform",
    "rotation_about_axis",
    "save_transform_matrix",
    "transformation_delta",
]
