"""
ICP Registration Package

Rigid alignment of a moving source point cloud to a fixed target cloud with
the Iterative Closest Point (ICP) algorithm. Each iteration pairs points by
nearest-neighbour search, rejects outlier pairs with RANSAC over a rigid
model, estimates the rigid increment in closed form and tests convergence on
the change between consecutive increments. The estimation and rejection
steps are pluggable strategies.
"""

__version__ = "0.1.0"

from .alignment import *
from .utils import *

__all__ = [
    "alignment",
    "utils",
]
