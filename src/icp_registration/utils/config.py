"""
Configuration management for icp-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class RejectionConfig(BaseModel):
    method: Literal["ransac", "none"] = Field(
        default="ransac",
        description="Correspondence rejection: RANSAC over a rigid model, or keep everything",
    )
    max_iterations: int = Field(default=1000, gt=0, description="Maximum RANSAC trials per ICP iteration")
    probability: float = Field(
        default=0.99,
        gt=0.0,
        lt=1.0,
        description="Probability of drawing at least one outlier-free sample (adaptive trial bound)",
    )
    seed: Optional[int] = Field(default=None, description="Seed for the RANSAC sampler (None = random)")


class WeightingConfig(BaseModel):
    loss: Literal["huber", "tukey"] = Field(default="huber")
    loss_param: float = Field(default=1.0, gt=0.0, description="Huber delta / Tukey c (same units as the points)")


class RegistrationConfig(BaseModel):
    max_iterations: int = Field(default=100, gt=0)
    transformation_epsilon: float = Field(
        default=1e-8,
        ge=0.0,
        description="Convergence threshold on the summed absolute change between consecutive increments",
    )
    corr_dist_threshold: float = Field(
        default=1.0,
        ge=0.0,
        description="Maximum source-target distance for a correspondence to be considered",
    )
    inlier_threshold: float = Field(
        default=0.05,
        ge=0.0,
        description="RANSAC inlier distance for the rigid correspondence model",
    )
    min_number_correspondences: int = Field(default=3, gt=0)
    estimator: Literal["point_to_point", "weighted_point_to_point", "point_to_plane"] = Field(
        default="point_to_point"
    )
    normals_k: int = Field(
        default=10,
        ge=3,
        description="Neighbours used to estimate target normals for point_to_plane",
    )
    rejection: RejectionConfig = Field(default_factory=RejectionConfig)
    weighting: WeightingConfig = Field(default_factory=WeightingConfig)


class CoarseRegistrationConfig(BaseModel):
    enabled: bool = Field(default=False)
    method: Literal["centroid", "pca", "none"] = Field(default="centroid")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    coarse: CoarseRegistrationConfig = Field(default_factory=CoarseRegistrationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/icp_registration/utils/config.py
    parents sequence:
      0 -> .../src/icp_registration/utils
      1 -> .../src/icp_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
