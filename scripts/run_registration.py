"""
Example script for the ICP registration workflow

Loads a source and a target point cloud, optionally pre-aligns them with a
coarse method, runs ICP and writes the resulting transform.
"""

import sys
import argparse
import logging
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from icp_registration.alignment import CoarseRegistration, ICPRegistration
from icp_registration.utils.config import load_config, AppConfig
from icp_registration.utils.logging import setup_logger, set_package_log_level
from icp_registration.utils.point_cloud import PointCloud
from icp_registration.utils.transforms import save_transform_matrix


def load_points(path: str) -> np.ndarray:
    """Read an N x 3 array from a .npy file or a whitespace-separated text file."""
    p = Path(path)
    if p.suffix.lower() == ".npy":
        points = np.load(p)
    else:
        points = np.loadtxt(p, ndmin=2)
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"{p} does not contain an Nx3 point array (shape {points.shape})")
    return points[:, :3]


def main() -> int:
    """
    Main function to run the registration workflow.
    """
    parser = argparse.ArgumentParser(description="ICP Registration Workflow")
    parser.add_argument("--source", type=str, required=True, help="Source cloud (.npy or xyz text)")
    parser.add_argument("--target", type=str, required=True, help="Target cloud (.npy or xyz text)")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the RANSAC sampler, overrides registration.rejection.seed.",
    )
    parser.add_argument(
        "--coarse-method",
        type=str,
        choices=["centroid", "pca", "none"],
        default=None,
        help="Enable coarse pre-alignment with this method (overrides config).",
    )
    parser.add_argument(
        "--output-transform",
        type=str,
        default=None,
        help="Write the final 4x4 transform to this text file.",
    )
    parser.add_argument(
        "--output-cloud",
        type=str,
        default=None,
        help="Write the aligned source points to this .npy file.",
    )
    args = parser.parse_args()

    cfg: AppConfig = load_config(args.config)
    if args.seed is not None:
        cfg.registration.rejection.seed = args.seed
    if args.coarse_method is not None:
        cfg.coarse.enabled = args.coarse_method != "none"
        cfg.coarse.method = args.coarse_method

    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_package_log_level(log_level)

    logger.info("ICP Registration Workflow")
    logger.info("=========================")

    source = PointCloud(load_points(args.source))
    target = PointCloud(load_points(args.target))
    logger.info(f"Loaded {len(source)} source points from {args.source}")
    logger.info(f"Loaded {len(target)} target points from {args.target}")

    initial_transform = None
    if cfg.coarse.enabled:
        coarse = CoarseRegistration(method=cfg.coarse.method)
        initial_transform = coarse.compute_initial_transform(source, target)
        logger.info(f"Coarse registration ({cfg.coarse.method}) initial transform:\n{initial_transform}")

    icp = ICPRegistration.from_config(cfg.registration)
    result = icp.align(source, target, initial_transform=initial_transform)

    logger.info(f"Converged: {result.converged} after {result.nr_iterations} iterations")
    if result.converged and result.nr_iterations >= icp.max_iterations:
        logger.warning("Iteration cap reached; the last increment may still be large.")
    logger.info(f"Fitness score: {result.fitness_score:.6f}")
    logger.info(f"Final transformation:\n{result.transformation}")

    if args.output_transform:
        save_transform_matrix(result.transformation, args.output_transform)
    if args.output_cloud:
        out = Path(args.output_cloud)
        out.parent.mkdir(parents=True, exist_ok=True)
        np.save(out, result.aligned.points)
        logger.info(f"Saved aligned source points to {out}")

    if result.error is not None:
        logger.error(f"Registration failed during {result.error.stage}: {result.error}")
    return 0 if result.converged else 1


if __name__ == "__main__":
    sys.exit(main())
