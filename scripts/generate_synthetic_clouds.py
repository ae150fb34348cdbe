"""
Generate a synthetic source/target pair with a known rigid transform.

Writes source.npy, target.npy and ground_truth.txt into the output directory
so the registration workflow can be tried end to end:

    python scripts/generate_synthetic_clouds.py --out-dir data/synthetic
    python scripts/run_registration.py --source data/synthetic/source.npy \
        --target data/synthetic/target.npy --output-transform data/synthetic/estimated.txt
"""

import sys
import argparse
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent / "src"))

from icp_registration.utils.logging import setup_logger
from icp_registration.utils.transforms import (
    apply_transformation,
    make_transform,
    rotation_about_axis,
    save_transform_matrix,
)

logger = setup_logger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate synthetic ICP test clouds")
    parser.add_argument("--out-dir", type=str, default="data/synthetic")
    parser.add_argument("--n-points", type=int, default=5000)
    parser.add_argument("--angle-deg", type=float, default=5.0, help="Rotation about Z in degrees")
    parser.add_argument("--translation", type=float, nargs=3, default=[0.3, -0.2, 0.1])
    parser.add_argument("--noise", type=float, default=0.0, help="Gaussian noise sigma added to the target")
    parser.add_argument("--outlier-fraction", type=float, default=0.0,
                        help="Fraction of target points replaced by uniform outliers")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    # Anisotropic spread to avoid degenerate covariance
    source = rng.normal(size=(args.n_points, 3)) * np.array([10.0, 5.0, 2.0])

    T = make_transform(
        rotation_about_axis(np.array([0.0, 0.0, 1.0]), np.deg2rad(args.angle_deg)),
        np.asarray(args.translation, dtype=float),
    )
    target = apply_transformation(source, T)
    if args.noise > 0:
        target = target + rng.normal(scale=args.noise, size=target.shape)
    n_out = int(round(args.outlier_fraction * len(target)))
    if n_out > 0:
        lo = target.min(axis=0)
        hi = target.max(axis=0)
        replace = rng.choice(len(target), n_out, replace=False)
        target[replace] = rng.uniform(lo, hi, size=(n_out, 3))

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    np.save(out_dir / "source.npy", source)
    np.save(out_dir / "target.npy", target)
    save_transform_matrix(T, out_dir / "ground_truth.txt")
    logger.info(f"Wrote {len(source)} source and {len(target)} target points to {out_dir}")


if __name__ == "__main__":
    main()
