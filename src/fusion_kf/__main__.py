"""Estimate the measurement covariance of a sensor from recorded (actual, measured) pairs.

Usage:
    python -m fusion_kf records.csv [--dim 3] [--verbose]
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

import torch

from .noise import MalformedInputError, load_pairs, measurement_noise_covariance

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="fusion-kf-noise",
        description="Print the covariance matrix of the measurement errors (measured - actual) of a csv file",
    )
    parser.add_argument(
        "path", help="Header-less csv file. Each row holds the actual values followed by the measured ones"
    )
    parser.add_argument("--dim", default=3, type=int, help="Dimension of the measured quantity")
    parser.add_argument("--verbose", action="store_true", help="Log progress information")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING, format="%(asctime)s %(levelname)s: %(message)s"
    )

    if args.dim < 1:
        parser.error(f"--dim should be positive, got {args.dim}")

    try:
        actual, measured = load_pairs(args.path, args.dim)
        logger.info(f"Loaded {actual.shape[0]} measurements of dimension {args.dim} from '{args.path}'")
        covariance = measurement_noise_covariance(actual, measured)
    except OSError as error:
        parser.exit(1, f"{parser.prog}: error: cannot read '{args.path}': {error}\n")
    except MalformedInputError as error:
        parser.exit(1, f"{parser.prog}: error: {error}\n")

    print(format_matrix(covariance))


def format_matrix(matrix: torch.Tensor) -> str:
    """Format a matrix as aligned rows of numbers, one row per line."""
    cells = [[f"{value:.9g}" for value in row] for row in matrix.tolist()]
    width = max(len(cell) for row in cells for cell in row)
    return "\n".join("  ".join(cell.rjust(width) for cell in row) for row in cells)


if __name__ == "__main__":
    main()
