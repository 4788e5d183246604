"""Identification of the measurement noise of a sensor.

Given pairs of (actual value, measured value) recorded on a sensor, the covariance of the
measurement error ``measured - actual`` is the measurement covariance ``R`` to give to
:meth:`KalmanFilter.apply_measurement`.
"""

from __future__ import annotations

import csv
import os
from typing import List, Tuple, Union

import torch


class MalformedInputError(ValueError):
    """Raised when a record file cannot be parsed into (actual, measured) pairs."""


def load_pairs(path: Union[str, os.PathLike], dim=3) -> Tuple[torch.Tensor, torch.Tensor]:
    """Load (actual, measured) pairs from a header-less csv file.

    Each row holds ``dim`` actual values followed by the ``dim`` measured values.

    Args:
        path (str | os.PathLike): Path to the csv file.
        dim (int): Dimension of the measured quantity.
            Default: 3

    Returns:
        torch.Tensor: Actual values (float64)
            Shape: ``(rows, dim)``
        torch.Tensor: Measured values (float64)
            Shape: ``(rows, dim)``

    Raises:
        OSError: If the file cannot be read.
        MalformedInputError: If a row is not made of ``2 * dim`` numbers.
    """
    rows: List[List[float]] = []
    with open(path, newline="", encoding="utf-8") as file:
        for line, row in enumerate(csv.reader(file), start=1):
            if not row:  # Blank line
                continue
            if len(row) != 2 * dim:
                raise MalformedInputError(f"{path}:{line}: expected {2 * dim} values, got {len(row)}")
            try:
                rows.append([float(value) for value in row])
            except ValueError as error:
                raise MalformedInputError(f"{path}:{line}: {error}") from error

    values = torch.tensor(rows, dtype=torch.float64).reshape(-1, 2 * dim)
    return values[:, :dim], values[:, dim:]


def measurement_noise_covariance(actual: torch.Tensor, measured: torch.Tensor) -> torch.Tensor:
    """Population covariance of the measurement errors.

    The errors ``e = measured - actual`` are assumed zero-mean (unbiased sensor), hence:

        R = 1/n sum_k e_k e_kᵀ

    No Bessel correction is applied.

    Args:
        actual (torch.Tensor): Actual values.
            Shape: ``(n, dim)``
        measured (torch.Tensor): Measured values.
            Shape: ``(n, dim)``

    Returns:
        torch.Tensor: Measurement covariance ``R``.
            Shape: ``(dim, dim)``

    Raises:
        MalformedInputError: If there is no pair to estimate from.
    """
    if actual.shape[0] == 0:
        raise MalformedInputError("No measurement to estimate the covariance from.")

    errors = measured - actual
    return errors.mT @ errors / errors.shape[0]
