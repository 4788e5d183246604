"""Helpers to build covariance matrices of independent variables."""

from __future__ import annotations

import torch


def covariance_from_variances(variances: torch.Tensor, *, column=False) -> torch.Tensor:
    """Create a covariance matrix from the variance of each variable.

    The variables are assumed independent: the variances are placed on the diagonal and
    every other entry is zero.

    Args:
        variances (torch.Tensor): Variance of each variable.
            Shape: ``(..., dim)``, or ``(..., dim, 1)`` with ``column=True``
        column (bool): Variances are given as column vectors (like state means).
            Default: False

    Returns:
        torch.Tensor: Diagonal covariance matrix.
            Shape: ``(..., dim, dim)``

    """
    variances = torch.as_tensor(variances)
    if column:
        variances = variances[..., 0]
    return torch.diag_embed(variances)


def covariance_from_variance(
    variance: float, dim: int, *, dtype: torch.dtype | None = None, device: torch.device | None = None
) -> torch.Tensor:
    """Create a covariance matrix of ``dim`` independent and equally variant variables.

    Args:
        variance (float): Variance shared by all the variables.
        dim (int): Number of variables.
        dtype (torch.dtype | None): Dtype of the matrix (torch default dtype if None).
        device (torch.device | None): Device of the matrix.

    Returns:
        torch.Tensor: ``variance * I``
            Shape: ``(dim, dim)``

    """
    return torch.eye(dim, dtype=dtype, device=device) * variance


def covariance_from_stds(stds: torch.Tensor, *, column=False) -> torch.Tensor:
    """Create a diagonal covariance matrix from standard deviations.

    Approximately 99.7% of the values of each variable are expected within ``±3 * std``.

    Args:
        stds (torch.Tensor): Standard deviation of each variable.
            Shape: ``(..., dim)``, or ``(..., dim, 1)`` with ``column=True``
        column (bool): Standard deviations are given as column vectors.
            Default: False

    Returns:
        torch.Tensor: Diagonal covariance matrix.
            Shape: ``(..., dim, dim)``

    """
    return covariance_from_variances(torch.as_tensor(stds) ** 2, column=column)
