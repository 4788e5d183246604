"""Ready-to-use evolution functions.

Any callable ``(mean, covariance, dt) -> (mean, covariance)`` can drive a :class:`KalmanFilter`.
This module provides the common ones:

- :func:`identity_evolution`: a static system, nothing changes with time.
- :class:`LinearEvolution`: a fixed linear model ``x' = F x + w``, ``w ~ N(0, Q)``.
- :class:`ConstantDerivativeEvolution`: constant position/velocity/acceleration models,
  where ``F`` and ``Q`` are rebuilt for each elapsed time ``dt``.

The state of constant-derivative models is composed of a value and its derivatives up to a given order,
for each spatial dimension. The highest-order derivative is assumed either:
- constant with additive noise, or
- driven by a zero-mean Gaussian noise on the next derivative (expected model).
"""

from __future__ import annotations

import math
from typing import Tuple

import torch


def identity_evolution(mean: torch.Tensor, covariance: torch.Tensor, dt: float) -> Tuple[torch.Tensor, torch.Tensor]:
    """Static system: the belief does not change with time."""
    return mean, covariance


def _propagate(
    mean: torch.Tensor, covariance: torch.Tensor, process_matrix: torch.Tensor, process_noise: torch.Tensor
) -> Tuple[torch.Tensor, torch.Tensor]:
    process_matrix = process_matrix.to(mean.dtype).to(mean.device)
    process_noise = process_noise.to(mean.dtype).to(mean.device)
    return process_matrix @ mean, process_matrix @ covariance @ process_matrix.mT + process_noise


class LinearEvolution:
    """Fixed linear evolution, regardless of the elapsed time.

    From x ~ N(mu, P), it applies x' = F x + w, w ~ N(0, Q):

        mu' = F mu
        P' = F P Fᵀ + Q

    Attributes:
        process_matrix (torch.Tensor): Process/Transition matrix ``F``.
            Shape: ``(..., dim, dim)``
        process_noise (torch.Tensor): Process noise covariance ``Q``.
            Shape: ``(..., dim, dim)``
    """

    def __init__(self, process_matrix: torch.Tensor, process_noise: torch.Tensor) -> None:
        self.process_matrix = process_matrix
        self.process_noise = process_noise

    def __call__(
        self, mean: torch.Tensor, covariance: torch.Tensor, dt: float
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        return _propagate(mean, covariance, self.process_matrix, self.process_noise)


def taylor_coefficients(size: int, dt=1.0) -> torch.Tensor:
    """Taylor coefficients ``(1, dt, dt^2 / 2, ..., dt^k / k!)`` for k < size."""
    return torch.tensor([dt**k / math.factorial(k) for k in range(size)], dtype=torch.float64)


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave tensor along the first dimension.

    Indices ``0, 1, ..., k*size-1`` are remapped as:
    ``0, size, 2*size, ..., (k-1)*size, 1, 1+size, ..., size-1, 2*size-1, ..., k*size-1``

    It switches from a state grouped by dimension (``x, x', y, y'``) to a state
    grouped by derivative order (``x, y, x', y'``) with ``size = order + 1``.

    Args:
        x (torch.Tensor): Tensor to interleave.
            Shape: ``(B, ...)``
        size: Block size used for interleaving.
            Must divide ``B`` exactly (``B = k * size``).

    Returns:
        torch.Tensor: Interleaved tensor with the same shape as ``x``.
            Shape: ``(B, ...)``

    """
    shape = list(x.shape)
    return x.reshape([-1, size, *shape[1:]]).transpose(0, 1).reshape([-1, *shape[1:]])


def process_matrix(order: int, dt=1.0) -> torch.Tensor:
    r"""Create the process (transition) matrix ``F`` of a constant-derivative model.

    Assuming the (order+1)-th derivative and above are zero, the Taylor expansion yields:

    x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    Example:
        Constant acceleration (``order = 2``) with ``dt = 0.5``::

            [
                [1, 0.5, 0.125],
                [0, 1.0, 0.5],
                [0, 0.0, 1.0],
            ]

    Args:
        order (int): Highest derivative order included in the state.
        dt (float): Elapsed time.
            Default: 1.0

    Returns:
        torch.Tensor: Process matrix ``F`` (float64)
            Shape: ``(order + 1, order + 1)``

    """
    matrix = torch.zeros(order + 1, order + 1, dtype=torch.float64)
    for k, coef in enumerate(taylor_coefficients(order + 1, dt)):
        matrix += torch.diag(coef.expand(order + 1 - k), k)
    return matrix


def process_noise(process_std: float, order: int, dt=1.0, expected_model=False) -> torch.Tensor:
    r"""Create the process noise covariance ``Q`` of a constant-derivative model.

    **1. Constant order-th derivative (default)**
    x^{(order)}(t+dt) = x^{(order)}(t) + w, where w \sim N(0, process_std**2).

    **2. Zero-mean (order+1)-th derivative (expected model)**
    x^{(order + 1)}(t+h) = w for 0 < h \le dt, where w \sim N(0, process_std**2).

    The noise is propagated to the lower derivatives through the Taylor expansion.

    Args:
        process_std (float): Process noise standard deviation.
            - Constant model: homogeneous to the order-th derivative.
            - Expected model: homogeneous to the (order+1)-th derivative.
        order (int): Highest derivative order included in the state.
        dt (float): Elapsed time.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False

    Returns:
        torch.Tensor: Process noise covariance ``Q`` (float64)
            Shape: ``(order + 1, order + 1)``

    """
    coefficients = taylor_coefficients(order + 1 + expected_model, dt)[expected_model:].flip(0)
    return process_std**2 * coefficients[:, None] @ coefficients[None]


class ConstantDerivativeEvolution:
    """Constant-derivative evolution (constant position, velocity, acceleration, ...).

    The state holds the values and their derivatives up to ``order`` for each of the ``dim``
    independent dimensions, so its size is ``(order + 1) * dim``. ``F`` and ``Q`` are computed
    for each elapsed time given to the filter.

    Attributes:
        process_std (torch.Tensor): Process noise standard deviation for each dimension.
            Shape: ``(dim,)``
        dim (int): Number of independent dimensions (1D, 2D, 3D, ...).
        order (int): Highest derivative order included in the state.
        expected_model (bool): Use the zero-mean (order+1)-th derivative noise model.
        order_by_dim (bool): State ordering convention.
            - True: group by dimension (e.g. ``x, x', y, y'``),
            - False: group by derivative order (e.g. ``x, y, x', y'``).
    """

    def __init__(
        self, process_std: float | torch.Tensor, *, dim=1, order=1, expected_model=False, order_by_dim=False
    ) -> None:
        self.process_std = torch.broadcast_to(torch.as_tensor(process_std, dtype=torch.float64), (dim,))
        self.dim = dim
        self.order = order
        self.expected_model = expected_model
        self.order_by_dim = order_by_dim

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return (self.order + 1) * self.dim

    def matrices(self, dt: float) -> Tuple[torch.Tensor, torch.Tensor]:
        """Build ``F`` and ``Q`` for an elapsed time ``dt``.

        Returns:
            torch.Tensor: Process matrix ``F``
                Shape: ``(state_dim, state_dim)``
            torch.Tensor: Process noise ``Q``
                Shape: ``(state_dim, state_dim)``
        """
        matrix = torch.block_diag(*(process_matrix(self.order, dt) for _ in range(self.dim)))
        noise = torch.block_diag(
            *(
                process_noise(self.process_std[k].item(), self.order, dt, self.expected_model)
                for k in range(self.dim)
            )
        )

        if not self.order_by_dim:
            matrix = interleave(interleave(matrix, self.order + 1).T, self.order + 1).T
            noise = interleave(interleave(noise, self.order + 1).T, self.order + 1).T

        return matrix.contiguous(), noise.contiguous()

    def __call__(
        self, mean: torch.Tensor, covariance: torch.Tensor, dt: float
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        return _propagate(mean, covariance, *self.matrices(dt))
