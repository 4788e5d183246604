from __future__ import annotations

import dataclasses
from typing import Callable, Tuple, overload

import torch
import torch.linalg

# Note on runtime:
# Fusion requires the inverse of S = P_1 + P_2. By default it is computed with an LU decomposition with partial
# pivoting (torch.linalg.inv_ex) which does not assume anything on S. When both covariances are known to be
# positive definite, a Cholesky decomposition can be used instead (usually not faster in small dimensions).
# In both cases, the `_ex` variants report singular matrices without synchronizing on errors,
# which allows to check them once for the whole batch.

printoptions = torch._tensor_str.printoptions  # noqa: SLF001

EvolutionFunction = Callable[[torch.Tensor, torch.Tensor, float], Tuple[torch.Tensor, torch.Tensor]]


class SingularCovarianceError(ValueError):
    """Raised when the sum of the two fused covariances cannot be inverted."""


@dataclasses.dataclass
class GaussianState:
    """Gaussian belief over a state: x ~ N(mean, covariance).

    Conventions:
    - State vectors are **column vectors** with shape ``(..., dim, 1)``.
      This avoids ambiguity with batched matrix multiplications.
    - Leading dimensions ``...`` are treated as **batch dimensions** and may be
      broadcastable across operations.

    Attributes:
        mean: Mean of the distribution.
            Shape: ``(..., dim, 1)``
        covariance: Covariance matrix of the distribution.
            Shape: ``(..., dim, dim)``
    """

    mean: torch.Tensor
    covariance: torch.Tensor

    @property
    def dim(self) -> int:
        """Dimension of the state variable."""
        return self.covariance.shape[-1]

    def clone(self) -> GaussianState:
        """Return a deep copy of the state.

        Returns:
            GaussianState: The cloned state
        """
        return GaussianState(self.mean.clone(), self.covariance.clone())

    def __getitem__(self, idx) -> GaussianState:
        """Index/slice along batch dimensions.

        Args:
            idx (Any): Index/slice applied to the leading batch dimensions.

        Returns:
            GaussianState: Indexed GaussianState.
        """
        return GaussianState(self.mean[idx], self.covariance[idx])

    def __setitem__(self, idx, value: GaussianState) -> None:
        """Assign into batch dimensions.

        Args:
            idx (Any): Index/slice applied to the leading batch dimensions to be modified.
            value (GaussianState): GaussianState with compatible shapes.
        """
        if isinstance(value, GaussianState):
            self.mean[idx] = value.mean
            self.covariance[idx] = value.covariance
            return

        raise NotImplementedError("Only GaussianState assignment is supported.")

    @overload
    def to(self, dtype: torch.dtype) -> GaussianState: ...

    @overload
    def to(self, device: torch.device) -> GaussianState: ...

    def to(self, fmt):
        """Convert a GaussianState to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the state to.

        Returns:
            GaussianState: The GaussianState with the right format
        """
        return GaussianState(self.mean.to(fmt), self.covariance.to(fmt))

    def fuse(self, other: GaussianState, *, cholesky=False) -> GaussianState:
        """Fuse this belief with another independent belief on the same quantity.

        See :func:`fuse`.
        """
        return fuse(self, other, cholesky=cholesky)


def _invert(matrix: torch.Tensor, cholesky: bool) -> torch.Tensor:
    """Invert a batch of matrices, raising SingularCovarianceError if any of them is singular."""
    if cholesky:
        chol_decomposition, info = torch.linalg.cholesky_ex(matrix)
        if (info != 0).any():
            raise SingularCovarianceError(
                "Singular covariance matrices are not allowed: the sum of the fused covariances is not definite."
            )
        inverse = torch.cholesky_inverse(chol_decomposition)
    else:
        inverse, info = torch.linalg.inv_ex(matrix)
        if (info != 0).any():
            raise SingularCovarianceError(
                "Singular covariance matrices are not allowed: the sum of the fused covariances cannot be inverted."
            )

    if not torch.isfinite(inverse).all():
        raise SingularCovarianceError("The inverse of the sum of the fused covariances is not finite.")

    return inverse


def fuse(state_1: GaussianState, state_2: GaussianState, *, cholesky=False) -> GaussianState:
    """Fuse two independent Gaussian beliefs on the same quantity.

    Assuming flat (improper) priors, the product of N(mu_1, P_1) and N(mu_2, P_2) is
    proportional to N(mu, P) with:

        S = P_1 + P_2
        mu = P_2 S^{-1} mu_1 + P_1 S^{-1} mu_2
        P = P_1 S^{-1} P_2

    The fused covariance is never larger than any of the inputs (in the Loewner order),
    fusing is symmetric in its two arguments, and fusing two beliefs that share the same
    covariance P averages the means with a covariance P / 2.

    Broadcasting:
        Batch dimensions of both states must be broadcastable.

    Args:
        state_1 (GaussianState): First belief (usually the current estimate of the filter).
            Shape (mean): ``(..., dim, 1)``
            Shape (covariance): ``(..., dim, dim)``
        state_2 (GaussianState): Second belief (usually a measurement).
            Shape (mean): ``(..., dim, 1)``
            Shape (covariance): ``(..., dim, dim)``
        cholesky (bool): Invert S through a Cholesky decomposition rather than LU.
            It requires S to be symmetric positive definite.
            Default: False

    Returns:
        GaussianState: Fused belief.
            Shape (mean): ``(..., dim, 1)``
            Shape (covariance): ``(..., dim, dim)``

    Raises:
        SingularCovarianceError: If ``P_1 + P_2`` is not invertible. Nothing is computed in that case.
    """
    inverse = _invert(state_1.covariance + state_2.covariance, cholesky)

    mean = state_2.covariance @ inverse @ state_1.mean + state_1.covariance @ inverse @ state_2.mean
    covariance = state_1.covariance @ inverse @ state_2.covariance

    return GaussianState(mean, covariance)


class KalmanFilter:
    """Kalman filter over an arbitrary number of variables, driven by an evolution function.

    The filter holds a Gaussian belief x ~ N(mu, P) on the state of a system and refines it with
    three sources of information: its current belief, a model of how the system evolves in time,
    and new noisy measurements of the state.

    - Time is moved forward with `advance_time`, which delegates to the evolution function:

        (mu, P) <- evolution_function(mu, P, dt)

      The evolution function is fully responsible for the evolution of the covariance, including
      any process noise. Calling it twice with dt / 2 may not be the same as calling it once with dt.

    - Measurements are incorporated with `apply_measurement`, fusing the current belief with the
      measured belief N(z, R) (see :func:`fuse`). Measurements live in the state space.

    - `step` does both, in that order.

    Compared to a linear Kalman filter (x_k = F x_{k-1} + w_k, z_k = H x_k + v_k), any kind of
    evolution can be plugged in. Linear models are available in :mod:`fusion_kf.evolution`.

    Shape conventions:
    - Vectors are **column vectors** with shape ``(..., dim, 1)``.
    - Matrices have shape ``(..., dim, dim)``.
    - Leading ``...`` batch dimensions may be broadcastable, running several independent filters at once.

    The dimension of the state is fixed at construction, every operand is checked against it.
    The filter copies its inputs and only hands out copies: the internal belief is never shared.

    Attributes:
        evolution_function (EvolutionFunction): Evolution of (mean, covariance) over a time step dt.
        cholesky (bool): If True, invert covariances sums with a Cholesky decomposition when fusing.
            Default: False
    """

    _REPR_SPLIT_LENGTH = 110

    def __init__(
        self,
        initial_mean: torch.Tensor,
        initial_covariance: torch.Tensor,
        evolution_function: EvolutionFunction,
        *,
        cholesky=False,
    ) -> None:
        initial_covariance = torch.as_tensor(initial_covariance)
        if initial_covariance.dim() < 2:  # noqa: PLR2004
            raise ValueError(f"Expected a covariance with shape (..., dim, dim), got {tuple(initial_covariance.shape)}")

        # The covariance follows the dtype and device of the mean
        initial_mean = torch.as_tensor(initial_mean)
        initial_covariance = initial_covariance.to(initial_mean.dtype).to(initial_mean.device)

        self._state_dim = initial_covariance.shape[-1]
        self._state = self._check(GaussianState(initial_mean.clone(), initial_covariance.clone()), "initial state")
        self.evolution_function = evolution_function
        self.cholesky = cholesky

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self._state_dim

    @property
    def device(self) -> torch.device:
        """Device of the Kalman filter."""
        return self._state.mean.device

    @property
    def dtype(self) -> torch.dtype:
        """Dtype of the Kalman filter."""
        return self._state.mean.dtype

    @property
    def state(self) -> GaussianState:
        """Copy of the current belief."""
        return self._state.clone()

    def current_state(self) -> torch.Tensor:
        """Returns the current best estimate of the state (copy).

        Returns:
            torch.Tensor: Mean of the current belief.
                Shape: ``(..., dim, 1)``
        """
        return self._state.mean.clone()

    def current_covariance(self) -> torch.Tensor:
        """Returns the covariance describing the uncertainty on the current state (copy).

        Returns:
            torch.Tensor: Covariance of the current belief.
                Shape: ``(..., dim, dim)``
        """
        return self._state.covariance.clone()

    @overload
    def to(self, dtype: torch.dtype) -> KalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> KalmanFilter: ...

    def to(self, fmt):
        """Convert a Kalman filter to a specific device or dtype.

        The evolution function is shared with the new filter.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            KalmanFilter: The filter with the right format
        """
        return KalmanFilter(
            self._state.mean.to(fmt),
            self._state.covariance.to(fmt),
            self.evolution_function,
            cholesky=self.cholesky,
        )

    def advance_time(self, dt: float) -> None:
        """Move the belief forward in time by ``dt`` using the evolution function.

        ``dt`` is forwarded as is: zero or negative values are given their meaning by the evolution function.
        The evolution function receives copies of the current belief.

        Args:
            dt (float): Elapsed time.
        """
        mean, covariance = self.evolution_function(self._state.mean.clone(), self._state.covariance.clone(), dt)
        self._state = self._check(GaussianState(mean, covariance), "evolved state")

    def apply_measurement(self, measurement: torch.Tensor, measurement_covariance: torch.Tensor) -> None:
        """Fuse a new measurement of the state into the current belief.

        Time does not move, use `step` (or `advance_time`) for that. On failure, the belief is left untouched.

        Args:
            measurement (torch.Tensor): Measured state (column vector).
                Shape: ``(..., dim, 1)``
            measurement_covariance (torch.Tensor): Covariance of the measurement.
                Shape: ``(..., dim, dim)``

        Raises:
            SingularCovarianceError: If the current covariance plus the measurement covariance is singular.
        """
        observed = self._check(
            GaussianState(torch.as_tensor(measurement), torch.as_tensor(measurement_covariance)), "measurement"
        ).to(self.dtype)
        self._state = fuse(self._state, observed.to(self.device), cholesky=self.cholesky)

    def step(self, dt: float, measurement: torch.Tensor, measurement_covariance: torch.Tensor) -> None:
        """Advance time by ``dt``, then fuse the measurement.

        Strictly equivalent to ``advance_time(dt)`` followed by ``apply_measurement(...)``.

        Args:
            dt (float): Elapsed time since the last step.
            measurement (torch.Tensor): Measured state (column vector).
                Shape: ``(..., dim, 1)``
            measurement_covariance (torch.Tensor): Covariance of the measurement.
                Shape: ``(..., dim, dim)``
        """
        self.advance_time(dt)
        self.apply_measurement(measurement, measurement_covariance)

    def filter(
        self, measures: torch.Tensor, measurement_covariance: torch.Tensor, dt=1.0, return_all=False
    ) -> GaussianState:
        """Run the step loop over a sequence of regularly spaced measures.

        This is a convenience method for common use cases. It assumes:
        - A fixed time step ``dt`` and a fixed measurement covariance.
        - Measurements are already aligned with the batch of states.
        - Measurements may contain NaNs: if any component of a measurement vector is NaN,
          the corresponding state is **not** updated at that timestep (time still moves forward).

        The filter is modified in place, as with successive calls to `step`.

        Args:
            measures (torch.Tensor): Sequence of measures over time.
                Shape: ``(T, ..., dim, 1)``
            measurement_covariance (torch.Tensor): Covariance of each measure.
                Shape: ``(..., dim, dim)``
            dt (float): Elapsed time between two measures.
                Default: 1.0
            return_all (bool): If True, return the posterior state at every timestep as a single `GaussianState`
                with a leading time dimension. If False, it only returns the last posterior state.
                Default: False

        Returns:
            GaussianState: Either the last posterior state, or all the posterior states.
                Shape (mean): ``([T, ]..., dim, 1)``
                Shape (covariance): ``([T, ]..., dim, dim)``
        """
        if measures.shape[0] == 0:
            raise ValueError("At least one measure is required to filter.")

        measurement_covariance = measurement_covariance.to(self.dtype).to(self.device)
        saver: GaussianState

        # The state is expanded to the batch of the measures, whatever the items updated at t=0
        batch_shape = torch.broadcast_shapes(
            self._state.mean.shape[:-2],
            self._state.covariance.shape[:-2],
            measures.shape[1:-2],
            measurement_covariance.shape[:-2],
        )
        self._state = GaussianState(
            self._state.mean.expand(*batch_shape, self.state_dim, 1).clone(),
            self._state.covariance.expand(*batch_shape, self.state_dim, self.state_dim).clone(),
        )

        for t, measure in enumerate(measures):
            self.advance_time(dt)

            # Convert on the fly the measure to avoid to store them all on the device
            measure = measure.to(self.dtype).to(self.device)  # noqa: PLW2901

            # Support for nan measure: Do not update state associated with a nan measure
            mask = torch.isnan(measure[..., 0]).any(dim=-1)
            if not mask.any():
                self.apply_measurement(measure, measurement_covariance)
            elif not mask.all():
                self._apply_partial_measurement(measure, measurement_covariance, ~mask)

            if return_all:
                if t == 0:  # Create the saver now that we know the size of an updated state
                    saver = GaussianState(
                        torch.empty((measures.shape[0], *self._state.mean.shape), dtype=self.dtype, device=self.device),
                        torch.empty(
                            (measures.shape[0], *self._state.covariance.shape), dtype=self.dtype, device=self.device
                        ),
                    )

                saver[t] = self._state

        if return_all:
            return saver

        return self.state

    def _apply_partial_measurement(
        self, measure: torch.Tensor, measurement_covariance: torch.Tensor, valid: torch.Tensor
    ) -> None:
        """Fuse the measure only for the batch items selected by the ``valid`` mask."""
        batch_shape = torch.broadcast_shapes(
            self._state.mean.shape[:-2], self._state.covariance.shape[:-2], valid.shape
        )
        dim = self.state_dim
        valid = valid.expand(batch_shape)

        prior = GaussianState(
            self._state.mean.expand(*batch_shape, dim, 1).clone(),
            self._state.covariance.expand(*batch_shape, dim, dim).clone(),
        )
        observed = self._check(
            GaussianState(measure.expand(*batch_shape, dim, 1), measurement_covariance.expand(*batch_shape, dim, dim)),
            "measurement",
        )

        prior[valid] = fuse(prior[valid], observed[valid], cholesky=self.cholesky)
        self._state = prior

    def _check(self, state: GaussianState, name: str) -> GaussianState:
        """Ensure that a state matches the dimension of the filter."""
        dim = self.state_dim
        if state.mean.shape[-2:] != (dim, 1):
            raise ValueError(f"Expected {name} mean with shape (..., {dim}, 1), got {tuple(state.mean.shape)}")
        if state.covariance.shape[-2:] != (dim, dim):
            raise ValueError(
                f"Expected {name} covariance with shape (..., {dim}, {dim}), got {tuple(state.covariance.shape)}"
            )
        return state

    def __repr__(self) -> str:
        """Convert the Kalman filter into a readable string."""
        evolution = getattr(self.evolution_function, "__name__", type(self.evolution_function).__name__)
        header = f"Kalman Filter (State dimension: {self.state_dim}, Evolution: {evolution})"

        with printoptions(profile="short", sci_mode=False, linewidth=80):
            mean_repr = str(self._state.mean).split("\n")
            covariance_repr = str(self._state.covariance).split("\n")

        max_char_mean = max(len(line) for line in mean_repr)
        max_char_covariance = max(len(line) for line in covariance_repr)

        if max_char_mean + max_char_covariance <= self._REPR_SPLIT_LENGTH and len(mean_repr) == len(covariance_repr):
            mean_repr = [line + " " * (max_char_mean - len(line)) for line in mean_repr]

            state_header = ["State: x = "] + ["           "] * (len(mean_repr) - 1)
            state_sep = ["  &  P = "] + ["         "] * (len(mean_repr) - 1)
            state = "\n".join(
                ["".join(lines) for lines in zip(state_header, mean_repr, state_sep, covariance_repr)]
            )
        else:  # Two lines
            state_header = ["State: x = "] + ["           "] * (len(mean_repr) - 1)
            state_header += ["", "       P = "] + ["           "] * (len(covariance_repr) - 1)
            state = "\n".join(["".join(lines) for lines in zip(state_header, [*mean_repr, "", *covariance_repr])])

        n_char = max(len(line) for line in (header + "\n" + state).split("\n"))
        return ("\n" + "-" * n_char + "\n").join([header, state])
