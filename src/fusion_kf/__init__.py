"""fusion-kf: Kalman filtering with pluggable evolution and covariance-weighted fusion, in PyTorch.

fusion-kf tracks the state of a system as a Gaussian belief (mean + covariance) and
refines it with three sources of information: the current belief, a model of how the
system evolves in time, and new noisy measurements of the state.

Key features
------------
- **Any evolution model**: time propagation is delegated to a user-supplied function
  ``(mean, covariance, dt) -> (mean, covariance)``, which also owns the process noise.
- **Covariance-weighted fusion**: measurements are fused with the current belief as two
  independent Gaussian estimates of the same quantity.
- **Batch-friendly**: leading batch dimensions broadcast, so many independent filters
  can run at once on CPU or GPU.

Getting started
---------------
The core API consists of:
- :class:`~fusion_kf.KalmanFilter` with :meth:`~fusion_kf.KalmanFilter.advance_time`,
  :meth:`~fusion_kf.KalmanFilter.apply_measurement`, :meth:`~fusion_kf.KalmanFilter.step`,
  :meth:`~fusion_kf.KalmanFilter.current_state` and
  :meth:`~fusion_kf.KalmanFilter.current_covariance`.
- :func:`~fusion_kf.fuse` and :class:`~fusion_kf.GaussianState` for the fusion itself.
- :mod:`~fusion_kf.covariance` helpers to build covariances from variances.
- :mod:`~fusion_kf.evolution` for common evolution models (static, linear, constant velocity/acceleration).

The measurement covariance of a sensor can be estimated from recorded (actual, measured)
pairs with ``python -m fusion_kf records.csv``.

Notes on shapes
---------------
fusion-kf uses column vectors. State and measurement vectors must have shape
``(..., dim, 1)`` and covariances ``(..., dim, dim)``. The dimension is fixed when
the filter is created.
"""

from .covariance import covariance_from_stds, covariance_from_variance, covariance_from_variances
from .kalman_filter import EvolutionFunction, GaussianState, KalmanFilter, SingularCovarianceError, fuse

__all__ = [
    "EvolutionFunction",
    "GaussianState",
    "KalmanFilter",
    "SingularCovarianceError",
    "covariance_from_stds",
    "covariance_from_variance",
    "covariance_from_variances",
    "fuse",
]
__version__ = "0.1.0"
