"""Example filtering sinusoidal data with a constant-derivative evolution"""

import argparse
from typing import Tuple

import matplotlib.pyplot as plt
import torch

import fusion_kf
from fusion_kf.evolution import ConstantDerivativeEvolution

UNMEASURED_VARIANCE = 1e8


def generate_data(n: int, w0: float, noise: float, amplitude: float) -> Tuple[torch.Tensor, torch.Tensor]:
    """Generate sinusoidal data:

    x(t) = A sin(w0t)
    z(t) = x(t) + noise * N(0, 1)

    Args:
        n (int): Size of the sequence to generate
        w0 (float): Angular frequency
        noise (float): Gaussian noise standard deviation
        amplitude (float): Amplitude A of the sinus

    Returns:
        torch.Tensor: x(t) state of the system
            Shape: (T, 1, 1)
        torch.Tensor: z(t) measure for each state
            Shape: (T, 1, 1)
    """
    x = amplitude * torch.sin(w0 * torch.arange(n, dtype=torch.float64)[..., None, None])
    return x, x + noise * torch.randn_like(x)


def main(order: int, n: int, measurement_std: float, amplitude: float, nans: bool):
    # Let's do 2 full periods of sinus
    w0 = 4 * torch.pi / n

    # Taylor expansion bounds the process errors by w0^(k+1) / (k+1)!, but errors accumulate.
    # In practice, w0^k / k! works pretty well (and a sqrt(w0) for order 0)
    process_std = amplitude * w0 ** (order + 0.5 * (order == 0)) / torch.prod(torch.arange(1, order + 1)).item() / 5
    process_std = max(process_std, 1e-7)  # Prevent floating errors

    print("Parameters")
    print(f"Evolution order: {order}")
    print(f"Measurement noise: {measurement_std}")
    print(f"Process noise: {process_std}")
    print("Data: z(t) = measurement_noise * N(0, 1) + sin(w0 t)")
    print(f"Using w0={w0} for {n} points")

    x, z = generate_data(n, w0, measurement_std, amplitude)
    if nans:
        z[n // 2 : n // 2 + n // 20] = torch.nan  # Create nan measures in the middle

    # Only the value is measured: derivatives are given a huge uncertainty
    measures = torch.cat([z, torch.zeros(n, order, 1, dtype=z.dtype)], dim=1)
    measurement_covariance = fusion_kf.covariance_from_variances(
        torch.tensor([measurement_std**2] + [UNMEASURED_VARIANCE] * order, dtype=torch.float64)
    )

    # Let's start from an unknown initial state
    # Set estimation at 0, with a std of 3 * amplitude * w0^k
    kf = fusion_kf.KalmanFilter(
        torch.zeros(order + 1, 1, dtype=torch.float64),
        fusion_kf.covariance_from_stds(torch.tensor([amplitude * w0**k * 3 for k in range(order + 1)])).to(
            torch.float64
        ),
        ConstantDerivativeEvolution(process_std, order=order),
    )
    print(kf)

    states = kf.filter(measures, measurement_covariance, dt=1.0, return_all=True)

    print(f"Filtering MSE: {(states.mean[:, :1] - x).pow(2).mean()}")

    plt.rcParams["font.size"] = 20

    plt.figure(figsize=(24, 16))
    plt.plot(x[..., 0, 0], color="k", label="True trajectory - x = A sin(w0 t)")
    plt.plot(states.mean[:, 0, 0], color="y", label="Filtered trajectory")
    plt.plot(z[..., 0, 0], "o", color="r", markersize=2.0, label="Observed trajectory - z = x + noise * N(0, 1)")

    mini = states.mean[:, 0, 0] - 3 * states.covariance[:, 0, 0].sqrt()
    maxi = states.mean[:, 0, 0] + 3 * states.covariance[:, 0, 0].sqrt()
    plt.fill_between(torch.arange(len(mini)), mini, maxi, color="y", alpha=0.5)

    plt.ylim(-amplitude * 1.4, amplitude * 1.4)

    plt.xlabel("t")
    plt.ylabel("x")

    plt.legend(loc="upper right")

    if order > 0:
        plt.figure(figsize=(24, 16))
        plt.plot(
            amplitude * w0 * torch.cos(w0 * torch.arange(n)), color="k", label="True velocity - v = A w0 cos(w0 t)"
        )
        plt.plot(states.mean[:, 1, 0], color="y", label="Estimated velocity")

        mini = states.mean[:, 1, 0] - 3 * states.covariance[:, 1, 1].sqrt()
        maxi = states.mean[:, 1, 0] + 3 * states.covariance[:, 1, 1].sqrt()
        plt.fill_between(torch.arange(len(mini)), mini, maxi, color="y", alpha=0.5)

        plt.ylim(-amplitude * w0 * 1.4, amplitude * w0 * 1.4)

        plt.xlabel("t")
        plt.ylabel("v")

        plt.legend(loc="upper right")

    plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Kalman filter example, filtering a noisy sinus data")
    parser.add_argument(
        "--order",
        default=2,
        type=int,
        help="Order of the evolution (estimate derivative up to order to predict next value)",
    )
    parser.add_argument("--noise", default=2.0, type=float, help="Observation noise")
    parser.add_argument("--amplitude", default=20, type=int, help="Amplitude of the signal")
    parser.add_argument("--n", default=500, type=int, help="Number of points")
    parser.add_argument("--nans", action="store_true", help="Some state will not be measured")

    args = parser.parse_args()

    main(args.order, args.n, args.noise, args.amplitude, args.nans)
