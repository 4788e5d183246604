import pytest
import torch

from fusion_kf import GaussianState, fuse


def _spd_matrix(dim: int, batch: tuple[int, ...] = ()) -> torch.Tensor:
    # Construct a symmetric positive definite covariance.
    cov = torch.randn(*batch, dim, dim)
    return cov @ cov.mT + 1e-2 * torch.eye(dim)


def test_clone_is_deep_copy():
    s = GaussianState(torch.randn(3, 4, 1), _spd_matrix(4, batch=(3,)))
    c = s.clone()

    assert c is not s
    assert torch.equal(c.mean, s.mean)
    assert torch.equal(c.covariance, s.covariance)

    # Mutate original, clone must not change
    s.mean.add_(1.0)
    s.covariance.mul_(2.0)
    assert not torch.allclose(c.mean, s.mean)
    assert not torch.allclose(c.covariance, s.covariance)


def test_dim():
    assert GaussianState(torch.zeros(5, 3, 1), torch.eye(3).expand(5, 3, 3)).dim == 3
    assert GaussianState(torch.zeros(1, 1), torch.ones(1, 1)).dim == 1


def test_getitem():
    s = GaussianState(torch.randn(4, 5, 2, 1), _spd_matrix(2, batch=(4, 5)))

    # Indexing
    sub = s[2, 3]
    assert sub.mean.shape == (2, 1)
    assert sub.covariance.shape == (2, 2)
    assert torch.equal(s.mean[2, 3], sub.mean)

    # Slicing
    sub = s[:, :2]
    assert sub.mean.shape == (4, 2, 2, 1)
    assert sub.covariance.shape == (4, 2, 2, 2)

    # Masking
    half = 0.5
    idx = torch.rand(4, 5) > half
    sub = s[idx]
    assert sub.mean.shape == (idx.sum(), 2, 1)
    assert sub.covariance.shape == (idx.sum(), 2, 2)
    assert torch.equal(s.covariance[idx], sub.covariance)


def test_setitem():
    s = GaussianState(torch.randn(5, 3, 1), _spd_matrix(3, batch=(5,)))
    new = GaussianState(torch.ones(5, 3, 1), torch.eye(3)[None].repeat(5, 1, 1))
    new_cloned = new.clone()

    # Integer set
    s[2] = new[3]
    assert torch.equal(s.mean[2], new.mean[3])
    assert torch.equal(s.covariance[2], new.covariance[3])

    # Mask set
    half = 0.5
    idx = torch.rand(5) > half
    s[idx] = new[idx]
    assert torch.equal(s.mean[idx], new.mean[idx])
    assert torch.equal(s.covariance[idx], new.covariance[idx])

    # Non-GaussianState should error
    with pytest.raises(NotImplementedError):
        s[0] = 123  # type: ignore[assignment]

    assert torch.equal(new.mean, new_cloned.mean)  # Nothing should change in new


def test_to_dtype():
    s = GaussianState(torch.randn(1, 3, 1), _spd_matrix(3, batch=(1,)))

    s64 = s.to(torch.float64)
    assert s64.mean.dtype == torch.float64
    assert s64.covariance.dtype == torch.float64

    s32 = s64.to(torch.float32)
    assert s32.mean.dtype == torch.float32
    assert s32.covariance.dtype == torch.float32


def test_fuse_method_matches_function():
    s = GaussianState(torch.randn(3, 1), _spd_matrix(3))
    other = GaussianState(torch.randn(3, 1), _spd_matrix(3))

    fused = s.fuse(other)
    expected = fuse(s, other)

    assert torch.equal(fused.mean, expected.mean)
    assert torch.equal(fused.covariance, expected.covariance)


@pytest.mark.usefixtures("double_precision")
def test_fuse_broadcasts_over_batches():
    states = GaussianState(torch.randn(4, 1, 2, 1), _spd_matrix(2, batch=(4, 1)))
    measures = GaussianState(torch.randn(6, 2, 1), _spd_matrix(2, batch=(6,)))

    fused = states.fuse(measures)

    assert fused.mean.shape == (4, 6, 2, 1)
    assert fused.covariance.shape == (4, 6, 2, 2)

    for i in range(4):
        for j in range(6):
            ref = fuse(states[i, 0], measures[j])
            assert torch.allclose(ref.mean, fused.mean[i, j], atol=1e-5)
            assert torch.allclose(ref.covariance, fused.covariance[i, j], atol=1e-5)
