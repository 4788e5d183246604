import torch

from fusion_kf import covariance_from_stds, covariance_from_variance, covariance_from_variances


def test_covariance_from_variances_is_diagonal():
    covariance = covariance_from_variances(torch.tensor([1.0, 2.0, 3.0]))

    assert torch.equal(
        covariance,
        torch.tensor(
            [
                [1.0, 0.0, 0.0],
                [0.0, 2.0, 0.0],
                [0.0, 0.0, 3.0],
            ]
        ),
    )


def test_covariance_from_variances_accepts_column_vectors_and_batches():
    variances = torch.rand(4, 3, 1)

    covariance = covariance_from_variances(variances, column=True)

    assert covariance.shape == (4, 3, 3)
    for b in range(4):
        assert torch.equal(covariance[b], torch.diag(variances[b, :, 0]))


def test_covariance_from_variances_single_variable():
    assert torch.equal(covariance_from_variances(torch.tensor([4.0])), torch.tensor([[4.0]]))


def test_covariance_from_variances_batch_of_single_variables():
    variances = torch.tensor([[1.0], [2.0]])

    covariance = covariance_from_variances(variances)

    assert covariance.shape == (2, 1, 1)
    assert torch.equal(covariance, torch.tensor([[[1.0]], [[2.0]]]))

    # As a column vector, it is a single state of dimension 2
    assert torch.equal(covariance_from_variances(variances, column=True), torch.tensor([[1.0, 0.0], [0.0, 2.0]]))


def test_covariance_from_variance():
    covariance = covariance_from_variance(0.5, 4)

    assert covariance.shape == (4, 4)
    assert torch.equal(covariance.diagonal(), torch.full((4,), 0.5))
    assert torch.equal(covariance - torch.diag(covariance.diagonal()), torch.zeros(4, 4))


def test_covariance_from_variance_dtype():
    covariance = covariance_from_variance(2.0, 3, dtype=torch.float64)

    assert covariance.dtype == torch.float64
    assert torch.equal(covariance, 2.0 * torch.eye(3, dtype=torch.float64))


def test_covariance_from_stds():
    covariance = covariance_from_stds(torch.tensor([1.0, 3.0]))

    assert torch.equal(covariance, torch.tensor([[1.0, 0.0], [0.0, 9.0]]))
