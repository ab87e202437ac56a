"""
Tests for the cross-validation partitions and the (round, Y-orthogonal component)
grid of K-OPLS fits.
"""

import numpy as np
import pytest

from consensus_kopls.cross_validation import (
    cross_validate,
    make_partition,
    mccv_partition,
    mccvb_partition,
    nfold_partition,
)
from consensus_kopls.exceptions import InputValidationError


def test_nfold_partition_covers_every_sample_once():
    """Verify n-fold test sets are disjoint and cover all samples."""
    partition = nfold_partition(23, 5)

    assert len(partition) == 5
    test_indices = np.concatenate([split.test for split in partition])
    np.testing.assert_array_equal(np.sort(test_indices), np.arange(23))
    for fold, split in enumerate(partition):
        np.testing.assert_array_equal(split.test, np.arange(fold, 23, 5))
        assert np.intersect1d(split.train, split.test).size == 0
        assert split.train.size + split.test.size == 23


@pytest.mark.parametrize("nfold", [1, 24, 2.5])
def test_nfold_partition_rejects_invalid_nfold(nfold):
    """Verify the number of folds must be between 2 and the number of samples."""
    with pytest.raises(InputValidationError):
        nfold_partition(23, nfold)


def test_mccv_partition():
    """Verify Monte Carlo splits have the requested sizes and are reproducible."""
    partition = mccv_partition(20, 10, 0.8, np.random.default_rng(42))
    again = mccv_partition(20, 10, 0.8, np.random.default_rng(42))

    assert len(partition) == 10
    for split, other in zip(partition, again):
        assert split.train.size == 16
        assert split.test.size == 4
        np.testing.assert_array_equal(
            np.sort(np.concatenate([split.train, split.test])), np.arange(20)
        )
        np.testing.assert_array_equal(split.train, other.train)


def test_mccvb_partition_is_class_balanced():
    """Verify each class contributes floor(cv_frac * N_c) training samples."""
    labels = np.repeat([0, 1], [10, 6])

    partition = mccvb_partition(labels, 5, 0.7, np.random.default_rng(42))

    for split in partition:
        assert np.sum(labels[split.train] == 0) == 7
        assert np.sum(labels[split.train] == 1) == 4
        assert np.sum(labels[split.test] == 0) == 3
        assert np.sum(labels[split.test] == 1) == 2


def test_make_partition_validation():
    """Verify invalid Monte Carlo parameters and missing labels are rejected."""
    with pytest.raises(InputValidationError):
        make_partition("loo", 20)
    with pytest.raises(InputValidationError):
        make_partition("mccv", 20, cv_frac=1.0)
    with pytest.raises(InputValidationError):
        make_partition("mccv", 20, n_mc=0)
    with pytest.raises(InputValidationError):
        make_partition("mccvb", 20)
    with pytest.raises(InputValidationError):
        make_partition("mccv", 20, cv_frac=0.05)


def test_cross_validate_shapes():
    """Verify the held-out predictions are aggregated over rounds in order."""
    rng = np.random.default_rng(42)
    X = rng.standard_normal((20, 8))
    Y = X[:, :2] + 0.1 * rng.standard_normal((20, 2))
    partition = nfold_partition(20, 4)

    result = cross_validate(X @ X.T, Y, partition, max_pcomp=2, max_ocomp=2)

    assert result.all_yhat.shape == (3, 20, 2)
    np.testing.assert_array_equal(np.sort(result.test_index), np.arange(20))
    np.testing.assert_array_equal(result.round_index, np.repeat(np.arange(4), 5))
    assert result.failures == ()
    assert np.all(np.isfinite(result.all_yhat))


def test_cross_validate_does_not_depend_on_parallelism():
    """Verify the aggregated predictions are the same with one and several jobs."""
    rng = np.random.default_rng(42)
    X = rng.standard_normal((15, 6))
    Y = X[:, :1] + 0.1 * rng.standard_normal((15, 1))
    partition = nfold_partition(15, 3)

    sequential = cross_validate(X @ X.T, Y, partition, 1, 2, n_jobs=1)
    parallel = cross_validate(X @ X.T, Y, partition, 1, 2, n_jobs=2)

    np.testing.assert_allclose(sequential.all_yhat, parallel.all_yhat, rtol=1e-10)


def test_cross_validate_records_failed_cells():
    """Verify numerical failures become NaN predictions and failure records."""
    rng = np.random.default_rng(42)
    X = rng.standard_normal((12, 5))
    Y = rng.standard_normal((12, 1))
    partition = nfold_partition(12, 3)

    with pytest.warns(UserWarning):
        result = cross_validate(X @ X.T, Y, partition, max_pcomp=2, max_ocomp=1)

    assert np.all(np.isnan(result.all_yhat))
    assert len(result.failures) == 6
    assert [(f.round, f.n_ox) for f in result.failures] == [
        (0, 0),
        (0, 1),
        (1, 0),
        (1, 1),
        (2, 0),
        (2, 1),
    ]
    assert result.failures[0].message.startswith("ConvergenceError")
