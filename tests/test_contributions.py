"""
Tests for the per-block contributions, loadings and variable importances.
"""

import numpy as np
import pytest

from consensus_kopls.contributions import (
    block_lambda,
    block_loadings,
    block_vip,
    component_names,
    decompose,
)


def _make_model(rng):
    blocks = [rng.standard_normal((16, k)) for k in (6, 3, 9)]
    kernels = []
    for X in blocks:
        K = X @ X.T
        kernels.append(K / np.linalg.norm(K, ord="fro"))
    Tp = rng.standard_normal((16, 1))
    To = rng.standard_normal((16, 2))
    Y = Tp + 0.1 * rng.standard_normal((16, 1))
    return blocks, kernels, Tp, To, Y


def test_component_names():
    """Verify Y-predictive components are named before Y-orthogonal components."""
    assert component_names(2, 1) == ("p_1", "p_2", "o_1")
    assert component_names(1, 0) == ("p_1",)


def test_block_lambda_is_quadratic_form():
    """Verify lambda is the diagonal of T' K T."""
    rng = np.random.default_rng(42)
    X = rng.standard_normal((8, 3))
    T = rng.standard_normal((8, 2))
    K = X @ X.T

    np.testing.assert_allclose(block_lambda(K, T), np.diag(T.T @ K @ T))


def test_block_loadings():
    """Verify loadings are projections of the variables on the scores."""
    rng = np.random.default_rng(42)
    X = rng.standard_normal((8, 3))
    T = rng.standard_normal((8, 2))

    loadings = block_loadings(X, T)

    assert loadings.shape == (3, 2)
    np.testing.assert_allclose(loadings[:, 1], X.T @ T[:, 1] / (T[:, 1] @ T[:, 1]))


def test_block_vip_mean_square_is_one():
    """Verify the mean squared VIP over the variables of a block is one."""
    rng = np.random.default_rng(42)
    loadings = rng.standard_normal((7, 3))

    vip = block_vip(loadings, np.array([0.5, 0.3, 0.2]))

    assert np.mean(vip**2) == pytest.approx(1.0)
    assert np.all(np.isnan(block_vip(loadings[:, :0], np.array([]))))


def test_decompose_contributions_sum_to_one():
    """Verify each component's contributions sum to one over the blocks."""
    rng = np.random.default_rng(42)
    blocks, kernels, Tp, To, Y = _make_model(rng)

    result = decompose(blocks, kernels, Tp, To, Y)

    assert result.component_names == ("p_1", "o_1", "o_2")
    assert result.lambdas.shape == (3, 3)
    assert np.all(result.lambdas >= 0)
    np.testing.assert_allclose(result.contributions.sum(axis=0), 1.0, atol=1e-12)
    for X, loadings, vip in zip(blocks, result.loadings, result.vip):
        assert loadings.shape == (X.shape[1], 3)
        assert vip.shape == (X.shape[1], 2)
        np.testing.assert_allclose(np.mean(vip**2, axis=0), 1.0)


def test_decompose_does_not_depend_on_parallelism():
    """Verify the decomposition is the same with one and several jobs."""
    rng = np.random.default_rng(42)
    blocks, kernels, Tp, To, Y = _make_model(rng)

    sequential = decompose(blocks, kernels, Tp, To, Y, n_jobs=1)
    parallel = decompose(blocks, kernels, Tp, To, Y, n_jobs=2)

    np.testing.assert_allclose(sequential.contributions, parallel.contributions)
    for left, right in zip(sequential.vip, parallel.vip):
        np.testing.assert_allclose(left, right)
