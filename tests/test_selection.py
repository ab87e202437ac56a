"""
Tests for the Q2 and DQ2 curves and the greedy selection of the number of
Y-orthogonal components.
"""

import numpy as np
import pytest

from consensus_kopls.cross_validation import CellFailure, CVResult
from consensus_kopls.metrics import dq2, q2
from consensus_kopls.response import prepare_response
from consensus_kopls.selection import (
    dq2_tables,
    select_model,
    select_orthogonal_components,
    split_workers,
)


@pytest.mark.parametrize(
    "curve, max_ocomp, expected",
    [
        ([0.1, 0.5, 0.52, 0.6], 3, 3),
        ([0.1, 0.5, 0.505, 0.9], 3, 1),
        ([0.1, 0.5, 0.4, 0.9], 3, 1),
        ([0.1, 0.5, np.nan, 0.9], 3, 1),
        ([0.1, 0.5, 0.7, 0.705], 3, 2),
        ([0.1, 0.2], 1, 1),
        ([0.9], 0, 0),
    ],
)
def test_select_orthogonal_components(curve, max_ocomp, expected):
    """Verify components are added while the curve improves by more than 0.01."""
    assert select_orthogonal_components(curve, max_ocomp) == expected


def test_select_orthogonal_components_is_bounded():
    """Verify the selection never leaves [0, max_ocomp]."""
    rng = np.random.default_rng(42)
    for max_ocomp in range(6):
        for _ in range(20):
            curve = np.cumsum(rng.uniform(-0.05, 0.2, size=max_ocomp + 1))
            n_ocomp = select_orthogonal_components(curve, max_ocomp)
            assert 0 <= n_ocomp <= max_ocomp
            if max_ocomp > 0:
                assert n_ocomp >= 1


@pytest.mark.parametrize(
    "n_jobs, n_outer, n_inner, expected",
    [(8, 4, 2, (4, 2)), (1, 10, 3, (1, 1)), (16, 10, 3, (5, 3)), (9, 1, 1, (9, 1))],
)
def test_split_workers(n_jobs, n_outer, n_inner, expected):
    """Verify the sqrt split of the worker budget."""
    outer, inner = split_workers(n_jobs, n_outer, n_inner)

    assert (outer, inner) == expected
    assert outer * inner <= n_jobs


def test_dq2_tables_duplicate_complementary_columns():
    """Verify complementary indicator columns of two classes give equal DQ2."""
    rng = np.random.default_rng(42)
    y = np.repeat([0.0, 1.0], 8)
    Y_true = np.column_stack((y, 1 - y))
    y_pred = y + 0.4 * rng.standard_normal((3, 16))
    all_yhat = np.stack((y_pred, 1 - y_pred), axis=-1)

    dq2_table, pressd_table = dq2_tables(Y_true, all_yhat, n_jobs=2)

    assert dq2_table.shape == (3, 2)
    np.testing.assert_allclose(dq2_table[:, 0], dq2_table[:, 1])
    np.testing.assert_allclose(pressd_table[:, 0], pressd_table[:, 1])


def test_select_model_discriminant_uses_dq2():
    """Verify discriminant models are selected on the mean DQ2 curve."""
    rng = np.random.default_rng(42)
    response = prepare_response(np.repeat(["a", "b", "c"], 4), "da")
    noise = np.array([1.0, 0.5, 0.2])[:, None, None]
    all_yhat = response.Y[None] + noise * rng.standard_normal((3, 12, 3))
    all_yhat[2, :2] = np.nan
    cv_result = CVResult(
        all_yhat=all_yhat,
        test_index=np.arange(12),
        round_index=np.zeros(12, dtype=int),
        failures=(),
    )

    selection = select_model(response, cv_result, max_ocomp=2)

    assert selection.dq2_table.shape == (3, 3)
    np.testing.assert_allclose(selection.dq2, selection.dq2_table.mean(axis=1))
    np.testing.assert_array_equal(selection.curve, selection.dq2)
    assert np.all(np.isfinite(selection.q2))
    assert selection.n_ocomp == select_orthogonal_components(selection.dq2, 2)


def test_select_model_regression_uses_q2():
    """Verify regression models are selected on the Q2 curve without DQ2."""
    rng = np.random.default_rng(42)
    response = prepare_response(rng.standard_normal(10), "reg")
    all_yhat = response.Y[None] + np.array([1.0, 0.1])[:, None, None] * (
        rng.standard_normal((2, 10, 1))
    )
    cv_result = CVResult(
        all_yhat=all_yhat,
        test_index=np.arange(10),
        round_index=np.zeros(10, dtype=int),
        failures=(),
    )

    selection = select_model(response, cv_result, max_ocomp=1)

    assert selection.dq2 is None
    assert selection.dq2_table is None
    np.testing.assert_array_equal(selection.curve, selection.q2)
    assert selection.n_ocomp == 1


def test_select_model_with_partially_failed_cells():
    """Verify failed cells only drop their own rows and NaN stops the selection."""
    rng = np.random.default_rng(42)
    response = prepare_response(np.tile([0, 1], 4), "da")
    test_index = np.concatenate((np.arange(8), np.arange(8)))
    round_index = np.repeat([0, 1], 8)
    Y_true = response.Y[test_index]
    noise = np.array([1.0, 0.6, 0.1, 0.1])[:, None, None]
    all_yhat = Y_true[None] + noise * rng.standard_normal((4, 16, 2))
    all_yhat[2, round_index == 1] = np.nan
    all_yhat[3] = np.nan
    failures = (
        CellFailure(round=1, n_ox=2, message="singular"),
        CellFailure(round=0, n_ox=3, message="singular"),
        CellFailure(round=1, n_ox=3, message="singular"),
    )
    cv_result = CVResult(
        all_yhat=all_yhat,
        test_index=test_index,
        round_index=round_index,
        failures=failures,
    )

    selection = select_model(response, cv_result, max_ocomp=3)

    kept = round_index == 0
    assert selection.q2[2] == pytest.approx(q2(Y_true[kept], all_yhat[2, kept]))
    expected_dq2 = [dq2(Y_true[kept, j], all_yhat[2, kept, j])[0] for j in range(2)]
    np.testing.assert_allclose(selection.dq2_table[2], expected_dq2)
    assert selection.dq2[2] == pytest.approx(np.mean(expected_dq2))
    assert np.all(np.isfinite(selection.dq2[:3]))
    assert np.isnan(selection.q2[3])
    assert np.isnan(selection.dq2[3])
    assert selection.n_ocomp == 2


def test_dq2_mean_skips_missing_columns():
    """Verify the mean DQ2 averages the finite columns of each row."""
    rng = np.random.default_rng(42)
    response = prepare_response(np.repeat(["a", "b", "c"], 4), "da")
    all_yhat = response.Y[None] + 0.3 * rng.standard_normal((2, 12, 3))
    all_yhat[1, :, 2] = np.nan
    cv_result = CVResult(
        all_yhat=all_yhat,
        test_index=np.arange(12),
        round_index=np.zeros(12, dtype=int),
        failures=(),
    )

    selection = select_model(response, cv_result, max_ocomp=1)

    assert np.isnan(selection.dq2_table[1, 2])
    assert selection.dq2[1] == pytest.approx(np.mean(selection.dq2_table[1, :2]))
    assert np.isnan(selection.q2[1])
