"""
Tests for the preparation of regression and discriminant responses and for the
validation of data blocks.
"""

import numpy as np
import pytest

from consensus_kopls.blocks import collect_blocks
from consensus_kopls.exceptions import InputValidationError
from consensus_kopls.response import (
    DISCRIMINANT,
    REGRESSION,
    canonical_model_type,
    dummy_code,
    prepare_response,
)


class _Frame:
    """Minimal table with row and column labels."""

    def __init__(self, values, index, columns):
        self.values = np.asarray(values)
        self.index = list(index)
        self.columns = list(columns)

    def __array__(self, dtype=None, copy=None):
        return np.asarray(self.values, dtype=dtype)


def test_canonical_model_type():
    """Verify short and long model type tags."""
    assert canonical_model_type("DA") == DISCRIMINANT
    assert canonical_model_type("reg") == REGRESSION
    with pytest.raises(InputValidationError):
        canonical_model_type("classification")


def test_dummy_code():
    """Verify labels are dummy coded with one column per sorted class."""
    Y, classes, labels = dummy_code(["b", "a", "b", "c"])

    np.testing.assert_array_equal(classes, ["a", "b", "c"])
    np.testing.assert_array_equal(labels, [1, 0, 1, 2])
    np.testing.assert_array_equal(Y, np.eye(3)[[1, 0, 1, 2]])


def test_prepare_response_discriminant_from_indicator_matrix():
    """Verify an indicator matrix is accepted as a discriminant response."""
    Y = np.eye(2)[[0, 1, 0, 1]]

    response = prepare_response(Y, "da")

    np.testing.assert_array_equal(response.Y, Y)
    np.testing.assert_array_equal(response.labels, [0, 1, 0, 1])
    np.testing.assert_array_equal(response.reference, Y)


def test_prepare_response_regression_reference_is_centered():
    """Verify the regression reference is the column-centered response."""
    response = prepare_response([1.0, 2.0, 6.0], "regression")

    assert response.Y.shape == (3, 1)
    np.testing.assert_allclose(response.reference[:, 0], [-2.0, -1.0, 3.0])


@pytest.mark.parametrize(
    "Y, model_type",
    [
        (["a", "b", "b"], "da"),
        ([1, 1, 1, 1], "da"),
        (np.array([[1, 1], [0, 1], [1, 0]]), "da"),
        (["a", "b"], "reg"),
        ([1.0, np.nan, 2.0], "reg"),
        ([3.0, 3.0, 3.0], "reg"),
        (np.ones((4, 2)), "reg"),
        (np.zeros((2, 2, 2)), "reg"),
    ],
)
def test_prepare_response_rejects_invalid_responses(Y, model_type):
    """Verify invalid responses raise InputValidationError."""
    with pytest.raises(InputValidationError):
        prepare_response(Y, model_type)


def test_prepare_response_checks_row_count():
    """Verify the response must have one row per sample."""
    with pytest.raises(InputValidationError):
        prepare_response([0, 0, 1, 1], "da", n_samples=5)


def test_collect_blocks_names():
    """Verify mappings keep their names and sequences are numbered."""
    rng = np.random.default_rng(42)
    X1 = rng.standard_normal((5, 2))
    X2 = rng.standard_normal((5, 3))

    named = collect_blocks({"nmr": X1, "ms": X2})
    numbered = collect_blocks([X1, X2])

    assert named.names == ("nmr", "ms")
    assert numbered.names == ("block_1", "block_2")
    assert numbered.n_variables == (2, 3)
    assert numbered.n_samples == 5
    assert numbered.arrays[0] is not X1


@pytest.mark.parametrize(
    "blocks",
    [
        [],
        {},
        [np.zeros((4, 2)), np.zeros((5, 2))],
        [np.zeros(4)],
        [np.array([[1.0, np.inf], [0.0, 1.0]])],
        [np.array([["a", "b"], ["c", "d"]])],
        np.zeros((4, 2)),
    ],
)
def test_collect_blocks_rejects_invalid_blocks(blocks):
    """Verify invalid data blocks raise InputValidationError."""
    with pytest.raises(InputValidationError):
        collect_blocks(blocks)


def test_collect_blocks_checks_row_labels():
    """Verify blocks carrying row labels must agree on them."""
    values = np.arange(6.0).reshape(3, 2)
    first = _Frame(values, ["s1", "s2", "s3"], ["x", "y"])
    same = _Frame(values, ["s1", "s2", "s3"], ["z", "w"])
    shuffled = _Frame(values, ["s2", "s1", "s3"], ["z", "w"])

    data = collect_blocks({"first": first, "second": same})
    assert data.columns == (("x", "y"), ("z", "w"))
    with pytest.raises(InputValidationError):
        collect_blocks({"first": first, "second": shuffled})
