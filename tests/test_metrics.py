"""
Tests for Q2, DQ2 and the classification statistics of cross-validated predictions.
"""

import numpy as np
import pytest

from consensus_kopls.metrics import classification_stats, dq2, q2


def test_q2_perfect_and_mean_predictions():
    """Verify Q2 is one for perfect predictions and zero for predicting the mean."""
    rng = np.random.default_rng(42)
    Y = rng.standard_normal((20, 2))

    assert q2(Y, Y) == pytest.approx(1.0)
    assert q2(Y, np.tile(Y.mean(axis=0), (20, 1))) == pytest.approx(0.0)


def test_q2_ignores_missing_rows():
    """Verify rows with NaN predictions are left out of Q2."""
    rng = np.random.default_rng(42)
    Y = rng.standard_normal((12, 1))
    Y_pred = Y + 0.3 * rng.standard_normal((12, 1))
    Y_pred_missing = Y_pred.copy()
    Y_pred_missing[:3] = np.nan

    assert q2(Y, Y_pred_missing) == pytest.approx(q2(Y[3:], Y_pred[3:]))
    assert np.isnan(q2(Y, np.full((12, 1), np.nan)))


def test_dq2_disregards_predictions_beyond_the_class_values():
    """Verify residuals beyond the class values do not count as errors."""
    y_true = np.array([0.0, 0.0, 1.0, 1.0])
    y_pred = np.array([-0.5, 0.2, 1.5, 0.9])

    value, pressd = dq2(y_true, y_pred)

    assert pressd == pytest.approx(0.2**2 + 0.1**2)
    assert value == pytest.approx(1 - pressd / 1.0)


def test_dq2_is_at_least_q2():
    """Verify DQ2 never penalizes more than Q2 on a two-class indicator."""
    rng = np.random.default_rng(42)
    y_true = np.repeat([0.0, 1.0], 10)
    y_pred = y_true + 0.5 * rng.standard_normal(20)

    value, _ = dq2(y_true, y_pred)

    assert value >= q2(y_true, y_pred)
    assert -1.0 <= value <= 1.0


def test_dq2_without_finite_predictions():
    """Verify DQ2 is NaN when no prediction is finite."""
    value, pressd = dq2(np.array([0.0, 1.0]), np.array([np.nan, np.nan]))

    assert np.isnan(value)
    assert np.isnan(pressd)


def test_classification_stats():
    """Verify the confusion matrix, sensitivity and specificity of each class."""
    labels = np.array([0, 0, 1, 1])
    Y_pred = np.array(
        [
            [0.9, 0.1],
            [0.4, 0.6],
            [0.2, 0.8],
            [0.3, 0.7],
        ]
    )

    stats = classification_stats(labels, Y_pred)

    np.testing.assert_array_equal(stats.confusion, [[1, 1], [0, 2]])
    np.testing.assert_allclose(stats.sensitivity, [0.5, 1.0])
    np.testing.assert_allclose(stats.specificity, [1.0, 0.5])
    assert stats.error_rate == pytest.approx(0.25)
    assert stats.mean_sensitivity == pytest.approx(0.75)


def test_classification_stats_ignores_missing_rows():
    """Verify rows with NaN predictions are left out of the confusion matrix."""
    labels = np.array([0, 1, 1])
    Y_pred = np.array([[1.0, 0.0], [np.nan, np.nan], [0.0, 1.0]])

    stats = classification_stats(labels, Y_pred)

    assert stats.confusion.sum() == 2
    assert stats.error_rate == pytest.approx(0.0)
