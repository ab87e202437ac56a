"""
Tests for predicting new samples with a fitted consensus K-OPLS model.
"""

import numpy as np
import pytest

from consensus_kopls import ConsensusOPLS, predict
from consensus_kopls.blocks import collect_blocks
from consensus_kopls.exceptions import ConfigurationError, InputValidationError
from consensus_kopls.prediction import consensus_test_kernel, softmax


def _make_blocks(rng, n=20):
    y = np.repeat(["control", "case"], n // 2)
    shift = np.where(y == "case", 1.0, -1.0)[:, None]
    blocks = {
        "nmr": rng.standard_normal((n, 40)),
        "ms": rng.standard_normal((n, 15)),
    }
    blocks["nmr"][:, :10] += shift
    return blocks, y


def test_softmax():
    """Verify softmax rows are positive, sum to one and keep the ordering."""
    Y = np.array([[0.2, 0.8], [1000.0, 999.0]])

    P = softmax(Y)

    np.testing.assert_allclose(P.sum(axis=1), 1.0)
    assert np.all(P > 0)
    np.testing.assert_array_equal(np.argmax(P, axis=1), np.argmax(Y, axis=1))


def test_test_kernel_of_training_blocks_is_consensus_kernel():
    """Verify the kernel of the training blocks reproduces the fused kernel."""
    rng = np.random.default_rng(42)
    blocks, y = _make_blocks(rng)
    model = ConsensusOPLS(max_ocomp=2).fit(blocks, y)

    K = consensus_test_kernel(model, collect_blocks(blocks))

    expected = sum(
        w * K_b for w, K_b in zip(model.rv_weights, model.normalized_kernels)
    )
    np.testing.assert_allclose(K, expected, atol=1e-12)


def test_prediction_round_trip():
    """Verify predicting the training blocks reproduces the training model."""
    rng = np.random.default_rng(42)
    blocks, y = _make_blocks(rng)
    model = ConsensusOPLS(max_ocomp=2).fit(blocks, y)
    engine = model.engine

    result = predict(model, blocks)

    np.testing.assert_allclose(result.Tp, engine.T, atol=1e-8)
    np.testing.assert_allclose(result.To, engine.To, atol=1e-8)
    fitted = engine.T @ engine.Bt[-1] @ engine.Cp.T + engine.Y_mean
    np.testing.assert_allclose(result.Y, fitted, atol=1e-8)


def test_discriminant_prediction_outputs():
    """Verify predicted labels, margins and probabilities of new samples."""
    rng = np.random.default_rng(42)
    blocks, y = _make_blocks(rng)
    new_blocks, _ = _make_blocks(rng, n=6)
    estimator = ConsensusOPLS(max_ocomp=1)
    estimator.fit(blocks, y)

    result = estimator.predict(new_blocks)

    assert result.Y.shape == (6, 2)
    assert result.Tp.shape == (6, 1)
    assert result.To.shape == (6, estimator.model_.n_ocomp)
    np.testing.assert_array_equal(
        result.labels, estimator.model_.classes[np.argmax(result.Y, axis=1)]
    )
    np.testing.assert_allclose(
        result.margin, np.abs(result.Y[:, 0] - result.Y[:, 1])
    )
    np.testing.assert_allclose(result.probabilities.sum(axis=1), 1.0)


def test_prediction_of_a_single_sample():
    """Verify a single new sample can be predicted."""
    rng = np.random.default_rng(42)
    blocks, y = _make_blocks(rng)
    model = ConsensusOPLS(max_ocomp=1).fit(blocks, y)

    result = predict(model, {name: X[:1] for name, X in blocks.items()})

    assert result.Y.shape == (1, 2)
    assert result.labels.shape == (1,)


def test_regression_prediction_has_no_class_outputs():
    """Verify regression predictions carry no labels or probabilities."""
    rng = np.random.default_rng(42)
    blocks, _ = _make_blocks(rng)
    y = blocks["nmr"][:, 0] + 0.1 * rng.standard_normal(20)
    model = ConsensusOPLS(max_ocomp=1, model_type="reg").fit(blocks, y)

    result = predict(model, blocks)

    assert result.Y.shape == (20, 1)
    assert result.labels is None
    assert result.margin is None
    assert result.probabilities is None


def test_prediction_rejects_mismatched_blocks():
    """Verify new blocks must match the names, order and widths of the model."""
    rng = np.random.default_rng(42)
    blocks, y = _make_blocks(rng)
    model = ConsensusOPLS(max_ocomp=1).fit(blocks, y)

    with pytest.raises(ConfigurationError):
        predict(model, {"nmr": blocks["nmr"]})
    with pytest.raises(ConfigurationError):
        predict(model, {"ms": blocks["ms"], "nmr": blocks["nmr"]})
    with pytest.raises(ConfigurationError):
        predict(model, {"nmr": blocks["nmr"][:, :39], "ms": blocks["ms"]})
    with pytest.raises(ConfigurationError):
        predict(model, [blocks["nmr"], blocks["ms"]])


def test_prediction_requires_a_fitted_model():
    """Verify predicting before fitting raises InputValidationError."""
    rng = np.random.default_rng(42)
    blocks, _ = _make_blocks(rng)

    with pytest.raises(InputValidationError):
        ConsensusOPLS().predict(blocks)
    with pytest.raises(InputValidationError):
        predict(None, blocks)
