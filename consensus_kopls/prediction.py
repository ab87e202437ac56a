"""
Contains the prediction of new samples with a fitted consensus K-OPLS model.

The kernel between the new and the training samples is computed for every block with
the kernel family, Frobenius norm and RV weight frozen at fit time, and is projected
through the deflations of the fitted K-OPLS model.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import numpy.typing as npt

from .blocks import DataBlocks, collect_blocks
from .exceptions import ConfigurationError, InputValidationError
from .model import ConsensusModel


@dataclass(frozen=True)
class PredictionResult:
    """
    Predictions for new samples.

    Attributes
    ----------
    Y : Array of shape (N_new, M)
        Predicted response.

    Tp : Array of shape (N_new, n_pcomp)
        Predicted Y-predictive scores.

    To : Array of shape (N_new, n_ocomp)
        Predicted Y-orthogonal scores.

    labels : Array of shape (N_new,) or None
        Predicted class, the class of the highest column of `Y`. None for
        regression models.

    margin : Array of shape (N_new,) or None
        Highest minus second highest column of `Y`. None for regression models.

    probabilities : Array of shape (N_new, M) or None
        Softmax of the rows of `Y`. None for regression models.
    """

    Y: npt.NDArray[np.floating]
    Tp: npt.NDArray[np.floating]
    To: npt.NDArray[np.floating]
    labels: Optional[np.ndarray] = None
    margin: Optional[npt.NDArray[np.floating]] = None
    probabilities: Optional[npt.NDArray[np.floating]] = None


def softmax(Y: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
    """Row-wise softmax."""
    exponentials = np.exp(Y - Y.max(axis=1, keepdims=True))
    return exponentials / exponentials.sum(axis=1, keepdims=True)


def _check_blocks(model: ConsensusModel, data: DataBlocks) -> None:
    if data.names != model.block_names:
        raise ConfigurationError(
            f"New blocks {list(data.names)} do not match the fitted blocks "
            f"{list(model.block_names)}."
        )
    for name, X_new, X_train, new_columns, train_columns in zip(
        data.names, data.arrays, model.blocks, data.columns, model.block_columns
    ):
        if X_new.shape[1] != X_train.shape[1]:
            raise ConfigurationError(
                f"Block {name!r} has {X_new.shape[1]} variables but the model was "
                f"fitted with {X_train.shape[1]}."
            )
        if (
            new_columns is not None
            and train_columns is not None
            and list(new_columns) != list(train_columns)
        ):
            raise ConfigurationError(
                f"The variables of block {name!r} do not match the variables the "
                "model was fitted with."
            )


def consensus_test_kernel(
    model: ConsensusModel, data: DataBlocks
) -> npt.NDArray[np.floating]:
    """
    Computes :math:`\\sum_b RV_b k(X_{new,b}, X_{train,b}) / \\|K_{train,b}\\|_F`,
    summed in ascending block order.

    Returns
    -------
    K_test_train : Array of shape (N_new, N)
    """
    K = np.zeros((data.n_samples, model.blocks[0].shape[0]))
    for weight, norm, X_new, X_train in zip(
        model.rv_weights, model.kernel_norms, data.arrays, model.blocks
    ):
        K += weight * model.kernel(X_new, X_train) / norm
    return K


def predict(
    model: ConsensusModel,
    blocks: Union[Mapping[str, npt.ArrayLike], Sequence[npt.ArrayLike]],
) -> PredictionResult:
    """
    Predicts the response of new samples.

    Parameters
    ----------
    model : ConsensusModel
        Fitted model.

    blocks : Mapping of name to Array of shape (N_new, K_b), or Sequence of Arrays
        New data blocks with the same names, order and variables as the blocks the
        model was fitted on.

    Returns
    -------
    prediction : PredictionResult

    Raises
    ------
    ConfigurationError
        If the new blocks do not match the fitted blocks.

    InputValidationError
        If the new blocks are not valid numeric matrices with equal row counts.
    """
    if not isinstance(model, ConsensusModel):
        raise InputValidationError("predict requires a fitted ConsensusModel.")
    engine = model.engine
    data = collect_blocks(blocks, dtype=engine.dtype, min_rows=1)
    _check_blocks(model, data)

    K_test_train = consensus_test_kernel(model, data)
    Tp, To, Y = engine.project(K_test_train, n_ox=model.n_ocomp)
    if not model.is_discriminant:
        return PredictionResult(Y=Y, Tp=Tp, To=To)

    order = np.argsort(-Y, axis=1, kind="stable")
    top = np.take_along_axis(Y, order[:, :1], axis=1)[:, 0]
    second = np.take_along_axis(Y, order[:, 1:2], axis=1)[:, 0]
    return PredictionResult(
        Y=Y,
        Tp=Tp,
        To=To,
        labels=model.classes[order[:, 0]],
        margin=top - second,
        probabilities=softmax(Y),
    )
