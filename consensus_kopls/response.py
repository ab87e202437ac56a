"""
Contains the preparation of the response for regression and discriminant analysis
models.

For discriminant analysis, class labels are dummy coded into an indicator matrix with
one column per class, sorted by class label.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt

from .exceptions import InputValidationError

REGRESSION = "regression"
DISCRIMINANT = "discriminant"

_MODEL_TYPES = {
    "regression": REGRESSION,
    "reg": REGRESSION,
    "discriminant": DISCRIMINANT,
    "da": DISCRIMINANT,
}


def canonical_model_type(model_type: str) -> str:
    """
    Maps a model type tag to either "regression" or "discriminant".

    Raises
    ------
    InputValidationError
        If `model_type` is not one of "regression", "reg", "discriminant" or "da".
    """
    if not isinstance(model_type, str) or model_type.lower() not in _MODEL_TYPES:
        raise InputValidationError(
            f"Invalid model type: {model_type!r}. Model type must be one of "
            f"{sorted(_MODEL_TYPES)}."
        )
    return _MODEL_TYPES[model_type.lower()]


@dataclass(frozen=True)
class Response:
    """
    Response prepared for modelling.

    Attributes
    ----------
    model_type : str
        Either "regression" or "discriminant".

    Y : Array of shape (N, M)
        Numeric response. For discriminant analysis, the dummy indicator matrix.

    classes : Array of shape (M,) or None
        Class labels corresponding to the columns of `Y`. None for regression.

    labels : Array of shape (N,) or None
        Integer class index of each sample. None for regression.
    """

    model_type: str
    Y: npt.NDArray[np.floating]
    classes: Optional[np.ndarray] = None
    labels: Optional[npt.NDArray[np.int_]] = None

    @property
    def is_discriminant(self) -> bool:
        return self.model_type == DISCRIMINANT

    @property
    def reference(self) -> npt.NDArray[np.floating]:
        """
        Response used to weight the blocks: column-centered `Y` for regression and
        the uncentered indicator matrix for discriminant analysis.
        """
        if self.is_discriminant:
            return self.Y
        return self.Y - self.Y.mean(axis=0, keepdims=True)

    def permuted(self, permutation: npt.NDArray[np.int_]) -> "Response":
        """Returns the response with its rows reordered by `permutation`."""
        return Response(
            model_type=self.model_type,
            Y=self.Y[permutation],
            classes=self.classes,
            labels=None if self.labels is None else self.labels[permutation],
        )


def dummy_code(
    y: npt.ArrayLike,
) -> tuple[npt.NDArray[np.floating], np.ndarray, npt.NDArray[np.int_]]:
    """
    Dummy codes a vector of class labels.

    Parameters
    ----------
    y : Array of shape (N,)
        Class labels.

    Returns
    -------
    Y : Array of shape (N, M)
        Indicator matrix with one column per class.

    classes : Array of shape (M,)
        Sorted unique class labels.

    labels : Array of shape (N,)
        Index into `classes` of each sample.
    """
    classes, labels = np.unique(np.asarray(y), return_inverse=True)
    labels = labels.reshape(-1)
    Y = np.zeros(shape=(labels.size, classes.size), dtype=np.float64)
    Y[np.arange(labels.size), labels] = 1
    return Y, classes, labels


def prepare_response(
    Y: npt.ArrayLike, model_type: str, n_samples: Optional[int] = None
) -> Response:
    """
    Validates `Y` and prepares it for a regression or discriminant analysis model.

    Parameters
    ----------
    Y : Array of shape (N,) or (N, M)
        Numeric response for regression. For discriminant analysis, either a vector
        of class labels or a dummy indicator matrix with exactly one 1 per row.

    model_type : str
        "regression" ("reg") or "discriminant" ("da").

    n_samples : int or None, optional, default=None
        Expected number of rows of `Y`.

    Returns
    -------
    response : Response

    Raises
    ------
    InputValidationError
        If `Y` has the wrong shape, is not numeric for regression, contains
        non-finite values, if a regression response is constant, or if a class of
        a discriminant response has fewer than two samples.
    """
    model_type = canonical_model_type(model_type)
    Y = np.asarray(Y)
    if Y.ndim not in (1, 2) or Y.size == 0:
        raise InputValidationError(
            f"Y must be a non-empty vector or matrix, got shape {Y.shape}."
        )
    if n_samples is not None and Y.shape[0] != n_samples:
        raise InputValidationError(
            f"Y has {Y.shape[0]} rows but the data blocks have {n_samples} rows."
        )

    if model_type == REGRESSION:
        if not np.issubdtype(Y.dtype, np.number) or np.issubdtype(
            Y.dtype, np.complexfloating
        ):
            raise InputValidationError(
                "Y must be numeric for a regression model. Use model_type='da' for "
                "class labels."
            )
        Y = Y.astype(np.float64)
        if Y.ndim == 1:
            Y = Y.reshape(-1, 1)
        if not np.all(np.isfinite(Y)):
            raise InputValidationError("Y contains non-finite values.")
        if np.all(np.ptp(Y, axis=0) == 0):
            raise InputValidationError(
                "Y is constant. A regression response must vary across samples."
            )
        return Response(model_type=model_type, Y=Y)

    if Y.ndim == 2 and Y.shape[1] > 1:
        if not _is_indicator_matrix(Y):
            raise InputValidationError(
                "A discriminant response matrix must be a dummy matrix with exactly "
                "one 1 per row."
            )
        labels = np.argmax(Y, axis=1)
        Y_dummy = Y.astype(np.float64)
        classes = np.arange(Y.shape[1])
    else:
        Y_dummy, classes, labels = dummy_code(Y.reshape(-1))

    counts = np.bincount(labels, minlength=classes.size)
    if classes.size < 2:
        raise InputValidationError(
            "A discriminant response must contain at least two classes."
        )
    if np.any(counts < 2):
        raise InputValidationError(
            f"Every class must contain at least two samples, got counts "
            f"{dict(zip(classes.tolist(), counts.tolist()))}. Consider "
            "model_type='reg'."
        )
    return Response(model_type=model_type, Y=Y_dummy, classes=classes, labels=labels)


def _is_indicator_matrix(Y: np.ndarray) -> bool:
    if not np.issubdtype(Y.dtype, np.number) and Y.dtype != bool:
        return False
    Y = Y.astype(np.float64)
    return bool(np.all((Y == 0) | (Y == 1)) and np.all(Y.sum(axis=1) == 1))
