"""
Contains the quality metrics of cross-validated predictions: Q2, the discriminant Q2
(DQ2) by Westerhuis et al., and per-class sensitivity and specificity.

Rows with non-finite predictions are treated as missing and left out of every
metric.
"""

from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
from sklearn.metrics import confusion_matrix


def _finite_rows(Y_pred: npt.NDArray[np.floating]) -> npt.NDArray[np.bool_]:
    if Y_pred.ndim == 1:
        return np.isfinite(Y_pred)
    return np.all(np.isfinite(Y_pred), axis=1)


def q2(Y_true: npt.ArrayLike, Y_pred: npt.ArrayLike) -> float:
    """
    Computes the cross-validated proportion of explained variation
    :math:`Q^2 = 1 - PRESS / TSS`.

    Parameters
    ----------
    Y_true : Array of shape (N, M) or (N,)
        True responses of the held-out samples.

    Y_pred : Array of shape (N, M) or (N,)
        Held-out predictions. Rows containing NaN are ignored.

    Returns
    -------
    q2 : float
        NaN if no row has a finite prediction or the retained responses have no
        variation.
    """
    Y_true = np.asarray(Y_true, dtype=np.float64)
    Y_pred = np.asarray(Y_pred, dtype=np.float64)
    rows = _finite_rows(Y_pred)
    if not np.any(rows):
        return np.nan
    Y_true = Y_true[rows]
    press = np.sum((Y_true - Y_pred[rows]) ** 2)
    tss = np.sum((Y_true - Y_true.mean(axis=0)) ** 2)
    if tss <= 0:
        return np.nan
    return float(1 - press / tss)


def dq2(y_true: npt.ArrayLike, y_pred: npt.ArrayLike) -> tuple[float, float]:
    """
    Computes the discriminant Q2 by Westerhuis et al.:
    https://doi.org/10.1007/s11306-007-0099-6

    For a two-class indicator `y_true`, residuals of samples of the lower class that
    are predicted below it, and of samples of the upper class that are predicted
    above it, are disregarded when accumulating the prediction error.

    Parameters
    ----------
    y_true : Array of shape (N,)
        Two-valued class indicator, e.g. a column of a dummy matrix.

    y_pred : Array of shape (N,)
        Held-out predictions. NaN predictions are ignored.

    Returns
    -------
    dq2 : float
        NaN if no prediction is finite or `y_true` has no variation.

    pressd : float
        Prediction error sum of squares of the counted residuals.
    """
    y_true = np.asarray(y_true, dtype=np.float64).reshape(-1)
    y_pred = np.asarray(y_pred, dtype=np.float64).reshape(-1)
    rows = np.isfinite(y_pred)
    if not np.any(rows):
        return np.nan, np.nan
    y_true = y_true[rows]
    y_pred = y_pred[rows]
    low, high = y_true.min(), y_true.max()

    errors_low = y_pred[y_true == low] - low
    errors_high = y_pred[y_true == high] - high
    pressd = np.sum(errors_low[errors_low > 0] ** 2) + np.sum(
        errors_high[errors_high < 0] ** 2
    )
    tss = np.sum((y_true - y_true.mean()) ** 2)
    if tss <= 0:
        return np.nan, float(pressd)
    return float(1 - pressd / tss), float(pressd)


@dataclass(frozen=True)
class ClassificationStats:
    """
    Class assignment quality of cross-validated predictions. The predicted class of
    a sample is the column with the highest prediction.

    Attributes
    ----------
    confusion : Array of shape (M, M)
        Confusion matrix, rows are true classes and columns are predicted classes.

    sensitivity : Array of shape (M,)
        True positive rate of each class.

    specificity : Array of shape (M,)
        True negative rate of each class.

    mean_sensitivity, mean_specificity, error_rate : float
    """

    confusion: npt.NDArray[np.int_]
    sensitivity: npt.NDArray[np.floating]
    specificity: npt.NDArray[np.floating]
    mean_sensitivity: float
    mean_specificity: float
    error_rate: float


def classification_stats(
    labels_true: npt.ArrayLike, Y_pred: npt.ArrayLike
) -> ClassificationStats:
    """
    Computes the confusion matrix, sensitivity and specificity of each class.

    Parameters
    ----------
    labels_true : Array of shape (N,)
        Integer class index of each sample.

    Y_pred : Array of shape (N, M)
        Predicted indicator matrix. Rows containing NaN are ignored.

    Returns
    -------
    stats : ClassificationStats
    """
    labels_true = np.asarray(labels_true).reshape(-1)
    Y_pred = np.asarray(Y_pred, dtype=np.float64)
    num_classes = Y_pred.shape[1]
    rows = _finite_rows(Y_pred)
    if not np.any(rows):
        missing = np.full(num_classes, np.nan)
        return ClassificationStats(
            confusion=np.zeros((num_classes, num_classes), dtype=int),
            sensitivity=missing,
            specificity=missing.copy(),
            mean_sensitivity=np.nan,
            mean_specificity=np.nan,
            error_rate=np.nan,
        )
    labels_pred = np.argmax(Y_pred[rows], axis=1)
    confusion = confusion_matrix(
        labels_true[rows], labels_pred, labels=np.arange(num_classes)
    )
    total = confusion.sum()
    true_positives = np.diag(confusion).astype(np.float64)
    positives = confusion.sum(axis=1)
    predicted_positives = confusion.sum(axis=0)
    negatives = total - positives
    true_negatives = total - positives - predicted_positives + true_positives
    with np.errstate(divide="ignore", invalid="ignore"):
        sensitivity = np.where(positives > 0, true_positives / positives, np.nan)
        specificity = np.where(negatives > 0, true_negatives / negatives, np.nan)
    error_rate = 1 - true_positives.sum() / total
    return ClassificationStats(
        confusion=confusion,
        sensitivity=sensitivity,
        specificity=specificity,
        mean_sensitivity=float(np.nanmean(sensitivity)),
        mean_specificity=float(np.nanmean(specificity)),
        error_rate=float(error_rate),
    )
