"""
Contains the selection of the number of Y-orthogonal components from cross-validated
predictions.

Discriminant models are selected on the DQ2 curve and regression models on the Q2
curve. The number of Y-orthogonal components is increased greedily while the curve
improves by more than a fixed threshold.
"""

import math
from dataclasses import dataclass
from typing import Optional

import joblib
import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed

from .cross_validation import CVResult
from .metrics import dq2, q2
from .response import Response

IMPROVEMENT_THRESHOLD = 0.01


@dataclass(frozen=True)
class SelectionResult:
    """
    Cross-validated quality curves and the selected number of Y-orthogonal
    components.

    Attributes
    ----------
    curve : Array of shape (max_ocomp + 1,)
        Curve the selection is made on: DQ2 for discriminant models, Q2 otherwise.

    q2 : Array of shape (max_ocomp + 1,)
        Q2 for 0, ..., max_ocomp Y-orthogonal components.

    dq2 : Array of shape (max_ocomp + 1,) or None
        Mean DQ2 over response columns. None for regression models.

    dq2_table, pressd_table : Arrays of shape (max_ocomp + 1, M) or None
        DQ2 and PRESSD of each response column. None for regression models.

    n_ocomp : int
        Selected number of Y-orthogonal components.
    """

    curve: npt.NDArray[np.floating]
    q2: npt.NDArray[np.floating]
    dq2: Optional[npt.NDArray[np.floating]]
    dq2_table: Optional[npt.NDArray[np.floating]]
    pressd_table: Optional[npt.NDArray[np.floating]]
    n_ocomp: int


def split_workers(n_jobs: int, n_outer: int, n_inner: int) -> tuple[int, int]:
    """
    Splits a worker budget between an outer and an inner loop. The inner loop gets
    about the square root of the usable workers, capped by `n_inner`, and the outer
    loop gets the rest, so that their product does not exceed `n_jobs`.

    Returns
    -------
    outer, inner : int
    """
    if n_jobs == -1:
        n_jobs = joblib.cpu_count()
    n_jobs = max(n_jobs, 1)
    usable = max(min(n_outer * n_inner, n_jobs), 1)
    inner = max(min(math.isqrt(usable), n_inner), 1)
    outer = max(n_jobs // inner, 1)
    return outer, inner


def q2_curve(
    Y_true: npt.NDArray[np.floating], all_yhat: npt.NDArray[np.floating]
) -> npt.NDArray[np.floating]:
    """Q2 for each number of Y-orthogonal components."""
    return np.asarray([q2(Y_true, Y_pred) for Y_pred in all_yhat])


def dq2_tables(
    Y_true: npt.NDArray[np.floating],
    all_yhat: npt.NDArray[np.floating],
    n_jobs: int = 1,
) -> tuple[npt.NDArray[np.floating], npt.NDArray[np.floating]]:
    """
    DQ2 and PRESSD for each number of Y-orthogonal components and each response
    column. Each column is treated as its own two-class problem.

    Returns
    -------
    dq2_table, pressd_table : Arrays of shape (max_ocomp + 1, M)
    """
    num_steps, _, M = all_yhat.shape
    outer, inner = split_workers(n_jobs, num_steps, M)
    results = Parallel(n_jobs=outer * inner, prefer="threads")(
        delayed(dq2)(Y_true[:, j], all_yhat[i, :, j])
        for i in range(num_steps)
        for j in range(M)
    )
    table = np.asarray(results, dtype=np.float64).reshape(num_steps, M, 2)
    return table[..., 0], table[..., 1]


def _nan_row_mean(table: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
    finite = np.isfinite(table)
    counts = finite.sum(axis=1)
    sums = np.where(finite, table, 0).sum(axis=1)
    means = np.full(table.shape[0], np.nan)
    np.divide(sums, counts, out=means, where=counts > 0)
    return means


def select_orthogonal_components(
    curve: npt.ArrayLike,
    max_ocomp: int,
    threshold: float = IMPROVEMENT_THRESHOLD,
) -> int:
    """
    Greedily selects the number of Y-orthogonal components on a quality curve.

    Starting from one Y-orthogonal component, the number is increased while the
    next value of the curve exceeds the current one by more than `threshold`. A
    plateau, a decrease or a NaN stops the search.

    Parameters
    ----------
    curve : Array of shape (max_ocomp + 1,)
        Quality for 0, ..., max_ocomp Y-orthogonal components.

    max_ocomp : int
        Maximum number of Y-orthogonal components.

    threshold : float, optional, default=0.01

    Returns
    -------
    n_ocomp : int
        Between 0 and `max_ocomp`. Zero only if `max_ocomp` is zero.
    """
    curve = np.asarray(curve, dtype=np.float64)
    if max_ocomp <= 0:
        return 0
    n_ocomp = 1
    while n_ocomp < max_ocomp:
        improvement = curve[n_ocomp + 1] - curve[n_ocomp]
        if not improvement > threshold:
            break
        n_ocomp += 1
    return n_ocomp


def select_model(
    response: Response, cv_result: CVResult, max_ocomp: int, n_jobs: int = 1
) -> SelectionResult:
    """
    Computes the cross-validated quality curves of `cv_result` and selects the
    number of Y-orthogonal components.
    """
    Y_true = response.Y[cv_result.test_index]
    q2_values = q2_curve(Y_true, cv_result.all_yhat)
    if not response.is_discriminant:
        return SelectionResult(
            curve=q2_values,
            q2=q2_values,
            dq2=None,
            dq2_table=None,
            pressd_table=None,
            n_ocomp=select_orthogonal_components(q2_values, max_ocomp),
        )
    dq2_table, pressd_table = dq2_tables(Y_true, cv_result.all_yhat, n_jobs)
    dq2_values = _nan_row_mean(dq2_table)
    return SelectionResult(
        curve=dq2_values,
        q2=q2_values,
        dq2=dq2_values,
        dq2_table=dq2_table,
        pressd_table=pressd_table,
        n_ocomp=select_orthogonal_components(dq2_values, max_ocomp),
    )
