"""
Contains the cross-validation of K-OPLS models on a precomputed kernel.

Three partitioning schemes are supported: n-fold cross-validation, Monte Carlo
cross-validation and class-balanced Monte Carlo cross-validation. For every
cross-validation round and every number of Y-orthogonal components, a K-OPLS model is
fitted on the training rows and columns of the kernel and predicts the test rows. The
cells of this grid are independent and are executed in parallel using joblib.
"""

import warnings
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

import joblib
import numpy as np
import numpy.typing as npt
from cvmatrix.partitioner import Partitioner
from joblib import Parallel, delayed

from .exceptions import NUMERICAL_ERRORS, InputValidationError
from .numpy_kopls import KOPLS

NFOLD = "nfold"
MCCV = "mccv"
MCCVB = "mccvb"
CV_TYPES = (NFOLD, MCCV, MCCVB)


@dataclass(frozen=True)
class CVSplit:
    """Training and test indices of one cross-validation round."""

    train: npt.NDArray[np.int_]
    test: npt.NDArray[np.int_]


@dataclass(frozen=True)
class CellFailure:
    """A cross-validation cell whose K-OPLS fit failed numerically."""

    round: int
    n_ox: int
    message: str


@dataclass(frozen=True)
class CVResult:
    """
    Aggregated held-out predictions of a cross-validation.

    Attributes
    ----------
    all_yhat : Array of shape (max_ocomp + 1, N_rows, M)
        Held-out predictions for each number of Y-orthogonal components, with the
        test sets of all rounds concatenated in round order. Failed cells are NaN.

    test_index : Array of shape (N_rows,)
        Sample index of each row of `all_yhat`.

    round_index : Array of shape (N_rows,)
        Cross-validation round of each row of `all_yhat`.

    failures : tuple of CellFailure
        Cells that failed, in ascending (round, n_ox) order.
    """

    all_yhat: npt.NDArray[np.floating]
    test_index: npt.NDArray[np.int_]
    round_index: npt.NDArray[np.int_]
    failures: tuple[CellFailure, ...]


def check_cv_type(cv_type: str) -> str:
    if not isinstance(cv_type, str) or cv_type.lower() not in CV_TYPES:
        raise InputValidationError(
            f"Invalid cv_type: {cv_type!r}. cv_type must be one of {list(CV_TYPES)}."
        )
    return cv_type.lower()


def nfold_partition(n_samples: int, nfold: int) -> tuple[CVSplit, ...]:
    """
    Partitions `n_samples` samples into `nfold` interleaved folds: sample i is
    validated in round i mod `nfold`. Every sample is in exactly one test set.
    """
    if int(nfold) != nfold or not 2 <= nfold <= n_samples:
        raise InputValidationError(
            f"Invalid nfold: {nfold}. nfold must be between 2 and the number of "
            f"samples ({n_samples})."
        )
    all_indices = np.arange(n_samples, dtype=int)
    p = Partitioner(all_indices % int(nfold))
    splits = []
    for fold in sorted(p.folds_dict):
        test = np.sort(np.asarray(p.get_validation_indices(fold), dtype=int))
        train = np.setdiff1d(all_indices, test, assume_unique=True)
        splits.append(CVSplit(train=train, test=test))
    return tuple(splits)


def mccv_partition(
    n_samples: int, n_mc: int, cv_frac: float, rng: np.random.Generator
) -> tuple[CVSplit, ...]:
    """
    Draws `n_mc` independent random splits with floor(`cv_frac` * N) training
    samples each.
    """
    _check_mc(n_mc, cv_frac)
    n_train = int(np.floor(cv_frac * n_samples))
    _check_split_sizes(n_train, n_samples - n_train)
    splits = []
    for _ in range(n_mc):
        permutation = rng.permutation(n_samples)
        splits.append(
            CVSplit(
                train=np.sort(permutation[:n_train]),
                test=np.sort(permutation[n_train:]),
            )
        )
    return tuple(splits)


def mccvb_partition(
    labels: npt.ArrayLike, n_mc: int, cv_frac: float, rng: np.random.Generator
) -> tuple[CVSplit, ...]:
    """
    Draws `n_mc` independent class-balanced random splits: for each class, floor(
    `cv_frac` * N_c) of its samples are used for training and the rest for testing.
    """
    _check_mc(n_mc, cv_frac)
    labels = np.asarray(labels).reshape(-1)
    class_indices = [np.flatnonzero(labels == c) for c in np.unique(labels)]
    n_train = sum(int(np.floor(cv_frac * idx.size)) for idx in class_indices)
    _check_split_sizes(n_train, labels.size - n_train)
    splits = []
    for _ in range(n_mc):
        train = []
        test = []
        for idx in class_indices:
            permutation = rng.permutation(idx)
            n_train_class = int(np.floor(cv_frac * idx.size))
            train.append(permutation[:n_train_class])
            test.append(permutation[n_train_class:])
        splits.append(
            CVSplit(
                train=np.sort(np.concatenate(train)),
                test=np.sort(np.concatenate(test)),
            )
        )
    return tuple(splits)


def make_partition(
    cv_type: str,
    n_samples: int,
    nfold: int = 5,
    n_mc: int = 100,
    cv_frac: float = 4 / 5,
    labels: Optional[npt.ArrayLike] = None,
    rng: Optional[np.random.Generator] = None,
) -> tuple[CVSplit, ...]:
    """
    Generates the cross-validation splits of the requested scheme.

    Parameters
    ----------
    cv_type : str
        "nfold", "mccv" or "mccvb".

    n_samples : int
        Number of samples.

    nfold : int, optional, default=5
        Number of folds for "nfold".

    n_mc : int, optional, default=100
        Number of random splits for "mccv" and "mccvb".

    cv_frac : float, optional, default=4/5
        Fraction of samples used for training for "mccv" and "mccvb".

    labels : Array of shape (N,) or None, optional, default=None
        Class index of each sample. Required for "mccvb".

    rng : numpy.random.Generator or None, optional, default=None
        Random generator for the Monte Carlo schemes.

    Returns
    -------
    partition : tuple of CVSplit

    Raises
    ------
    InputValidationError
        If the scheme or its parameters are invalid, or if "mccvb" is requested
        without class labels.
    """
    cv_type = check_cv_type(cv_type)
    if cv_type == NFOLD:
        return nfold_partition(n_samples, nfold)
    if rng is None:
        rng = np.random.default_rng()
    if cv_type == MCCV:
        return mccv_partition(n_samples, n_mc, cv_frac, rng)
    if labels is None:
        raise InputValidationError(
            "Class-balanced Monte Carlo cross-validation requires a discriminant "
            "model."
        )
    return mccvb_partition(labels, n_mc, cv_frac, rng)


def _check_mc(n_mc: int, cv_frac: float) -> None:
    if int(n_mc) != n_mc or n_mc < 1:
        raise InputValidationError(f"Invalid n_mc: {n_mc}. n_mc must be at least 1.")
    if not 0 < cv_frac < 1:
        raise InputValidationError(
            f"Invalid cv_frac: {cv_frac}. cv_frac must be strictly between 0 and 1."
        )


def _check_split_sizes(n_train: int, n_test: int) -> None:
    if n_train < 2 or n_test < 1:
        raise InputValidationError(
            f"cv_frac yields {n_train} training and {n_test} test samples. At least "
            "2 training samples and 1 test sample are required."
        )


def _cell_worker(
    K_train: npt.NDArray[np.floating],
    K_test_train: npt.NDArray[np.floating],
    Y_train: npt.NDArray[np.floating],
    A: int,
    n_ox: int,
    engine_params: Mapping[str, Any],
) -> tuple[Optional[npt.NDArray[np.floating]], Optional[str]]:
    engine = KOPLS(**engine_params)
    try:
        engine.fit(K_train, Y_train, A, n_ox)
        return engine.predict(K_test_train, n_ox=n_ox), None
    except NUMERICAL_ERRORS as e:
        return None, f"{type(e).__name__}: {e}"


def cross_validate(
    K: npt.ArrayLike,
    Y: npt.ArrayLike,
    partition: Sequence[CVSplit],
    max_pcomp: int,
    max_ocomp: int,
    engine_params: Optional[Mapping[str, Any]] = None,
    n_jobs: int = 1,
    verbose: int = 0,
) -> CVResult:
    """
    Cross-validates K-OPLS models with `max_pcomp` Y-predictive and 0, ...,
    `max_ocomp` Y-orthogonal components on the kernel `K`.

    Parameters
    ----------
    K : Array of shape (N, N)
        Kernel of all samples.

    Y : Array of shape (N, M)
        Response variables.

    partition : Sequence of CVSplit
        Cross-validation rounds.

    max_pcomp : int
        Number of Y-predictive components.

    max_ocomp : int
        Maximum number of Y-orthogonal components.

    engine_params : Mapping or None, optional, default=None
        Keyword arguments of each KOPLS model.

    n_jobs : int, optional, default=1
        Number of parallel jobs. A value of -1 will use the minimum of all available
        cores and the number of cells.

    verbose : int, optional, default=0
        Controls verbosity of parallel jobs.

    Returns
    -------
    cv_result : CVResult

    Warns
    -----
    UserWarning
        If every cell with a given number of Y-orthogonal components failed.

    Notes
    -----
    A cell whose fit raises a ConvergenceError or NumericalDegeneracyError yields NaN
    predictions for its test rows and is recorded in `CVResult.failures`. The other
    cells are unaffected.
    """
    K = np.asarray(K)
    Y = np.asarray(Y)
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    engine_params = dict(engine_params) if engine_params is not None else {}
    num_steps = max_ocomp + 1
    num_cells = len(partition) * num_steps

    if n_jobs == -1:
        n_jobs = min(joblib.cpu_count(), num_cells)
    else:
        n_jobs = max(min(n_jobs, num_cells), 1)

    if verbose:
        print(
            f"Cross-validating K-OPLS with {max_pcomp} Y-predictive and 0 to "
            f"{max_ocomp} Y-orthogonal components on {len(partition)} rounds using "
            f"{n_jobs} parallel processes."
        )

    cells = Parallel(n_jobs=n_jobs, verbose=verbose)(
        delayed(_cell_worker)(
            K[np.ix_(split.train, split.train)],
            K[np.ix_(split.test, split.train)],
            Y[split.train],
            max_pcomp,
            n_ox,
            engine_params,
        )
        for split in partition
        for n_ox in range(num_steps)
    )

    test_index = np.concatenate([split.test for split in partition])
    round_index = np.concatenate(
        [np.full(split.test.size, i, dtype=int) for i, split in enumerate(partition)]
    )
    all_yhat = np.full((num_steps, test_index.size, Y.shape[1]), np.nan)
    failures = []
    offset = 0
    for i, split in enumerate(partition):
        rows = slice(offset, offset + split.test.size)
        for n_ox in range(num_steps):
            Y_pred, message = cells[i * num_steps + n_ox]
            if message is not None:
                failures.append(CellFailure(round=i, n_ox=n_ox, message=message))
            else:
                all_yhat[n_ox, rows] = Y_pred
        offset += split.test.size

    for n_ox in range(num_steps):
        if np.all(np.isnan(all_yhat[n_ox])):
            warnings.warn(
                message=f"All cross-validation fits with {n_ox} Y-orthogonal "
                "component(s) failed. The corresponding Q2 and DQ2 are NaN.",
                category=UserWarning,
            )
    return CVResult(
        all_yhat=all_yhat,
        test_index=test_index,
        round_index=round_index,
        failures=tuple(failures),
    )
