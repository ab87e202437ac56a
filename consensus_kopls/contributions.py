"""
Contains the decomposition of a fitted consensus K-OPLS model into the contributions,
loadings and variable importances of the individual data blocks.

The contribution of a block to a component is the quadratic form of the component's
score vector with the block's normalized kernel, normalized to sum to one over the
blocks.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import joblib
import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed


@dataclass(frozen=True)
class ContributionResult:
    """
    Per-block decomposition of a consensus model with A Y-predictive and nox
    Y-orthogonal components.

    Attributes
    ----------
    component_names : tuple of str
        "p_1", ..., "p_A", "o_1", ..., "o_nox".

    lambdas : Array of shape (B, A + nox)
        Quadratic form :math:`t^T K_b t` of each block kernel and score vector.

    contributions : Array of shape (B, A + nox)
        `lambdas` normalized to sum to one over the blocks in each column.

    loadings : tuple of B Arrays of shape (K_b, A + nox)
        Loadings of the variables of each block.

    vip : tuple of B Arrays of shape (K_b, 2)
        Variable importance in projection of the variables of each block for the
        Y-predictive (first column) and the Y-orthogonal (second column) components.
    """

    component_names: tuple[str, ...]
    lambdas: npt.NDArray[np.floating]
    contributions: npt.NDArray[np.floating]
    loadings: tuple[npt.NDArray[np.floating], ...]
    vip: tuple[npt.NDArray[np.floating], ...]


def component_names(A: int, nox: int) -> tuple[str, ...]:
    return tuple(f"p_{i + 1}" for i in range(A)) + tuple(
        f"o_{i + 1}" for i in range(nox)
    )


def block_lambda(
    K_block: npt.NDArray[np.floating], scores: npt.NDArray[np.floating]
) -> npt.NDArray[np.floating]:
    """Diagonal of :math:`T^T K_b T`."""
    return np.einsum("ia,ij,ja->a", scores, K_block, scores)


def block_loadings(
    X_block: npt.NDArray[np.floating], scores: npt.NDArray[np.floating]
) -> npt.NDArray[np.floating]:
    """
    Projects the variables of a block onto the score vectors:
    :math:`X_b^T T \\mathrm{diag}(T^T T)^{-1}`.
    """
    return (X_block.T @ scores) / np.sum(scores**2, axis=0)


def block_vip(
    loadings: npt.NDArray[np.floating], weights: npt.NDArray[np.floating]
) -> npt.NDArray[np.floating]:
    """
    Variable importance of a block's variables from its loadings. Each component's
    squared normalized loadings are weighted by `weights`. The mean squared VIP over
    the variables of the block is one.

    Returns
    -------
    vip : Array of shape (K_b,)
        NaN if there are no components or all weights are zero.
    """
    num_variables = loadings.shape[0]
    total_weight = np.sum(weights)
    if loadings.shape[1] == 0 or not total_weight > 0:
        return np.full(num_variables, np.nan)
    norms = np.sum(loadings**2, axis=0)
    normalized = np.divide(
        loadings**2, norms, out=np.zeros_like(loadings), where=norms > 0
    )
    return np.sqrt(num_variables * (normalized @ weights) / total_weight)


def _block_worker(
    X_block: npt.NDArray[np.floating],
    K_block: npt.NDArray[np.floating],
    scores: npt.NDArray[np.floating],
    A: int,
    predictive_weights: npt.NDArray[np.floating],
) -> tuple[
    npt.NDArray[np.floating], npt.NDArray[np.floating], npt.NDArray[np.floating]
]:
    lambdas = block_lambda(K_block, scores)
    loadings = block_loadings(X_block, scores)
    vip = np.column_stack(
        (
            block_vip(loadings[:, :A], predictive_weights),
            block_vip(loadings[:, A:], lambdas[A:]),
        )
    )
    return lambdas, loadings, vip


def decompose(
    blocks: Sequence[npt.NDArray[np.floating]],
    normalized_kernels: Sequence[npt.NDArray[np.floating]],
    Tp: npt.NDArray[np.floating],
    To: npt.NDArray[np.floating],
    Y: npt.NDArray[np.floating],
    n_jobs: int = 1,
    verbose: int = 0,
) -> ContributionResult:
    """
    Computes block contributions, loadings and variable importances.

    Parameters
    ----------
    blocks : Sequence of B Arrays of shape (N, K_b)
        Data blocks the model was fitted on.

    normalized_kernels : Sequence of B Arrays of shape (N, N)
        Frobenius-normalized kernel of each block.

    Tp : Array of shape (N, A)
        Y-predictive scores of the model.

    To : Array of shape (N, nox)
        Y-orthogonal scores of the model.

    Y : Array of shape (N, M)
        Response the model was fitted on. Its column-centered variation explained
        by each Y-predictive component weights the Y-predictive VIP.

    n_jobs : int, optional, default=1
        Number of parallel jobs. A value of -1 will use the minimum of all available
        cores and the number of blocks.

    verbose : int, optional, default=0
        Controls verbosity of parallel jobs.

    Returns
    -------
    contributions : ContributionResult
    """
    A = Tp.shape[1]
    nox = To.shape[1]
    scores = np.hstack((Tp, To))
    Yc = Y - Y.mean(axis=0, keepdims=True)
    predictive_weights = np.sum((Tp.T @ Yc) ** 2, axis=1) / np.sum(Tp**2, axis=0)

    if n_jobs == -1:
        n_jobs = min(joblib.cpu_count(), len(blocks))
    else:
        n_jobs = max(min(n_jobs, len(blocks)), 1)
    results = Parallel(n_jobs=n_jobs, verbose=verbose)(
        delayed(_block_worker)(X_block, K_block, scores, A, predictive_weights)
        for X_block, K_block in zip(blocks, normalized_kernels)
    )

    lambdas = np.vstack([result[0] for result in results])
    column_sums = lambdas.sum(axis=0, keepdims=True)
    contributions = np.full_like(lambdas, np.nan)
    np.divide(lambdas, column_sums, out=contributions, where=column_sums > 0)
    return ContributionResult(
        component_names=component_names(A, nox),
        lambdas=lambdas,
        contributions=contributions,
        loadings=tuple(result[1] for result in results),
        vip=tuple(result[2] for result in results),
    )
