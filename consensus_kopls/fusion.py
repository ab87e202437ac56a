"""
Contains the RV-coefficient weighting of data blocks and their fusion into a single
consensus kernel.

Each block kernel is normalized by its Frobenius norm and weighted by the rescaled
modified RV coefficient between the normalized kernel and the response. The kernels
of the blocks are computed in parallel using joblib. The weighted sum is reduced in
ascending block order once all blocks have been computed.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import joblib
import numpy as np
import numpy.linalg as la
import numpy.typing as npt
from joblib import Parallel, delayed

from .exceptions import NumericalDegeneracyError
from .kernels import Kernel


@dataclass(frozen=True)
class FusionResult:
    """
    Result of the block weighting and fusion.

    Attributes
    ----------
    rv_weights : Array of shape (B,)
        Rescaled RV coefficient of each block, in [0, 1].

    norms : Array of shape (B,)
        Frobenius norm of each block kernel before normalization.

    normalized_kernels : tuple of B Arrays of shape (N, N)
        Kernel of each block divided by its Frobenius norm.

    kernel : Array of shape (N, N)
        Weighted sum of the normalized kernels.
    """

    rv_weights: npt.NDArray[np.floating]
    norms: npt.NDArray[np.floating]
    normalized_kernels: tuple[npt.NDArray[np.floating], ...]
    kernel: npt.NDArray[np.floating]


def rv_modified(X: npt.ArrayLike, Y: npt.ArrayLike) -> float:
    """
    Computes the modified RV coefficient by Smilde et al. between `X` and `Y`:
    https://doi.org/10.1093/bioinformatics/btn634

    The diagonals of :math:`XX^T` and :math:`YY^T` are removed before computing the
    coefficient, so the value lies in [-1, 1] and is unbiased towards high
    dimensional matrices.

    Parameters
    ----------
    X : Array of shape (N, K)

    Y : Array of shape (N, M)

    Returns
    -------
    rv : float

    Raises
    ------
    NumericalDegeneracyError
        If either of the cross-product matrices is zero outside its diagonal.
    """
    X = np.asarray(X, dtype=np.float64)
    Y = np.asarray(Y, dtype=np.float64)
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    AA = X @ X.T
    BB = Y @ Y.T
    np.fill_diagonal(AA, 0)
    np.fill_diagonal(BB, 0)
    denominator = np.sqrt(np.sum(AA**2) * np.sum(BB**2))
    if denominator <= np.finfo(np.float64).tiny:
        raise NumericalDegeneracyError(
            "The RV coefficient is undefined because a cross-product matrix is zero "
            "outside its diagonal."
        )
    return float(np.clip(np.sum(AA * BB) / denominator, -1.0, 1.0))


def normalized_kernel(
    X: npt.ArrayLike, kernel: Kernel, dtype: np.floating = np.float64
) -> tuple[npt.NDArray[np.floating], float]:
    """
    Computes the kernel of a block and divides it by its Frobenius norm.

    Returns
    -------
    K : Array of shape (N, N)
        Normalized kernel.

    norm : float
        Frobenius norm of the kernel before normalization.

    Raises
    ------
    NumericalDegeneracyError
        If the Frobenius norm of the kernel is zero.
    """
    K = np.asarray(kernel(np.asarray(X, dtype=dtype)), dtype=dtype)
    norm = la.norm(K, ord="fro")
    if not np.isfinite(norm) or norm <= np.finfo(dtype).tiny:
        raise NumericalDegeneracyError(
            "The kernel of a data block has zero Frobenius norm."
        )
    return K / norm, float(norm)


def _block_worker(
    X: npt.NDArray[np.floating],
    Y_reference: npt.NDArray[np.floating],
    kernel: Kernel,
    dtype: np.floating,
) -> tuple[float, npt.NDArray[np.floating], float]:
    K, norm = normalized_kernel(X, kernel, dtype)
    rv = (rv_modified(K, Y_reference) + 1) / 2
    return rv, K, norm


def fuse_kernels(
    blocks: Sequence[npt.ArrayLike],
    Y_reference: npt.ArrayLike,
    kernel: Kernel,
    n_jobs: int = 1,
    verbose: int = 0,
    dtype: np.floating = np.float64,
) -> FusionResult:
    """
    Builds the normalized kernel and RV weight of every block and fuses them into
    the consensus kernel :math:`\\sum_i RV_i K_i`.

    Parameters
    ----------
    blocks : Sequence of Arrays of shape (N, K_i)
        Data blocks sharing the same N samples.

    Y_reference : Array of shape (N, M)
        Response the blocks are weighted against.

    kernel : Kernel
        Kernel family used for every block.

    n_jobs : int, optional, default=1
        Number of parallel jobs. A value of -1 will use the minimum of all available
        cores and the number of blocks.

    verbose : int, optional, default=0
        Controls verbosity of parallel jobs.

    dtype : numpy.float, default=numpy.float64

    Returns
    -------
    fusion : FusionResult

    Raises
    ------
    NumericalDegeneracyError
        If a block kernel has zero Frobenius norm or an RV coefficient is undefined.
    """
    Y_reference = np.asarray(Y_reference, dtype=dtype)
    if n_jobs == -1:
        n_jobs = min(joblib.cpu_count(), len(blocks))
    else:
        n_jobs = max(min(n_jobs, len(blocks)), 1)

    results = Parallel(n_jobs=n_jobs, verbose=verbose)(
        delayed(_block_worker)(np.asarray(X, dtype=dtype), Y_reference, kernel, dtype)
        for X in blocks
    )
    weights = np.asarray([rv for rv, _, _ in results], dtype=dtype)
    normalized_kernels = tuple(K for _, K, _ in results)
    norms = np.asarray([norm for _, _, norm in results], dtype=dtype)

    # Fixed ascending block order keeps the floating-point sum reproducible.
    fused = np.zeros_like(normalized_kernels[0])
    for weight, K in zip(weights, normalized_kernels):
        fused += weight * K
    return FusionResult(
        rv_weights=weights,
        norms=norms,
        normalized_kernels=normalized_kernels,
        kernel=fused,
    )
