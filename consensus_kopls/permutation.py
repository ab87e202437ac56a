"""
Contains the permutation test of a consensus K-OPLS model.

The whole modelling pipeline is repeated with randomly permuted responses to build
empirical null distributions of R2Y, Q2Y and DQ2Y. Each permutation draws its
randomness from its own child seed, so a permutation gives the same result
regardless of how many permutations are run.
"""

import warnings
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt
from tqdm import tqdm

from .exceptions import NUMERICAL_ERRORS
from .response import Response

# (R2Y, Q2Y, DQ2Y) of one model. DQ2Y is NaN for regression models.
Metrics = tuple[float, float, float]


@dataclass(frozen=True)
class PermutationStats:
    """
    Null distributions of the model quality metrics.

    Attributes
    ----------
    R2Y, Q2Y : Arrays of shape (n_perm + 1,)
        The first element is the metric of the unpermuted model, the others those of
        the permuted models. Failed permutations are NaN.

    DQ2Y : Array of shape (n_perm + 1,) or None
        As above for discriminant models. None for regression models.

    p_values : Mapping of str to float
        Empirical p-value of each metric: the fraction of valid permutations, with
        the unpermuted model counted once, whose metric is at least that of the
        unpermuted model.

    n_failed : int
        Number of permutations that failed numerically.
    """

    R2Y: npt.NDArray[np.floating]
    Q2Y: npt.NDArray[np.floating]
    DQ2Y: Optional[npt.NDArray[np.floating]]
    p_values: Mapping[str, float]
    n_failed: int


def empirical_p_value(values: npt.NDArray[np.floating]) -> float:
    """
    Computes :math:`(1 + \\#\\{perm \\geq ref\\}) / (1 + n)` where `ref` is the first
    element of `values` and the n permutations are the finite remaining elements.
    """
    reference = values[0]
    if not np.isfinite(reference):
        return np.nan
    permuted = values[1:][np.isfinite(values[1:])]
    return float((1 + np.sum(permuted >= reference)) / (1 + permuted.size))


def permutation_test(
    run: Callable[[Response, np.random.Generator], Metrics],
    response: Response,
    reference: Metrics,
    n_perm: int,
    seed_sequence: np.random.SeedSequence,
    verbose: int = 0,
) -> PermutationStats:
    """
    Runs `n_perm` permutations of the response through `run`.

    Parameters
    ----------
    run : Callable receiving a permuted Response and a numpy.random.Generator, and
    returning the (R2Y, Q2Y, DQ2Y) of the model fitted on it.

    response : Response
        Unpermuted response.

    reference : tuple of float
        (R2Y, Q2Y, DQ2Y) of the unpermuted model.

    n_perm : int
        Number of permutations.

    seed_sequence : numpy.random.SeedSequence
        Parent seed. Permutation i uses its i-th spawned child.

    verbose : int, optional, default=0
        Whether to display a progress bar.

    Returns
    -------
    perm_stats : PermutationStats

    Warns
    -----
    UserWarning
        If any permutation failed numerically.
    """
    n_samples = response.Y.shape[0]
    rows = [reference]
    n_failed = 0
    for seed in tqdm(
        seed_sequence.spawn(n_perm), desc="Permutations", disable=not verbose
    ):
        rng = np.random.default_rng(seed)
        permuted = response.permuted(rng.permutation(n_samples))
        try:
            rows.append(run(permuted, rng))
        except NUMERICAL_ERRORS:
            rows.append((np.nan, np.nan, np.nan))
            n_failed += 1
    if n_failed:
        warnings.warn(
            message=f"{n_failed} of {n_perm} permutation(s) failed numerically and "
            "are reported as NaN.",
            category=UserWarning,
        )

    table = np.asarray(rows, dtype=np.float64)
    R2Y, Q2Y, DQ2Y = table[:, 0], table[:, 1], table[:, 2]
    p_values = {"R2Y": empirical_p_value(R2Y), "Q2Y": empirical_p_value(Q2Y)}
    if response.is_discriminant:
        p_values["DQ2Y"] = empirical_p_value(DQ2Y)
    return PermutationStats(
        R2Y=R2Y,
        Q2Y=Q2Y,
        DQ2Y=DQ2Y if response.is_discriminant else None,
        p_values=p_values,
        n_failed=n_failed,
    )
