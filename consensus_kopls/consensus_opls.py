"""
Contains the ConsensusOPLS class which fits consensus kernel-OPLS models on several
data blocks sharing the same samples, as proposed by Boccard and Rutledge:
https://doi.org/10.1016/j.aca.2013.01.022

The kernel of each block is weighted by its modified RV coefficient with the
response and the weighted kernels are summed into a consensus kernel. A K-OPLS model
is cross-validated on the consensus kernel to select the number of Y-orthogonal
components, refitted on all samples and decomposed into per-block contributions.
Optionally, the whole procedure is repeated with permuted responses.

The ConsensusOPLS class subclasses scikit-learn's BaseEstimator so that its
parameters can be inspected and cloned like those of any scikit-learn estimator.
"""

import warnings
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np
import numpy.typing as npt
from sklearn.base import BaseEstimator

from . import prediction
from .blocks import DataBlocks, collect_blocks
from .contributions import decompose
from .cross_validation import (
    CVResult,
    CVSplit,
    check_cv_type,
    cross_validate,
    make_partition,
)
from .exceptions import ConvergenceError, InputValidationError
from .fusion import FusionResult, fuse_kernels
from .kernels import Kernel, make_kernel
from .model import ConsensusModel, ConsensusModelBuilder
from .numpy_kopls import KOPLS
from .permutation import Metrics, permutation_test
from .response import Response, canonical_model_type, prepare_response
from .selection import SelectionResult, select_model


@dataclass(frozen=True)
class _PipelineResult:
    fusion: FusionResult
    cv_result: CVResult
    selection: SelectionResult
    engine: KOPLS

    @property
    def metrics(self) -> Metrics:
        """(R2Y, Q2Y, DQ2Y) at the number of Y-orthogonal components of `engine`."""
        n_ocomp = self.engine.nox
        dq2 = self.selection.dq2
        return (
            float(self.engine.R2Yhat[-1]),
            float(self.selection.q2[n_ocomp]),
            float(dq2[n_ocomp]) if dq2 is not None else np.nan,
        )


class ConsensusOPLS(BaseEstimator):
    """
    Implements consensus kernel-OPLS for regression and discriminant analysis on
    multiple data blocks.

    Parameters
    ----------
    max_pcomp : int, default=1
        Number of Y-predictive components.

    max_ocomp : int, default=5
        Maximum number of Y-orthogonal components searched by cross-validation. It is
        silently reduced to the number of samples minus `max_pcomp` and to the
        smallest number of variables in a block.

    model_type : str, default="da"
        "regression" ("reg") or "discriminant" ("da").

    cv_type : str, default="nfold"
        "nfold" for n-fold cross-validation, "mccv" for Monte Carlo cross-validation
        and "mccvb" for class-balanced Monte Carlo cross-validation.

    nfold : int, default=5
        Number of folds for "nfold".

    n_mc : int, default=100
        Number of random splits for "mccv" and "mccvb".

    cv_frac : float, default=4/5
        Fraction of the samples used for training for "mccv" and "mccvb".

    kernel_type : str or Kernel, default="linear"
        "linear" ("l"), "polynomial" ("p") or "gaussian" ("g").

    kernel_params : Mapping of str to float or None, default=None
        Parameters of the kernel: "order" and "offset" for the polynomial kernel,
        "sigma" for the Gaussian kernel.

    n_perm : int, default=0
        Number of response permutations. 0 disables the permutation test.

    n_jobs : int, default=1
        Number of parallel jobs. A value of -1 will use all available cores.

    random_state : int or None, default=None
        Seed of the Monte Carlo splits and the permutations. The splits of the
        unpermuted model do not depend on `n_perm`.

    verbose : int, default=0
        Controls verbosity of the parallel jobs, the cross-validation summary and the
        permutation progress bar.

    dtype : numpy.float, default=numpy.float64
        The float datatype to use in computation of the kernels and the K-OPLS
        models.

    Raises
    ------
    InputValidationError
        If `model_type` or `cv_type` is unknown.

    ConfigurationError
        If `kernel_type` is unknown or `kernel_params` do not fit the kernel.
    """

    def __init__(
        self,
        max_pcomp: int = 1,
        max_ocomp: int = 5,
        model_type: str = "da",
        cv_type: str = "nfold",
        nfold: int = 5,
        n_mc: int = 100,
        cv_frac: float = 4 / 5,
        kernel_type: Union[str, Kernel] = "linear",
        kernel_params: Optional[Mapping[str, float]] = None,
        n_perm: int = 0,
        n_jobs: int = 1,
        random_state: Optional[int] = None,
        verbose: int = 0,
        dtype: np.floating = np.float64,
    ) -> None:
        self.max_pcomp = max_pcomp
        self.max_ocomp = max_ocomp
        self.model_type = model_type
        self.cv_type = cv_type
        self.nfold = nfold
        self.n_mc = n_mc
        self.cv_frac = cv_frac
        self.kernel_type = kernel_type
        self.kernel_params = kernel_params
        self.n_perm = n_perm
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose
        self.dtype = dtype
        self.name = "Consensus K-OPLS"
        canonical_model_type(model_type)
        check_cv_type(cv_type)
        make_kernel(kernel_type, kernel_params)
        self.model_ = None

    def _engine_params(self) -> dict[str, Any]:
        return {
            "center_K": True,
            "center_Y": True,
            "scale_Y": False,
            "dtype": self.dtype,
        }

    def _check_components(
        self, data: DataBlocks, response: Response
    ) -> tuple[int, int]:
        """
        Validates `max_pcomp` and `max_ocomp` and clamps `max_ocomp` to the largest
        feasible number of Y-orthogonal components.
        """
        max_pcomp = self.max_pcomp
        if int(max_pcomp) != max_pcomp or max_pcomp < 1:
            raise InputValidationError(
                f"Invalid max_pcomp: {max_pcomp}. max_pcomp must be at least 1."
            )
        max_pcomp = int(max_pcomp)
        if response.is_discriminant:
            limit = response.classes.size - 1
        else:
            limit = response.Y.shape[1]
        if max_pcomp > limit:
            raise InputValidationError(
                f"Invalid max_pcomp: {max_pcomp}. The response supports at most "
                f"{limit} Y-predictive component(s)."
            )
        if int(self.max_ocomp) != self.max_ocomp or self.max_ocomp < 0:
            raise InputValidationError(
                f"Invalid max_ocomp: {self.max_ocomp}. max_ocomp must be "
                "non-negative."
            )
        max_ocomp = min(
            int(self.max_ocomp),
            data.n_samples - max_pcomp,
            min(data.n_variables),
        )
        return max_pcomp, max(max_ocomp, 0)

    def _partition(
        self, cv_type: str, response: Response, rng: np.random.Generator
    ) -> tuple[CVSplit, ...]:
        return make_partition(
            cv_type,
            response.Y.shape[0],
            nfold=self.nfold,
            n_mc=self.n_mc,
            cv_frac=self.cv_frac,
            labels=response.labels,
            rng=rng,
        )

    def _fit_engine(
        self, K: npt.NDArray[np.floating], Y: npt.NDArray[np.floating], A: int, nox: int
    ) -> KOPLS:
        """
        Fits the final K-OPLS model. If the kernel cannot support `nox` Y-orthogonal
        components, fewer are used.
        """
        n_ocomp = nox
        while True:
            engine = KOPLS(**self._engine_params())
            try:
                engine.fit(K, Y, A, n_ocomp)
                break
            except ConvergenceError:
                if n_ocomp == 0:
                    raise
                n_ocomp -= 1
        if n_ocomp < nox:
            warnings.warn(
                message=f"The final model could not extract {nox} Y-orthogonal "
                f"component(s) and uses {n_ocomp} instead.",
                category=UserWarning,
            )
        return engine

    def _run_pipeline(
        self,
        data: DataBlocks,
        response: Response,
        kernel: Kernel,
        partition: Sequence[CVSplit],
        max_pcomp: int,
        max_ocomp: int,
        verbose: int,
    ) -> _PipelineResult:
        fusion = fuse_kernels(
            data.arrays,
            response.reference,
            kernel,
            n_jobs=self.n_jobs,
            verbose=verbose,
            dtype=self.dtype,
        )
        cv_result = cross_validate(
            fusion.kernel,
            response.Y,
            partition,
            max_pcomp,
            max_ocomp,
            engine_params=self._engine_params(),
            n_jobs=self.n_jobs,
            verbose=verbose,
        )
        selection = select_model(response, cv_result, max_ocomp, n_jobs=self.n_jobs)
        engine = self._fit_engine(
            fusion.kernel, response.Y, max_pcomp, selection.n_ocomp
        )
        return _PipelineResult(
            fusion=fusion, cv_result=cv_result, selection=selection, engine=engine
        )

    def fit(
        self,
        blocks: Union[Mapping[str, npt.ArrayLike], Sequence[npt.ArrayLike]],
        Y: npt.ArrayLike,
    ) -> ConsensusModel:
        """
        Fits a consensus K-OPLS model on the data blocks and the response.

        Parameters
        ----------
        blocks : Mapping of name to Array of shape (N, K_b), or Sequence of Arrays
            Data blocks sharing the same N samples in the same order.

        Y : Array of shape (N,) or (N, M)
            Numeric response for regression. Class labels or a dummy indicator
            matrix for discriminant analysis.

        Returns
        -------
        model : ConsensusModel
            The fitted model, also stored in `model_`.

        Raises
        ------
        InputValidationError
            If the blocks, the response or the component and cross-validation
            parameters are invalid. Raised before any kernel is computed.

        ConfigurationError
            If the kernel specification is invalid.

        NumericalDegeneracyError, ConvergenceError
            If the model on all samples cannot be fitted.

        Warns
        -----
        UserWarning
            If all cross-validation fits with a given number of Y-orthogonal
            components fail, if permutations fail, or if the final model uses fewer
            Y-orthogonal components than selected.
        """
        data = collect_blocks(blocks, dtype=self.dtype)
        response = prepare_response(Y, self.model_type, n_samples=data.n_samples)
        kernel = make_kernel(self.kernel_type, self.kernel_params)
        cv_type = check_cv_type(self.cv_type)
        max_pcomp, max_ocomp = self._check_components(data, response)
        if int(self.n_perm) != self.n_perm or self.n_perm < 0:
            raise InputValidationError(
                f"Invalid n_perm: {self.n_perm}. n_perm must be non-negative."
            )
        seed_cv, seed_perm = np.random.SeedSequence(self.random_state).spawn(2)
        partition = self._partition(cv_type, response, np.random.default_rng(seed_cv))

        result = self._run_pipeline(
            data, response, kernel, partition, max_pcomp, max_ocomp, self.verbose
        )
        contributions = decompose(
            data.arrays,
            result.fusion.normalized_kernels,
            result.engine.T,
            result.engine.To,
            response.Y,
            n_jobs=self.n_jobs,
            verbose=self.verbose,
        )

        perm_stats = None
        if self.n_perm > 0:

            def run(permuted: Response, rng: np.random.Generator) -> Metrics:
                return self._run_pipeline(
                    data,
                    permuted,
                    kernel,
                    self._partition(cv_type, permuted, rng),
                    max_pcomp,
                    max_ocomp,
                    verbose=0,
                ).metrics

            perm_stats = permutation_test(
                run,
                response,
                result.metrics,
                int(self.n_perm),
                seed_perm,
                verbose=self.verbose,
            )

        self.model_ = (
            ConsensusModelBuilder(data, response, Y, kernel, max_pcomp, max_ocomp)
            .with_fusion(result.fusion)
            .with_cross_validation(result.cv_result, result.selection)
            .with_engine(result.engine)
            .with_contributions(contributions)
            .with_permutations(perm_stats)
            .build()
        )
        return self.model_

    def predict(
        self, blocks: Union[Mapping[str, npt.ArrayLike], Sequence[npt.ArrayLike]]
    ) -> prediction.PredictionResult:
        """
        Predicts the response of new samples with the fitted model.

        Raises
        ------
        InputValidationError
            If the estimator has not been fitted.

        ConfigurationError
            If the new blocks do not match the fitted blocks.
        """
        if self.model_ is None:
            raise InputValidationError("The model must be fitted before predicting.")
        return prediction.predict(self.model_, blocks)
