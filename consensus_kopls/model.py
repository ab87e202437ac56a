"""
Contains the immutable result of a consensus K-OPLS fit and the builder that
assembles it from the records returned by the individual modelling stages.

Every array of the model is a read-only copy, so the model does not share memory
with the caller's data or with intermediate results.
"""

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Optional

import numpy as np
import numpy.typing as npt

from .blocks import DataBlocks
from .contributions import ContributionResult
from .cross_validation import CellFailure, CVResult
from .exceptions import InputValidationError
from .fusion import FusionResult
from .kernels import Kernel
from .metrics import ClassificationStats, classification_stats
from .numpy_kopls import KOPLS
from .permutation import PermutationStats
from .response import Response
from .selection import SelectionResult


def _frozen(array: Optional[npt.ArrayLike]) -> Optional[np.ndarray]:
    if array is None:
        return None
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


def _frozen_engine(engine: KOPLS) -> KOPLS:
    """
    Returns a copy of a fitted engine whose arrays are read-only and whose per
    component lists are tuples.
    """
    engine = copy.deepcopy(engine)
    for name, value in list(vars(engine).items()):
        if isinstance(value, np.ndarray):
            setattr(engine, name, _frozen(value))
        elif isinstance(value, list):
            setattr(engine, name, tuple(_frozen(item) for item in value))
    return engine


@dataclass(frozen=True)
class CVDiagnostics:
    """
    Cross-validation diagnostics of a consensus model.

    Attributes
    ----------
    all_yhat : Array of shape (max_ocomp + 1, N_rows, M)
        Held-out predictions for each number of Y-orthogonal components.

    test_index, round_index : Arrays of shape (N_rows,)
        Sample and round of each row of `all_yhat`.

    yhat : Array of shape (N_rows, M)
        Held-out predictions of the selected model.

    curve : Array of shape (max_ocomp + 1,)
        Curve the number of Y-orthogonal components was selected on.

    dq2_table, pressd_table : Arrays of shape (max_ocomp + 1, M) or None
        DQ2 and PRESSD of each response column. None for regression models.

    failures : tuple of CellFailure
        Cross-validation cells that failed numerically.

    class_stats : ClassificationStats or None
        Class assignment quality of `yhat`. None for regression models.
    """

    all_yhat: np.ndarray
    test_index: np.ndarray
    round_index: np.ndarray
    yhat: np.ndarray
    curve: np.ndarray
    dq2_table: Optional[np.ndarray]
    pressd_table: Optional[np.ndarray]
    failures: tuple[CellFailure, ...]
    class_stats: Optional[ClassificationStats]


@dataclass(frozen=True)
class ConsensusModel:
    """
    Fitted consensus K-OPLS model.

    Attributes
    ----------
    model_type : str
        "regression" or "discriminant".

    response : Array
        Response as given to fit.

    Y : Array of shape (N, M)
        Numeric response the model was fitted on; the indicator matrix for
        discriminant models.

    classes : Array of shape (M,) or None
        Class label of each column of `Y` for discriminant models.

    block_names : tuple of str

    block_columns : tuple of (tuple or None)
        Variable labels of each block, if any.

    blocks : tuple of Arrays of shape (N, K_b)
        Training blocks, needed to compute kernels of new samples.

    kernel : Kernel
        Kernel family used for every block.

    max_pcomp, max_ocomp : int
        Number of Y-predictive components and the (clamped) maximum number of
        Y-orthogonal components searched.

    n_pcomp, n_ocomp : int
        Number of Y-predictive and selected number of Y-orthogonal components.

    rv_weights, kernel_norms : Arrays of shape (B,)
        RV weight and Frobenius norm of the training kernel of each block.

    normalized_kernels : tuple of B Arrays of shape (N, N)

    engine : KOPLS
        Final K-OPLS model fitted on the consensus kernel.

    component_names : tuple of str

    scores : Array of shape (N, n_pcomp + n_ocomp)
        Y-predictive followed by Y-orthogonal scores.

    lambdas, block_contributions : Arrays of shape (B, n_pcomp + n_ocomp)

    loadings, vip : Mapping of block name to Array
        Loadings of shape (K_b, n_pcomp + n_ocomp) and VIP of shape (K_b, 2) with
        columns for the Y-predictive and the Y-orthogonal components.

    R2X, R2XO, R2XC, R2Y : Arrays of shape (n_ocomp + 1,)
        Explained variation of the final model for 0, ..., n_ocomp Y-orthogonal
        components.

    Q2 : Array of shape (max_ocomp + 1,)
        Cross-validated Q2 for 0, ..., max_ocomp Y-orthogonal components.

    DQ2 : Array of shape (max_ocomp + 1,) or None
        Cross-validated DQ2. None for regression models.

    cv : CVDiagnostics

    perm_stats : PermutationStats or None
        None if no permutations were run.
    """

    model_type: str
    response: np.ndarray
    Y: np.ndarray
    classes: Optional[np.ndarray]
    block_names: tuple[str, ...]
    block_columns: tuple[Optional[tuple], ...]
    blocks: tuple[np.ndarray, ...]
    kernel: Kernel
    max_pcomp: int
    max_ocomp: int
    n_pcomp: int
    n_ocomp: int
    rv_weights: np.ndarray
    kernel_norms: np.ndarray
    normalized_kernels: tuple[np.ndarray, ...]
    engine: KOPLS
    component_names: tuple[str, ...]
    scores: np.ndarray
    lambdas: np.ndarray
    block_contributions: np.ndarray
    loadings: Mapping[str, np.ndarray]
    vip: Mapping[str, np.ndarray]
    R2X: np.ndarray
    R2XO: np.ndarray
    R2XC: np.ndarray
    R2Y: np.ndarray
    Q2: np.ndarray
    DQ2: Optional[np.ndarray]
    cv: CVDiagnostics
    perm_stats: Optional[PermutationStats]

    @property
    def is_discriminant(self) -> bool:
        return self.classes is not None


class ConsensusModelBuilder:
    """
    Collects the records of the modelling stages and assembles the ConsensusModel.
    The model can only be built once every required stage has been added.
    """

    def __init__(
        self,
        data: DataBlocks,
        response: Response,
        Y_raw: npt.ArrayLike,
        kernel: Kernel,
        max_pcomp: int,
        max_ocomp: int,
    ) -> None:
        self.data = data
        self.response = response
        self.Y_raw = Y_raw
        self.kernel = kernel
        self.max_pcomp = max_pcomp
        self.max_ocomp = max_ocomp
        self.fusion: Optional[FusionResult] = None
        self.cv_result: Optional[CVResult] = None
        self.selection: Optional[SelectionResult] = None
        self.engine: Optional[KOPLS] = None
        self.contributions: Optional[ContributionResult] = None
        self.perm_stats: Optional[PermutationStats] = None

    def with_fusion(self, fusion: FusionResult) -> "ConsensusModelBuilder":
        self.fusion = fusion
        return self

    def with_cross_validation(
        self, cv_result: CVResult, selection: SelectionResult
    ) -> "ConsensusModelBuilder":
        self.cv_result = cv_result
        self.selection = selection
        return self

    def with_engine(self, engine: KOPLS) -> "ConsensusModelBuilder":
        self.engine = engine
        return self

    def with_contributions(
        self, contributions: ContributionResult
    ) -> "ConsensusModelBuilder":
        self.contributions = contributions
        return self

    def with_permutations(
        self, perm_stats: Optional[PermutationStats]
    ) -> "ConsensusModelBuilder":
        self.perm_stats = perm_stats
        return self

    def _cv_diagnostics(self, n_ocomp: int) -> CVDiagnostics:
        cv_result = self.cv_result
        selection = self.selection
        yhat = cv_result.all_yhat[n_ocomp]
        class_stats = None
        if self.response.is_discriminant:
            class_stats = classification_stats(
                self.response.labels[cv_result.test_index], yhat
            )
            class_stats = ClassificationStats(
                **{
                    key: _frozen(value) if isinstance(value, np.ndarray) else value
                    for key, value in vars(class_stats).items()
                }
            )
        return CVDiagnostics(
            all_yhat=_frozen(cv_result.all_yhat),
            test_index=_frozen(cv_result.test_index),
            round_index=_frozen(cv_result.round_index),
            yhat=_frozen(yhat),
            curve=_frozen(selection.curve),
            dq2_table=_frozen(selection.dq2_table),
            pressd_table=_frozen(selection.pressd_table),
            failures=cv_result.failures,
            class_stats=class_stats,
        )

    def build(self) -> ConsensusModel:
        """
        Assembles the model.

        Raises
        ------
        InputValidationError
            If a required stage has not been added.
        """
        missing = [
            name
            for name, record in (
                ("fusion", self.fusion),
                ("cross-validation", self.cv_result),
                ("engine", self.engine),
                ("contributions", self.contributions),
            )
            if record is None
        ]
        if missing:
            raise InputValidationError(
                f"Cannot build the consensus model without: {', '.join(missing)}."
            )
        engine = _frozen_engine(self.engine)
        contributions = self.contributions
        names = self.data.names
        n_ocomp = engine.nox
        perm_stats = self.perm_stats
        if perm_stats is not None:
            perm_stats = PermutationStats(
                R2Y=_frozen(perm_stats.R2Y),
                Q2Y=_frozen(perm_stats.Q2Y),
                DQ2Y=_frozen(perm_stats.DQ2Y),
                p_values=MappingProxyType(dict(perm_stats.p_values)),
                n_failed=perm_stats.n_failed,
            )
        return ConsensusModel(
            model_type=self.response.model_type,
            response=_frozen(self.Y_raw),
            Y=_frozen(self.response.Y),
            classes=_frozen(self.response.classes),
            block_names=names,
            block_columns=self.data.columns,
            blocks=tuple(_frozen(X) for X in self.data.arrays),
            kernel=self.kernel,
            max_pcomp=self.max_pcomp,
            max_ocomp=self.max_ocomp,
            n_pcomp=engine.A,
            n_ocomp=n_ocomp,
            rv_weights=_frozen(self.fusion.rv_weights),
            kernel_norms=_frozen(self.fusion.norms),
            normalized_kernels=tuple(
                _frozen(K) for K in self.fusion.normalized_kernels
            ),
            engine=engine,
            component_names=contributions.component_names,
            scores=_frozen(np.hstack((engine.T, engine.To))),
            lambdas=_frozen(contributions.lambdas),
            block_contributions=_frozen(contributions.contributions),
            loadings=_block_mapping(names, contributions.loadings),
            vip=_block_mapping(names, contributions.vip),
            R2X=_frozen(engine.R2X),
            R2XO=_frozen(engine.R2XO),
            R2XC=_frozen(engine.R2XC),
            R2Y=_frozen(engine.R2Yhat),
            Q2=_frozen(self.selection.q2),
            DQ2=_frozen(self.selection.dq2),
            cv=self._cv_diagnostics(n_ocomp),
            perm_stats=perm_stats,
        )


def _block_mapping(names: tuple[str, ...], arrays: Any) -> Mapping[str, np.ndarray]:
    return MappingProxyType({name: _frozen(X) for name, X in zip(names, arrays)})
