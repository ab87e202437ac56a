"""
Contains the KOPLS class which implements kernel-based orthonormalized partial
least-squares regression (K-OPLS) by Rantalainen et al.:
https://doi.org/10.1002/cem.1071

The KOPLS class subclasses scikit-learn's BaseEstimator. It operates on precomputed
kernel matrices and is written using NumPy.
"""

from typing import Optional

import numpy as np
import numpy.linalg as la
import numpy.typing as npt
from sklearn.base import BaseEstimator

from .exceptions import ConvergenceError, InputValidationError, NumericalDegeneracyError


def center_kernel(K: npt.ArrayLike) -> npt.NDArray[np.floating]:
    """
    Centers a training kernel in feature space:
    :math:`(I - \\frac{1}{N} 1 1^T) K (I - \\frac{1}{N} 1 1^T)`.

    Parameters
    ----------
    K : Array of shape (N, N)
        Training kernel.

    Returns
    -------
    K_centered : Array of shape (N, N)
    """
    K = np.asarray(K)
    return (
        K
        - K.mean(axis=0, keepdims=True)
        - K.mean(axis=1, keepdims=True)
        + K.mean()
    )


def center_test_kernel(
    K_test_train: npt.ArrayLike, K_train: npt.ArrayLike
) -> npt.NDArray[np.floating]:
    """
    Centers a test-versus-training kernel with the feature space mean of the
    training samples:
    :math:`(K_{te,tr} - \\frac{1}{N} 1_{te} 1^T K_{tr}) (I - \\frac{1}{N} 1 1^T)`.

    Parameters
    ----------
    K_test_train : Array of shape (N_test, N)
        Kernel between test samples and training samples.

    K_train : Array of shape (N, N)
        Uncentered training kernel.

    Returns
    -------
    K_test_train_centered : Array of shape (N_test, N)
    """
    K_test_train = np.asarray(K_test_train) - np.asarray(K_train).mean(
        axis=0, keepdims=True
    )
    return K_test_train - K_test_train.mean(axis=1, keepdims=True)


class KOPLS(BaseEstimator):
    """
    Implements kernel-based orthonormalized partial least-squares (K-OPLS) by
    Rantalainen et al.:
    https://doi.org/10.1002/cem.1071

    The model extracts `A` Y-predictive components and `nox` Y-orthogonal components
    from a kernel matrix. Each Y-orthogonal component is removed from the kernel by
    deflation before the Y-predictive score vectors are recomputed.

    Parameters
    ----------
    center_K : bool, default=True
        Whether to center the kernel in feature space before fitting. Test kernels
        are centered with the statistics of the training kernel.

    center_Y : bool, default=True
        Whether to center `Y` before fitting by subtracting its row of column-wise
        means from each row.

    scale_Y : bool, default=False
        Whether to scale `Y` before fitting by dividing each row with the row of `Y`'s
        column-wise standard deviations.

    ddof : int, default=1
        The delta degrees of freedom to use when computing the sample standard
        deviation of `Y`.

    dtype : numpy.float, default=numpy.float64
        The float datatype to use in computation of the K-OPLS algorithm.

    Notes
    -----
    Any centering and scaling of `Y` is undone before returning predictions to ensure
    that predictions are on the original scale.

    The components are nested: a model fitted with `nox` Y-orthogonal components
    predicts with `n_ox <= nox` components exactly like a model fitted with `n_ox`
    components.
    """

    def __init__(
        self,
        center_K: bool = True,
        center_Y: bool = True,
        scale_Y: bool = False,
        ddof: int = 1,
        dtype: np.floating = np.float64,
    ) -> None:
        self.center_K = center_K
        self.center_Y = center_Y
        self.scale_Y = scale_Y
        self.ddof = ddof
        self.dtype = dtype
        self.eps = np.finfo(dtype).eps
        self.name = "K-OPLS"
        self.A = None
        self.nox = None
        self.N = None
        self.M = None
        self.K_train = None
        self.Cp = None
        self.Sp = None
        self.Sps = None
        self.Up = None
        self.Tp = None
        self.Bt = None
        self.co = None
        self.so = None
        self.to = None
        self.to_norm = None
        self.K_deflated = None
        self.T = None
        self.To = None
        self.Y_mean = None
        self.Y_std = None
        self.R2X = None
        self.R2XO = None
        self.R2XC = None
        self.R2Yhat = None

    def fit(self, K: npt.ArrayLike, Y: npt.ArrayLike, A: int, nox: int) -> None:
        """
        Fits K-OPLS on the kernel `K` and `Y` using `A` Y-predictive and `nox`
        Y-orthogonal components.

        Parameters
        ----------
        K : Array of shape (N, N)
            Training kernel.

        Y : Array of shape (N, M) or (N,)
            Response variables.

        A : int
            Number of Y-predictive components.

        nox : int
            Number of Y-orthogonal components.

        Attributes
        ----------
        Cp : Array of shape (M, A)
            Y loadings of the Y-predictive components.

        Sp : Array of shape (A,)
            Singular values of :math:`Y^T K Y` for the Y-predictive components.

        Sps : Array of shape (A,)
            Inverse square root of `Sp`.

        Up : Array of shape (N, A)
            Y scores.

        Tp : list of nox + 1 Arrays of shape (N, A)
            Y-predictive score matrix after each Y-orthogonal deflation.

        Bt : list of nox + 1 Arrays of shape (A, A)
            Regression coefficients of `Up` on `Tp` after each deflation.

        co, so, to_norm : lists of nox elements
            Weight vector, singular value and score norm of each Y-orthogonal
            component.

        to : list of nox Arrays of shape (N, 1)
            Normalized Y-orthogonal score vectors.

        K_deflated : list of nox + 1 Arrays of shape (N, N)
            Training kernel deflated from the right by the first i Y-orthogonal
            components. Used for prediction.

        T : Array of shape (N, A)
            Final Y-predictive scores.

        To : Array of shape (N, nox)
            Y-orthogonal scores.

        R2X, R2XO, R2XC, R2Yhat : Arrays of shape (nox + 1,)
            Explained kernel variation (total, Y-orthogonal and Y-predictive) and
            explained Y variation for 0, ..., nox Y-orthogonal components.

        Returns
        -------
        None.

        Raises
        ------
        InputValidationError
            If `K` is not square, `Y` does not have N rows, `A` < 1 or `nox` < 0.

        ConvergenceError
            If `A` exceeds the rank of :math:`Y^T K Y` or the kernel is exhausted
            before `nox` Y-orthogonal components are extracted.

        NumericalDegeneracyError
            If the Y-predictive scores are collinear.
        """
        K = np.asarray(K, dtype=self.dtype)
        Y = np.asarray(Y, dtype=self.dtype)
        if Y.ndim == 1:
            Y = Y.reshape(-1, 1)
        if K.ndim != 2 or K.shape[0] != K.shape[1]:
            raise InputValidationError(f"K must be square, got shape {K.shape}.")
        if Y.shape[0] != K.shape[0]:
            raise InputValidationError(
                f"Y has {Y.shape[0]} rows but K has {K.shape[0]} rows."
            )
        if int(A) != A or A < 1:
            raise InputValidationError(f"Invalid A: {A}. A must be at least 1.")
        if int(nox) != nox or nox < 0:
            raise InputValidationError(f"Invalid nox: {nox}. nox must be non-negative.")
        A = int(A)
        nox = int(nox)

        N, M = Y.shape
        self.A = A
        self.nox = nox
        self.N = N
        self.M = M
        self.K_train = K.copy()

        Y = Y.copy()
        self.Y_mean = None
        self.Y_std = None
        if self.center_Y or self.scale_Y:
            self.Y_mean = Y.mean(axis=0, keepdims=True)
        if self.center_Y:
            Y -= self.Y_mean
        if self.scale_Y:
            new_Y_mean = 0 if self.center_Y else self.Y_mean
            self.Y_std = np.sqrt(
                np.sum((Y - new_Y_mean) ** 2, axis=0, keepdims=True) / (N - self.ddof)
            )
            self.Y_std[np.abs(self.Y_std) <= self.eps] = 1
            Y /= self.Y_std

        Kc = center_kernel(K) if self.center_K else K
        I = np.eye(N, dtype=self.dtype)

        # Step 1: Y-predictive directions from the kernel-weighted Y cross-product
        Cp, sp, _ = la.svd(Y.T @ Kc @ Y)
        if (
            A > sp.size
            or sp[0] <= np.finfo(self.dtype).tiny
            or sp[A - 1] <= sp[0] * N * self.eps
        ):
            raise ConvergenceError(
                f"Cannot extract A = {A} Y-predictive component(s): Y'KY has "
                f"numerical rank below {A}."
            )
        self.Cp = Cp[:, :A]
        self.Sp = sp[:A]
        self.Sps = self.Sp ** (-0.5)

        # Step 2
        self.Up = Y @ self.Cp

        # Step 3
        K_1i = Kc
        K_ii = Kc
        Tp = K_1i.T @ self.Up * self.Sps
        self.Tp = [Tp]
        self.Bt = [self._regress(Tp)]
        self.K_deflated = [K_1i]
        self.co = []
        self.so = []
        self.to = []
        self.to_norm = []
        K_diag = [K_ii]

        for i in range(nox):
            # Step 5
            E = K_ii - Tp @ Tp.T
            TpE = Tp.T @ E
            CO, SO, _ = la.svd(TpE @ Tp)
            co = CO[:, :1]
            so = SO[0]
            if not np.isfinite(so) or so <= np.sqrt(self.eps) * max(
                np.abs(np.trace(Tp.T @ K_ii @ Tp)), np.finfo(self.dtype).tiny
            ):
                raise ConvergenceError(
                    f"Cannot extract Y-orthogonal component {i + 1}: the kernel has "
                    "no Y-orthogonal variation left."
                )
            # Step 6
            to = E @ Tp @ co * so ** (-0.5)
            # Steps 7 and 8
            to_norm = la.norm(to)
            if not np.isfinite(to_norm) or to_norm <= self.eps:
                raise ConvergenceError(
                    f"Cannot extract Y-orthogonal component {i + 1}: the score "
                    "vector has zero norm."
                )
            to = to / to_norm
            self.co.append(co)
            self.so.append(so)
            self.to.append(to)
            self.to_norm.append(to_norm)

            # Steps 9 and 10
            deflator = I - to @ to.T
            K_1i = K_1i @ deflator
            K_ii = deflator @ K_ii @ deflator
            self.K_deflated.append(K_1i)
            K_diag.append(K_ii)

            # Steps 11 and 12
            Tp = K_1i.T @ self.Up * self.Sps
            self.Tp.append(Tp)
            self.Bt.append(self._regress(Tp))

        self.T = Tp
        self.To = (
            np.hstack(self.to) if nox > 0 else np.zeros((N, 0), dtype=self.dtype)
        )
        self._compute_statistics(Kc, Y, K_diag)

    def _regress(self, Tp: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
        """
        Least-squares coefficients of `Up` on `Tp`.

        Raises
        ------
        NumericalDegeneracyError
            If :math:`T_p^T T_p` is singular.
        """
        TpTp = Tp.T @ Tp
        if not np.all(np.isfinite(TpTp)) or la.cond(TpTp) > 1 / self.eps:
            raise NumericalDegeneracyError(
                "The Y-predictive score matrix is singular."
            )
        return la.solve(TpTp, Tp.T @ self.Up)

    def _compute_statistics(
        self,
        Kc: npt.NDArray[np.floating],
        Y: npt.NDArray[np.floating],
        K_diag: list[npt.NDArray[np.floating]],
    ) -> None:
        sstot_K = np.trace(Kc)
        sstot_Y = np.sum(Y**2)
        num_steps = self.nox + 1
        self.R2X = np.empty(num_steps, dtype=self.dtype)
        self.R2XO = np.empty(num_steps, dtype=self.dtype)
        self.R2XC = np.empty(num_steps, dtype=self.dtype)
        self.R2Yhat = np.empty(num_steps, dtype=self.dtype)
        for i in range(num_steps):
            Tp = self.Tp[i]
            TpTp_trace = np.sum(Tp**2)
            self.R2X[i] = 1 - (np.trace(K_diag[i]) - TpTp_trace) / sstot_K
            self.R2XO[i] = 1 - np.trace(K_diag[i]) / sstot_K
            self.R2XC[i] = TpTp_trace / sstot_K
            Yhat = Tp @ self.Bt[i] @ self.Cp.T
            self.R2Yhat[i] = (
                1 - np.sum((Yhat - Y) ** 2) / sstot_Y if sstot_Y > 0 else np.nan
            )

    def _check_n_ox(self, n_ox: Optional[int]) -> int:
        if self.A is None:
            raise InputValidationError("The model must be fitted before use.")
        if n_ox is None:
            return self.nox
        if int(n_ox) != n_ox or not 0 <= n_ox <= self.nox:
            raise InputValidationError(
                f"Invalid n_ox: {n_ox}. n_ox must be between 0 and {self.nox}."
            )
        return int(n_ox)

    def _project(
        self, K_test_train: npt.ArrayLike, n_ox: int
    ) -> tuple[list[npt.NDArray[np.floating]], npt.NDArray[np.floating]]:
        """
        Projects test samples through the first `n_ox` Y-orthogonal deflations.

        Returns
        -------
        Tp_hat : list of n_ox + 1 Arrays of shape (N_test, A)
            Predicted Y-predictive scores after each deflation.

        To_hat : Array of shape (N_test, n_ox)
            Predicted Y-orthogonal scores.
        """
        K_test_train = np.asarray(K_test_train, dtype=self.dtype)
        if K_test_train.ndim != 2 or K_test_train.shape[1] != self.N:
            raise InputValidationError(
                f"The test kernel must have {self.N} columns, got shape "
                f"{K_test_train.shape}."
            )
        if self.center_K:
            K_test_train = center_test_kernel(K_test_train, self.K_train)

        Tp_hat = []
        To_hat = np.zeros((K_test_train.shape[0], n_ox), dtype=self.dtype)
        K_1i = K_test_train
        for i in range(n_ox):
            tp = K_1i @ self.Up * self.Sps
            Tp_hat.append(tp)
            to = (K_1i - tp @ self.Tp[i].T) @ self.Tp[i] @ self.co[i]
            to = to * self.so[i] ** (-0.5) / self.to_norm[i]
            To_hat[:, i] = to[:, 0]
            K_1i = K_1i - to @ self.to[i].T @ self.K_deflated[i].T
        Tp_hat.append(K_1i @ self.Up * self.Sps)
        return Tp_hat, To_hat

    def transform(
        self, K_test_train: npt.ArrayLike, n_ox: Optional[int] = None
    ) -> tuple[npt.NDArray[np.floating], npt.NDArray[np.floating]]:
        """
        Computes the Y-predictive and Y-orthogonal scores of test samples.

        Parameters
        ----------
        K_test_train : Array of shape (N_test, N)
            Uncentered kernel between test samples and training samples.

        n_ox : int or None, optional, default=None
            Number of Y-orthogonal components to use. If None, all `nox` are used.

        Returns
        -------
        Tp_hat : Array of shape (N_test, A)

        To_hat : Array of shape (N_test, n_ox)
        """
        n_ox = self._check_n_ox(n_ox)
        Tp_hat, To_hat = self._project(K_test_train, n_ox)
        return Tp_hat[-1], To_hat

    def predict(
        self, K_test_train: npt.ArrayLike, n_ox: Optional[int] = None
    ) -> npt.NDArray[np.floating]:
        """
        Predicts on test samples using `n_ox` Y-orthogonal components. If `n_ox` is
        None, then predictions are returned for each number of Y-orthogonal
        components from 0 to `nox`.

        Parameters
        ----------
        K_test_train : Array of shape (N_test, N)
            Uncentered kernel between test samples and training samples.

        n_ox : int or None, optional, default=None
            Number of Y-orthogonal components.

        Returns
        -------
        Y_pred : Array of shape (N_test, M) or (nox + 1, N_test, M)
            If `n_ox` is an int, the predictions with that number of Y-orthogonal
            components. If `n_ox` is None, a prediction for each number of
            Y-orthogonal components up to `nox`.
        """
        all_components = n_ox is None
        n_ox = self._check_n_ox(n_ox)
        Tp_hat, _ = self._project(K_test_train, n_ox)
        if all_components:
            Y_pred = np.stack(
                [tp @ self.Bt[i] @ self.Cp.T for i, tp in enumerate(Tp_hat)]
            )
        else:
            Y_pred = Tp_hat[n_ox] @ self.Bt[n_ox] @ self.Cp.T
        return self._rescale(Y_pred)

    def project(
        self, K_test_train: npt.ArrayLike, n_ox: Optional[int] = None
    ) -> tuple[
        npt.NDArray[np.floating], npt.NDArray[np.floating], npt.NDArray[np.floating]
    ]:
        """
        Computes the scores of test samples and predicts on them with a single pass
        through the Y-orthogonal deflations.

        Parameters
        ----------
        K_test_train : Array of shape (N_test, N)
            Uncentered kernel between test samples and training samples.

        n_ox : int or None, optional, default=None
            Number of Y-orthogonal components to use. If None, all `nox` are used.

        Returns
        -------
        Tp_hat : Array of shape (N_test, A)

        To_hat : Array of shape (N_test, n_ox)

        Y_pred : Array of shape (N_test, M)
        """
        n_ox = self._check_n_ox(n_ox)
        Tp_hat, To_hat = self._project(K_test_train, n_ox)
        Y_pred = self._rescale(Tp_hat[n_ox] @ self.Bt[n_ox] @ self.Cp.T)
        return Tp_hat[n_ox], To_hat, Y_pred

    def _rescale(
        self, Y_pred: npt.NDArray[np.floating]
    ) -> npt.NDArray[np.floating]:
        if self.scale_Y:
            Y_pred = Y_pred * self.Y_std
        if self.center_Y:
            Y_pred = Y_pred + self.Y_mean
        return Y_pred
