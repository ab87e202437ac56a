"""
Contains the kernel families used to compute the similarity matrix of a data block.

The set of kernel families is closed: each family is a frozen parameter record that
is validated once, when it is constructed, and that computes kernel matrices with
scikit-learn's pairwise kernels.
"""

import abc
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

import numpy as np
import numpy.typing as npt
from sklearn.metrics.pairwise import linear_kernel, polynomial_kernel, rbf_kernel

from .exceptions import ConfigurationError


class Kernel(abc.ABC):
    """
    Abstract kernel family. Calling a kernel with `X1` of shape (N1, K) and `X2` of
    shape (N2, K) returns the kernel matrix of shape (N1, N2). If `X2` is None, the
    kernel of `X1` with itself is returned.
    """

    name: ClassVar[str]

    @abc.abstractmethod
    def __call__(
        self, X1: npt.ArrayLike, X2: Optional[npt.ArrayLike] = None
    ) -> npt.NDArray[np.floating]:
        pass

    @property
    @abc.abstractmethod
    def params(self) -> dict[str, float]:
        pass


@dataclass(frozen=True)
class LinearKernel(Kernel):
    """Linear kernel :math:`K = X_1 X_2^T`."""

    name: ClassVar[str] = "linear"

    def __call__(self, X1, X2=None):
        return linear_kernel(X1, X2)

    @property
    def params(self):
        return {}


@dataclass(frozen=True)
class PolynomialKernel(Kernel):
    """
    Polynomial kernel :math:`K = (X_1 X_2^T + offset)^{order}`. With `order=1` and
    `offset=0`, this is the linear kernel.

    Parameters
    ----------
    order : float, default=1.0
        Strictly positive exponent of the kernel.

    offset : float, default=0.0
        Non-negative constant added to the inner products before exponentiation.
    """

    order: float = 1.0
    offset: float = 0.0
    name: ClassVar[str] = "polynomial"

    def __post_init__(self) -> None:
        if not _is_finite_number(self.order) or self.order <= 0:
            raise ConfigurationError(
                f"Invalid polynomial order: {self.order}. Order must be positive."
            )
        if not _is_finite_number(self.offset) or self.offset < 0:
            raise ConfigurationError(
                f"Invalid polynomial offset: {self.offset}. Offset must be "
                "non-negative."
            )

    def __call__(self, X1, X2=None):
        return polynomial_kernel(
            X1, X2, degree=self.order, gamma=1.0, coef0=self.offset
        )

    @property
    def params(self):
        return {"order": self.order, "offset": self.offset}


@dataclass(frozen=True)
class GaussianKernel(Kernel):
    """
    Gaussian kernel :math:`K_{ij} = \\exp(-\\|x_i - x_j\\|^2 / (2 \\sigma^2))`.

    Parameters
    ----------
    sigma : float
        Strictly positive width of the kernel.
    """

    sigma: float
    name: ClassVar[str] = "gaussian"

    def __post_init__(self) -> None:
        if not _is_finite_number(self.sigma) or self.sigma <= 0:
            raise ConfigurationError(
                f"Invalid Gaussian width: {self.sigma}. Sigma must be positive."
            )

    def __call__(self, X1, X2=None):
        return rbf_kernel(X1, X2, gamma=1.0 / (2.0 * self.sigma**2))

    @property
    def params(self):
        return {"sigma": self.sigma}


_KERNEL_TAGS: dict[str, type] = {
    "linear": LinearKernel,
    "l": LinearKernel,
    "polynomial": PolynomialKernel,
    "p": PolynomialKernel,
    "gaussian": GaussianKernel,
    "g": GaussianKernel,
}

_KERNEL_PARAMS: dict[type, tuple[set[str], set[str]]] = {
    # (required, optional)
    LinearKernel: (set(), set()),
    PolynomialKernel: (set(), {"order", "offset"}),
    GaussianKernel: ({"sigma"}, set()),
}


def make_kernel(
    kernel_type: Union[str, Kernel] = "linear",
    params: Optional[Mapping[str, Any]] = None,
) -> Kernel:
    """
    Creates a kernel from a family tag and its parameters.

    Parameters
    ----------
    kernel_type : str or Kernel, default="linear"
        One of "linear" ("l"), "polynomial" ("p") or "gaussian" ("g"). If a Kernel
        instance is given, it is returned as is and `params` must be empty.

    params : Mapping of str to float or None, optional, default=None
        Parameters of the kernel family: "order" and "offset" for the polynomial
        kernel, "sigma" for the Gaussian kernel.

    Returns
    -------
    kernel : Kernel

    Raises
    ------
    ConfigurationError
        If the tag is unknown, a required parameter is missing, an unexpected
        parameter is given or a parameter value is invalid.
    """
    params = dict(params) if params is not None else {}
    if isinstance(kernel_type, Kernel):
        if params:
            raise ConfigurationError(
                "Kernel parameters cannot be given together with a Kernel instance."
            )
        return kernel_type
    if not isinstance(kernel_type, str) or kernel_type.lower() not in _KERNEL_TAGS:
        raise ConfigurationError(
            f"Invalid kernel type: {kernel_type!r}. Kernel type must be one of "
            f"{sorted(_KERNEL_TAGS)}."
        )
    kernel_class = _KERNEL_TAGS[kernel_type.lower()]
    required, optional = _KERNEL_PARAMS[kernel_class]
    missing = required - params.keys()
    if missing:
        raise ConfigurationError(
            f"Missing parameter(s) {sorted(missing)} for the {kernel_class.name} "
            "kernel."
        )
    unexpected = params.keys() - required - optional
    if unexpected:
        raise ConfigurationError(
            f"Unexpected parameter(s) {sorted(unexpected)} for the "
            f"{kernel_class.name} kernel."
        )
    try:
        values = {key: float(value) for key, value in params.items()}
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Non-numeric parameter for the {kernel_class.name} kernel: {params}."
        ) from e
    return kernel_class(**values)


def _is_finite_number(value: Any) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False
