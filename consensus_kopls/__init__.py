__version__ = "1.0.0"
__all__ = [
    "ConfigurationError",
    "ConsensusModel",
    "ConsensusOPLS",
    "ConsensusOPLSError",
    "ConvergenceError",
    "GaussianKernel",
    "InputValidationError",
    "KOPLS",
    "LinearKernel",
    "NumericalDegeneracyError",
    "PolynomialKernel",
    "PredictionResult",
    "make_kernel",
    "predict",
]

from .consensus_opls import ConsensusOPLS
from .exceptions import (
    ConfigurationError,
    ConsensusOPLSError,
    ConvergenceError,
    InputValidationError,
    NumericalDegeneracyError,
)
from .kernels import GaussianKernel, LinearKernel, PolynomialKernel, make_kernel
from .model import ConsensusModel
from .numpy_kopls import KOPLS
from .prediction import PredictionResult, predict
