"""
Contains the exception hierarchy raised by the Consensus Kernel-OPLS package.

Validation and configuration errors subclass ValueError so that callers used to
scikit-learn style estimators can keep catching ValueError. Numerical errors subclass
ArithmeticError.
"""


class ConsensusOPLSError(Exception):
    """Base class for all errors raised by consensus_kopls."""


class InputValidationError(ConsensusOPLSError, ValueError):
    """
    Raised when the data blocks, the response, or an estimator tag is invalid, e.g.
    blocks with different row counts, an unknown model type, or a discriminant
    response with fewer than two samples in a class.
    """


class ConfigurationError(ConsensusOPLSError, ValueError):
    """
    Raised for an unknown kernel family, a missing or invalid kernel parameter, or
    new data blocks whose variables do not match the blocks used for fitting.
    """


class NumericalDegeneracyError(ConsensusOPLSError, ArithmeticError):
    """
    Raised when a kernel has zero Frobenius norm or a matrix that must be inverted
    is singular.
    """


class ConvergenceError(ConsensusOPLSError, ArithmeticError):
    """
    Raised when the kernel-OPLS deflation cannot extract a further component because
    the rank of the kernel is exhausted.
    """


# Errors that are recorded as missing results inside cross-validation cells and
# permutation rounds instead of aborting the whole fit.
NUMERICAL_ERRORS = (NumericalDegeneracyError, ConvergenceError)
