"""
Contains the collection and validation of the data blocks passed to a consensus
model.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np
import numpy.typing as npt

from .exceptions import InputValidationError


@dataclass(frozen=True)
class DataBlocks:
    """
    Validated data blocks.

    Attributes
    ----------
    names : tuple of str
        Name of each block, in the order given by the caller.

    arrays : tuple of Arrays of shape (N, K_b)
        Copies of the blocks as float arrays.

    columns : tuple of (tuple or None)
        Variable labels of each block if the block carries a `columns` attribute.
    """

    names: tuple[str, ...]
    arrays: tuple[npt.NDArray[np.floating], ...]
    columns: tuple[Optional[tuple], ...]

    @property
    def n_samples(self) -> int:
        return self.arrays[0].shape[0]

    @property
    def n_variables(self) -> tuple[int, ...]:
        return tuple(X.shape[1] for X in self.arrays)


def _attribute(block: Any, name: str) -> Optional[tuple]:
    value = getattr(block, name, None)
    if value is None or callable(value):
        return None
    return tuple(value)


def collect_blocks(
    blocks: Union[Mapping[Any, npt.ArrayLike], Sequence[npt.ArrayLike]],
    dtype: np.floating = np.float64,
    min_rows: int = 2,
) -> DataBlocks:
    """
    Validates and copies the data blocks.

    Parameters
    ----------
    blocks : Mapping of name to Array of shape (N, K_b), or Sequence of Arrays
        Data blocks sharing the same N samples in the same order. Blocks given as a
        sequence are named "block_1", "block_2", ...

    dtype : numpy.float, default=numpy.float64

    min_rows : int, optional, default=2
        Minimum number of rows of each block.

    Returns
    -------
    data : DataBlocks

    Raises
    ------
    InputValidationError
        If there are no blocks, a block is not a non-empty finite numeric matrix, the
        blocks have different numbers of rows, or all blocks carry an `index` and the
        indices differ.
    """
    if isinstance(blocks, Mapping):
        names = tuple(str(name) for name in blocks)
        raw_blocks = list(blocks.values())
    elif isinstance(blocks, Sequence) and not isinstance(blocks, (str, bytes)):
        names = tuple(f"block_{i + 1}" for i in range(len(blocks)))
        raw_blocks = list(blocks)
    else:
        raise InputValidationError(
            "Data blocks must be given as a mapping of names to matrices or as a "
            "sequence of matrices."
        )
    if not raw_blocks:
        raise InputValidationError("At least one data block is required.")
    if len(set(names)) != len(names):
        raise InputValidationError(f"Block names must be unique, got {names}.")

    arrays = []
    for name, block in zip(names, raw_blocks):
        try:
            X = np.array(block, dtype=dtype)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"Block {name!r} is not numeric.") from e
        if X.ndim != 2 or X.shape[0] < min_rows or X.shape[1] < 1:
            raise InputValidationError(
                f"Block {name!r} must be a matrix with at least {min_rows} row(s) "
                f"and 1 column, got shape {X.shape}."
            )
        if not np.all(np.isfinite(X)):
            raise InputValidationError(f"Block {name!r} contains non-finite values.")
        arrays.append(X)

    row_counts = {name: X.shape[0] for name, X in zip(names, arrays)}
    if len(set(row_counts.values())) != 1:
        raise InputValidationError(
            f"All blocks must have the same number of rows, got {row_counts}."
        )

    indices = [_attribute(block, "index") for block in raw_blocks]
    if all(index is not None for index in indices):
        for name, index in zip(names[1:], indices[1:]):
            if list(index) != list(indices[0]):
                raise InputValidationError(
                    f"The rows of block {name!r} do not match the rows of block "
                    f"{names[0]!r} in identity or order."
                )

    return DataBlocks(
        names=names,
        arrays=tuple(arrays),
        columns=tuple(_attribute(block, "columns") for block in raw_blocks),
    )
