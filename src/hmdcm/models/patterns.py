"""Enumeration of attribute mastery patterns.

Every component that indexes by latent class uses the ordering defined
here: class ``l`` masters attribute ``k`` iff bit ``k`` of ``l`` is set,
so the first attribute varies fastest.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def attribute_patterns(n_attributes: int) -> NDArray[np.int_]:
    """Enumerate all 2^K binary mastery patterns.

    Parameters
    ----------
    n_attributes : int
        Number of attributes K.

    Returns
    -------
    NDArray
        Pattern matrix of shape (2^K, K).

    Examples
    --------
    >>> attribute_patterns(2)
    array([[0, 0],
           [1, 0],
           [0, 1],
           [1, 1]])
    """
    if n_attributes < 1:
        raise ValueError("n_attributes must be at least 1")

    n_classes = 2**n_attributes
    classes = np.arange(n_classes)[:, None]
    bits = np.arange(n_attributes)[None, :]
    return ((classes >> bits) & 1).astype(np.int_)


def pattern_index(pattern: NDArray[np.int_]) -> NDArray[np.int_]:
    """Map patterns back to their class indices.

    Parameters
    ----------
    pattern : NDArray
        A single pattern (K,) or a stack of patterns (..., K).

    Returns
    -------
    NDArray
        Class index for each pattern.
    """
    pattern = np.asarray(pattern, dtype=np.int_)
    weights = 2 ** np.arange(pattern.shape[-1])
    return pattern @ weights


def pattern_labels(patterns: NDArray[np.int_]) -> list[str]:
    """String labels such as ``"101"`` for each row of a pattern matrix."""
    return ["".join(str(int(a)) for a in row) for row in np.asarray(patterns)]
