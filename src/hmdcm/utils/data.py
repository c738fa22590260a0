"""Data validation and preprocessing utilities."""

from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

MISSING_CODE = -1


def _split_occasions(
    values: Union[NDArray, Sequence[NDArray]], name: str
) -> list[NDArray]:
    """Accept either a sequence of 2D arrays or a 3D array indexed by occasion."""
    if isinstance(values, np.ndarray):
        if values.ndim == 3:
            return [values[t] for t in range(values.shape[0])]
        if values.ndim == 2:
            return [values]
        raise ValueError(f"{name} must be 2D or 3D array, got {values.ndim}D")

    occasions = [np.asarray(v) for v in values]
    if len(occasions) == 0:
        raise ValueError(f"{name} cannot be empty")
    return occasions


def validate_q_matrices(
    q_matrices: Union[NDArray, Sequence[NDArray]],
) -> list[NDArray[np.int_]]:
    """Validate the Q-matrices of all occasions.

    Parameters
    ----------
    q_matrices : sequence of array-like or ndarray
        One (n_items_t, n_attributes) binary matrix per occasion, or a 3D
        array of shape (n_occasions, n_items, n_attributes).

    Returns
    -------
    list of ndarray
        Validated integer Q-matrices.

    Raises
    ------
    ValueError
        If a matrix is not 2D, not binary, or the attribute counts differ.
    """
    occasions = _split_occasions(q_matrices, "q_matrices")

    validated = []
    n_attributes = None
    for t, q in enumerate(occasions):
        if q.ndim != 2:
            raise ValueError(f"Q-matrix for occasion {t} must be 2D, got {q.ndim}D")
        if q.shape[0] == 0:
            raise ValueError(f"Q-matrix for occasion {t} has no items")
        if not np.all(np.isin(q, (0, 1))):
            raise ValueError(f"Q-matrix for occasion {t} must be binary")
        if n_attributes is None:
            n_attributes = q.shape[1]
        elif q.shape[1] != n_attributes:
            raise ValueError(
                f"Q-matrix for occasion {t} has {q.shape[1]} attributes, "
                f"expected {n_attributes}"
            )
        validated.append(q.astype(np.int_))

    if n_attributes == 0:
        raise ValueError("Q-matrices must have at least one attribute")

    return validated


def validate_longitudinal_responses(
    responses: Union[NDArray, Sequence[NDArray]],
    n_items: Optional[Sequence[int]] = None,
    missing_code: int = MISSING_CODE,
) -> list[NDArray[np.int_]]:
    """Validate longitudinal dichotomous responses.

    Parameters
    ----------
    responses : sequence of array-like or ndarray
        One (n_persons, n_items_t) matrix per occasion, or a 3D array of
        shape (n_occasions, n_persons, n_items).
    n_items : sequence of int, optional
        Expected item count per occasion.
    missing_code : int, default=-1
        Value used to code missing responses.

    Returns
    -------
    list of ndarray
        Validated response matrices with integer dtype.

    Raises
    ------
    ValueError
        If shapes are inconsistent or values fall outside {0, 1, missing}.
    """
    occasions = _split_occasions(responses, "responses")

    if n_items is not None and len(n_items) != len(occasions):
        raise ValueError(
            f"responses has {len(occasions)} occasions, expected {len(n_items)}"
        )

    validated = []
    n_persons = None
    for t, x in enumerate(occasions):
        if x.ndim != 2:
            raise ValueError(f"responses for occasion {t} must be 2D, got {x.ndim}D")
        if x.shape[0] == 0:
            raise ValueError("responses cannot be empty")
        if n_persons is None:
            n_persons = x.shape[0]
        elif x.shape[0] != n_persons:
            raise ValueError(
                f"responses for occasion {t} has {x.shape[0]} persons, "
                f"expected {n_persons}"
            )
        if n_items is not None and x.shape[1] != n_items[t]:
            raise ValueError(
                f"responses for occasion {t} has {x.shape[1]} items, "
                f"expected {n_items[t]}"
            )
        if not np.all(np.isin(x, (0, 1, missing_code))):
            raise ValueError(
                f"responses for occasion {t} must contain only 0, 1 "
                f"or the missing code ({missing_code})"
            )
        validated.append(x.astype(np.int_))

    return validated
