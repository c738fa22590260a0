"""Structural constraints for the non-decreasing attribute variant.

Provides the transition mask that forbids losing a mastered attribute and
the test-form design that maps administration occasions to test forms
for randomized, counterbalanced administration.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from hmdcm.exceptions import ConfigurationError


def nondecreasing_mask(patterns: NDArray[np.int_]) -> NDArray[np.bool_]:
    """Allowed transitions under non-decreasing mastery.

    Parameters
    ----------
    patterns : NDArray
        Pattern matrix (n_classes, n_attributes).

    Returns
    -------
    NDArray
        Boolean matrix where ``mask[l, m]`` is True iff class ``m`` masters
        every attribute mastered by class ``l``.
    """
    patterns = np.asarray(patterns)
    lost = patterns[:, None, :] > patterns[None, :, :]
    return ~np.any(lost, axis=2)


@dataclass
class TestFormDesign:
    """Randomized test-form administration.

    Parameters
    ----------
    test_versions : NDArray
        Version id (0-based) of every respondent, shape (n_persons,).
    test_order : NDArray
        Table of shape (n_versions, n_occasions); ``test_order[v, t]`` is
        the test form given at administration occasion ``t`` to version
        ``v``. Every row must be a permutation of the forms.
    """

    __test__ = False

    test_versions: NDArray[np.int_]
    test_order: NDArray[np.int_]

    def __post_init__(self) -> None:
        if self.test_versions is None or self.test_order is None:
            raise ConfigurationError(
                "A randomized test-form design requires both test_versions "
                "and test_order."
            )

        self.test_versions = np.asarray(self.test_versions, dtype=np.int_).ravel()
        self.test_order = np.atleast_2d(np.asarray(self.test_order, dtype=np.int_))

        n_versions, n_occasions = self.test_order.shape
        expected = np.arange(n_occasions)
        for v in range(n_versions):
            if not np.array_equal(np.sort(self.test_order[v]), expected):
                raise ConfigurationError(
                    f"test_order row {v} is not a permutation of 0..{n_occasions - 1}"
                )

        if np.any(self.test_versions < 0) or np.any(
            self.test_versions >= n_versions
        ):
            raise ConfigurationError(
                f"test_versions must lie in 0..{n_versions - 1}"
            )

    @property
    def n_persons(self) -> int:
        return len(self.test_versions)

    @property
    def n_occasions(self) -> int:
        return self.test_order.shape[1]

    @property
    def form_index(self) -> NDArray[np.int_]:
        """Form taken by each respondent at each occasion, (n_persons, n_occasions)."""
        return self.test_order[self.test_versions]

    @property
    def occasion_index(self) -> NDArray[np.int_]:
        """Occasion at which each respondent took each form (inverse permutation)."""
        forms = self.form_index
        inverse = np.empty_like(forms)
        rows = np.arange(forms.shape[0])[:, None]
        inverse[rows, forms] = np.arange(forms.shape[1])[None, :]
        return inverse

    def to_forms(self, values: NDArray) -> NDArray:
        """Reorder a (n_persons, ..., n_occasions) array from occasions to forms."""
        return self._gather(values, self.occasion_index)

    def to_occasions(self, values: NDArray) -> NDArray:
        """Reorder a (n_persons, ..., n_occasions) array from forms to occasions."""
        return self._gather(values, self.form_index)

    def responses_to_forms(
        self, responses: list[NDArray[np.int_]]
    ) -> list[NDArray[np.int_]]:
        """Reorder per-occasion response matrices into per-form matrices."""
        n_items = {r.shape[1] for r in responses}
        if len(n_items) != 1:
            raise ConfigurationError(
                "All test forms must have the same number of items when a "
                "test-form design is used."
            )
        stacked = np.stack(responses, axis=-1)
        reordered = self.to_forms(stacked)
        return [reordered[..., f] for f in range(self.n_occasions)]

    @staticmethod
    def _gather(values: NDArray, index: NDArray[np.int_]) -> NDArray:
        values = np.asarray(values)
        shape = (index.shape[0],) + (1,) * (values.ndim - 2) + (index.shape[1],)
        return np.take_along_axis(values, index.reshape(shape), axis=-1)
