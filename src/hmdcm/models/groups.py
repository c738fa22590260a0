"""Item response groups induced by the Q-matrix.

Each item partitions the latent classes into response groups that share
a correct-response probability. The partition is stored as an integer
group index per class; the binary group matrix G is derived from it.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from hmdcm.exceptions import ConfigurationError
from hmdcm.models.patterns import pattern_index

_RULE_ALIASES = {
    "general": "general",
    "saturated": "general",
    "conjunctive": "conjunctive",
    "dina": "conjunctive",
}


def resolve_measurement_model(name: str) -> str:
    """Return the canonical measurement rule name for ``name``.

    Raises
    ------
    ConfigurationError
        If the rule is not one of 'general' or 'conjunctive' (alias 'dina').
    """
    key = str(name).lower()
    if key not in _RULE_ALIASES:
        raise ConfigurationError(
            f"Unknown measurement model '{name}'. "
            "Specify 'general' or 'conjunctive' ('dina')."
        )
    return _RULE_ALIASES[key]


@dataclass(frozen=True)
class ItemGroups:
    """Partition of latent classes into response groups for one item.

    Attributes
    ----------
    class_groups : NDArray
        Group index of every class, shape (n_classes,).
    levels : NDArray
        Attribute level of every group, shape (n_groups,). For the general
        rule this is the number of required attributes the group masters;
        for the conjunctive rule it is the ideal response (0 or 1).
    required : NDArray
        Indices of the attributes the item requires.
    """

    class_groups: NDArray[np.int_]
    levels: NDArray[np.int_]
    required: NDArray[np.int_]

    @property
    def n_groups(self) -> int:
        return len(self.levels)

    @property
    def n_classes(self) -> int:
        return len(self.class_groups)

    @property
    def matrix(self) -> NDArray[np.int_]:
        """Binary group matrix G of shape (n_groups, n_classes)."""
        G = np.zeros((self.n_groups, self.n_classes), dtype=np.int_)
        G[self.class_groups, np.arange(self.n_classes)] = 1
        return G


def build_item_groups(
    q_row: NDArray[np.int_],
    patterns: NDArray[np.int_],
    measurement_model: str = "general",
) -> ItemGroups:
    """Build the response groups of a single item.

    Parameters
    ----------
    q_row : NDArray
        Requirement vector of the item (n_attributes,).
    patterns : NDArray
        Pattern matrix from :func:`attribute_patterns`.
    measurement_model : str
        'general' (one group per distinct projection of the classes onto
        the required attributes, in order of first appearance) or
        'conjunctive' (ideal response 0 vs 1).

    Returns
    -------
    ItemGroups
        The item's class-to-group partition.

    Notes
    -----
    An item without required attributes collapses to a single group under
    both rules.
    """
    rule = resolve_measurement_model(measurement_model)
    q_row = np.asarray(q_row).ravel()
    patterns = np.asarray(patterns, dtype=np.int_)
    required = np.flatnonzero(q_row != 0)
    projected = patterns[:, required]

    if rule == "conjunctive":
        if len(required) == 0:
            return ItemGroups(
                class_groups=np.zeros(patterns.shape[0], dtype=np.int_),
                levels=np.array([1], dtype=np.int_),
                required=required,
            )
        eta = np.all(projected == 1, axis=1).astype(np.int_)
        return ItemGroups(
            class_groups=eta,
            levels=np.array([0, 1], dtype=np.int_),
            required=required,
        )

    codes = pattern_index(projected)
    _, first, inverse = np.unique(codes, return_index=True, return_inverse=True)
    order = np.argsort(first)
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))

    return ItemGroups(
        class_groups=rank[inverse.ravel()].astype(np.int_),
        levels=projected[first[order]].sum(axis=1).astype(np.int_),
        required=required,
    )


def group_matrix(
    q_row: NDArray[np.int_],
    patterns: NDArray[np.int_],
    measurement_model: str = "general",
) -> NDArray[np.int_]:
    """Group matrix G (n_groups x n_classes) of a single item."""
    return build_item_groups(q_row, patterns, measurement_model).matrix


def build_occasion_groups(
    q_matrices: list[NDArray[np.int_]],
    patterns: NDArray[np.int_],
    measurement_model: str = "general",
) -> list[list[ItemGroups]]:
    """Build item groups for every item of every occasion."""
    return [
        [build_item_groups(q_row, patterns, measurement_model) for q_row in q_t]
        for q_t in q_matrices
    ]
