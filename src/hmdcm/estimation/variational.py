"""Conjugate variational posteriors and their M-step updates.

Item parameters have Beta posteriors, one per response group of every
item; the initial class distribution and every row of the transition
matrix have Dirichlet posteriors. Structurally forbidden transitions
carry a pseudo-count of exactly zero in both prior and posterior.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.special import digamma

from hmdcm.constants import DEFAULT_DELTA, DEFAULT_OMEGA, HYPERPRIOR_OFFSET
from hmdcm.exceptions import ConfigurationError
from hmdcm.models.groups import ItemGroups
from hmdcm.typing import ItemParameterList


@dataclass
class Hyperparameters:
    """Prior pseudo-counts.

    Attributes
    ----------
    A_0, B_0 : list of list of NDArray
        Beta shape parameters per group, indexed ``[form][item]``.
    delta_0 : NDArray
        Dirichlet parameters of the initial distribution (n_classes,).
    omega_0 : NDArray
        Dirichlet parameters of the transition rows (n_classes, n_classes),
        zero where ``mask`` is False.
    mask : NDArray
        Allowed transitions (n_classes, n_classes).
    """

    A_0: ItemParameterList
    B_0: ItemParameterList
    delta_0: NDArray[np.float64]
    omega_0: NDArray[np.float64]
    mask: NDArray[np.bool_]


@dataclass
class VariationalParameters:
    """Posterior pseudo-counts, with the same layout as :class:`Hyperparameters`."""

    A_ast: ItemParameterList
    B_ast: ItemParameterList
    delta_ast: NDArray[np.float64]
    omega_ast: NDArray[np.float64]


@dataclass
class ExpectedLogParameters:
    """Expected log-parameters under the variational posterior.

    ``log_tau`` is held at exactly 0 on forbidden transitions;
    :attr:`transition` turns those entries into literal zeros.
    """

    log_theta: ItemParameterList
    log_1m_theta: ItemParameterList
    log_pi: NDArray[np.float64]
    log_tau: NDArray[np.float64]
    mask: NDArray[np.bool_]

    @property
    def transition(self) -> NDArray[np.float64]:
        """Sub-normalized transition weights exp(E[log tau]) with masked zeros."""
        return np.where(self.mask, np.exp(self.log_tau), 0.0)


def _level_hyperparameters(
    item_groups: list[list[ItemGroups]],
    start: float,
    stop: float,
) -> ItemParameterList:
    """Spread Beta hyperparameters over attribute levels, per occasion."""
    result = []
    for groups_t in item_groups:
        max_level = max(int(g.levels.max()) for g in groups_t)
        grid = np.linspace(start, stop, max_level + 1)
        result.append([grid[g.levels].astype(np.float64) for g in groups_t])
    return result


def default_hyperparameters(
    item_groups: list[list[ItemGroups]],
    mask: NDArray[np.bool_],
) -> Hyperparameters:
    """Weak-monotonicity Beta priors and flat Dirichlet priors.

    Groups mastering more of an item's required attributes get a larger
    ``A_0`` and a smaller ``B_0``, so the prior mean of the correct
    response probability increases with the attribute level.
    """
    mask = np.asarray(mask, dtype=bool)
    n_classes = mask.shape[0]
    return Hyperparameters(
        A_0=_level_hyperparameters(item_groups, 1 + HYPERPRIOR_OFFSET, 2.0),
        B_0=_level_hyperparameters(item_groups, 2.0, 1 + HYPERPRIOR_OFFSET),
        delta_0=np.full(n_classes, DEFAULT_DELTA),
        omega_0=np.where(mask, DEFAULT_OMEGA, 0.0),
        mask=mask,
    )


def _check_positive(values: NDArray[np.float64], name: str) -> None:
    if not np.all(np.isfinite(values)) or np.any(values <= 0):
        raise ConfigurationError(f"{name} must be finite and strictly positive")


def _resolve_item_prior(
    override: ItemParameterList | None,
    default: ItemParameterList,
    item_groups: list[list[ItemGroups]],
    name: str,
) -> ItemParameterList:
    if override is None:
        return default

    if len(override) != len(item_groups):
        raise ConfigurationError(
            f"{name} has {len(override)} occasions, expected {len(item_groups)}"
        )

    resolved = []
    for t, (values_t, groups_t) in enumerate(zip(override, item_groups)):
        if len(values_t) != len(groups_t):
            raise ConfigurationError(
                f"{name}[{t}] has {len(values_t)} items, expected {len(groups_t)}"
            )
        resolved_t = []
        for j, (values, g) in enumerate(zip(values_t, groups_t)):
            try:
                arr = np.broadcast_to(
                    np.asarray(values, dtype=np.float64), (g.n_groups,)
                ).copy()
            except ValueError as exc:
                raise ConfigurationError(
                    f"{name}[{t}][{j}] must have {g.n_groups} entries"
                ) from exc
            _check_positive(arr, f"{name}[{t}][{j}]")
            resolved_t.append(arr)
        resolved.append(resolved_t)
    return resolved


def resolve_hyperparameters(
    item_groups: list[list[ItemGroups]],
    mask: NDArray[np.bool_],
    A_0: ItemParameterList | None = None,
    B_0: ItemParameterList | None = None,
    delta_0: NDArray[np.float64] | float | None = None,
    omega_0: NDArray[np.float64] | float | None = None,
) -> Hyperparameters:
    """Combine user overrides with the defaults and validate them.

    Raises
    ------
    ConfigurationError
        If an override has the wrong shape or a non-positive entry. Entries
        of ``omega_0`` on forbidden transitions are ignored and set to zero.
    """
    defaults = default_hyperparameters(item_groups, mask)
    n_classes = defaults.delta_0.shape[0]

    hyper_A = _resolve_item_prior(A_0, defaults.A_0, item_groups, "A_0")
    hyper_B = _resolve_item_prior(B_0, defaults.B_0, item_groups, "B_0")

    if delta_0 is None:
        hyper_delta = defaults.delta_0
    else:
        try:
            hyper_delta = np.broadcast_to(
                np.asarray(delta_0, dtype=np.float64), (n_classes,)
            ).copy()
        except ValueError as exc:
            raise ConfigurationError(
                f"delta_0 must have {n_classes} entries"
            ) from exc
        _check_positive(hyper_delta, "delta_0")

    if omega_0 is None:
        hyper_omega = defaults.omega_0
    else:
        try:
            hyper_omega = np.broadcast_to(
                np.asarray(omega_0, dtype=np.float64), (n_classes, n_classes)
            ).copy()
        except ValueError as exc:
            raise ConfigurationError(
                f"omega_0 must have shape ({n_classes}, {n_classes})"
            ) from exc
        _check_positive(hyper_omega[defaults.mask], "omega_0 (allowed transitions)")
        hyper_omega[~defaults.mask] = 0.0

    return Hyperparameters(
        A_0=hyper_A,
        B_0=hyper_B,
        delta_0=hyper_delta,
        omega_0=hyper_omega,
        mask=defaults.mask,
    )


def update_initial_distribution(
    delta_0: NDArray[np.float64],
    class_probs: NDArray[np.float64],
) -> NDArray[np.float64]:
    """delta* = delta_0 + sum_i classProb[i, :, 0]."""
    return delta_0 + class_probs[:, :, 0].sum(axis=0)


def update_transitions(
    omega_0: NDArray[np.float64],
    pair_probs: NDArray[np.float64],
    mask: NDArray[np.bool_],
) -> NDArray[np.float64]:
    """omega* = omega_0 + expected transition counts, zero off the mask."""
    omega_ast = omega_0 + pair_probs.sum(axis=(0, 3))
    omega_ast[~mask] = 0.0
    return omega_ast


def update_item_parameters(
    A_0: ItemParameterList,
    B_0: ItemParameterList,
    item_groups: list[list[ItemGroups]],
    form_responses: list[NDArray[np.int_]],
    form_class_probs: NDArray[np.float64],
) -> tuple[ItemParameterList, ItemParameterList]:
    """Beta posteriors of every item group.

    Parameters
    ----------
    A_0, B_0 : list of list of NDArray
        Beta hyperparameters per form and item.
    item_groups : list of list of ItemGroups
        Response groups per form and item.
    form_responses : list of NDArray
        Responses per form (n_persons, n_items), -1 for missing.
    form_class_probs : NDArray
        Class probabilities in form order (n_persons, n_classes, n_forms).

    Returns
    -------
    tuple
        (A_ast, B_ast) with the layout of ``A_0``.
    """
    A_ast: ItemParameterList = []
    B_ast: ItemParameterList = []

    for t, groups_t in enumerate(item_groups):
        x = form_responses[t]
        weights = form_class_probs[:, :, t]
        correct = weights.T @ (x == 1).astype(np.float64)
        incorrect = weights.T @ (x == 0).astype(np.float64)

        A_t = []
        B_t = []
        for j, g in enumerate(groups_t):
            G = g.matrix
            A_t.append(A_0[t][j] + G @ correct[:, j])
            B_t.append(B_0[t][j] + G @ incorrect[:, j])
        A_ast.append(A_t)
        B_ast.append(B_t)

    return A_ast, B_ast


def expected_log_parameters(
    params: VariationalParameters,
    mask: NDArray[np.bool_],
) -> ExpectedLogParameters:
    """Digamma expectations of log theta, log(1 - theta), log pi and log tau."""
    log_theta: ItemParameterList = []
    log_1m_theta: ItemParameterList = []
    for A_t, B_t in zip(params.A_ast, params.B_ast):
        log_theta.append([digamma(a) - digamma(a + b) for a, b in zip(A_t, B_t)])
        log_1m_theta.append([digamma(b) - digamma(a + b) for a, b in zip(A_t, B_t)])

    delta = params.delta_ast
    log_pi = digamma(delta) - digamma(delta.sum())

    omega = params.omega_ast
    rows, cols = np.nonzero(mask)
    row_sums = omega.sum(axis=1)
    log_tau = np.zeros_like(omega)
    log_tau[rows, cols] = digamma(omega[rows, cols]) - digamma(row_sums[rows])

    return ExpectedLogParameters(
        log_theta=log_theta,
        log_1m_theta=log_1m_theta,
        log_pi=log_pi,
        log_tau=log_tau,
        mask=np.asarray(mask, dtype=bool),
    )
