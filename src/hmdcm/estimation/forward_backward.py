"""Scaled forward-backward recursion over latent class sequences.

All respondents are processed together; the recursion is sequential only
across occasions.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from hmdcm.estimation.variational import ExpectedLogParameters
from hmdcm.exceptions import NumericalDegeneracyError
from hmdcm.models.groups import ItemGroups


@dataclass
class ForwardBackwardResult:
    """Output of the E-step.

    Attributes
    ----------
    class_probs : NDArray
        Smoothed class probabilities (n_persons, n_classes, n_occasions).
    pair_probs : NDArray
        Smoothed joint probabilities of consecutive classes,
        (n_persons, n_classes, n_classes, n_occasions - 1); entry
        ``[i, l, m, t - 1]`` is for class l at t - 1 and m at t.
    log_normalizers : NDArray
        log gamma of every respondent and occasion (n_persons, n_occasions).
    forward : NDArray
        Normalized forward messages.
    backward : NDArray
        Normalized backward messages.
    """

    class_probs: NDArray[np.float64]
    pair_probs: NDArray[np.float64]
    log_normalizers: NDArray[np.float64]
    forward: NDArray[np.float64]
    backward: NDArray[np.float64]

    @property
    def log_evidence(self) -> float:
        """Sum of log gamma over respondents and occasions."""
        return float(self.log_normalizers.sum())


def item_log_likelihood(
    form_responses: list[NDArray[np.int_]],
    expectations: ExpectedLogParameters,
    item_groups: list[list[ItemGroups]],
) -> NDArray[np.float64]:
    """Expected log-likelihood of each respondent's responses to each form.

    Parameters
    ----------
    form_responses : list of NDArray
        Responses per form (n_persons, n_items), -1 for missing.
    expectations : ExpectedLogParameters
        Current E[log theta] and E[log(1 - theta)].
    item_groups : list of list of ItemGroups
        Response groups per form and item.

    Returns
    -------
    NDArray
        log P~ of shape (n_persons, n_classes, n_forms). Missing responses
        contribute zero.
    """
    n_persons = form_responses[0].shape[0]
    n_classes = item_groups[0][0].n_classes
    log_lik = np.zeros((n_persons, n_classes, len(item_groups)))

    for t, groups_t in enumerate(item_groups):
        x = form_responses[t]
        log_correct = np.vstack(
            [lt[g.class_groups] for lt, g in zip(expectations.log_theta[t], groups_t)]
        )
        log_incorrect = np.vstack(
            [
                lt[g.class_groups]
                for lt, g in zip(expectations.log_1m_theta[t], groups_t)
            ]
        )
        log_lik[:, :, t] = (x == 1).astype(np.float64) @ log_correct + (
            x == 0
        ).astype(np.float64) @ log_incorrect

    return log_lik


def _normalize(
    values: NDArray[np.float64],
    axis: int | tuple[int, ...],
    stage: str,
    occasion: int | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Normalize ``values`` over ``axis``; fail on zero or non-finite sums."""
    sums = values.sum(axis=axis, keepdims=True)
    bad = ~np.isfinite(sums) | (sums <= 0)
    if np.any(bad):
        persons = np.unique(np.nonzero(bad)[0])
        where = f" at occasion {occasion}" if occasion is not None else ""
        raise NumericalDegeneracyError(
            f"{stage} normalizing sum is zero or non-finite{where} "
            f"for respondent(s) {persons[:10].tolist()}"
        )
    return values / sums, sums


def forward_backward(
    log_lik: NDArray[np.float64],
    log_pi: NDArray[np.float64],
    transition: NDArray[np.float64],
) -> ForwardBackwardResult:
    """Run the scaled forward-backward recursion.

    Parameters
    ----------
    log_lik : NDArray
        log P~ in occasion order (n_persons, n_classes, n_occasions).
    log_pi : NDArray
        E[log pi] (n_classes,).
    transition : NDArray
        exp(E[log tau]) with literal zeros on forbidden transitions
        (n_classes, n_classes).

    Returns
    -------
    ForwardBackwardResult
        Smoothed marginals, pairwise joints and log normalizers.

    Raises
    ------
    NumericalDegeneracyError
        If a forward, backward or smoothing normalizer is zero or non-finite.

    Notes
    -----
    P~ is exponentiated after subtracting its per-respondent maximum over
    classes; the shift is added back to log gamma, so the normalizers are
    those of the unshifted recursion. Backward messages are normalized
    over classes at each occasion, which leaves the smoothed marginals
    unchanged.
    """
    n_persons, n_classes, n_occasions = log_lik.shape

    shift = log_lik.max(axis=1)
    with np.errstate(invalid="ignore"):
        p_tilde = np.exp(log_lik - shift[:, None, :])

    forward = np.empty_like(p_tilde)
    backward = np.empty_like(p_tilde)
    log_normalizers = np.empty((n_persons, n_occasions))

    f, gamma = _normalize(p_tilde[:, :, 0] * np.exp(log_pi)[None, :], 1, "Forward", 0)
    forward[:, :, 0] = f
    log_normalizers[:, 0] = np.log(gamma[:, 0]) + shift[:, 0]

    for t in range(1, n_occasions):
        f, gamma = _normalize(
            p_tilde[:, :, t] * (forward[:, :, t - 1] @ transition), 1, "Forward", t
        )
        forward[:, :, t] = f
        log_normalizers[:, t] = np.log(gamma[:, 0]) + shift[:, t]

    backward[:, :, n_occasions - 1] = 1.0
    for t in range(n_occasions - 2, -1, -1):
        b, _ = _normalize(
            (p_tilde[:, :, t + 1] * backward[:, :, t + 1]) @ transition.T,
            1,
            "Backward",
            t,
        )
        backward[:, :, t] = b

    class_probs, _ = _normalize(forward * backward, 1, "Smoothing")

    emitted = p_tilde[:, :, 1:] * backward[:, :, 1:]
    pair_probs = (
        forward[:, :, None, :-1]
        * transition[None, :, :, None]
        * emitted[:, None, :, :]
    )
    if n_occasions > 1:
        pair_probs, _ = _normalize(pair_probs, (1, 2), "Pairwise smoothing")

    return ForwardBackwardResult(
        class_probs=class_probs,
        pair_probs=pair_probs,
        log_normalizers=log_normalizers,
        forward=forward,
        backward=backward,
    )
