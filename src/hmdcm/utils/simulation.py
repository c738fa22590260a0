"""Data simulation utilities for hidden Markov DCMs."""

from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from hmdcm.models.constraints import nondecreasing_mask
from hmdcm.models.groups import build_occasion_groups
from hmdcm.models.patterns import attribute_patterns, pattern_index
from hmdcm.utils.data import validate_q_matrices


def default_transition_matrix(
    n_attributes: int,
    p_gain: float = 0.3,
    p_loss: float = 0.1,
    p_stay: float = 0.6,
    nondecreasing: bool = False,
) -> NDArray[np.float64]:
    """Transition matrix built attribute by attribute.

    The unnormalized weight of moving from class l to class m is the
    product over attributes of ``p_gain`` (attribute acquired), ``p_loss``
    (attribute lost) or ``p_stay`` (unchanged); rows are then normalized.

    Parameters
    ----------
    n_attributes : int
        Number of attributes.
    p_gain, p_loss, p_stay : float
        Per-attribute weights.
    nondecreasing : bool
        Zero out transitions that lose an attribute before normalizing.

    Returns
    -------
    NDArray
        Row-stochastic matrix (2^K, 2^K).
    """
    patterns = attribute_patterns(n_attributes)
    diff = patterns[None, :, :] - patterns[:, None, :]
    weights = np.where(diff == 1, p_gain, np.where(diff == -1, p_loss, p_stay))
    tau = weights.prod(axis=2)
    if nondecreasing:
        tau = tau * nondecreasing_mask(patterns)
    return tau / tau.sum(axis=1, keepdims=True)


def simulate_hmdcm(
    q_matrices: Union[NDArray[np.int_], Sequence[NDArray[np.int_]]],
    n_persons: int = 200,
    min_theta: float = 0.2,
    max_theta: float = 0.8,
    attr_cor: float = 0.1,
    tau: Optional[NDArray[np.float64]] = None,
    nondecreasing: bool = False,
    seed: Optional[int] = 17,
) -> dict[str, NDArray]:
    """Simulate longitudinal responses from a general-rule HM-DCM.

    Initial patterns come from thresholding correlated standard normals;
    later patterns follow the transition matrix. The correct-response
    probability of each group rises with the number of required
    attributes it masters.

    Parameters
    ----------
    q_matrices : sequence of NDArray or NDArray
        One Q-matrix per occasion.
    n_persons : int, default=200
        Number of respondents.
    min_theta, max_theta : float
        Range of the correct-response probabilities.
    attr_cor : float, default=0.1
        Correlation of the latent normals behind the initial patterns.
    tau : NDArray, optional
        Transition matrix. Defaults to :func:`default_transition_matrix`.
    nondecreasing : bool, default=False
        Use the non-decreasing default transition matrix.
    seed : int, optional
        Random seed for reproducibility.

    Returns
    -------
    dict
        ``responses`` (list of (n_persons, n_items_t) arrays), ``patterns``
        (n_persons, n_attributes, n_occasions), ``classes``
        (n_persons, n_occasions), ``theta`` ([occasion][item] arrays) and
        ``tau``.

    Examples
    --------
    >>> q = np.array([[1, 0], [0, 1], [1, 1]])
    >>> data = simulate_hmdcm([q, q, q], n_persons=100, seed=1)
    >>> data["responses"][0].shape
    (100, 3)
    """
    rng = np.random.default_rng(seed)
    q_matrices = validate_q_matrices(q_matrices)
    n_attributes = q_matrices[0].shape[1]
    n_occasions = len(q_matrices)
    patterns = attribute_patterns(n_attributes)

    if tau is None:
        tau = default_transition_matrix(n_attributes, nondecreasing=nondecreasing)
    tau = np.asarray(tau, dtype=np.float64)

    cov = np.full((n_attributes, n_attributes), attr_cor)
    np.fill_diagonal(cov, 1.0)
    cut_offs = stats.norm.ppf((np.arange(n_attributes) + 1.5) / (n_attributes + 1))
    latent = rng.multivariate_normal(np.zeros(n_attributes), cov, size=n_persons)

    classes = np.empty((n_persons, n_occasions), dtype=np.int_)
    classes[:, 0] = pattern_index((latent > cut_offs).astype(np.int_))
    for t in range(1, n_occasions):
        cumulative = np.cumsum(tau[classes[:, t - 1]], axis=1)
        draws = rng.random((n_persons, 1))
        classes[:, t] = np.minimum(
            (draws > cumulative).sum(axis=1), len(patterns) - 1
        )

    item_groups = build_occasion_groups(q_matrices, patterns, "general")
    theta = []
    responses = []
    for t, groups_t in enumerate(item_groups):
        theta_t = []
        probs = np.empty((n_persons, len(groups_t)))
        for j, g in enumerate(groups_t):
            grid = np.sort(rng.uniform(min_theta, max_theta, int(g.levels.max()) + 1))
            theta_j = grid[g.levels]
            theta_t.append(theta_j)
            probs[:, j] = theta_j[g.class_groups[classes[:, t]]]
        theta.append(theta_t)
        responses.append((rng.random(probs.shape) < probs).astype(np.int_))

    return {
        "responses": responses,
        "patterns": np.transpose(patterns[classes], (0, 2, 1)),
        "classes": classes,
        "theta": theta,
        "tau": tau,
    }
