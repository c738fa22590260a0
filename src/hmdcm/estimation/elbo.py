"""Evidence lower bound of the variational HM-DCM posterior."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.special import betaln, digamma, gammaln

from hmdcm.estimation.variational import Hyperparameters, VariationalParameters


def beta_kl(
    a_post: NDArray[np.float64],
    b_post: NDArray[np.float64],
    a_prior: NDArray[np.float64],
    b_prior: NDArray[np.float64],
) -> float:
    """KL(Beta(a_post, b_post) || Beta(a_prior, b_prior)), summed over entries."""
    psi_sum = digamma(a_post + b_post)
    kl = (
        betaln(a_prior, b_prior)
        - betaln(a_post, b_post)
        + (a_post - a_prior) * (digamma(a_post) - psi_sum)
        + (b_post - b_prior) * (digamma(b_post) - psi_sum)
    )
    return float(np.sum(kl))


def dirichlet_kl(
    alpha_post: NDArray[np.float64],
    alpha_prior: NDArray[np.float64],
) -> float:
    """KL(Dir(alpha_post) || Dir(alpha_prior)) for a single Dirichlet."""
    post_sum = alpha_post.sum()
    return float(
        gammaln(post_sum)
        - np.sum(gammaln(alpha_post))
        - gammaln(alpha_prior.sum())
        + np.sum(gammaln(alpha_prior))
        + np.sum((alpha_post - alpha_prior) * (digamma(alpha_post) - digamma(post_sum)))
    )


def compute_elbo(
    params: VariationalParameters,
    hyper: Hyperparameters,
    log_evidence: float,
) -> float:
    """Evidence lower bound for the current iteration.

    ELBO = sum_{i,t} log gamma_it - KL(q(theta) || p(theta))
           - KL(q(pi) || p(pi)) - sum_l KL(q(tau_l) || p(tau_l))

    Transition rows only include their allowed entries.

    Parameters
    ----------
    params : VariationalParameters
        Current posterior pseudo-counts.
    hyper : Hyperparameters
        Prior pseudo-counts and transition mask.
    log_evidence : float
        Sum of the forward-pass log normalizers.

    Returns
    -------
    float
        ELBO value.
    """
    a_post = np.concatenate([a for A_t in params.A_ast for a in A_t])
    b_post = np.concatenate([b for B_t in params.B_ast for b in B_t])
    a_prior = np.concatenate([a for A_t in hyper.A_0 for a in A_t])
    b_prior = np.concatenate([b for B_t in hyper.B_0 for b in B_t])

    kl_theta = beta_kl(a_post, b_post, a_prior, b_prior)
    kl_pi = dirichlet_kl(params.delta_ast, hyper.delta_0)

    kl_tau = 0.0
    for row in range(hyper.mask.shape[0]):
        allowed = hyper.mask[row]
        kl_tau += dirichlet_kl(
            params.omega_ast[row, allowed], hyper.omega_0[row, allowed]
        )

    return float(log_evidence - kl_theta - kl_pi - kl_tau)
