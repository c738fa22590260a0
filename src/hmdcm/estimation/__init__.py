from hmdcm.estimation.base import BaseEstimator
from hmdcm.estimation.elbo import beta_kl, compute_elbo, dirichlet_kl
from hmdcm.estimation.forward_backward import (
    ForwardBackwardResult,
    forward_backward,
    item_log_likelihood,
)
from hmdcm.estimation.variational import (
    ExpectedLogParameters,
    Hyperparameters,
    VariationalParameters,
    default_hyperparameters,
    expected_log_parameters,
    resolve_hyperparameters,
    update_initial_distribution,
    update_item_parameters,
    update_transitions,
)
from hmdcm.estimation.vb import HMDCMEstimator, VariationalState, initialize_state

__all__ = [
    # Estimators
    "BaseEstimator",
    "HMDCMEstimator",
    "VariationalState",
    "initialize_state",
    # Variational posteriors
    "Hyperparameters",
    "VariationalParameters",
    "ExpectedLogParameters",
    "default_hyperparameters",
    "resolve_hyperparameters",
    "update_initial_distribution",
    "update_transitions",
    "update_item_parameters",
    "expected_log_parameters",
    # E-step
    "ForwardBackwardResult",
    "item_log_likelihood",
    "forward_backward",
    # ELBO
    "beta_kl",
    "dirichlet_kl",
    "compute_elbo",
]
