from hmdcm.utils.data import validate_longitudinal_responses, validate_q_matrices
from hmdcm.utils.simulation import default_transition_matrix, simulate_hmdcm

__all__ = [
    "simulate_hmdcm",
    "default_transition_matrix",
    "validate_q_matrices",
    "validate_longitudinal_responses",
]
