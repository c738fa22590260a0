"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from hmdcm.utils.simulation import simulate_hmdcm


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def q_matrix():
    """Sample Q-matrix (6 items, 2 attributes)."""
    return np.array(
        [
            [1, 0],
            [0, 1],
            [1, 1],
            [1, 0],
            [0, 1],
            [1, 1],
        ]
    )


@pytest.fixture
def q_matrix_k3():
    """Sample Q-matrix (6 items, 3 attributes), including an attribute-free item."""
    return np.array(
        [
            [1, 0, 0],
            [0, 1, 0],
            [0, 0, 1],
            [1, 1, 0],
            [1, 1, 1],
            [0, 0, 0],
        ]
    )


@pytest.fixture
def longitudinal_data(q_matrix):
    """Three occasions of simulated responses from a general-rule HM-DCM."""
    q_matrices = [q_matrix, q_matrix, q_matrix]
    data = simulate_hmdcm(
        q_matrices, n_persons=150, min_theta=0.1, max_theta=0.9, seed=7
    )
    return {
        **data,
        "q_matrices": q_matrices,
        "n_persons": 150,
        "n_occasions": 3,
        "n_attributes": 2,
        "n_classes": 4,
    }


@pytest.fixture
def nondecreasing_data(q_matrix):
    """Three occasions of responses with non-decreasing mastery."""
    q_matrices = [q_matrix, q_matrix, q_matrix]
    data = simulate_hmdcm(
        q_matrices,
        n_persons=150,
        min_theta=0.1,
        max_theta=0.9,
        nondecreasing=True,
        seed=11,
    )
    return {**data, "q_matrices": q_matrices, "n_persons": 150}
