from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from hmdcm._version import __version__
from hmdcm.estimation.vb import HMDCMEstimator
from hmdcm.exceptions import (
    ConfigurationError,
    HMDCMError,
    NonConvergenceWarning,
    NumericalDegeneracyError,
)
from hmdcm.models.constraints import TestFormDesign, nondecreasing_mask
from hmdcm.models.groups import build_item_groups, group_matrix
from hmdcm.models.hmdcm import HiddenMarkovDCM
from hmdcm.models.patterns import attribute_patterns, pattern_labels
from hmdcm.results.fit_result import HMDCMResult
from hmdcm.typing import InitMethod, ItemParameterList, MeasurementModel
from hmdcm.utils.simulation import default_transition_matrix, simulate_hmdcm


def fit_hmdcm(
    responses: Sequence[NDArray[np.int_]] | NDArray[np.int_],
    q_matrices: Sequence[NDArray[np.int_]] | NDArray[np.int_],
    measurement_model: MeasurementModel = "general",
    nondecreasing: bool = False,
    random_block_design: bool = False,
    test_versions: NDArray[np.int_] | None = None,
    test_order: NDArray[np.int_] | None = None,
    max_iter: int = 500,
    tol: float = 1e-4,
    init: InitMethod = "uniform",
    seed: int | None = None,
    time_limit: float | None = None,
    verbose: bool = False,
    A_0: ItemParameterList | None = None,
    B_0: ItemParameterList | None = None,
    delta_0: NDArray[np.float64] | float | None = None,
    omega_0: NDArray[np.float64] | float | None = None,
    attribute_names: list[str] | None = None,
) -> HMDCMResult:
    """Fit a hidden Markov DCM by variational Bayes.

    Parameters
    ----------
    responses : sequence of NDArray or NDArray
        One (n_persons, n_items_t) binary matrix per occasion (-1 for
        missing), or a 3D array (n_occasions, n_persons, n_items).
    q_matrices : sequence of NDArray or NDArray
        One (n_items_t, n_attributes) Q-matrix per occasion, or per test
        form under a randomized design.
    measurement_model : {'general', 'conjunctive', 'dina'}
        Measurement rule.
    nondecreasing : bool
        Forbid transitions that lose a mastered attribute.
    random_block_design : bool
        Administer test forms in a per-version order. Requires
        ``test_versions`` and ``test_order``; supplying both tables also
        enables the design.
    test_versions : NDArray, optional
        Version id of every respondent.
    test_order : NDArray, optional
        (n_versions, n_occasions) table of forms per administration occasion.
    max_iter, tol, init, seed, time_limit, verbose
        Passed to :class:`HMDCMEstimator`.
    A_0, B_0, delta_0, omega_0
        Optional hyperparameter overrides.
    attribute_names : list of str, optional
        Names for attributes.

    Returns
    -------
    HMDCMResult
        Fitted result.

    Raises
    ------
    ConfigurationError
        If ``random_block_design`` is requested without version/order
        tables, or the measurement rule or hyperparameters are invalid.

    Examples
    --------
    >>> q = np.array([[1, 0], [0, 1], [1, 1]])
    >>> data = simulate_hmdcm([q, q], n_persons=100, seed=1)
    >>> result = fit_hmdcm(data["responses"], [q, q])
    >>> result.eap_patterns.shape
    (100, 2, 2)
    """
    has_tables = test_versions is not None and test_order is not None
    if random_block_design and not has_tables:
        raise ConfigurationError(
            "random_block_design requires both test_versions and test_order."
        )

    design = TestFormDesign(test_versions, test_order) if has_tables else None

    model = HiddenMarkovDCM(
        q_matrices,
        measurement_model=measurement_model,
        nondecreasing=nondecreasing,
        test_design=design,
        attribute_names=attribute_names,
    )
    estimator = HMDCMEstimator(
        max_iter=max_iter,
        tol=tol,
        verbose=verbose,
        init=init,
        seed=seed,
        time_limit=time_limit,
    )
    return estimator.fit(
        model, responses, A_0=A_0, B_0=B_0, delta_0=delta_0, omega_0=omega_0
    )


__all__ = [
    "__version__",
    "fit_hmdcm",
    "HiddenMarkovDCM",
    "HMDCMEstimator",
    "HMDCMResult",
    "TestFormDesign",
    "attribute_patterns",
    "pattern_labels",
    "build_item_groups",
    "group_matrix",
    "nondecreasing_mask",
    "simulate_hmdcm",
    "default_transition_matrix",
    "HMDCMError",
    "ConfigurationError",
    "NumericalDegeneracyError",
    "NonConvergenceWarning",
]
