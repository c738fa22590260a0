"""Variational Bayes estimation of hidden Markov DCMs.

Each iteration runs the conjugate M-step, the forward-backward E-step and
the ELBO evaluation, until the ELBO changes by less than ``tol``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from hmdcm.constants import MASTERY_THRESHOLD
from hmdcm.estimation.base import BaseEstimator
from hmdcm.estimation.elbo import compute_elbo
from hmdcm.estimation.forward_backward import (
    ForwardBackwardResult,
    forward_backward,
    item_log_likelihood,
)
from hmdcm.estimation.variational import (
    ExpectedLogParameters,
    Hyperparameters,
    VariationalParameters,
    expected_log_parameters,
    resolve_hyperparameters,
    update_initial_distribution,
    update_item_parameters,
    update_transitions,
)
from hmdcm.exceptions import ConfigurationError
from hmdcm.typing import InitMethod, ItemParameterList
from hmdcm.utils.data import validate_longitudinal_responses

if TYPE_CHECKING:
    from hmdcm.models.hmdcm import HiddenMarkovDCM
    from hmdcm.results.fit_result import HMDCMResult


@dataclass
class VariationalState:
    """Everything one iteration hands to the next.

    Attributes
    ----------
    class_probs : NDArray
        Smoothed class probabilities (n_persons, n_classes, n_occasions).
    pair_probs : NDArray
        Smoothed consecutive-pair probabilities
        (n_persons, n_classes, n_classes, n_occasions - 1).
    params : VariationalParameters, optional
        Posterior pseudo-counts from the latest M-step.
    expectations : ExpectedLogParameters, optional
        Expected log-parameters from the latest M-step.
    log_normalizers : NDArray, optional
        Forward-pass log normalizers from the latest E-step.
    elbo : float
        ELBO after the latest E-step.
    """

    class_probs: NDArray[np.float64]
    pair_probs: NDArray[np.float64]
    params: VariationalParameters | None = None
    expectations: ExpectedLogParameters | None = None
    log_normalizers: NDArray[np.float64] | None = None
    elbo: float = -np.inf


def initialize_state(
    n_persons: int,
    n_classes: int,
    n_occasions: int,
    mask: NDArray[np.bool_],
    init: InitMethod = "uniform",
    rng: np.random.Generator | None = None,
) -> VariationalState:
    """Initial class-membership guess.

    Parameters
    ----------
    n_persons, n_classes, n_occasions : int
        Dimensions of the marginals.
    mask : NDArray
        Allowed transitions; pair probabilities are zero elsewhere.
    init : {'uniform', 'random'}
        Uniform marginals, or uniform random draws normalized per
        respondent and occasion.
    rng : np.random.Generator, optional
        Generator used by 'random'.

    Returns
    -------
    VariationalState
        State holding only the initial marginals.
    """
    n_pairs = max(n_occasions - 1, 0)

    if init == "uniform":
        class_probs = np.full((n_persons, n_classes, n_occasions), 1.0 / n_classes)
        pair_probs = np.ones((n_persons, n_classes, n_classes, n_pairs))
    elif init == "random":
        if rng is None:
            rng = np.random.default_rng()
        class_probs = rng.random((n_persons, n_classes, n_occasions))
        class_probs /= class_probs.sum(axis=1, keepdims=True)
        pair_probs = rng.random((n_persons, n_classes, n_classes, n_pairs))
    else:
        raise ConfigurationError(
            f"Unknown init '{init}'. Specify 'uniform' or 'random'."
        )

    pair_probs *= mask[None, :, :, None]
    if n_pairs:
        pair_probs /= pair_probs.sum(axis=(1, 2), keepdims=True)

    return VariationalState(class_probs=class_probs, pair_probs=pair_probs)


class HMDCMEstimator(BaseEstimator):
    """Variational Bayes estimator for hidden Markov DCMs.

    Parameters
    ----------
    max_iter : int
        Maximum number of iterations.
    tol : float
        Convergence tolerance for the absolute ELBO change.
    verbose : bool
        Whether to print progress during fitting.
    init : {'uniform', 'random'}
        Starting values for the class-membership expectations.
    seed : int, optional
        Seed for ``init='random'``.
    time_limit : float, optional
        Wall-clock budget in seconds; the loop stops after the iteration
        that exceeds it.

    Notes
    -----
    The variational posterior factorizes into Beta distributions for the
    item parameters, Dirichlet distributions for the initial distribution
    and the transition rows, and a Markov chain over each respondent's
    classes. With a ``nondecreasing`` model the forbidden transitions are
    structural zeros in every prior, posterior and message; with a test
    form design the class expectations are reordered into form order for
    the item update and the item log-likelihood is reordered back into
    administration order for the recursion.

    References
    ----------
    Yamaguchi, K., & Martinez, A. J. (2024). Variational Bayes inference
        for hidden Markov diagnostic classification models. British
        Journal of Mathematical and Statistical Psychology, 77(1), 55-79.
    """

    def __init__(
        self,
        max_iter: int = 500,
        tol: float = 1e-4,
        verbose: bool = False,
        init: InitMethod = "uniform",
        seed: int | None = None,
        time_limit: float | None = None,
    ) -> None:
        super().__init__(max_iter, tol, verbose, time_limit)

        if init not in ("uniform", "random"):
            raise ConfigurationError(
                f"Unknown init '{init}'. Specify 'uniform' or 'random'."
            )

        self.init = init
        self.seed = seed

    def fit(
        self,
        model: HiddenMarkovDCM,
        responses: list[NDArray[np.int_]] | NDArray[np.int_],
        A_0: ItemParameterList | None = None,
        B_0: ItemParameterList | None = None,
        delta_0: NDArray[np.float64] | float | None = None,
        omega_0: NDArray[np.float64] | float | None = None,
    ) -> HMDCMResult:
        """Fit the model by coordinate-ascent variational inference.

        Parameters
        ----------
        model : HiddenMarkovDCM
            Model structure. Posterior means are written back to it.
        responses : list of NDArray or NDArray
            One (n_persons, n_items_t) matrix per administration occasion,
            or a 3D array (n_occasions, n_persons, n_items). -1 is missing.
        A_0, B_0 : list of list of array-like, optional
            Beta hyperparameters indexed ``[form][item]``.
        delta_0 : array-like, optional
            Dirichlet hyperparameters of the initial distribution.
        omega_0 : array-like, optional
            Dirichlet hyperparameters of the transition rows.

        Returns
        -------
        HMDCMResult
            Posterior summaries, classifications and the ELBO trajectory.

        Raises
        ------
        ConfigurationError
            If hyperparameter overrides are malformed or non-positive.
        NumericalDegeneracyError
            If a message normalizer becomes zero or non-finite.
        """
        design = model.test_design
        if design is None:
            responses = validate_longitudinal_responses(responses, model.n_items)
            form_responses = responses
        else:
            responses = validate_longitudinal_responses(responses)
            if len(responses) != model.n_occasions:
                raise ValueError(
                    f"responses has {len(responses)} occasions, "
                    f"expected {model.n_occasions}"
                )
            if responses[0].shape[0] != design.n_persons:
                raise ValueError(
                    f"test_versions has {design.n_persons} entries, "
                    f"expected {responses[0].shape[0]}"
                )
            form_responses = design.responses_to_forms(responses)
            n_form_items = form_responses[0].shape[1]
            if any(n != n_form_items for n in model.n_items):
                raise ConfigurationError(
                    "Every test form must have the same number of items as "
                    "the administered response matrices."
                )

        n_persons = responses[0].shape[0]
        hyper = resolve_hyperparameters(
            model.item_groups,
            model.transition_mask,
            A_0=A_0,
            B_0=B_0,
            delta_0=delta_0,
            omega_0=omega_0,
        )

        rng = np.random.default_rng(self.seed)
        state = initialize_state(
            n_persons,
            model.n_classes,
            model.n_occasions,
            hyper.mask,
            init=self.init,
            rng=rng,
        )

        def step(current: VariationalState) -> tuple[VariationalState, float]:
            updated = self._iterate(model, hyper, form_responses, current)
            return updated, updated.elbo

        state, history, converged = self._run_until_converged(step, state)

        return self._build_result(model, hyper, state, responses, history, converged)

    def _m_step(
        self,
        model: HiddenMarkovDCM,
        hyper: Hyperparameters,
        form_responses: list[NDArray[np.int_]],
        state: VariationalState,
    ) -> VariationalParameters:
        """Conjugate updates from the current class expectations."""
        design = model.test_design
        form_class_probs = (
            state.class_probs if design is None else design.to_forms(state.class_probs)
        )

        A_ast, B_ast = update_item_parameters(
            hyper.A_0, hyper.B_0, model.item_groups, form_responses, form_class_probs
        )
        return VariationalParameters(
            A_ast=A_ast,
            B_ast=B_ast,
            delta_ast=update_initial_distribution(hyper.delta_0, state.class_probs),
            omega_ast=update_transitions(hyper.omega_0, state.pair_probs, hyper.mask),
        )

    def _e_step(
        self,
        model: HiddenMarkovDCM,
        form_responses: list[NDArray[np.int_]],
        expectations: ExpectedLogParameters,
    ) -> ForwardBackwardResult:
        """Forward-backward pass in administration order."""
        log_lik = item_log_likelihood(form_responses, expectations, model.item_groups)
        if model.test_design is not None:
            log_lik = model.test_design.to_occasions(log_lik)

        return forward_backward(log_lik, expectations.log_pi, expectations.transition)

    def _iterate(
        self,
        model: HiddenMarkovDCM,
        hyper: Hyperparameters,
        form_responses: list[NDArray[np.int_]],
        state: VariationalState,
    ) -> VariationalState:
        params = self._m_step(model, hyper, form_responses, state)
        expectations = expected_log_parameters(params, hyper.mask)
        smoothed = self._e_step(model, form_responses, expectations)
        elbo = compute_elbo(params, hyper, smoothed.log_evidence)

        return VariationalState(
            class_probs=smoothed.class_probs,
            pair_probs=smoothed.pair_probs,
            params=params,
            expectations=expectations,
            log_normalizers=smoothed.log_normalizers,
            elbo=elbo,
        )

    def _build_result(
        self,
        model: HiddenMarkovDCM,
        hyper: Hyperparameters,
        state: VariationalState,
        responses: list[NDArray[np.int_]],
        history: list[float],
        converged: bool,
    ) -> HMDCMResult:
        """Posterior means, standard deviations and classifications."""
        from hmdcm.results.fit_result import HMDCMResult

        params = state.params

        theta_est = []
        theta_sd = []
        for A_t, B_t in zip(params.A_ast, params.B_ast):
            theta_est.append([a / (a + b) for a, b in zip(A_t, B_t)])
            theta_sd.append(
                [
                    np.sqrt(a * b / ((a + b) ** 2 * (a + b + 1)))
                    for a, b in zip(A_t, B_t)
                ]
            )

        pi_est, pi_sd = _dirichlet_moments(params.delta_ast)
        tau_est, tau_sd = _dirichlet_moments(params.omega_ast)

        patterns = model.patterns
        posterior_max_class = np.argmax(state.class_probs, axis=1)
        map_patterns = np.transpose(patterns[posterior_max_class], (0, 2, 1))
        mastery_prob = np.einsum("ilt,lk->ikt", state.class_probs, patterns)
        eap_patterns = (mastery_prob > MASTERY_THRESHOLD).astype(np.int_)

        model.set_parameters(theta=theta_est, pi=pi_est, tau=tau_est)

        return HMDCMResult(
            model=model,
            theta_est=theta_est,
            theta_sd=theta_sd,
            pi_est=pi_est,
            pi_sd=pi_sd,
            tau_est=tau_est,
            tau_sd=tau_sd,
            posterior_max_class=posterior_max_class,
            map_patterns=map_patterns,
            mastery_prob=mastery_prob,
            eap_patterns=eap_patterns,
            class_probs=state.class_probs,
            pair_probs=state.pair_probs,
            A_ast=params.A_ast,
            B_ast=params.B_ast,
            delta_ast=params.delta_ast,
            omega_ast=params.omega_ast,
            hyperparameters=hyper,
            elbo_history=history,
            n_iterations=len(history),
            converged=converged,
            n_observations=responses[0].shape[0],
            n_parameters=model.n_parameters,
        )

    @property
    def elbo_history(self) -> list[float]:
        """ELBO trajectory of the most recently completed fit."""
        return self.convergence_history


def _dirichlet_moments(
    alpha: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Mean and standard deviation of a Dirichlet, row-wise for 2D input."""
    total = alpha.sum(axis=-1, keepdims=True)
    mean = alpha / total
    sd = np.sqrt(alpha * (total - alpha) / (total**2 * (total + 1)))
    return mean, sd
