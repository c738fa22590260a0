"""Tests for the variational Bayes HM-DCM estimator."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from hmdcm.constants import HYPERPRIOR_OFFSET
from hmdcm.estimation.forward_backward import forward_backward, item_log_likelihood
from hmdcm.estimation.variational import VariationalParameters, expected_log_parameters
from hmdcm.estimation.vb import HMDCMEstimator, initialize_state
from hmdcm.exceptions import ConfigurationError, NonConvergenceWarning
from hmdcm.models.constraints import TestFormDesign, nondecreasing_mask
from hmdcm.models.hmdcm import HiddenMarkovDCM
from hmdcm.models.patterns import attribute_patterns
from hmdcm.utils.simulation import simulate_hmdcm

IGNORE_NONCONVERGENCE = pytest.mark.filterwarnings(
    "ignore::hmdcm.exceptions.NonConvergenceWarning"
)


class TestInitializeState:
    """Tests for initialize_state."""

    def test_uniform(self):
        mask = np.ones((4, 4), bool)
        state = initialize_state(3, 4, 2, mask)

        np.testing.assert_allclose(state.class_probs, 0.25)
        np.testing.assert_allclose(state.pair_probs, 1 / 16)
        assert state.elbo == -np.inf

    def test_random(self, rng):
        mask = nondecreasing_mask(attribute_patterns(2))
        state = initialize_state(5, 4, 3, mask, init="random", rng=rng)

        np.testing.assert_allclose(state.class_probs.sum(axis=1), 1.0)
        np.testing.assert_allclose(state.pair_probs.sum(axis=(1, 2)), 1.0)
        assert np.all(state.pair_probs[:, ~mask, :] == 0.0)

    def test_single_occasion(self):
        state = initialize_state(3, 2, 1, np.ones((2, 2), bool))

        assert state.pair_probs.shape == (3, 2, 2, 0)

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown init"):
            initialize_state(3, 2, 2, np.ones((2, 2), bool), init="kmeans")


class TestHMDCMEstimatorInit:
    """Tests for estimator configuration."""

    def test_defaults(self):
        estimator = HMDCMEstimator()

        assert estimator.max_iter == 500
        assert estimator.tol == 1e-4
        assert estimator.init == "uniform"
        assert estimator.time_limit is None
        assert "HMDCMEstimator" in repr(estimator)

    def test_invalid_max_iter(self):
        with pytest.raises(ValueError, match="max_iter"):
            HMDCMEstimator(max_iter=0)

    def test_invalid_tol(self):
        with pytest.raises(ValueError, match="tol"):
            HMDCMEstimator(tol=0.0)

    def test_invalid_init(self):
        with pytest.raises(ConfigurationError):
            HMDCMEstimator(init="kmeans")

    def test_invalid_time_limit(self):
        with pytest.raises(ValueError, match="time_limit"):
            HMDCMEstimator(time_limit=0)


class TestClosedForm:
    """Single-update cases that have closed-form answers."""

    def test_one_attribute_one_update(self):
        """With uniform starting marginals each class gets half the counts."""
        x = np.array([[1], [1], [0], [1], [0]])
        model = HiddenMarkovDCM([np.array([[1]])])
        low = 1 + HYPERPRIOR_OFFSET

        with pytest.warns(NonConvergenceWarning):
            result = HMDCMEstimator(max_iter=1).fit(model, [x])

        np.testing.assert_allclose(result.A_ast[0][0], [low + 1.5, 2.0 + 1.5])
        np.testing.assert_allclose(result.B_ast[0][0], [2.0 + 1.0, low + 1.0])
        np.testing.assert_allclose(
            result.theta_est[0][0],
            result.A_ast[0][0] / (result.A_ast[0][0] + result.B_ast[0][0]),
        )
        np.testing.assert_allclose(result.delta_ast, [3.5, 3.5])

    def test_attribute_free_item(self):
        """An item without requirements is a plain Beta-Bernoulli update."""
        x0 = np.array([[1], [1], [0], [1]])
        x1 = np.array([[0], [1], [0], [0]])
        model = HiddenMarkovDCM([np.array([[0]]), np.array([[0]])])

        result = HMDCMEstimator().fit(model, [x0, x1])

        low = 1 + HYPERPRIOR_OFFSET
        assert result.converged
        assert result.theta_est[0][0][0] == pytest.approx((low + 3) / (low + 2 + 4))
        assert result.theta_est[1][0][0] == pytest.approx((low + 1) / (low + 2 + 4))
        np.testing.assert_allclose(result.class_probs, 0.5)

    def test_single_respondent_one_iteration(self):
        """The first smoothed marginal after one update uses ElogPi and Ptil."""
        q = np.array([[1, 0], [0, 1]])
        responses = [np.array([[1, 0]]), np.array([[0, 1]])]
        model = HiddenMarkovDCM([q, q])

        with pytest.warns(NonConvergenceWarning):
            result = HMDCMEstimator(max_iter=1).fit(model, responses)

        params = VariationalParameters(
            A_ast=result.A_ast,
            B_ast=result.B_ast,
            delta_ast=result.delta_ast,
            omega_ast=result.omega_ast,
        )
        expectations = expected_log_parameters(params, model.transition_mask)
        log_lik = item_log_likelihood(responses, expectations, model.item_groups)
        smoothed = forward_backward(
            log_lik, expectations.log_pi, expectations.transition
        )

        weights = np.exp(expectations.log_pi + log_lik[0, :, 0])
        np.testing.assert_allclose(smoothed.forward[0, :, 0], weights / weights.sum())
        np.testing.assert_allclose(result.class_probs, smoothed.class_probs)
        np.testing.assert_allclose(result.class_probs[0, :, 0].sum(), 1.0)
        assert result.elbo_history == [pytest.approx(result.elbo)]

    @IGNORE_NONCONVERGENCE
    def test_single_respondent(self):
        q = np.array([[1, 0], [0, 1]])
        responses = [np.array([[1, 0]]), np.array([[1, 1]])]

        result = HMDCMEstimator(max_iter=50).fit(HiddenMarkovDCM([q, q]), responses)

        assert result.class_probs.shape == (1, 4, 2)
        assert result.pair_probs.shape == (1, 4, 4, 1)
        np.testing.assert_allclose(result.class_probs.sum(axis=1), 1.0)
        assert result.map_patterns.shape == (1, 2, 2)


class TestFit:
    """Tests for HMDCMEstimator.fit on simulated data."""

    def test_elbo_non_decreasing(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        result = HMDCMEstimator(max_iter=200).fit(model, longitudinal_data["responses"])

        history = np.array(result.elbo_history)
        assert len(history) == result.n_iterations
        assert np.all(np.isfinite(history))
        assert np.all(np.diff(history) >= -1e-6)

    def test_result_shapes(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        result = HMDCMEstimator().fit(model, longitudinal_data["responses"])

        n, l, t = 150, 4, 3
        assert result.class_probs.shape == (n, l, t)
        assert result.pair_probs.shape == (n, l, l, t - 1)
        assert result.posterior_max_class.shape == (n, t)
        assert result.map_patterns.shape == (n, 2, t)
        assert result.eap_patterns.shape == (n, 2, t)
        assert result.tau_est.shape == (l, l)
        assert len(result.theta_est) == t
        assert result.n_observations == n
        np.testing.assert_allclose(result.pi_est.sum(), 1.0)
        np.testing.assert_allclose(result.tau_est.sum(axis=1), 1.0)

    def test_model_written_back(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        result = HMDCMEstimator().fit(model, longitudinal_data["responses"])

        assert model.is_fitted
        np.testing.assert_array_equal(model.pi, result.pi_est)
        np.testing.assert_array_equal(model.tau, result.tau_est)
        assert model.probability(0).shape == (4, 6)

    def test_accepts_3d_array(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        stacked = np.stack(longitudinal_data["responses"])

        result = HMDCMEstimator(max_iter=20).fit(model, stacked)

        assert result.class_probs.shape == (150, 4, 3)

    def test_nondecreasing_structural_zeros(self, nondecreasing_data):
        model = HiddenMarkovDCM(nondecreasing_data["q_matrices"], nondecreasing=True)
        mask = model.transition_mask

        result = HMDCMEstimator().fit(model, nondecreasing_data["responses"])

        assert np.all(result.pair_probs[:, ~mask, :] == 0.0)
        assert np.all(result.omega_ast[~mask] == 0.0)
        assert np.all(result.tau_est[~mask] == 0.0)
        np.testing.assert_allclose(result.tau_est.sum(axis=1), 1.0)
        assert np.all(np.diff(result.elbo_history) >= -1e-6)

    def test_nondecreasing_mastery(self, nondecreasing_data):
        """Marginal mastery probabilities never decrease over occasions."""
        model = HiddenMarkovDCM(nondecreasing_data["q_matrices"], nondecreasing=True)

        result = HMDCMEstimator().fit(model, nondecreasing_data["responses"])

        assert np.all(np.diff(result.mastery_prob, axis=2) >= -1e-10)

    def test_conjunctive(self, longitudinal_data):
        model = HiddenMarkovDCM(
            longitudinal_data["q_matrices"], measurement_model="conjunctive"
        )

        result = HMDCMEstimator().fit(model, longitudinal_data["responses"])

        assert all(len(th) == 2 for th in result.theta_est[0])
        assert np.all(np.diff(result.elbo_history) >= -1e-6)

    @IGNORE_NONCONVERGENCE
    def test_missing_responses(self, longitudinal_data, rng):
        responses = [x.copy() for x in longitudinal_data["responses"]]
        for x in responses:
            x[rng.random(x.shape) < 0.1] = -1
        responses[0][0] = -1
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        result = HMDCMEstimator(max_iter=100).fit(model, responses)

        assert np.all(np.isfinite(result.class_probs))
        np.testing.assert_allclose(result.class_probs.sum(axis=1), 1.0)
        assert np.all(np.diff(result.elbo_history) >= -1e-6)

    def test_parameter_recovery(self):
        """Attribute recovery clearly beats chance on a weakly identified design."""
        q = np.array(
            [[1, 0], [0, 1], [1, 1], [1, 0], [0, 1], [1, 0], [0, 1], [1, 1]]
        )
        data = simulate_hmdcm(
            [q, q], n_persons=500, min_theta=0.1, max_theta=0.9, seed=3
        )

        result = HMDCMEstimator().fit(HiddenMarkovDCM([q, q]), data["responses"])

        accuracy = np.mean(result.eap_patterns == data["patterns"])
        assert accuracy > 0.6

    def test_invalid_responses(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        responses = [x.copy() for x in longitudinal_data["responses"]]
        responses[1][0, 0] = 2

        with pytest.raises(ValueError, match="only 0, 1"):
            HMDCMEstimator().fit(model, responses)

    def test_wrong_item_count(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        responses = [x[:, :5] for x in longitudinal_data["responses"]]

        with pytest.raises(ValueError, match="items"):
            HMDCMEstimator().fit(model, responses)

    def test_invalid_hyperparameters(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        with pytest.raises(ConfigurationError):
            HMDCMEstimator().fit(model, longitudinal_data["responses"], delta_0=-1.0)


class TestStopping:
    """Tests for convergence and stopping rules."""

    def test_non_convergence_warning(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        with pytest.warns(NonConvergenceWarning):
            result = HMDCMEstimator(max_iter=1).fit(
                model, longitudinal_data["responses"]
            )

        assert not result.converged
        assert result.n_iterations == 1
        assert len(result.elbo_history) == 1

    def test_time_limit(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        with pytest.warns(NonConvergenceWarning):
            result = HMDCMEstimator(time_limit=1e-9).fit(
                model, longitudinal_data["responses"]
            )

        assert result.n_iterations == 1

    def test_converges(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        estimator = HMDCMEstimator(tol=1e-4)

        result = estimator.fit(model, longitudinal_data["responses"])

        assert result.converged
        assert abs(result.elbo_history[-1] - result.elbo_history[-2]) < 1e-4
        assert estimator.elbo_history == result.elbo_history
        assert estimator.convergence_history == result.elbo_history

    def test_verbose(self, longitudinal_data, capsys):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])

        with pytest.warns(NonConvergenceWarning):
            HMDCMEstimator(max_iter=2, verbose=True).fit(
                model, longitudinal_data["responses"]
            )

        captured = capsys.readouterr()
        assert "Iteration" in captured.out
        assert "ELBO =" in captured.out
        assert "change =" in captured.out

    @IGNORE_NONCONVERGENCE
    def test_history_per_fit(self, longitudinal_data):
        """A later fit does not alter an earlier result's ELBO trajectory."""
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        responses = longitudinal_data["responses"]
        estimator = HMDCMEstimator(max_iter=4)

        first = estimator.fit(model, responses)
        snapshot = list(first.elbo_history)
        second = estimator.fit(model, [x[:60] for x in responses])

        assert first.elbo_history == snapshot
        assert estimator.elbo_history == second.elbo_history
        assert estimator.convergence_history == second.elbo_history

    @IGNORE_NONCONVERGENCE
    def test_concurrent_fits(self, longitudinal_data):
        """Fits sharing one estimator across threads keep their own histories."""
        q_matrices = longitudinal_data["q_matrices"]
        responses = longitudinal_data["responses"]
        subsets = [[x[:n] for x in responses] for n in (50, 100, 150)]
        estimator = HMDCMEstimator(max_iter=8)

        expected = [
            HMDCMEstimator(max_iter=8).fit(HiddenMarkovDCM(q_matrices), data)
            for data in subsets
        ]
        with ThreadPoolExecutor(max_workers=3) as pool:
            results = list(
                pool.map(
                    lambda data: estimator.fit(HiddenMarkovDCM(q_matrices), data),
                    subsets,
                )
            )

        for got, want in zip(results, expected):
            np.testing.assert_allclose(got.elbo_history, want.elbo_history)
            assert got.n_iterations == len(got.elbo_history)

    @IGNORE_NONCONVERGENCE
    def test_random_init_reproducible(self, longitudinal_data):
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"])
        responses = longitudinal_data["responses"]

        first = HMDCMEstimator(max_iter=5, init="random", seed=5).fit(model, responses)
        second = HMDCMEstimator(max_iter=5, init="random", seed=5).fit(model, responses)

        np.testing.assert_array_equal(first.elbo_history, second.elbo_history)


class TestTestFormDesign:
    """Tests for fitting with a randomized test-form design."""

    @IGNORE_NONCONVERGENCE
    def test_identity_design(self, longitudinal_data):
        """A design that gives every form in its own occasion changes nothing."""
        q_matrices = longitudinal_data["q_matrices"]
        responses = longitudinal_data["responses"]
        design = TestFormDesign(np.zeros(150, dtype=int), np.array([[0, 1, 2]]))
        estimator = HMDCMEstimator(max_iter=30, tol=1e-12)

        plain = estimator.fit(HiddenMarkovDCM(q_matrices), responses)
        designed = estimator.fit(
            HiddenMarkovDCM(q_matrices, test_design=design), responses
        )

        np.testing.assert_allclose(designed.elbo_history, plain.elbo_history)
        np.testing.assert_allclose(designed.class_probs, plain.class_probs)

    @IGNORE_NONCONVERGENCE
    def test_permuted_forms(self):
        """Item parameters follow the form, not the administration occasion."""
        forms = [
            np.array([[1, 0], [0, 1], [1, 1], [1, 0]]),
            np.array([[0, 1], [0, 1], [1, 0], [1, 1]]),
            np.array([[1, 1], [1, 0], [1, 0], [0, 1]]),
        ]
        order = np.array([2, 0, 1])
        administered = [forms[f] for f in order]
        data = simulate_hmdcm(administered, n_persons=120, seed=5)
        design = TestFormDesign(np.zeros(120, dtype=int), order[None, :])
        estimator = HMDCMEstimator(max_iter=30, tol=1e-12)

        plain = estimator.fit(HiddenMarkovDCM(administered), data["responses"])
        designed = estimator.fit(
            HiddenMarkovDCM(forms, test_design=design), data["responses"]
        )

        for t, f in enumerate(order):
            for th_design, th_plain in zip(
                designed.theta_est[f], plain.theta_est[t]
            ):
                np.testing.assert_allclose(th_design, th_plain)
        np.testing.assert_allclose(designed.pi_est, plain.pi_est)
        np.testing.assert_allclose(designed.tau_est, plain.tau_est)
        np.testing.assert_allclose(designed.class_probs, plain.class_probs)

    def test_two_versions(self, longitudinal_data):
        q_matrices = longitudinal_data["q_matrices"]
        versions = np.tile([0, 1], 75)
        design = TestFormDesign(versions, np.array([[0, 1, 2], [2, 0, 1]]))
        model = HiddenMarkovDCM(q_matrices, test_design=design)

        result = HMDCMEstimator().fit(model, longitudinal_data["responses"])

        np.testing.assert_allclose(result.class_probs.sum(axis=1), 1.0)
        assert np.all(np.diff(result.elbo_history) >= -1e-6)

    def test_design_person_mismatch(self, longitudinal_data):
        design = TestFormDesign(np.zeros(10, dtype=int), np.array([[0, 1, 2]]))
        model = HiddenMarkovDCM(longitudinal_data["q_matrices"], test_design=design)

        with pytest.raises(ValueError, match="test_versions"):
            HMDCMEstimator().fit(model, longitudinal_data["responses"])
