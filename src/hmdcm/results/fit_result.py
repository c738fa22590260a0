"""Result container for variational HM-DCM fitting."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from hmdcm.models.patterns import pattern_labels as _pattern_labels

if TYPE_CHECKING:
    import pandas as pd

    from hmdcm.estimation.variational import Hyperparameters


@dataclass
class HMDCMResult:
    """Container for hidden Markov DCM fitting results.

    Parameters
    ----------
    model : HiddenMarkovDCM
        The fitted model.
    theta_est, theta_sd : list of list of NDArray
        Posterior mean and standard deviation of the correct-response
        probability of every response group, indexed ``[form][item]``.
    pi_est, pi_sd : NDArray
        Posterior mean and standard deviation of the initial distribution.
    tau_est, tau_sd : NDArray
        Posterior mean and standard deviation of the transition matrix.
    posterior_max_class : NDArray
        MAP class of every respondent at every occasion (n_persons, n_occasions).
    map_patterns : NDArray
        Attribute pattern of the MAP class (n_persons, n_attributes, n_occasions).
    mastery_prob : NDArray
        Marginal mastery probabilities (n_persons, n_attributes, n_occasions).
    eap_patterns : NDArray
        Mastery probabilities thresholded at 0.5.
    class_probs : NDArray
        Smoothed class probabilities (n_persons, n_classes, n_occasions).
    pair_probs : NDArray
        Smoothed consecutive-pair probabilities
        (n_persons, n_classes, n_classes, n_occasions - 1).
    A_ast, B_ast, delta_ast, omega_ast
        Posterior pseudo-counts.
    hyperparameters : Hyperparameters
        Priors used for the fit.
    elbo_history : list of float
        ELBO at each iteration.
    n_iterations : int
        Number of iterations run.
    converged : bool
        Whether the ELBO change fell below the tolerance.
    n_observations : int
        Number of respondents.
    n_parameters : int
        Number of free parameters.

    Examples
    --------
    >>> result = HMDCMEstimator().fit(model, responses)
    >>> print(result.summary())
    >>> result.eap_patterns[:, :, -1]
    """

    model: Any  # HiddenMarkovDCM
    theta_est: list[list[NDArray[np.float64]]]
    theta_sd: list[list[NDArray[np.float64]]]
    pi_est: NDArray[np.float64]
    pi_sd: NDArray[np.float64]
    tau_est: NDArray[np.float64]
    tau_sd: NDArray[np.float64]
    posterior_max_class: NDArray[np.int_]
    map_patterns: NDArray[np.int_]
    mastery_prob: NDArray[np.float64]
    eap_patterns: NDArray[np.int_]
    class_probs: NDArray[np.float64]
    pair_probs: NDArray[np.float64]
    A_ast: list[list[NDArray[np.float64]]]
    B_ast: list[list[NDArray[np.float64]]]
    delta_ast: NDArray[np.float64]
    omega_ast: NDArray[np.float64]
    hyperparameters: "Hyperparameters"
    elbo_history: list[float] = field(default_factory=list)
    n_iterations: int = 0
    converged: bool = False
    n_observations: int = 0
    n_parameters: int = 0

    @property
    def elbo(self) -> float:
        """Final ELBO value."""
        return self.elbo_history[-1] if self.elbo_history else float("nan")

    @property
    def patterns(self) -> NDArray[np.int_]:
        return self.model.patterns

    @property
    def pattern_labels(self) -> list[str]:
        return _pattern_labels(self.model.patterns)

    def summary(self, alpha: float = 0.05) -> str:
        """Generate a formatted summary of the results.

        Parameters
        ----------
        alpha : float, default=0.05
            One minus the level of the equal-tailed Beta credible intervals.

        Returns
        -------
        str
            Formatted summary string.
        """
        from scipy import stats

        lines = []
        width = 80

        lines.append("=" * width)
        lines.append(f"{'Hidden Markov DCM (Variational Bayes)':^{width}}")
        lines.append("=" * width)

        lines.append(
            f"Measurement:        {self.model.measurement_model:<20} "
            f"ELBO:              {self.elbo:>12.4f}"
        )
        lines.append(
            f"No. Occasions:      {self.model.n_occasions:<20} "
            f"Nondecreasing:     {str(self.model.nondecreasing):>12}"
        )
        lines.append(
            f"No. Attributes:     {self.model.n_attributes:<20} "
            f"No. Classes:       {self.model.n_classes:>12}"
        )
        lines.append(
            f"No. Persons:        {self.n_observations:<20} "
            f"No. Parameters:    {self.n_parameters:>12}"
        )
        lines.append(
            f"Converged:          {str(self.converged):<20} "
            f"Iterations:        {self.n_iterations:>12}"
        )
        lines.append("-" * width)

        ci_label = f"[{(1 - alpha) * 100:.0f}%"
        for t, (A_t, B_t) in enumerate(zip(self.A_ast, self.B_ast)):
            lines.append(f"\ntheta (occasion {t}):")
            lines.append(
                f"{'Item':<10} {'Group':<10} {'Estimate':>10} {'Post.SD':>10} "
                f"{ci_label:>10} {'CI]':>10}"
            )
            lines.append("-" * width)

            for j, (a, b) in enumerate(zip(A_t, B_t)):
                low = stats.beta.ppf(alpha / 2, a, b)
                high = stats.beta.ppf(1 - alpha / 2, a, b)
                for h in range(len(a)):
                    lines.append(
                        f"{f'Item_{j}':<10} {h:<10} "
                        f"{self.theta_est[t][j][h]:>10.4f} "
                        f"{self.theta_sd[t][j][h]:>10.4f} "
                        f"{low[h]:>10.4f} {high[h]:>10.4f}"
                    )

        lines.append("\nInitial class distribution:")
        lines.append(f"{'Pattern':<15} {'Estimate':>10} {'Post.SD':>10}")
        lines.append("-" * width)
        for label, est, sd in zip(self.pattern_labels, self.pi_est, self.pi_sd):
            lines.append(f"{label:<15} {est:>10.4f} {sd:>10.4f}")

        lines.append("=" * width)
        return "\n".join(lines)

    def transition_summary(self) -> str:
        """Formatted transition matrix (rows: from, columns: to)."""
        labels = self.pattern_labels
        col_width = max(8, len(labels[0]) + 2)

        lines = [" " * col_width + "".join(f"{lab:>{col_width}}" for lab in labels)]
        for label, row in zip(labels, self.tau_est):
            lines.append(
                f"{label:<{col_width}}" + "".join(f"{p:>{col_width}.4f}" for p in row)
            )
        return "\n".join(lines)

    def coef(self) -> "pd.DataFrame":
        """Return item parameters as a long-format DataFrame.

        Returns
        -------
        pandas.DataFrame
            One row per occasion, item and response group with the
            posterior mean and standard deviation.
        """
        import pandas as pd

        rows = []
        for t, (est_t, sd_t) in enumerate(zip(self.theta_est, self.theta_sd)):
            groups_t = self.model.item_groups[t]
            for j, (est, sd) in enumerate(zip(est_t, sd_t)):
                for h in range(len(est)):
                    rows.append(
                        {
                            "occasion": t,
                            "item": j,
                            "group": h,
                            "level": int(groups_t[j].levels[h]),
                            "estimate": est[h],
                            "sd": sd[h],
                        }
                    )

        return pd.DataFrame(rows)

    def fit_statistics(self) -> dict[str, float]:
        """Return fit statistics as a dictionary."""
        return {
            "elbo": self.elbo,
            "n_parameters": self.n_parameters,
            "n_observations": self.n_observations,
            "converged": self.converged,
            "n_iterations": self.n_iterations,
        }

    def __repr__(self) -> str:
        return (
            f"HMDCMResult(model={self.model.model_name}, "
            f"ELBO={self.elbo:.2f}, "
            f"converged={self.converged})"
        )
