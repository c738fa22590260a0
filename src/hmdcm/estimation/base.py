"""Shared stopping rules for iterative HM-DCM estimators."""

import time
import warnings
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np
from numpy.typing import NDArray

from hmdcm.exceptions import NonConvergenceWarning

if TYPE_CHECKING:
    from hmdcm.models.hmdcm import HiddenMarkovDCM
    from hmdcm.results.fit_result import HMDCMResult


class BaseEstimator(ABC):
    """Iteration budget, ELBO tolerance and progress output.

    Parameters
    ----------
    max_iter : int, default=500
        Maximum number of iterations.
    tol : float, default=1e-4
        Stop once the absolute ELBO change falls below this value.
    verbose : bool, default=False
        Whether to print one line per iteration.
    time_limit : float, optional
        Wall-clock budget in seconds, checked after each iteration.

    Attributes
    ----------
    convergence_history : list of float
        ELBO trajectory of the most recently completed fit.
    """

    def __init__(
        self,
        max_iter: int = 500,
        tol: float = 1e-4,
        verbose: bool = False,
        time_limit: Optional[float] = None,
    ) -> None:
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        if tol <= 0:
            raise ValueError("tol must be positive")
        if time_limit is not None and time_limit <= 0:
            raise ValueError("time_limit must be positive")

        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose
        self.time_limit = time_limit
        self._convergence_history: list[float] = []

    @abstractmethod
    def fit(
        self,
        model: "HiddenMarkovDCM",
        responses: list[NDArray[np.int_]],
        **kwargs,
    ) -> "HMDCMResult":
        """Fit ``model`` to one response matrix per occasion (-1 is missing)."""
        ...

    @property
    def convergence_history(self) -> list[float]:
        return list(self._convergence_history)

    def _run_until_converged(
        self,
        step: Callable[[Any], tuple[Any, float]],
        state: Any,
    ) -> tuple[Any, list[float], bool]:
        """Apply ``step`` until the ELBO settles or a budget runs out.

        ``step`` maps a state to the next state and its ELBO. The history is
        local to this call and is published to :attr:`convergence_history`
        only once the loop ends.

        Returns
        -------
        state : object
            Last state produced by ``step``.
        history : list of float
            ELBO after every iteration.
        converged : bool
            Whether the tolerance was reached.
        """
        history: list[float] = []
        previous = -np.inf
        converged = False
        start = time.perf_counter()

        for iteration in range(1, self.max_iter + 1):
            state, elbo = step(state)
            history.append(elbo)
            change = abs(elbo - previous)
            self._log_iteration(iteration, elbo, change)

            if change < self.tol:
                converged = True
                if self.verbose:
                    print(f"Converged at iteration {iteration}")
                break
            if (
                self.time_limit is not None
                and time.perf_counter() - start > self.time_limit
            ):
                break
            previous = elbo

        if not converged:
            warnings.warn(
                f"ELBO did not converge after {len(history)} iterations "
                f"(last change above tol={self.tol}); returning the last estimates.",
                NonConvergenceWarning,
                stacklevel=3,
            )

        self._convergence_history = history
        return state, list(history), converged

    def _log_iteration(
        self,
        iteration: int,
        elbo: float,
        change: Optional[float] = None,
    ) -> None:
        if self.verbose:
            msg = f"Iteration {iteration:4d}: ELBO = {elbo:.4f}"
            if change is not None and np.isfinite(change):
                msg += f", change = {change:.5f}"
            print(msg)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_iter={self.max_iter}, tol={self.tol})"
