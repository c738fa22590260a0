"""Hidden Markov diagnostic classification model."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from hmdcm.models.constraints import TestFormDesign, nondecreasing_mask
from hmdcm.models.groups import (
    ItemGroups,
    build_occasion_groups,
    resolve_measurement_model,
)
from hmdcm.models.patterns import attribute_patterns, pattern_labels
from hmdcm.typing import ItemParameterList
from hmdcm.utils.data import validate_q_matrices


class HiddenMarkovDCM:
    """Hidden Markov DCM over T occasions and K binary attributes.

    Each respondent occupies one of L = 2^K attribute patterns at every
    occasion. The pattern at the first occasion is drawn from ``pi`` and
    evolves by the L x L transition matrix ``tau``. Given its pattern, a
    respondent answers item j of occasion t correctly with probability
    ``theta[t][j][h]``, where h is the response group the item assigns to
    that pattern.

    Parameters
    ----------
    q_matrices : sequence of NDArray or NDArray
        One (n_items_t, n_attributes) Q-matrix per occasion (or per test
        form when a ``test_design`` is given).
    measurement_model : {'general', 'conjunctive'}
        Rule mapping patterns to response groups. 'dina' is accepted as an
        alias of 'conjunctive'.
    nondecreasing : bool
        Forbid transitions that lose a mastered attribute.
    test_design : TestFormDesign, optional
        Randomized test-form administration.
    attribute_names : list of str, optional
        Names for attributes.
    """

    model_name = "HM-DCM"

    def __init__(
        self,
        q_matrices: Sequence[NDArray[np.int_]] | NDArray[np.int_],
        measurement_model: str = "general",
        nondecreasing: bool = False,
        test_design: TestFormDesign | None = None,
        attribute_names: list[str] | None = None,
    ) -> None:
        self._q_matrices = validate_q_matrices(q_matrices)
        self.measurement_model = resolve_measurement_model(measurement_model)
        self.nondecreasing = bool(nondecreasing)
        self.test_design = test_design

        if test_design is not None and test_design.n_occasions != self.n_occasions:
            raise ValueError(
                f"test_order has {test_design.n_occasions} occasions, "
                f"expected {self.n_occasions}"
            )

        if attribute_names is None:
            attribute_names = [f"A{k}" for k in range(self.n_attributes)]
        elif len(attribute_names) != self.n_attributes:
            raise ValueError(
                f"attribute_names length ({len(attribute_names)}) "
                f"must match n_attributes ({self.n_attributes})"
            )
        self.attribute_names = list(attribute_names)

        self._patterns = attribute_patterns(self.n_attributes)
        self._item_groups = build_occasion_groups(
            self._q_matrices, self._patterns, self.measurement_model
        )
        if self.nondecreasing:
            self._transition_mask = nondecreasing_mask(self._patterns)
        else:
            self._transition_mask = np.ones((self.n_classes, self.n_classes), bool)

        self._theta: ItemParameterList | None = None
        self._parameters: dict[str, NDArray[np.float64]] = {}
        self._is_fitted = False

    @property
    def q_matrices(self) -> list[NDArray[np.int_]]:
        return [q.copy() for q in self._q_matrices]

    @property
    def n_attributes(self) -> int:
        return self._q_matrices[0].shape[1]

    @property
    def n_occasions(self) -> int:
        return len(self._q_matrices)

    @property
    def n_classes(self) -> int:
        return 2**self.n_attributes

    @property
    def n_items(self) -> list[int]:
        """Number of items at each occasion."""
        return [q.shape[0] for q in self._q_matrices]

    @property
    def patterns(self) -> NDArray[np.int_]:
        """Attribute pattern of each latent class, (n_classes, n_attributes)."""
        return self._patterns.copy()

    @property
    def pattern_labels(self) -> list[str]:
        return pattern_labels(self._patterns)

    @property
    def item_groups(self) -> list[list[ItemGroups]]:
        return self._item_groups

    @property
    def group_matrices(self) -> list[list[NDArray[np.int_]]]:
        """Group matrix G of every item, indexed ``[occasion][item]``."""
        return [[g.matrix for g in groups_t] for groups_t in self._item_groups]

    @property
    def transition_mask(self) -> NDArray[np.bool_]:
        """Allowed transitions; all True unless ``nondecreasing``."""
        return self._transition_mask.copy()

    @property
    def is_fitted(self) -> bool:
        return self._is_fitted

    @property
    def n_parameters(self) -> int:
        n_theta = sum(g.n_groups for groups_t in self._item_groups for g in groups_t)
        n_pi = self.n_classes - 1
        n_tau = int(np.sum(self._transition_mask.sum(axis=1) - 1))
        return n_theta + n_pi + n_tau

    @property
    def theta(self) -> ItemParameterList:
        """Correct-response probability per group, ``[occasion][item]``."""
        self._check_fitted()
        return [[th.copy() for th in theta_t] for theta_t in self._theta]

    @property
    def pi(self) -> NDArray[np.float64]:
        self._check_fitted()
        return self._parameters["pi"].copy()

    @property
    def tau(self) -> NDArray[np.float64]:
        self._check_fitted()
        return self._parameters["tau"].copy()

    def set_parameters(
        self,
        theta: ItemParameterList,
        pi: NDArray[np.float64],
        tau: NDArray[np.float64],
    ) -> HiddenMarkovDCM:
        """Set point estimates of all parameters and mark the model fitted."""
        if len(theta) != self.n_occasions:
            raise ValueError(
                f"theta has {len(theta)} occasions, expected {self.n_occasions}"
            )
        for t, (theta_t, groups_t) in enumerate(zip(theta, self._item_groups)):
            if len(theta_t) != len(groups_t):
                raise ValueError(
                    f"theta for occasion {t} has {len(theta_t)} items, "
                    f"expected {len(groups_t)}"
                )
            for j, (th, g) in enumerate(zip(theta_t, groups_t)):
                if len(th) != g.n_groups:
                    raise ValueError(
                        f"theta[{t}][{j}] has {len(th)} groups, expected {g.n_groups}"
                    )

        pi = np.asarray(pi, dtype=np.float64)
        tau = np.asarray(tau, dtype=np.float64)
        if pi.shape != (self.n_classes,):
            raise ValueError(f"pi must have shape ({self.n_classes},)")
        if tau.shape != (self.n_classes, self.n_classes):
            raise ValueError(
                f"tau must have shape ({self.n_classes}, {self.n_classes})"
            )

        self._theta = [[np.asarray(th, dtype=np.float64) for th in t] for t in theta]
        self._parameters = {"pi": pi, "tau": tau}
        self._is_fitted = True
        return self

    def probability(self, occasion: int) -> NDArray[np.float64]:
        """Correct-response probability of every class on every item.

        Parameters
        ----------
        occasion : int
            Occasion (or test form) index.

        Returns
        -------
        NDArray
            Probabilities of shape (n_classes, n_items_t).
        """
        self._check_fitted()
        return np.column_stack(
            [
                th[g.class_groups]
                for th, g in zip(self._theta[occasion], self._item_groups[occasion])
            ]
        )

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise RuntimeError("Model has not been fitted")

    def __repr__(self) -> str:
        status = "fitted" if self._is_fitted else "not fitted"
        return (
            f"{self.__class__.__name__}("
            f"n_occasions={self.n_occasions}, "
            f"n_attributes={self.n_attributes}, "
            f"measurement_model='{self.measurement_model}', "
            f"nondecreasing={self.nondecreasing}, "
            f"{status})"
        )
