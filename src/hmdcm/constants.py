"""Constants for numerical stability and default hyperparameters.

These are true constants that should not be user-configurable.
For configurable values, use function arguments with defaults.
"""

HYPERPRIOR_OFFSET: float = 1e-4
"""Offset keeping the weakest Beta hyperparameter strictly above 1."""

MASTERY_THRESHOLD: float = 0.5
"""Marginal mastery probability above which an attribute is scored as mastered."""

DEFAULT_DELTA: float = 1.0
"""Default Dirichlet pseudo-count for the initial class distribution."""

DEFAULT_OMEGA: float = 1.0
"""Default Dirichlet pseudo-count for each allowed transition."""
