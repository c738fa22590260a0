"""Exceptions and warnings raised while fitting hidden Markov DCMs."""


class HMDCMError(Exception):
    """Base class for errors raised by hmdcm."""


class ConfigurationError(HMDCMError, ValueError):
    """Invalid model configuration, detected before any iteration runs.

    Raised for an unsupported measurement rule, a randomized test-form
    design without version/order tables, or hyperparameters that are not
    strictly positive.
    """


class NumericalDegeneracyError(HMDCMError, FloatingPointError):
    """A forward or backward normalizing sum was zero or non-finite."""


class NonConvergenceWarning(UserWarning):
    """The ELBO did not stabilize within the iteration or time budget."""
