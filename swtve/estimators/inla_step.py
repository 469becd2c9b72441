from ..utils.datautils import BASIS_STEP
from .base import BayesianEffectEstimator


class STEPINLA(BayesianEffectEstimator):
    """Step function in exposure time fitted by a Laplace approximation."""
    family = "STEP-INLA"
    basis = BASIS_STEP


class STEPMONINLA(BayesianEffectEstimator):
    """
    Step function with increments restricted to [-10, 0], fitted by a Laplace approximation.

    The approximation is Gaussian on the logit scale of the increments; the
    moments of the increments come from draws pushed through the bounded
    transform.
    """
    family = "STEP-MON-INLA"
    basis = BASIS_STEP
