from ..utils.datautils import BASIS_STEP
from .base import BayesianEffectEstimator


class MCMCSTEPMON(BayesianEffectEstimator):
    """
    Monotone step function in exposure time.

    Each exposure level adds a non-positive increment; ``method.enforce``
    selects how the sign constraint is imposed (see
    ``swtve.utils.monoutils.get_increment_encoder``).
    """
    family = "MCMC-STEP-MON"
    basis = BASIS_STEP


class MCMCSTEPMONSTAN(BayesianEffectEstimator):
    """Monotone step function with flat priors and increments bounded above by zero."""
    family = "MCMC-STEP-MON-STAN"
    basis = BASIS_STEP
