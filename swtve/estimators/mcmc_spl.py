from ..utils.datautils import BASIS_HINGE
from .base import BayesianEffectEstimator


class MCMCSPL(BayesianEffectEstimator):
    """
    Linear spline in exposure time with one knot per exposure level.

    Hinge coefficients get vague Normal priors; the curve is unrestricted.
    Needs a seven-period design.
    """
    family = "MCMC-SPL"
    basis = BASIS_HINGE


class MCMCSPLMON(BayesianEffectEstimator):
    """
    Monotone (non-increasing) linear spline in exposure time.

    Every segment slope is ``-exp(log(10) - e)`` with ``e ~ Exp(1)``, so the
    effect can only move downwards as exposure grows.
    """
    family = "MCMC-SPL-MON"
    basis = BASIS_HINGE
