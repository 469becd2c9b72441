import math
from typing import Dict, Optional

import jax.numpy as jnp
import numpyro
import numpyro.distributions as dist
from numpyro.distributions import constraints

from swtve.exceptions import UnsupportedEnforcementError

# exp(log(10) - e) with e ~ Exp(1) keeps increment magnitudes below 10.
LOG_TEN = math.log(10.0)

# Names of the sample sites every encoder writes into a numpyro trace.
LATENT_SITE = "beta_latent"
INDICATOR_SITE = "beta_zero"
INCREMENT_SITE = "beta_s"


class IncrementEncoder:
    """
    Prior on the treatment increments of a step or spline model.

    An encoder is a numpyro component. Inside a model, ``sample(n_terms)``
    declares the latent sample sites and records the increments as the
    deterministic site ``beta_s``:

    - ``sample_params(n_terms)`` draws the latent vector ``v`` (site
      ``beta_latent``) and, for mixture strategies, the 0/1 indicators ``z``
      (site ``beta_zero``);
    - ``transform(v, z)`` maps them to the increments. It is pure jnp and
      vectorised over leading axes, so it also works on stacked draws.

    Attributes
    ----------
    name : str
        Label used in logs and error messages.
    mixture_weight : float or None
        Prior probability that an increment is exactly zero; None for
        encoders without indicators.
    """
    name = "increment"
    mixture_weight: Optional[float] = None

    @property
    def has_indicators(self) -> bool:
        """True when the encoder samples discrete indicators (needs a Gibbs step)."""
        return self.mixture_weight is not None

    def latent_prior(self, n_terms: int) -> dist.Distribution:
        raise NotImplementedError

    def transform(self, v, z=None):
        raise NotImplementedError

    def sample_params(self, n_terms: int) -> Dict[str, jnp.ndarray]:
        params = {"v": numpyro.sample(LATENT_SITE, self.latent_prior(n_terms))}
        if self.has_indicators:
            params["z"] = numpyro.sample(INDICATOR_SITE, dist.Bernoulli(self.mixture_weight).expand([n_terms]))
        return params

    def sample(self, n_terms: int) -> jnp.ndarray:
        """Declare the increment sites in the current model and return ``beta_s``."""
        params = self.sample_params(n_terms)
        return numpyro.deterministic(INCREMENT_SITE, self.transform(params["v"], params.get("z")))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class VaguePrior(IncrementEncoder):
    """Unconstrained increments with a Normal(0, sd) prior."""
    name = "vague normal"

    def __init__(self, sd: float = 100.0):
        self.sd = sd

    def latent_prior(self, n_terms):
        return dist.Normal(0.0, self.sd).expand([n_terms])

    def transform(self, v, z=None):
        return jnp.asarray(v)


class GammaMagnitudePrior(IncrementEncoder):
    """Increment is minus a Gamma(shape, rate) magnitude ``v``."""
    name = "prior; gamma prior"

    def __init__(self, shape: float = 0.01, rate: float = 0.01):
        self.shape = shape
        self.rate = rate

    def latent_prior(self, n_terms):
        return dist.Gamma(self.shape, self.rate).expand([n_terms])

    def transform(self, v, z=None):
        return -jnp.asarray(v)


class UniformPrior(IncrementEncoder):
    """Increment drawn from Uniform(lower, upper)."""
    name = "prior; unif prior"

    def __init__(self, lower: float = -10.0, upper: float = 0.0):
        self.lower = lower
        self.upper = upper

    def latent_prior(self, n_terms):
        return dist.Uniform(self.lower, self.upper).expand([n_terms])

    def transform(self, v, z=None):
        return jnp.asarray(v)


class ExponentialEncoder(IncrementEncoder):
    """Increment ``-exp(log(10) - e)`` with ``e ~ Exp(1)``."""
    name = "exp; exp prior"

    def latent_prior(self, n_terms):
        return dist.Exponential(1.0).expand([n_terms])

    def transform(self, v, z=None):
        return -jnp.exp(LOG_TEN - jnp.asarray(v))


class SpikeMixtureEncoder(ExponentialEncoder):
    """
    Exponential encoder with a point mass at zero.

    Each increment is exactly zero when its indicator ``z_k`` is 1
    (prior probability ``p``) and ``-exp(log(10) - e_k)`` otherwise, so the
    curve may stay flat between exposure levels.
    """

    def __init__(self, p: float):
        if not 0.0 < p < 1.0:
            raise UnsupportedEnforcementError(f"Mixture weight must lie in (0, 1); got {p}.")
        self.mixture_weight = p
        self.name = f"exp; mix prior {p}"

    def transform(self, v, z=None):
        increments = super().transform(v)
        if z is None:
            return increments
        return jnp.where(jnp.asarray(z) > 0, 0.0, increments)


class LogNormalEncoder(IncrementEncoder):
    """Increment ``-exp(e)`` with ``e ~ Normal(0, sd)``; sd is sqrt(10) by default."""
    name = "exp; N(1,10) prior"

    def __init__(self, sd: float = math.sqrt(10.0)):
        self.sd = sd

    def latent_prior(self, n_terms):
        return dist.Normal(0.0, self.sd).expand([n_terms])

    def transform(self, v, z=None):
        return -jnp.exp(jnp.asarray(v))


class SlopeDifferenceEncoder(ExponentialEncoder):
    """
    Increments of a decreasing linear spline.

    The slope on segment k is ``-exp(log(10) - e_k)``; the hinge coefficients
    are successive slope differences, so every segment of the resulting
    curve slopes downwards.
    """
    name = "monotone spline slopes"

    def transform(self, v, z=None):
        slopes = super().transform(v)
        return jnp.diff(slopes, axis=-1, prepend=jnp.zeros(slopes.shape[:-1] + (1,)))


class BoundedFlatPrior(IncrementEncoder):
    """Improper flat prior on increments in ``(-inf, upper)``."""
    name = "flat, bounded above"

    def __init__(self, upper: float = 0.0):
        self.upper = upper

    def latent_prior(self, n_terms):
        return dist.ImproperUniform(constraints.less_than(self.upper), (), event_shape=(n_terms,))

    def transform(self, v, z=None):
        return jnp.asarray(v)


class IntervalFlatPrior(UniformPrior):
    """Flat prior on increments restricted to ``(lower, upper)``."""
    name = "flat, bounded interval"


def get_increment_encoder(enforce: Optional[str]) -> IncrementEncoder:
    """Return the encoder implementing a named monotonicity strategy.

    Parameters
    ----------
    enforce : str
        One of ``swtve.config_models.ENFORCE_STRATEGIES``.

    Returns
    -------
    IncrementEncoder

    Raises
    ------
    UnsupportedEnforcementError
        If ``enforce`` is None or not a known strategy.
    """
    if enforce == "prior; gamma prior":
        return GammaMagnitudePrior()
    if enforce == "prior; unif prior":
        return UniformPrior()
    if enforce == "exp; exp prior":
        return ExponentialEncoder()
    if enforce in ("exp; mix prior 0.1", "exp; mix prior 0.2", "exp; mix prior 0.4"):
        return SpikeMixtureEncoder(float(enforce.rsplit(" ", 1)[-1]))
    if enforce == "exp; N(1,10) prior":
        return LogNormalEncoder()
    raise UnsupportedEnforcementError(f"Unknown monotonicity strategy: {enforce!r}.")
