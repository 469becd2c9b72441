import logging
import math
from typing import Callable, Dict, Optional, Tuple

import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
from numpyro.distributions import constraints
from pydantic import BaseModel, Field

from swtve.config_models import ENFORCE_STRATEGIES
from swtve.exceptions import FittingFailedError, SwtveConfigError, UnsupportedEnforcementError
from swtve.utils.datautils import BASIS_HINGE, BASIS_STEP, DesignMatrix
from swtve.utils.monoutils import (
    BoundedFlatPrior,
    IncrementEncoder,
    IntervalFlatPrior,
    SlopeDifferenceEncoder,
    VaguePrior,
    get_increment_encoder,
)

# Vague Gamma(0.001, 0.001) precisions and the Laplace curvature need double precision.
numpyro.enable_x64()

logger = logging.getLogger(__name__)


class PriorSet(BaseModel):
    """
    Priors on the nuisance part of a hierarchical stepped-wedge model.

    The model is ``y = intercept + period effects + basis @ beta_s + alpha_unit + noise``
    (noise is dropped for binomial data, where the sum is the log-odds).

    Attributes
    ----------
    name : str
        Label used in logs.
    intercept_sd, fixed_sd : float or None
        Normal(0, sd) prior on the intercept and on each period effect;
        None means a flat prior.
    unit_sd : float or None
        Fixed prior sd of the unit intercepts. None makes the unit
        precision a parameter with a Gamma(precision_shape, precision_rate)
        prior.
    precision_shape, precision_rate : float
        Gamma prior on the unit precision and, when ``residual`` is
        ``"gamma_precision"``, on the residual precision.
    residual : str
        ``"gamma_precision"`` or ``"flat_sd"`` (flat prior on the residual sd).
    """
    name: str
    intercept_sd: Optional[float] = Field(default=None, gt=0)
    fixed_sd: Optional[float] = Field(default=None, gt=0)
    unit_sd: Optional[float] = Field(default=None, gt=0)
    precision_shape: float = Field(default=1e-3, gt=0)
    precision_rate: float = Field(default=1e-3, gt=0)
    residual: str = Field(default="gamma_precision", pattern="^(gamma_precision|flat_sd)$")

    model_config = {"frozen": True}

    def coefficient_prior(self, sd: Optional[float], n_terms: Optional[int] = None) -> dist.Distribution:
        """Normal(0, sd) prior, or an improper flat one when ``sd`` is None."""
        event_shape = () if n_terms is None else (n_terms,)
        if sd is None:
            return dist.ImproperUniform(constraints.real, (), event_shape=event_shape)
        prior = dist.Normal(0.0, sd)
        return prior if n_terms is None else prior.expand([n_terms]).to_event(1)


# Normal(0, precision 1e-4) fixed effects, Gamma(0.001, 0.001) precisions.
VAGUE_PRIORS = PriorSet(name="vague", intercept_sd=100.0, fixed_sd=100.0)

# Flat intercept, period effects and residual sd; unit intercepts Normal(0, 100).
FLAT_PRIORS = PriorSet(name="flat", unit_sd=100.0, residual="flat_sd")

# Flat intercept, fixed effects with precision 0.001, Gamma(1, 5e-5) precisions.
LATENT_GAUSSIAN_PRIORS = PriorSet(
    name="latent gaussian defaults",
    fixed_sd=1.0 / math.sqrt(0.001),
    precision_shape=1.0,
    precision_rate=5e-5,
)


class ModelDefinition(BaseModel):
    """Everything that distinguishes one Bayesian model family from another."""
    family: str
    enforce: Optional[str] = None
    basis: str
    priors: PriorSet
    encoder: IncrementEncoder
    engine: str = Field(..., pattern="^(mcmc|laplace)$")

    model_config = {"arbitrary_types_allowed": True, "frozen": True}


def _step_mon_definitions() -> Dict[Tuple[str, Optional[str]], ModelDefinition]:
    return {
        ("MCMC-STEP-MON", enforce): ModelDefinition(
            family="MCMC-STEP-MON",
            enforce=enforce,
            basis=BASIS_STEP,
            priors=VAGUE_PRIORS,
            encoder=get_increment_encoder(enforce),
            engine="mcmc",
        )
        for enforce in ENFORCE_STRATEGIES
    }


MODEL_DEFINITIONS: Dict[Tuple[str, Optional[str]], ModelDefinition] = {
    ("MCMC-SPL", None): ModelDefinition(
        family="MCMC-SPL", basis=BASIS_HINGE, priors=VAGUE_PRIORS, encoder=VaguePrior(100.0), engine="mcmc"
    ),
    ("MCMC-SPL-MON", None): ModelDefinition(
        family="MCMC-SPL-MON", basis=BASIS_HINGE, priors=VAGUE_PRIORS, encoder=SlopeDifferenceEncoder(), engine="mcmc"
    ),
    **_step_mon_definitions(),
    ("MCMC-STEP-MON-STAN", None): ModelDefinition(
        family="MCMC-STEP-MON-STAN", basis=BASIS_STEP, priors=FLAT_PRIORS, encoder=BoundedFlatPrior(0.0), engine="mcmc"
    ),
    ("STEP-INLA", None): ModelDefinition(
        family="STEP-INLA",
        basis=BASIS_STEP,
        priors=LATENT_GAUSSIAN_PRIORS,
        encoder=VaguePrior(1.0 / math.sqrt(0.001)),
        engine="laplace",
    ),
    ("STEP-MON-INLA", None): ModelDefinition(
        family="STEP-MON-INLA",
        basis=BASIS_STEP,
        priors=LATENT_GAUSSIAN_PRIORS,
        encoder=IntervalFlatPrior(-10.0, 0.0),
        engine="laplace",
    ),
}


def get_model_definition(family: str, enforce: Optional[str] = None) -> ModelDefinition:
    """Look up the model definition for a family and, for MCMC-STEP-MON, its strategy.

    ``enforce`` is ignored for every other family.

    Raises
    ------
    UnsupportedEnforcementError
        If MCMC-STEP-MON is requested with a missing or unknown strategy.
    SwtveConfigError
        If the family has no Bayesian model definition.
    """
    key = (family, enforce if family == "MCMC-STEP-MON" else None)
    if key in MODEL_DEFINITIONS:
        return MODEL_DEFINITIONS[key]
    if family == "MCMC-STEP-MON":
        raise UnsupportedEnforcementError(f"Unknown monotonicity strategy for MCMC-STEP-MON: {enforce!r}.")
    raise SwtveConfigError(f"No Bayesian model definition for family '{family}'.")


def glmm_definition(family: str, basis: str) -> ModelDefinition:
    """Latent Gaussian logistic mixed model used for binomial HH and ETI fits."""
    return ModelDefinition(
        family=family,
        basis=basis,
        priors=LATENT_GAUSSIAN_PRIORS,
        encoder=VaguePrior(1.0 / math.sqrt(0.001)),
        engine="laplace",
    )


def model_inputs(design: DesignMatrix) -> Dict[str, jnp.ndarray]:
    """Keyword arguments of the model returned by ``build_model``."""
    return {
        "periods": jnp.asarray(design.exog[design.period_columns].to_numpy(dtype=float)),
        "treatment": jnp.asarray(design.treatment_matrix()),
        "unit": jnp.asarray(design.groups, dtype=int),
        "y": jnp.asarray(design.endog, dtype=float),
    }


def build_model(definition: ModelDefinition, data_type: str, n_units: int) -> Callable:
    """
    numpyro model of a stepped-wedge trial with a unit random intercept.

    The linear predictor is
    ``intercept + periods @ period_effects + treatment @ beta_s + unit_effects[unit]``.
    Normal outcomes add Gaussian noise; binomial outcomes use it as the
    log-odds of a Bernoulli response. Unit intercepts are non-centred
    (``unit_scale * unit_raw`` with ``unit_raw ~ Normal(0, 1)``), which keeps
    the joint posterior mode finite for the Laplace fits.

    Parameters
    ----------
    definition : ModelDefinition
        Priors and increment encoder of the family.
    data_type : str
        ``"normal"`` or ``"binomial"``.
    n_units : int
        Number of units; fixes the shape of the random intercepts.

    Returns
    -------
    callable
        ``model(periods, treatment, unit, y=None)``, see ``model_inputs``.
    """
    priors = definition.priors
    encoder = definition.encoder
    binomial = data_type == "binomial"

    def model(periods, treatment, unit, y=None):
        intercept = numpyro.sample("intercept", priors.coefficient_prior(priors.intercept_sd))
        period_effects = numpyro.sample("period_effects", priors.coefficient_prior(priors.fixed_sd, periods.shape[1]))

        if priors.unit_sd is None:
            unit_precision = numpyro.sample("unit_precision", dist.Gamma(priors.precision_shape, priors.precision_rate))
            unit_scale = 1.0 / jnp.sqrt(unit_precision)
        else:
            unit_scale = priors.unit_sd
        unit_raw = numpyro.sample("unit_raw", dist.Normal(0.0, 1.0).expand([n_units]).to_event(1))
        unit_effects = numpyro.deterministic("unit_effects", unit_scale * unit_raw)

        beta_s = encoder.sample(treatment.shape[1])
        eta = intercept + periods @ period_effects + treatment @ beta_s + unit_effects[unit]

        if binomial:
            with numpyro.plate("obs", eta.shape[0]):
                numpyro.sample("y", dist.Bernoulli(logits=eta), obs=y)
            return

        if priors.residual == "flat_sd":
            sigma = numpyro.sample("residual_sd", dist.ImproperUniform(constraints.positive, (), ()))
        else:
            residual_precision = numpyro.sample(
                "residual_precision", dist.Gamma(priors.precision_shape, priors.precision_rate)
            )
            sigma = 1.0 / jnp.sqrt(residual_precision)
        with numpyro.plate("obs", eta.shape[0]):
            numpyro.sample("y", dist.Normal(eta, sigma), obs=y)

    return model


def posterior_moments(draws: np.ndarray, family: str = "") -> Tuple[np.ndarray, np.ndarray]:
    """Mean and covariance of pooled posterior draws.

    Parameters
    ----------
    draws : np.ndarray
        Array of shape (n_draws, K), chains already concatenated.
    family : str
        Used in error messages.

    Returns
    -------
    mean : np.ndarray
        Shape (K,).
    covariance : np.ndarray
        Shape (K, K), computed with ``n_draws - 1`` in the denominator.

    Raises
    ------
    FittingFailedError
        If there are fewer than two draws or any draw is not finite.
    """
    draws = np.asarray(draws, dtype=float)
    if draws.ndim == 1:
        draws = draws[:, None]
    if draws.shape[0] < 2:
        raise FittingFailedError(f"{family}: need at least two posterior draws, got {draws.shape[0]}.")
    if not np.all(np.isfinite(draws)):
        raise FittingFailedError(f"{family}: posterior draws contain non-finite values.")

    mean = draws.mean(axis=0)
    covariance = np.atleast_2d(np.cov(draws, rowvar=False))
    logger.debug("%s: posterior moments from %d draws of %d increments.", family, draws.shape[0], draws.shape[1])
    return mean, covariance
