import logging

import jax.random as jr
import numpy as np
from numpyro.infer import MCMC, NUTS, DiscreteHMCGibbs, init_to_uniform

from swtve.config_models import MCMCConfig
from swtve.utils.bayesutils import ModelDefinition, build_model, model_inputs
from swtve.utils.datautils import DesignMatrix
from swtve.utils.monoutils import INCREMENT_SITE

logger = logging.getLogger(__name__)


def build_kernel(definition: ModelDefinition, data_type: str, n_units: int, config: MCMCConfig):
    """NUTS on the continuous sites, wrapped in a Gibbs step when the encoder has 0/1 indicators."""
    model = build_model(definition, data_type, n_units)
    kernel = NUTS(model, target_accept_prob=config.target_accept_prob, init_strategy=init_to_uniform)
    if definition.encoder.has_indicators:
        kernel = DiscreteHMCGibbs(kernel)
    return kernel


def run_mcmc(design: DesignMatrix, definition: ModelDefinition, data_type: str, config: MCMCConfig) -> np.ndarray:
    """
    Sample the increments of a Bayesian stepped-wedge model.

    Each chain runs ``config.n_adapt`` warm-up iterations, then
    ``config.n_iter`` iterations of which every ``config.thin``-th is kept.
    Chains are pooled.

    Parameters
    ----------
    design : DesignMatrix
        Design with the step or hinge treatment columns.
    definition : ModelDefinition
        Priors, encoder and family of the model.
    data_type : str
        ``"normal"`` or ``"binomial"``.
    config : MCMCConfig
        Sampler settings.

    Returns
    -------
    np.ndarray
        Increment draws of shape ``(config.retained_draws, K)``.
    """
    kernel = build_kernel(definition, data_type, design.n_units, config)
    mcmc = MCMC(
        kernel,
        num_warmup=config.n_adapt,
        num_samples=config.n_iter,
        num_chains=config.n_chains,
        thinning=config.thin,
        chain_method=config.chain_method,
        progress_bar=False,
    )
    logger.debug(
        "%s: %d chain(s) with %s, %d warm-up and %d sampling iterations.",
        definition.family, config.n_chains, type(kernel).__name__, config.n_adapt, config.n_iter,
    )
    mcmc.run(jr.PRNGKey(config.seed), **model_inputs(design))
    return np.asarray(mcmc.get_samples()[INCREMENT_SITE])
