import logging

import jax
import jax.random as jr
import numpy as np
from numpyro.infer import SVI, Predictive, Trace_ELBO, init_to_uniform
from numpyro.infer.autoguide import AutoLaplaceApproximation
from numpyro.optim import Minimize

from swtve.config_models import LaplaceConfig
from swtve.exceptions import FittingFailedError
from swtve.utils.bayesutils import ModelDefinition, build_model, model_inputs
from swtve.utils.datautils import DesignMatrix
from swtve.utils.monoutils import INCREMENT_SITE

logger = logging.getLogger(__name__)


def check_mode(family: str, loss: float, gradient: np.ndarray, precision: np.ndarray, tolerance: float) -> None:
    """
    Reject a posterior mode search that did not end at a proper mode.

    Parameters
    ----------
    family : str
        Used in error messages.
    loss : float
        Negative log density at the end of the search.
    gradient : np.ndarray
        Its gradient on the unconstrained scale.
    precision : np.ndarray
        Its Hessian, the precision of the Gaussian approximation.
    tolerance : float
        Largest accepted gradient entry relative to ``max(1, |loss|)``.

    Raises
    ------
    FittingFailedError
        If the loss or gradient is not finite, the gradient is not
        (relatively) zero, or the Hessian is not positive definite.
    """
    gradient = np.asarray(gradient, dtype=float)
    precision = np.asarray(precision, dtype=float)
    if not np.isfinite(loss) or not np.all(np.isfinite(gradient)):
        raise FittingFailedError(f"{family}: posterior mode search produced a non-finite log density.")

    largest = float(np.max(np.abs(gradient))) if gradient.size else 0.0
    if largest > tolerance * max(1.0, abs(loss)):
        raise FittingFailedError(
            f"{family}: posterior mode search did not converge (largest gradient entry {largest:.3g})."
        )

    if not np.all(np.isfinite(precision)) or np.linalg.eigvalsh(0.5 * (precision + precision.T)).min() <= 0:
        raise FittingFailedError(f"{family}: Hessian at the posterior mode is not positive definite.")


def run_laplace(design: DesignMatrix, definition: ModelDefinition, data_type: str, config: LaplaceConfig) -> np.ndarray:
    """
    Draw the increments from a Laplace approximation to the posterior.

    The posterior mode is found with BFGS on the unconstrained scale and
    the Gaussian approximation uses the exact Hessian there. Bounded
    increments are drawn on the unconstrained scale and mapped back, so
    their draws respect the bounds.

    Parameters
    ----------
    design : DesignMatrix
        Design with the treatment columns of the family.
    definition : ModelDefinition
        Priors and encoder; ``definition.engine`` is ``"laplace"``.
    data_type : str
        ``"normal"`` or ``"binomial"``.
    config : LaplaceConfig
        Optimiser limit, convergence tolerance, number of draws and seed.

    Returns
    -------
    np.ndarray
        Increment draws of shape ``(config.num_draws, K)``.

    Raises
    ------
    FittingFailedError
        If the mode search does not converge (see ``check_mode``).
    """
    model = build_model(definition, data_type, design.n_units)
    inputs = model_inputs(design)
    guide = AutoLaplaceApproximation(model, init_loc_fn=init_to_uniform)
    elbo = Trace_ELBO()
    svi = SVI(model, guide, Minimize(method="BFGS", options={"maxiter": config.max_iter}), loss=elbo)

    fit_key, draw_key, predict_key = jr.split(jr.PRNGKey(config.seed), 3)
    svi_result = svi.run(fit_key, 1, progress_bar=False, **inputs)
    params = svi_result.params
    loc_name = f"{guide.prefix}_loc"

    # The guide is a point mass during the search, so the ELBO is the negative log density.
    def negative_log_density(loc):
        return elbo.loss(fit_key, {**params, loc_name: loc}, model, guide, **inputs)

    loss, gradient = jax.value_and_grad(negative_log_density)(params[loc_name])
    precision = jax.hessian(negative_log_density)(params[loc_name])
    check_mode(definition.family, float(loss), np.asarray(gradient), np.asarray(precision), config.gradient_tolerance)
    logger.debug("%s: posterior mode found, negative log density %.4f.", definition.family, float(loss))

    latent = guide.sample_posterior(draw_key, params, sample_shape=(config.num_draws,))
    predictive = Predictive(model, posterior_samples=latent, return_sites=[INCREMENT_SITE])
    return np.asarray(predictive(predict_key, **inputs)[INCREMENT_SITE])
