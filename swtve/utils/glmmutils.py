import logging
from typing import Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.gam.api import BSplines, GLMGam
from statsmodels.regression.mixed_linear_model import MixedLM

from swtve.config_models import LaplaceConfig, RawFit
from swtve.exceptions import FittingFailedError
from swtve.utils.bayesutils import glmm_definition, posterior_moments
from swtve.utils.datautils import DesignMatrix
from swtve.utils.laplaceutils import run_laplace

logger = logging.getLogger(__name__)

# statsmodels errors that mean the fit itself failed, as opposed to bad input caught earlier.
FIT_ERRORS = (ValueError, TypeError, AttributeError, np.linalg.LinAlgError)


def fit_mixed_model(
    design: DesignMatrix, data_type: str, family: str, laplace: Optional[LaplaceConfig] = None
) -> RawFit:
    """
    Fit ``outcome ~ period effects + treatment columns + (1 | unit)``.

    Normal outcomes are fitted by REML with ``MixedLM``. Binomial outcomes
    use a Laplace approximation to the posterior of the logistic mixed model
    with vague priors (see ``bayesutils.glmm_definition``), and the
    treatment coefficients' posterior mean and covariance stand in for the
    estimate and its sampling covariance.

    Parameters
    ----------
    design : DesignMatrix
        Design with indicator or level treatment columns.
    data_type : str
        ``"normal"`` or ``"binomial"``.
    family : str
        Family name for the fit record and error messages.
    laplace : LaplaceConfig, optional
        Settings of the binomial fit; defaults to ``LaplaceConfig()``.

    Returns
    -------
    RawFit
        Treatment coefficients and their covariance block.

    Raises
    ------
    FittingFailedError
        If statsmodels raises, REML does not converge, or the binomial mode
        search does not converge.
    """
    names = list(design.treatment_columns)

    if data_type == "binomial":
        draws = run_laplace(design, glmm_definition(family, design.basis), data_type, laplace or LaplaceConfig())
        coefficients, covariance = posterior_moments(draws, family)
    else:
        idx = [design.exog.columns.get_loc(name) for name in names]
        try:
            result = MixedLM(design.endog, design.exog, groups=design.groups).fit(reml=True)
        except FIT_ERRORS as e:
            raise FittingFailedError(f"{family}: mixed model fit failed: {e}") from e
        if not result.converged:
            raise FittingFailedError(f"{family}: REML fit of the linear mixed model did not converge.")
        coefficients = np.asarray(result.fe_params)[idx]
        covariance = np.asarray(result.cov_params())[np.ix_(idx, idx)]

    logger.debug("%s: mixed model coefficients %s.", family, dict(zip(names, np.round(coefficients, 4))))
    return RawFit(coefficients=coefficients, covariance=covariance, names=names, family=family)


def _fixed_part(design: DesignMatrix) -> pd.DataFrame:
    """Intercept, period dummies and unit fixed effects."""
    unit_effects = pd.get_dummies(pd.Series(design.groups), prefix="unit", drop_first=True, dtype=float)
    return pd.concat([design.exog[["const"] + design.period_columns], unit_effects], axis=1)


def fit_smoothing_spline(design: DesignMatrix, data_type: str, family: str) -> RawFit:
    """
    Fit a penalized B-spline of exposure time and evaluate it at each exposure level.

    The smooth has ``n_knots`` basis functions (the number of distinct
    exposure values) of degree ``min(3, n_knots - 1)`` with equally spaced
    knots; its penalty weight is chosen by AIC. Period effects and unit fixed
    effects enter linearly. The returned coefficients are
    ``f(l) - f(0)`` at ``design.levels`` and their covariance is the penalized
    coefficient covariance mapped through the same evaluation matrix.

    With only two distinct exposure values the smooth reduces to a single
    unpenalized linear exposure term.

    Raises
    ------
    FittingFailedError
        If statsmodels raises during penalty selection or fitting.
    """
    exposure = design.exposure.astype(float)
    levels = np.asarray(design.levels, dtype=float)
    n_knots = np.unique(exposure).size
    exog = _fixed_part(design)
    k_lin = exog.shape[1]
    glm_family = sm.families.Binomial() if data_type == "binomial" else sm.families.Gaussian()

    try:
        if n_knots < 3:
            exog = exog.assign(exposure=exposure)
            result = sm.GLM(design.endog, exog, family=glm_family).fit()
            evaluation = levels[:, None]
            params = np.asarray(result.params)[k_lin:]
            cov = np.asarray(result.cov_params())[k_lin:, k_lin:]
            logger.debug("%s: %d distinct exposure values, using a linear exposure term.", family, n_knots)
        else:
            degree = min(3, n_knots - 1)
            smoother = BSplines(exposure[:, None], df=[n_knots], degree=[degree], knot_kwds=[{"spacing": "equal"}])
            gam = GLMGam(design.endog, exog=exog, smoother=smoother, family=glm_family)
            # select_penweight reuses the scale settings of a previous fit.
            unpenalized = gam.fit()
            alpha = gam.select_penweight(
                criterion="aic", start_model_params=np.asarray(unpenalized.params), method="minimize"
            )[0]
            logger.debug("%s: selected penalty weight %s.", family, alpha)

            result = GLMGam(design.endog, exog=exog, smoother=smoother, alpha=alpha, family=glm_family).fit()
            params = np.asarray(result.params)[k_lin:]
            cov = np.asarray(result.cov_params())[k_lin:, k_lin:]
            evaluation = smoother.transform(levels[:, None]) - smoother.transform(np.zeros((1, 1)))
    except FIT_ERRORS as e:
        raise FittingFailedError(f"{family}: smoothing spline fit failed: {e}") from e

    theta = evaluation @ params
    sigma = evaluation @ cov @ evaluation.T
    sigma = 0.5 * (sigma + sigma.T)
    names = [f"f({int(level)})" for level in levels]
    return RawFit(coefficients=theta, covariance=sigma, names=names, family=family)
