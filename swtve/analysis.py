import logging
from typing import Any, Dict, Type, Union

import pandas as pd

from .config_models import EstimationConfig, EstimationResult, MethodSpec
from .estimators.base import BaseEffectEstimator
from .estimators.eti import ETI
from .estimators.hh import HH
from .estimators.inla_step import STEPINLA, STEPMONINLA
from .estimators.mcmc_spl import MCMCSPL, MCMCSPLMON
from .estimators.mcmc_step import MCMCSTEPMON, MCMCSTEPMONSTAN
from .estimators.ss import SS

logger = logging.getLogger(__name__)

# One estimator class per model family.
ESTIMATORS: Dict[str, Type[BaseEffectEstimator]] = {
    cls.family: cls
    for cls in (HH, ETI, SS, MCMCSPL, MCMCSPLMON, MCMCSTEPMON, MCMCSTEPMONSTAN, STEPINLA, STEPMONINLA)
}


def run_analysis(
    df: pd.DataFrame,
    data_type: str,
    method: Union[MethodSpec, Dict[str, Any]],
    **config: Any,
) -> EstimationResult:
    """Estimate the ATE and LTE of a stepped-wedge dataset with one model family.

    Parameters
    ----------
    df : pd.DataFrame
        Long-format data, one row per unit and period.
    data_type : str
        ``"normal"`` or ``"binomial"``.
    method : MethodSpec or dict
        Model family, monotonicity strategy and ``effect_reached``; e.g.
        ``{"family": "MCMC-STEP-MON", "enforce": "exp; exp prior"}``.
    **config
        Any other ``EstimationConfig`` field: column names,
        ``n_time_points``, ``n_extra_time_points``, ``mcmc``, ``laplace``,
        ``confidence_level``.

    Returns
    -------
    EstimationResult
        Use ``.as_dict()`` for the plain ``ate_hat``/``se_ate_hat``/
        ``lte_hat``/``se_lte_hat`` mapping.

    Raises
    ------
    SwtveConfigError, UnsupportedEnforcementError
        For an unknown family or strategy, before any data is touched.
    """
    if isinstance(method, dict):
        method = MethodSpec(**method)
    estimation_config = EstimationConfig(df=df, data_type=data_type, method=method, **config)

    estimator_cls = ESTIMATORS[method.family]
    logger.debug("Dispatching %s (enforce=%s, effect_reached=%d).", method.family, method.enforce, method.effect_reached)
    return estimator_cls(estimation_config).fit()
