import logging
from typing import Any, Dict, Union

import numpy as np
import pandas as pd
import pydantic

from ..config_models import EstimationConfig, EstimationResult, RawFit
from ..exceptions import FittingFailedError, SwtveConfigError, SwtveError
from ..utils.basisutils import apply_basis_transform, basis_transform_matrix
from ..utils.bayesutils import get_model_definition, posterior_moments
from ..utils.datautils import DesignMatrix, build_design, recode_exposure_time, validate_stepped_wedge_data
from ..utils.inferutils import aggregate
from ..utils.laplaceutils import run_laplace
from ..utils.mcmcutils import run_mcmc

logger = logging.getLogger(__name__)


class BaseEffectEstimator:
    """
    Common pipeline of every model family.

    ``fit()`` validates the data, recodes exposure time, builds the family's
    design, calls the family's fitting routine (``_fit_raw``), maps the fit
    onto the cumulative effect curve and aggregates it into the ATE and LTE.
    Subclasses set ``family`` and ``basis`` and implement ``_fit_raw``.

    Parameters
    ----------
    config : EstimationConfig or dict
        Estimation settings. A dict is validated into an ``EstimationConfig``.
    """
    family: str = ""
    basis: str = ""

    def __init__(self, config: Union[EstimationConfig, Dict[str, Any]]) -> None:
        if isinstance(config, dict):
            config = EstimationConfig(**config)  # convert dict to config object
        if config.method.family != self.family:
            raise SwtveConfigError(
                f"{type(self).__name__} fits family '{self.family}', but the configuration asks for "
                f"'{config.method.family}'."
            )
        self.config = config
        self.df: pd.DataFrame = config.df
        self.data_type: str = config.data_type
        self.method = config.method
        self.effect_reached: int = config.method.effect_reached
        self.n_time_points: int = config.n_time_points
        self.n_extra_time_points: int = config.n_extra_time_points

    def _fit_raw(self, design: DesignMatrix) -> RawFit:
        raise NotImplementedError

    def prepare_design(self) -> DesignMatrix:
        """Validate, recode and build the design matrix for this family."""
        cfg = self.config
        data = validate_stepped_wedge_data(
            self.df, cfg.outcome, cfg.unitid, cfg.time, cfg.treat, cfg.exposure, data_type=self.data_type
        )
        recoded = recode_exposure_time(
            data,
            n_time_points=self.n_time_points,
            n_extra_time_points=self.n_extra_time_points,
            effect_reached=self.effect_reached,
            time=cfg.time,
            exposure=cfg.exposure,
        )
        return build_design(
            recoded,
            basis=self.basis,
            n_time_points=self.n_time_points,
            effect_reached=self.effect_reached,
            outcome=cfg.outcome,
            unitid=cfg.unitid,
            time=cfg.time,
            treat=cfg.treat,
            exposure=cfg.exposure,
        )

    def fit(self) -> EstimationResult:
        """
        Estimate the average and long-term treatment effects.

        Returns
        -------
        EstimationResult
            ``ate_hat``, ``se_ate_hat``, ``lte_hat`` and ``se_lte_hat``, plus
            normal-approximation intervals, the weighting vector and the
            cumulative effect curve they were computed from.

        Raises
        ------
        InvalidDatasetError, UnsupportedDesignError, UnsupportedEnforcementError
            For data or configuration the family cannot handle.
        FittingFailedError
            If the fitting routine errors or does not converge.
        NonPositiveVarianceError
            If a propagated variance is not positive.
        """
        try:
            design = self.prepare_design()
            raw_fit = self._fit_raw(design)

            matrix = basis_transform_matrix(
                design.basis,
                n_levels=len(design.levels),
                n_terms=raw_fit.coefficients.shape[0],
                effect_reached=self.effect_reached,
            )
            curve = apply_basis_transform(raw_fit, matrix, design.levels)
            results = aggregate(
                curve,
                n_time_points=self.n_time_points,
                effect_reached=self.effect_reached,
                family=self.family,
                confidence_level=self.config.confidence_level,
            )
        except SwtveError:  # Data, design and fitting errors are already typed.
            raise
        except pydantic.ValidationError as e_val:
            raise FittingFailedError(f"{self.family}: invalid fit output: {e_val}") from e_val
        except np.linalg.LinAlgError as e_linalg:
            raise FittingFailedError(f"{self.family}: linear algebra error: {e_linalg}") from e_linalg
        except (ValueError, FloatingPointError, OverflowError) as e_num:
            raise FittingFailedError(f"{self.family}: numerical error during fitting: {e_num}") from e_num

        results.parameters_used = self.config.model_dump(exclude={"df"})
        logger.info(
            "%s: ATE %.4f (SE %.4f), LTE %.4f (SE %.4f).",
            self.family, results.ate_hat, results.se_ate_hat, results.lte_hat, results.se_lte_hat,
        )
        return results


class BayesianEffectEstimator(BaseEffectEstimator):
    """Families whose increments come from posterior draws (MCMC or Laplace)."""

    def _fit_raw(self, design: DesignMatrix) -> RawFit:
        definition = get_model_definition(self.family, self.method.enforce)
        if definition.engine == "laplace":
            draws = run_laplace(design, definition, self.data_type, self.config.laplace)
        else:
            draws = run_mcmc(design, definition, self.data_type, self.config.mcmc)

        mean, covariance = posterior_moments(draws, self.family)
        return RawFit(
            coefficients=mean,
            covariance=covariance,
            names=list(design.treatment_columns),
            family=self.family,
        )
