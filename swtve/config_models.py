from typing import List, Optional, Any, Dict, Tuple
import warnings

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field, model_validator

from swtve.exceptions import (
    SwtveConfigError,
    InvalidDatasetError,
    UnsupportedEnforcementError,
    FittingFailedError,
)


# Model families understood by the dispatcher, in the order they were introduced.
FAMILIES: Tuple[str, ...] = (
    "HH",
    "ETI",
    "SS",
    "MCMC-SPL",
    "MCMC-SPL-MON",
    "MCMC-STEP-MON",
    "MCMC-STEP-MON-STAN",
    "STEP-INLA",
    "STEP-MON-INLA",
)

# Monotonicity strategies for the MCMC-STEP-MON family.
ENFORCE_STRATEGIES: Tuple[str, ...] = (
    "prior; gamma prior",
    "prior; unif prior",
    "exp; exp prior",
    "exp; mix prior 0.1",
    "exp; mix prior 0.2",
    "exp; mix prior 0.4",
    "exp; N(1,10) prior",
)

DATA_TYPES: Tuple[str, ...] = ("normal", "binomial")


class MethodSpec(BaseModel):
    """
    Choice of model family and its options.

    Attributes
    ----------
    family : str
        One of ``FAMILIES``.
    enforce : Optional[str]
        Monotonicity strategy, one of ``ENFORCE_STRATEGIES``. Required for
        ``"MCMC-STEP-MON"`` and ignored (with a warning) for every other family.
    effect_reached : int
        Number of exposure periods after which the effect is assumed to be
        flat. ``0`` makes no assumption.
    """
    family: str = Field(..., description="Model family used to estimate the effect curve.")
    enforce: Optional[str] = Field(default=None, description="Monotonicity strategy for MCMC-STEP-MON.")
    effect_reached: int = Field(default=0, ge=0, description="Exposure time after which the effect is flat (0 = no assumption).")

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_family_and_enforce(self) -> "MethodSpec":
        if self.family not in FAMILIES:
            raise SwtveConfigError(
                f"Unknown model family '{self.family}'. Must be one of {list(FAMILIES)}."
            )

        if self.enforce is not None and self.enforce not in ENFORCE_STRATEGIES:
            raise UnsupportedEnforcementError(
                f"Unknown monotonicity strategy '{self.enforce}'. "
                f"Must be one of {list(ENFORCE_STRATEGIES)}."
            )

        if self.family == "MCMC-STEP-MON" and self.enforce is None:
            raise UnsupportedEnforcementError(
                "Family 'MCMC-STEP-MON' requires a monotonicity strategy in 'enforce'."
            )

        if self.family != "MCMC-STEP-MON" and self.enforce is not None:
            warnings.warn(
                f"'enforce' is only used by MCMC-STEP-MON; ignoring '{self.enforce}' for family '{self.family}'.",
                UserWarning,
            )
        return self


class MCMCConfig(BaseModel):
    """Sampler settings threaded into every MCMC fit."""
    n_adapt: int = Field(default=1000, ge=1, description="Number of warm-up (adaptation) iterations per chain.")
    n_iter: int = Field(default=1000, ge=2, description="Number of post-warm-up iterations per chain before thinning.")
    thin: int = Field(default=1, ge=1, description="Thinning interval; every thin-th post-warm-up iteration is kept.")
    n_chains: int = Field(default=1, ge=1, description="Number of independent chains, pooled before summarising.")
    chain_method: str = Field(
        default="sequential",
        pattern="^(sequential|parallel|vectorized)$",
        description="How numpyro runs multiple chains.",
    )
    target_accept_prob: float = Field(default=0.8, gt=0, lt=1, description="Target acceptance rate of NUTS step-size adaptation.")
    seed: int = Field(default=0, ge=0, description="Seed of the PRNG key handed to the sampler.")

    class Config:
        extra = "forbid"

    @property
    def retained_draws(self) -> int:
        """Pooled number of draws the sampler keeps: ``n_iter // thin`` per chain."""
        return self.n_chains * (self.n_iter // self.thin)

    @model_validator(mode="after")
    def check_retained_draws(self) -> "MCMCConfig":
        if self.retained_draws < 2:
            raise SwtveConfigError(
                "At least two retained draws are needed to estimate a posterior covariance; "
                "increase n_iter or n_chains, or lower thin."
            )
        return self


class LaplaceConfig(BaseModel):
    """Settings for the Laplace-approximation fits (STEP-INLA, STEP-MON-INLA, binomial HH and ETI)."""
    max_iter: int = Field(default=1000, ge=1, description="Iteration limit of the BFGS search for the posterior mode.")
    gradient_tolerance: float = Field(
        default=1e-3,
        gt=0,
        description="Largest gradient entry accepted at the mode, relative to max(1, |log density|).",
    )
    num_draws: int = Field(default=2000, ge=2, description="Draws from the Gaussian approximation used for moments.")
    seed: int = Field(default=0, ge=0, description="Seed of the PRNG key for initialisation and draws.")

    class Config:
        extra = "forbid"


class EstimationConfig(BaseModel):
    """
    Configuration for one treatment-effect estimation.

    The DataFrame is long format: one row per unit and period. Column names
    default to the names used by the stepped-wedge simulation code
    (``i``, ``j``, ``x_ij``, ``l``, ``y``).
    """
    df: pd.DataFrame = Field(..., description="Long-format stepped-wedge data.")
    outcome: str = Field(default="y", description="Name of the outcome column.")
    unitid: str = Field(default="i", description="Name of the unit (cluster) identifier column.")
    time: str = Field(default="j", description="Name of the period index column (1-based).")
    treat: str = Field(default="x_ij", description="Name of the 0/1 treatment indicator column.")
    exposure: str = Field(default="l", description="Name of the exposure-time column.")
    data_type: str = Field(default="normal", pattern="^(normal|binomial)$", description="Outcome distribution.")
    method: MethodSpec = Field(..., description="Model family and its options.")
    n_time_points: Optional[int] = Field(
        default=None,
        ge=2,
        description="Nominal number of design periods J. Defaults to max(period) - n_extra_time_points.",
    )
    n_extra_time_points: int = Field(default=0, ge=0, description="Trailing padding periods beyond the design.")
    mcmc: MCMCConfig = Field(default_factory=MCMCConfig)
    laplace: LaplaceConfig = Field(default_factory=LaplaceConfig)
    confidence_level: float = Field(default=0.95, gt=0, lt=1, description="Level of the reported confidence intervals.")

    class Config:
        arbitrary_types_allowed = True
        extra = "forbid"

    @model_validator(mode="after")
    def check_df_and_columns(self) -> "EstimationConfig":
        df = self.df

        if df.empty:
            raise InvalidDatasetError("Input DataFrame 'df' cannot be empty.")

        required_columns = {self.outcome, self.unitid, self.time, self.treat, self.exposure}
        missing_columns = required_columns - set(df.columns)
        if missing_columns:
            raise InvalidDatasetError(
                f"Missing required columns in DataFrame 'df': {', '.join(sorted(missing_columns))}"
            )

        if self.n_time_points is None:
            inferred = int(df[self.time].max()) - self.n_extra_time_points
            if inferred < 2:
                raise InvalidDatasetError(
                    f"Could not infer the number of design periods (got {inferred}); pass n_time_points."
                )
            self.n_time_points = inferred
        return self


# --- Pydantic Models for intermediate fits and results ---

class RawFit(BaseModel):
    """Treatment coefficients of a fitted model in its own basis, with their covariance."""
    coefficients: np.ndarray = Field(..., description="Point estimates, shape (K,).")
    covariance: np.ndarray = Field(..., description="Covariance of the estimates, shape (K, K).")
    names: List[str] = Field(..., description="Labels of the K treatment coefficients.")
    family: str = Field(..., description="Family that produced the fit.")

    model_config = {"arbitrary_types_allowed": True}

    @model_validator(mode="before")
    @classmethod
    def _coerce_arrays(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if data.get("coefficients") is not None:
                data["coefficients"] = np.asarray(data["coefficients"], dtype=float).ravel()
            if data.get("covariance") is not None:
                data["covariance"] = np.atleast_2d(np.asarray(data["covariance"], dtype=float))
        return data

    @model_validator(mode="after")
    def check_shapes(self) -> "RawFit":
        k = self.coefficients.shape[0]
        if k == 0:
            raise FittingFailedError(f"{self.family}: fit returned no treatment coefficients.")
        if self.covariance.shape != (k, k):
            raise FittingFailedError(
                f"{self.family}: covariance shape {self.covariance.shape} does not match {k} coefficients."
            )
        if len(self.names) != k:
            raise FittingFailedError(f"{self.family}: expected {k} coefficient names, got {len(self.names)}.")
        if not (np.all(np.isfinite(self.coefficients)) and np.all(np.isfinite(self.covariance))):
            raise FittingFailedError(f"{self.family}: fit returned non-finite coefficients or covariance.")
        if not np.allclose(self.covariance, self.covariance.T, rtol=1e-6, atol=1e-10):
            raise FittingFailedError(f"{self.family}: covariance matrix is not symmetric.")
        return self


class CumulativeEffectCurve(BaseModel):
    """Per-exposure-level cumulative treatment effect and its covariance."""
    theta: np.ndarray = Field(..., description="Effect at each exposure level, shape (L,).")
    sigma: np.ndarray = Field(..., description="Covariance of theta, shape (L, L).")
    levels: np.ndarray = Field(..., description="Exposure levels the entries of theta refer to.")

    model_config = {"arbitrary_types_allowed": True}

    @model_validator(mode="after")
    def check_shapes(self) -> "CumulativeEffectCurve":
        n_levels = self.theta.shape[0]
        if self.sigma.shape != (n_levels, n_levels) or self.levels.shape[0] != n_levels:
            raise SwtveConfigError(
                f"Inconsistent effect curve: theta {self.theta.shape}, sigma {self.sigma.shape}, "
                f"levels {self.levels.shape}."
            )
        return self


class EstimationResult(BaseModel):
    """
    Average and long-term treatment effect estimates.

    ``ate_hat``/``se_ate_hat`` summarise the whole effect curve,
    ``lte_hat``/``se_lte_hat`` its value at the largest exposure level.
    """
    ate_hat: float
    se_ate_hat: float
    lte_hat: float
    se_lte_hat: float
    ate_ci: Optional[Tuple[float, float]] = Field(default=None, description="Normal-approximation interval for the ATE.")
    lte_ci: Optional[Tuple[float, float]] = Field(default=None, description="Normal-approximation interval for the LTE.")
    confidence_level: Optional[float] = Field(default=None, description="Level of ate_ci and lte_ci.")
    method_name: Optional[str] = Field(default=None, description="Family that produced the estimates.")
    weights: Optional[np.ndarray] = Field(default=None, description="Weighting vector A applied to the curve.")
    effect_curve: Optional[CumulativeEffectCurve] = Field(default=None, description="Curve the estimates were reduced from.")
    parameters_used: Optional[Dict[str, Any]] = Field(default=None, description="Configuration used, without the data.")

    model_config = {"arbitrary_types_allowed": True}

    def as_dict(self) -> Dict[str, float]:
        """Return the four headline estimates as a plain dictionary."""
        return {
            "ate_hat": self.ate_hat,
            "se_ate_hat": self.se_ate_hat,
            "lte_hat": self.lte_hat,
            "se_lte_hat": self.se_lte_hat,
        }
