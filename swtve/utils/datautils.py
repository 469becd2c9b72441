import logging
from typing import List

import numpy as np
import pandas as pd
from pydantic import BaseModel

from swtve.exceptions import InvalidDatasetError, UnsupportedDesignError

logger = logging.getLogger(__name__)

# Treatment bases a model family can ask for.
BASIS_INDICATOR = "indicator"  # single treated/untreated indicator (HH)
BASIS_LEVELS = "levels"  # one indicator per exposure level (ETI)
BASIS_SMOOTH = "smooth"  # smooth term built by the GAM routine (SS)
BASIS_HINGE = "hinge"  # linear-spline increments (MCMC-SPL*)
BASIS_STEP = "step"  # step increments (MCMC-STEP*, STEP-*INLA)

BASES = (BASIS_INDICATOR, BASIS_LEVELS, BASIS_SMOOTH, BASIS_HINGE, BASIS_STEP)
FIXED_WIDTH_BASES = (BASIS_HINGE, BASIS_STEP)

# The hinge and step bases are hard-wired to a seven-period design: six
# post-baseline exposure levels, one increment per level.
FIXED_WIDTH_TIME_POINTS = 7
N_BASIS_TERMS = FIXED_WIDTH_TIME_POINTS - 1


class DesignMatrix(BaseModel):
    """
    Everything a fitting routine needs for one model.

    Attributes
    ----------
    endog : np.ndarray
        Outcome vector, shape (N,).
    exog : pd.DataFrame
        Fixed-effect design: ``const``, one ``period_<p>`` dummy per period
        except the first, then the treatment columns. Shape (N, P).
    groups : np.ndarray
        Zero-based unit codes, shape (N,).
    n_units : int
        Number of distinct units.
    treatment_columns : List[str]
        Names of the treatment columns of ``exog`` (empty for the smooth basis).
    period_columns : List[str]
        Names of the period dummy columns of ``exog``.
    exposure : np.ndarray
        Recoded exposure time per row, shape (N,).
    levels : np.ndarray
        Exposure levels at which the cumulative effect curve is reported.
    basis : str
        One of ``BASES``.
    """
    endog: np.ndarray
    exog: pd.DataFrame
    groups: np.ndarray
    n_units: int
    treatment_columns: List[str]
    period_columns: List[str]
    exposure: np.ndarray
    levels: np.ndarray
    basis: str

    model_config = {"arbitrary_types_allowed": True}

    def treatment_matrix(self) -> np.ndarray:
        """Treatment columns as a float array of shape (N, K)."""
        return self.exog[self.treatment_columns].to_numpy(dtype=float)

    def period_matrix(self) -> np.ndarray:
        """Period dummies as a float array of shape (N, P-1)."""
        return self.exog[self.period_columns].to_numpy(dtype=float)


def validate_stepped_wedge_data(
    df: pd.DataFrame,
    outcome: str,
    unitid: str,
    time: str,
    treat: str,
    exposure: str,
    data_type: str = "normal",
) -> pd.DataFrame:
    """Check a long-format stepped-wedge dataset and return a cleaned copy.

    Missing exposure on untreated rows is read as 0 and exposure is cast to
    integers. The input DataFrame is left untouched.

    Parameters
    ----------
    df : pd.DataFrame
        One row per (unit, period).
    outcome, unitid, time, treat, exposure : str
        Column names.
    data_type : str, default "normal"
        ``"binomial"`` additionally requires a 0/1 outcome.

    Returns
    -------
    pd.DataFrame
        Copy of ``df`` sorted by unit and period.

    Raises
    ------
    InvalidDatasetError
        If a column is missing, a required value is missing, the treatment
        indicator is not binary, exposure is negative, non-integer, missing
        for a treated row or decreasing within a unit, periods are not
        positive, or a (unit, period) pair occurs twice.
    """
    required_columns = [outcome, unitid, time, treat, exposure]
    missing_columns = set(required_columns) - set(df.columns)
    if missing_columns:
        raise InvalidDatasetError(
            f"Missing required columns in DataFrame: {', '.join(sorted(missing_columns))}"
        )

    data = df[required_columns].copy()

    # Exposure may be left empty before treatment starts; every other column must be complete.
    missing_info = {
        col: int(data[col].isna().sum())
        for col in (outcome, unitid, time, treat)
        if data[col].isna().any()
    }
    if missing_info:
        details = ", ".join(f"{col}: {count}" for col, count in missing_info.items())
        raise InvalidDatasetError(f"Missing values detected in required columns -> {details}.")

    if not data[treat].isin([0, 1]).all():
        raise InvalidDatasetError(f"Treatment indicator '{treat}' must be 0 or 1.")

    if data_type == "binomial" and not data[outcome].isin([0, 1]).all():
        raise InvalidDatasetError(f"Outcome '{outcome}' must be 0 or 1 for binomial data.")

    if (data[time] < 1).any() or not np.all(np.mod(data[time], 1) == 0):
        raise InvalidDatasetError(f"Period column '{time}' must hold positive integers.")

    duplicate_count = int(data.duplicated(subset=[unitid, time]).sum())
    if duplicate_count > 0:
        raise InvalidDatasetError(
            f"Duplicate ({unitid}, {time}) pairs found: {duplicate_count}. "
            "Each unit may be observed at most once per period."
        )

    untreated = data[treat] == 0
    if data.loc[~untreated, exposure].isna().any():
        raise InvalidDatasetError(f"Exposure time '{exposure}' is missing for treated observations.")
    data[exposure] = data[exposure].where(~(untreated & data[exposure].isna()), 0)

    if (data[exposure] < 0).any():
        raise InvalidDatasetError(f"Exposure time '{exposure}' must be non-negative.")
    untreated_exposed = int((untreated & (data[exposure] > 0)).sum())
    if untreated_exposed > 0:
        raise InvalidDatasetError(
            f"Exposure time '{exposure}' must be 0 for untreated observations; "
            f"{untreated_exposed} untreated row(s) have positive exposure."
        )
    if not np.all(np.mod(data[exposure], 1) == 0):
        raise InvalidDatasetError(f"Exposure time '{exposure}' must be integer-valued.")
    data[exposure] = data[exposure].astype(int)
    data[time] = data[time].astype(int)

    data = data.sort_values([unitid, time]).reset_index(drop=True)

    # Once a unit is treated its exposure can only grow.
    treated_rows = data[data[treat] == 1]
    exposure_steps = treated_rows.groupby(unitid)[exposure].diff().dropna()
    if (exposure_steps < 0).any():
        raise InvalidDatasetError(
            f"Exposure time '{exposure}' decreases within a unit after treatment starts."
        )

    return data


def recode_exposure_time(
    df: pd.DataFrame,
    n_time_points: int,
    n_extra_time_points: int = 0,
    effect_reached: int = 0,
    time: str = "j",
    exposure: str = "l",
) -> pd.DataFrame:
    """Clip exposure time for padding periods and for an assumed effect horizon.

    Two rules are applied in order:

    1. If ``n_extra_time_points > 0``, rows observed after the nominal last
       period (``time > n_time_points``) get exposure ``n_time_points - 1``.
    2. If ``effect_reached > 0``, exposure above ``effect_reached`` is set to
       ``effect_reached``.

    Applying the function twice gives the same result as applying it once.

    Parameters
    ----------
    df : pd.DataFrame
        Long-format data. Not modified.
    n_time_points : int
        Nominal number of design periods J.
    n_extra_time_points : int, default 0
        Number of trailing padding periods.
    effect_reached : int, default 0
        Exposure time after which the effect is assumed flat; 0 disables
        the second rule.
    time, exposure : str
        Column names.

    Returns
    -------
    pd.DataFrame
        Recoded copy of ``df``.

    Raises
    ------
    InvalidDatasetError
        If ``time`` or ``exposure`` is not a column of ``df``.
    """
    missing_columns = {time, exposure} - set(df.columns)
    if missing_columns:
        raise InvalidDatasetError(
            f"Missing required columns in DataFrame: {', '.join(sorted(missing_columns))}"
        )

    recoded = df.copy()

    if n_extra_time_points > 0:
        padding_rows = recoded[time] > n_time_points
        recoded.loc[padding_rows, exposure] = n_time_points - 1
        logger.debug("Capped exposure at %d for %d padding rows.", n_time_points - 1, int(padding_rows.sum()))

    if effect_reached > 0:
        saturated_rows = recoded[exposure] > effect_reached
        recoded.loc[saturated_rows, exposure] = effect_reached
        logger.debug("Capped exposure at %d for %d rows.", effect_reached, int(saturated_rows.sum()))

    return recoded


def _basis_terms(exposure_values: np.ndarray, basis: str, n_terms: int) -> pd.DataFrame:
    """Hinge or step columns evaluated at the given exposure times."""
    knots = np.arange(1, n_terms + 1)
    exposure_col = exposure_values.astype(float)[:, None]
    if basis == BASIS_HINGE:
        values = np.maximum(0.0, exposure_col - (knots[None, :] - 1))
        prefix = "spl"
    else:
        values = (exposure_col >= knots[None, :]).astype(float)
        prefix = "step"
    return pd.DataFrame(values, columns=[f"{prefix}_{k}" for k in knots])


def build_design(
    df: pd.DataFrame,
    basis: str,
    n_time_points: int,
    effect_reached: int = 0,
    outcome: str = "y",
    unitid: str = "i",
    time: str = "j",
    treat: str = "x_ij",
    exposure: str = "l",
) -> DesignMatrix:
    """Build the fixed-effect design and treatment basis for one model family.

    Parameters
    ----------
    df : pd.DataFrame
        Validated and recoded long-format data.
    basis : str
        One of ``BASES``.
    n_time_points : int
        Nominal number of design periods J.
    effect_reached : int, default 0
        Effect horizon used for recoding. For the hinge and step bases only
        the first ``effect_reached`` increments are identifiable, so only
        those columns are emitted.
    outcome, unitid, time, treat, exposure : str
        Column names.

    Returns
    -------
    DesignMatrix

    Raises
    ------
    UnsupportedDesignError
        If a hinge or step basis is requested for a design with J other than
        seven periods, or exposure exceeds the six basis terms.
    InvalidDatasetError
        If the level or smooth basis is requested without any unexposed
        (reference) observations or without any exposed ones.
    """
    if basis not in BASES:
        raise UnsupportedDesignError(f"Unknown treatment basis '{basis}'. Must be one of {list(BASES)}.")

    if basis in FIXED_WIDTH_BASES and n_time_points != FIXED_WIDTH_TIME_POINTS:
        raise UnsupportedDesignError(
            f"The {basis} basis has {N_BASIS_TERMS} fixed terms and needs exactly "
            f"{FIXED_WIDTH_TIME_POINTS} design periods; got J={n_time_points}."
        )

    data = df.sort_values([unitid, time]).reset_index(drop=True)
    exposure_values = data[exposure].to_numpy(dtype=int)
    observed_levels = np.unique(exposure_values)

    period_dummies = pd.get_dummies(data[time], prefix="period", prefix_sep="_", drop_first=True, dtype=float)
    exog = pd.concat([pd.DataFrame({"const": np.ones(len(data))}), period_dummies], axis=1)
    period_columns = list(period_dummies.columns)

    if basis == BASIS_INDICATOR:
        treatment = pd.DataFrame({"treated": data[treat].to_numpy(dtype=float)})
        levels = np.array([int(observed_levels.max())])

    elif basis in (BASIS_LEVELS, BASIS_SMOOTH):
        if 0 not in observed_levels:
            raise InvalidDatasetError("No unexposed observations (exposure 0) to serve as the reference level.")
        exposed_levels = observed_levels[observed_levels > 0]
        if exposed_levels.size == 0:
            raise InvalidDatasetError("No exposed observations (exposure > 0) in the data.")
        if basis == BASIS_LEVELS:
            treatment = pd.DataFrame(
                {f"level_{v}": (exposure_values == v).astype(float) for v in exposed_levels}
            )
            levels = exposed_levels
        else:
            # The smooth term is evaluated at 1..n_knots-1 by the GAM routine.
            treatment = pd.DataFrame(index=range(len(data)))
            levels = np.arange(1, observed_levels.size)

    else:
        if observed_levels.max() > N_BASIS_TERMS:
            raise UnsupportedDesignError(
                f"Exposure time reaches {observed_levels.max()}, beyond the {N_BASIS_TERMS} {basis} terms."
            )
        n_terms = N_BASIS_TERMS if effect_reached == 0 else min(effect_reached, N_BASIS_TERMS)
        treatment = _basis_terms(exposure_values, basis, n_terms)
        levels = np.arange(1, N_BASIS_TERMS + 1)

    exog = pd.concat([exog, treatment], axis=1)
    groups, unit_labels = pd.factorize(data[unitid], sort=True)

    logger.debug(
        "Built %s design: %d rows, %d units, %d period dummies, %d treatment columns.",
        basis, len(data), len(unit_labels), len(period_columns), treatment.shape[1],
    )

    return DesignMatrix(
        endog=data[outcome].to_numpy(dtype=float),
        exog=exog,
        groups=np.asarray(groups),
        n_units=len(unit_labels),
        treatment_columns=list(treatment.columns),
        period_columns=period_columns,
        exposure=exposure_values,
        levels=np.asarray(levels),
        basis=basis,
    )
