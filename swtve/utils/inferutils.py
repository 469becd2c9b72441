import logging
from typing import Optional, Tuple

import numpy as np
from scipy.stats import norm

from swtve.config_models import CumulativeEffectCurve, EstimationResult
from swtve.exceptions import NonPositiveVarianceError, UnsupportedDesignError

logger = logging.getLogger(__name__)

# Families whose curve is cut at effect_reached and closed by a ceiling weight.
RIEMANN_CEILING_FAMILIES = ("ETI", "SS")


def exposure_weights(n_levels: int, n_time_points: int, effect_reached: int = 0, family: str = "") -> np.ndarray:
    """
    Weighting vector A that turns the effect curve into an average over exposure time.

    With ``m`` the position of the last weighted level, the unnormalised
    weights are ``[1] * (m - 1) + [J - m]``: every exposure level counts once
    and the last one also stands in for the remaining periods spent at or
    beyond it. ``m = effect_reached`` for ETI and SS when ``effect_reached > 0``
    (a right-hand Riemann sum with ceiling weight ``J - R``); otherwise
    ``m = n_levels``, which gives all ones whenever the curve covers every
    post-baseline period (``L = J - 1``). The weights always sum to ``J - 1``.

    Parameters
    ----------
    n_levels : int
        Length L of the effect curve.
    n_time_points : int
        Nominal number of design periods J.
    effect_reached : int, default 0
        Assumed time to maximal effect R (0 = no assumption).
    family : str, default ""
        Model family the curve came from.

    Returns
    -------
    np.ndarray
        A of shape (L,), equal to the unnormalised weights divided by ``J - 1``.

    Raises
    ------
    UnsupportedDesignError
        If ``L`` is zero, ``L > J - 1``, or an ETI/SS curve with ``R > 0``
        still has levels beyond R.
    """
    if n_levels < 1:
        raise UnsupportedDesignError("Effect curve is empty.")
    if n_levels > n_time_points - 1:
        raise UnsupportedDesignError(
            f"Effect curve has {n_levels} levels but a {n_time_points}-period design has at most "
            f"{n_time_points - 1} exposure levels."
        )

    last = n_levels
    if effect_reached > 0 and family in RIEMANN_CEILING_FAMILIES:
        if n_levels > effect_reached:
            raise UnsupportedDesignError(
                f"{family} curve has {n_levels} levels beyond effect_reached={effect_reached}; "
                "exposure must be recoded before fitting."
            )
        # Fewer observed levels than R: the last observed one takes the ceiling weight.
        last = min(effect_reached, n_levels)

    weights = np.ones(n_levels)
    weights[last - 1] = n_time_points - last
    return weights / (n_time_points - 1)


def _checked_se(variance: float, label: str) -> float:
    if not np.isfinite(variance) or variance <= 0:
        raise NonPositiveVarianceError(
            f"Propagated variance of the {label} is {variance}; the covariance is not positive definite "
            "along this direction."
        )
    return float(np.sqrt(variance))


def normal_interval(estimate: float, se: float, confidence_level: float = 0.95) -> Tuple[float, float]:
    """Two-sided normal-approximation interval ``estimate -/+ z * se``."""
    z = norm.ppf(0.5 + confidence_level / 2.0)
    return (float(estimate - z * se), float(estimate + z * se))


def aggregate(
    curve: CumulativeEffectCurve,
    n_time_points: int,
    effect_reached: int = 0,
    family: str = "",
    confidence_level: Optional[float] = 0.95,
) -> EstimationResult:
    """Reduce a cumulative effect curve to the ATE and LTE with standard errors.

    ``ate_hat = A @ theta`` and ``se_ate_hat = sqrt(A @ sigma @ A.T)`` with A
    from :func:`exposure_weights`; ``lte_hat`` and ``se_lte_hat`` are the last
    entry of the curve and the square root of its variance.

    Parameters
    ----------
    curve : CumulativeEffectCurve
        Effect per exposure level and its covariance.
    n_time_points : int
        Nominal number of design periods J.
    effect_reached : int, default 0
        Assumed time to maximal effect R.
    family : str, default ""
        Model family; selects the weighting rule.
    confidence_level : float or None, default 0.95
        Level of the normal-approximation intervals. ``None`` skips them.

    Returns
    -------
    EstimationResult

    Raises
    ------
    NonPositiveVarianceError
        If either propagated variance is non-positive or not finite.
    UnsupportedDesignError
        Propagated from :func:`exposure_weights`.
    """
    theta = np.asarray(curve.theta, dtype=float)
    sigma = np.asarray(curve.sigma, dtype=float)
    weights = exposure_weights(theta.shape[0], n_time_points, effect_reached, family)

    ate_hat = float(weights @ theta)
    se_ate_hat = _checked_se(float(weights @ sigma @ weights), "ATE")
    lte_hat = float(theta[-1])
    se_lte_hat = _checked_se(float(sigma[-1, -1]), "LTE")

    logger.debug("Aggregated %s curve with weights %s: ATE %.4f (%.4f), LTE %.4f (%.4f).",
                 family, np.round(weights, 4), ate_hat, se_ate_hat, lte_hat, se_lte_hat)

    ate_ci = lte_ci = None
    if confidence_level is not None:
        ate_ci = normal_interval(ate_hat, se_ate_hat, confidence_level)
        lte_ci = normal_interval(lte_hat, se_lte_hat, confidence_level)

    return EstimationResult(
        ate_hat=ate_hat,
        se_ate_hat=se_ate_hat,
        lte_hat=lte_hat,
        se_lte_hat=se_lte_hat,
        ate_ci=ate_ci,
        lte_ci=lte_ci,
        confidence_level=confidence_level,
        method_name=family or None,
        weights=weights,
        effect_curve=curve,
    )
