import pytest
import numpy as np
from scipy.stats import norm

from swtve.config_models import CumulativeEffectCurve
from swtve.exceptions import NonPositiveVarianceError, UnsupportedDesignError
from swtve.utils.inferutils import aggregate, exposure_weights, normal_interval


def _curve(theta, sigma):
    theta = np.asarray(theta, dtype=float)
    return CumulativeEffectCurve(theta=theta, sigma=np.asarray(sigma, dtype=float), levels=np.arange(1, theta.size + 1))


# --- exposure_weights ---

@pytest.mark.parametrize("n_time_points", [3, 4, 5, 7, 10])
def test_full_curve_weights_are_uniform(n_time_points):
    weights = exposure_weights(n_time_points - 1, n_time_points)
    np.testing.assert_allclose(weights, np.full(n_time_points - 1, 1.0 / (n_time_points - 1)))


@pytest.mark.parametrize("n_time_points", [4, 5, 7, 9])
@pytest.mark.parametrize("family", ["ETI", "SS", "MCMC-STEP-MON", "HH"])
def test_weights_sum_to_one(n_time_points, family):
    """(J - 1) * A always adds up to J - 1, for every horizon that fits the design."""
    for effect_reached in range(0, n_time_points):
        if family == "HH":
            n_levels = 1
        elif family in ("ETI", "SS") and effect_reached > 0:
            n_levels = effect_reached
        else:
            n_levels = n_time_points - 1
        weights = exposure_weights(n_levels, n_time_points, effect_reached, family)
        assert weights.shape == (n_levels,)
        assert np.isclose(weights.sum() * (n_time_points - 1), n_time_points - 1)
        assert np.all(weights > 0)


def test_ceiling_weight_for_effect_reached():
    weights = exposure_weights(2, n_time_points=4, effect_reached=2, family="ETI")
    np.testing.assert_allclose(weights, [1 / 3, 2 / 3])


def test_ceiling_weight_with_fewer_observed_levels():
    """Only two levels observed with R = 3: the second carries the ceiling."""
    weights = exposure_weights(2, n_time_points=7, effect_reached=3, family="SS")
    np.testing.assert_allclose(weights, [1 / 6, 5 / 6])


def test_single_level_curve_gets_all_weight():
    np.testing.assert_allclose(exposure_weights(1, n_time_points=5, family="HH"), [1.0])


def test_too_many_levels():
    with pytest.raises(UnsupportedDesignError, match="at most 3"):
        exposure_weights(4, n_time_points=4)


def test_levels_beyond_effect_reached_rejected():
    with pytest.raises(UnsupportedDesignError, match="beyond effect_reached=2"):
        exposure_weights(3, n_time_points=4, effect_reached=2, family="ETI")


def test_empty_curve():
    with pytest.raises(UnsupportedDesignError, match="empty"):
        exposure_weights(0, n_time_points=4)


# --- aggregate ---

def test_aggregate_three_level_curve():
    result = aggregate(_curve([1.0, 2.0, 3.0], np.diag([0.1, 0.1, 0.1])), n_time_points=4, family="ETI")

    np.testing.assert_allclose(result.weights, [1 / 3, 1 / 3, 1 / 3])
    assert result.ate_hat == pytest.approx(2.0)
    assert result.se_ate_hat == pytest.approx(np.sqrt(0.1 / 3))
    assert result.lte_hat == pytest.approx(3.0)
    assert result.se_lte_hat == pytest.approx(np.sqrt(0.1))
    assert result.method_name == "ETI"
    assert result.confidence_level == 0.95


def test_aggregate_with_effect_reached():
    result = aggregate(_curve([1.0, 2.0], np.diag([0.1, 0.1])), n_time_points=4, effect_reached=2, family="ETI")

    np.testing.assert_allclose(result.weights, [1 / 3, 2 / 3])
    assert result.ate_hat == pytest.approx(5 / 3)
    assert result.se_ate_hat == pytest.approx(np.sqrt(0.1 / 9 + 0.4 / 9))
    assert result.lte_hat == pytest.approx(2.0)


def test_aggregate_uses_off_diagonal_covariance():
    sigma = np.array([[0.2, 0.1], [0.1, 0.2]])
    result = aggregate(_curve([-1.0, -1.0], sigma), n_time_points=3)
    assert result.se_ate_hat == pytest.approx(np.sqrt(0.15))


def test_aggregate_confidence_intervals():
    result = aggregate(_curve([1.0, 2.0, 3.0], np.diag([0.1, 0.1, 0.1])), n_time_points=4, confidence_level=0.9)
    z = norm.ppf(0.95)
    assert result.ate_ci == pytest.approx((2.0 - z * result.se_ate_hat, 2.0 + z * result.se_ate_hat))
    assert result.lte_ci[0] < result.lte_hat < result.lte_ci[1]


def test_aggregate_without_intervals():
    result = aggregate(_curve([1.0], [[0.5]]), n_time_points=3, confidence_level=None)
    assert result.ate_ci is None and result.lte_ci is None


def test_aggregate_zero_variance():
    with pytest.raises(NonPositiveVarianceError, match="LTE"):
        aggregate(_curve([1.0, 2.0], np.diag([0.1, 0.0])), n_time_points=3)


def test_aggregate_negative_ate_variance():
    sigma = np.array([[0.1, -0.2], [-0.2, 0.1]])
    with pytest.raises(NonPositiveVarianceError, match="ATE"):
        aggregate(_curve([1.0, 2.0], sigma), n_time_points=3)


def test_as_dict_keys():
    result = aggregate(_curve([1.0, 2.0, 3.0], np.diag([0.1, 0.1, 0.1])), n_time_points=4)
    assert set(result.as_dict()) == {"ate_hat", "se_ate_hat", "lte_hat", "se_lte_hat"}


def test_normal_interval_symmetric():
    lower, upper = normal_interval(1.0, 0.5, 0.95)
    assert lower == pytest.approx(1.0 - 1.959964 * 0.5, rel=1e-5)
    assert upper - 1.0 == pytest.approx(1.0 - lower)
