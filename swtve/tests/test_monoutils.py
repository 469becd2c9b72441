import pytest
import numpy as np
from numpyro import handlers

from swtve.config_models import ENFORCE_STRATEGIES
from swtve.exceptions import UnsupportedEnforcementError
from swtve.utils.monoutils import (
    INCREMENT_SITE,
    INDICATOR_SITE,
    LATENT_SITE,
    BoundedFlatPrior,
    ExponentialEncoder,
    GammaMagnitudePrior,
    IntervalFlatPrior,
    LogNormalEncoder,
    SlopeDifferenceEncoder,
    SpikeMixtureEncoder,
    UniformPrior,
    VaguePrior,
    get_increment_encoder,
)


def _prior_trace(encoder, n_terms, seed=0):
    with handlers.trace() as trace, handlers.seed(rng_seed=seed):
        encoder.sample(n_terms)
    return trace


@pytest.mark.parametrize("enforce", ENFORCE_STRATEGIES)
def test_every_strategy_gives_non_positive_increments(enforce):
    """Prior draws under each monotonicity strategy never increase the curve."""
    encoder = get_increment_encoder(enforce)
    for seed in range(20):
        trace = _prior_trace(encoder, 6, seed)
        increments = np.asarray(trace[INCREMENT_SITE]["value"])
        assert increments.shape == (6,)
        assert np.all(increments <= 0)
        assert trace[INCREMENT_SITE]["type"] == "deterministic"


@pytest.mark.parametrize("enforce", ENFORCE_STRATEGIES)
def test_sites_declared_by_each_strategy(enforce):
    encoder = get_increment_encoder(enforce)
    trace = _prior_trace(encoder, 4)
    assert trace[LATENT_SITE]["type"] == "sample"
    assert (INDICATOR_SITE in trace) == encoder.has_indicators
    # Latent values feed the increments through transform()
    expected = encoder.transform(trace[LATENT_SITE]["value"], trace.get(INDICATOR_SITE, {}).get("value"))
    np.testing.assert_allclose(trace[INCREMENT_SITE]["value"], expected)


def test_strategy_lookup_types():
    assert isinstance(get_increment_encoder("prior; gamma prior"), GammaMagnitudePrior)
    assert isinstance(get_increment_encoder("prior; unif prior"), UniformPrior)
    assert isinstance(get_increment_encoder("exp; exp prior"), ExponentialEncoder)
    assert isinstance(get_increment_encoder("exp; N(1,10) prior"), LogNormalEncoder)
    mixture = get_increment_encoder("exp; mix prior 0.2")
    assert isinstance(mixture, SpikeMixtureEncoder)
    assert mixture.mixture_weight == pytest.approx(0.2)
    assert mixture.has_indicators
    assert not get_increment_encoder("exp; exp prior").has_indicators


@pytest.mark.parametrize("enforce", [None, "", "exp; mix prior 0.3", "gamma"])
def test_unknown_strategy(enforce):
    with pytest.raises(UnsupportedEnforcementError, match="Unknown monotonicity strategy"):
        get_increment_encoder(enforce)


def test_exponential_encoder_bounded_by_ten():
    encoder = ExponentialEncoder()
    e = np.array([0.0, 0.5, 1.0, 3.0, 20.0])
    increments = np.asarray(encoder.transform(e))
    assert np.all(increments < 0)
    assert np.all(increments >= -10.0)
    assert increments[0] == pytest.approx(-10.0)
    # e = log(10) gives an increment of -1
    assert float(encoder.transform(np.log(10.0))) == pytest.approx(-1.0)


def test_mixture_zeroes_flagged_increments():
    encoder = SpikeMixtureEncoder(0.4)
    e = np.ones(4)
    z = np.array([1, 0, 1, 0])
    increments = np.asarray(encoder.transform(e, z))
    np.testing.assert_array_equal(increments[[0, 2]], [0.0, 0.0])
    assert np.all(increments[[1, 3]] < 0)
    # Without indicators the mixture behaves as the exponential encoder
    np.testing.assert_allclose(encoder.transform(e), ExponentialEncoder().transform(e))


def test_mixture_indicator_frequency():
    encoder = SpikeMixtureEncoder(0.1)
    z = np.concatenate([np.asarray(_prior_trace(encoder, 6, seed)[INDICATOR_SITE]["value"]) for seed in range(500)])
    assert z.mean() == pytest.approx(0.1, abs=0.03)


def test_mixture_weight_bounds():
    with pytest.raises(UnsupportedEnforcementError, match="Mixture weight"):
        SpikeMixtureEncoder(1.5)


def test_uniform_prior_support():
    encoder = UniformPrior(-10.0, 0.0)
    support = encoder.latent_prior(3).support
    assert float(support.lower_bound) == -10.0
    assert float(support.upper_bound) == 0.0
    draws = np.asarray(_prior_trace(encoder, 200)[INCREMENT_SITE]["value"])
    assert np.all((draws > -10.0) & (draws < 0.0))
    assert isinstance(IntervalFlatPrior(-10.0, 0.0), UniformPrior)


def test_gamma_magnitude_sign():
    encoder = GammaMagnitudePrior()
    np.testing.assert_allclose(encoder.transform(np.array([0.5, 2.0])), [-0.5, -2.0])


def test_lognormal_encoder():
    encoder = LogNormalEncoder()
    assert encoder.sd == pytest.approx(np.sqrt(10.0))
    assert float(encoder.transform(0.0)) == pytest.approx(-1.0)


def test_slope_difference_curve_is_decreasing():
    """Hinge coefficients from slope differences give a curve that falls at every level."""
    encoder = SlopeDifferenceEncoder()
    hinge = np.maximum(0.0, np.arange(1, 7)[:, None] - np.arange(1, 7)[None, :] + 1)
    for seed in range(20):
        trace = _prior_trace(encoder, 6, seed)
        beta = np.asarray(trace[INCREMENT_SITE]["value"])
        curve = hinge @ beta
        assert curve[0] < 0
        assert np.all(np.diff(curve) < 0)
        slopes = np.asarray(ExponentialEncoder().transform(trace[LATENT_SITE]["value"]))
        assert beta[0] == pytest.approx(slopes[0])
        np.testing.assert_allclose(np.cumsum(beta), slopes, rtol=1e-6)


def test_transform_vectorised_over_draws():
    encoder = SlopeDifferenceEncoder()
    v = np.ones((3, 5))
    assert encoder.transform(v).shape == (3, 5)


def test_bounded_flat_prior_support():
    encoder = BoundedFlatPrior(0.0)
    prior = encoder.latent_prior(6)
    assert prior.event_shape == (6,)
    assert bool(prior.support(-np.ones(6)))
    assert not bool(prior.support(np.ones(6)))


def test_vague_prior_is_gaussian():
    encoder = VaguePrior(100.0)
    prior = encoder.latent_prior(2)
    np.testing.assert_allclose(prior.variance, [1e4, 1e4])
    np.testing.assert_array_equal(encoder.transform(np.array([1.5, -2.0])), [1.5, -2.0])
