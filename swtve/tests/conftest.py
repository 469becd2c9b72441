# tests/conftest.py
import pytest
import numpy as np
import pandas as pd
from scipy.special import expit


def simulate_stepped_wedge(
    n_time_points=7,
    units_per_sequence=3,
    effect=None,
    data_type="normal",
    n_extra_time_points=0,
    seed=0,
):
    """Long-format stepped-wedge data: one sequence crosses over per period after the first."""
    rng = np.random.default_rng(seed)
    if effect is None:
        effect = lambda l: -0.5 * np.minimum(l, 3)  # noqa: E731
    rows = []
    unit = 0
    for sequence in range(1, n_time_points):
        for _ in range(units_per_sequence):
            unit += 1
            alpha = rng.normal(0.0, 0.5)
            for j in range(1, n_time_points + n_extra_time_points + 1):
                x = int(j > sequence)
                l = j - sequence if x else 0
                eta = 1.0 + 0.1 * j + alpha + effect(l)
                if data_type == "binomial":
                    y = int(rng.random() < expit(eta - 1.0))
                else:
                    y = eta + rng.normal(0.0, 0.5)
                rows.append({"i": unit, "j": j, "x_ij": x, "l": l, "y": y})
    return pd.DataFrame(rows)


@pytest.fixture
def sw_data():
    """Seven-period stepped-wedge data with a decreasing effect that levels off after three periods."""
    return simulate_stepped_wedge()


@pytest.fixture
def sw_binomial_data():
    """Seven-period stepped-wedge data with a binary outcome."""
    return simulate_stepped_wedge(units_per_sequence=6, effect=lambda l: -0.8 * np.minimum(l, 2), data_type="binomial", seed=3)


@pytest.fixture
def sw_factory():
    """Access to the simulator for tests that need a non-default design."""
    return simulate_stepped_wedge


@pytest.fixture
def fast_mcmc():
    """Short chains: enough draws for a covariance, quick enough for the suite."""
    return {"n_adapt": 150, "n_iter": 150, "thin": 1, "n_chains": 1, "seed": 11}
