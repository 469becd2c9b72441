import pytest
import numpy as np

from swtve.config_models import RawFit
from swtve.exceptions import SwtveConfigError
from swtve.utils.basisutils import apply_basis_transform, basis_transform_matrix


def test_hinge_matrix_values():
    """Row r of the hinge transform counts how many knots exposure r has passed, scaled by distance."""
    B = basis_transform_matrix("hinge", n_levels=6, n_terms=6)
    assert B.shape == (6, 6)
    np.testing.assert_array_equal(B[0], [1, 0, 0, 0, 0, 0])
    np.testing.assert_array_equal(B[3], [4, 3, 2, 1, 0, 0])
    np.testing.assert_array_equal(B[5], [6, 5, 4, 3, 2, 1])


def test_hinge_first_slope_only_gives_linear_curve():
    """A single unit slope on the first hinge produces theta = 1..6."""
    B = basis_transform_matrix("hinge", n_levels=6, n_terms=6)
    beta = np.array([1.0, 0, 0, 0, 0, 0])
    np.testing.assert_array_equal(B @ beta, np.arange(1, 7))


def test_step_matrix_is_lower_triangular_ones():
    B = basis_transform_matrix("step", n_levels=6, n_terms=6)
    np.testing.assert_array_equal(B, np.tril(np.ones((6, 6))))


def test_step_unit_increment_switches_on_from_its_level():
    """A unit increment at position k shifts the curve by one from level k onward."""
    B = basis_transform_matrix("step", n_levels=6, n_terms=6)
    for k in range(6):
        beta = np.zeros(6)
        beta[k] = 1.0
        expected = (np.arange(6) >= k).astype(float)
        np.testing.assert_array_equal(B @ beta, expected)


@pytest.mark.parametrize("basis", ["indicator", "levels", "smooth"])
def test_identity_bases(basis):
    np.testing.assert_array_equal(basis_transform_matrix(basis, 4, 4), np.eye(4))


def test_identity_basis_size_mismatch():
    with pytest.raises(SwtveConfigError, match="one-to-one"):
        basis_transform_matrix("levels", n_levels=5, n_terms=4)


def test_unknown_basis():
    with pytest.raises(SwtveConfigError, match="Unknown treatment basis"):
        basis_transform_matrix("fourier", 6, 6)


def test_effect_reached_caps_rows():
    """Levels past effect_reached repeat the row of effect_reached."""
    B = basis_transform_matrix("step", n_levels=6, n_terms=3, effect_reached=3)
    assert B.shape == (6, 3)
    for row in range(3, 6):
        np.testing.assert_array_equal(B[row], B[2])
    np.testing.assert_array_equal(B[2], [1, 1, 1])

    H = basis_transform_matrix("hinge", n_levels=6, n_terms=2, effect_reached=2)
    np.testing.assert_array_equal(H[-1], [2, 1])


def test_apply_basis_transform_propagates_covariance():
    raw = RawFit(
        coefficients=[-1.0, -0.5],
        covariance=[[0.04, 0.01], [0.01, 0.09]],
        names=["step_1", "step_2"],
        family="MCMC-STEP-MON",
    )
    B = basis_transform_matrix("step", n_levels=2, n_terms=2)
    curve = apply_basis_transform(raw, B, np.array([1, 2]))

    np.testing.assert_allclose(curve.theta, [-1.0, -1.5])
    np.testing.assert_allclose(curve.sigma, [[0.04, 0.05], [0.05, 0.15]])
    np.testing.assert_allclose(curve.sigma, curve.sigma.T)
    np.testing.assert_array_equal(curve.levels, [1, 2])


def test_apply_basis_transform_column_mismatch():
    raw = RawFit(coefficients=[1.0], covariance=[[0.1]], names=["treated"], family="HH")
    with pytest.raises(SwtveConfigError, match="columns"):
        apply_basis_transform(raw, np.eye(2), np.array([1, 2]))
