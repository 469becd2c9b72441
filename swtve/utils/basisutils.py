import numpy as np

from swtve.config_models import CumulativeEffectCurve, RawFit
from swtve.exceptions import SwtveConfigError
from swtve.utils.datautils import BASES, BASIS_HINGE, BASIS_STEP


def basis_transform_matrix(basis: str, n_levels: int, n_terms: int, effect_reached: int = 0) -> np.ndarray:
    """
    Matrix mapping basis coefficients to the cumulative effect at each exposure level.

    Row ``r`` (exposure level ``r = 1..n_levels``) holds every basis column
    evaluated at exposure ``min(r, effect_reached)``, or at ``r`` when
    ``effect_reached`` is 0:

    - ``"hinge"``: ``B[r, c] = max(0, r - c + 1)``.
    - ``"step"``: ``B[r, c] = 1`` if ``r >= c`` else 0 (lower-triangular ones).
    - ``"indicator"``, ``"levels"``, ``"smooth"``: identity; the coefficients
      already are effects at each level.

    Parameters
    ----------
    basis : str
        Treatment basis of the fitted model.
    n_levels : int
        Number of exposure levels L of the curve.
    n_terms : int
        Number of fitted basis coefficients K.
    effect_reached : int, default 0
        Exposure after which the curve is held flat (0 = no cap).

    Returns
    -------
    np.ndarray
        Array of shape (n_levels, n_terms).

    Raises
    ------
    SwtveConfigError
        If the basis is unknown, or an identity basis gets ``n_levels != n_terms``.
    """
    if basis not in BASES:
        raise SwtveConfigError(f"Unknown treatment basis '{basis}'.")

    if basis not in (BASIS_HINGE, BASIS_STEP):
        if n_levels != n_terms:
            raise SwtveConfigError(
                f"Basis '{basis}' maps coefficients one-to-one to levels; got {n_terms} terms for {n_levels} levels."
            )
        return np.eye(n_terms)

    exposure = np.arange(1, n_levels + 1)
    if effect_reached > 0:
        exposure = np.minimum(exposure, effect_reached)
    columns = np.arange(1, n_terms + 1)

    if basis == BASIS_HINGE:
        return np.maximum(0.0, exposure[:, None] - columns[None, :] + 1).astype(float)
    return (exposure[:, None] >= columns[None, :]).astype(float)


def apply_basis_transform(raw_fit: RawFit, matrix: np.ndarray, levels: np.ndarray) -> CumulativeEffectCurve:
    """Map a fit's coefficients and covariance through ``matrix``.

    ``theta = B @ beta`` and ``sigma = B @ Sigma @ B.T``, symmetrised to
    remove round-off.
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.shape[1] != raw_fit.coefficients.shape[0]:
        raise SwtveConfigError(
            f"Transform has {matrix.shape[1]} columns but the fit has {raw_fit.coefficients.shape[0]} coefficients."
        )

    theta = matrix @ raw_fit.coefficients
    sigma = matrix @ raw_fit.covariance @ matrix.T
    sigma = 0.5 * (sigma + sigma.T)

    return CumulativeEffectCurve(theta=theta, sigma=sigma, levels=np.asarray(levels))
