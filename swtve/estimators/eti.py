from ..config_models import RawFit
from ..utils.datautils import BASIS_LEVELS, DesignMatrix
from ..utils.glmmutils import fit_mixed_model
from .base import BaseEffectEstimator


class ETI(BaseEffectEstimator):
    """
    Exposure-time indicator model.

    One fixed effect per observed exposure level, unexposed observations as
    the reference. Each coefficient already is the cumulative effect at its
    level. With ``effect_reached = R`` the levels stop at R and the ATE uses
    a right-hand Riemann sum with ceiling weight ``J - R``.
    """
    family = "ETI"
    basis = BASIS_LEVELS

    def _fit_raw(self, design: DesignMatrix) -> RawFit:
        return fit_mixed_model(design, self.data_type, self.family, laplace=self.config.laplace)
