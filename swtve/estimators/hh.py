from ..config_models import RawFit
from ..utils.datautils import BASIS_INDICATOR, DesignMatrix
from ..utils.glmmutils import fit_mixed_model
from .base import BaseEffectEstimator


class HH(BaseEffectEstimator):
    """
    Immediate, constant treatment effect (Hussey and Hughes model).

    A mixed model with period effects, a random unit intercept and a single
    treated indicator. The curve has one level, so the ATE and LTE coincide.
    """
    family = "HH"
    basis = BASIS_INDICATOR

    def _fit_raw(self, design: DesignMatrix) -> RawFit:
        return fit_mixed_model(design, self.data_type, self.family, laplace=self.config.laplace)
