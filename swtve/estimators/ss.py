from ..config_models import RawFit
from ..utils.datautils import BASIS_SMOOTH, DesignMatrix
from ..utils.glmmutils import fit_smoothing_spline
from .base import BaseEffectEstimator


class SS(BaseEffectEstimator):
    """Penalized smoothing spline of exposure time, evaluated at every exposure level."""
    family = "SS"
    basis = BASIS_SMOOTH

    def _fit_raw(self, design: DesignMatrix) -> RawFit:
        return fit_smoothing_spline(design, self.data_type, self.family)
