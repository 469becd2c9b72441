from .estimators.hh import HH
from .estimators.eti import ETI
from .estimators.ss import SS
from .estimators.mcmc_spl import MCMCSPL, MCMCSPLMON
from .estimators.mcmc_step import MCMCSTEPMON, MCMCSTEPMONSTAN
from .estimators.inla_step import STEPINLA, STEPMONINLA
from .analysis import ESTIMATORS, run_analysis
from .config_models import EstimationConfig, MethodSpec, MCMCConfig, LaplaceConfig, EstimationResult

# Define __all__ to specify the public API of the swtve package
__all__ = [
    "HH",
    "ETI",
    "SS",
    "MCMCSPL",
    "MCMCSPLMON",
    "MCMCSTEPMON",
    "MCMCSTEPMONSTAN",
    "STEPINLA",
    "STEPMONINLA",
    "ESTIMATORS",
    "run_analysis",
    "EstimationConfig",
    "MethodSpec",
    "MCMCConfig",
    "LaplaceConfig",
    "EstimationResult",
]
