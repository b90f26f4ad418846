"""panel-lpiv: Shift-share instruments and local-projection IV on entity x month panels."""

from ._types import PanelConfig, RegressionSpec
from .errors import CoverageWarning, IdentificationError, PanelLPIVError, SchemaError
from .estimation import (
    EstimationResult,
    FixedEffectsTransform,
    ImpulseResponseTable,
    IVEstimator,
    LocalProjectionRunner,
)
from .instruments import InstrumentBuilder
from .panels import PanelTable, to_monthly

__all__ = [
    "PanelConfig",
    "RegressionSpec",
    "PanelTable",
    "to_monthly",
    "InstrumentBuilder",
    "FixedEffectsTransform",
    "IVEstimator",
    "EstimationResult",
    "ImpulseResponseTable",
    "LocalProjectionRunner",
    "PanelLPIVError",
    "SchemaError",
    "IdentificationError",
    "CoverageWarning",
]

__version__ = "0.1.0"
