"""Fixed-effects 2SLS, local projections and robustness variants."""

from .fixed_effects import DemeanResult, FixedEffectsTransform
from .iv import IVEstimator
from .local_projection import LocalProjectionRunner
from .results import EstimationResult, ImpulseResponseTable
from .variants import (
    fit_variants,
    placebo_permute,
    run_variants,
    split_by_median,
    stack_irfs,
    trim_within_entity,
)

__all__ = [
    "DemeanResult",
    "EstimationResult",
    "FixedEffectsTransform",
    "IVEstimator",
    "ImpulseResponseTable",
    "LocalProjectionRunner",
    "fit_variants",
    "placebo_permute",
    "run_variants",
    "split_by_median",
    "stack_irfs",
    "trim_within_entity",
]
