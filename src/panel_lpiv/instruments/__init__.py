"""Shift-share instrument construction: exposure, shock, instrument panel."""

from .builder import INSTRUMENT_COLUMNS, InstrumentBuilder
from .exposure import (
    ExposureIndex,
    assign_buckets,
    build_exposure,
    category_weights,
    finalize_exposure,
    orient_component,
)
from .shock import ShockSeries, cumulate, residualize

__all__ = [
    "InstrumentBuilder",
    "INSTRUMENT_COLUMNS",
    "ExposureIndex",
    "ShockSeries",
    "assign_buckets",
    "category_weights",
    "build_exposure",
    "orient_component",
    "finalize_exposure",
    "residualize",
    "cumulate",
]
