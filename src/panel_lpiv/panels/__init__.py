"""Panel tables keyed by (entity, period) and period-id helpers."""

from ._time import period_id, period_label, period_range, to_period_id
from .resample import to_monthly
from .table import PanelTable

__all__ = [
    "PanelTable",
    "to_monthly",
    "to_period_id",
    "period_id",
    "period_label",
    "period_range",
]
