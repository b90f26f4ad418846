"""Error taxonomy for panel-lpiv.

- ``SchemaError``: bad input tables. Always fatal, raised at construction.
- ``IdentificationError``: one estimation unit cannot be fit. Fatal for that
  unit only; the local projection runner records it and moves on.
- ``CoverageWarning``: rows, entities or periods lost along the way. Emitted
  as a warning and recorded on the output's ``coverage`` metadata.
"""

from __future__ import annotations

import logging
import warnings

logger = logging.getLogger(__name__)


class PanelLPIVError(Exception):
    """Base class for all panel-lpiv errors."""


class SchemaError(PanelLPIVError, ValueError):
    """Duplicate keys, missing columns, mismatched time granularity."""


class IdentificationError(PanelLPIVError):
    """Collinear regressors, too few observations or clusters."""


class CoverageWarning(UserWarning):
    """Entities or periods dropped by a join or an exposure-window gap."""


def report_coverage(message: str) -> str:
    """Log and warn about a coverage loss. Returns the message for metadata."""
    logger.warning(message)
    warnings.warn(message, CoverageWarning, stacklevel=3)
    return message
