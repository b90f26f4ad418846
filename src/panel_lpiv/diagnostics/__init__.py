"""Diagnostics for panel coverage and identifying variation."""

from .coverage import CoverageAnalyzer
from .variation import VariationAnalyzer

__all__ = ["CoverageAnalyzer", "VariationAnalyzer"]
