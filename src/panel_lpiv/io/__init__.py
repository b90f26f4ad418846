"""Export and reload utilities for instrument panels and impulse responses."""

from .export import read_impulse_response, read_instrument_panel, to_csv, to_parquet, to_stata

__all__ = ["to_parquet", "to_csv", "to_stata", "read_impulse_response", "read_instrument_panel"]
