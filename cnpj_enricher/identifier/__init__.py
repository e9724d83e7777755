"""CNPJ normalization and validation."""

from .validator import normalize, validate, is_valid, format_display

__all__ = ["normalize", "validate", "is_valid", "format_display"]
