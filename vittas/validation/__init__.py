"""Split validation package."""

from vittas.validation.validator import SplitRequestValidator

__all__ = ["SplitRequestValidator"]
