"""Split calculation package."""

from vittas.splitting.calculator import SplitValidationError, calculate_splits

__all__ = ["SplitValidationError", "calculate_splits"]
