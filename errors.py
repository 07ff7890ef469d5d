"""
Typed failures raised by the pricing engine.

The HTTP layer maps NotFound to 404 and the other two to 400.
"""
from typing import Any, Dict, Optional


class PricingError(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(PricingError):
    """Missing product/grid/guarantee tariff, or no tariff matches the criteria."""


class ValidationFailed(PricingError):
    """Required criterion missing or value outside the allowed set."""


class CalculationFailed(PricingError):
    """Missing numeric input, or a formula that does not yield a finite number."""


class FormulaError(CalculationFailed):
    """Formula rejected at parse time or failed while evaluating."""
