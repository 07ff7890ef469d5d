"""
Premium calculation for a resolved tariff.

Works on anything shaped like a tariff (Tariff or GuaranteeTariff rows, or a
plain object) exposing calculation_kind, fixed_amount, percentage_rate and
formula_text.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

from criteria import CriterionInput, find_supplied, to_value
from errors import CalculationFailed, FormulaError
from formula import evaluate
from models import CalculationKind

NEW_VALUE_ALIASES = (
    "Valeur à Neuf",
    "Valeur Neuve",
    "valeur_neuve",
    "valeur_a_neuf",
    "value_new",
    "new_value",
)

MARKET_VALUE_ALIASES = (
    "Valeur Vénale",
    "valeur_venale",
    "Valeur de Marché",
    "valeur_marche",
    "value_market",
    "market_value",
)

_CENT = Decimal("0.01")


def round_amount(amount: float) -> float:
    """Half-up rounding to 2 decimals (round() would use banker's rounding)."""
    return float(Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP))


def extract_value(criteria: Mapping[str, Any], aliases) -> Optional[float]:
    """First numeric value found under any alias, exact keys first."""
    typed = {k: to_value(v) for k, v in criteria.items()}
    for alias in aliases:
        if alias in typed:
            number = typed[alias].as_number()
            if number is not None:
                return number
    for alias in aliases:
        supplied = find_supplied(typed, alias)
        if supplied is not None and supplied.as_number() is not None:
            return supplied.as_number()
    return None


def formula_bindings(tariff, criteria: Mapping[str, Any]) -> Dict[str, float]:
    """Variables a tariff formula may reference. French and English names
    are both bound since admin formulas are written in either."""
    value_new = extract_value(criteria, NEW_VALUE_ALIASES) or 0.0
    value_market = extract_value(criteria, MARKET_VALUE_ALIASES) or 0.0
    base_amount = float(tariff.fixed_amount or 0)
    rate = float(tariff.percentage_rate or 0)
    return {
        "value_new": value_new,
        "value_market": value_market,
        "base_amount": base_amount,
        "percentage_rate": rate,
        "valeur_neuve": value_new,
        "valeur_venale": value_market,
        "montant_base": base_amount,
        "taux_pourcentage": rate,
    }


def reference_value(tariff, criteria: Mapping[str, Any]) -> Optional[float]:
    kind = CalculationKind(tariff.calculation_kind)
    if kind == CalculationKind.PERCENT_OF_NEW_VALUE:
        return extract_value(criteria, NEW_VALUE_ALIASES)
    if kind == CalculationKind.PERCENT_OF_MARKET_VALUE:
        return extract_value(criteria, MARKET_VALUE_ALIASES)
    return None


class PricingCalculator:
    """Dispatches on the tariff's calculation kind."""

    def compute_premium(self, tariff, criteria: Mapping[str, Any]) -> float:
        kind = CalculationKind(tariff.calculation_kind)
        if kind == CalculationKind.FIXED_AMOUNT:
            return round_amount(float(tariff.fixed_amount or 0))
        if kind == CalculationKind.PERCENT_OF_NEW_VALUE:
            return self._percentage(tariff, criteria, NEW_VALUE_ALIASES, "new value")
        if kind == CalculationKind.PERCENT_OF_MARKET_VALUE:
            return self._percentage(tariff, criteria, MARKET_VALUE_ALIASES, "market value")
        return self._formula(tariff, criteria)

    def _percentage(self, tariff, criteria, aliases, label: str) -> float:
        if tariff.percentage_rate is None:
            raise CalculationFailed(f"Percentage rate missing for a percentage of {label} tariff")
        value = extract_value(criteria, aliases)
        if value is None or value <= 0:
            raise CalculationFailed(
                f"A positive {label} is required", {"accepted_keys": list(aliases)},
            )
        return round_amount(value * float(tariff.percentage_rate) / 100)

    def _formula(self, tariff, criteria) -> float:
        if not tariff.formula_text:
            raise CalculationFailed("Calculation formula missing")
        try:
            result = evaluate(tariff.formula_text, formula_bindings(tariff, criteria))
        except FormulaError as e:
            raise FormulaError(
                f'Error evaluating formula "{tariff.formula_text}": {e.message}',
                {"formula": tariff.formula_text},
            ) from e
        return round_amount(result)


def compute_premium(tariff, criteria: Mapping[str, CriterionInput]) -> float:
    return PricingCalculator().compute_premium(tariff, criteria)
