"""
Quote simulation: validate criteria, price them, persist a SimulatedQuote.

Pricing falls back in this order:
  1. the product's active CalculationFormula,
  2. a tariff of the grid matching the criteria,
  3. the built-in default formula for the detected product type,
  4. a generic base-premium x coefficients fallback.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

import defaults
from calculator import PricingCalculator, round_amount
from criteria import (
    CriterionInput, NumericValue, first_supplied, format_number, to_values, validate_criteria,
)
from errors import FormulaError, NotFound, ValidationFailed
from formula import evaluate
from matcher import row_matches
from models import GridStatus, PricingGrid, Product, ProductStatus, QuoteStatus, SimulatedQuote, Tariff
from normalizer import normalize
from resolvers import GridTariffResolver

log = logging.getLogger(__name__)

BIRTH_DATE_KEYS = ("date_naissance", "Date de Naissance", "birth_date")
INSURED_AMOUNT_KEYS = ("montant_assurance", "Montant Assuré", "montant_assure", "capital", "insured_amount")
PROFESSION_KEYS = ("profession",)

PRODUCT_FORMULA = "product_formula"
DEFAULT_FORMULA = "default_formula"
GENERIC_FALLBACK = "generic_fallback"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FR_DATE = re.compile(r"^\d{2}-\d{2}-\d{4}$")


@dataclass
class Premium:
    premium: float
    deductible: float
    cap: Optional[float]
    strategy: str
    formula_used: str = ""
    variables: Dict[str, float] = field(default_factory=dict)


@dataclass
class SimulationResult:
    quote: SimulatedQuote
    strategy: str
    formula_used: str
    variables: Dict[str, float]


def parse_birth_date(raw: Any) -> date:
    """Accepts date objects, "YYYY-MM-DD" and "DD-MM-YYYY"."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    try:
        if _ISO_DATE.match(text):
            return datetime.strptime(text, "%Y-%m-%d").date()
        if _FR_DATE.match(text):
            return datetime.strptime(text, "%d-%m-%Y").date()
    except ValueError:
        pass
    raise ValidationFailed(
        f"Invalid birth date: {text}. Use DD-MM-YYYY or YYYY-MM-DD", {"criterion": "date_naissance"},
    )


def age_on(birth: date, today: date) -> int:
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age


def variable_name(criterion_name: str) -> str:
    return normalize(criterion_name).replace(" ", "_").replace("-", "_")


class SimulationOrchestrator:
    def __init__(self, db: Session, calculator: Optional[PricingCalculator] = None,
                 logger: Optional[logging.Logger] = None, now=None):
        self.db = db
        self.calculator = calculator or PricingCalculator()
        self.log = logger or log
        self.now = now or datetime.utcnow
        self.grid_resolver = GridTariffResolver(db, self.calculator, logger=self.log)

    # -- lookups ---------------------------------------------------------

    def load_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None or product.status != ProductStatus.ACTIVE:
            raise NotFound("Product not found or inactive", {"product_id": product_id})
        return product

    def load_grid(self, product: Product, grid_id: int) -> PricingGrid:
        grid = self.db.get(PricingGrid, grid_id)
        if grid is None or grid.product_id != product.id or grid.status != GridStatus.ACTIVE:
            raise NotFound("Pricing grid not found or inactive", {"grid_id": grid_id})
        return grid

    # -- entry point -----------------------------------------------------

    def simulate(self, product_id: int, grid_id: int, criteria: Mapping[str, Any],
                 user_id: Optional[str] = None) -> SimulationResult:
        product = self.load_product(product_id)
        grid = self.load_grid(product, grid_id)

        values = to_values(criteria, product.criteria)
        validate_criteria(values, product.criteria)

        result = self.price(product, grid, values)

        created_at = self.now()
        quote = SimulatedQuote(
            product_id=product.id,
            grid_id=grid.id,
            user_id=user_id,
            criteria=dict(criteria),
            premium=result.premium,
            deductible=result.deductible,
            cap=result.cap,
            explanation=self.explain(values, result),
            status=QuoteStatus.DRAFT,
            created_at=created_at,
            expires_at=created_at + defaults.QUOTE_VALIDITY,
        )
        self.db.add(quote)
        self.db.commit()
        self.db.refresh(quote)
        self.log.info("quote %s: product %s grid %s premium %s via %s",
                      quote.id, product.id, grid.id, quote.premium, result.strategy)
        return SimulationResult(quote, result.strategy, result.formula_used, result.variables)

    # -- pricing chain ---------------------------------------------------

    def price(self, product: Product, grid: PricingGrid, values: Mapping[str, CriterionInput]) -> Premium:
        variables, context = self.prepare_variables(values, grid)
        kind = defaults.detect_product_type(product.name, product.type)
        life = defaults.is_life(kind, product.type)

        formula = product.active_formula
        if formula is not None:
            return self.price_with_formula(formula, variables, context, kind, life)

        try:
            priced = self.grid_resolver.price(grid.id, values)
        except NotFound as e:
            missing = e
            self.log.debug("grid %s: %s, trying default formulas", grid.id, e.message)
        else:
            return self.with_deductible_and_cap(
                Premium(priced.amount, 0.0, None, priced.strategy, f"tariff {priced.tariff.id}", variables),
                variables, kind, life,
            )

        if kind in defaults.DEFAULT_FORMULAS:
            default = defaults.DEFAULT_FORMULAS[kind]
            bound = dict(variables)
            bound.update(default.constants)
            for name, coefficient in default.coefficients.items():
                source = first_supplied(context, coefficient.sources)
                bound[name] = defaults.lookup_coefficient(
                    coefficient.table, source.as_text() if source is not None else None,
                )
            try:
                premium = evaluate(default.formula, bound)
            except FormulaError as e:
                self.log.debug("default formula for %s unusable: %s", kind, e.message)
            else:
                return self.with_deductible_and_cap(
                    Premium(round_amount(premium), 0.0, None, DEFAULT_FORMULA, default.name, bound),
                    bound, kind, life,
                )

        premium = defaults.fallback_premium(variables)
        if premium is None:
            raise NotFound(
                "No tariff or formula could price these criteria",
                dict(missing.details, product_type=kind),
            )
        return self.with_deductible_and_cap(
            Premium(round_amount(premium), 0.0, None, GENERIC_FALLBACK, "generic fallback", variables),
            variables, kind, life,
        )

    def price_with_formula(self, formula, variables: Dict[str, float], context, kind, life: bool) -> Premium:
        """Constants of the formula record override supplied values; a dict
        entry such as coef_profession is a coefficient table looked up with
        the criterion named after the prefix."""
        bound = dict(variables)
        sub_formulas = {}
        for name, value in (formula.variables or {}).items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                bound[name] = float(value)
            elif isinstance(value, dict):
                source = first_supplied(context, [name[len("coef_"):] if name.startswith("coef_") else name])
                bound[name] = defaults.lookup_coefficient(value, source.as_text() if source is not None else None)
            elif name in ("formule_franchise", "formule_plafond") and value:
                sub_formulas[name] = value

        try:
            premium = evaluate(formula.formula, bound)
        except FormulaError as e:
            raise FormulaError(
                f'Error calculating with formula "{formula.name}": {e.message}',
                {"formula": formula.name},
            ) from e

        result = self.with_deductible_and_cap(
            Premium(round_amount(premium), 0.0, None, PRODUCT_FORMULA, formula.name, bound),
            bound, kind, life,
        )
        if "formule_franchise" in sub_formulas:
            try:
                result.deductible = round_amount(evaluate(sub_formulas["formule_franchise"], bound))
            except FormulaError as e:
                self.log.warning("deductible formula of %r ignored: %s", formula.name, e.message)
        if "formule_plafond" in sub_formulas:
            try:
                result.cap = round_amount(evaluate(sub_formulas["formule_plafond"], bound))
            except FormulaError as e:
                self.log.warning("cap formula of %r ignored: %s", formula.name, e.message)
        return result

    def with_deductible_and_cap(self, result: Premium, variables: Mapping[str, float], kind, life) -> Premium:
        insured = variables.get("montant_assurance")
        age = variables.get("age")
        result.deductible = round_amount(defaults.compute_deductible(insured, age, life, kind))
        cap = defaults.compute_cap(insured, life, kind)
        result.cap = round_amount(cap) if cap is not None else None
        return result

    # -- variables -------------------------------------------------------

    def prepare_variables(self, values: Mapping[str, CriterionInput], grid: PricingGrid):
        """
        Numeric formula variables derived from the criteria, plus a context
        map (criteria and derived age) for coefficient lookups.
        """
        variables: Dict[str, float] = {}
        for name, value in values.items():
            number = value.as_number()
            slug = variable_name(name)
            if number is not None and slug.isidentifier():
                variables.setdefault(slug, number)

        insured = first_supplied(values, INSURED_AMOUNT_KEYS)
        if insured is not None and insured.as_number() is not None:
            variables["montant_assurance"] = insured.as_number()

        context: Dict[str, CriterionInput] = dict(values)
        birth = first_supplied(values, BIRTH_DATE_KEYS)
        age_value = first_supplied(values, defaults.AGE_SOURCES)
        if birth is not None:
            age = age_on(parse_birth_date(birth.to_wire()), self.now().date())
            variables["age"] = float(age)
            context["age"] = NumericValue(float(age))
        elif age_value is not None and age_value.as_number() is not None:
            variables["age"] = age_value.as_number()

        for tariff in self.db.query(Tariff).filter(Tariff.grid_id == grid.id, Tariff.criterion_id.isnot(None)):
            for name, value in values.items():
                if row_matches(tariff, normalize(name), value):
                    slug = variable_name(tariff.criterion.name)
                    if tariff.fixed_amount is not None:
                        variables[f"tarif_{slug}"] = float(tariff.fixed_amount)
                    if tariff.percentage_rate is not None:
                        variables[f"pourcentage_{slug}"] = float(tariff.percentage_rate)

        profession = first_supplied(values, PROFESSION_KEYS)
        zone = first_supplied(values, defaults.ZONE_SOURCES)
        variables.update(defaults.default_coefficients({
            "age": variables.get("age"),
            "profession": profession.as_text() if profession is not None else None,
            "zone_geographique": zone.as_text() if zone is not None else None,
        }))
        return variables, context

    def explain(self, values: Mapping[str, CriterionInput], result: Premium) -> str:
        parts = ["Calculation based on the supplied criteria."]
        variables = result.variables
        if variables.get("age") is not None:
            parts.append(f"Age: {format_number(variables['age'])} years.")
        profession = first_supplied(values, PROFESSION_KEYS)
        if profession is not None:
            parts.append(f"Profession: {profession.as_text()}.")
        if variables.get("montant_assurance") is not None:
            parts.append(f"Insured amount: {format_number(variables['montant_assurance'])}.")
        zone = first_supplied(values, defaults.ZONE_SOURCES)
        if zone is not None:
            parts.append(f"Zone: {zone.as_text()}.")
        parts.append(f"Premium: {format_number(result.premium)}, Deductible: {format_number(result.deductible)}.")
        return " ".join(parts)


def simulate(db: Session, product_id: int, grid_id: int, criteria: Mapping[str, Any],
             user_id: Optional[str] = None) -> SimulationResult:
    return SimulationOrchestrator(db).simulate(product_id, grid_id, criteria, user_id)


def calculate_premium(db: Session, grid_id: int, criteria: Mapping[str, Any]):
    """Direct tariff lookup for a grid: returns (tariff, amount)."""
    priced = GridTariffResolver(db).price(grid_id, criteria)
    return priced.tariff, priced.amount
