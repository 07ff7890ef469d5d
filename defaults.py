"""
Built-in pricing defaults used when a product has no formula and no tariff
matches: product-type detection, default formulas, coefficient tables,
default deductibles and cap multipliers.

Product-type detection is a plain substring table over the normalized
product name so it can be swapped for an explicit product field later.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Mapping, Optional, Tuple

from criteria import parse_number, parse_range
from models import ProductType
from normalizer import normalize

QUOTE_VALIDITY = timedelta(hours=24)

LIFE = "assurance_vie"
AUTO = "assurance_auto"
HEALTH = "assurance_sante"
HOME = "assurance_habitation"

# checked in order, first hit wins
TYPE_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("vie", LIFE),
    ("auto", AUTO),
    ("vehicule", AUTO),
    ("sante", HEALTH),
    ("medical", HEALTH),
    ("habitation", HOME),
    ("maison", HOME),
)

COEF_AGE = {"0-24": 1.2, "25-65": 1.0, "66+": 1.3}
COEF_PROFESSION = {"employe": 1.0, "cadre": 1.1, "dirigeant": 1.2, "retraite": 1.3}
COEF_ZONE = {"zone1": 1.0, "zone2": 1.1, "zone3": 1.2, "zone4": 1.3}

DEFAULT_DEDUCTIBLES = {LIFE: 0.0, AUTO: 300.0, HEALTH: 50.0, HOME: 200.0}
CAP_MULTIPLIERS = {LIFE: 1.5, AUTO: 1.2, HEALTH: 1.0, HOME: 1.3}

DEDUCTIBLE_RATE = 0.05
DEDUCTIBLE_CEILING = 500.0
GENERIC_BASE_PREMIUM_KEYS = ("prime_base", "base_premium")


@dataclass(frozen=True)
class Coefficient:
    """Binds `variable` to a table lookup on the first criterion found
    under one of `sources`; 1.0 when none is supplied or nothing matches."""
    sources: Tuple[str, ...]
    table: Mapping[str, float]


@dataclass(frozen=True)
class DefaultFormula:
    name: str
    formula: str
    constants: Dict[str, float] = field(default_factory=dict)
    coefficients: Dict[str, Coefficient] = field(default_factory=dict)


AGE_SOURCES = ("age", "Age Assuré", "age_assure")
ZONE_SOURCES = ("zone_geographique", "Zone Géographique", "zone")

DEFAULT_FORMULAS: Dict[str, DefaultFormula] = {
    LIFE: DefaultFormula(
        name="Standard life formula",
        formula="prime_base * (1 + (age - 25) * 0.02) * (montant_assurance / 10000) * coef_profession",
        constants={"prime_base": 50.0},
        coefficients={"coef_profession": Coefficient(("profession",), COEF_PROFESSION)},
    ),
    AUTO: DefaultFormula(
        name="Standard auto formula",
        formula="prime_base * coef_age * coef_zone * coef_vehicule * (1 + bonus_malus)",
        constants={"prime_base": 300.0, "bonus_malus": 0.0},
        coefficients={
            "coef_age": Coefficient(AGE_SOURCES, {"18-25": 1.5, "26-35": 1.2, "36-50": 1.0, "51-65": 1.1, "66+": 1.3}),
            "coef_zone": Coefficient(ZONE_SOURCES, COEF_ZONE),
            "coef_vehicule": Coefficient(
                ("type_vehicule", "Type de Véhicule", "vehicule"),
                {"citadine": 0.9, "berline": 1.0, "suv": 1.1, "sport": 1.3},
            ),
        },
    ),
    HEALTH: DefaultFormula(
        name="Standard health formula",
        formula="prime_base * coef_age * coef_couverture * (1 + coef_antecedents)",
        constants={"prime_base": 80.0},
        coefficients={
            "coef_age": Coefficient(AGE_SOURCES, {"18-30": 0.8, "31-45": 1.0, "46-60": 1.2, "61-75": 1.5, "76+": 2.0}),
            "coef_couverture": Coefficient(
                ("couverture", "niveau_couverture"),
                {"basique": 0.7, "standard": 1.0, "premium": 1.3, "excellence": 1.6},
            ),
            "coef_antecedents": Coefficient(
                ("antecedents", "antecedents_medicaux"),
                {"aucun": 0.0, "faible": 0.1, "modere": 0.2, "eleve": 0.4},
            ),
        },
    ),
    HOME: DefaultFormula(
        name="Standard home formula",
        formula="prime_base * coef_surface * coef_zone * coef_construction",
        constants={"prime_base": 120.0},
        coefficients={
            "coef_surface": Coefficient(("surface", "superficie"), {"0-50": 0.8, "51-100": 1.0, "101-150": 1.2, "151+": 1.4}),
            "coef_zone": Coefficient(ZONE_SOURCES, {"rurale": 0.9, "urbaine": 1.0, "periurbaine": 1.1}),
            "coef_construction": Coefficient(
                ("annee_construction", "Année de Construction"),
                {"0-1949": 1.2, "1950-1979": 1.1, "1980-1999": 1.0, "2000-2010": 0.95, "2011+": 0.9},
            ),
        },
    ),
}


def detect_product_type(name: Optional[str], product_type=None) -> Optional[str]:
    """Map a product to one of the built-in types, or None."""
    if product_type is not None and ProductType(product_type) == ProductType.LIFE:
        return LIFE
    text = normalize(name)
    for keyword, kind in TYPE_KEYWORDS:
        if keyword in text:
            return kind
    return None


def is_life(product_kind: Optional[str], product_type=None) -> bool:
    if product_kind == LIFE:
        return True
    return product_type is not None and ProductType(product_type) == ProductType.LIFE


def lookup_coefficient(table: Mapping[str, float], value, default: float = 1.0) -> float:
    """
    Table lookup by normalized label, then by numeric bucket. Bucket keys
    are "min-max" (inclusive) or "min+" (open-ended).
    """
    if value is None:
        return default
    label = normalize(value)
    for key, coefficient in table.items():
        if normalize(key) == label:
            return coefficient

    number = parse_number(value)
    if number is None:
        return default
    for key, coefficient in table.items():
        if key.endswith("+"):
            low = parse_number(key[:-1])
            if low is not None and number >= low:
                return coefficient
            continue
        bounds = parse_range(key)
        if bounds is not None and bounds[0] <= number <= bounds[1]:
            return coefficient
    return default


def default_coefficients(variables: Mapping[str, object]) -> Dict[str, float]:
    """coef_age / coef_profession / coef_zone from the generic tables."""
    return {
        "coef_age": lookup_coefficient(COEF_AGE, variables.get("age")),
        "coef_profession": lookup_coefficient(COEF_PROFESSION, variables.get("profession")),
        "coef_zone": lookup_coefficient(COEF_ZONE, variables.get("zone_geographique")),
    }


def fallback_premium(variables: Mapping[str, float]) -> Optional[float]:
    """Base premium times whatever coef_* are bound; None without a base."""
    base = None
    for key in GENERIC_BASE_PREMIUM_KEYS:
        if variables.get(key) is not None:
            base = float(variables[key])
            break
    if base is None:
        return None
    premium = base
    for name in ("coef_age", "coef_profession", "coef_zone"):
        premium *= float(variables.get(name, 1.0))
    return premium


def compute_deductible(insured_amount: Optional[float], age: Optional[float], life: bool,
                       product_kind: Optional[str] = None) -> float:
    """Zero for life; otherwise 5% of the insured amount capped at 500,
    +20% above 65 and +10% below 25."""
    if life:
        return 0.0
    if insured_amount is None:
        return DEFAULT_DEDUCTIBLES.get(product_kind, 0.0)

    deductible = min(insured_amount * DEDUCTIBLE_RATE, DEDUCTIBLE_CEILING)
    if age is not None and age > 65:
        deductible *= 1.2
    elif age is not None and age < 25:
        deductible *= 1.1
    return deductible


def compute_cap(insured_amount: Optional[float], life: bool,
                product_kind: Optional[str] = None) -> Optional[float]:
    if insured_amount is None:
        return None
    if product_kind in CAP_MULTIPLIERS:
        return insured_amount * CAP_MULTIPLIERS[product_kind]
    return insured_amount * (1.5 if life else 1.2)
