"""
Typed rating-criterion values.

Callers send criteria as a loose JSON object ({"Age": 30, "Zone": "Dakar"}).
They are converted once, here, into NumericValue / CategoricalValue /
BooleanValue so matching and calculation never guess at types again.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from errors import ValidationFailed
from models import Criterion, CriterionKind
from normalizer import normalize

_TRUE = ("true", "oui", "yes", "1", "vrai")
_FALSE = ("false", "non", "no", "0", "faux")


def parse_number(raw: Any) -> Optional[float]:
    """Float value of `raw`, or None. Accepts "1 000,50" style input."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        number = float(raw)
    else:
        text = str(raw).strip().replace("\u00a0", "").replace(" ", "").replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def format_number(number: float) -> str:
    if float(number).is_integer():
        return str(int(number))
    return repr(float(number))


def parse_flag(raw: Any) -> Optional[bool]:
    """True/False for oui/non, yes/no, true/false, vrai/faux, 1/0; else None."""
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


# `raw` keeps the text the caller sent when it arrived as a string, so
# literal comparisons see the value as submitted ("30.0", "Oui").

@dataclass(frozen=True)
class NumericValue:
    number: float
    raw: Optional[str] = field(default=None, compare=False)

    def as_text(self) -> str:
        return self.raw.strip() if self.raw is not None else format_number(self.number)

    def as_number(self) -> Optional[float]:
        return self.number

    def to_wire(self) -> Union[int, float]:
        return int(self.number) if self.number.is_integer() else self.number


@dataclass(frozen=True)
class CategoricalValue:
    text: str

    def as_text(self) -> str:
        return self.text.strip()

    def as_number(self) -> Optional[float]:
        return parse_number(self.text)

    def to_wire(self) -> str:
        return self.text


@dataclass(frozen=True)
class BooleanValue:
    flag: bool
    raw: Optional[str] = field(default=None, compare=False)

    def as_text(self) -> str:
        if self.raw is not None:
            return self.raw.strip()
        return "true" if self.flag else "false"

    def as_number(self) -> Optional[float]:
        return 1.0 if self.flag else 0.0

    def to_wire(self) -> bool:
        return self.flag


CriterionInput = Union[NumericValue, CategoricalValue, BooleanValue]
TYPED = (NumericValue, CategoricalValue, BooleanValue)


def to_value(raw: Any, kind: Optional[CriterionKind] = None) -> CriterionInput:
    """Convert one wire value. `kind` is the declared criterion kind, if known."""
    if isinstance(raw, TYPED):
        return raw
    if isinstance(raw, bool):
        return BooleanValue(raw)

    if kind == CriterionKind.BOOLEAN:
        flag = parse_flag(raw)
        if flag is not None:
            return BooleanValue(flag, None if isinstance(raw, (int, float)) else str(raw))
        return CategoricalValue(str(raw))

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return NumericValue(float(raw))

    if kind == CriterionKind.NUMERIC:
        number = parse_number(raw)
        if number is not None:
            return NumericValue(number, str(raw))

    return CategoricalValue("" if raw is None else str(raw))


def to_values(
    raw: Mapping[str, Any], definitions: Iterable[Criterion] = (),
) -> Dict[str, CriterionInput]:
    """Convert a whole criteria map, using the product's criterion kinds when
    a supplied name matches a definition (after normalization)."""
    kinds = {}
    for criterion in definitions:
        kinds.setdefault(normalize(criterion.name), criterion.kind)
    return {name: to_value(value, kinds.get(normalize(name))) for name, value in raw.items()}


def to_wire(values: Mapping[str, CriterionInput]) -> Dict[str, Any]:
    return {name: value.to_wire() for name, value in values.items()}


def parse_range(expected: Any) -> Optional[Tuple[float, float]]:
    """(min, max) for a "min-max" label, else None. A leading minus sign is
    part of the first bound, not the separator."""
    text = str(expected).strip()
    index = text.find("-", 1)
    if index < 0:
        return None
    low, high = parse_number(text[:index]), parse_number(text[index + 1:])
    if low is None or high is None:
        return None
    return low, high


def literal_matches(expected: Any, supplied: CriterionInput) -> bool:
    """Trimmed text equality. A boolean also matches any spelling of its
    flag ("Oui", "True", "1")."""
    if str(expected).strip() == supplied.as_text():
        return True
    return isinstance(supplied, BooleanValue) and parse_flag(expected) is supplied.flag


def value_matches(expected: Any, supplied: CriterionInput) -> bool:
    """Literal comparison, then inclusive "min-max" range match."""
    if literal_matches(expected, supplied):
        return True
    bounds = parse_range(expected)
    number = supplied.as_number()
    if bounds is None or number is None:
        return False
    return bounds[0] <= number <= bounds[1]


def find_supplied(criteria: Mapping[str, CriterionInput], name: str) -> Optional[CriterionInput]:
    """Exact key lookup, then a scan comparing normalized names."""
    if name in criteria:
        return criteria[name]
    wanted = normalize(name)
    for key, value in criteria.items():
        if normalize(key) == wanted:
            return value
    return None


def first_supplied(criteria: Mapping[str, CriterionInput], names: Iterable[str]) -> Optional[CriterionInput]:
    for name in names:
        supplied = find_supplied(criteria, name)
        if supplied is not None:
            return supplied
    return None


def allowed_labels(criterion: Criterion) -> List[str]:
    return [v.value for v in criterion.values]


def validate_criteria(criteria: Mapping[str, CriterionInput], definitions: Iterable[Criterion]) -> None:
    """
    Check supplied criteria against a product's definitions.

    Raises ValidationFailed when a required criterion is missing or a value
    falls outside the criterion's closed set of values.
    """
    for criterion in definitions:
        supplied = find_supplied(criteria, criterion.name)
        if supplied is None:
            if criterion.required:
                raise ValidationFailed(
                    f"Criterion '{criterion.name}' is required",
                    {"criterion": criterion.name},
                )
            continue

        if not criterion.values:
            continue

        for allowed in criterion.values:
            if allowed.is_range:
                number = supplied.as_number()
                if number is not None and allowed.min_value <= number <= allowed.max_value:
                    break
            elif value_matches(allowed.value, supplied):
                break
        else:
            labels = allowed_labels(criterion)
            raise ValidationFailed(
                f"Invalid value for criterion '{criterion.name}'. Allowed values: {', '.join(labels)}",
                {"criterion": criterion.name, "allowed_values": labels},
            )
