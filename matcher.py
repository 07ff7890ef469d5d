"""
Tariff matching: find the one tariff row of a grid that applies to a set of
supplied criteria.

Two strategies, tried in order:
- combined: tariffs carrying a {criterion name: expected value} map, every
  pair of which must match the supplied criteria;
- relational: tariffs linked to a single (criterion, criterion value) pair,
  accepted only if every supplied criterion is covered by some row of the grid.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session, joinedload

from criteria import CriterionInput, literal_matches, to_value, value_matches
from errors import NotFound
from models import Tariff
from normalizer import normalize

log = logging.getLogger(__name__)

COMBINED = "combined_criteria"
RELATIONAL = "relational"


@dataclass
class TariffMatch:
    tariff: Tariff
    strategy: str


def normalized_criteria(criteria: Mapping[str, Any]) -> Dict[str, CriterionInput]:
    """{normalized name: typed value}. On a name collision the first key wins."""
    result: Dict[str, CriterionInput] = {}
    for name, value in criteria.items():
        key = normalize(name)
        if key not in result:
            result[key] = to_value(value)
    return result


def combined_match(expected: Mapping[str, Any], supplied: Mapping[str, CriterionInput]) -> bool:
    """True when every expected (name, value) pair is matched by `supplied`,
    which must already be keyed by normalized name."""
    for name, value in expected.items():
        given = supplied.get(normalize(name))
        if given is None or not value_matches(value, given):
            return False
    return True


def row_matches(tariff: Tariff, name: str, value: CriterionInput) -> bool:
    if tariff.criterion is None or tariff.criterion_value is None:
        return False
    if normalize(tariff.criterion.name) != name:
        return False
    option = tariff.criterion_value
    if option.is_range:
        number = value.as_number()
        if number is not None and option.min_value <= number <= option.max_value:
            return True
    return literal_matches(option.value, value)


def expected_criteria(tariffs: List[Tariff]) -> List[str]:
    """Distinct criterion names a grid prices on, for "not found" diagnostics."""
    names: List[str] = []
    for tariff in tariffs:
        for name in (tariff.combined_criteria or {}):
            if name not in names:
                names.append(name)
    if not names:
        for tariff in tariffs:
            if tariff.criterion is not None and tariff.criterion.name not in names:
                names.append(tariff.criterion.name)
    return names


class TariffMatcher:
    def __init__(self, db: Session, logger: Optional[logging.Logger] = None):
        self.db = db
        self.log = logger or log

    def load_tariffs(self, grid_id: int) -> List[Tariff]:
        return (
            self.db.query(Tariff)
            .options(joinedload(Tariff.criterion), joinedload(Tariff.criterion_value))
            .filter(Tariff.grid_id == grid_id)
            .order_by(Tariff.id)
            .all()
        )

    def match(self, grid_id: int, criteria: Mapping[str, Any]) -> TariffMatch:
        """
        Return the matching tariff of grid `grid_id`.

        Raises NotFound with details["expected_criteria"] listing the
        criterion names the grid prices on.
        """
        tariffs = self.load_tariffs(grid_id)
        supplied = normalized_criteria(criteria)
        self.log.debug("matching grid %s (%d tariffs) against %s", grid_id, len(tariffs), sorted(supplied))

        tariff = self.match_combined(tariffs, supplied)
        if tariff is not None:
            self.log.debug("grid %s: tariff %s matched on combined criteria", grid_id, tariff.id)
            return TariffMatch(tariff, COMBINED)

        tariff = self.match_relational(tariffs, supplied)
        if tariff is not None:
            self.log.debug("grid %s: tariff %s matched on criterion rows", grid_id, tariff.id)
            return TariffMatch(tariff, RELATIONAL)

        expected = expected_criteria(tariffs)
        self.log.info("grid %s: no tariff for criteria %s", grid_id, sorted(supplied))
        raise NotFound(
            "No tariff found for the supplied criteria",
            {"expected_criteria": expected, "supplied_criteria": list(criteria.keys())},
        )

    def match_combined(self, tariffs: List[Tariff], supplied: Dict[str, CriterionInput]) -> Optional[Tariff]:
        for tariff in tariffs:
            if tariff.combined_criteria and combined_match(tariff.combined_criteria, supplied):
                return tariff
        return None

    def match_relational(self, tariffs: List[Tariff], supplied: Dict[str, CriterionInput]) -> Optional[Tariff]:
        if not supplied:
            return None
        candidates = [
            t for t in tariffs
            if any(row_matches(t, name, value) for name, value in supplied.items())
        ]
        if not candidates:
            return None

        for name, value in supplied.items():
            if not any(row_matches(t, name, value) for t in tariffs):
                self.log.debug("criterion %r=%s has no tariff row; relational match incomplete",
                               name, value.as_text())
                return None
        return candidates[0]
