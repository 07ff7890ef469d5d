"""
Tariff resolution behind one interface.

GridTariffResolver finds a tariff inside a pricing grid by criteria.
GuaranteeTariffResolver finds the tariff of a guarantee valid at a date.
Both hand the resolved row to the same PricingCalculator.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from calculator import PricingCalculator, reference_value
from errors import NotFound, PricingError
from matcher import TariffMatch, TariffMatcher
from models import CalculationKind, Guarantee, GuaranteeTariff, GridStatus, PricingGrid

log = logging.getLogger(__name__)

DATE_WINDOW = "date_window"


@dataclass
class PricedTariff:
    tariff: Any
    amount: float
    strategy: str = ""


@dataclass
class GuaranteePremium:
    guarantee_id: int
    guarantee_name: str
    calculation_kind: str
    amount: float
    details: Dict[str, Any] = field(default_factory=dict)


def find_active_grid(db: Session, product_id: int) -> PricingGrid:
    """Most recently started active grid of a product."""
    grid = (
        db.query(PricingGrid)
        .filter(PricingGrid.product_id == product_id, PricingGrid.status == GridStatus.ACTIVE)
        .order_by(PricingGrid.date_start.desc(), PricingGrid.id.desc())
        .first()
    )
    if grid is None:
        raise NotFound(f"No active pricing grid for product {product_id}")
    return grid


class TariffResolver(ABC):
    def __init__(self, db: Session, calculator: Optional[PricingCalculator] = None,
                 logger: Optional[logging.Logger] = None):
        self.db = db
        self.calculator = calculator or PricingCalculator()
        self.log = logger or log

    @abstractmethod
    def match(self, key: int, criteria: Mapping[str, Any]) -> TariffMatch:
        """Return the applying tariff with the strategy that found it, or raise NotFound."""

    def resolve(self, key: int, criteria: Mapping[str, Any]):
        return self.match(key, criteria).tariff

    def price(self, key: int, criteria: Mapping[str, Any]) -> PricedTariff:
        match = self.match(key, criteria)
        amount = self.calculator.compute_premium(match.tariff, criteria)
        return PricedTariff(tariff=match.tariff, amount=amount, strategy=match.strategy)


class GridTariffResolver(TariffResolver):
    """Grid-scoped: `key` is a pricing grid id."""

    def __init__(self, db: Session, calculator: Optional[PricingCalculator] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(db, calculator, logger)
        self.matcher = TariffMatcher(db, logger=self.log)

    def match(self, key: int, criteria: Mapping[str, Any]) -> TariffMatch:
        if self.db.get(PricingGrid, key) is None:
            raise NotFound(f"Pricing grid {key} not found")
        return self.matcher.match(key, criteria)


class GuaranteeTariffResolver(TariffResolver):
    """Date-window-scoped: `key` is a guarantee id."""

    def __init__(self, db: Session, calculator: Optional[PricingCalculator] = None,
                 logger: Optional[logging.Logger] = None, reference: Optional[date] = None):
        super().__init__(db, calculator, logger)
        self.reference = reference

    def reference_date(self, reference=None) -> date:
        reference = reference or self.reference or date.today()
        return reference.date() if isinstance(reference, datetime) else reference

    def match(self, key: int, criteria: Mapping[str, Any] = None, reference: Optional[date] = None) -> TariffMatch:
        """Active tariff with date_start <= reference <= date_end (open end
        allowed); the latest date_start wins."""
        day = self.reference_date(reference)
        tariff = (
            self.db.query(GuaranteeTariff)
            .filter(
                GuaranteeTariff.guarantee_id == key,
                GuaranteeTariff.status == GridStatus.ACTIVE,
                GuaranteeTariff.date_start <= day,
                or_(GuaranteeTariff.date_end.is_(None), GuaranteeTariff.date_end >= day),
            )
            .order_by(GuaranteeTariff.date_start.desc(), GuaranteeTariff.id.desc())
            .first()
        )
        if tariff is None:
            raise NotFound(
                f"No active tariff for guarantee {key} on {day.isoformat()}",
                {"guarantee_id": key, "reference_date": day.isoformat()},
            )
        return TariffMatch(tariff, DATE_WINDOW)

    def resolve(self, key: int, criteria: Mapping[str, Any] = None, reference: Optional[date] = None):
        return self.match(key, criteria, reference).tariff

    def price_guarantee(self, guarantee_id: int, criteria: Mapping[str, Any],
                        reference: Optional[date] = None) -> GuaranteePremium:
        guarantee = self.db.get(Guarantee, guarantee_id)
        if guarantee is None:
            raise NotFound(f"Guarantee {guarantee_id} not found", {"guarantee_id": guarantee_id})

        tariff = self.resolve(guarantee_id, criteria, reference)
        amount = self.calculator.compute_premium(tariff, criteria)
        return GuaranteePremium(
            guarantee_id=guarantee.id,
            guarantee_name=guarantee.name,
            calculation_kind=CalculationKind(tariff.calculation_kind).value,
            amount=amount,
            details={
                "tariff_id": tariff.id,
                "base_amount": tariff.fixed_amount,
                "percentage_rate": tariff.percentage_rate,
                "reference_value": reference_value(tariff, criteria),
                "formula": tariff.formula_text,
            },
        )

    def price_many(self, guarantee_ids: Iterable[int], criteria: Mapping[str, Any],
                   reference: Optional[date] = None) -> List[GuaranteePremium]:
        """Price each guarantee; one that fails is logged and left out."""
        results = []
        for guarantee_id in guarantee_ids:
            try:
                results.append(self.price_guarantee(guarantee_id, criteria, reference))
            except PricingError as e:
                self.log.warning("skipping guarantee %s: %s", guarantee_id, e.message)
        return results
