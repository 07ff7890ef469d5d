import logging
from datetime import date

import pytest

from conftest import add_criterion, add_grid, add_product, add_tariff
from errors import NotFound
from models import CalculationKind, Guarantee, GuaranteeTariff, GridStatus
from matcher import COMBINED, RELATIONAL
from resolvers import DATE_WINDOW, GridTariffResolver, GuaranteeTariffResolver, find_active_grid


def add_guarantee(db, name="Bris de glace"):
    guarantee = Guarantee(product_id=add_product(db).id, name=name)
    db.add(guarantee)
    db.flush()
    return guarantee


def add_window(db, guarantee, start, end=None, status=GridStatus.ACTIVE, **fields):
    fields.setdefault("calculation_kind", CalculationKind.FIXED_AMOUNT)
    row = GuaranteeTariff(guarantee_id=guarantee.id, date_start=start, date_end=end, status=status, **fields)
    db.add(row)
    db.flush()
    return row


def test_tariff_valid_at_reference_date(db):
    guarantee = add_guarantee(db)
    old = add_window(db, guarantee, date(2024, 1, 1), date(2024, 12, 31), fixed_amount=100)
    new = add_window(db, guarantee, date(2025, 1, 1), fixed_amount=150)
    resolver = GuaranteeTariffResolver(db)

    assert resolver.resolve(guarantee.id, reference=date(2024, 12, 31)).id == old.id
    assert resolver.resolve(guarantee.id, reference=date(2025, 1, 1)).id == new.id


def test_latest_start_wins_on_overlap(db):
    guarantee = add_guarantee(db)
    add_window(db, guarantee, date(2024, 1, 1), fixed_amount=100)
    later = add_window(db, guarantee, date(2024, 6, 1), fixed_amount=120)
    assert GuaranteeTariffResolver(db, reference=date(2024, 7, 1)).resolve(guarantee.id).id == later.id


def test_inactive_and_future_tariffs_ignored(db):
    guarantee = add_guarantee(db)
    add_window(db, guarantee, date(2024, 1, 1), status=GridStatus.INACTIVE, fixed_amount=100)
    add_window(db, guarantee, date(2030, 1, 1), fixed_amount=100)

    with pytest.raises(NotFound) as exc:
        GuaranteeTariffResolver(db).resolve(guarantee.id, reference=date(2025, 3, 1))
    assert exc.value.details == {"guarantee_id": guarantee.id, "reference_date": "2025-03-01"}


def test_price_guarantee_details(db):
    guarantee = add_guarantee(db)
    row = add_window(db, guarantee, date(2025, 1, 1), calculation_kind=CalculationKind.PERCENT_OF_NEW_VALUE,
                     percentage_rate=0.5)

    result = GuaranteeTariffResolver(db).price_guarantee(guarantee.id, {"Valeur à Neuf": 2000000}, date(2025, 5, 1))
    assert result.amount == 10000.00
    assert result.guarantee_name == "Bris de glace"
    assert result.calculation_kind == "percent_of_new_value"
    assert result.details["tariff_id"] == row.id
    assert result.details["reference_value"] == 2000000.0


def test_unknown_guarantee(db):
    with pytest.raises(NotFound):
        GuaranteeTariffResolver(db).price_guarantee(999, {})


def test_batch_skips_failures(db, caplog):
    priced = add_guarantee(db, "Vol")
    add_window(db, priced, date(2025, 1, 1), fixed_amount=15000)
    no_value = add_guarantee(db, "Incendie")
    add_window(db, no_value, date(2025, 1, 1), calculation_kind=CalculationKind.PERCENT_OF_NEW_VALUE,
               percentage_rate=1)
    expired = add_guarantee(db, "Assistance")
    add_window(db, expired, date(2020, 1, 1), date(2020, 12, 31), fixed_amount=10)

    with caplog.at_level(logging.WARNING):
        results = GuaranteeTariffResolver(db).price_many(
            [priced.id, no_value.id, expired.id, 999], {}, date(2025, 2, 1),
        )
    assert [(r.guarantee_name, r.amount) for r in results] == [("Vol", 15000.0)]
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 3


def test_grid_and_guarantee_share_calculator(db):
    grid = add_grid(db, add_product(db))
    add_tariff(db, grid, CalculationKind.CUSTOM_FORMULA, fixed_amount=5000,
               formula_text="montant_base + (valeur_neuve * 0.02)", combined_criteria={"Zone": "Dakar"})
    guarantee = add_guarantee(db)
    add_window(db, guarantee, date(2025, 1, 1), calculation_kind=CalculationKind.CUSTOM_FORMULA,
               fixed_amount=5000, formula_text="montant_base + (valeur_neuve * 0.02)")

    criteria = {"Zone": "Dakar", "Valeur à Neuf": 100000}
    assert GridTariffResolver(db).price(grid.id, criteria).amount == 7000.0
    assert GuaranteeTariffResolver(db, reference=date(2025, 6, 1)).price(guarantee.id, criteria).amount == 7000.0


def test_unknown_grid(db):
    with pytest.raises(NotFound, match="not found"):
        GridTariffResolver(db).price(42, {})


def test_find_active_grid(db):
    product = add_product(db)
    add_grid(db, product, date_start=date(2024, 1, 1))
    latest = add_grid(db, product, date_start=date(2025, 1, 1))
    add_grid(db, product, status=GridStatus.FUTURE, date_start=date(2026, 1, 1))

    assert find_active_grid(db, product.id).id == latest.id
    with pytest.raises(NotFound):
        find_active_grid(db, add_product(db).id)


def test_reused_resolver_reports_each_strategy(db):
    product = add_product(db)
    zone = add_criterion(db, product, "Zone", values=["Dakar"])
    grid = add_grid(db, product)
    add_tariff(db, grid, fixed_amount=100, criterion_id=zone.id, criterion_value_id=zone.values[0].id)
    add_tariff(db, grid, fixed_amount=300, combined_criteria={"Option": "Gold"})
    resolver = GridTariffResolver(db)

    combined = resolver.price(grid.id, {"Option": "Gold"})
    relational = resolver.price(grid.id, {"Zone": "Dakar"})
    assert (combined.amount, combined.strategy) == (300.0, COMBINED)
    assert (relational.amount, relational.strategy) == (100.0, RELATIONAL)
    assert resolver.match(grid.id, {"Option": "Gold"}).strategy == COMBINED


def test_guarantee_match_strategy(db):
    guarantee = add_guarantee(db)
    add_window(db, guarantee, date(2025, 1, 1), fixed_amount=100)
    resolver = GuaranteeTariffResolver(db, reference=date(2025, 2, 1))

    assert resolver.match(guarantee.id).strategy == DATE_WINDOW
    assert resolver.price(guarantee.id, {}).strategy == DATE_WINDOW
