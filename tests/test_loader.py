import pandas as pd
import pytest

from conftest import add_grid, add_product, add_tariff
from errors import NotFound, ValidationFailed
from loader import generate_sample_data, load_tariff_sheet
from models import CalculationKind, GuaranteeTariff, PricingGrid, Product, Tariff
from resolvers import GridTariffResolver, GuaranteeTariffResolver, find_active_grid


@pytest.fixture
def grid(db):
    grid = add_grid(db, add_product(db))
    db.commit()
    return grid


def test_rows_become_combined_tariffs(db, grid):
    df = pd.DataFrame({
        "Zone Géographique": ["Dakar", "Thiès", "Dakar"],
        "Option": ["Gold", "Gold", "Essentiel"],
        "Age": ["18-30", None, "31-65"],
        "Montant": [25000, 20000, None],
        "Taux": [None, None, 2.5],
    })

    assert load_tariff_sheet(df, grid.id, db) == 3
    tariffs = db.query(Tariff).filter(Tariff.grid_id == grid.id).order_by(Tariff.id).all()

    assert tariffs[0].combined_criteria == {"Zone Géographique": "Dakar", "Option": "Gold", "Age": "18-30"}
    assert tariffs[0].calculation_kind == CalculationKind.FIXED_AMOUNT
    assert tariffs[1].combined_criteria == {"Zone Géographique": "Thiès", "Option": "Gold"}
    assert tariffs[2].calculation_kind == CalculationKind.PERCENT_OF_NEW_VALUE
    assert tariffs[2].percentage_rate == 2.5


def test_loaded_grid_prices(db, grid):
    df = pd.DataFrame({"Zone": ["Dakar"], "Formule": ["montant_base + valeur_neuve * 0.01"], "Montant": [1000]})
    load_tariff_sheet(df, grid.id, db)

    priced = GridTariffResolver(db).price(grid.id, {"Zone": "Dakar", "Valeur à Neuf": 50000})
    assert priced.tariff.calculation_kind == CalculationKind.CUSTOM_FORMULA
    assert priced.amount == 1500.0


def test_explicit_calculation_kind(db, grid):
    df = pd.DataFrame({"Zone": ["Dakar"], "Taux": [4], "Type Calcul": ["pourcentage_valeur_venale"]})
    load_tariff_sheet(df, grid.id, db)
    assert db.query(Tariff).one().calculation_kind == CalculationKind.PERCENT_OF_MARKET_VALUE


def test_reload_replaces_tariffs(db, grid):
    add_tariff(db, grid, fixed_amount=1, combined_criteria={"Zone": "Old"})
    db.commit()

    load_tariff_sheet(pd.DataFrame({"Zone": ["Dakar"], "Montant": [10]}), grid.id, db)
    assert [t.combined_criteria for t in db.query(Tariff).all()] == [{"Zone": "Dakar"}]


def test_bad_sheet_leaves_grid_untouched(db, grid):
    add_tariff(db, grid, fixed_amount=1, combined_criteria={"Zone": "Old"})
    db.commit()

    with pytest.raises(ValidationFailed):
        load_tariff_sheet(pd.DataFrame({"Zone": ["Dakar"], "Montant": [10], "Type Calcul": ["bonus"]}), grid.id, db)
    with pytest.raises(ValidationFailed):
        load_tariff_sheet(pd.DataFrame({"Zone": ["Dakar"]}), grid.id, db)
    assert [t.combined_criteria for t in db.query(Tariff).all()] == [{"Zone": "Old"}]


def test_unknown_grid(db):
    with pytest.raises(NotFound):
        load_tariff_sheet(pd.DataFrame({"Montant": [10]}), 42, db)


def test_csv_file(db, grid, tmp_path):
    path = tmp_path / "grille.csv"
    path.write_text("Option,Montant\nGold,30000\n", encoding="utf-8")

    assert load_tariff_sheet(str(path), grid.id, db) == 1
    assert db.query(Tariff).one().combined_criteria == {"Option": "Gold"}


def test_sample_data(db):
    product_id = generate_sample_data(db)

    assert db.get(Product, product_id).name == "Assurance Automobile Confort"
    grid = find_active_grid(db, product_id)
    priced = GridTariffResolver(db).price(grid.id, {"Zone Géographique": "Thiès", "Option": "Gold", "Age Conducteur": 40})
    assert priced.amount == 110000.0

    glass = db.query(GuaranteeTariff).filter(GuaranteeTariff.percentage_rate == 0.5).one()
    premium = GuaranteeTariffResolver(db).price_guarantee(glass.guarantee_id, {"Valeur à Neuf": 8000000})
    assert premium.amount == 40000.0
    assert db.query(PricingGrid).count() == 1
