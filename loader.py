"""
Spreadsheet-to-database loader for tariff grids.
Reads an Excel/CSV sheet and replaces the tariffs of one pricing grid.
"""
import logging
from datetime import date

import pandas as pd
from sqlalchemy.orm import Session

from criteria import format_number
from database import SessionLocal, init_db
from errors import NotFound, ValidationFailed
from models import (
    CalculationKind, Criterion, CriterionKind, CriterionValue, GridStatus, Guarantee, GuaranteeTariff,
    PricingGrid, Product, ProductStatus, ProductType, Tariff,
)
from normalizer import normalize

log = logging.getLogger(__name__)

AMOUNT_COLUMNS = ("montant", "montant_fixe", "fixed_amount", "prime")
RATE_COLUMNS = ("taux", "taux_pourcentage", "percentage_rate")
FORMULA_COLUMNS = ("formule", "formule_calcul", "formula", "formula_text")
KIND_COLUMNS = ("type_calcul", "calculation_kind")

KIND_ALIASES = {
    "montant_fixe": CalculationKind.FIXED_AMOUNT,
    "pourcentage_valeur_neuve": CalculationKind.PERCENT_OF_NEW_VALUE,
    "pourcentage_valeur_venale": CalculationKind.PERCENT_OF_MARKET_VALUE,
    "formule_personnalisee": CalculationKind.CUSTOM_FORMULA,
}


def _column_key(name) -> str:
    return normalize(name).replace(" ", "_")


def _cell_text(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return format_number(value)
    return str(value).strip()


def _parse_kind(raw) -> CalculationKind:
    key = _column_key(raw)
    if key in KIND_ALIASES:
        return KIND_ALIASES[key]
    try:
        return CalculationKind(key)
    except ValueError:
        raise ValidationFailed(f"Unknown calculation kind: {raw}") from None


def read_sheet(source) -> pd.DataFrame:
    if isinstance(source, pd.DataFrame):
        return source.copy()
    if str(source).lower().endswith(".csv"):
        return pd.read_csv(source)
    return pd.read_excel(source)


def rows_to_tariffs(df: pd.DataFrame, grid_id: int) -> list:
    """
    One combined-criteria Tariff per row. Amount/rate/formula/kind columns
    feed the calculation; every other column is a criterion.
    """
    df.columns = [str(c).strip() for c in df.columns]
    roles = {}
    for column in df.columns:
        key = _column_key(column)
        for role, aliases in (("amount", AMOUNT_COLUMNS), ("rate", RATE_COLUMNS),
                              ("formula", FORMULA_COLUMNS), ("kind", KIND_COLUMNS)):
            if key in aliases:
                roles.setdefault(role, column)
                break
        else:
            roles.setdefault("criteria", []).append(column)

    if "amount" not in roles and "rate" not in roles and "formula" not in roles:
        raise ValidationFailed("Sheet needs an amount, rate or formula column")

    tariffs = []
    for _, row in df.iterrows():
        def cell(role):
            column = roles.get(role)
            return None if column is None or pd.isna(row[column]) else row[column]

        combined = {c: _cell_text(row[c]) for c in roles.get("criteria", []) if not pd.isna(row[c])}
        amount, rate, formula = cell("amount"), cell("rate"), cell("formula")

        if cell("kind") is not None:
            kind = _parse_kind(cell("kind"))
        elif formula is not None:
            kind = CalculationKind.CUSTOM_FORMULA
        elif rate is not None:
            kind = CalculationKind.PERCENT_OF_NEW_VALUE
        else:
            kind = CalculationKind.FIXED_AMOUNT

        tariffs.append(Tariff(
            grid_id=grid_id,
            calculation_kind=kind,
            fixed_amount=float(amount) if amount is not None else None,
            percentage_rate=float(rate) if rate is not None else None,
            formula_text=str(formula).strip() if formula is not None else None,
            combined_criteria=combined or None,
        ))
    return tariffs


def load_tariff_sheet(source, grid_id: int, db: Session = None) -> int:
    """
    Replace the tariffs of grid `grid_id` with the rows of `source`
    (a path to .xlsx/.xls/.csv, or a DataFrame).

    Returns: number of tariffs loaded
    """
    own_session = db is None
    db = db or SessionLocal()

    try:
        if db.get(PricingGrid, grid_id) is None:
            raise NotFound(f"Pricing grid {grid_id} not found")

        df = read_sheet(source)
        log.info("read %d rows for grid %s", len(df), grid_id)
        tariffs = rows_to_tariffs(df, grid_id)

        db.query(Tariff).filter(Tariff.grid_id == grid_id).delete()
        db.add_all(tariffs)
        db.commit()
        log.info("loaded %d tariffs into grid %s", len(tariffs), grid_id)
        return len(tariffs)

    except Exception:
        db.rollback()
        raise
    finally:
        if own_session:
            db.close()


def generate_sample_data(db: Session = None) -> int:
    """
    Seed a demo auto product: criteria, an active combined-criteria grid and
    two guarantees with dated tariffs. Returns the product id.
    """
    own_session = db is None
    if own_session:
        init_db()
    db = db or SessionLocal()

    try:
        product = Product(name="Assurance Automobile Confort", type=ProductType.NON_LIFE,
                          status=ProductStatus.ACTIVE)
        db.add(product)
        db.flush()

        zones = ["Dakar", "Thiès", "Saint-Louis"]
        options = ["Essentiel", "Confort", "Gold"]
        zone = Criterion(product_id=product.id, name="Zone Géographique", kind=CriterionKind.CATEGORICAL, order=1)
        option = Criterion(product_id=product.id, name="Option", kind=CriterionKind.CATEGORICAL, order=2)
        age = Criterion(product_id=product.id, name="Age Conducteur", kind=CriterionKind.NUMERIC, unit="ans", order=3)
        new_value = Criterion(product_id=product.id, name="Valeur à Neuf", kind=CriterionKind.NUMERIC,
                              unit="FCFA", order=4, required=False)
        db.add_all([zone, option, age, new_value])
        db.flush()

        for i, label in enumerate(zones):
            db.add(CriterionValue(criterion_id=zone.id, value=label, order=i))
        for i, label in enumerate(options):
            db.add(CriterionValue(criterion_id=option.id, value=label, order=i))
        age_brackets = [(18, 25), (26, 65), (66, 99)]
        for i, (low, high) in enumerate(age_brackets):
            db.add(CriterionValue(criterion_id=age.id, value=f"{low}-{high}",
                                  min_value=low, max_value=high, order=i))

        grid = PricingGrid(product_id=product.id, name="Grille 2025", status=GridStatus.ACTIVE,
                           date_start=date(2025, 1, 1))
        db.add(grid)
        db.flush()

        zone_factor = {"Dakar": 1.2, "Thiès": 1.0, "Saint-Louis": 0.9}
        option_base = {"Essentiel": 45000, "Confort": 70000, "Gold": 110000}
        age_factor = {(18, 25): 1.5, (26, 65): 1.0, (66, 99): 1.3}
        count = 0
        for zone_label in zones:
            for option_label in options:
                for bracket in age_brackets:
                    amount = option_base[option_label] * zone_factor[zone_label] * age_factor[bracket]
                    db.add(Tariff(
                        grid_id=grid.id,
                        calculation_kind=CalculationKind.FIXED_AMOUNT,
                        fixed_amount=round(amount, 2),
                        combined_criteria={
                            "Zone Géographique": zone_label,
                            "Option": option_label,
                            "Age Conducteur": f"{bracket[0]}-{bracket[1]}",
                        },
                    ))
                    count += 1

        glass = Guarantee(product_id=product.id, name="Bris de glace")
        theft = Guarantee(product_id=product.id, name="Vol")
        db.add_all([glass, theft])
        db.flush()
        db.add_all([
            GuaranteeTariff(guarantee_id=glass.id, calculation_kind=CalculationKind.PERCENT_OF_NEW_VALUE,
                            percentage_rate=0.4, date_start=date(2024, 1, 1), date_end=date(2024, 12, 31)),
            GuaranteeTariff(guarantee_id=glass.id, calculation_kind=CalculationKind.PERCENT_OF_NEW_VALUE,
                            percentage_rate=0.5, date_start=date(2025, 1, 1)),
            GuaranteeTariff(guarantee_id=theft.id, calculation_kind=CalculationKind.CUSTOM_FORMULA,
                            fixed_amount=10000, formula_text="montant_base + valeur_neuve * 0.01",
                            date_start=date(2025, 1, 1)),
        ])

        db.commit()
        log.info("generated product %s with %d tariffs", product.id, count)
        return product.id

    except Exception:
        db.rollback()
        raise
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    import sys

    from config import configure_logging

    configure_logging()
    if len(sys.argv) > 2:
        # Load a sheet into an existing grid
        load_tariff_sheet(sys.argv[1], int(sys.argv[2]))
    else:
        generate_sample_data()
