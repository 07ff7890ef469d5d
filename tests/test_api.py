from datetime import date, datetime

from conftest import add_criterion, add_grid, add_product, add_tariff
from models import CalculationKind, CriterionKind, Guarantee, GuaranteeTariff


def seed(db):
    product = add_product(db)
    age = add_criterion(db, product, "Age", kind=CriterionKind.NUMERIC, values=[("18-65", 18, 65)])
    add_criterion(db, product, "Zone", values=["Dakar", "Thiès"], required=False)
    grid = add_grid(db, product)
    add_tariff(db, grid, fixed_amount=20000, criterion_id=age.id, criterion_value_id=age.values[0].id)
    add_tariff(db, grid, CalculationKind.PERCENT_OF_NEW_VALUE, percentage_rate=5,
               combined_criteria={"Zone": "Dakar", "Age": "18-65"})
    db.commit()
    return product, grid


def test_simulation(client, db):
    product, grid = seed(db)
    r = client.post("/api/simulations", json={"product_id": product.id, "grid_id": grid.id, "criteria": {"Age": 30}})

    assert r.status_code == 201
    body = r.json()
    assert body["premium"] == 20000.0
    assert body["status"] == "draft"
    assert body["strategy"] == "relational"
    created = datetime.fromisoformat(body["created_at"])
    expires = datetime.fromisoformat(body["expires_at"])
    assert (expires - created).total_seconds() == 24 * 3600


def test_simulation_missing_criterion(client, db):
    product, grid = seed(db)
    r = client.post("/api/simulations", json={"product_id": product.id, "grid_id": grid.id, "criteria": {}})

    assert r.status_code == 400
    assert r.json()["criterion"] == "Age"


def test_simulation_unknown_product(client, db):
    _, grid = seed(db)
    r = client.post("/api/simulations", json={"product_id": 999, "grid_id": grid.id, "criteria": {"Age": 30}})
    assert r.status_code == 404


def test_grid_premium_percentage(client, db):
    _, grid = seed(db)
    r = client.post(f"/api/grids/{grid.id}/premium",
                    json={"criteria": {"Zone": "Dakar", "Age": 40, "Valeur à Neuf": 1000000}})

    assert r.status_code == 200
    body = r.json()
    assert body["amount"] == 50000.0
    assert body["tariff"]["calculation_kind"] == "percent_of_new_value"


def test_grid_premium_missing_value(client, db):
    _, grid = seed(db)
    r = client.post(f"/api/grids/{grid.id}/premium", json={"criteria": {"Zone": "Dakar", "Age": 40}})

    assert r.status_code == 400
    assert "new value" in r.json()["detail"]


def test_grid_premium_no_match(client, db):
    _, grid = seed(db)
    r = client.post(f"/api/grids/{grid.id}/premium", json={"criteria": {"Couleur": "Rouge"}})

    assert r.status_code == 404
    assert r.json()["expected_criteria"] == ["Zone", "Age"]


def test_guarantee_premiums(client, db):
    product, _ = seed(db)
    glass = Guarantee(product_id=product.id, name="Bris de glace")
    theft = Guarantee(product_id=product.id, name="Vol")
    db.add_all([glass, theft])
    db.flush()
    db.add(GuaranteeTariff(guarantee_id=glass.id, calculation_kind=CalculationKind.FIXED_AMOUNT,
                           fixed_amount=7500, date_start=date(2025, 1, 1)))
    db.commit()

    r = client.post("/api/guarantees/premiums", json={
        "guarantee_ids": [glass.id, theft.id], "criteria": {}, "reference_date": "2025-04-01",
    })
    assert r.status_code == 200
    assert [(g["guarantee_name"], g["amount"]) for g in r.json()] == [("Bris de glace", 7500.0)]


def test_active_grid(client, db):
    product, grid = seed(db)
    r = client.get(f"/api/products/{product.id}/active-grid")
    assert r.status_code == 200
    assert r.json()["id"] == grid.id
    assert r.json()["tariff_count"] == 2

    assert client.get("/api/products/999/active-grid").status_code == 404


def test_health(client, db):
    seed(db)
    assert client.get("/api/health").json() == {"status": "healthy", "active_grids": 1}
