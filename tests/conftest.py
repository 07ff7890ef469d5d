"""Shared fixtures: an in-memory database and a TestClient bound to it."""
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import app
from database import build_engine, get_db, init_db
from models import (
    Base, CalculationKind, Criterion, CriterionKind, CriterionValue, GridStatus, PricingGrid, Product,
    ProductStatus, ProductType, Tariff,
)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_product(db, name="Produit Test", type=ProductType.NON_LIFE, status=ProductStatus.ACTIVE):
    product = Product(name=name, type=type, status=status)
    db.add(product)
    db.flush()
    return product


def add_criterion(db, product, name, kind=CriterionKind.CATEGORICAL, values=(), required=True):
    """`values` holds labels or (label, min, max) tuples."""
    criterion = Criterion(product_id=product.id, name=name, kind=kind, required=required,
                          order=len(product.criteria))
    db.add(criterion)
    db.flush()
    for i, value in enumerate(values):
        if isinstance(value, tuple):
            label, low, high = value
            db.add(CriterionValue(criterion_id=criterion.id, value=label, min_value=low, max_value=high, order=i))
        else:
            db.add(CriterionValue(criterion_id=criterion.id, value=value, order=i))
    db.flush()
    db.refresh(criterion)
    return criterion


def add_grid(db, product, status=GridStatus.ACTIVE, date_start=date(2025, 1, 1), name="Grille"):
    grid = PricingGrid(product_id=product.id, name=name, status=status, date_start=date_start)
    db.add(grid)
    db.flush()
    return grid


def add_tariff(db, grid, kind=CalculationKind.FIXED_AMOUNT, **fields):
    tariff = Tariff(grid_id=grid.id, calculation_kind=kind, **fields)
    db.add(tariff)
    db.flush()
    return tariff
