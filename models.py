"""
SQLAlchemy ORM models for product pricing.
Admin tooling writes these rows; the pricing engine only reads them and
writes SimulatedQuote.
"""
import enum
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class ProductType(str, enum.Enum):
    LIFE = "vie"
    NON_LIFE = "non-vie"


class CriterionKind(str, enum.Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    BOOLEAN = "boolean"
    TEXT = "text"


class GridStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FUTURE = "future"


class CalculationKind(str, enum.Enum):
    FIXED_AMOUNT = "fixed_amount"
    PERCENT_OF_NEW_VALUE = "percent_of_new_value"
    PERCENT_OF_MARKET_VALUE = "percent_of_market_value"
    CUSTOM_FORMULA = "custom_formula"


class QuoteStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REFUSED = "refused"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(Enum(ProductType), nullable=False, default=ProductType.NON_LIFE)
    status = Column(Enum(ProductStatus), nullable=False, default=ProductStatus.ACTIVE)
    created_at = Column(DateTime, default=datetime.utcnow)

    criteria = relationship("Criterion", back_populates="product", order_by="Criterion.order")
    grids = relationship("PricingGrid", back_populates="product")
    formulas = relationship("CalculationFormula", back_populates="product")
    guarantees = relationship("Guarantee", back_populates="product")

    @property
    def active_formula(self):
        for formula in self.formulas:
            if formula.is_active:
                return formula
        return None


class Criterion(Base):
    """A named rating factor a product asks the insured for."""
    __tablename__ = "criteria"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    name = Column(String, nullable=False)
    kind = Column(Enum(CriterionKind), nullable=False)
    unit = Column(String(50))
    order = Column(Integer, nullable=False, default=0)
    required = Column(Boolean, default=True)

    product = relationship("Product", back_populates="criteria")
    values = relationship("CriterionValue", back_populates="criterion", order_by="CriterionValue.order")


class CriterionValue(Base):
    """
    One allowed value of a criterion: a literal for categorical/boolean
    criteria, a [min_value, max_value] range for numeric ones. `value` always
    holds the display label ("18-30" for a range).
    """
    __tablename__ = "criterion_values"

    id = Column(Integer, primary_key=True)
    criterion_id = Column(Integer, ForeignKey("criteria.id"), nullable=False)
    value = Column(String, nullable=False)
    min_value = Column(Float)
    max_value = Column(Float)
    order = Column(Integer, nullable=False, default=0)

    criterion = relationship("Criterion", back_populates="values")

    @property
    def is_range(self) -> bool:
        return self.min_value is not None and self.max_value is not None


class PricingGrid(Base):
    """Versioned, time-bounded set of tariffs for one product."""
    __tablename__ = "pricing_grids"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    name = Column(String, nullable=False)
    status = Column(Enum(GridStatus), nullable=False, default=GridStatus.INACTIVE)
    date_start = Column(Date, nullable=False)
    date_end = Column(Date)

    product = relationship("Product", back_populates="grids")
    tariffs = relationship("Tariff", back_populates="grid", order_by="Tariff.id")

    __table_args__ = (
        Index("idx_grid_product_status", "product_id", "status"),
    )


class Tariff(Base):
    """
    One priced row of a grid. Linked to criteria either through the
    (criterion_id, criterion_value_id) pair or through `combined_criteria`,
    a {criterion name: expected value} map.
    """
    __tablename__ = "tariffs"

    id = Column(Integer, primary_key=True)
    grid_id = Column(Integer, ForeignKey("pricing_grids.id"), nullable=False)
    criterion_id = Column(Integer, ForeignKey("criteria.id"))
    criterion_value_id = Column(Integer, ForeignKey("criterion_values.id"))

    calculation_kind = Column(Enum(CalculationKind), nullable=False, default=CalculationKind.FIXED_AMOUNT)
    fixed_amount = Column(Float)
    percentage_rate = Column(Float)
    formula_text = Column(Text)
    combined_criteria = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

    grid = relationship("PricingGrid", back_populates="tariffs")
    criterion = relationship("Criterion")
    criterion_value = relationship("CriterionValue")

    __table_args__ = (
        Index("idx_tariff_grid", "grid_id"),
    )


class CalculationFormula(Base):
    """Product-level custom formula. `variables` holds constants and optional
    `formule_franchise` / `formule_plafond` sub-formulas."""
    __tablename__ = "calculation_formulas"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    name = Column(String, nullable=False)
    formula = Column(Text, nullable=False)
    variables = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)

    product = relationship("Product", back_populates="formulas")


class Guarantee(Base):
    """Individually priced coverage attached to a product."""
    __tablename__ = "guarantees"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"))
    name = Column(String, nullable=False)

    product = relationship("Product", back_populates="guarantees")
    tariffs = relationship("GuaranteeTariff", back_populates="guarantee")


class GuaranteeTariff(Base):
    __tablename__ = "guarantee_tariffs"

    id = Column(Integer, primary_key=True)
    guarantee_id = Column(Integer, ForeignKey("guarantees.id"), nullable=False)

    calculation_kind = Column(Enum(CalculationKind), nullable=False, default=CalculationKind.FIXED_AMOUNT)
    fixed_amount = Column(Float)
    percentage_rate = Column(Float)
    formula_text = Column(Text)

    date_start = Column(Date, nullable=False)
    date_end = Column(Date)
    status = Column(Enum(GridStatus), nullable=False, default=GridStatus.ACTIVE)

    guarantee = relationship("Guarantee", back_populates="tariffs")

    __table_args__ = (
        Index("idx_guarantee_tariff_window", "guarantee_id", "status", "date_start"),
    )


class SimulatedQuote(Base):
    """Output of one simulation call. Status transitions happen elsewhere."""
    __tablename__ = "simulated_quotes"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    grid_id = Column(Integer, ForeignKey("pricing_grids.id"), nullable=False)
    user_id = Column(String)

    criteria = Column(JSON, nullable=False)
    premium = Column(Float, nullable=False)
    deductible = Column(Float, nullable=False, default=0.0)
    cap = Column(Float)
    explanation = Column(Text)

    status = Column(Enum(QuoteStatus), nullable=False, default=QuoteStatus.DRAFT)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
