"""
Insurance Pricing API
Premium simulation and tariff lookup over configured pricing grids.

Endpoints:
- POST /api/simulations - Simulate a quote for a product and grid
- POST /api/grids/{grid_id}/premium - Direct tariff lookup (admin preview)
- POST /api/guarantees/premiums - Price several guarantees at a date
- GET /api/products/{product_id}/active-grid - Current grid of a product
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import configure_logging, get_settings
from database import get_db, init_db
from errors import NotFound, PricingError
from models import GridStatus, PricingGrid
from resolvers import GuaranteeTariffResolver, find_active_grid
from simulation import SimulationOrchestrator, calculate_premium

settings = get_settings()

app = FastAPI(
    title="Insurance Pricing API",
    description="Premium simulation and tariff resolution",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CriteriaMap = Dict[str, Union[bool, float, int, str]]


# === Request/Response Models ===

class SimulationRequest(BaseModel):
    product_id: int
    grid_id: int
    criteria: CriteriaMap = Field(default_factory=dict, description="Rating criteria, name -> value")
    user_id: Optional[str] = None


class SimulationResponse(BaseModel):
    id: int
    product_id: int
    grid_id: int
    criteria: Dict[str, Any]
    premium: float
    deductible: float
    cap: Optional[float]
    status: str
    explanation: Optional[str]
    strategy: str
    formula_used: str
    created_at: datetime
    expires_at: datetime


class PremiumRequest(BaseModel):
    criteria: CriteriaMap = Field(default_factory=dict)


class TariffResponse(BaseModel):
    id: int
    grid_id: int
    calculation_kind: str
    fixed_amount: Optional[float]
    percentage_rate: Optional[float]
    formula_text: Optional[str]
    combined_criteria: Optional[Dict[str, Any]]


class PremiumResponse(BaseModel):
    tariff: TariffResponse
    amount: float


class GuaranteePremiumRequest(BaseModel):
    guarantee_ids: List[int]
    criteria: CriteriaMap = Field(default_factory=dict)
    reference_date: Optional[date] = None


class GuaranteePremiumResponse(BaseModel):
    guarantee_id: int
    guarantee_name: str
    calculation_kind: str
    amount: float
    details: Dict[str, Any]


class GridResponse(BaseModel):
    id: int
    product_id: int
    name: str
    status: str
    date_start: date
    date_end: Optional[date]
    tariff_count: int


@app.exception_handler(PricingError)
async def pricing_error_handler(request, exc: PricingError):
    status = 404 if isinstance(exc, NotFound) else 400
    return JSONResponse(status_code=status, content={"detail": exc.message, **exc.details})


# === API Endpoints ===

@app.post("/api/simulations", response_model=SimulationResponse, status_code=201)
def simulate_quote(request: SimulationRequest, db: Session = Depends(get_db)):
    """
    Validate the criteria, price them and store a draft quote valid 24 hours.
    """
    result = SimulationOrchestrator(db).simulate(
        request.product_id, request.grid_id, request.criteria, request.user_id,
    )
    quote = result.quote
    return SimulationResponse(
        id=quote.id,
        product_id=quote.product_id,
        grid_id=quote.grid_id,
        criteria=quote.criteria,
        premium=quote.premium,
        deductible=quote.deductible,
        cap=quote.cap,
        status=quote.status.value,
        explanation=quote.explanation,
        strategy=result.strategy,
        formula_used=result.formula_used,
        created_at=quote.created_at,
        expires_at=quote.expires_at,
    )


@app.post("/api/grids/{grid_id}/premium", response_model=PremiumResponse)
def grid_premium(grid_id: int, request: PremiumRequest, db: Session = Depends(get_db)):
    """Find the tariff of a grid matching the criteria and price it."""
    tariff, amount = calculate_premium(db, grid_id, request.criteria)
    return PremiumResponse(
        tariff=TariffResponse(
            id=tariff.id,
            grid_id=tariff.grid_id,
            calculation_kind=tariff.calculation_kind.value,
            fixed_amount=tariff.fixed_amount,
            percentage_rate=tariff.percentage_rate,
            formula_text=tariff.formula_text,
            combined_criteria=tariff.combined_criteria,
        ),
        amount=amount,
    )


@app.post("/api/guarantees/premiums", response_model=List[GuaranteePremiumResponse])
def guarantee_premiums(request: GuaranteePremiumRequest, db: Session = Depends(get_db)):
    """
    Price each guarantee with the tariff valid at the reference date.
    Guarantees that cannot be priced are left out of the response.
    """
    resolver = GuaranteeTariffResolver(db)
    results = resolver.price_many(request.guarantee_ids, request.criteria, request.reference_date)
    return [
        GuaranteePremiumResponse(
            guarantee_id=r.guarantee_id,
            guarantee_name=r.guarantee_name,
            calculation_kind=r.calculation_kind,
            amount=r.amount,
            details=r.details,
        )
        for r in results
    ]


@app.get("/api/products/{product_id}/active-grid", response_model=GridResponse)
def active_grid(product_id: int, db: Session = Depends(get_db)):
    grid = find_active_grid(db, product_id)
    return GridResponse(
        id=grid.id,
        product_id=grid.product_id,
        name=grid.name,
        status=grid.status.value,
        date_start=grid.date_start,
        date_end=grid.date_end,
        tariff_count=len(grid.tariffs),
    )


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    """Health check - verify DB connection."""
    active = db.query(PricingGrid).filter(PricingGrid.status == GridStatus.ACTIVE).count()
    return {"status": "healthy", "active_grids": active}


# Initialize DB on startup
@app.on_event("startup")
def startup():
    configure_logging(settings.log_level)
    init_db()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
