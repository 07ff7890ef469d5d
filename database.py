"""
Database setup - SQLAlchemy, SQLite unless DATABASE_URL says otherwise.
Grids, tariffs and formulas are maintained by the admin back-office; this
service reads them and writes simulated quotes.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import get_settings
from models import Base


def build_engine(url: str, echo: bool = False, **kwargs):
    """Engine for `url`; SQLite connections may be shared across threads."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=echo, **kwargs)


settings = get_settings()
engine = build_engine(settings.database_url, echo=settings.sql_echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all tables on `bind` (default: the configured engine)."""
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Request-scoped session for FastAPI's Depends."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
