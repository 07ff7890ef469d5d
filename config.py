"""
Runtime configuration, read from environment variables.

Env:
  DATABASE_URL  (default: sqlite:///./pricing.db)
  SQL_ECHO      (default: off)
  LOG_LEVEL     (default: INFO)
  CORS_ORIGINS  (comma-separated, default: *)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if v is not None and v != "" else default


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool
    log_level: str
    cors_origins: List[str]


def get_settings() -> Settings:
    origins = _env("CORS_ORIGINS", "*") or "*"
    return Settings(
        database_url=_env("DATABASE_URL", "sqlite:///./pricing.db") or "sqlite:///./pricing.db",
        sql_echo=(_env("SQL_ECHO", "0") or "0").lower() in ("1", "true", "yes", "on"),
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Install one stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level or get_settings().log_level)
    if not any(getattr(h, "_pricing_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
        handler._pricing_handler = True
        root.addHandler(handler)
