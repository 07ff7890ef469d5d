import logging

from config import configure_logging, get_settings


def test_defaults(monkeypatch):
    for key in ("DATABASE_URL", "SQL_ECHO", "LOG_LEVEL", "CORS_ORIGINS"):
        monkeypatch.delenv(key, raising=False)
    settings = get_settings()

    assert settings.database_url == "sqlite:///./pricing.db"
    assert settings.sql_echo is False
    assert settings.log_level == "INFO"
    assert settings.cors_origins == ["*"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://pricing@db/pricing")
    monkeypatch.setenv("SQL_ECHO", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example,")
    settings = get_settings()

    assert settings.database_url == "postgresql://pricing@db/pricing"
    assert settings.sql_echo is True
    assert settings.log_level == "DEBUG"
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_empty_value_means_default(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "")
    assert get_settings().log_level == "INFO"


def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    level = root.level
    try:
        configure_logging("WARNING")
        configure_logging("WARNING")
        handlers = [h for h in root.handlers if getattr(h, "_pricing_handler", False)]
        assert len(handlers) == 1
        assert root.level == logging.WARNING
    finally:
        for h in [h for h in root.handlers if getattr(h, "_pricing_handler", False)]:
            root.removeHandler(h)
        root.setLevel(level)
