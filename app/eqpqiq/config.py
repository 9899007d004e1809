import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    app_base_url: str
    resend_api_key: str
    from_email: str
    admin_email: str
    email_timeout_seconds: int

    cron_secret: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///eqpqiq.db"),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:5000").rstrip("/"),
        resend_api_key=_getenv("RESEND_API_KEY", ""),
        from_email=_getenv("FROM_EMAIL", "EQ PQ IQ <noreply@eqpqiq.com>"),
        admin_email=_getenv("ADMIN_EMAIL", "admin@eqpqiq.com").lower(),
        email_timeout_seconds=_getenv_int("EMAIL_TIMEOUT_SECONDS", 20),
        cron_secret=_getenv("CRON_SECRET", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_BASE_URL": s.app_base_url,
        "RESEND_API_KEY": s.resend_api_key,
        "FROM_EMAIL": s.from_email,
        "ADMIN_EMAIL": s.admin_email,
        "EMAIL_TIMEOUT_SECONDS": s.email_timeout_seconds,
        "CRON_SECRET": s.cron_secret,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # JSON API only; bodies are small
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
        "JSON_SORT_KEYS": False,
    }
