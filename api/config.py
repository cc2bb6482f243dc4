"""
Application settings.

Values come from the environment; a `.env` file in the project root is
loaded first so local development does not need exported variables.
Credentials are not validated here: the Supabase client and the credential
decoder raise RuntimeError when they are first built without them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# Load environment variables from the project-root .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    app_env: str = "production"
    log_level: str = "INFO"
    db_timeout_seconds: float = 10.0
    frontend_url: str = ""
    support_email: str = "support@example.com"
    support_phone: str = "03-1234-5678"
    support_hours: str = "Weekdays 10:00-18:00"
    rate_limit_window_minutes: int = 15
    enforce_status_graph: bool = False
    outbox_batch_size: int = 50
    outbox_max_attempts: int = 5
    # Peers whose X-Forwarded-For header is trusted for rate limiting.
    trusted_proxies: Tuple[str, ...] = ()

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


def load_settings() -> Settings:
    """Read Settings from the current environment."""

    return Settings(
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        jwt_secret=os.getenv("JWT_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        app_env=os.getenv("APP_ENV", "production"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        db_timeout_seconds=_env_float("DB_TIMEOUT_SECONDS", 10.0),
        frontend_url=os.getenv("FRONTEND_URL", ""),
        support_email=os.getenv("SUPPORT_EMAIL", "support@example.com"),
        support_phone=os.getenv("SUPPORT_PHONE", "03-1234-5678"),
        support_hours=os.getenv("SUPPORT_HOURS", "Weekdays 10:00-18:00"),
        rate_limit_window_minutes=_env_int("RATE_LIMIT_WINDOW_MINUTES", 15),
        enforce_status_graph=_env_bool("ENFORCE_STATUS_GRAPH", False),
        outbox_batch_size=_env_int("OUTBOX_BATCH_SIZE", 50),
        outbox_max_attempts=_env_int("OUTBOX_MAX_ATTEMPTS", 5),
        trusted_proxies=_env_list("TRUSTED_PROXIES"),
    )


__all__ = ["Settings", "load_settings"]
