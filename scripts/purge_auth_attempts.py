#!/usr/bin/env python3
"""
Purge expired rate-limit attempts.

Attempts older than the rate-limit window no longer affect any decision.

Usage:
    python purge_auth_attempts.py
"""

import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.config import load_settings
from domain.time import SystemClock
from repositories.client import create_supabase_client
from repositories.rate_limit_repository import SupabaseAttemptStore
from services.rate_limiter import RateLimiter


def purge_auth_attempts() -> int:
    """Delete attempts that fell out of the window and return how many were removed."""

    settings = load_settings()
    client = create_supabase_client(
        settings.supabase_url,
        settings.supabase_key,
        timeout_seconds=settings.db_timeout_seconds,
    )
    limiter = RateLimiter(
        SupabaseAttemptStore(client),
        SystemClock(),
        window=timedelta(minutes=settings.rate_limit_window_minutes),
    )
    return limiter.purge_expired()


if __name__ == "__main__":
    removed = purge_auth_attempts()
    print(f"Removed {removed} expired attempts")
