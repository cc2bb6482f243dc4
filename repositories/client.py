"""
Supabase client initialization and call helpers.

The client is built on first use from explicit credentials (see
api/config.py for where they come from) instead of at import time, so domain
code and tests can import repositories without a configured database.

Every postgrest call in the repositories goes through `execute_query` or
`call_rpc`, which translate transport and database failures into the domain
error taxonomy:
- httpx timeouts      -> StoreTimeoutError (outcome unknown, never retried here)
- postgrest APIError  -> StoreError
- response.error      -> StoreError
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import httpx
from postgrest.exceptions import APIError

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, ClientOptions, create_client  # type: ignore[import-not-found]

from domain.errors import StoreError, StoreTimeoutError
from domain.time import require_utc_timestamp

logger = logging.getLogger(__name__)


def create_supabase_client(url: Optional[str], key: Optional[str], *, timeout_seconds: float = 10) -> Client:
    """
    Build a Supabase client with a per-call postgrest deadline.

    Raises:
        RuntimeError: if the URL or key is missing.
    """

    if not url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    options = ClientOptions(postgrest_client_timeout=timeout_seconds)
    return create_client(url, key, options=options)


def to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_optional_datetime(value: Any) -> Optional[datetime]:
    return parse_utc_datetime(value) if value else None


def execute_query(builder: Any, *, action: str) -> Any:
    """Run a postgrest builder and return the response, mapping failures."""

    try:
        response = builder.execute()
    except httpx.TimeoutException as e:
        logger.error("Supabase call timed out", extra={"action": action})
        raise StoreTimeoutError(f"Timed out while trying to {action}") from e
    except APIError as e:
        logger.error("Supabase call failed", extra={"action": action, "error": e.message})
        raise StoreError(f"Failed to {action}: {e.message}") from e
    except httpx.HTTPError as e:
        logger.error("Supabase transport error", extra={"action": action, "error": str(e)})
        raise StoreError(f"Failed to {action}: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise StoreError(f"Failed to {action}: {error}")
    return response


def call_rpc(client: Client, function: str, params: Mapping[str, Any], *, action: str) -> Any:
    """
    Invoke a Postgres function and return its JSON result.

    supabase-py raises APIError for some JSON results returned by a function,
    including successful ones; a payload with `success: true` inside the
    APIError is therefore treated as the result.
    """

    try:
        response = client.rpc(function, dict(params)).execute()
    except httpx.TimeoutException as e:
        logger.error("Supabase RPC timed out", extra={"action": action, "function": function})
        raise StoreTimeoutError(f"Timed out while trying to {action}") from e
    except APIError as e:
        payload = _api_error_payload(e)
        if payload.get("success") is True:
            return payload
        logger.error(
            "Supabase RPC failed",
            extra={"action": action, "function": function, "error": e.message},
        )
        raise StoreError(f"Failed to {action}: {e.message}") from e
    except httpx.HTTPError as e:
        logger.error("Supabase transport error", extra={"action": action, "function": function})
        raise StoreError(f"Failed to {action}: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise StoreError(f"Failed to {action}: {error}")
    return response.data


def _api_error_payload(error: APIError) -> Mapping[str, Any]:
    payload = error.json() if callable(getattr(error, "json", None)) else {}
    return payload if isinstance(payload, Mapping) else {}


__all__ = [
    "create_supabase_client",
    "to_iso_utc",
    "parse_utc_datetime",
    "parse_optional_datetime",
    "execute_query",
    "call_rpc",
]
