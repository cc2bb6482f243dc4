"""
Rate-limit attempt repository (persistence).

Attempts are stored in the `auth_attempts` table so limits hold across
processes and restarts. Counting and recording happen in one database call
(`record_and_count_attempt`), serialized per (identifier, action), so
concurrent callers cannot both read a count below the limit. The limiting
decision lives in services/rate_limiter.py.
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Protocol

from supabase import Client  # type: ignore[import-not-found]

from domain.errors import StoreError
from repositories.client import call_rpc, execute_query, to_iso_utc

_ATTEMPTS_TABLE: str = "auth_attempts"


class AttemptStore(Protocol):
    def record_and_count(self, identifier: str, action: str, since: datetime, at: datetime) -> int:
        """Record one attempt at `at`; return the earlier attempts since `since`."""
        ...

    def purge_before(self, cutoff: datetime) -> int: ...


class SupabaseAttemptStore:
    def __init__(self, client: Client):
        self._client = client

    def record_and_count(self, identifier: str, action: str, since: datetime, at: datetime) -> int:
        result = call_rpc(
            self._client,
            "record_and_count_attempt",
            {
                "p_identifier": identifier,
                "p_action": action,
                "p_since": to_iso_utc(since, name="since"),
                "p_at": to_iso_utc(at, name="at"),
            },
            action="record rate-limit attempt",
        )
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, Mapping):
            result = result.get("record_and_count_attempt")
        if result is None:
            raise StoreError("Failed to record rate-limit attempt: empty response")
        return int(result)

    def purge_before(self, cutoff: datetime) -> int:
        """Delete attempts older than `cutoff`; returns the number removed."""

        builder = (
            self._client.table(_ATTEMPTS_TABLE)
            .delete()
            .lt("attempted_at", to_iso_utc(cutoff, name="cutoff"))
        )
        response = execute_query(builder, action="purge rate-limit attempts")
        return len(getattr(response, "data", None) or [])


__all__ = ["AttemptStore", "SupabaseAttemptStore"]
