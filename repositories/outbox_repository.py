"""
Outbox repository (persistence).

Events are inserted by the request RPC functions in the same transaction as
the change they describe (see repositories/buyback_repository.py). This module
only reads pending events and records delivery outcomes for the relay.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Protocol
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.events import EventType, OutboxEvent
from repositories.client import execute_query, parse_optional_datetime, parse_utc_datetime, to_iso_utc

_OUTBOX_TABLE: str = "buyback_outbox"

# Stored error messages are truncated to this length.
_MAX_ERROR_LENGTH = 1000


class OutboxStore(Protocol):
    def fetch_pending(self, *, limit: int, max_attempts: int) -> List[OutboxEvent]: ...

    def mark_published(self, event_id: UUID, published_at: datetime) -> None: ...

    def mark_failed(self, event: OutboxEvent, error: str) -> None: ...


def event_to_row(event: OutboxEvent) -> dict[str, Any]:
    return {
        "id": str(event.event_id),
        "event_type": event.type.value,
        "request_id": str(event.request_id),
        "request_number": event.request_number,
        "recipient_contact": event.recipient_contact,
        "payload": dict(event.payload),
        "created_at": to_iso_utc(event.created_at, name="created_at"),
        "publish_attempts": event.publish_attempts,
        "published_at": to_iso_utc(event.published_at, name="published_at") if event.published_at else None,
        "last_error": event.last_error,
    }


def row_to_event(row: Mapping[str, Any]) -> OutboxEvent:
    return OutboxEvent(
        event_id=UUID(str(row["id"])),
        type=EventType(str(row["event_type"])),
        request_id=UUID(str(row["request_id"])),
        request_number=str(row["request_number"]),
        recipient_contact=row.get("recipient_contact"),
        payload=row.get("payload") or {},
        created_at=parse_utc_datetime(row["created_at"]),
        publish_attempts=int(row.get("publish_attempts") or 0),
        published_at=parse_optional_datetime(row.get("published_at")),
        last_error=row.get("last_error"),
    )


class SupabaseOutboxStore:
    def __init__(self, client: Client):
        self._client = client

    def fetch_pending(self, *, limit: int, max_attempts: int) -> List[OutboxEvent]:
        """Oldest unpublished events that still have delivery attempts left."""

        builder = (
            self._client.table(_OUTBOX_TABLE)
            .select("*")
            .is_("published_at", "null")
            .lt("publish_attempts", max_attempts)
            .order("created_at")
            .limit(limit)
        )
        response = execute_query(builder, action="fetch pending outbox events")
        rows = getattr(response, "data", None) or []
        return [row_to_event(row) for row in rows]

    def mark_published(self, event_id: UUID, published_at: datetime) -> None:
        builder = (
            self._client.table(_OUTBOX_TABLE)
            .update({"published_at": to_iso_utc(published_at, name="published_at")})
            .eq("id", str(event_id))
        )
        execute_query(builder, action="mark outbox event published")

    def mark_failed(self, event: OutboxEvent, error: str) -> None:
        builder = (
            self._client.table(_OUTBOX_TABLE)
            .update(
                {
                    "publish_attempts": event.publish_attempts + 1,
                    "last_error": error[:_MAX_ERROR_LENGTH],
                }
            )
            .eq("id", str(event.event_id))
        )
        execute_query(builder, action="record outbox delivery failure")


__all__ = ["OutboxStore", "SupabaseOutboxStore", "event_to_row", "row_to_event"]
