"""
Domain: Appraisal line items.

Rules implemented here:
- Appraisals are child rows of a buyback request, keyed by request_id.
- market_value and appraised_value are never negative.
- The set for a request is only ever replaced as a whole; there is no
  incremental update.
- total_appraised_value is always derived from the stored rows and never
  stored on the parent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from uuid import UUID

from .buyback import ItemCondition
from .time import require_utc_timestamp

MAX_APPRAISAL_NOTES_LENGTH = 1000


@dataclass(frozen=True, slots=True)
class Appraisal:
    appraisal_id: UUID
    request_id: UUID
    item_name: str
    item_condition: ItemCondition
    market_value: Decimal
    appraised_value: Decimal
    appraisal_notes: str
    appraiser_id: Optional[str]
    created_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if not self.item_name:
            raise ValueError("item_name is required")
        if self.market_value < 0:
            raise ValueError("market_value must be >= 0")
        if self.appraised_value < 0:
            raise ValueError("appraised_value must be >= 0")
        if len(self.appraisal_notes) > MAX_APPRAISAL_NOTES_LENGTH:
            raise ValueError(f"appraisal_notes must be <= {MAX_APPRAISAL_NOTES_LENGTH} characters")


def total_appraised_value(appraisals: Iterable[Appraisal]) -> Decimal:
    """Sum of appraised_value over the given rows."""

    return sum((a.appraised_value for a in appraisals), Decimal("0"))


@dataclass(frozen=True, slots=True)
class AppraisalBatch:
    """A validated replacement set for one request, with its derived total."""

    request_id: UUID
    appraisals: Tuple[Appraisal, ...]

    @property
    def total(self) -> Decimal:
        return total_appraised_value(self.appraisals)

    @property
    def count(self) -> int:
        return len(self.appraisals)


__all__ = [
    "MAX_APPRAISAL_NOTES_LENGTH",
    "Appraisal",
    "AppraisalBatch",
    "total_appraised_value",
]
