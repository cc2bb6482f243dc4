"""
Appraisal aggregator.

Validates a staff-submitted appraisal batch and turns it into the replacement
set for a request. The aggregator never writes on its own: the batch is
handed to the request service, which stores it (delete-all, insert-all) in
the same transaction as the rest of the update.

If any item in a batch is invalid the whole batch is rejected, so the stored
set is left exactly as it was.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Sequence, Tuple
from uuid import UUID, uuid4

from domain.appraisal import MAX_APPRAISAL_NOTES_LENGTH, Appraisal, AppraisalBatch, total_appraised_value
from domain.buyback import CommunicationHistoryEntry, HistoryEntryType, ItemCondition
from domain.errors import ValidationError
from domain.validation import (
    ChoiceRule,
    NumberRule,
    RequiredRule,
    TextRule,
    collect_errors,
    validate_field,
)
from repositories.buyback_repository import BuybackRepository
from services.verification_gateway import StaffPrincipal

logger = logging.getLogger(__name__)

_CONDITION_RULE = ChoiceRule(choices=tuple(c.value for c in ItemCondition))
_VALUE_RULE = NumberRule(min_value=Decimal("0"))
_NOTES_RULE = TextRule(max_length=MAX_APPRAISAL_NOTES_LENGTH)
_NAME_RULE = TextRule(max_length=255)


class AppraisalAggregator:
    def __init__(self, *, id_factory: Callable[[], UUID] = uuid4):
        self._id_factory = id_factory

    def prepare(
        self,
        request_id: UUID,
        raw_items: Sequence[Mapping[str, Any]],
        appraiser: StaffPrincipal,
        at: datetime,
    ) -> AppraisalBatch:
        """
        Validate every item and build the replacement set.

        Raises:
            ValidationError: listing every problem in the batch.
        """

        appraisals: List[Appraisal] = []
        errors: List[str] = []

        for index, raw in enumerate(raw_items, start=1):
            if not isinstance(raw, Mapping):
                errors.append(f"Appraisal {index}: must be an object")
                continue

            name = validate_field(raw.get("item_name"), RequiredRule())
            if name.is_valid:
                name = validate_field(name.value, _NAME_RULE, required=True)

            results = {
                "item_name": name,
                "item_condition": validate_field(raw.get("item_condition"), _CONDITION_RULE),
                "market_value": validate_field(raw.get("market_value"), _VALUE_RULE),
                "appraised_value": validate_field(raw.get("appraised_value"), _VALUE_RULE),
                "appraisal_notes": validate_field(raw.get("appraisal_notes"), _NOTES_RULE),
            }
            item_errors = collect_errors(results)
            if item_errors:
                errors.extend(f"Appraisal {index}: {field} - {error}" for field, error in item_errors.items())
                continue

            values = {field: result.value for field, result in results.items()}
            appraisals.append(
                Appraisal(
                    appraisal_id=self._id_factory(),
                    request_id=request_id,
                    item_name=values["item_name"],
                    item_condition=ItemCondition(values["item_condition"] or ItemCondition.B.value),
                    market_value=values["market_value"] if values["market_value"] is not None else Decimal("0"),
                    appraised_value=(
                        values["appraised_value"] if values["appraised_value"] is not None else Decimal("0")
                    ),
                    appraisal_notes=values["appraisal_notes"] or "",
                    appraiser_id=appraiser.staff_id,
                    created_at=at,
                )
            )

        if errors:
            logger.info(
                "Rejected appraisal batch",
                extra={"request_id": str(request_id), "error_count": len(errors)},
            )
            raise ValidationError("Appraisal information is invalid", details=errors)

        return AppraisalBatch(request_id=request_id, appraisals=tuple(appraisals))

    @staticmethod
    def summary_entry(batch: AppraisalBatch, appraiser: StaffPrincipal, at: datetime) -> CommunicationHistoryEntry:
        return CommunicationHistoryEntry(
            timestamp=at,
            actor_id=appraiser.staff_id,
            actor_name=appraiser.display_name,
            type=HistoryEntryType.APPRAISAL_COMPLETED,
            content=f"Appraisal completed: {batch.count} item(s), total {batch.total}",
            appraisal_count=batch.count,
            total_value=batch.total,
        )


def load_appraisals(repository: BuybackRepository, request_id: UUID) -> Tuple[Tuple[Appraisal, ...], Decimal]:
    """Stored appraisal set for a request and its derived total."""

    appraisals = tuple(repository.list_appraisals(request_id))
    return appraisals, total_appraised_value(appraisals)


__all__ = ["AppraisalAggregator", "load_appraisals"]
