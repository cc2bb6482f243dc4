"""
Tests for `services/appraisal_aggregator.py`.

Covers contract rules:
- A valid batch becomes a replacement set stamped with the appraiser and time.
- Condition defaults to B and values default to 0.
- Any invalid item rejects the whole batch, listing every problem.
- The summary history entry carries the count and total.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

import pytest

from domain.buyback import HistoryEntryType, ItemCondition
from domain.errors import ValidationError
from services.appraisal_aggregator import AppraisalAggregator, load_appraisals
from tests.fakes import NOW, InMemoryBuybackRepository, make_request

REQUEST_ID = UUID("00000000-0000-0000-0000-000000000001")


def test_prepare_builds_batch(s1_staff) -> None:
    batch = AppraisalAggregator().prepare(
        REQUEST_ID,
        [
            {"item_name": "Retro console", "item_condition": "A", "market_value": 900, "appraised_value": 500},
            {"item_name": "Handheld", "appraised_value": "700", "appraisal_notes": "Scratched screen"},
        ],
        s1_staff,
        NOW,
    )

    assert batch.count == 2
    assert batch.total == Decimal("1200")
    first, second = batch.appraisals
    assert first.item_condition is ItemCondition.A
    assert second.item_condition is ItemCondition.B
    assert second.market_value == Decimal("0")
    assert {a.appraiser_id for a in batch.appraisals} == {"staff-s1"}
    assert {a.created_at for a in batch.appraisals} == {NOW}
    assert first.appraisal_id != second.appraisal_id


def test_prepare_rejects_whole_batch(s1_staff) -> None:
    with pytest.raises(ValidationError) as exc:
        AppraisalAggregator().prepare(
            REQUEST_ID,
            [
                {"item_name": "Good", "appraised_value": 100},
                {"item_condition": "Z", "appraised_value": -5},
            ],
            s1_staff,
            NOW,
        )

    details = exc.value.details
    assert "Appraisal 2: item_name - This field is required" in details
    assert any(d.startswith("Appraisal 2: item_condition") for d in details)
    assert any(d.startswith("Appraisal 2: appraised_value") for d in details)
    assert not any(d.startswith("Appraisal 1") for d in details)


def test_prepare_rejects_long_notes(s1_staff) -> None:
    with pytest.raises(ValidationError):
        AppraisalAggregator().prepare(
            REQUEST_ID,
            [{"item_name": "Console", "appraisal_notes": "x" * 1001}],
            s1_staff,
            NOW,
        )


def test_summary_entry(s1_staff) -> None:
    aggregator = AppraisalAggregator()
    batch = aggregator.prepare(
        REQUEST_ID,
        [{"item_name": "A", "appraised_value": 500}, {"item_name": "B", "appraised_value": 700}],
        s1_staff,
        NOW,
    )

    entry = aggregator.summary_entry(batch, s1_staff, NOW)

    assert entry.type is HistoryEntryType.APPRAISAL_COMPLETED
    assert entry.appraisal_count == 2
    assert entry.total_value == Decimal("1200")
    assert entry.actor_name == "Hanako"
    assert entry.is_customer_visible is False


def test_load_appraisals_totals_stored_rows(s1_staff) -> None:
    repository = InMemoryBuybackRepository()
    batch = AppraisalAggregator().prepare(
        REQUEST_ID,
        [{"item_name": "A", "appraised_value": 500}, {"item_name": "B", "appraised_value": "700.50"}],
        s1_staff,
        NOW,
    )
    repository.add(make_request(), batch.appraisals)

    appraisals, total = load_appraisals(repository, REQUEST_ID)

    assert len(appraisals) == 2
    assert total == Decimal("1200.50")
