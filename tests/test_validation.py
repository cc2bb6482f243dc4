"""
Tests for `domain/validation.py`.

Covers contract rules:
- Absent or blank values are valid None unless required.
- Each rule sanitizes or normalizes its value (email lowercased, postal code
  hyphenated, time zero-padded, markup stripped).
- Numbers reject booleans, non-finite values and out-of-range values.
- Item validation reports every problem at once, prefixed "Item N: field".
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from domain.buyback import ItemCategory, ItemCondition
from domain.errors import ValidationError
from domain.validation import (
    FIELD_RULES,
    require_valid,
    rule_for,
    validate_buyback_items,
    validate_field,
    validate_request_number,
)


def test_blank_values_are_valid_unless_required() -> None:
    assert validate_field(None, rule_for("email")).value is None
    assert validate_field("   ", rule_for("email")).is_valid is True

    result = validate_field("", rule_for("email"), required=True)
    assert result.is_valid is False
    assert result.error == "This field is required"

    assert validate_field(None, rule_for("required")).is_valid is False


def test_registry_covers_every_field_kind() -> None:
    assert set(FIELD_RULES) == {
        "required",
        "email",
        "phone",
        "postal_code",
        "name",
        "text",
        "number",
        "integer",
        "choice",
        "date",
        "time",
    }

    with pytest.raises(ValueError):
        rule_for("colour")


def test_email_is_trimmed_and_lowercased() -> None:
    assert validate_field("  Taro@Example.COM ", rule_for("email")).value == "taro@example.com"
    assert validate_field("not-an-email", rule_for("email")).is_valid is False


def test_phone_strips_formatting() -> None:
    assert validate_field("090 (1234) 5678", rule_for("phone")).value == "09012345678"
    assert validate_field("12345", rule_for("phone")).is_valid is False


def test_postal_code_is_normalized() -> None:
    assert validate_field("1500001", rule_for("postal_code")).value == "150-0001"
    assert validate_field("150-0001", rule_for("postal_code")).value == "150-0001"
    assert validate_field("15-0001", rule_for("postal_code")).is_valid is False


def test_name_and_text_strip_markup() -> None:
    assert validate_field("<b>Taro</b>", rule_for("name")).value == "bTaro/b"
    assert validate_field("a" * 11, rule_for("text", max_length=10)).is_valid is False


def test_number_rule() -> None:
    rule = rule_for("number", min_value=Decimal("0"), max_value=Decimal("100"))

    assert validate_field("12.5", rule).value == Decimal("12.5")
    assert validate_field(7, rule).value == Decimal("7")
    assert validate_field(True, rule).is_valid is False
    assert validate_field("NaN", rule).is_valid is False
    assert validate_field("Infinity", rule).is_valid is False
    assert validate_field("-1", rule).is_valid is False
    assert validate_field("101", rule).is_valid is False


def test_integer_choice_date_and_time_rules() -> None:
    assert validate_field("1999", rule_for("integer", min_value=1900)).value == 1999
    assert validate_field("19.5", rule_for("integer")).is_valid is False

    assert validate_field("A", rule_for("choice", choices=("A", "B"))).value == "A"
    assert validate_field("Z", rule_for("choice", choices=("A", "B"))).is_valid is False

    assert validate_field("2025-02-01", rule_for("date")).value == date(2025, 2, 1)
    assert validate_field("2025-02-30", rule_for("date")).is_valid is False

    assert validate_field("9:05", rule_for("time")).value == "09:05"
    assert validate_field("24:00", rule_for("time")).is_valid is False


def test_require_valid_collects_every_error() -> None:
    results = {
        "email": validate_field("bad", rule_for("email")),
        "phone": validate_field("123", rule_for("phone")),
        "name": validate_field("Taro", rule_for("name")),
    }

    with pytest.raises(ValidationError) as exc:
        require_valid(results, "Submission is invalid")

    assert set(exc.value.details) == {"email", "phone"}


def test_validate_buyback_items_builds_snapshot() -> None:
    items = validate_buyback_items(
        [
            {"name": "Retro console", "category": "retro", "condition": "A", "estimated_value": 1000, "year": 1990},
            {"name": "Handheld", "category": "handheld", "estimated_value": "2000"},
        ]
    )

    assert len(items) == 2
    assert items[0].condition is ItemCondition.A
    assert items[0].year == 1990
    assert items[1].condition is ItemCondition.B
    assert items[1].category is ItemCategory.HANDHELD
    assert sum(i.estimated_value for i in items) == Decimal("3000")


def test_validate_buyback_items_reports_all_problems() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_buyback_items(
            [
                {"category": "retro"},
                {"name": "Console", "category": "spaceship", "year": 1800},
                "not an item",
            ]
        )

    details = exc.value.details
    assert "Item 1: name - This field is required" in details
    assert any(d.startswith("Item 2: category") for d in details)
    assert any(d.startswith("Item 2: year") for d in details)
    assert "Item 3: must be an object" in details


@pytest.mark.parametrize("raw", [None, [], "items", [{"name": "x", "category": "toy"}] * 51])
def test_validate_buyback_items_rejects_bad_lists(raw) -> None:
    with pytest.raises(ValidationError):
        validate_buyback_items(raw)


def test_validate_request_number() -> None:
    assert validate_request_number("BR20250106-0001") == "BR20250106-0001"

    with pytest.raises(ValidationError):
        validate_request_number("")
    with pytest.raises(ValidationError) as exc:
        validate_request_number("BR-1")
    assert exc.value.details == {"expected_format": "BR{YYYYMMDD}-{NNNN}"}
