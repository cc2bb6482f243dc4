"""
Domain: field validation and sanitization.

Each field kind is a small rule object carrying its own constraint parameters.
Rules are registered by kind so callers can look them up by name:

    validate_field(" A@Example.com ", rule_for("email"))
    validate_field("12", rule_for("number", min_value=0))

A rule never raises for bad input; it returns a FieldResult describing the
outcome. Absent or blank values are valid `None` unless the field is required.
Aggregate validators (items, request numbers) collect FieldResults and raise a
single ValidationError carrying every message.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from .buyback import (
    MAX_ITEMS_PER_REQUEST,
    BuybackItem,
    ItemCategory,
    ItemCondition,
    is_valid_request_number,
)
from .errors import ValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[0-9\-]{10,15}$")
_POSTAL_RE = re.compile(r"^(\d{3}-\d{4}|\d{7})$")
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

MAX_ITEM_ESTIMATED_VALUE = Decimal("9999999")
MAX_ITEM_DESCRIPTION_LENGTH = 500


@dataclass(frozen=True, slots=True)
class FieldResult:
    is_valid: bool
    value: Any = None
    error: Optional[str] = None


def _ok(value: Any) -> FieldResult:
    return FieldResult(is_valid=True, value=value)


def _fail(error: str) -> FieldResult:
    return FieldResult(is_valid=False, error=error)


@dataclass(frozen=True, slots=True)
class RequiredRule:
    kind: ClassVar[str] = "required"

    def check(self, text: str, raw: Any) -> FieldResult:
        return _ok(text)


@dataclass(frozen=True, slots=True)
class EmailRule:
    kind: ClassVar[str] = "email"
    max_length: int = 255

    def check(self, text: str, raw: Any) -> FieldResult:
        value = text.lower()
        if not _EMAIL_RE.match(value):
            return _fail("Enter a valid email address")
        if len(value) > self.max_length:
            return _fail(f"Email address is too long (max {self.max_length} characters)")
        return _ok(value)


@dataclass(frozen=True, slots=True)
class PhoneRule:
    kind: ClassVar[str] = "phone"

    def check(self, text: str, raw: Any) -> FieldResult:
        value = re.sub(r"[^\d+\-]", "", text)
        if not _PHONE_RE.match(value):
            return _fail("Enter a valid phone number (10-15 digits)")
        return _ok(value)


@dataclass(frozen=True, slots=True)
class PostalCodeRule:
    kind: ClassVar[str] = "postal_code"

    def check(self, text: str, raw: Any) -> FieldResult:
        value = re.sub(r"[^\d\-]", "", text)
        if not _POSTAL_RE.match(value):
            return _fail("Enter a valid postal code (e.g. 123-4567)")
        if len(value) == 7:
            value = f"{value[:3]}-{value[3:]}"
        return _ok(value)


@dataclass(frozen=True, slots=True)
class NameRule:
    kind: ClassVar[str] = "name"
    max_length: int = 255

    def check(self, text: str, raw: Any) -> FieldResult:
        if len(text) > self.max_length:
            return _fail(f"Name is too long (max {self.max_length} characters)")
        # Keep international names; drop markup characters only.
        return _ok(re.sub(r"[<>'\"&]", "", text))


@dataclass(frozen=True, slots=True)
class TextRule:
    kind: ClassVar[str] = "text"
    max_length: int = 1000

    def check(self, text: str, raw: Any) -> FieldResult:
        if len(text) > self.max_length:
            return _fail(f"Text is too long (max {self.max_length} characters)")
        return _ok(re.sub(r"[<>]", "", text))


@dataclass(frozen=True, slots=True)
class NumberRule:
    kind: ClassVar[str] = "number"
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None

    def check(self, text: str, raw: Any) -> FieldResult:
        if isinstance(raw, bool):
            return _fail("Enter a valid number")
        try:
            number = Decimal(text)
        except InvalidOperation:
            return _fail("Enter a valid number")
        if not number.is_finite():
            return _fail("Enter a valid number")
        if self.min_value is not None and number < Decimal(self.min_value):
            return _fail(f"Value must be >= {self.min_value}")
        if self.max_value is not None and number > Decimal(self.max_value):
            return _fail(f"Value must be <= {self.max_value}")
        return _ok(number)


@dataclass(frozen=True, slots=True)
class IntegerRule:
    kind: ClassVar[str] = "integer"
    min_value: Optional[int] = None
    max_value: Optional[int] = None

    def check(self, text: str, raw: Any) -> FieldResult:
        if isinstance(raw, bool):
            return _fail("Enter a valid integer")
        try:
            number = int(text, 10)
        except ValueError:
            return _fail("Enter a valid integer")
        if self.min_value is not None and number < self.min_value:
            return _fail(f"Value must be >= {self.min_value}")
        if self.max_value is not None and number > self.max_value:
            return _fail(f"Value must be <= {self.max_value}")
        return _ok(number)


@dataclass(frozen=True, slots=True)
class ChoiceRule:
    kind: ClassVar[str] = "choice"
    choices: Tuple[str, ...] = ()

    def check(self, text: str, raw: Any) -> FieldResult:
        if text not in self.choices:
            return _fail(f"Not a valid choice: {', '.join(self.choices)}")
        return _ok(text)


@dataclass(frozen=True, slots=True)
class DateRule:
    kind: ClassVar[str] = "date"

    def check(self, text: str, raw: Any) -> FieldResult:
        if isinstance(raw, date):
            return _ok(raw)
        try:
            return _ok(date.fromisoformat(text[:10]))
        except ValueError:
            return _fail("Enter a valid date (YYYY-MM-DD)")


@dataclass(frozen=True, slots=True)
class TimeRule:
    kind: ClassVar[str] = "time"

    def check(self, text: str, raw: Any) -> FieldResult:
        if not _TIME_RE.match(text):
            return _fail("Enter a valid time (HH:MM)")
        hours, minutes = text.split(":")
        return _ok(f"{int(hours):02d}:{minutes}")


FIELD_RULES: Dict[str, Type[Any]] = {
    rule.kind: rule
    for rule in (
        RequiredRule,
        EmailRule,
        PhoneRule,
        PostalCodeRule,
        NameRule,
        TextRule,
        NumberRule,
        IntegerRule,
        ChoiceRule,
        DateRule,
        TimeRule,
    )
}


def rule_for(kind: str, **options: Any) -> Any:
    """Build the rule registered for `kind` with its constraint parameters."""

    try:
        rule_cls = FIELD_RULES[kind]
    except KeyError:
        raise ValueError(f"Unknown validation kind: {kind!r}") from None
    return rule_cls(**options)


def validate_field(value: Any, rule: Any, *, required: bool = False) -> FieldResult:
    """Run one rule against one raw value."""

    is_required = required or rule.kind == "required"
    if value is None:
        return _fail("This field is required") if is_required else _ok(None)

    text = str(value).strip()
    if text == "":
        return _fail("This field is required") if is_required else _ok(None)

    return rule.check(text, value)


def collect_errors(results: Mapping[str, FieldResult]) -> Dict[str, str]:
    return {name: result.error for name, result in results.items() if not result.is_valid and result.error}


def require_valid(results: Mapping[str, FieldResult], message: str = "Validation failed") -> Dict[str, Any]:
    """Raise one ValidationError for every failed field, else return the cleaned values."""

    errors = collect_errors(results)
    if errors:
        raise ValidationError(message, details=errors)
    return {name: result.value for name, result in results.items()}


def _validate_item_count(raw_items: Any) -> None:
    if not isinstance(raw_items, Sequence) or isinstance(raw_items, (str, bytes)):
        raise ValidationError("Items must be a list")
    if len(raw_items) == 0:
        raise ValidationError("At least one item is required")
    if len(raw_items) > MAX_ITEMS_PER_REQUEST:
        raise ValidationError(f"At most {MAX_ITEMS_PER_REQUEST} items can be submitted at once")


def validate_buyback_items(raw_items: Any) -> Tuple[BuybackItem, ...]:
    """
    Validate the submitted item list and build the immutable snapshot.

    Every per-item problem is collected before raising, so the caller sees all
    of them at once.
    """

    _validate_item_count(raw_items)

    category_rule = ChoiceRule(choices=tuple(c.value for c in ItemCategory))
    condition_rule = ChoiceRule(choices=tuple(c.value for c in ItemCondition))
    value_rule = NumberRule(min_value=Decimal("0"), max_value=MAX_ITEM_ESTIMATED_VALUE)
    description_rule = TextRule(max_length=MAX_ITEM_DESCRIPTION_LENGTH)
    label_rule = TextRule(max_length=255)
    year_rule = IntegerRule(min_value=1900, max_value=2100)

    items: List[BuybackItem] = []
    errors: List[str] = []

    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, Mapping):
            errors.append(f"Item {index}: must be an object")
            continue

        results = {
            "name": validate_field(raw.get("name"), RequiredRule()),
            "category": validate_field(raw.get("category"), category_rule, required=True),
            "condition": validate_field(raw.get("condition"), condition_rule),
            "estimated_value": validate_field(raw.get("estimated_value"), value_rule),
            "description": validate_field(raw.get("description"), description_rule),
            "manufacturer": validate_field(raw.get("manufacturer"), label_rule),
            "model": validate_field(raw.get("model"), label_rule),
            "year": validate_field(raw.get("year"), year_rule),
        }
        item_errors = collect_errors(results)
        if item_errors:
            errors.extend(f"Item {index}: {name} - {error}" for name, error in item_errors.items())
            continue

        values = {name: result.value for name, result in results.items()}
        items.append(
            BuybackItem(
                name=values["name"],
                category=ItemCategory(values["category"]),
                condition=ItemCondition(values["condition"] or ItemCondition.B.value),
                estimated_value=values["estimated_value"] if values["estimated_value"] is not None else Decimal("0"),
                description=values["description"] or "",
                manufacturer=values["manufacturer"] or "",
                model=values["model"] or "",
                year=values["year"],
            )
        )

    if errors:
        raise ValidationError("Item information is invalid", details=errors)

    return tuple(items)


def validate_request_number(value: Any) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError("Request number is required")
    if not is_valid_request_number(value):
        raise ValidationError(
            "Invalid request number format",
            details={"expected_format": "BR{YYYYMMDD}-{NNNN}"},
        )
    return value


__all__ = [
    "FieldResult",
    "FIELD_RULES",
    "rule_for",
    "validate_field",
    "collect_errors",
    "require_valid",
    "validate_buyback_items",
    "validate_request_number",
]
