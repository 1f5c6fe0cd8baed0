"""Per-field rule interpreters."""

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from .models import ErrorKind, Record, RuleKind, ValidationError, ValidationRule, is_empty

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_fields(
    rules: Iterable[ValidationRule], record: Record
) -> list[ValidationError]:
    """Check every rule against the record and return all violations."""
    errors: list[ValidationError] = []
    for rule in rules:
        errors.extend(validate_field(rule, record.get(rule.field), record))
    return errors


def validate_field(
    rule: ValidationRule, value: Any, record: Record
) -> list[ValidationError]:
    """Evaluate one rule: required, kind, pattern, then length/range."""
    if is_empty(value):
        if rule.kind == RuleKind.REQUIRED:
            return [_error(rule, rule.message, value)]
        return []

    errors: list[ValidationError] = []

    def fail(message: str) -> None:
        errors.append(_error(rule, message, value))

    number: Optional[float] = None

    if rule.kind == RuleKind.STRING:
        if not isinstance(value, str):
            fail(rule.message)

    elif rule.kind == RuleKind.NUMBER:
        number = to_number(value)
        if number is None:
            fail(rule.message)

    elif rule.kind == RuleKind.DATE:
        if parse_date(value) is None:
            fail(rule.message)

    elif rule.kind == RuleKind.BOOLEAN:
        if not isinstance(value, bool):
            fail(rule.message)

    elif rule.kind == RuleKind.ENUM:
        allowed = rule.enum_values or ()
        if allowed and value not in allowed:
            fail(f"{rule.message} (allowed values: {', '.join(map(str, allowed))})")

    elif rule.kind == RuleKind.EMAIL:
        if not isinstance(value, str) or not EMAIL_RE.match(value):
            fail(rule.message)

    elif rule.kind == RuleKind.CUSTOM:
        if rule.predicate is not None and not rule.predicate(value, record):
            fail(rule.message)

    pattern = rule.compiled_pattern()
    if pattern is not None and isinstance(value, str) and not pattern.search(value):
        fail(f"{rule.message} (invalid format)")

    if rule.kind == RuleKind.NUMBER:
        if number is not None:
            if rule.min is not None and number < rule.min:
                fail(f"{rule.message} (minimum: {_fmt(rule.min)})")
            if rule.max is not None and number > rule.max:
                fail(f"{rule.message} (maximum: {_fmt(rule.max)})")
    elif isinstance(value, str):
        if rule.min is not None and len(value) < rule.min:
            fail(f"{rule.message} (minimum {_fmt(rule.min)} characters)")
        if rule.max is not None and len(value) > rule.max:
            fail(f"{rule.message} (maximum {_fmt(rule.max)} characters)")

    return errors


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def parse_date(value: Any) -> Optional[datetime]:
    """Parse date/datetime objects and ISO-8601 strings.

    Aware datetimes are converted to naive UTC so they compare with naive
    ones.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _error(rule: ValidationRule, message: str, value: Any) -> ValidationError:
    return ValidationError(
        field=rule.field, message=message, kind=ErrorKind.VALIDATION, value=value
    )


def _fmt(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)
