"""Tests for per-field rule interpreters."""

from datetime import date, datetime

import pytest

from sheetgate.field_rules import parse_date, to_number, validate_field, validate_fields
from sheetgate.models import ErrorKind, RuleKind, ValidationRule


def rule(kind, **kwargs):
    return ValidationRule(field="f", kind=kind, message="Bad value", **kwargs)


class TestRequired:
    """Tests for presence checks."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_missing_value_fails(self, value):
        errors = validate_field(rule(RuleKind.REQUIRED), value, {})

        assert len(errors) == 1
        assert errors[0].field == "f"
        assert errors[0].kind == ErrorKind.VALIDATION

    @pytest.mark.parametrize("kind", [RuleKind.STRING, RuleKind.NUMBER, RuleKind.DATE])
    def test_optional_kinds_skip_empty_values(self, kind):
        assert validate_field(rule(kind, min=3), None, {}) == []
        assert validate_field(rule(kind, min=3), "", {}) == []

    def test_zero_and_false_are_present(self):
        assert validate_field(rule(RuleKind.REQUIRED), 0, {}) == []
        assert validate_field(rule(RuleKind.REQUIRED), False, {}) == []

    def test_required_checks_length(self):
        errors = validate_field(rule(RuleKind.REQUIRED, min=2, max=4), "a", {})

        assert [e.message for e in errors] == ["Bad value (minimum 2 characters)"]


class TestKinds:
    """Tests for type checks."""

    def test_string(self):
        assert validate_field(rule(RuleKind.STRING), "text", {}) == []
        assert len(validate_field(rule(RuleKind.STRING), 12, {})) == 1

    @pytest.mark.parametrize("value", [3, 2.5, "4", " 7.5 "])
    def test_number_accepts_numeric_values(self, value):
        assert validate_field(rule(RuleKind.NUMBER), value, {}) == []

    @pytest.mark.parametrize("value", ["abc", True, [1], "nan"])
    def test_number_rejects_non_numeric_values(self, value):
        assert len(validate_field(rule(RuleKind.NUMBER), value, {})) == 1

    def test_number_range(self):
        number_rule = rule(RuleKind.NUMBER, min=0, max=100)

        assert validate_field(number_rule, 50, {}) == []
        assert validate_field(number_rule, -1, {})[0].message == "Bad value (minimum: 0)"
        assert validate_field(number_rule, 101, {})[0].message == "Bad value (maximum: 100)"

    def test_fractional_bound_is_reported_as_is(self):
        errors = validate_field(rule(RuleKind.NUMBER, min=0.25), 0.1, {})

        assert errors[0].message == "Bad value (minimum: 0.25)"

    def test_date(self):
        assert validate_field(rule(RuleKind.DATE), "2024-06-01", {}) == []
        assert validate_field(rule(RuleKind.DATE), "2024-06-01T10:00:00Z", {}) == []
        assert len(validate_field(rule(RuleKind.DATE), "yesterday", {})) == 1

    def test_boolean(self):
        assert validate_field(rule(RuleKind.BOOLEAN), False, {}) == []
        assert len(validate_field(rule(RuleKind.BOOLEAN), "true", {})) == 1

    def test_enum_lists_allowed_values(self):
        enum_rule = rule(RuleKind.ENUM, enum_values=("PEN", "USD"))

        assert validate_field(enum_rule, "USD", {}) == []
        errors = validate_field(enum_rule, "EUR", {})
        assert errors[0].message == "Bad value (allowed values: PEN, USD)"
        assert errors[0].value == "EUR"

    def test_email(self):
        assert validate_field(rule(RuleKind.EMAIL), "ana@example.com", {}) == []
        assert len(validate_field(rule(RuleKind.EMAIL), "ana@example", {})) == 1

    def test_pattern(self):
        pattern_rule = rule(RuleKind.REQUIRED, pattern=r"^[A-Z]{2,3}-\d{4}$")

        assert validate_field(pattern_rule, "PRY-0001", {}) == []
        errors = validate_field(pattern_rule, "pry-1", {})
        assert errors[0].message == "Bad value (invalid format)"

    def test_custom_predicate_sees_whole_record(self):
        custom = rule(
            RuleKind.CUSTOM,
            predicate=lambda value, record: value <= record["limit"],
        )

        assert validate_field(custom, 3, {"limit": 5}) == []
        assert len(validate_field(custom, 9, {"limit": 5})) == 1


class TestValidateFields:
    """Tests for evaluating a whole rule list."""

    def test_reports_every_violation_in_rule_order(self):
        rules = [
            ValidationRule("nombre", RuleKind.REQUIRED, "Name is required"),
            ValidationRule("edad", RuleKind.NUMBER, "Age must be a number", min=0),
            ValidationRule("email", RuleKind.EMAIL, "Email is invalid"),
        ]

        errors = validate_fields(rules, {"edad": -3, "email": "nope"})

        assert [e.field for e in errors] == ["nombre", "edad", "email"]

    def test_multiple_violations_on_one_field(self):
        rules = [
            ValidationRule(
                "codigo", RuleKind.STRING, "Code is invalid", pattern=r"^\d+$", max=3
            )
        ]

        errors = validate_fields(rules, {"codigo": "abcdef"})

        assert len(errors) == 2


class TestCoercion:
    """Tests for the number and date helpers."""

    def test_to_number(self):
        assert to_number("12.5") == 12.5
        assert to_number(3) == 3.0
        assert to_number(None) is None
        assert to_number(False) is None

    def test_parse_date_normalises_to_naive_utc(self):
        parsed = parse_date("2024-06-01T10:00:00+02:00")

        assert parsed == datetime(2024, 6, 1, 8, 0)
        assert parsed.tzinfo is None

    def test_parse_date_accepts_date_objects(self):
        assert parse_date(date(2024, 1, 2)) == datetime(2024, 1, 2)
        assert parse_date(12345) is None
