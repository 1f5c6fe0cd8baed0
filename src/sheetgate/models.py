"""
Data model for table schemas and validation results.

A table is described by a TableSchema: an ordered list of field rules, the
foreign-key style relationships it holds, and the business rules that span
fields or tables. Validation produces a ValidationResult whose errors are
attributed to fields so they can be shown next to form inputs.
"""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union


class RuleKind(str, Enum):
    """Kind of check a ValidationRule performs."""

    REQUIRED = "required"
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    ENUM = "enum"
    PATTERN = "pattern"
    EMAIL = "email"
    CUSTOM = "custom"


class Operation(str, Enum):
    """Mutation the record is being validated for."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ErrorKind(str, Enum):
    """Validation stage that produced an error."""

    VALIDATION = "validation"
    RELATIONSHIP = "relationship"
    BUSINESS = "business"


Record = dict[str, Any]
FieldPredicate = Callable[[Any, Record], bool]
RulePredicate = Callable[[Record, "ValidationContext"], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class ValidationRule:
    """Single-field constraint."""

    field: str
    kind: RuleKind
    message: str
    min: Optional[float] = None  # numeric bound, or string length bound
    max: Optional[float] = None
    pattern: Optional[Union[str, re.Pattern]] = None
    enum_values: Optional[tuple[Any, ...]] = None
    predicate: Optional[FieldPredicate] = None

    def compiled_pattern(self) -> Optional[re.Pattern]:
        if self.pattern is None or isinstance(self.pattern, re.Pattern):
            return self.pattern
        return re.compile(self.pattern)


@dataclass(frozen=True)
class RelationshipRule:
    """Foreign-key style reference from a local field to another table."""

    field: str
    referenced_table: str
    message: str
    referenced_field: str = "id"
    required: bool = True


@dataclass(frozen=True)
class BusinessRule:
    """Named predicate encoding an invariant across fields or tables.

    The validator must be read-only and may return either a bool or an
    awaitable resolving to one.
    """

    name: str
    description: str
    validator: RulePredicate
    message: str
    field: str = "business_rule"


@dataclass(frozen=True)
class TableSchema:
    """Every rule that applies to one table."""

    table_name: str
    fields: tuple[ValidationRule, ...]
    relationships: tuple[RelationshipRule, ...] = ()
    business_rules: tuple[BusinessRule, ...] = ()

    def referenced_tables(self) -> list[str]:
        seen: list[str] = []
        for rel in self.relationships:
            if rel.referenced_table not in seen:
                seen.append(rel.referenced_table)
        return seen


@dataclass
class ValidationContext:
    """What the caller is about to do with the record.

    ``loader`` and ``now`` are filled in by the DataValidator before business
    rules run; callers normally only set ``operation``, ``existing_record``
    for partial updates and, for batches, ``related_data``.
    """

    operation: Operation = Operation.CREATE
    existing_record: Optional[Record] = None
    related_data: Optional[dict[str, list[Record]]] = None
    loader: Any = None
    now: Optional[datetime] = None

    @property
    def is_update(self) -> bool:
        return self.operation == Operation.UPDATE


@dataclass
class ValidationError:
    """Field-attributed validation failure."""

    field: str
    message: str
    kind: ErrorKind
    value: Any = None


@dataclass
class ValidationWarning:
    """Advisory message; never blocks the operation."""

    field: str
    message: str
    value: Any = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [
                {**asdict(err), "kind": err.kind.value} for err in self.errors
            ],
            "warnings": [asdict(warn) for warn in self.warnings],
        }


@dataclass
class BatchSummary:
    total_records: int
    valid_records: int
    invalid_records: int
    total_errors: int


@dataclass
class BatchValidationResult:
    is_valid: bool
    results: list[ValidationResult]
    summary: BatchSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "results": [result.to_dict() for result in self.results],
            "summary": asdict(self.summary),
        }


def is_empty(value: Any) -> bool:
    """Missing, None and the empty string all count as no value."""
    return value is None or value == ""
