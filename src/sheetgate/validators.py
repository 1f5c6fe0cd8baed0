"""
Validation facade: one entry point per record or batch, driven by table schemas.

Validation Stages:
1. Field validation (field_rules) - presence, types, ranges, formats
2. Relationship validation (relationships) - referenced rows exist and are active
3. Business rule validation (business_rules) - cross-field and cross-table invariants
4. Warnings (this module) - advisory heuristics that never block a write

Every stage runs even when an earlier one already failed, so the caller gets
feedback for the whole record at once.

Usage:
    from sheetgate.validators import DataValidator

    validator = DataValidator(default_registry(), loader)
    result = await validator.validate_record("Materiales", data)
    if not result.is_valid:
        print(format_validation_errors(result))
"""

import dataclasses
import logging
import math
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from .business_rules import validate_business_rules
from .field_rules import parse_date, to_number, validate_fields
from .models import (
    BatchSummary,
    BatchValidationResult,
    ErrorKind,
    Record,
    TableSchema,
    ValidationContext,
    ValidationError,
    ValidationResult,
    ValidationWarning,
)
from .related_data import RelatedDataLoader
from .relationships import validate_relationships
from .schemas import SchemaRegistry

logger = logging.getLogger(__name__)

DEADLINE_WARNING_DAYS = 7


class DataValidator:
    """Schema-driven record validator."""

    def __init__(
        self,
        registry: SchemaRegistry,
        loader: Optional[RelatedDataLoader] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.loader = loader
        self._clock = clock

    async def validate_record(
        self,
        table: str,
        data: Record,
        context: Optional[ValidationContext] = None,
    ) -> ValidationResult:
        """Validate one record against the schema of ``table``.

        Never raises: an unknown table or an unexpected failure is reported
        as a single error in the result. On update with an ``existing_record``
        the changes are validated as applied to that stored row.
        """
        schema = self.registry.get(table)
        if schema is None:
            return ValidationResult(
                is_valid=False,
                errors=[
                    ValidationError(
                        field="table",
                        message=f"No validation schema found for table: {table}",
                        kind=ErrorKind.VALIDATION,
                        value=table,
                    )
                ],
            )

        if context is not None and context.is_update and context.existing_record:
            data = {**context.existing_record, **data}

        try:
            context = self._enrich_context(context)
            errors = validate_fields(schema.fields, data)
            errors += await validate_relationships(schema.relationships, data, context)
            errors += await validate_business_rules(schema.business_rules, data, context)
            warnings = self._generate_warnings(schema, data, context)
        except Exception as e:
            logger.exception(f"Unexpected error validating {table} record")
            return ValidationResult(
                is_valid=False,
                errors=[
                    ValidationError(
                        field="system",
                        message=f"Validation error: {e}",
                        kind=ErrorKind.VALIDATION,
                    )
                ],
            )

        if errors:
            logger.debug(f"{table} record failed validation with {len(errors)} error(s)")
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    async def validate_batch(
        self,
        table: str,
        records: Sequence[Record],
        context: Optional[ValidationContext] = None,
    ) -> BatchValidationResult:
        """Validate records one after another after warming their related tables."""
        schema = self.registry.get(table)
        if schema is not None and self.loader is not None:
            await self.loader.preload(schema.referenced_tables())

        results = []
        for record in records:
            results.append(await self.validate_record(table, record, context))

        valid = sum(1 for result in results if result.is_valid)
        summary = BatchSummary(
            total_records=len(results),
            valid_records=valid,
            invalid_records=len(results) - valid,
            total_errors=sum(len(result.errors) for result in results),
        )
        return BatchValidationResult(
            is_valid=summary.invalid_records == 0,
            results=results,
            summary=summary,
        )

    def _enrich_context(self, context: Optional[ValidationContext]) -> ValidationContext:
        context = context or ValidationContext()
        return dataclasses.replace(
            context,
            loader=context.loader or self.loader,
            now=context.now or self._clock(),
        )

    # =========================================================================
    # Warnings
    # =========================================================================

    def _generate_warnings(
        self, schema: TableSchema, data: Record, context: ValidationContext
    ) -> list[ValidationWarning]:
        warnings: list[ValidationWarning] = []

        if schema.table_name == "Materiales":
            actual = to_number(data.get("stock_actual"))
            minimum = to_number(data.get("stock_minimo"))
            if actual is not None and minimum is not None and actual <= minimum:
                warnings.append(
                    ValidationWarning(
                        field="stock_actual",
                        message="Current stock is at or below the minimum level",
                        value=data.get("stock_actual"),
                    )
                )

        if schema.table_name == "Proyectos":
            deadline = parse_date(data.get("fin_plan"))
            if deadline is not None:
                days = math.ceil((deadline - context.now).total_seconds() / 86400)
                if 0 < days <= DEADLINE_WARNING_DAYS:
                    warnings.append(
                        ValidationWarning(
                            field="fin_plan",
                            message=f"Project is due in {days} day(s)",
                            value=data.get("fin_plan"),
                        )
                    )

        return warnings


# =============================================================================
# Public API
# =============================================================================


def format_validation_errors(result: ValidationResult) -> str:
    """Format a validation result as a readable report."""
    if result.is_valid and not result.warnings:
        return "✅ Record validation passed!"

    report = []
    if result.is_valid:
        report.append("✅ Record validation passed with warnings:\n")
    else:
        report.append(f"❌ Found {len(result.errors)} validation error(s):\n")

    for idx, err in enumerate(result.errors, 1):
        report.append(f"{idx}. [{err.kind.value}] {err.field}: {err.message}")
        if err.value is not None:
            report.append(f"   Value: {err.value!r}")
        report.append("")

    for warn in result.warnings:
        report.append(f"⚠️  {warn.field}: {warn.message}")

    return "\n".join(report).rstrip() + "\n"


def summarize_batch(result: BatchValidationResult) -> dict[str, Any]:
    """Per-record error listing for invalid records only, keyed by index."""
    return {
        "summary": dataclasses.asdict(result.summary),
        "invalid": {
            str(idx): [f"{err.field}: {err.message}" for err in record.errors]
            for idx, record in enumerate(result.results)
            if not record.is_valid
        },
    }
