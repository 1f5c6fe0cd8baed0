"""
Business rule engine and the built-in rule library.

A business rule is a named predicate over a record and its
ValidationContext. Predicates may be plain functions or coroutines; the
engine awaits either and turns a raised exception into a business error
instead of letting it escape.

Rules that need other tables read them through ``context.loader``. When such
a lookup cannot be completed the rule fails open: the write is allowed and
the failure is logged.
"""

import asyncio
import inspect
import logging
import re
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from .errors import RelatedDataError
from .field_rules import parse_date, to_number
from .models import (
    BusinessRule,
    ErrorKind,
    Record,
    RulePredicate,
    ValidationContext,
    ValidationError,
    is_empty,
)

logger = logging.getLogger(__name__)

MAX_DAILY_HOURS = 12
RUC_PREFIXES = ("10", "15", "17", "20")
RUC_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)


async def validate_business_rules(
    rules: Iterable[BusinessRule], record: Record, context: ValidationContext
) -> list[ValidationError]:
    """Run every rule concurrently; report failures in rule order."""
    outcomes = await asyncio.gather(
        *(_run_rule(rule, record, context) for rule in rules)
    )
    return [error for error in outcomes if error is not None]


async def _run_rule(
    rule: BusinessRule, record: Record, context: ValidationContext
) -> Optional[ValidationError]:
    try:
        result = rule.validator(record, context)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.warning(f"Business rule '{rule.name}' raised: {e}")
        return ValidationError(
            field=rule.field,
            message=f"Error validating business rule '{rule.name}': {e}",
            kind=ErrorKind.BUSINESS,
        )

    if result:
        return None
    return ValidationError(
        field=rule.field,
        message=rule.message,
        kind=ErrorKind.BUSINESS,
        value=record.get(rule.field),
    )


async def _rows(context: ValidationContext, table: str) -> Optional[list[Record]]:
    """Rows of ``table``, or None when they cannot be obtained."""
    if context.related_data and table in context.related_data:
        return context.related_data[table]
    if context.loader is None:
        logger.warning(f"No related data loader; cannot read {table}")
        return None
    try:
        return await context.loader.load(table)
    except RelatedDataError as e:
        logger.warning(f"{e}; allowing the operation")
        return None


def _same_record(row: Record, record: Record, context: ValidationContext) -> bool:
    """True for the stored copy of the record being updated."""
    return (
        context.is_update
        and not is_empty(record.get("id"))
        and row.get("id") == record.get("id")
    )


def _today(context: ValidationContext) -> datetime:
    return context.now or datetime.now()


# =============================================================================
# Cross-table rules
# =============================================================================


def unique_field(table: str, field: str) -> RulePredicate:
    """No other row of ``table`` may share the record's ``field`` value.

    On update the record's own stored row is ignored. Fails open when the
    table cannot be loaded.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        value = record.get(field)
        if is_empty(value):
            return True
        rows = await _rows(context, table)
        if rows is None:
            return True
        return not any(
            row.get(field) == value
            for row in rows
            if not _same_record(row, record, context)
        )

    return check


def within_parent_dates(
    parent_table: str,
    parent_field: str,
    start_field: str = "inicio_plan",
    end_field: str = "fin_plan",
) -> RulePredicate:
    """The record's start/end must fall inside its parent's start/end.

    Fails open when the parent cannot be loaded or found, or when either
    side lacks parseable dates.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        parent_id = record.get(parent_field)
        if is_empty(parent_id):
            return True
        rows = await _rows(context, parent_table)
        if rows is None:
            return True
        parent = next((row for row in rows if row.get("id") == parent_id), None)
        if parent is None:
            return True

        dates = [
            parse_date(parent.get(start_field)),
            parse_date(parent.get(end_field)),
            parse_date(record.get(start_field)),
            parse_date(record.get(end_field)),
        ]
        if any(value is None for value in dates):
            return True
        parent_start, parent_end, start, end = dates
        return start >= parent_start and end <= parent_end

    return check


def daily_hours_limit(
    limit: float = MAX_DAILY_HOURS,
    table: str = "RegistroHoras",
    subject_field: str = "colaborador_id",
    date_field: str = "fecha",
    hours_field: str = "horas_trabajadas",
) -> RulePredicate:
    """Hours logged by one collaborator on one day may not exceed ``limit``.

    Fails open when existing entries cannot be loaded.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        day = parse_date(record.get(date_field))
        if day is None:
            return True
        rows = await _rows(context, table)
        if rows is None:
            return True

        total = to_number(record.get(hours_field)) or 0.0
        for row in rows:
            if _same_record(row, record, context):
                continue
            if row.get(subject_field) != record.get(subject_field):
                continue
            row_day = parse_date(row.get(date_field))
            if row_day is None or row_day.date() != day.date():
                continue
            total += to_number(row.get(hours_field)) or 0.0
        return total <= limit

    return check


def material_availability(
    material_table: str = "Materiales",
    bom_table: str = "BOM",
) -> RulePredicate:
    """Stock must cover every BOM line for the material plus this one.

    A missing or inactive material fails. Fails open when either table
    cannot be loaded.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        material_id = record.get("material_id")
        if is_empty(material_id):
            return True
        materials = await _rows(context, material_table)
        if materials is None:
            return True
        material = next(
            (row for row in materials if row.get("id") == material_id), None
        )
        if material is None or material.get("activo") is False:
            return False

        lines = await _rows(context, bom_table)
        if lines is None:
            return True
        committed = sum(
            to_number(line.get("qty_requerida")) or 0.0
            for line in lines
            if line.get("material_id") == material_id
            and not _same_record(line, record, context)
        )
        requested = to_number(record.get("qty_requerida")) or 0.0
        stock = to_number(material.get("stock_actual")) or 0.0
        return committed + requested <= stock

    return check


def collaborator_assignment(table: str = "Asignaciones") -> RulePredicate:
    """The collaborator needs an active assignment to the project/activity.

    Fails open when assignments cannot be loaded.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        rows = await _rows(context, table)
        if rows is None:
            return True
        return any(
            row.get("colaborador_id") == record.get("colaborador_id")
            and row.get("proyecto_id") == record.get("proyecto_id")
            and row.get("actividad_id") == record.get("actividad_id")
            and row.get("activo")
            for row in rows
        )

    return check


def active_user(
    field: str, roles: Optional[Sequence[str]] = None, table: str = "Usuarios"
) -> RulePredicate:
    """The referenced user exists, is not inactive and holds one of ``roles``.

    Fails open when users cannot be loaded.
    """

    async def check(record: Record, context: ValidationContext) -> bool:
        user_id = record.get(field)
        if is_empty(user_id):
            return True
        rows = await _rows(context, table)
        if rows is None:
            return True
        user = next((row for row in rows if row.get("id") == user_id), None)
        if user is None or user.get("activo") is False:
            return False
        return roles is None or user.get("rol") in roles

    return check


# =============================================================================
# Single-record rules
# =============================================================================


def no_future_dates(field: str = "fecha") -> RulePredicate:
    """The date may be today at the latest."""

    def check(record: Record, context: ValidationContext) -> bool:
        value = parse_date(record.get(field))
        if value is None:
            return True
        return value.date() <= _today(context).date()

    return check


def date_order(start_field: str, end_field: str) -> RulePredicate:
    def check(record: Record, context: ValidationContext) -> bool:
        start = parse_date(record.get(start_field))
        end = parse_date(record.get(end_field))
        if start is None or end is None:
            return True
        return end > start

    return check


def completion_requires_full_progress(
    state_field: str = "estado",
    done_state: str = "Completada",
    progress_field: str = "porcentaje_avance",
) -> RulePredicate:
    def check(record: Record, context: ValidationContext) -> bool:
        if record.get(state_field) != done_state:
            return True
        return to_number(record.get(progress_field)) == 100

    return check


def assigned_not_exceed_required() -> RulePredicate:
    def check(record: Record, context: ValidationContext) -> bool:
        assigned = to_number(record.get("qty_asignada"))
        required = to_number(record.get("qty_requerida"))
        if assigned is None or required is None:
            return True
        return assigned <= required

    return check


def stock_levels() -> RulePredicate:
    """Stock is not negative and the minimum is at most ten times the stock."""

    def check(record: Record, context: ValidationContext) -> bool:
        actual = to_number(record.get("stock_actual"))
        minimum = to_number(record.get("stock_minimo"))
        if actual is not None and actual < 0:
            return False
        if minimum is not None:
            if minimum < 0:
                return False
            if actual is not None and minimum > actual * 10:
                return False
        return True

    return check


def tax_id(
    table: str, field: str, allow_dni: bool = False
) -> RulePredicate:
    """Value must be a valid RUC (or DNI when allowed) and unique in ``table``."""
    unique = unique_field(table, field)

    async def check(record: Record, context: ValidationContext) -> bool:
        value = record.get(field)
        if is_empty(value):
            return True
        value = str(value)
        if not (validate_ruc(value) or (allow_dni and validate_dni(value))):
            return False
        return await unique(record, context)

    return check


# =============================================================================
# Identity document checks
# =============================================================================


def validate_ruc(ruc: Any) -> bool:
    """11-digit taxpayer number with a known prefix and a mod-11 check digit."""
    if not isinstance(ruc, str) or not re.fullmatch(r"\d{11}", ruc):
        return False
    if ruc[:2] not in RUC_PREFIXES:
        return False

    total = sum(int(digit) * weight for digit, weight in zip(ruc, RUC_WEIGHTS))
    remainder = total % 11
    check_digit = remainder if remainder < 2 else 11 - remainder
    return check_digit == int(ruc[10])


def validate_dni(dni: Any) -> bool:
    """8-digit national identity number."""
    return isinstance(dni, str) and re.fullmatch(r"\d{8}", dni) is not None
