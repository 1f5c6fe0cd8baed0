"""Foreign-key style reference checks."""

import logging
from typing import Iterable

from .errors import RelatedDataError
from .models import (
    ErrorKind,
    Record,
    RelationshipRule,
    ValidationContext,
    ValidationError,
    is_empty,
)

logger = logging.getLogger(__name__)


async def validate_relationships(
    rules: Iterable[RelationshipRule], record: Record, context: ValidationContext
) -> list[ValidationError]:
    """Check that each referenced row exists and is not inactive.

    Each rule is a linear scan of the referenced table's snapshot.
    """
    errors: list[ValidationError] = []

    for rule in rules:
        value = record.get(rule.field)

        if is_empty(value):
            if rule.required:
                errors.append(
                    ValidationError(
                        field=rule.field,
                        message=f"{rule.message} (field required)",
                        kind=ErrorKind.RELATIONSHIP,
                        value=value,
                    )
                )
            continue

        rows = await _rows_for(rule.referenced_table, context)
        referenced = next(
            (row for row in rows if row.get(rule.referenced_field) == value), None
        )

        if referenced is None:
            errors.append(
                ValidationError(
                    field=rule.field,
                    message=rule.message,
                    kind=ErrorKind.RELATIONSHIP,
                    value=value,
                )
            )
        elif referenced.get("activo") is False:
            errors.append(
                ValidationError(
                    field=rule.field,
                    message=f"{rule.message} (inactive record)",
                    kind=ErrorKind.RELATIONSHIP,
                    value=value,
                )
            )

    return errors


async def _rows_for(table: str, context: ValidationContext) -> list[Record]:
    if context.related_data and table in context.related_data:
        return context.related_data[table]
    if context.loader is None:
        logger.warning(f"No related data loader available for {table}")
        return []
    try:
        return await context.loader.load(table)
    except RelatedDataError as e:
        logger.warning(str(e))
        return []
