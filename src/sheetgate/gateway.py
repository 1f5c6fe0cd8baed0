"""
Composition root.

SheetGateway wires the cache, the request queue, the remote client, the
related-data loader and the validator together from one Settings object, and
offers validated writes: a create or update is only sent once the record
passes validation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, MutableMapping, Optional, Sequence, Union

import httpx

from .cache import CacheStore
from .client import CrudOperation, RemoteResponse, SheetsClient
from .config import Settings
from .errors import SheetgateError
from .models import (
    BatchValidationResult,
    Operation,
    Record,
    ValidationContext,
    ValidationResult,
)
from .orchestrator import RequestQueue
from .related_data import RelatedDataLoader
from .schemas import SchemaRegistry, default_registry
from .validators import DataValidator

logger = logging.getLogger(__name__)


@dataclass
class WriteOutcome:
    """Result of a validated write."""

    ok: bool
    validation: Optional[ValidationResult] = None
    response: Optional[RemoteResponse] = None
    error: Optional[SheetgateError] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "validation": self.validation.to_dict() if self.validation else None,
            "response": self.response.model_dump() if self.response else None,
            "error": self.error.to_dict() if self.error else None,
        }


class SheetGateway:
    def __init__(
        self,
        settings: Settings,
        *,
        registry: Optional[SchemaRegistry] = None,
        storage: Optional[MutableMapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.cache = CacheStore(
            max_size=settings.cache_max_size,
            storage=storage,
            strategy=settings.cache_strategy,
        )
        self.queue = RequestQueue(settings.queue_config())
        self.client = SheetsClient(
            settings.api_url,
            settings.api_token,
            timeout=settings.timeout,
            queue=self.queue,
            cache=self.cache,
            cache_enabled=settings.cache_enabled,
            transport=transport,
        )
        self.loader = RelatedDataLoader(self.client, ttl=settings.related_data_ttl)
        self.registry = registry or default_registry()
        self.validator = DataValidator(self.registry, self.loader, clock=clock)

    async def __aenter__(self) -> "SheetGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def validate_record(
        self, table: str, data: Record, context: Optional[ValidationContext] = None
    ) -> ValidationResult:
        return await self.validator.validate_record(table, data, context)

    async def validate_batch(
        self,
        table: str,
        records: Sequence[Record],
        context: Optional[ValidationContext] = None,
    ) -> BatchValidationResult:
        return await self.validator.validate_batch(table, records, context)

    async def execute_request(
        self, operation: CrudOperation, priority: int = 0, skip_cache: bool = False
    ) -> RemoteResponse:
        return await self.client.execute_request(
            operation, priority=priority, skip_cache=skip_cache
        )

    async def submit(
        self,
        table: str,
        operation: Union[Operation, str],
        data: Optional[Record] = None,
        id: Optional[str] = None,
    ) -> WriteOutcome:
        """Validate and send a create, update or delete.

        Remote failures are returned in the outcome rather than raised.
        """
        operation = Operation(operation)
        if operation != Operation.CREATE and not id:
            raise ValueError(f"An id is required to {operation.value} a record")
        data = dict(data or {})

        validation = None
        if operation != Operation.DELETE:
            existing = None
            if operation == Operation.UPDATE:
                try:
                    existing = await self.client.get_record(table, id)
                except SheetgateError as e:
                    logger.warning(f"Could not read {table} {id} before update: {e}")
                    return WriteOutcome(ok=False, error=e)
            record = {**data, "id": id} if id else data
            validation = await self.validator.validate_record(
                table,
                record,
                ValidationContext(
                    operation=operation,
                    existing_record=existing if isinstance(existing, dict) else None,
                ),
            )
            if not validation.is_valid:
                logger.info(
                    f"Rejected {operation.value} on {table}: "
                    f"{len(validation.errors)} validation error(s)"
                )
                return WriteOutcome(ok=False, validation=validation)

        request = CrudOperation(
            table=table,
            operation=operation.value,
            data=data or None,
            id=id,
        )
        try:
            response = await self.client.execute_request(request, priority=1)
        except SheetgateError as e:
            return WriteOutcome(ok=False, validation=validation, error=e)

        self.loader.invalidate(table)
        return WriteOutcome(ok=True, validation=validation, response=response)

    def stats(self) -> dict[str, Any]:
        return {
            "queue": self.queue.get_stats(),
            "cache": self.cache.get_stats(),
            "related_data": self.loader.get_stats(),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        self.loader.invalidate()

    async def aclose(self) -> None:
        self.queue.clear()
        await self.client.aclose()
