import asyncio
import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .cache import CacheStore, dependent_tables
from .errors import (
    RemoteOperationError,
    ServerError,
    SheetgateError,
    classify_transport_error,
    error_for_status,
)
from .models import Record
from .orchestrator import RequestQueue

logger = logging.getLogger(__name__)

READ_OPERATIONS = ("list", "get")
WRITE_OPERATIONS = ("create", "update", "delete")


class RemoteResponse(BaseModel):
    """Envelope returned by the remote endpoint."""

    ok: bool
    data: Any = None
    message: Optional[str] = None
    timestamp: Optional[str] = None
    status: int = 200
    cache_hit: bool = False


@dataclass
class CrudOperation:
    """One call to the generic endpoint."""

    table: str
    operation: str
    data: Optional[Record] = None
    id: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    page: Optional[int] = None
    limit: Optional[int] = None

    def __post_init__(self):
        if self.operation not in READ_OPERATIONS + WRITE_OPERATIONS:
            raise ValueError(f"Unknown operation: {self.operation}")

    @property
    def is_read(self) -> bool:
        return self.operation in READ_OPERATIONS

    @property
    def is_write(self) -> bool:
        return self.operation in WRITE_OPERATIONS

    def key(self) -> str:
        """Canonical dedup/cache key, ``table:operation[:id][:...]``."""
        parts = [self.table, self.operation]
        if self.id:
            parts.append(str(self.id))
        if self.filters:
            encoded = json.dumps(self.filters, sort_keys=True, default=str)
            parts.append(f"filters:{base64.b64encode(encoded.encode()).decode()}")
        if self.page is not None or self.limit is not None:
            parts.append(f"page:{self.page}:{self.limit}")
        if self.is_write and self.data:
            # Distinct payloads for the same row must not collapse into one write
            payload = json.dumps(self.data, sort_keys=True, default=str)
            parts.append(hashlib.sha1(payload.encode()).hexdigest()[:16])
        return ":".join(parts)

    def params(self, token: str) -> Dict[str, Any]:
        """Flat query parameters; nested values are JSON encoded."""
        params: Dict[str, Any] = {
            "token": token,
            "action": "crud",
            "table": self.table,
            "operation": self.operation,
        }
        for name, value in (self.data or {}).items():
            params[name] = value
        if self.id:
            params["id"] = self.id
        if self.filters:
            params["filters"] = self.filters
        if self.page is not None:
            params["page"] = self.page
        if self.limit is not None:
            params["limit"] = self.limit

        return {
            name: json.dumps(value) if isinstance(value, (dict, list)) else value
            for name, value in params.items()
            if value is not None
        }


class SheetsClient:
    """Client for the spreadsheet backend's generic CRUD endpoint."""

    def __init__(
        self,
        api_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        queue: Optional[RequestQueue] = None,
        cache: Optional[CacheStore] = None,
        cache_enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.token = token
        self.timeout = timeout
        self.queue = queue or RequestQueue()
        self.cache = cache if cache is not None else CacheStore()
        self.cache_enabled = cache_enabled
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        # Count of completed writes touching each table, keyed by lower-cased name
        self._write_epochs: Dict[str, int] = {}

    async def _request(self, operation: CrudOperation) -> RemoteResponse:
        """Make exactly one attempt; failures are raised as SheetgateError."""
        context = {"table": operation.table, "operation": operation.operation}
        logger.debug(f"{operation.operation.upper()} {operation.table}")

        try:
            response = await self._http.get(
                self.api_url, params=operation.params(self.token)
            )
        except httpx.HTTPError as e:
            raise classify_transport_error(e, context) from e

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                headers=response.headers,
                context=context,
            )

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("response body is not an object")
            result = RemoteResponse.model_validate(
                {**payload, "status": response.status_code, "cache_hit": False}
            )
        except (ValueError, ValidationError) as e:
            raise ServerError(
                f"Invalid JSON response from server: {e}",
                status=response.status_code,
                context=context,
            ) from e

        if not result.ok:
            raise RemoteOperationError(
                result.message or "Remote operation failed",
                status=response.status_code,
                context=context,
            )
        return result

    async def execute_request(
        self,
        operation: CrudOperation,
        priority: int = 0,
        skip_cache: bool = False,
    ) -> RemoteResponse:
        """Run an operation through the cache and the request queue.

        Raises:
            SheetgateError: When the operation finally fails
        """
        key = operation.key()
        caching = self.cache_enabled and operation.is_read

        if caching and not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return RemoteResponse(
                    ok=True,
                    data=cached,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    cache_hit=True,
                )

        # Reads started after a write never join a read that began before it
        epoch = self._write_epochs.get(operation.table.lower(), 0)
        queue_key = f"{key}@{epoch}" if operation.is_read and epoch else key
        response = await self.queue.enqueue(
            queue_key, lambda: self._request(operation), priority=priority
        )

        stale = epoch != self._write_epochs.get(operation.table.lower(), 0)
        if caching and response.data is not None and not stale:
            self.cache.set(key, response.data)
        if operation.is_write:
            for table in dependent_tables(operation.table):
                self._write_epochs[table] = self._write_epochs.get(table, 0) + 1
            self.cache.invalidate_by_operation(operation.table, operation.operation)
        logger.info(f"API operation completed: {operation.operation} {operation.table}")
        return response

    async def list_records(
        self, table: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Record]:
        response = await self.execute_request(
            CrudOperation(table=table, operation="list", filters=filters)
        )
        data = response.data
        if isinstance(data, list):
            return data
        if data is None:
            return []
        return [data]

    async def get_record(self, table: str, id: str) -> Optional[Record]:
        response = await self.execute_request(
            CrudOperation(table=table, operation="get", id=id)
        )
        return response.data

    async def create(self, table: str, data: Record) -> RemoteResponse:
        return await self.execute_request(
            CrudOperation(table=table, operation="create", data=data)
        )

    async def update(self, table: str, id: str, data: Record) -> RemoteResponse:
        return await self.execute_request(
            CrudOperation(table=table, operation="update", id=id, data=data)
        )

    async def delete(self, table: str, id: str) -> RemoteResponse:
        return await self.execute_request(
            CrudOperation(table=table, operation="delete", id=id)
        )

    async def batch_execute(
        self, operations: List[CrudOperation], priority: int = 0
    ) -> List[RemoteResponse]:
        """Run operations concurrently; a failure becomes an ``ok: false`` entry."""

        async def run(index: int, operation: CrudOperation) -> RemoteResponse:
            try:
                return await self.execute_request(operation, priority=priority)
            except SheetgateError as e:
                logger.warning(
                    f"Batch operation {index} failed: {operation.operation} "
                    f"{operation.table}: {e}"
                )
                return RemoteResponse(
                    ok=False,
                    message=e.user_message,
                    status=e.status or 0,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )

        return list(
            await asyncio.gather(
                *(run(index, operation) for index, operation in enumerate(operations))
            )
        )

    async def check_connection(self) -> bool:
        """Cheap uncached read to confirm the endpoint answers."""
        try:
            await self.execute_request(
                CrudOperation(table="Usuarios", operation="list", limit=1),
                priority=10,
                skip_cache=True,
            )
        except SheetgateError as e:
            logger.warning(f"Connection check failed: {e}")
            return False
        return True

    async def aclose(self) -> None:
        await self._http.aclose()
