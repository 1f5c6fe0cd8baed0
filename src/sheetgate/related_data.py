"""
Whole-table snapshots used by relationship and uniqueness checks.

Kept apart from the response cache: snapshots live for a short, fixed time
and exist only so that validating a record (or a batch of records) does not
refetch the same reference table over and over.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional, Protocol

from .errors import RelatedDataError
from .models import Record

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Anything that can list every row of a table."""

    async def list_records(self, table: str) -> list[Record]: ...


class RelatedDataLoader:
    """TTL cache of table snapshots on top of a RecordSource."""

    def __init__(
        self,
        source: RecordSource,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl = ttl
        self._clock = clock
        self._snapshots: dict[str, tuple[float, list[Record]]] = {}
        self._loading: dict[str, asyncio.Task] = {}
        # Bumped by invalidate(); a fetch started under an older generation
        # never becomes the snapshot
        self._generations: dict[str, int] = {}
        self._fetches = 0

    async def load(self, table: str) -> list[Record]:
        """Return every row of ``table``.

        Raises:
            RelatedDataError: If the rows could not be fetched
        """
        cached = self._snapshots.get(table)
        if cached is not None and self._clock() < cached[0]:
            return cached[1]

        task = self._loading.get(table)
        if task is None:
            task = asyncio.ensure_future(
                self._fetch(table, self._generations.get(table, 0))
            )
            self._loading[table] = task
            task.add_done_callback(lambda done: self._forget_load(table, done))
        return await asyncio.shield(task)

    async def find(self, table: str, field: str, value: Any) -> Optional[Record]:
        """First row of ``table`` whose ``field`` equals ``value``."""
        for row in await self.load(table):
            if row.get(field) == value:
                return row
        return None

    async def preload(self, tables: Iterable[str]) -> None:
        """Warm several snapshots at once; failures are only logged."""
        unique = list(dict.fromkeys(tables))
        results = await asyncio.gather(
            *(self.load(table) for table in unique), return_exceptions=True
        )
        for table, result in zip(unique, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to preload related data for {table}: {result}")

    def invalidate(self, table: Optional[str] = None) -> None:
        """Drop snapshots so the next load refetches, even past a fetch in flight."""
        tables = list(set(self._snapshots) | set(self._loading)) if table is None else [table]
        for name in tables:
            self._generations[name] = self._generations.get(name, 0) + 1
            self._snapshots.pop(name, None)
            self._loading.pop(name, None)

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._snapshots),
            "tables": sorted(self._snapshots),
            "fetches": self._fetches,
        }

    def _forget_load(self, table: str, task: asyncio.Task) -> None:
        if self._loading.get(table) is task:
            del self._loading[table]

    async def _fetch(self, table: str, generation: int) -> list[Record]:
        self._fetches += 1
        try:
            rows = await self.source.list_records(table)
        except Exception as e:
            raise RelatedDataError(
                f"Could not load related data for {table}: {e}",
                context={"table": table},
            ) from e
        rows = list(rows or [])
        if self._generations.get(table, 0) == generation:
            self._snapshots[table] = (self._clock() + self.ttl, rows)
        else:
            logger.debug(f"Discarding {table} rows loaded before an invalidation")
        logger.debug(f"Loaded {len(rows)} related row(s) from {table}")
        return rows
