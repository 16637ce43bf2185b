"""In-memory AggregationStore with async-safe access and optimistic concurrency.

Design notes:
    - An asyncio.Lock guards every read and every commit so concurrent
      processing sessions never observe a half-applied transaction.
    - A unique (bucket, group) index enforces one record per pair.
    - Every stored record carries a version.  A write based on an older
      version is rejected with StaleRecordError; the writer re-reads and
      retries, so racing sessions never lose an update.
    - Records cross the store boundary only as copies.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator
from uuid import UUID

from activity_rollup.domain.aggregation import AggregateRecord
from activity_rollup.domain.enums import Granularity
from activity_rollup.domain.interval import BucketIdentity
from activity_rollup.store.base import (
    RecordExistsError,
    RecordNotFoundError,
    StaleRecordError,
)

logger = logging.getLogger(__name__)

RecordKey = tuple[BucketIdentity, str]


class MemoryTransaction:
    """Staged writes against an InMemoryAggregationStore.

    Reads see the committed state plus this transaction's own staged writes.
    Nothing is visible to other sessions until the store commits it.
    """

    def __init__(self, store: InMemoryAggregationStore) -> None:
        self._store = store
        self._creates: dict[RecordKey, AggregateRecord] = {}
        self._updates: dict[UUID, AggregateRecord] = {}

    @property
    def pending_writes(self) -> int:
        return len(self._creates) + len(self._updates)

    async def create_record(self, bucket: BucketIdentity, group: str) -> AggregateRecord:
        key = (bucket, group)
        if key in self._creates or await self._store.exists(bucket, group):
            raise RecordExistsError(bucket, group)
        record = AggregateRecord(bucket, group)
        self._creates[key] = record
        return record

    async def update_record(self, record: AggregateRecord) -> None:
        if self._creates.get(record.key) is record:
            # Committed together with its creation.
            return
        self._updates[record.record_id] = record

    async def query_records(self, bucket: BucketIdentity) -> list[AggregateRecord]:
        records = await self._store.query_records(bucket)
        return self._overlay(
            records,
            [r for (b, _), r in self._creates.items() if b == bucket],
        )

    async def query_incomplete(
        self,
        granularity: Granularity,
        start: datetime,
        end: datetime,
    ) -> list[AggregateRecord]:
        records = await self._store.query_incomplete(granularity, start, end)
        staged = [
            r for r in self._creates.values()
            if r.bucket.granularity == granularity and start <= r.bucket.start < end
        ]
        return [r for r in self._overlay(records, staged) if not r.completed]

    def _overlay(
        self,
        records: list[AggregateRecord],
        staged_creates: list[AggregateRecord],
    ) -> list[AggregateRecord]:
        merged = [
            self._updates[r.record_id].copy() if r.record_id in self._updates else r
            for r in records
        ]
        merged.extend(r.copy() for r in staged_creates)
        return merged

    def staged(self) -> tuple[list[AggregateRecord], list[AggregateRecord]]:
        return list(self._creates.values()), list(self._updates.values())


class InMemoryAggregationStore:
    """Async-safe, in-memory store for aggregate records."""

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self._records: dict[UUID, AggregateRecord] = {}
        self._index: dict[RecordKey, UUID] = {}

    # ── Transactions ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryTransaction]:
        """Stage writes; commit them atomically when the block exits cleanly."""
        tx = MemoryTransaction(self)
        yield tx
        creates, updates = tx.staged()
        if creates or updates:
            await self._commit(creates, updates)

    # ── Public API ───────────────────────────────────────────────────────

    async def create_record(self, bucket: BucketIdentity, group: str) -> AggregateRecord:
        async with self.transaction() as tx:
            record = await tx.create_record(bucket, group)
        return record

    async def update_record(self, record: AggregateRecord) -> None:
        async with self.transaction() as tx:
            await tx.update_record(record)

    async def query_records(self, bucket: BucketIdentity) -> list[AggregateRecord]:
        async with self._lock:
            self._check_available()
            return [
                self._records[rid].copy()
                for (b, _), rid in self._index.items()
                if b == bucket
            ]

    async def query_incomplete(
        self,
        granularity: Granularity,
        start: datetime,
        end: datetime,
    ) -> list[AggregateRecord]:
        async with self._lock:
            self._check_available()
            return [
                rec.copy()
                for rec in self._records.values()
                if rec.bucket.granularity == granularity
                and not rec.completed
                and start <= rec.bucket.start < end
            ]

    async def exists(self, bucket: BucketIdentity, group: str) -> bool:
        async with self._lock:
            self._check_available()
            return (bucket, group) in self._index

    async def record_count(self) -> int:
        async with self._lock:
            return len(self._records)

    async def summary(self) -> dict:
        async with self._lock:
            open_count = sum(1 for r in self._records.values() if not r.completed)
            return {
                "store": self.name,
                "records": len(self._records),
                "open_records": open_count,
                "completed_records": len(self._records) - open_count,
            }

    # ── Internals ────────────────────────────────────────────────────────

    def _check_available(self) -> None:
        """Hook for stores backed by real I/O; memory is always available.

        Must be called while holding self._lock.
        """

    async def _commit(
        self,
        creates: list[AggregateRecord],
        updates: list[AggregateRecord],
    ) -> None:
        async with self._lock:
            self._check_available()

            # Validate everything before applying anything.
            for record in creates:
                if record.key in self._index:
                    raise RecordExistsError(record.bucket, record.group)
            for record in updates:
                stored = self._records.get(record.record_id)
                if stored is None:
                    raise RecordNotFoundError(record)
                if stored.version != record.version:
                    raise StaleRecordError(record, stored.version)

            for record in creates:
                record.version = 1
                self._records[record.record_id] = record.copy()
                self._index[record.key] = record.record_id
            for record in updates:
                record.version += 1
                self._records[record.record_id] = record.copy()

            logger.debug(
                "Store '%s' committed %d create(s), %d update(s)",
                self.name,
                len(creates),
                len(updates),
            )
