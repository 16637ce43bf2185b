"""Aggregation store contract.

The aggregators depend on this protocol — swap implementations to change
where aggregate records live without touching aggregation logic.

Contract rules:
    1. Records returned by any query are private copies.  Mutating them
       changes nothing until they are written back.
    2. At most one record exists per (bucket, group).
    3. update_record() is a full replace of the mutable fields and fails if
       the record's version is older than the stored one.
    4. transaction() stages writes and commits them all-or-nothing.
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Protocol

from activity_rollup.domain.aggregation import AggregateRecord
from activity_rollup.domain.enums import Granularity
from activity_rollup.domain.interval import BucketIdentity


class AggregationStoreError(Exception):
    """Base class for aggregation store failures."""


class StoreUnavailableError(AggregationStoreError):
    """Transient I/O failure.  The current operation must be abandoned."""


class RecordExistsError(AggregationStoreError):
    """Raised when creating a record for a (bucket, group) that already has one."""

    def __init__(self, bucket: BucketIdentity, group: str) -> None:
        self.bucket = bucket
        self.group = group
        super().__init__(f"Record already exists for bucket {bucket} group {group!r}")


class RecordNotFoundError(AggregationStoreError):
    """Raised when updating a record that is no longer stored."""

    def __init__(self, record: AggregateRecord) -> None:
        self.record = record
        super().__init__(f"Record {record.record_id} not found")


class StaleRecordError(AggregationStoreError):
    """Raised when a write is based on an outdated version of the record."""

    def __init__(self, record: AggregateRecord, stored_version: int) -> None:
        self.record = record
        self.stored_version = stored_version
        super().__init__(
            f"Record {record.record_id} is at version {stored_version}, "
            f"write was based on version {record.version}"
        )


class StoreOperations(Protocol):
    """Operations shared by a store and its transactions."""

    async def create_record(self, bucket: BucketIdentity, group: str) -> AggregateRecord:
        """Create an empty record for (bucket, group)."""
        ...

    async def update_record(self, record: AggregateRecord) -> None:
        """Replace the stored state of *record*."""
        ...

    async def query_records(self, bucket: BucketIdentity) -> list[AggregateRecord]:
        """All records filed under *bucket*."""
        ...

    async def query_incomplete(
        self,
        granularity: Granularity,
        start: datetime,
        end: datetime,
    ) -> list[AggregateRecord]:
        """Open records of *granularity* whose bucket starts in [start, end)."""
        ...


class StoreTransaction(StoreOperations, Protocol):
    """A unit of staged writes, committed atomically by its store."""


class AggregationStore(StoreOperations, Protocol):
    """Durable keyed storage for aggregate records."""

    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Open a transaction; commits on clean exit, discards on error."""
        ...
