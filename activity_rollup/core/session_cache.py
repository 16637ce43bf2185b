"""SessionCache — read-through cache of aggregate records per bucket.

A cache instance belongs to exactly one processing session and one
aggregation store.  It is created when the session starts and discarded
when it ends; it is never shared, so it needs no locking.

Lookup is explicit:
    hit   return the cached mapping
    miss  query the store, remember the result, return it

The cache never writes.  Callers persist record changes through the store.
"""

from __future__ import annotations

from datetime import datetime

from activity_rollup.domain.aggregation import AggregateRecord
from activity_rollup.domain.enums import Granularity
from activity_rollup.domain.interval import BucketIdentity
from activity_rollup.store.base import StoreOperations


class SessionCache:
    """Bucket -> {group: record} working set for one processing session."""

    def __init__(self, store: StoreOperations) -> None:
        self._store = store
        self._entries: dict[BucketIdentity, dict[str, AggregateRecord]] = {}
        self.hits: int = 0
        self.misses: int = 0

    async def get(self, bucket: BucketIdentity) -> dict[str, AggregateRecord]:
        """Return the records filed under *bucket*, keyed by group.

        The returned mapping is the cached object itself: records added to
        it stay visible for the rest of the session.
        """
        records = self._entries.get(bucket)
        if records is not None:
            self.hits += 1
            return records

        self.misses += 1
        stored = await self._store.query_records(bucket)
        records = {record.group: record for record in stored}
        self._entries[bucket] = records
        return records

    def peek(self, bucket: BucketIdentity) -> dict[str, AggregateRecord] | None:
        """Cached mapping for *bucket*, or None.  Never touches the store."""
        return self._entries.get(bucket)

    def evict(self, bucket: BucketIdentity) -> None:
        """Forget *bucket* so the next get() reads through again."""
        self._entries.pop(bucket, None)

    def evict_before(self, granularity: Granularity, start: datetime) -> int:
        """Forget every *granularity* bucket that starts before *start*.

        Returns the number of buckets dropped.
        """
        stale = [b for b in self._entries if b.granularity == granularity and b.start < start]
        for bucket in stale:
            del self._entries[bucket]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, bucket: object) -> bool:
        return bucket in self._entries

    def __len__(self) -> int:
        return len(self._entries)
