"""IntervalAggregator — per-bucket, per-group activity aggregation.

One IntervalAggregator is one aggregator variant: a name, the event types
it accepts, and the store its records live in.  Variants differ only in
configuration, never in behaviour.

Aggregating an event (one unit of work):
    for every active granularity of the event's timestamp
        walk the session's cached records for the bucket
            groups of the event already represented  -> update the record
        groups with no record yet                  -> create, then update
    update = duration high-water mark + participant set membership
    all writes commit in one store transaction before returning

Closing a boundary:
    1. complete every record of the bucket that just ended
    2. recovery sweep: complete every record of the bucket before it that
       is still open, using that bucket's own length

Conflicts with concurrent writers (stale version, creation race) roll the
unit back and retry it against fresh store state.  Anything else,
cancellation included, rolls back and propagates.  Records are changed in
the session cache before the commit, so every rollback evicts the buckets
the unit touched.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.core.session_cache import SessionCache
from activity_rollup.domain.enums import EventType, Granularity
from activity_rollup.domain.event import ActivityEvent
from activity_rollup.domain.interval import BucketIdentity, IntervalInfo
from activity_rollup.domain.report import BoundaryReport
from activity_rollup.store.base import (
    AggregationStore,
    RecordExistsError,
    StaleRecordError,
    StoreTransaction,
)

logger = logging.getLogger(__name__)

_CONFLICTS = (StaleRecordError, RecordExistsError)


class IntervalAggregator:
    """Aggregates activity events into time-bucketed, per-group records.

    Args:
        name: Variant name, unique within a registry.
        event_types: The event types this variant aggregates.
        store: Where this variant's records live.
        resolver: Calendar arithmetic for previous-bucket lookup.
        max_attempts: Tries per unit of work when writers conflict.
        log: Sink for diagnostics; defaults to the module logger.
    """

    def __init__(
        self,
        name: str,
        event_types: Iterable[EventType],
        store: AggregationStore,
        resolver: IntervalResolver,
        max_attempts: int = 3,
        log: logging.Logger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self.event_types = frozenset(event_types)
        self.store = store
        self._resolver = resolver
        self._max_attempts = max_attempts
        self._log = log or logger

    def supports(self, event_type: EventType) -> bool:
        """Type-membership predicate used by the dispatch table."""
        return event_type in self.event_types

    # ── Event aggregation ────────────────────────────────────────────────

    async def aggregate_event(
        self,
        event: ActivityEvent,
        cache: SessionCache,
        intervals: Mapping[Granularity, IntervalInfo],
    ) -> int:
        """Apply *event* to every active bucket for every group it belongs to.

        Returns the number of records written.  An event without groups
        writes nothing.

        Raises:
            TimestampOutsideBucketError: *intervals* does not match the event.
            AggregationStoreError: the store failed, or conflicts persisted
                past max_attempts.  Nothing was written.
        """
        if not event.groups:
            return 0

        buckets = [interval.bucket for interval in intervals.values()]
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self.store.transaction() as tx:
                    written = 0
                    for interval in intervals.values():
                        written += await self._apply_event(event, interval, cache, tx)
                break
            except _CONFLICTS as exc:
                self._evict(cache, buckets)
                if attempt == self._max_attempts:
                    raise
                self._log.warning(
                    "Aggregator '%s' conflict on event %s (attempt %d/%d): %s",
                    self.name,
                    event.event_id,
                    attempt,
                    self._max_attempts,
                    exc,
                )
            except BaseException:
                self._evict(cache, buckets)
                raise
        return written

    async def _apply_event(
        self,
        event: ActivityEvent,
        interval: IntervalInfo,
        cache: SessionCache,
        tx: StoreTransaction,
    ) -> int:
        elapsed = interval.elapsed_to(event.timestamp)
        remaining = set(event.groups)
        records = await cache.get(interval.bucket)
        written = 0

        for record in list(records.values()):
            if record.group not in remaining:
                continue
            # Represented already: update instead of create.
            remaining.discard(record.group)
            if record.record_activity(event.participant_id, elapsed):
                await tx.update_record(record)
                written += 1
            else:
                self._log.debug("Ignored event %s for closed %r", event.event_id, record)

        for group in sorted(remaining):
            record = await tx.create_record(interval.bucket, group)
            records[group] = record
            record.record_activity(event.participant_id, elapsed)
            await tx.update_record(record)
            written += 1
            self._log.debug("Created %r", record)

        return written

    # ── Boundary closing ─────────────────────────────────────────────────

    async def handle_boundary(
        self,
        granularity: Granularity,
        interval: IntervalInfo,
        cache: SessionCache,
    ) -> BoundaryReport:
        """Close *interval* and heal any record left open in the bucket before it.

        Safe to re-run: completed records are never touched again.
        """
        if interval.granularity != granularity:
            raise ValueError(
                f"Bucket {interval.bucket} does not belong to granularity {granularity.value}"
            )
        previous = self._resolver.previous(interval)
        buckets = [interval.bucket, previous.bucket]

        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self.store.transaction() as tx:
                    completed = await self._complete_bucket(interval, cache, tx)
                    recovered = await self._recover_bucket(previous, cache, tx)
                break
            except _CONFLICTS as exc:
                self._evict(cache, buckets)
                if attempt == self._max_attempts:
                    raise
                self._log.warning(
                    "Aggregator '%s' conflict closing %s (attempt %d/%d): %s",
                    self.name,
                    interval.bucket,
                    attempt,
                    self._max_attempts,
                    exc,
                )
            except BaseException:
                self._evict(cache, buckets)
                raise

        if recovered:
            self._log.info(
                "Aggregator '%s' recovered %d unclosed record(s) in %s",
                self.name,
                recovered,
                previous.bucket,
            )
        return BoundaryReport(
            aggregator=self.name,
            granularity=granularity,
            bucket=str(interval.bucket),
            previous_bucket=str(previous.bucket),
            completed=completed,
            recovered=recovered,
        )

    async def _complete_bucket(
        self,
        interval: IntervalInfo,
        cache: SessionCache,
        tx: StoreTransaction,
    ) -> int:
        completed = 0
        records = await cache.get(interval.bucket)
        for record in records.values():
            if record.complete(interval.total_duration):
                await tx.update_record(record)
                completed += 1
                self._log.debug("Marked complete: %r", record)
        return completed

    async def _recover_bucket(
        self,
        previous: IntervalInfo,
        cache: SessionCache,
        tx: StoreTransaction,
    ) -> int:
        recovered = 0
        cached = cache.peek(previous.bucket) or {}
        unclosed = await tx.query_incomplete(previous.granularity, previous.start, previous.end)
        for record in unclosed:
            # Keep the session's working copy coherent when it holds one.
            record = cached.get(record.group, record)
            if record.complete(previous.total_duration):
                await tx.update_record(record)
                recovered += 1
                self._log.debug("Marked complete previously missed: %r", record)
        return recovered

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _evict(cache: SessionCache, buckets: Iterable[BucketIdentity]) -> None:
        for bucket in buckets:
            cache.evict(bucket)

    def __repr__(self) -> str:
        types = ", ".join(sorted(t.value for t in self.event_types))
        return f"IntervalAggregator(name={self.name!r}, event_types=[{types}])"
