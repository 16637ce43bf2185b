"""Event aggregation service — processing sessions, dispatch and boundary ticks.

A ProcessingSession is one unit of event-handling work.  It owns one
SessionCache per aggregator variant, so repeated events for the same
bucket inside the session hit memory instead of the store.  Sessions are
created at the start of the work, closed at the end, and never shared.

The service ties the pieces together:
    event  -> group resolution -> active intervals -> dispatch table
           -> every supporting aggregator
    tick   -> the bucket that just ended, per tracked granularity
           -> boundary closer of every aggregator
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Iterable, Mapping, Sequence
from uuid import UUID

from activity_rollup.aggregators.registry import AggregatorRegistry
from activity_rollup.core.aggregator import IntervalAggregator
from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.core.session_cache import SessionCache
from activity_rollup.domain.enums import Granularity
from activity_rollup.domain.event import ActivityEvent
from activity_rollup.domain.interval import IntervalInfo
from activity_rollup.domain.report import BoundaryReport, ProcessingReport
from activity_rollup.foundation.clock import utc_now
from activity_rollup.foundation.identifiers import new_id
from activity_rollup.store.groups import GroupResolver

logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """Raised when a closed processing session is used again."""


class ProcessingSession:
    """One unit of event-processing work and the caches it owns."""

    def __init__(self, session_id: UUID | None = None) -> None:
        self.session_id: UUID = session_id or new_id()
        self.started_at: datetime = utc_now()
        self.events_received: int = 0
        self.events_aggregated: int = 0
        self.events_ignored: int = 0
        self.records_written: int = 0
        self._caches: dict[str, SessionCache] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def cache_for(self, aggregator: IntervalAggregator) -> SessionCache:
        """The session's cache over *aggregator*'s store, created on first use."""
        if self._closed:
            raise SessionClosedError(f"Processing session {self.session_id} is closed")
        cache = self._caches.get(aggregator.name)
        if cache is None:
            cache = SessionCache(aggregator.store)
            self._caches[aggregator.name] = cache
        return cache

    def evict_ended(self, intervals: Mapping[Granularity, IntervalInfo]) -> int:
        """Drop cached buckets that lie before the given active *intervals*.

        Long-lived sessions call this as time moves on so their caches hold
        only the buckets still being written.  A late event for a dropped
        bucket simply reads through to the store again.
        """
        dropped = 0
        for cache in self._caches.values():
            for granularity, interval in intervals.items():
                dropped += cache.evict_before(granularity, interval.start)
        return dropped

    def close(self) -> None:
        """Discard every cache.  The session cannot be used afterwards."""
        for cache in self._caches.values():
            cache.clear()
        self._caches.clear()
        self._closed = True

    def report(self) -> ProcessingReport:
        return ProcessingReport(
            session_id=self.session_id,
            events_received=self.events_received,
            events_aggregated=self.events_aggregated,
            events_ignored=self.events_ignored,
            records_written=self.records_written,
        )


class EventAggregationService:
    """Routes events to aggregators and closes elapsed buckets.

    Args:
        registry: Dispatch table of aggregator variants.
        resolver: Calendar arithmetic.
        granularities: Granularities tracked for every event.
        group_resolver: Optional source of extra groups per session.
        grace: How long after a bucket ends before close_elapsed() closes it.
        log: Sink for diagnostics; defaults to the module logger.
    """

    def __init__(
        self,
        registry: AggregatorRegistry,
        resolver: IntervalResolver,
        granularities: Sequence[Granularity],
        group_resolver: GroupResolver | None = None,
        grace: timedelta = timedelta(0),
        log: logging.Logger | None = None,
    ) -> None:
        if not granularities:
            raise ValueError("at least one granularity must be tracked")
        self._registry = registry
        self._resolver = resolver
        self._granularities = tuple(dict.fromkeys(granularities))
        self._group_resolver = group_resolver
        self._grace = grace
        self._log = log or logger
        self._last_closed: dict[Granularity, IntervalInfo] = {}
        self._boundary_lock = asyncio.Lock()

    @property
    def granularities(self) -> tuple[Granularity, ...]:
        return self._granularities

    @property
    def registry(self) -> AggregatorRegistry:
        return self._registry

    # ── Sessions ─────────────────────────────────────────────────────────

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ProcessingSession]:
        """Open a processing session; its caches are discarded on exit."""
        session = ProcessingSession()
        self._log.debug("Opened processing session %s", session.session_id)
        try:
            yield session
        finally:
            session.close()
            self._log.debug(
                "Closed processing session %s (events=%d, writes=%d)",
                session.session_id,
                session.events_received,
                session.records_written,
            )

    # ── Events ───────────────────────────────────────────────────────────

    def active_intervals(self, timestamp: datetime) -> dict[Granularity, IntervalInfo]:
        """Buckets of every tracked granularity containing *timestamp*."""
        return self._resolver.resolve_all(self._granularities, timestamp)

    async def process_event(self, event: ActivityEvent, session: ProcessingSession) -> int:
        """Aggregate one event with every aggregator that supports its type.

        Returns the number of aggregators that handled the event.
        """
        session.events_received += 1
        aggregators = self._registry.aggregators_for(event.event_type)
        if not aggregators:
            session.events_ignored += 1
            self._registry.ignored_count += 1
            self._log.debug("No aggregator for %s event %s", event.event_type.value, event.event_id)
            return 0

        if self._group_resolver is not None:
            event = event.with_groups(self._group_resolver.groups_for(event.session_id))
        intervals = self.active_intervals(event.timestamp)

        for aggregator in aggregators:
            stats = self._registry.stats_for(aggregator)
            try:
                written = await aggregator.aggregate_event(
                    event, session.cache_for(aggregator), intervals
                )
            except Exception:
                stats.failures += 1
                raise
            stats.events_aggregated += 1
            stats.records_written += written
            session.records_written += written

        session.events_aggregated += 1
        return len(aggregators)

    def prune_session(self, session: ProcessingSession, now: datetime) -> int:
        """Evict *session*'s cached buckets that ended before *now*."""
        dropped = session.evict_ended(self.active_intervals(now))
        if dropped:
            self._log.debug("Session %s evicted %d ended bucket(s)", session.session_id, dropped)
        return dropped

    async def process(self, events: Iterable[ActivityEvent]) -> ProcessingReport:
        """Aggregate a batch of events in one processing session.

        Events are applied in order; a failure stops the batch and
        propagates, leaving earlier events committed.  Re-submitting the
        whole batch is safe: duplicates do not change the aggregates.
        """
        async with self.session() as session:
            for event in events:
                await self.process_event(event, session)
            return session.report()

    # ── Boundaries ───────────────────────────────────────────────────────

    async def handle_boundary(
        self,
        granularity: Granularity,
        interval: IntervalInfo,
    ) -> list[BoundaryReport]:
        """Close *interval* for every aggregator variant, in a fresh session."""
        reports: list[BoundaryReport] = []
        async with self.session() as session:
            for aggregator in self._registry.aggregators:
                stats = self._registry.stats_for(aggregator)
                try:
                    report = await aggregator.handle_boundary(
                        granularity, interval, session.cache_for(aggregator)
                    )
                except Exception:
                    stats.failures += 1
                    raise
                stats.boundaries_handled += 1
                stats.records_completed += report.completed
                stats.records_recovered += report.recovered
                reports.append(report)
        return reports

    def ended_before(self, granularity: Granularity, now: datetime) -> IntervalInfo:
        """The most recent bucket of *granularity* that ended at or before *now*."""
        return self._resolver.previous(self._resolver.resolve(granularity, now))

    async def close_elapsed(self, now: datetime | None = None) -> list[BoundaryReport]:
        """Scheduler entry point: close every bucket that elapsed since the last tick.

        Each bucket is closed once.  When ticks were missed, the buckets in
        between are closed in order before the most recent one.
        """
        cutoff = (now or utc_now()) - self._grace
        reports: list[BoundaryReport] = []
        async with self._boundary_lock:
            for granularity in self._granularities:
                ended = self.ended_before(granularity, cutoff)
                last = self._last_closed.get(granularity)
                interval = ended if last is None else self._resolver.next(last)
                while interval.start <= ended.start:
                    reports.extend(await self.handle_boundary(granularity, interval))
                    self._last_closed[granularity] = interval
                    interval = self._resolver.next(interval)
        if reports:
            self._log.info(
                "Boundary tick at %s produced %d report(s)", cutoff.isoformat(), len(reports)
            )
        return reports
