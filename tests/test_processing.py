"""Tests for the EventAggregationService and processing sessions."""

from datetime import datetime, timedelta

import pytest

from activity_rollup.aggregators.registry import AggregatorRegistry
from activity_rollup.aggregators.variants import ACTIVITY, LOGIN, activity_aggregator, login_aggregator
from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.domain.enums import Granularity
from activity_rollup.services.processing import EventAggregationService, SessionClosedError
from activity_rollup.store.base import StoreUnavailableError
from activity_rollup.store.groups import InMemoryGroupResolver
from activity_rollup.store.memory_store import InMemoryAggregationStore

from tests.test_aggregator import FlakyStore
from tests.test_event import _BASE, _event_at


def _at(minutes: int) -> datetime:
    return _BASE + timedelta(minutes=minutes)


class _Setup:
    def __init__(self, login_store=None, grace=timedelta(0), default_groups=()) -> None:
        self.resolver = IntervalResolver()
        self.login_store = login_store or InMemoryAggregationStore(LOGIN)
        self.activity_store = InMemoryAggregationStore(ACTIVITY)
        self.registry = AggregatorRegistry()
        self.registry.register(login_aggregator(self.login_store, self.resolver))
        self.registry.register(activity_aggregator(self.activity_store, self.resolver))
        self.groups = InMemoryGroupResolver(default_groups)
        self.service = EventAggregationService(
            registry=self.registry,
            resolver=self.resolver,
            granularities=[Granularity.TEN_MINUTE],
            group_resolver=self.groups,
            grace=grace,
        )

    def ten(self, minutes: int):
        return self.resolver.resolve(Granularity.TEN_MINUTE, _at(minutes))

    async def login_record(self, minutes: int, group: str = "G1"):
        for rec in await self.login_store.query_records(self.ten(minutes).bucket):
            if rec.group == group:
                return rec
        return None


@pytest.fixture
def setup() -> _Setup:
    return _Setup()


class TestConstruction:
    def test_granularities_required(self, setup: _Setup) -> None:
        with pytest.raises(ValueError):
            EventAggregationService(setup.registry, setup.resolver, [])

    def test_duplicate_granularities_collapse(self, setup: _Setup) -> None:
        service = EventAggregationService(
            setup.registry, setup.resolver, [Granularity.HOUR, Granularity.DAY, Granularity.HOUR]
        )
        assert service.granularities == (Granularity.HOUR, Granularity.DAY)


class TestProcess:
    @pytest.mark.asyncio
    async def test_batch_report(self) -> None:
        setup = _Setup(default_groups=["everyone"])
        report = await setup.service.process([
            _event_at(_at(2), "user1"),
            _event_at(_at(3), "user2", event_type="page_view"),
            _event_at(_at(4), "user1", event_type="logout"),
        ])
        assert report.events_received == 3
        assert report.events_aggregated == 2
        assert report.events_ignored == 1
        assert report.records_written == 4
        assert setup.registry.ignored_count == 1

    @pytest.mark.asyncio
    async def test_variants_use_their_own_stores(self, setup: _Setup) -> None:
        await setup.service.process([
            _event_at(_at(2), "user1"),
            _event_at(_at(3), "user2", event_type="action"),
        ])
        login = await setup.login_record(0)
        assert login.participants == {"user1"}
        (activity,) = await setup.activity_store.query_records(setup.ten(0).bucket)
        assert activity.participants == {"user2"}

    @pytest.mark.asyncio
    async def test_session_groups_are_merged(self, setup: _Setup) -> None:
        setup.groups.add("session-1", "staff")
        await setup.service.process([_event_at(_at(2), "user1")])
        assert (await setup.login_record(0, "staff")).participants == {"user1"}
        assert (await setup.login_record(0, "G1")).participants == {"user1"}

    @pytest.mark.asyncio
    async def test_repeated_bucket_hits_session_cache(self, setup: _Setup) -> None:
        async with setup.service.session() as session:
            await setup.service.process_event(_event_at(_at(2), "user1"), session)
            await setup.service.process_event(_event_at(_at(7), "user2"), session)
            aggregator = setup.registry.aggregators_for(_event_at(_at(0)).event_type)[0]
            cache = session.cache_for(aggregator)
            assert cache.misses == 1
            assert cache.hits == 1
        rec = await setup.login_record(0)
        assert rec.duration == 7
        assert rec.participants == {"user1", "user2"}

    @pytest.mark.asyncio
    async def test_prune_session_evicts_ended_buckets(self, setup: _Setup) -> None:
        aggregator = setup.registry.aggregators[0]
        async with setup.service.session() as session:
            for minute in (2, 14, 27):
                await setup.service.process_event(_event_at(_at(minute)), session)
            cache = session.cache_for(aggregator)
            assert len(cache) == 3

            dropped = setup.service.prune_session(session, _at(27))

            assert dropped == 2
            assert setup.ten(20).bucket in cache
            assert setup.ten(0).bucket not in cache

            await setup.service.process_event(_event_at(_at(5), "late"), session)
        assert (await setup.login_record(0)).participants == {"user1", "late"}

    @pytest.mark.asyncio
    async def test_resubmitting_batch_changes_nothing(self, setup: _Setup) -> None:
        batch = [_event_at(_at(2), "user1"), _event_at(_at(6), "user2")]
        await setup.service.process(batch)
        await setup.service.process(batch)
        rec = await setup.login_record(0)
        assert rec.duration == 6
        assert rec.participant_count == 2

    @pytest.mark.asyncio
    async def test_closed_session_rejects_use(self, setup: _Setup) -> None:
        async with setup.service.session() as session:
            pass
        assert session.closed
        with pytest.raises(SessionClosedError):
            session.cache_for(setup.registry.aggregators[0])

    @pytest.mark.asyncio
    async def test_store_failure_counted_and_propagated(self) -> None:
        store = FlakyStore()
        setup = _Setup(login_store=store)
        store.fail_next_commit = True
        with pytest.raises(StoreUnavailableError):
            await setup.service.process([_event_at(_at(2))])
        stats = {s["aggregator_name"]: s for s in setup.registry.stats}
        assert stats[LOGIN]["failures"] == 1
        assert await store.record_count() == 0


class TestBoundaries:
    @pytest.mark.asyncio
    async def test_handle_boundary_reports_per_variant(self, setup: _Setup) -> None:
        await setup.service.process([_event_at(_at(2))])
        reports = await setup.service.handle_boundary(Granularity.TEN_MINUTE, setup.ten(0))
        assert [r.aggregator for r in reports] == [LOGIN, ACTIVITY]
        assert reports[0].completed == 1
        assert reports[1].completed == 0
        assert (await setup.login_record(0)).completed

    @pytest.mark.asyncio
    async def test_ended_before(self, setup: _Setup) -> None:
        interval = setup.service.ended_before(Granularity.TEN_MINUTE, _at(10))
        assert interval.start == _BASE
        interval = setup.service.ended_before(Granularity.TEN_MINUTE, _at(19))
        assert interval.start == _BASE

    @pytest.mark.asyncio
    async def test_close_elapsed_closes_each_bucket_once(self, setup: _Setup) -> None:
        await setup.service.process([_event_at(_at(2))])
        first = await setup.service.close_elapsed(_at(10))
        second = await setup.service.close_elapsed(_at(10))
        assert len(first) == 2
        assert second == []
        rec = await setup.login_record(0)
        assert rec.completed
        assert rec.duration == 10

    @pytest.mark.asyncio
    async def test_close_elapsed_catches_up_missed_ticks(self, setup: _Setup) -> None:
        await setup.service.close_elapsed(_at(10))
        reports = await setup.service.close_elapsed(_at(45))
        buckets = [r.bucket for r in reports if r.aggregator == LOGIN]
        assert buckets == [
            str(setup.ten(10).bucket),
            str(setup.ten(20).bucket),
            str(setup.ten(30).bucket),
        ]

    @pytest.mark.asyncio
    async def test_grace_delays_closing(self) -> None:
        setup = _Setup(grace=timedelta(minutes=2))
        await setup.service.process([_event_at(_at(2))])
        await setup.service.close_elapsed(_at(11))
        assert not (await setup.login_record(0)).completed
        await setup.service.close_elapsed(_at(12))
        assert (await setup.login_record(0)).completed

    @pytest.mark.asyncio
    async def test_missed_boundary_recovered_on_next_tick(self, setup: _Setup) -> None:
        await setup.service.process([_event_at(_at(3), "user1")])
        await setup.service.process([_event_at(_at(14), "user2")])

        reports = await setup.service.close_elapsed(_at(20))

        login = next(r for r in reports if r.aggregator == LOGIN)
        assert login.bucket == str(setup.ten(10).bucket)
        assert login.completed == 1
        assert login.recovered == 1
        healed = await setup.login_record(0)
        assert healed.completed
        assert healed.duration == 10
        assert (await setup.login_record(10)).duration == 10

    @pytest.mark.asyncio
    async def test_boundary_stats(self, setup: _Setup) -> None:
        await setup.service.process([_event_at(_at(3))])
        await setup.service.close_elapsed(_at(20))
        stats = {s["aggregator_name"]: s for s in setup.registry.stats}
        assert stats[LOGIN]["boundaries_handled"] == 1
        assert stats[LOGIN]["records_recovered"] == 1
        assert stats[LOGIN]["events_aggregated"] == 1
