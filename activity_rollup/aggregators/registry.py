"""Aggregator Registry — dispatch table from event type to aggregators.

When an aggregator is registered, its supports() predicate is evaluated
once against every EventType and the result is stored in a table.  At
dispatch time the event's type selects its aggregators with a single
lookup.  Event types nobody supports select an empty tuple and are
counted as ignored.

No heuristics.  No subtype checks.  A name can be registered only once.
"""

from __future__ import annotations

import logging

from activity_rollup.core.aggregator import IntervalAggregator
from activity_rollup.domain.enums import EventType

logger = logging.getLogger(__name__)


class AggregatorStats:
    """Per-aggregator statistics for observability."""

    __slots__ = (
        "aggregator_name",
        "events_aggregated",
        "records_written",
        "boundaries_handled",
        "records_completed",
        "records_recovered",
        "failures",
    )

    def __init__(self, aggregator_name: str) -> None:
        self.aggregator_name = aggregator_name
        self.events_aggregated: int = 0
        self.records_written: int = 0
        self.boundaries_handled: int = 0
        self.records_completed: int = 0
        self.records_recovered: int = 0
        self.failures: int = 0

    def to_dict(self) -> dict:
        return {
            "aggregator_name": self.aggregator_name,
            "events_aggregated": self.events_aggregated,
            "records_written": self.records_written,
            "boundaries_handled": self.boundaries_handled,
            "records_completed": self.records_completed,
            "records_recovered": self.records_recovered,
            "failures": self.failures,
        }


class DuplicateAggregatorError(Exception):
    """Raised when two aggregators are registered under the same name."""


class AggregatorRegistry:
    """Registry of aggregator variants with dispatch and stats tracking.

    Usage:
        registry = AggregatorRegistry()
        registry.register(login_aggregator(store, resolver))

        for aggregator in registry.aggregators_for(event.event_type):
            ...
    """

    def __init__(self) -> None:
        self._aggregators: list[IntervalAggregator] = []
        self._dispatch: dict[EventType, tuple[IntervalAggregator, ...]] = {
            t: () for t in EventType
        }
        self._stats: dict[str, AggregatorStats] = {}
        self.ignored_count: int = 0

    def register(self, aggregator: IntervalAggregator) -> None:
        """Add an aggregator and route every event type it supports to it."""
        if aggregator.name in self._stats:
            raise DuplicateAggregatorError(
                f"Aggregator '{aggregator.name}' is already registered"
            )
        self._aggregators.append(aggregator)
        self._stats[aggregator.name] = AggregatorStats(aggregator.name)
        for event_type in EventType:
            if aggregator.supports(event_type):
                self._dispatch[event_type] += (aggregator,)
        logger.info("Registered aggregator: %r", aggregator)

    def aggregators_for(self, event_type: EventType) -> tuple[IntervalAggregator, ...]:
        """Aggregators that handle *event_type*, in registration order."""
        return self._dispatch[event_type]

    def stats_for(self, aggregator: IntervalAggregator) -> AggregatorStats:
        return self._stats[aggregator.name]

    @property
    def aggregators(self) -> list[IntervalAggregator]:
        return list(self._aggregators)

    @property
    def aggregator_names(self) -> list[str]:
        """Registered aggregator names in registration order."""
        return [a.name for a in self._aggregators]

    @property
    def dispatch_table(self) -> dict[str, list[str]]:
        """Event type -> aggregator names, for observability endpoints."""
        return {
            t.value: [a.name for a in aggregators]
            for t, aggregators in self._dispatch.items()
        }

    @property
    def stats(self) -> list[dict]:
        """Per-aggregator stats for observability endpoints."""
        return [s.to_dict() for s in self._stats.values()]
